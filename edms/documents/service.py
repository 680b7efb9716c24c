"""
EDMS Document Service — Document lifecycle: upload, read, list, search,
update, soft delete, download, share and revoke.

State machine:
    Active ──delete──▶ Deleted   (terminal; hidden from every read path)

Access rules:
    view   = role/ownership/Public   OR (Restricted AND active share)
    edit   = role/ownership          OR active Edit/FullControl share
    delete = owner only, regardless of role
    share  = owner only, regardless of role

Every denial is written to the audit trail in its own commit, then
surfaced to the caller exactly like a missing document (EDMSNotFoundError)
so a caller cannot probe for documents it may not see.
"""

from __future__ import annotations

import io
import logging
from datetime import datetime
from typing import BinaryIO, Callable, List, Optional, Union

from sqlalchemy.orm import Session

from edms.audit.trail import AuditTrail
from edms.db.base import as_utc, utcnow
from edms.db.models import Document, DocumentShare
from edms.db.repositories import DocumentRepository, ShareRepository
from edms.db.session import SessionFactory, session_scope
from edms.documents.models import (
    AccessType,
    AuditActionType,
    DocumentListResponse,
    DocumentResponse,
    DocumentSearchRequest,
    DocumentShareResponse,
    DocumentUpdateRequest,
    DocumentUploadRequest,
    DownloadResult,
    PaginatedResponse,
    ShareDocumentRequest,
)
from edms.documents.shares import ShareRegistry
from edms.documents.storage import BlobStore
from edms.documents.tags import TagCatalog, to_tag_response
from edms.engine.errors import (
    EDMSNotFoundError,
    EDMSSecurityError,
    EDMSStorageError,
    EDMSValidationError,
)
from edms.engine.identity import Identity
from edms.engine.logging import log, log_document_event, log_security_event, log_share_event
from edms.security import access
from edms.security.roles import Role

logger = logging.getLogger("edms.documents.service")


def to_share_response(share: DocumentShare) -> DocumentShareResponse:
    return DocumentShareResponse(
        id=share.id,
        document_id=share.document_id,
        shared_with_user_id=share.shared_with_user_id,
        permission_level=share.permission_level,
        shared_by=share.shared_by,
        shared_at=as_utc(share.shared_at),
        expires_at=as_utc(share.expires_at),
        is_revoked=share.is_revoked,
    )


class DocumentService:
    """
    Document lifecycle manager.

    Collaborators are injected: a session factory for the relational store,
    a BlobStore for payloads, and the audit trail. Each public operation is
    one unit of work.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        blob_store: BlobStore,
        audit: Optional[AuditTrail] = None,
        shares: Optional[ShareRegistry] = None,
        tags: Optional[TagCatalog] = None,
        max_page_size: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.blob_store = blob_store
        self.audit = audit or AuditTrail(session_factory)
        self.shares = shares or ShareRegistry()
        self.tags = tags or TagCatalog(session_factory)
        self._max_page_size = max_page_size
        self._clock = clock

    # -------------------------------------------------------------------
    # Upload
    # -------------------------------------------------------------------

    def upload(
        self,
        identity: Identity,
        file: Union[bytes, BinaryIO],
        file_name: str,
        content_type: str,
        request: DocumentUploadRequest,
        file_size: Optional[int] = None,
    ) -> DocumentResponse:
        """
        Store a new document owned by the caller.

        Raises:
            EDMSSecurityError:   caller's role cannot create documents (audited).
            EDMSValidationError: disallowed content type, empty or oversized file.
            EDMSStorageError:    the blob store could not write the payload.
        """
        if not access.can_create_documents(identity.role):
            self._record_denial(identity, None, "Upload Denied", f"Attempted to upload: {request.title}")
            raise EDMSSecurityError(
                "Your role cannot upload documents",
                user_id=identity.user_id,
                role=identity.role.label,
                required=Role.CONTRIBUTOR.label,
            )

        if isinstance(file, (bytes, bytearray)):
            file_size = len(file) if file_size is None else file_size
            file = io.BytesIO(file)

        if not file_name or not file_name.strip():
            raise EDMSValidationError("File name is required", user_id=identity.user_id)
        if not self.blob_store.is_allowed_type(content_type):
            raise EDMSValidationError(
                f"File type '{content_type}' is not allowed",
                user_id=identity.user_id,
                content_type=content_type,
            )
        if file_size is not None:
            if file_size <= 0:
                raise EDMSValidationError("File is empty", user_id=identity.user_id)
            if file_size > self.blob_store.max_size():
                raise EDMSValidationError(
                    f"File exceeds maximum size of {self.blob_store.max_size()} bytes",
                    user_id=identity.user_id,
                    file_size=file_size,
                )

        saved = self.blob_store.save(file, file_name, content_type)
        if not saved.success:
            if saved.too_large:
                raise EDMSValidationError(saved.error, user_id=identity.user_id)
            raise EDMSStorageError(saved.error or "Failed to save file", user_id=identity.user_id)
        if saved.size == 0:
            self.blob_store.delete(saved.path)
            raise EDMSValidationError("File is empty", user_id=identity.user_id)

        now = self._clock()
        try:
            with session_scope(self._session_factory) as session:
                doc = Document(
                    title=request.title,
                    description=request.description,
                    file_name=file_name.strip()[:500],
                    file_path=saved.path,
                    file_size=saved.size,
                    content_type=content_type,
                    access_type=AccessType(request.access_type).value,
                    uploaded_by=identity.user_id,
                    created_at=now,
                    last_modified_at=now,
                )
                DocumentRepository(session).add(doc)
                self.tags.assign(session, doc, request.tags, identity.user_id)
                self.audit.record(
                    session, doc.id, identity.user_id, "Upload Document",
                    AuditActionType.CREATE, f"Uploaded document: {doc.title}",
                )
                session.flush()
                response = self._to_response(session, identity, doc, now)
        except Exception:
            self.blob_store.delete(saved.path)
            raise

        log(log_document_event("document_uploaded", response.id, identity.user_id, identity.role.label))
        logger.info("Document uploaded: %s by %s", response.id, identity.user_id)
        return response

    # -------------------------------------------------------------------
    # Read
    # -------------------------------------------------------------------

    def get(self, identity: Identity, document_id: str) -> DocumentResponse:
        """
        Raises:
            EDMSNotFoundError: missing, deleted, or not visible to the caller.
        """
        now = self._clock()
        with session_scope(self._session_factory) as session:
            doc = self._require(session, document_id)
            if self._viewable(session, identity, doc, now):
                self.audit.record(
                    session, doc.id, identity.user_id, "View Document",
                    AuditActionType.READ, f"Viewed document: {doc.title}",
                )
                log(log_document_event("document_read", doc.id, identity.user_id, identity.role.label))
                return self._to_response(session, identity, doc, now)
            title = doc.title
        raise self._deny(identity, document_id, "Access Denied", f"Attempted to access document: {title}")

    def list_mine(self, identity: Identity, page_number: int = 1, page_size: int = 20):
        self._check_page(page_number, page_size)
        with self._session_factory() as session:
            docs, total = DocumentRepository(session).page_owned(identity.user_id, page_number, page_size)
            return self._page_response(docs, total, page_number, page_size)

    def list_shared_with_me(self, identity: Identity, page_number: int = 1, page_size: int = 20):
        """Documents with an active share for the caller. Expired and revoked shares grant nothing."""
        self._check_page(page_number, page_size)
        with self._session_factory() as session:
            docs, total = DocumentRepository(session).page_shared_with(
                identity.user_id, page_number, page_size, now=self._clock()
            )
            return self._page_response(docs, total, page_number, page_size)

    def list_public(self, identity: Identity, page_number: int = 1, page_size: int = 20):
        self._check_page(page_number, page_size)
        with self._session_factory() as session:
            docs, total = DocumentRepository(session).page_public(page_number, page_size)
            return self._page_response(docs, total, page_number, page_size)

    def search(self, identity: Identity, request: DocumentSearchRequest) -> PaginatedResponse[DocumentListResponse]:
        """
        Search the union of the caller's own, shared-with-me and public
        documents. Filters are conjunctive; within ``tags`` any match counts.
        """
        self._check_page(request.page_number, request.page_size)
        now = self._clock()
        with self._session_factory() as session:
            repo = DocumentRepository(session)
            candidates = {}
            for doc in (
                repo.all_owned(identity.user_id)
                + repo.all_shared_with(identity.user_id, now)
                + repo.all_public()
            ):
                candidates.setdefault(doc.id, doc)

            matches = [d for d in candidates.values() if self._matches(d, request)]
            matches.sort(key=lambda d: (as_utc(d.created_at), d.id), reverse=True)
            items = [self._to_list_response(d, now) for d in matches]
        return PaginatedResponse[DocumentListResponse].paginate(
            items, request.page_number, request.page_size
        )

    # -------------------------------------------------------------------
    # Update / Delete
    # -------------------------------------------------------------------

    def update(self, identity: Identity, document_id: str, request: DocumentUpdateRequest) -> DocumentResponse:
        """
        Partial update; only fields present in ``request`` are applied.

        Raises:
            EDMSNotFoundError: missing, deleted, or not editable by the caller.
        """
        now = self._clock()
        with session_scope(self._session_factory) as session:
            doc = self._require(session, document_id)
            if self._editable(session, identity, doc, now):
                if request.supplied("title") and request.title and request.title.strip():
                    doc.title = request.title.strip()
                if request.supplied("description"):
                    doc.description = request.description
                if request.supplied("access_type") and request.access_type is not None:
                    doc.access_type = AccessType(request.access_type).value
                if request.supplied("tags") and request.tags is not None:
                    self.tags.assign(session, doc, request.tags, identity.user_id)
                doc.last_modified_at = now
                self.audit.record(
                    session, doc.id, identity.user_id, "Update Document",
                    AuditActionType.UPDATE, f"Updated document: {doc.title}",
                )
                session.flush()
                log(log_document_event("document_updated", doc.id, identity.user_id, identity.role.label))
                return self._to_response(session, identity, doc, now)
            title = doc.title
        raise self._deny(identity, document_id, "Edit Denied", f"Attempted to edit document: {title}")

    def delete(self, identity: Identity, document_id: str) -> None:
        """
        Soft delete. Owner only, whatever the caller's role.

        The blob is removed after the commit on a best-effort basis; a
        failure there is logged and the document stays deleted.
        """
        now = self._clock()
        with session_scope(self._session_factory) as session:
            doc = self._require(session, document_id)
            allowed = doc.uploaded_by == identity.user_id
            title, blob_path = doc.title, doc.file_path
            if allowed:
                doc.is_deleted = True
                doc.deleted_at = now
                doc.last_modified_at = now
                self.audit.record(
                    session, doc.id, identity.user_id, "Delete Document",
                    AuditActionType.DELETE, f"Deleted document: {title}",
                )
        if not allowed:
            raise self._deny(identity, document_id, "Delete Denied", f"Attempted to delete document: {title}")

        if blob_path and not self.blob_store.delete(blob_path):
            logger.warning("Blob %s for deleted document %s could not be removed", blob_path, document_id)
        log(log_document_event("document_deleted", document_id, identity.user_id, identity.role.label))

    # -------------------------------------------------------------------
    # Download
    # -------------------------------------------------------------------

    def download(self, identity: Identity, document_id: str) -> DownloadResult:
        """
        Raises:
            EDMSNotFoundError: missing, deleted, or not visible to the caller.
            EDMSStorageError:  the metadata exists but the payload is gone.
        """
        now = self._clock()
        with session_scope(self._session_factory) as session:
            doc = self._require(session, document_id)
            allowed = self._viewable(session, identity, doc, now)
            title, blob_path = doc.title, doc.file_path
            file_name, content_type = doc.file_name, doc.content_type
        if not allowed:
            raise self._deny(identity, document_id, "Download Denied", f"Attempted to download document: {title}")

        blob = self.blob_store.read(blob_path) if blob_path else None
        if blob is None:
            self.audit.record_standalone(
                document_id, identity.user_id, "Download Document", AuditActionType.DOWNLOAD,
                f"Downloaded document: {title}", success=False,
                error_message="File not found in storage",
            )
            logger.error("Blob %s missing for document %s", blob_path, document_id)
            raise EDMSStorageError(
                "Document file not found in storage",
                document_id=document_id,
                user_id=identity.user_id,
                path=blob_path,
            )

        stream, _ = blob
        self.audit.record_standalone(
            document_id, identity.user_id, "Download Document", AuditActionType.DOWNLOAD,
            f"Downloaded document: {title}",
        )
        log(log_document_event("document_downloaded", document_id, identity.user_id, identity.role.label))
        return DownloadResult(stream=stream, file_name=file_name, content_type=content_type)

    # -------------------------------------------------------------------
    # Sharing
    # -------------------------------------------------------------------

    def share(self, identity: Identity, request: ShareDocumentRequest) -> DocumentShareResponse:
        """
        Grant (or update) a share. Owner only.

        Raises:
            EDMSValidationError: sharing with oneself.
            EDMSNotFoundError:   missing/deleted document, or caller is not the owner.
        """
        target = request.shared_with_user_id.strip()
        if target == identity.user_id:
            raise EDMSValidationError(
                "Cannot share a document with yourself",
                user_id=identity.user_id,
                document_id=request.document_id,
            )

        now = self._clock()
        with self.shares.document_lock(request.document_id):
            with session_scope(self._session_factory) as session:
                doc = self._require(session, request.document_id)
                title = doc.title
                if doc.uploaded_by == identity.user_id:
                    share, created = self.shares.grant_or_update(
                        session, doc.id, target, request.permission_level,
                        request.expires_at, identity.user_id, now,
                    )
                    verb = "Shared" if created else "Updated share of"
                    self.audit.record(
                        session, doc.id, identity.user_id, "Share Document",
                        AuditActionType.SHARE, f"{verb} document with user: {target}",
                    )
                    log(log_share_event(
                        "document_shared", doc.id, identity.user_id, target,
                        share.permission_level, share.id,
                    ))
                    return to_share_response(share)
        raise self._deny(
            identity, request.document_id, "Share Denied", f"Attempted to share document: {title}"
        )

    def revoke_share(self, identity: Identity, share_id: str) -> bool:
        """
        Revoke a share. Owner of the shared document only.

        Returns True if the share was revoked now, False if it already was
        (nothing changes and nothing is audited).

        Raises:
            EDMSNotFoundError: share missing (not audited), or caller does
                               not own the document (audited).
        """
        with self._session_factory() as session:
            share = ShareRepository(session).get(share_id)
            if share is None:
                raise EDMSNotFoundError("Share not found", user_id=identity.user_id, share_id=share_id)
            document_id = share.document_id

        now = self._clock()
        with self.shares.document_lock(document_id):
            with session_scope(self._session_factory) as session:
                share = ShareRepository(session).get(share_id)
                doc = DocumentRepository(session).get(document_id, include_deleted=True)
                allowed = doc is not None and doc.uploaded_by == identity.user_id
                target = share.shared_with_user_id
                changed = False
                if allowed:
                    changed = self.shares.revoke(session, share_id, identity.user_id, now)
                    if changed:
                        self.audit.record(
                            session, document_id, identity.user_id, "Revoke Share",
                            AuditActionType.UPDATE, f"Revoked share for user: {target}",
                        )
        if not allowed:
            raise self._deny(identity, document_id, "Revoke Denied", f"Attempted to revoke share {share_id}")
        if changed:
            log(log_share_event("share_revoked", document_id, identity.user_id, target, share_id=share_id))
        return changed

    def list_shares(self, identity: Identity, document_id: str) -> List[DocumentShareResponse]:
        """
        Non-revoked shares of a document, newest first. Owner only: anyone
        else, and any missing document, gets an empty list and no audit row.
        """
        with self._session_factory() as session:
            doc = DocumentRepository(session).get(document_id)
            if doc is None or doc.uploaded_by != identity.user_id:
                return []
            return [to_share_response(s) for s in self.shares.shares_for_document(session, document_id)]

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    @staticmethod
    def _require(session: Session, document_id: str) -> Document:
        doc = DocumentRepository(session).get(document_id)
        if doc is None:
            raise EDMSNotFoundError(f"Document {document_id} not found", document_id=document_id)
        return doc

    def _viewable(self, session: Session, identity: Identity, doc: Document, now: datetime) -> bool:
        if access.can_view(identity.role, identity.user_id, doc):
            return True
        return doc.access_type == AccessType.RESTRICTED.value and self.shares.has_active_share(
            session, doc.id, identity.user_id, now
        )

    def _editable(self, session: Session, identity: Identity, doc: Document, now: datetime) -> bool:
        if access.can_edit(identity.role, identity.user_id, doc):
            return True
        share = self.shares.active_share_for(session, doc.id, identity.user_id, now)
        return access.has_share_edit_grant(share, now)

    def _record_denial(self, identity: Identity, document_id: Optional[str], action: str, details: str) -> None:
        self.audit.record_denial(document_id, identity.user_id, action, details)
        log(log_security_event(
            "access_denied", document_id or "-", "documents",
            identity.user_id, identity.role.label, action,
        ))

    def _deny(self, identity: Identity, document_id: str, action: str, details: str) -> EDMSNotFoundError:
        self._record_denial(identity, document_id, action, details)
        return EDMSNotFoundError(
            f"Document {document_id} not found",
            document_id=document_id,
            user_id=identity.user_id,
        )

    def _check_page(self, page_number: int, page_size: int) -> None:
        if page_number < 1:
            raise EDMSValidationError("Page number must be greater than 0", page_number=page_number)
        if page_size < 1 or page_size > self._max_page_size:
            raise EDMSValidationError(
                f"Page size must be between 1 and {self._max_page_size}", page_size=page_size
            )

    @staticmethod
    def _matches(doc: Document, request: DocumentSearchRequest) -> bool:
        if request.search_term and request.search_term.strip():
            term = request.search_term.strip().lower()
            haystacks = (doc.title, doc.description or "", doc.file_name)
            if not any(term in h.lower() for h in haystacks):
                return False
        if request.access_type is not None and doc.access_type != AccessType(request.access_type).value:
            return False
        if request.content_type and request.content_type.strip().lower() not in doc.content_type.lower():
            return False
        if request.tags:
            wanted = {t.strip().lower() for t in request.tags if t and t.strip()}
            if wanted and not wanted & {n.lower() for n in doc.tag_names}:
                return False
        return True

    def _page_response(self, docs: List[Document], total: int, page_number: int, page_size: int):
        now = self._clock()
        return PaginatedResponse[DocumentListResponse](
            items=[self._to_list_response(d, now) for d in docs],
            total_count=total,
            page_number=page_number,
            page_size=page_size,
            total_pages=-(-total // page_size),
        )

    @staticmethod
    def _to_list_response(doc: Document, now: datetime) -> DocumentListResponse:
        return DocumentListResponse(
            id=doc.id,
            title=doc.title,
            description=doc.description,
            file_name=doc.file_name,
            file_size=doc.file_size,
            content_type=doc.content_type,
            access_type=doc.access_type,
            uploaded_by=doc.uploaded_by,
            created_at=as_utc(doc.created_at),
            last_modified_at=as_utc(doc.last_modified_at),
            tag_names=doc.tag_names,
            is_shared=any(s.is_active(now) for s in doc.shares),
        )

    def _to_response(self, session: Session, identity: Identity, doc: Document, now: datetime) -> DocumentResponse:
        is_owner = doc.uploaded_by == identity.user_id
        return DocumentResponse(
            id=doc.id,
            title=doc.title,
            description=doc.description,
            file_name=doc.file_name,
            file_size=doc.file_size,
            content_type=doc.content_type,
            access_type=doc.access_type,
            uploaded_by=doc.uploaded_by,
            created_at=as_utc(doc.created_at),
            last_modified_at=as_utc(doc.last_modified_at),
            tags=[to_tag_response(dt.tag) for dt in doc.document_tags if dt.tag is not None],
            shares=[to_share_response(s) for s in doc.shares if s.is_active(now)],
            can_edit=self._editable(session, identity, doc, now),
            can_delete=is_owner,
            can_share=is_owner,
        )
