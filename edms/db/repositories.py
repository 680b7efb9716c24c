"""
EDMS Repositories — query helpers over the SQLAlchemy session.

Each repository wraps one session and never commits; the caller owns the
unit of work (see ``edms.db.session.session_scope``).
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from edms.db.base import utcnow
from edms.db.models import AuditLog, Document, DocumentShare, DocumentTag, Tag
from edms.documents.models import AccessType, AuditActionType


def _active_share_filter(now: datetime):
    return (
        DocumentShare.is_revoked.is_(False),
        (DocumentShare.expires_at.is_(None)) | (DocumentShare.expires_at > now),
    )


class DocumentRepository:

    def __init__(self, session: Session):
        self.session = session

    def get(self, document_id: str, include_deleted: bool = False) -> Optional[Document]:
        stmt = select(Document).where(Document.id == document_id)
        if not include_deleted:
            stmt = stmt.where(Document.is_deleted.is_(False))
        return self.session.scalars(stmt).first()

    def add(self, document: Document) -> Document:
        self.session.add(document)
        self.session.flush()
        return document

    def _page(self, stmt, page_number: int, page_size: int) -> Tuple[List[Document], int]:
        total = self.session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        rows = self.session.scalars(
            stmt.order_by(Document.created_at.desc(), Document.id)
            .offset((page_number - 1) * page_size)
            .limit(page_size)
        ).all()
        return list(rows), total

    def _owned_stmt(self, user_id: str):
        return select(Document).where(
            Document.uploaded_by == user_id, Document.is_deleted.is_(False)
        )

    def _public_stmt(self):
        return select(Document).where(
            Document.access_type == AccessType.PUBLIC.value, Document.is_deleted.is_(False)
        )

    def _shared_stmt(self, user_id: str, now: datetime):
        shared_ids = select(DocumentShare.document_id).where(
            DocumentShare.shared_with_user_id == user_id, *_active_share_filter(now)
        )
        return select(Document).where(
            Document.id.in_(shared_ids), Document.is_deleted.is_(False)
        )

    def page_owned(self, user_id: str, page_number: int, page_size: int):
        return self._page(self._owned_stmt(user_id), page_number, page_size)

    def page_public(self, page_number: int, page_size: int):
        return self._page(self._public_stmt(), page_number, page_size)

    def page_shared_with(self, user_id: str, page_number: int, page_size: int, now=None):
        return self._page(self._shared_stmt(user_id, now or utcnow()), page_number, page_size)

    def all_owned(self, user_id: str) -> List[Document]:
        return list(self.session.scalars(self._owned_stmt(user_id)).all())

    def all_public(self) -> List[Document]:
        return list(self.session.scalars(self._public_stmt()).all())

    def all_shared_with(self, user_id: str, now: Optional[datetime] = None) -> List[Document]:
        return list(self.session.scalars(self._shared_stmt(user_id, now or utcnow())).all())


class ShareRepository:

    def __init__(self, session: Session):
        self.session = session

    def get(self, share_id: str) -> Optional[DocumentShare]:
        return self.session.get(DocumentShare, share_id)

    def active_for(
        self, document_id: str, user_id: str, now: Optional[datetime] = None
    ) -> List[DocumentShare]:
        """Active shares for (document, user), most recently granted first."""
        stmt = (
            select(DocumentShare)
            .where(
                DocumentShare.document_id == document_id,
                DocumentShare.shared_with_user_id == user_id,
                *_active_share_filter(now or utcnow()),
            )
            .order_by(DocumentShare.shared_at.desc())
        )
        return list(self.session.scalars(stmt).all())

    def for_document(self, document_id: str) -> List[DocumentShare]:
        stmt = (
            select(DocumentShare)
            .where(DocumentShare.document_id == document_id, DocumentShare.is_revoked.is_(False))
            .order_by(DocumentShare.shared_at.desc())
        )
        return list(self.session.scalars(stmt).all())

    def for_user(self, user_id: str, now: Optional[datetime] = None) -> List[DocumentShare]:
        stmt = (
            select(DocumentShare)
            .where(
                DocumentShare.shared_with_user_id == user_id,
                *_active_share_filter(now or utcnow()),
            )
            .order_by(DocumentShare.shared_at.desc())
        )
        return list(self.session.scalars(stmt).all())


class TagRepository:

    def __init__(self, session: Session):
        self.session = session

    def get(self, tag_id: str) -> Optional[Tag]:
        return self.session.get(Tag, tag_id)

    def by_name(self, name: str) -> Optional[Tag]:
        return self.session.scalars(
            select(Tag).where(Tag.normalized_name == name.strip().lower())
        ).first()

    def all(self) -> List[Tag]:
        return list(self.session.scalars(select(Tag).order_by(Tag.name)).all())

    def popular(self, count: int = 10) -> List[Tuple[Tag, int]]:
        usage = func.count(DocumentTag.id)
        stmt = (
            select(Tag, usage)
            .outerjoin(DocumentTag, DocumentTag.tag_id == Tag.id)
            .group_by(Tag.id)
            .order_by(usage.desc(), Tag.name)
            .limit(count)
        )
        return [(tag, uses) for tag, uses in self.session.execute(stmt).all()]


class AuditRepository:
    """Append-only: there is deliberately no update or delete here."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, entry: AuditLog) -> AuditLog:
        self.session.add(entry)
        return entry

    def _query(self, *criteria, limit: Optional[int] = None) -> List[AuditLog]:
        stmt = select(AuditLog).where(*criteria).order_by(AuditLog.timestamp.desc())
        if limit:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt).all())

    def _count(self, *criteria) -> int:
        return self.session.scalar(select(func.count(AuditLog.id)).where(*criteria)) or 0

    def by_user(self, user_id: str, limit: Optional[int] = None) -> List[AuditLog]:
        return self._query(AuditLog.user_id == user_id, limit=limit)

    def by_document(self, document_id: str, limit: Optional[int] = None) -> List[AuditLog]:
        return self._query(AuditLog.document_id == document_id, limit=limit)

    def by_action_type(self, action_type: AuditActionType, limit: Optional[int] = None):
        return self._query(AuditLog.action_type == AuditActionType(action_type).value, limit=limit)

    def by_date_range(self, start: datetime, end: datetime, limit: Optional[int] = None):
        return self._query(AuditLog.timestamp >= start, AuditLog.timestamp <= end, limit=limit)

    def failed(self, limit: Optional[int] = None) -> List[AuditLog]:
        return self._query(AuditLog.is_successful.is_(False), limit=limit)

    def search(
        self,
        user_id: Optional[str] = None,
        document_id: Optional[str] = None,
        action_type: Optional[AuditActionType] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        failed_only: bool = False,
        limit: Optional[int] = None,
    ) -> List[AuditLog]:
        """Conjunction of whichever filters are given."""
        criteria = []
        if user_id:
            criteria.append(AuditLog.user_id == user_id)
        if document_id:
            criteria.append(AuditLog.document_id == document_id)
        if action_type:
            criteria.append(AuditLog.action_type == AuditActionType(action_type).value)
        if start:
            criteria.append(AuditLog.timestamp >= start)
        if end:
            criteria.append(AuditLog.timestamp <= end)
        if failed_only:
            criteria.append(AuditLog.is_successful.is_(False))
        return self._query(*criteria, limit=limit)

    def count_by_user(self, user_id: str) -> int:
        return self._count(AuditLog.user_id == user_id)

    def count_by_action_type(self, action_type: AuditActionType) -> int:
        return self._count(AuditLog.action_type == AuditActionType(action_type).value)

    def count_failed(self) -> int:
        return self._count(AuditLog.is_successful.is_(False))
