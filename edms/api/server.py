"""
EDMS HTTP API — thin FastAPI glue over the document services.

Authentication: ``Authorization: Bearer <jwt>`` resolved once per request
into an Identity. Service outcomes map to status codes:

    EDMSNotFoundError   → 404      EDMSConflictError → 409
    EDMSSecurityError   → 403      EDMSStorageError  → 500
    EDMSValidationError → 400      missing/bad token → 401

Run:
    edms serve --config edms.yaml
or:
    uvicorn edms.api.server:create_app --factory
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.background import BackgroundTask

from edms.audit.trail import AuditTrail
from edms.db.session import init_db
from edms.documents.models import (
    AccessType,
    AuditActionType,
    CreateTagRequest,
    DocumentSearchRequest,
    DocumentUpdateRequest,
    DocumentUploadRequest,
    ShareDocumentRequest,
)
from edms.documents.service import DocumentService
from edms.documents.shares import ShareRegistry
from edms.documents.storage import LocalBlobStore
from edms.documents.tags import TagCatalog
from edms.engine.config import EDMSConfig, get_config
from edms.engine.context import RequestContext, set_request_context
from edms.engine.errors import (
    EDMSConflictError,
    EDMSError,
    EDMSNotFoundError,
    EDMSSecurityError,
    EDMSStorageError,
    EDMSValidationError,
)
from edms.engine.identity import AuthService, Identity, InMemoryUserDirectory, JWTIdentityProvider
from edms.engine.logging import init_logging, log, log_system_event, shutdown_logging

logger = logging.getLogger("edms.api.server")

ERROR_STATUS = (
    (EDMSNotFoundError, 404),
    (EDMSSecurityError, 403),
    (EDMSValidationError, 400),
    (EDMSConflictError, 409),
    (EDMSStorageError, 500),
)


class LoginRequest(BaseModel):
    email: str
    password: str


def status_for(error: EDMSError) -> int:
    for cls, status in ERROR_STATUS:
        if isinstance(error, cls):
            return status
    return 500


def content_disposition(file_name: str) -> str:
    """Attachment header with an ASCII fallback and an RFC 5987 UTF-8 name."""
    fallback = "".join(c if 32 <= ord(c) < 127 and c not in '"\\' else "_" for c in file_name)
    return f'attachment; filename="{fallback}"; filename*=UTF-8\'\'{quote(file_name, safe="")}'


def _error_body(error: EDMSError) -> Dict[str, Any]:
    body = {"error": error.error_type, "message": error.message}
    if isinstance(error, EDMSValidationError) and error.validation_errors:
        body["validation_errors"] = error.validation_errors
    return body


def create_app(
    config: Optional[EDMSConfig] = None,
    *,
    session_factory=None,
    blob_store=None,
    directory=None,
    provider: Optional[JWTIdentityProvider] = None,
    file_logging: bool = False,
) -> FastAPI:
    """
    Build the application. Any collaborator not passed in is built from
    ``config`` (loaded from edms.yaml when not given).
    """
    if config is None and (session_factory is None or blob_store is None or provider is None):
        config = get_config()

    if session_factory is None:
        db = config.database
        session_factory = init_db(
            db.url, create_tables=True,
            pool_size=db.pool_size, max_overflow=db.max_overflow,
            pool_timeout=db.pool_timeout, pool_recycle=db.pool_recycle,
            pool_pre_ping=db.pool_pre_ping,
        )
    if blob_store is None:
        blob_store = LocalBlobStore.from_config(config.storage)
    if provider is None:
        provider = JWTIdentityProvider.from_config(config.security)
    if directory is None:
        directory = InMemoryUserDirectory()

    audit = AuditTrail(session_factory)
    tags = TagCatalog(session_factory)
    documents = DocumentService(
        session_factory,
        blob_store,
        audit=audit,
        shares=ShareRegistry(),
        tags=tags,
        max_page_size=config.pagination.max_page_size if config else 100,
    )
    auth = AuthService(directory, provider, audit=audit)
    default_page_size = config.pagination.default_page_size if config else 20
    version = config.version if config else "1.0.0"

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if file_logging and config is not None:
            q = config.logging.async_queue
            init_logging(
                config.logging.directory,
                flush_interval_ms=q.flush_interval_ms,
                flush_batch_size=q.flush_batch_size,
                max_queue_size=q.max_queue_size,
            )
        log(log_system_event("startup", details={"version": version}))
        yield
        log(log_system_event("shutdown"))
        shutdown_logging()

    app = FastAPI(title="EDMS", description="Role-based document management", version=version, lifespan=lifespan)
    app.state.documents = documents
    app.state.auth = auth
    app.state.tags = tags
    app.state.audit = audit

    # -------------------------------------------------------------------
    # Error mapping
    # -------------------------------------------------------------------

    @app.exception_handler(EDMSError)
    async def handle_edms_error(request: Request, exc: EDMSError):
        status = status_for(exc)
        if status >= 500:
            logger.error("%r", exc)
        return JSONResponse(status_code=status, content=_error_body(exc))

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "error": "EDMSValidationError",
                "message": "Request validation failed",
                "validation_errors": [
                    f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()
                ],
            },
        )

    # -------------------------------------------------------------------
    # Authentication dependency
    # -------------------------------------------------------------------

    async def current_identity(
        request: Request,
        authorization: Optional[str] = Header(None),
        user_agent: Optional[str] = Header(None),
    ):
        if not authorization or not authorization.lower().startswith("bearer "):
            raise HTTPException(status_code=401, detail={"error": "missing_token", "message": "Bearer token required"})
        identity = provider.resolve(authorization[7:].strip())
        if identity is None:
            raise HTTPException(status_code=401, detail={"error": "invalid_token", "message": "Invalid or expired token"})
        # Sync handlers run in the threadpool with a copy of this context.
        set_request_context(RequestContext(
            identity=identity,
            ip_address=request.client.host if request.client else None,
            user_agent=user_agent,
        ))
        return identity

    # -------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------

    @app.get("/health")
    def health_check():
        """Public health check — no auth required."""
        database = "ok"
        try:
            with session_factory() as session:
                session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.warning("Health check database probe failed: %s", e)
            database = "unavailable"
        return {
            "status": "healthy" if database == "ok" else "degraded",
            "version": version,
            "database": database,
        }

    # -------------------------------------------------------------------
    # Auth
    # -------------------------------------------------------------------

    @app.post("/api/auth/login")
    def login(payload: LoginRequest):
        try:
            return auth.login(payload.email, payload.password)
        except EDMSSecurityError as e:
            raise HTTPException(status_code=401, detail={"error": "invalid_credentials", "message": e.message})

    @app.get("/api/auth/me")
    def me(identity: Identity = Depends(current_identity)):
        return auth.current_user(identity)

    @app.post("/api/auth/logout")
    def logout(identity: Identity = Depends(current_identity)):
        auth.logout(identity)
        return {"message": "Logged out"}

    @app.get("/api/auth/users")
    def list_users(identity: Identity = Depends(current_identity)):
        return auth.list_users(identity)

    # -------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------

    @app.post("/api/documents/upload", status_code=201)
    def upload_document(
        file: UploadFile = File(...),
        title: str = Form(...),
        description: Optional[str] = Form(None),
        access_type: str = Form(AccessType.PRIVATE.value),
        tags: List[str] = Form(default=[]),
        identity: Identity = Depends(current_identity),
    ):
        try:
            parsed_access = AccessType(access_type)
        except ValueError as e:
            raise EDMSValidationError(f"Invalid access type '{access_type}'") from e
        try:
            request = DocumentUploadRequest(
                title=title,
                description=description,
                access_type=parsed_access,
                tags=[part for t in tags for part in t.split(",")],
            )
        except ValidationError as e:
            raise EDMSValidationError(
                "Invalid upload request",
                validation_errors=[f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()],
            ) from e
        return documents.upload(
            identity,
            file.file,
            file.filename or "",
            file.content_type or "application/octet-stream",
            request,
            file_size=getattr(file, "size", None),
        )

    @app.get("/api/documents/my-documents")
    def my_documents(
        page_number: int = Query(1),
        page_size: int = Query(default_page_size),
        identity: Identity = Depends(current_identity),
    ):
        return documents.list_mine(identity, page_number, page_size)

    @app.get("/api/documents/shared-with-me")
    def shared_with_me(
        page_number: int = Query(1),
        page_size: int = Query(default_page_size),
        identity: Identity = Depends(current_identity),
    ):
        return documents.list_shared_with_me(identity, page_number, page_size)

    @app.get("/api/documents/public")
    def public_documents(
        page_number: int = Query(1),
        page_size: int = Query(default_page_size),
        identity: Identity = Depends(current_identity),
    ):
        return documents.list_public(identity, page_number, page_size)

    @app.post("/api/documents/search")
    def search_documents(request: DocumentSearchRequest, identity: Identity = Depends(current_identity)):
        return documents.search(identity, request)

    @app.post("/api/documents/share", status_code=201)
    def share_document(request: ShareDocumentRequest, identity: Identity = Depends(current_identity)):
        return documents.share(identity, request)

    @app.delete("/api/documents/shares/{share_id}", status_code=204)
    def revoke_share(share_id: str, identity: Identity = Depends(current_identity)):
        if not documents.revoke_share(identity, share_id):
            raise EDMSNotFoundError("Share already revoked", share_id=share_id)

    @app.get("/api/documents/{document_id}")
    def get_document(document_id: str, identity: Identity = Depends(current_identity)):
        return documents.get(identity, document_id)

    @app.put("/api/documents/{document_id}")
    def update_document(
        document_id: str, request: DocumentUpdateRequest, identity: Identity = Depends(current_identity)
    ):
        return documents.update(identity, document_id, request)

    @app.delete("/api/documents/{document_id}", status_code=204)
    def delete_document(document_id: str, identity: Identity = Depends(current_identity)):
        documents.delete(identity, document_id)

    @app.get("/api/documents/{document_id}/download")
    def download_document(document_id: str, identity: Identity = Depends(current_identity)):
        result = documents.download(identity, document_id)
        return StreamingResponse(
            iter(lambda: result.stream.read(8192), b""),
            media_type=result.content_type,
            headers={"Content-Disposition": content_disposition(result.file_name)},
            background=BackgroundTask(result.stream.close),
        )

    @app.get("/api/documents/{document_id}/shares")
    def list_document_shares(document_id: str, identity: Identity = Depends(current_identity)):
        return documents.list_shares(identity, document_id)

    # -------------------------------------------------------------------
    # Tags
    # -------------------------------------------------------------------

    @app.get("/api/tags")
    def list_tags(identity: Identity = Depends(current_identity)):
        return tags.list_all()

    @app.get("/api/tags/popular")
    def popular_tags(count: int = Query(10, ge=1, le=100), identity: Identity = Depends(current_identity)):
        return tags.popular(count)

    @app.post("/api/tags", status_code=201)
    def create_tag(request: CreateTagRequest, identity: Identity = Depends(current_identity)):
        return tags.create(request.name, identity.user_id, request.color)

    @app.get("/api/tags/{tag_id}")
    def get_tag(tag_id: str, identity: Identity = Depends(current_identity)):
        return tags.get(tag_id)

    @app.delete("/api/tags/{tag_id}", status_code=204)
    def delete_tag(tag_id: str, identity: Identity = Depends(current_identity)):
        tags.delete(identity, tag_id)

    # -------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------

    @app.get("/api/audit/logs")
    def audit_logs(
        user_id: Optional[str] = None,
        document_id: Optional[str] = None,
        action_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        failed_only: bool = False,
        limit: int = Query(100, ge=1, le=1000),
        identity: Identity = Depends(current_identity),
    ):
        parsed_type = None
        if action_type:
            try:
                parsed_type = AuditActionType(action_type)
            except ValueError as e:
                raise EDMSValidationError(f"Unknown action type '{action_type}'") from e
        entries = audit.query_logs(
            identity,
            user_id=user_id,
            document_id=document_id,
            action_type=parsed_type,
            start=start,
            end=end,
            failed_only=failed_only,
            limit=limit,
        )
        return [e.to_dict() for e in entries]

    return app
