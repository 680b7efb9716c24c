"""
EDMS Audit Trail — Append-only record of every document action and denial.

Two write paths:
- record():          staged in the caller's unit of work; commits (or rolls
                     back) together with the operation it describes.
- record_denial() /
  record_standalone(): written and committed in a session of their own, so
                     a denial is on record even though the guarded operation
                     never ran.

There is no update or delete surface.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from edms.db.base import utcnow
from edms.db.models import AuditLog
from edms.db.repositories import AuditRepository
from edms.db.session import SessionFactory, session_scope
from edms.documents.models import AuditActionType
from edms.engine.context import get_request_context
from edms.engine.errors import EDMSSecurityError
from edms.security.access import can_view_audit_logs
from edms.security.roles import Role

logger = logging.getLogger("edms.audit.trail")


def _clip(value: Optional[str], limit: int) -> Optional[str]:
    if value is None:
        return None
    return value if len(value) <= limit else value[: limit - 3] + "..."


class AuditTrail:

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------

    def _build(
        self,
        document_id: Optional[str],
        user_id: str,
        action: str,
        action_type: AuditActionType,
        details: Optional[str],
        success: bool,
        error_message: Optional[str],
    ) -> AuditLog:
        ctx = get_request_context()
        return AuditLog(
            document_id=document_id,
            user_id=_clip(str(user_id), 100),
            action=_clip(action, 100),
            action_type=AuditActionType(action_type).value,
            details=_clip(details, 2000),
            timestamp=utcnow(),
            is_successful=success,
            error_message=_clip(error_message, 1000),
            ip_address=_clip(ctx.ip_address, 50) if ctx else None,
            user_agent=_clip(ctx.user_agent, 500) if ctx else None,
        )

    def record(
        self,
        session: Session,
        document_id: Optional[str],
        user_id: str,
        action: str,
        action_type: AuditActionType,
        details: Optional[str] = None,
        success: bool = True,
        error_message: Optional[str] = None,
    ) -> AuditLog:
        """Stage an audit row in ``session``; it lands when the caller commits."""
        entry = self._build(document_id, user_id, action, action_type, details, success, error_message)
        AuditRepository(session).add(entry)
        return entry

    def record_standalone(
        self,
        document_id: Optional[str],
        user_id: str,
        action: str,
        action_type: AuditActionType,
        details: Optional[str] = None,
        success: bool = True,
        error_message: Optional[str] = None,
    ) -> AuditLog:
        with session_scope(self._session_factory) as session:
            return self.record(
                session, document_id, user_id, action, action_type, details, success, error_message
            )

    def record_denial(
        self,
        document_id: Optional[str],
        user_id: str,
        action: str,
        details: Optional[str] = None,
        error_message: str = "Access denied",
    ) -> AuditLog:
        """Write an AccessDenied row in its own commit."""
        logger.info("Access denied: user=%s action=%s document=%s", user_id, action, document_id)
        return self.record_standalone(
            document_id=document_id,
            user_id=user_id,
            action=action,
            action_type=AuditActionType.ACCESS_DENIED,
            details=details,
            success=False,
            error_message=error_message,
        )

    # -------------------------------------------------------------------
    # Queries (newest first)
    # -------------------------------------------------------------------

    def _read(self, fn):
        with self._session_factory() as session:
            return fn(AuditRepository(session))

    def by_user(self, user_id: str, limit: Optional[int] = None) -> List[AuditLog]:
        return self._read(lambda repo: repo.by_user(user_id, limit))

    def by_document(self, document_id: str, limit: Optional[int] = None) -> List[AuditLog]:
        return self._read(lambda repo: repo.by_document(document_id, limit))

    def by_action_type(self, action_type: AuditActionType, limit: Optional[int] = None) -> List[AuditLog]:
        return self._read(lambda repo: repo.by_action_type(action_type, limit))

    def by_date_range(self, start: datetime, end: datetime, limit: Optional[int] = None) -> List[AuditLog]:
        return self._read(lambda repo: repo.by_date_range(start, end, limit))

    def failed(self, limit: Optional[int] = None) -> List[AuditLog]:
        return self._read(lambda repo: repo.failed(limit))

    def count_by_user(self, user_id: str) -> int:
        return self._read(lambda repo: repo.count_by_user(user_id))

    def count_by_action_type(self, action_type: AuditActionType) -> int:
        return self._read(lambda repo: repo.count_by_action_type(action_type))

    def count_failed(self) -> int:
        return self._read(lambda repo: repo.count_failed())

    def query_logs(
        self,
        identity,
        user_id: Optional[str] = None,
        document_id: Optional[str] = None,
        action_type: Optional[AuditActionType] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        failed_only: bool = False,
        limit: int = 100,
    ) -> List[AuditLog]:
        """
        Filtered audit query for administrators.

        Raises:
            EDMSSecurityError: caller is not an Admin.
        """
        if not can_view_audit_logs(identity.role):
            raise EDMSSecurityError(
                "Only administrators may view audit logs",
                user_id=identity.user_id,
                role=identity.role.label,
                required=Role.ADMIN.label,
            )
        return self._read(
            lambda repo: repo.search(
                user_id=user_id,
                document_id=document_id,
                action_type=action_type,
                start=start,
                end=end,
                failed_only=failed_only,
                limit=limit,
            )
        )
