"""
EDMS Access Decision Engine — pure permission predicates.

Every function here is total over well-formed input: no I/O, no exceptions,
no side effects. Share grants live in the store and are consulted by the
lifecycle manager, which combines them with these role/ownership checks:

    view  = can_view(...)  OR (Restricted AND active share)
    edit  = can_edit(...)  OR active Edit/FullControl share
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from edms.db.models import Document, DocumentShare
from edms.documents.models import EDIT_LEVELS, AccessType, PermissionLevel
from edms.security.roles import Role


def _is_owner(user_id: str, document: Document) -> bool:
    return document.uploaded_by == user_id


def _access_type(document: Document) -> AccessType:
    return AccessType(document.access_type)


def can_view(role: Role, user_id: str, document: Document) -> bool:
    if role >= Role.MANAGER:
        return True
    if _is_owner(user_id, document):
        return True
    return _access_type(document) is AccessType.PUBLIC


def can_edit(role: Role, user_id: str, document: Document) -> bool:
    if role >= Role.MANAGER:
        return True
    return role >= Role.CONTRIBUTOR and _is_owner(user_id, document)


# Same shape as can_edit. The lifecycle manager applies the stricter
# owner-only rule for delete and share on top of these.
def can_delete(role: Role, user_id: str, document: Document) -> bool:
    return can_edit(role, user_id, document)


def can_share(role: Role, user_id: str, document: Document) -> bool:
    return can_edit(role, user_id, document)


def can_view_audit_logs(role: Role) -> bool:
    return role == Role.ADMIN


def can_manage_users(role: Role) -> bool:
    return role == Role.ADMIN


def can_create_documents(role: Role) -> bool:
    return role >= Role.CONTRIBUTOR


def can_manage_tags(role: Role) -> bool:
    return role >= Role.MANAGER


def has_share_edit_grant(share: Optional[DocumentShare], now: Optional[datetime] = None) -> bool:
    """True if ``share`` is active and grants Edit or FullControl."""
    if share is None or not share.is_active(now):
        return False
    return PermissionLevel(share.permission_level) in EDIT_LEVELS
