"""
EDMS Tag Catalog — globally unique, case-insensitive tag names.

Tags are reused by name: "Finance", "finance" and " FINANCE " all resolve
to the row created first, which keeps its original spelling.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from edms.db.models import Document, DocumentTag, Tag
from edms.db.repositories import TagRepository
from edms.db.session import SessionFactory, session_scope
from edms.documents.models import TagResponse
from edms.engine.errors import EDMSConflictError, EDMSNotFoundError, EDMSSecurityError
from edms.engine.logging import log, log_tag_event
from edms.security.access import can_manage_tags
from edms.security.roles import Role

logger = logging.getLogger("edms.documents.tags")


def normalize_tag_names(names: Iterable[str]) -> List[str]:
    """Trim, drop blanks, and de-duplicate case-insensitively (first spelling wins)."""
    seen = set()
    result = []
    for name in names or []:
        name = (name or "").strip()
        key = name.lower()
        if not name or key in seen:
            continue
        seen.add(key)
        result.append(name)
    return result


def to_tag_response(tag: Tag) -> TagResponse:
    return TagResponse(id=tag.id, name=tag.name, color=tag.color)


class TagCatalog:

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    # -------------------------------------------------------------------
    # Within a caller's unit of work
    # -------------------------------------------------------------------

    def get_or_create(
        self, session: Session, name: str, created_by: str, color: Optional[str] = None
    ) -> Tag:
        repo = TagRepository(session)
        tag = repo.by_name(name)
        if tag is None:
            tag = Tag(
                name=name.strip(),
                normalized_name=name.strip().lower(),
                color=color,
                created_by=created_by,
            )
            session.add(tag)
            session.flush()
        return tag

    def assign(self, session: Session, document: Document, names: Iterable[str], assigned_by: str) -> None:
        """Replace the document's tag set with ``names``."""
        document.document_tags.clear()
        session.flush()
        for name in normalize_tag_names(names):
            tag = self.get_or_create(session, name, assigned_by)
            document.document_tags.append(DocumentTag(tag=tag, assigned_by=assigned_by))

    # -------------------------------------------------------------------
    # Catalog operations
    # -------------------------------------------------------------------

    def list_all(self) -> List[TagResponse]:
        with self._session_factory() as session:
            return [to_tag_response(t) for t in TagRepository(session).all()]

    def get(self, tag_id: str) -> TagResponse:
        with self._session_factory() as session:
            tag = TagRepository(session).get(tag_id)
            if tag is None:
                raise EDMSNotFoundError(f"Tag {tag_id} not found", tag_id=tag_id)
            return to_tag_response(tag)

    def popular(self, count: int = 10) -> List[TagResponse]:
        with self._session_factory() as session:
            return [to_tag_response(t) for t, _ in TagRepository(session).popular(count)]

    def create(self, name: str, created_by: str, color: Optional[str] = None) -> TagResponse:
        """
        Raises:
            EDMSConflictError: a tag with this name (any casing) exists.
        """
        with session_scope(self._session_factory) as session:
            if TagRepository(session).by_name(name) is not None:
                raise EDMSConflictError(f"Tag '{name.strip()}' already exists", name=name)
            tag = self.get_or_create(session, name, created_by, color)
            response = to_tag_response(tag)
        log(log_tag_event("tag_created", response.name, created_by))
        return response

    def delete(self, identity, tag_id: str) -> None:
        """Manager or above; removes the tag from every document."""
        if not can_manage_tags(identity.role):
            raise EDMSSecurityError(
                "Only managers and administrators may delete tags",
                user_id=identity.user_id,
                role=identity.role.label,
                required=Role.MANAGER.label,
            )
        with session_scope(self._session_factory) as session:
            tag = TagRepository(session).get(tag_id)
            if tag is None:
                raise EDMSNotFoundError(f"Tag {tag_id} not found", tag_id=tag_id)
            session.delete(tag)
        logger.info("Tag %s deleted by %s", tag_id, identity.user_id)
