"""
EDMS Models — SQLAlchemy tables for the document store.

Tables:
1. documents        — Document metadata (soft delete, immutable owner)
2. document_shares  — Time-bounded, revocable per-user grants
3. tags             — Globally unique (case-insensitive) tag names
4. document_tags    — Document ↔ Tag junction with assignment metadata
5. audit_logs       — Append-only access/action trail (survives documents)
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from edms.db.base import Base, SoftDeleteMixin, as_utc, new_id, utcnow
from edms.documents.models import EDIT_LEVELS, AccessType, AuditActionType, PermissionLevel


def _values(enum_cls) -> str:
    return ", ".join(f"'{m.value}'" for m in enum_cls)


# ---------------------------------------------------------------------------
# 1. Documents
# ---------------------------------------------------------------------------

class Document(Base, SoftDeleteMixin):
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(255), nullable=False)
    description = Column(String(2000), nullable=True)
    file_name = Column(String(500), nullable=False)
    file_path = Column(String(500), nullable=True)
    file_size = Column(BigInteger, nullable=False)
    content_type = Column(String(100), nullable=False)
    access_type = Column(String(20), nullable=False, default=AccessType.PRIVATE.value, index=True)
    uploaded_by = Column(String(100), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    last_modified_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    document_tags = relationship(
        "DocumentTag",
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    shares = relationship(
        "DocumentShare",
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint(f"access_type IN ({_values(AccessType)})", name="ck_documents_access_type"),
        Index("idx_documents_owner_deleted", "uploaded_by", "is_deleted"),
    )

    @property
    def access(self) -> AccessType:
        return AccessType(self.access_type)

    @property
    def tag_names(self) -> list:
        return [dt.tag.name for dt in self.document_tags if dt.tag is not None]

    def __repr__(self) -> str:
        return f"<Document(id='{self.id}', title='{self.title}', owner='{self.uploaded_by}')>"


# ---------------------------------------------------------------------------
# 2. Document Shares
# ---------------------------------------------------------------------------

class DocumentShare(Base):
    __tablename__ = "document_shares"

    id = Column(String(36), primary_key=True, default=new_id)
    document_id = Column(
        String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False
    )
    shared_with_user_id = Column(String(100), nullable=False)
    permission_level = Column(String(20), nullable=False, default=PermissionLevel.VIEW.value)
    shared_by = Column(String(100), nullable=False)
    shared_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    is_revoked = Column(Boolean, default=False, nullable=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    revoked_by = Column(String(100), nullable=True)

    document = relationship("Document", back_populates="shares")

    __table_args__ = (
        CheckConstraint(
            f"permission_level IN ({_values(PermissionLevel)})",
            name="ck_shares_permission_level",
        ),
        Index("idx_shares_doc_user", "document_id", "shared_with_user_id", "is_revoked"),
        Index("idx_shares_user", "shared_with_user_id"),
    )

    @property
    def level(self) -> PermissionLevel:
        return PermissionLevel(self.permission_level)

    def is_active(self, now: Optional[datetime] = None) -> bool:
        """Active iff not revoked and not expired."""
        if self.is_revoked:
            return False
        if self.expires_at is None:
            return True
        return as_utc(self.expires_at) > (now or utcnow())

    def grants_edit(self, now: Optional[datetime] = None) -> bool:
        return self.is_active(now) and self.level in EDIT_LEVELS

    def __repr__(self) -> str:
        return (
            f"<DocumentShare(document='{self.document_id}', user='{self.shared_with_user_id}', "
            f"level='{self.permission_level}', revoked={self.is_revoked})>"
        )


# ---------------------------------------------------------------------------
# 3. Tags
# ---------------------------------------------------------------------------

class Tag(Base):
    __tablename__ = "tags"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(50), nullable=False)
    # Lower-cased copy of name; the unique index enforces case-insensitive uniqueness.
    normalized_name = Column(String(50), nullable=False, unique=True, index=True)
    color = Column(String(20), nullable=True)
    created_by = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    document_tags = relationship(
        "DocumentTag", back_populates="tag", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Tag(name='{self.name}')>"


# ---------------------------------------------------------------------------
# 4. Document-Tags Junction
# ---------------------------------------------------------------------------

class DocumentTag(Base):
    __tablename__ = "document_tags"

    id = Column(String(36), primary_key=True, default=new_id)
    document_id = Column(
        String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False
    )
    tag_id = Column(String(36), ForeignKey("tags.id", ondelete="CASCADE"), nullable=False)
    assigned_by = Column(String(100), nullable=False)
    assigned_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    document = relationship("Document", back_populates="document_tags")
    tag = relationship("Tag", back_populates="document_tags", lazy="joined")

    __table_args__ = (
        UniqueConstraint("document_id", "tag_id", name="uq_document_tag"),
        Index("idx_dt_document_id", "document_id"),
        Index("idx_dt_tag_id", "tag_id"),
    )


# ---------------------------------------------------------------------------
# 5. Audit Logs
# ---------------------------------------------------------------------------

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    document_id = Column(
        String(36), ForeignKey("documents.id", ondelete="SET NULL"), nullable=True, index=True
    )
    user_id = Column(String(100), nullable=False, index=True)
    action = Column(String(100), nullable=False)
    action_type = Column(String(20), nullable=False, index=True)
    details = Column(String(2000), nullable=True)
    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    is_successful = Column(Boolean, default=True, nullable=False, index=True)
    error_message = Column(String(1000), nullable=True)
    ip_address = Column(String(50), nullable=True)
    user_agent = Column(String(500), nullable=True)

    __table_args__ = (
        CheckConstraint(f"action_type IN ({_values(AuditActionType)})", name="ck_audit_action_type"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "user_id": self.user_id,
            "action": self.action,
            "action_type": self.action_type,
            "details": self.details,
            "timestamp": as_utc(self.timestamp).isoformat() if self.timestamp else None,
            "is_successful": self.is_successful,
            "error_message": self.error_message,
        }

    def __repr__(self) -> str:
        return f"<AuditLog(user='{self.user_id}', type='{self.action_type}', ok={self.is_successful})>"
