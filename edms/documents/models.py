"""
EDMS Document Models — Domain enums and Pydantic request/response definitions.

Requests are validated here before any store mutation (no audit row is
written for a rejected request). Responses are what the lifecycle manager
hands back to the HTTP layer.

Limits:
    title ≤ 255, description ≤ 2000, tag name ≤ 50, page size 1..100
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import BinaryIO, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field, field_validator


class _CaseInsensitiveEnum(str, Enum):
    """String enum that accepts any casing of its values."""

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value.lower() == lowered:
                    return member
        return None


class AccessType(_CaseInsensitiveEnum):
    """Per-document visibility class."""
    PUBLIC = "Public"          # all authenticated users
    PRIVATE = "Private"        # owner only
    RESTRICTED = "Restricted"  # owner + explicit shares


class PermissionLevel(_CaseInsensitiveEnum):
    VIEW = "View"
    EDIT = "Edit"
    FULL_CONTROL = "FullControl"


EDIT_LEVELS = frozenset({PermissionLevel.EDIT, PermissionLevel.FULL_CONTROL})


class AuditActionType(_CaseInsensitiveEnum):
    CREATE = "Create"
    READ = "Read"
    UPDATE = "Update"
    DELETE = "Delete"
    SHARE = "Share"
    DOWNLOAD = "Download"
    LOGIN = "Login"
    LOGOUT = "Logout"
    ACCESS_DENIED = "AccessDenied"


def _clean_tags(tags: Optional[List[str]]) -> Optional[List[str]]:
    if tags is None:
        return None
    cleaned = []
    for tag in tags:
        name = (tag or "").strip()
        if not name:
            continue
        if len(name) > 50:
            raise ValueError("Tag name cannot exceed 50 characters")
        cleaned.append(name)
    return cleaned


def _ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class DocumentUploadRequest(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    access_type: AccessType = AccessType.PRIVATE
    tags: List[str] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Title is required")
        return v.strip()

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: List[str]) -> List[str]:
        return _clean_tags(v) or []


class DocumentUpdateRequest(BaseModel):
    """
    Partial update. Only fields present in the payload are applied
    (see ``model_fields_set``); an explicit ``description: null`` clears the
    description, a blank title is ignored, and ``tags`` replaces the whole set.
    """

    title: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    access_type: Optional[AccessType] = None
    tags: Optional[List[str]] = None

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _clean_tags(v)

    def supplied(self, field_name: str) -> bool:
        return field_name in self.model_fields_set


class DocumentSearchRequest(BaseModel):
    search_term: Optional[str] = None
    tags: Optional[List[str]] = None
    access_type: Optional[AccessType] = None
    content_type: Optional[str] = None
    page_number: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class ShareDocumentRequest(BaseModel):
    document_id: str = Field(min_length=1, max_length=36)
    shared_with_user_id: str = Field(min_length=1, max_length=100)
    permission_level: PermissionLevel = PermissionLevel.VIEW
    expires_at: Optional[datetime] = None

    @field_validator("expires_at")
    @classmethod
    def validate_expiry(cls, v: Optional[datetime]) -> Optional[datetime]:
        v = _ensure_utc(v)
        if v is not None and v <= datetime.now(timezone.utc):
            raise ValueError("expires_at must be in the future")
        return v


class CreateTagRequest(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    color: Optional[str] = Field(default=None, max_length=20)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Tag name is required")
        return v.strip()


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class TagResponse(BaseModel):
    id: str
    name: str
    color: Optional[str] = None


class DocumentShareResponse(BaseModel):
    id: str
    document_id: str
    shared_with_user_id: str
    permission_level: PermissionLevel
    shared_by: str
    shared_at: datetime
    expires_at: Optional[datetime] = None
    is_revoked: bool = False


class DocumentResponse(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    file_name: str
    file_size: int
    content_type: str
    access_type: AccessType
    uploaded_by: str
    created_at: datetime
    last_modified_at: datetime
    tags: List[TagResponse] = Field(default_factory=list)
    shares: List[DocumentShareResponse] = Field(default_factory=list)
    can_edit: bool = False
    can_delete: bool = False
    can_share: bool = False


class DocumentListResponse(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    file_name: str
    file_size: int
    content_type: str
    access_type: AccessType
    uploaded_by: str
    created_at: datetime
    last_modified_at: datetime
    tag_names: List[str] = Field(default_factory=list)
    is_shared: bool = False


T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    items: List[T] = Field(default_factory=list)
    total_count: int = 0
    page_number: int = 1
    page_size: int = 20
    total_pages: int = 0

    @property
    def has_previous_page(self) -> bool:
        return self.page_number > 1

    @property
    def has_next_page(self) -> bool:
        return self.page_number < self.total_pages

    @classmethod
    def paginate(cls, items: List[T], page_number: int, page_size: int) -> "PaginatedResponse[T]":
        """Slice an already-ordered list into one 1-indexed page."""
        total = len(items)
        start = (page_number - 1) * page_size
        return cls(
            items=items[start:start + page_size],
            total_count=total,
            page_number=page_number,
            page_size=page_size,
            total_pages=math.ceil(total / page_size) if page_size else 0,
        )


@dataclass
class DownloadResult:
    stream: BinaryIO
    file_name: str
    content_type: str
