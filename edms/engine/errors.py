"""
EDMS Error Hierarchy — Structured exceptions for request-scoped outcomes.

Every per-request failure is raised as one of these and mapped to a
caller-visible result by the HTTP layer. Only EDMSConfigError is allowed to
abort the process (at startup).

Hierarchy:
    EDMSError
    ├── EDMSNotFoundError    — Entity absent, soft-deleted, or access denied (conflated)
    ├── EDMSSecurityError    — Access denied where the caller may learn it
    ├── EDMSValidationError  — Input validation failed
    │   └── InvalidRoleError — Role string is not one of the four roles
    ├── EDMSConflictError    — Uniqueness conflict (tag name)
    ├── EDMSStorageError     — Blob store read/write failure
    └── EDMSConfigError      — Configuration error (fatal at startup)
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class EDMSError(Exception):
    """
    Base error for all EDMS failures.
    All context is serializable to JSON for the structured logs.
    """

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.request_id: Optional[str] = context.get("request_id")
        self.user_id: Optional[str] = context.get("user_id")
        self.document_id: Optional[str] = context.get("document_id")
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to a JSON-compatible dict."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "request_id": self.request_id,
            "user_id": self.user_id,
            "document_id": self.document_id,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in ("request_id", "user_id", "document_id")
            },
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.document_id:
            parts.append(f"document_id={self.document_id}")
        if self.request_id:
            parts.append(f"request_id={self.request_id}")
        return " | ".join(parts)


class EDMSNotFoundError(EDMSError):
    """
    Entity absent or soft-deleted.

    Also raised for denied reads/edits/deletes/shares so the caller cannot
    learn whether a document it may not see exists. The audit trail keeps
    the distinction.
    """
    pass


class EDMSSecurityError(EDMSError):
    """
    Access denied in places where existence is not a secret
    (login, audit log queries, tag administration).
    """

    def __init__(self, message: str, **context: Any):
        self.role: Optional[str] = context.get("role")
        self.required: Optional[str] = context.get("required")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["role"] = self.role
        d["required"] = self.required
        return d


class EDMSValidationError(EDMSError):
    """
    Malformed input: bad enum value, disallowed content type, oversized payload.
    Raised before any store mutation; never audited.
    """

    def __init__(self, message: str, **context: Any):
        self.validation_errors: Optional[list] = context.get("validation_errors")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["validation_errors"] = self.validation_errors
        return d


class InvalidRoleError(EDMSValidationError):
    """Role string is not Viewer, Contributor, Manager or Admin."""

    def __init__(self, message: str, **context: Any):
        self.value: Optional[str] = context.get("value")
        super().__init__(message, **context)


class EDMSConflictError(EDMSError):
    """Uniqueness conflict, e.g. creating a tag whose name already exists."""
    pass


class EDMSStorageError(EDMSError):
    """Blob store failure (write, read, missing file)."""

    def __init__(self, message: str, **context: Any):
        self.path: Optional[str] = context.get("path")
        super().__init__(message, **context)


class EDMSConfigError(EDMSError):
    """Invalid or missing configuration in edms.yaml or the environment."""

    def __init__(self, message: str, **context: Any):
        self.validation_errors: Optional[list] = context.get("validation_errors")
        super().__init__(message, **context)
