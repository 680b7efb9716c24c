"""
EDMS Request Context — per-request identity carried through contextvars.

Set by the HTTP layer once the bearer token has been resolved; read by the
structured logger so every event carries the request id.
"""

from __future__ import annotations

import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional

from edms.engine.errors import EDMSSecurityError

if TYPE_CHECKING:
    from edms.engine.identity import Identity

current_request_context: ContextVar[Optional["RequestContext"]] = ContextVar(
    "request_context", default=None
)


@dataclass
class RequestContext:
    identity: Optional["Identity"] = None
    request_id: str = field(default_factory=lambda: f"req_{uuid.uuid4().hex[:12]}")
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def user_id(self) -> Optional[str]:
        return self.identity.user_id if self.identity else None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for logging."""
        return {
            "request_id": self.request_id,
            "user_id": self.user_id,
            "role": str(self.identity.role) if self.identity else None,
            "ip_address": self.ip_address,
        }


def set_request_context(ctx: RequestContext) -> None:
    current_request_context.set(ctx)


def get_request_context() -> Optional[RequestContext]:
    """Get the current request context. Returns None if not set."""
    return current_request_context.get()


def require_request_context() -> RequestContext:
    """Get request context or raise if the caller is not authenticated."""
    ctx = get_request_context()
    if ctx is None or ctx.identity is None:
        raise EDMSSecurityError(
            "No request context — user not authenticated",
            error_type="missing_context",
        )
    return ctx


def clear_request_context() -> None:
    current_request_context.set(None)


def current_request_id() -> Optional[str]:
    ctx = get_request_context()
    return ctx.request_id if ctx else None
