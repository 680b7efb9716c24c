"""
EDMS Identity — Authentication and the identity boundary.

Role strings are parsed here, once; everything downstream receives an
``Identity`` carrying the typed ``Role``.

Components:
- UserDirectory / InMemoryUserDirectory: user lookup with bcrypt hashes
- IdentityProvider / JWTIdentityProvider: HS256 bearer tokens (PyJWT)
- AuthService: login / logout, audited
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import bcrypt
import jwt
from pydantic import BaseModel

from edms.documents.models import AuditActionType
from edms.engine.errors import EDMSConfigError, EDMSSecurityError, InvalidRoleError
from edms.engine.logging import log, log_auth_event
from edms.security.access import can_manage_users
from edms.security.roles import Role, parse_role

logger = logging.getLogger("edms.engine.identity")

MIN_SECRET_LENGTH = 32


@dataclass(frozen=True)
class Identity:
    """Authenticated caller, resolved at the boundary."""
    user_id: str
    email: str
    role: Role
    name: str = ""


@dataclass
class UserRecord:
    user_id: str
    email: str
    password_hash: str
    role: Role
    name: str

    def to_identity(self) -> Identity:
        return Identity(user_id=self.user_id, email=self.email, role=self.role, name=self.name)

    def to_public_dict(self) -> Dict[str, Any]:
        """Listing form — the password is never exposed."""
        return {
            "user_id": self.user_id,
            "email": self.email,
            "password": "***",
            "role": self.role.label,
            "name": self.name,
        }


class UserInfo(BaseModel):
    user_id: str
    email: str
    role: str
    name: str


class LoginResponse(BaseModel):
    token: str
    token_type: str = "Bearer"
    expires_at: datetime
    user: UserInfo


# ---------------------------------------------------------------------------
# Password Utilities
# ---------------------------------------------------------------------------

def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


# ---------------------------------------------------------------------------
# User Directory
# ---------------------------------------------------------------------------

DEMO_USERS = (
    ("1", "viewer@example.com", "viewer123", "Viewer", "Viewer User"),
    ("2", "contributor@example.com", "contributor123", "Contributor", "Contributor User"),
    ("3", "manager@example.com", "manager123", "Manager", "Manager User"),
    ("4", "admin@example.com", "admin123", "Admin", "Admin User"),
    ("5", "admin@company.com", "Admin@123", "Admin", "System Administrator"),
)


class UserDirectory(ABC):

    @abstractmethod
    def find_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    def find_by_id(self, user_id: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    def list_users(self) -> List[UserRecord]:
        ...


class InMemoryUserDirectory(UserDirectory):
    """
    Process-local user directory. Emails match case-insensitively.

    Seeded with the demo accounts unless ``users`` is given. Each entry is
    (user_id, email, password, role, name); roles are parsed on load, so an
    unknown role string fails here rather than at request time.
    """

    def __init__(self, users=None, bcrypt_rounds: int = 12):
        self._by_id: Dict[str, UserRecord] = {}
        self._by_email: Dict[str, UserRecord] = {}
        for user_id, email, password, role, name in (users if users is not None else DEMO_USERS):
            self.add_user(user_id, email, password, role, name, bcrypt_rounds=bcrypt_rounds)

    def add_user(
        self, user_id: str, email: str, password: str, role, name: str = "", bcrypt_rounds: int = 12
    ) -> UserRecord:
        record = UserRecord(
            user_id=str(user_id),
            email=email,
            password_hash=hash_password(password, rounds=bcrypt_rounds),
            role=parse_role(role),
            name=name,
        )
        self._by_id[record.user_id] = record
        self._by_email[email.strip().lower()] = record
        return record

    def find_by_email(self, email: str) -> Optional[UserRecord]:
        return self._by_email.get((email or "").strip().lower())

    def find_by_id(self, user_id: str) -> Optional[UserRecord]:
        return self._by_id.get(str(user_id))

    def list_users(self) -> List[UserRecord]:
        return sorted(self._by_id.values(), key=lambda u: u.user_id)


# ---------------------------------------------------------------------------
# Identity Provider
# ---------------------------------------------------------------------------

class IdentityProvider(ABC):

    @abstractmethod
    def resolve(self, token: str) -> Optional[Identity]:
        """Return the identity for a bearer token, or None if it is not valid."""


class JWTIdentityProvider(IdentityProvider):
    """
    HS256 bearer tokens.

    Claims: sub, email, role, name, jti, iss, aud, iat, exp.
    Expiry is checked with zero leeway.
    """

    def __init__(
        self,
        secret: str,
        issuer: str = "edms",
        audience: str = "edms-clients",
        lifetime_hours: int = 8,
    ):
        if not secret or len(secret) < MIN_SECRET_LENGTH:
            raise EDMSConfigError(
                f"JWT secret must be at least {MIN_SECRET_LENGTH} characters long"
            )
        self._secret = secret
        self.issuer = issuer
        self.audience = audience
        self.lifetime = timedelta(hours=lifetime_hours)

    @classmethod
    def from_config(cls, security_config) -> "JWTIdentityProvider":
        return cls(
            secret=security_config.jwt_secret,
            issuer=security_config.jwt_issuer,
            audience=security_config.jwt_audience,
            lifetime_hours=security_config.token_lifetime_hours,
        )

    def issue(self, identity: Identity, now: Optional[datetime] = None) -> tuple[str, datetime]:
        """Returns (token, expires_at)."""
        now = now or datetime.now(timezone.utc)
        expires_at = now + self.lifetime
        payload = {
            "sub": identity.user_id,
            "email": identity.email,
            "role": identity.role.label,
            "name": identity.name,
            "jti": uuid.uuid4().hex,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": now,
            "exp": expires_at,
        }
        return jwt.encode(payload, self._secret, algorithm="HS256"), expires_at

    def resolve(self, token: str) -> Optional[Identity]:
        if not token:
            return None
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=["HS256"],
                audience=self.audience,
                issuer=self.issuer,
                leeway=0,
                options={"require": ["sub", "exp", "role"]},
            )
        except jwt.ExpiredSignatureError:
            logger.info("Rejected expired token")
            return None
        except jwt.InvalidTokenError as e:
            logger.info("Rejected invalid token: %s", e)
            return None

        try:
            role = parse_role(payload["role"])
        except InvalidRoleError:
            logger.warning("Token for %s carries unknown role %r", payload.get("sub"), payload.get("role"))
            return None
        return Identity(
            user_id=str(payload["sub"]),
            email=payload.get("email", ""),
            role=role,
            name=payload.get("name", ""),
        )


# ---------------------------------------------------------------------------
# Auth Service
# ---------------------------------------------------------------------------

class AuthService:
    """
    Login/logout against a UserDirectory. Both outcomes are written to the
    audit trail with action type Login (or Logout).
    """

    def __init__(self, directory: UserDirectory, provider: JWTIdentityProvider, audit=None):
        self.directory = directory
        self.provider = provider
        self.audit = audit

    def login(self, email: str, password: str) -> LoginResponse:
        """
        Raises:
            EDMSSecurityError: unknown email or wrong password (same message).
        """
        user = self.directory.find_by_email(email)
        if user is None or not verify_password(password or "", user.password_hash):
            reason = "unknown_email" if user is None else "invalid_password"
            log(log_auth_event("login_failed", email, False, user.user_id if user else None, reason))
            if self.audit is not None:
                self.audit.record_standalone(
                    document_id=None,
                    user_id=user.user_id if user else (email or "anonymous"),
                    action="Login",
                    action_type=AuditActionType.LOGIN,
                    details=f"Login attempt for {email}",
                    success=False,
                    error_message="Invalid email or password",
                )
            raise EDMSSecurityError("Invalid email or password", user_id=email)

        identity = user.to_identity()
        token, expires_at = self.provider.issue(identity)
        log(log_auth_event("login", user.email, True, user.user_id))
        if self.audit is not None:
            self.audit.record_standalone(
                document_id=None,
                user_id=user.user_id,
                action="Login",
                action_type=AuditActionType.LOGIN,
                details=f"User {user.email} logged in",
            )
        logger.info("User %s logged in", user.user_id)
        return LoginResponse(
            token=token,
            expires_at=expires_at,
            user=UserInfo(
                user_id=user.user_id, email=user.email, role=user.role.label, name=user.name
            ),
        )

    def logout(self, identity: Identity) -> None:
        """Tokens are stateless; logout only leaves a trail."""
        log(log_auth_event("logout", identity.email, True, identity.user_id))
        if self.audit is not None:
            self.audit.record_standalone(
                document_id=None,
                user_id=identity.user_id,
                action="Logout",
                action_type=AuditActionType.LOGOUT,
                details=f"User {identity.email} logged out",
            )

    def current_user(self, identity: Identity) -> UserInfo:
        return UserInfo(
            user_id=identity.user_id,
            email=identity.email,
            role=identity.role.label,
            name=identity.name,
        )

    def list_users(self, identity: Identity) -> List[Dict[str, Any]]:
        """Admin only."""
        if not can_manage_users(identity.role):
            raise EDMSSecurityError(
                "Only administrators may list users",
                user_id=identity.user_id,
                role=identity.role.label,
                required=Role.ADMIN.label,
            )
        return [u.to_public_dict() for u in self.directory.list_users()]
