"""
EDMS Test Suite — Shared fixtures and configuration.

Run:  pytest tests/ -v
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from edms.audit.trail import AuditTrail
from edms.db.base import Base
from edms.documents.models import AccessType, DocumentUploadRequest
from edms.documents.service import DocumentService
from edms.documents.shares import ShareRegistry
from edms.documents.storage import LocalBlobStore
from edms.documents.tags import TagCatalog
from edms.engine.identity import Identity, InMemoryUserDirectory, JWTIdentityProvider
from edms.security.roles import Role

import edms.db.models  # noqa: F401

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters"
PDF = "application/pdf"


@pytest.fixture(autouse=True)
def _isolate_singletons(monkeypatch):
    """Reset global singletons between tests."""
    import edms.engine.config as cfg_mod
    import edms.engine.logging as log_mod
    from edms.engine.context import clear_request_context

    cfg_mod._config = None
    monkeypatch.delenv("EDMS_JWT_SECRET", raising=False)
    monkeypatch.delenv("EDMS_DATABASE_URL", raising=False)
    clear_request_context()
    yield
    log_mod.shutdown_logging()


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(eng, "connect")
    def _fk_on(dbapi_conn, record):
        dbapi_conn.execute("PRAGMA foreign_keys=ON")

    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture
def audit(session_factory):
    return AuditTrail(session_factory)


@pytest.fixture
def service(session_factory, blob_store, audit):
    return DocumentService(
        session_factory,
        blob_store,
        audit=audit,
        shares=ShareRegistry(),
        tags=TagCatalog(session_factory),
    )


# ---------------------------------------------------------------------------
# Identities: one per role, plus a second contributor
# ---------------------------------------------------------------------------

@pytest.fixture
def viewer():
    return Identity(user_id="1", email="viewer@example.com", role=Role.VIEWER, name="Viewer User")


@pytest.fixture
def contributor():
    return Identity(user_id="2", email="contributor@example.com", role=Role.CONTRIBUTOR, name="Contributor User")


@pytest.fixture
def manager():
    return Identity(user_id="3", email="manager@example.com", role=Role.MANAGER, name="Manager User")


@pytest.fixture
def admin():
    return Identity(user_id="4", email="admin@example.com", role=Role.ADMIN, name="Admin User")


@pytest.fixture
def other_contributor():
    return Identity(user_id="6", email="bob@example.com", role=Role.CONTRIBUTOR, name="Bob")


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def directory():
    """Demo users with cheap bcrypt rounds."""
    return InMemoryUserDirectory(bcrypt_rounds=4)


@pytest.fixture
def provider():
    return JWTIdentityProvider(TEST_SECRET, issuer="edms-test", audience="edms-test-clients")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def upload(service):
    """Upload a small PDF as ``identity``; returns the DocumentResponse."""

    def _upload(identity, title="Report", access_type=AccessType.PRIVATE, tags=None,
                data=b"%PDF-1.4 test", file_name="report.pdf", content_type=PDF, description=None):
        request = DocumentUploadRequest(
            title=title,
            description=description,
            access_type=access_type,
            tags=tags or [],
        )
        return service.upload(identity, data, file_name, content_type, request)

    return _upload


class FrozenClock:
    """Callable clock that tests can move forward."""

    def __init__(self, start: datetime = None):
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock()
