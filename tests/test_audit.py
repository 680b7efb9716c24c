"""Tests for edms.audit.trail — append-only audit rows and admin queries."""

from datetime import timedelta

import pytest

from edms.db.base import utcnow
from edms.db.session import session_scope
from edms.documents.models import AuditActionType
from edms.engine.context import RequestContext, set_request_context
from edms.engine.errors import EDMSSecurityError


class TestRecord:

    def test_record_commits_with_caller(self, audit, session_factory):
        with session_scope(session_factory) as session:
            audit.record(session, None, "u1", "Login", AuditActionType.LOGIN, "ok")
        rows = audit.by_user("u1")
        assert len(rows) == 1
        assert rows[0].is_successful
        assert rows[0].action_type == "Login"

    def test_record_rolls_back_with_caller(self, audit, session_factory):
        with pytest.raises(RuntimeError):
            with session_scope(session_factory) as session:
                audit.record(session, None, "u1", "Login", AuditActionType.LOGIN)
                raise RuntimeError("operation failed")
        assert audit.by_user("u1") == []

    def test_denial_is_failed_access_denied(self, audit):
        audit.record_denial(None, "u2", "Upload Denied", "Attempted to upload: x")
        row = audit.failed()[0]
        assert row.action_type == AuditActionType.ACCESS_DENIED.value
        assert row.is_successful is False
        assert row.error_message == "Access denied"

    def test_long_fields_clipped(self, audit):
        audit.record_standalone(None, "u3", "A" * 300, AuditActionType.READ, details="d" * 5000)
        row = audit.by_user("u3")[0]
        assert len(row.action) == 100
        assert len(row.details) == 2000
        assert row.details.endswith("...")

    def test_request_context_captured(self, audit):
        set_request_context(RequestContext(ip_address="10.0.0.7", user_agent="pytest-agent"))
        audit.record_standalone(None, "u4", "View", AuditActionType.READ)
        row = audit.by_user("u4")[0]
        assert row.ip_address == "10.0.0.7"
        assert row.user_agent == "pytest-agent"

    def test_no_context_leaves_client_fields_empty(self, audit):
        audit.record_standalone(None, "u5", "View", AuditActionType.READ)
        row = audit.by_user("u5")[0]
        assert row.ip_address is None and row.user_agent is None


class TestQueries:

    @pytest.fixture
    def populated(self, audit):
        audit.record_standalone(None, "alice", "Login", AuditActionType.LOGIN)
        audit.record_standalone(None, "alice", "Logout", AuditActionType.LOGOUT)
        audit.record_standalone(None, "bob", "Login", AuditActionType.LOGIN, success=False,
                                error_message="Invalid password")
        audit.record_denial(None, "bob", "Upload Denied")
        return audit

    def test_newest_first(self, populated):
        assert [r.action for r in populated.by_user("alice")] == ["Logout", "Login"]

    def test_counts(self, populated):
        assert populated.count_by_user("alice") == 2
        assert populated.count_by_action_type(AuditActionType.LOGIN) == 2
        assert populated.count_failed() == 2

    def test_by_action_type_and_limit(self, populated):
        assert len(populated.by_action_type(AuditActionType.LOGIN)) == 2
        assert len(populated.by_action_type(AuditActionType.LOGIN, limit=1)) == 1

    def test_by_date_range(self, populated):
        now = utcnow()
        assert len(populated.by_date_range(now - timedelta(minutes=1), now + timedelta(minutes=1))) == 4
        assert populated.by_date_range(now + timedelta(hours=1), now + timedelta(hours=2)) == []

    def test_query_logs_admin_filters(self, populated, admin):
        rows = populated.query_logs(admin, user_id="bob", failed_only=True)
        assert len(rows) == 2
        rows = populated.query_logs(admin, user_id="bob", action_type=AuditActionType.LOGIN)
        assert [r.error_message for r in rows] == ["Invalid password"]

    @pytest.mark.parametrize("who", ["viewer", "contributor", "manager"])
    def test_query_logs_non_admin_denied(self, populated, who, request):
        identity = request.getfixturevalue(who)
        with pytest.raises(EDMSSecurityError):
            populated.query_logs(identity)

    def test_to_dict(self, populated):
        data = populated.by_user("alice")[0].to_dict()
        assert data["user_id"] == "alice"
        assert data["timestamp"].endswith("+00:00")
