"""Tests for edms.engine.context — contextvar-backed request context."""

import pytest

from edms.engine.context import (
    RequestContext,
    clear_request_context,
    current_request_id,
    get_request_context,
    require_request_context,
    set_request_context,
)
from edms.engine.errors import EDMSSecurityError


class TestRequestContext:

    def test_request_id_generated(self):
        ctx = RequestContext()
        assert ctx.request_id.startswith("req_")
        assert len(ctx.request_id) == 16
        assert ctx.request_id != RequestContext().request_id

    def test_user_id_from_identity(self, manager):
        assert RequestContext(identity=manager).user_id == "3"
        assert RequestContext().user_id is None

    def test_to_dict(self, admin):
        data = RequestContext(identity=admin, ip_address="127.0.0.1").to_dict()
        assert data["role"] == "Admin"
        assert data["ip_address"] == "127.0.0.1"


class TestContextVar:

    def test_set_get_clear(self, viewer):
        assert get_request_context() is None
        ctx = RequestContext(identity=viewer)
        set_request_context(ctx)
        assert get_request_context() is ctx
        assert current_request_id() == ctx.request_id
        clear_request_context()
        assert current_request_id() is None

    def test_require_without_identity(self):
        with pytest.raises(EDMSSecurityError):
            require_request_context()
        set_request_context(RequestContext())
        with pytest.raises(EDMSSecurityError):
            require_request_context()

    def test_require_with_identity(self, contributor):
        set_request_context(RequestContext(identity=contributor))
        assert require_request_context().identity is contributor
