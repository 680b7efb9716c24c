"""Tests for the EDMS error hierarchy."""

import json

import pytest

from edms.engine.errors import (
    EDMSConfigError,
    EDMSConflictError,
    EDMSError,
    EDMSNotFoundError,
    EDMSSecurityError,
    EDMSStorageError,
    EDMSValidationError,
    InvalidRoleError,
)


class TestHierarchy:

    @pytest.mark.parametrize("cls", [
        EDMSNotFoundError, EDMSSecurityError, EDMSValidationError,
        EDMSConflictError, EDMSStorageError, EDMSConfigError,
    ])
    def test_all_derive_from_base(self, cls):
        assert issubclass(cls, EDMSError)

    def test_invalid_role_is_validation(self):
        assert issubclass(InvalidRoleError, EDMSValidationError)


class TestSerialization:

    def test_common_fields(self):
        err = EDMSNotFoundError("gone", document_id="d1", user_id="u1", request_id="req_1", extra=5)
        data = err.to_dict()
        assert data["error_type"] == "EDMSNotFoundError"
        assert data["document_id"] == "d1"
        assert data["user_id"] == "u1"
        assert data["request_id"] == "req_1"
        assert data["context"] == {"extra": "5"}

    def test_to_json_round_trips(self):
        err = EDMSStorageError("missing blob", path="2024-01/x.pdf")
        assert err.path == "2024-01/x.pdf"
        assert json.loads(err.to_json())["message"] == "missing blob"

    def test_security_fields(self):
        err = EDMSSecurityError("no", role="Viewer", required="Admin")
        assert err.to_dict()["role"] == "Viewer"
        assert err.to_dict()["required"] == "Admin"

    def test_validation_errors_carried(self):
        err = EDMSConfigError("bad", validation_errors=["security.jwt_secret: too short"])
        assert err.validation_errors == ["security.jwt_secret: too short"]
        assert EDMSValidationError("x").to_dict()["validation_errors"] is None

    def test_repr(self):
        text = repr(EDMSNotFoundError("gone", document_id="d1"))
        assert "EDMSNotFoundError: gone" in text
        assert "document_id=d1" in text
