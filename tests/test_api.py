"""
Tests for the HTTP API using FastAPI TestClient.

The app is built over the in-memory store and temporary blob directory
from conftest; tokens are minted directly from the test provider.
"""

from urllib.parse import quote

import pytest
from fastapi.testclient import TestClient

from edms.api.server import content_disposition, create_app, status_for
from edms.engine.errors import (
    EDMSConflictError,
    EDMSNotFoundError,
    EDMSSecurityError,
    EDMSStorageError,
    EDMSValidationError,
)

PDF = "application/pdf"


@pytest.fixture
def app(session_factory, blob_store, directory, provider):
    return create_app(
        session_factory=session_factory,
        blob_store=blob_store,
        directory=directory,
        provider=provider,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_header(provider):
    def _header(identity):
        token, _ = provider.issue(identity)
        return {"Authorization": f"Bearer {token}"}
    return _header


def upload_doc(client, headers, title="Report", access_type="Private", tags=None,
               data=b"%PDF-1.4 api", file_name="report.pdf", content_type=PDF):
    form = {"title": title, "access_type": access_type}
    if tags:
        form["tags"] = tags
    return client.post(
        "/api/documents/upload",
        data=form,
        files={"file": (file_name, data, content_type)},
        headers=headers,
    )


class TestStatusMapping:

    @pytest.mark.parametrize("error,status", [
        (EDMSNotFoundError("x"), 404),
        (EDMSSecurityError("x"), 403),
        (EDMSValidationError("x"), 400),
        (EDMSConflictError("x"), 409),
        (EDMSStorageError("x"), 500),
    ])
    def test_status_for(self, error, status):
        assert status_for(error) == status

    def test_content_disposition_escapes_quotes(self):
        header = content_disposition('say "hi".pdf')
        assert header.startswith('attachment; filename="say _hi_.pdf";')
        assert header.endswith("filename*=UTF-8''say%20%22hi%22.pdf")
        header.encode("latin-1")


class TestHealthAndAuth:

    def test_health_no_auth(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["database"] == "ok"

    def test_missing_token(self, client):
        assert client.get("/api/documents/my-documents").status_code == 401

    def test_bad_token(self, client):
        resp = client.get("/api/auth/me", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    def test_login_then_me(self, client):
        resp = client.post("/api/auth/login", json={"email": "contributor@example.com", "password": "contributor123"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["token_type"] == "Bearer"
        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
        assert me.json()["email"] == "contributor@example.com"
        assert me.json()["role"] == "Contributor"

    def test_login_bad_password(self, client):
        resp = client.post("/api/auth/login", json={"email": "contributor@example.com", "password": "x"})
        assert resp.status_code == 401

    def test_logout(self, client, auth_header, viewer):
        assert client.post("/api/auth/logout", headers=auth_header(viewer)).status_code == 200

    def test_users_admin_only(self, client, auth_header, admin, manager):
        resp = client.get("/api/auth/users", headers=auth_header(admin))
        assert resp.status_code == 200
        assert all(u["password"] == "***" for u in resp.json())
        assert client.get("/api/auth/users", headers=auth_header(manager)).status_code == 403


class TestDocumentsApi:

    def test_upload_and_get(self, client, auth_header, contributor):
        headers = auth_header(contributor)
        resp = upload_doc(client, headers, tags="finance,q1")
        assert resp.status_code == 201
        doc = resp.json()
        assert sorted(t["name"] for t in doc["tags"]) == ["finance", "q1"]

        got = client.get(f"/api/documents/{doc['id']}", headers=headers)
        assert got.status_code == 200
        assert got.json()["can_delete"] is True

    def test_viewer_upload_forbidden(self, client, auth_header, viewer):
        assert upload_doc(client, auth_header(viewer)).status_code == 403

    def test_bad_access_type(self, client, auth_header, contributor):
        assert upload_doc(client, auth_header(contributor), access_type="Secret").status_code == 400

    def test_disallowed_type(self, client, auth_header, contributor):
        resp = upload_doc(client, auth_header(contributor), file_name="x.png", content_type="image/png")
        assert resp.status_code == 400

    def test_private_is_404_for_others(self, client, auth_header, contributor, other_contributor):
        doc = upload_doc(client, auth_header(contributor)).json()
        resp = client.get(f"/api/documents/{doc['id']}", headers=auth_header(other_contributor))
        assert resp.status_code == 404

    def test_lists(self, client, auth_header, contributor, viewer):
        headers = auth_header(contributor)
        upload_doc(client, headers, title="pub", access_type="Public")
        upload_doc(client, headers, title="priv")
        mine = client.get("/api/documents/my-documents", headers=headers).json()
        assert mine["total_count"] == 2
        public = client.get("/api/documents/public", headers=auth_header(viewer)).json()
        assert [d["title"] for d in public["items"]] == ["pub"]

    def test_bad_page_size(self, client, auth_header, contributor):
        resp = client.get("/api/documents/my-documents?page_size=500", headers=auth_header(contributor))
        assert resp.status_code == 400

    def test_search(self, client, auth_header, contributor):
        headers = auth_header(contributor)
        upload_doc(client, headers, title="Budget")
        upload_doc(client, headers, title="Notes")
        resp = client.post("/api/documents/search", json={"search_term": "budg"}, headers=headers)
        assert [d["title"] for d in resp.json()["items"]] == ["Budget"]

    def test_update_and_delete(self, client, auth_header, contributor, manager):
        headers = auth_header(contributor)
        doc = upload_doc(client, headers).json()
        resp = client.put(f"/api/documents/{doc['id']}", json={"title": "Renamed"}, headers=auth_header(manager))
        assert resp.json()["title"] == "Renamed"

        assert client.delete(f"/api/documents/{doc['id']}", headers=auth_header(manager)).status_code == 404
        assert client.delete(f"/api/documents/{doc['id']}", headers=headers).status_code == 204
        assert client.get(f"/api/documents/{doc['id']}", headers=headers).status_code == 404

    def test_download(self, client, auth_header, contributor):
        headers = auth_header(contributor)
        doc = upload_doc(client, headers, data=b"%PDF-1.4 bytes").json()
        resp = client.get(f"/api/documents/{doc['id']}/download", headers=headers)
        assert resp.status_code == 200
        assert resp.content == b"%PDF-1.4 bytes"
        assert resp.headers["content-type"].startswith(PDF)
        assert 'filename="report.pdf"' in resp.headers["content-disposition"]

    def test_download_non_ascii_name(self, client, auth_header, contributor):
        headers = auth_header(contributor)
        doc = upload_doc(client, headers, file_name="отчёт.pdf").json()
        resp = client.get(f"/api/documents/{doc['id']}/download", headers=headers)
        assert resp.status_code == 200
        disposition = resp.headers["content-disposition"]
        assert f"filename*=UTF-8''{quote('отчёт.pdf')}" in disposition
        assert 'filename="_____.pdf"' in disposition


class TestSharingApi:

    def test_share_list_revoke(self, client, auth_header, contributor, other_contributor):
        owner = auth_header(contributor)
        other = auth_header(other_contributor)
        doc = upload_doc(client, owner, access_type="Restricted").json()

        resp = client.post(
            "/api/documents/share",
            json={"document_id": doc["id"], "shared_with_user_id": other_contributor.user_id,
                  "permission_level": "Edit"},
            headers=owner,
        )
        assert resp.status_code == 201
        share = resp.json()

        assert client.get(f"/api/documents/{doc['id']}", headers=other).status_code == 200
        shared = client.get("/api/documents/shared-with-me", headers=other).json()
        assert [d["id"] for d in shared["items"]] == [doc["id"]]
        assert [s["id"] for s in client.get(f"/api/documents/{doc['id']}/shares", headers=owner).json()] == [share["id"]]
        assert client.get(f"/api/documents/{doc['id']}/shares", headers=other).json() == []

        assert client.delete(f"/api/documents/shares/{share['id']}", headers=owner).status_code == 204
        assert client.get(f"/api/documents/{doc['id']}", headers=other).status_code == 404

    def test_revoke_twice_is_404(self, client, auth_header, contributor, other_contributor, audit):
        owner = auth_header(contributor)
        doc = upload_doc(client, owner, access_type="Restricted").json()
        share = client.post(
            "/api/documents/share",
            json={"document_id": doc["id"], "shared_with_user_id": other_contributor.user_id},
            headers=owner,
        ).json()

        assert client.delete(f"/api/documents/shares/{share['id']}", headers=owner).status_code == 204
        resp = client.delete(f"/api/documents/shares/{share['id']}", headers=owner)
        assert resp.status_code == 404
        assert resp.json()["error"] == "EDMSNotFoundError"
        revokes = [r for r in audit.by_document(doc["id"]) if r.action == "Revoke Share"]
        assert len(revokes) == 1

    def test_share_validation(self, client, auth_header, contributor):
        headers = auth_header(contributor)
        doc = upload_doc(client, headers).json()
        resp = client.post(
            "/api/documents/share",
            json={"document_id": doc["id"], "shared_with_user_id": "6", "permission_level": "Owner"},
            headers=headers,
        )
        assert resp.status_code == 400

    def test_revoke_unknown_share(self, client, auth_header, contributor):
        assert client.delete("/api/documents/shares/nope", headers=auth_header(contributor)).status_code == 404


class TestTagsApi:

    def test_create_list_conflict(self, client, auth_header, contributor):
        headers = auth_header(contributor)
        resp = client.post("/api/tags", json={"name": "Legal"}, headers=headers)
        assert resp.status_code == 201
        tag_id = resp.json()["id"]
        assert client.post("/api/tags", json={"name": "legal"}, headers=headers).status_code == 409
        assert [t["name"] for t in client.get("/api/tags", headers=headers).json()] == ["Legal"]
        assert client.get(f"/api/tags/{tag_id}", headers=headers).json()["name"] == "Legal"

    def test_popular(self, client, auth_header, contributor):
        headers = auth_header(contributor)
        upload_doc(client, headers, tags="a,b")
        upload_doc(client, headers, tags="a")
        names = [t["name"] for t in client.get("/api/tags/popular?count=1", headers=headers).json()]
        assert names == ["a"]

    def test_delete_needs_manager(self, client, auth_header, contributor, manager):
        tag_id = client.post("/api/tags", json={"name": "tmp"}, headers=auth_header(contributor)).json()["id"]
        assert client.delete(f"/api/tags/{tag_id}", headers=auth_header(contributor)).status_code == 403
        assert client.delete(f"/api/tags/{tag_id}", headers=auth_header(manager)).status_code == 204
        assert client.get(f"/api/tags/{tag_id}", headers=auth_header(manager)).status_code == 404


class TestAuditApi:

    def test_admin_sees_denials(self, client, auth_header, contributor, other_contributor, admin):
        doc = upload_doc(client, auth_header(contributor)).json()
        client.get(f"/api/documents/{doc['id']}", headers=auth_header(other_contributor))

        resp = client.get(
            f"/api/audit/logs?user_id={other_contributor.user_id}&failed_only=true",
            headers=auth_header(admin),
        )
        assert resp.status_code == 200
        rows = resp.json()
        assert [r["action"] for r in rows] == ["Access Denied"]
        assert rows[0]["action_type"] == "AccessDenied"

    def test_filter_by_action_type(self, client, auth_header, contributor, admin):
        upload_doc(client, auth_header(contributor))
        rows = client.get("/api/audit/logs?action_type=create", headers=auth_header(admin)).json()
        assert [r["action"] for r in rows] == ["Upload Document"]

    def test_unknown_action_type(self, client, auth_header, admin):
        assert client.get("/api/audit/logs?action_type=Explode", headers=auth_header(admin)).status_code == 400

    def test_non_admin_forbidden(self, client, auth_header, manager):
        assert client.get("/api/audit/logs", headers=auth_header(manager)).status_code == 403

    def test_client_details_recorded(self, client, auth_header, contributor, audit):
        headers = {**auth_header(contributor), "User-Agent": "edms-test-agent"}
        doc = upload_doc(client, headers).json()
        row = audit.by_document(doc["id"])[0]
        assert row.user_agent == "edms-test-agent"
        assert row.ip_address == "testclient"
