"""
Tests for the vault and import/export API endpoints.

Uses FastAPI TestClient against a real SessionManager (temp files, fake
timer, low bcrypt cost). Auth bypassed via dependency_overrides.
"""

import json

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from secure_vault.api import security
from secure_vault.api.main import app, manager
from secure_vault.api.security import initialize_session_token, verify_session_token
from secure_vault.api.vault_routes import get_session
from secure_vault.vault.session import SessionEvent

MASTER = "violet-otter-juggles-lanterns-47"
NEW_MASTER = "amber-quokka-paddles-mirrors-83"


@pytest.fixture
def client(session):
    """TestClient with auth bypass, bound to the test session."""
    app.dependency_overrides[verify_session_token] = lambda: "test-token"
    app.dependency_overrides[get_session] = lambda: session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def unauth_client(session):
    """TestClient without auth."""
    app.dependency_overrides.pop(verify_session_token, None)
    app.dependency_overrides[get_session] = lambda: session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def unlocked_client(client):
    resp = client.post("/api/vault/setup", json={"master_password": MASTER})
    assert resp.status_code == 200
    return client


class TestAuth:

    def test_requires_token(self, unauth_client, monkeypatch):
        monkeypatch.setattr(security, "_SESSION_TOKEN", None)
        assert unauth_client.get("/api/vault/status").status_code == 503

        initialize_session_token()
        assert unauth_client.get("/api/vault/status").status_code == 401
        resp = unauth_client.get("/api/vault/status", headers={"X-Session-Token": "wrong"})
        assert resp.status_code == 401

    def test_valid_token(self, unauth_client, monkeypatch):
        monkeypatch.setattr(security, "_SESSION_TOKEN", None)
        token = initialize_session_token()
        resp = unauth_client.get("/api/vault/status", headers={"X-Session-Token": token})
        assert resp.status_code == 200

    def test_session_endpoint(self, unauth_client, monkeypatch):
        monkeypatch.setattr(security, "_SESSION_TOKEN", None)
        token = initialize_session_token()
        assert unauth_client.get("/api/session").json() == {"session_token": token}

    def test_websocket_rejects_bad_token(self, unauth_client, monkeypatch):
        monkeypatch.setattr(security, "_SESSION_TOKEN", None)
        initialize_session_token()
        with pytest.raises(WebSocketDisconnect):
            with unauth_client.websocket_connect("/ws?token=wrong") as ws:
                ws.receive_text()


class TestSessionRoutes:

    def test_status_before_setup(self, client):
        data = client.get("/api/vault/status").json()
        assert data == {"is_setup": False, "is_locked": True, "state": "uninitialized"}

    def test_setup_and_lock(self, unlocked_client):
        assert unlocked_client.get("/api/vault/status").json()["state"] == "unlocked"
        assert unlocked_client.post("/api/vault/lock").json()["success"] is True
        assert unlocked_client.get("/api/vault/status").json()["state"] == "locked"

    def test_setup_twice(self, unlocked_client):
        resp = unlocked_client.post("/api/vault/setup", json={"master_password": MASTER})
        assert resp.status_code == 409
        assert resp.json()["detail"]["error"] == "AlreadyInitialized"

    def test_weak_setup(self, client):
        resp = client.post("/api/vault/setup", json={"master_password": "password"})
        assert resp.status_code == 400
        assert resp.json()["detail"]["error"] == "ValidationError"

    def test_unlock_before_setup(self, client):
        resp = client.post("/api/vault/unlock", json={"master_password": MASTER})
        assert resp.status_code == 409

    def test_unlock(self, unlocked_client):
        unlocked_client.post("/api/vault/lock")
        resp = unlocked_client.post("/api/vault/unlock", json={"master_password": MASTER})
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "state": "unlocked"}

    def test_wrong_password_then_rate_limited(self, unlocked_client):
        unlocked_client.post("/api/vault/lock")
        resp = unlocked_client.post("/api/vault/unlock", json={"master_password": "wrong guess"})
        assert resp.status_code == 401
        assert resp.json()["detail"]["error"] == "InvalidPassword"

        resp = unlocked_client.post("/api/vault/unlock", json={"master_password": MASTER})
        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "1"
        assert resp.json()["detail"]["rate_limited_seconds"] == 1

    def test_data_lost_flag(self, unlocked_client, session):
        unlocked_client.post("/api/vault/lock")
        session.vault_store.path.write_text("garbage")
        data = unlocked_client.post("/api/vault/unlock", json={"master_password": MASTER}).json()
        assert data["data_lost"] is True
        assert "permanently lost" in data["warning"]

    def test_change_password(self, unlocked_client):
        resp = unlocked_client.post("/api/vault/change-password", json={
            "current_password": MASTER, "new_password": NEW_MASTER,
        })
        assert resp.status_code == 200
        unlocked_client.post("/api/vault/lock")
        resp = unlocked_client.post("/api/vault/unlock", json={"master_password": NEW_MASTER})
        assert resp.status_code == 200

    def test_change_password_reports_data_loss(self, unlocked_client, session):
        unlocked_client.post("/api/vault/lock")
        session.vault_store.path.write_text("garbage")
        data = unlocked_client.post("/api/vault/change-password", json={
            "current_password": MASTER, "new_password": NEW_MASTER,
        }).json()
        assert data["data_lost"] is True
        assert data["state"] == "locked"

    def test_empty_master_password_rejected(self, client):
        assert client.post("/api/vault/setup", json={"master_password": ""}).status_code == 422


class TestRecordRoutes:

    def test_locked_vault_returns_403(self, unlocked_client):
        unlocked_client.post("/api/vault/lock")
        resp = unlocked_client.get("/api/vault/passwords")
        assert resp.status_code == 403
        assert resp.json()["detail"]["error"] == "VaultLocked"

    def test_password_crud(self, unlocked_client):
        resp = unlocked_client.post("/api/vault/passwords", json={
            "name": "Site", "password": "pw", "username": "me", "tags": ["a"],
        })
        entry = resp.json()["entry"]
        assert entry["id"]
        assert entry["type"] == "password"

        entries = unlocked_client.get("/api/vault/passwords").json()["entries"]
        assert [e["name"] for e in entries] == ["Site"]

        resp = unlocked_client.post("/api/vault/passwords", json={
            "id": entry["id"], "name": "Site 2", "password": "pw",
        })
        assert resp.json()["entry"]["id"] == entry["id"]

        resp = unlocked_client.delete(f"/api/vault/passwords/{entry['id']}")
        assert resp.json() == {"success": True, "deleted": True}
        assert unlocked_client.get("/api/vault/passwords").json()["entries"] == []

    def test_totp_crud_and_code(self, unlocked_client):
        resp = unlocked_client.post("/api/vault/totp", json={
            "name": "Auth", "issuer": "Corp", "secret": "jbsw y3dp ehpk 3pxp",
        })
        entry = resp.json()["entry"]
        assert entry["secret"] == "JBSWY3DPEHPK3PXP"

        data = unlocked_client.get(f"/api/vault/totp/{entry['id']}/code").json()
        assert len(data["code"]) == 6
        assert 1 <= data["seconds_remaining"] <= 30

        assert unlocked_client.get("/api/vault/totp/missing/code").status_code == 404

    def test_invalid_totp_rejected(self, unlocked_client):
        resp = unlocked_client.post("/api/vault/totp", json={"name": "Auth", "secret": "JBSWY3DP", "digits": 7})
        assert resp.status_code == 400

    def test_parse_uri(self, client):
        resp = client.post("/api/vault/totp/parse-uri", json={
            "uri": "otpauth://totp/GitHub:alice?secret=JBSWY3DPEHPK3PXP",
        })
        assert resp.json()["entry"]["issuer"] == "GitHub"

        resp = client.post("/api/vault/totp/parse-uri", json={"uri": "otpauth://hotp/a?secret=JBSWY3DP"})
        assert resp.status_code == 400
        assert resp.json()["detail"]["error"] == "UnsupportedOtpType"

    def test_categories(self, unlocked_client):
        resp = unlocked_client.post("/api/vault/categories", json={"name": "Work"})
        category = resp.json()["category"]
        names = [c["name"] for c in unlocked_client.get("/api/vault/categories").json()["categories"]]
        assert names == ["Work"]
        assert unlocked_client.delete(f"/api/vault/categories/{category['id']}").json()["deleted"] is True

    def test_audit_and_search(self, unlocked_client):
        unlocked_client.post("/api/vault/passwords", json={"name": "Bank", "password": "abc", "category": "Money"})
        report = unlocked_client.get("/api/vault/audit").json()
        assert report["total"] == 1
        assert report["weak"] == 1

        entries = unlocked_client.post("/api/vault/search", json={"weak_only": True}).json()["entries"]
        assert [e["name"] for e in entries] == ["Bank"]

    def test_generate_password(self, client):
        assert len(client.get("/api/vault/generate-password?length=24").json()["password"]) == 24
        assert client.get("/api/vault/generate-password?length=2").status_code == 422


class TestSettingsRoutes:

    def test_settings_while_locked(self, unlocked_client):
        unlocked_client.post("/api/vault/lock")
        resp = unlocked_client.put("/api/vault/settings", json={"auto_lock_timeout": 300})
        assert resp.json()["settings"]["auto_lock_timeout"] == 300
        assert unlocked_client.get("/api/vault/settings").json()["settings"]["auto_lock_timeout"] == 300

    def test_negative_timeout_rejected(self, client):
        assert client.put("/api/vault/settings", json={"auto_lock_timeout": -5}).status_code == 422


class TestTransferRoutes:

    def test_formats(self, client):
        data = client.get("/api/vault/formats").json()
        assert "winauth" in data["import"]
        assert "securevault" in data["export"]

    def test_import_content(self, unlocked_client):
        content = (
            "url,username,password,totp,extra,name,grouping,fav\n"
            "https://x.com,bob,secret1,,note,Site X,Work,0\n"
        )
        resp = unlocked_client.post("/api/vault/import", json={"filename": "lp.csv", "content": content,
                                                               "format": "lastpass"})
        data = resp.json()
        assert data["success"] is True
        assert data["imported"] == 1
        assert data["entries"][0]["tags"] == ["lastpass"]

    def test_import_from_path(self, unlocked_client, tmp_path):
        path = tmp_path / "tokens.wa.txt"
        path.write_text("otpauth://totp/Example:bob?secret=JBSWY3DPEHPK3PXP\n", encoding="utf-8")
        data = unlocked_client.post("/api/vault/import", json={"path": str(path)}).json()
        assert data["format"] == "winauth"
        assert data["imported"] == 1

    def test_import_needs_source(self, unlocked_client):
        assert unlocked_client.post("/api/vault/import", json={}).status_code == 400

    def test_import_while_locked(self, unlocked_client):
        unlocked_client.post("/api/vault/lock")
        resp = unlocked_client.post("/api/vault/import", json={"content": "a,b\n1,2\n"})
        assert resp.status_code == 403

    def test_export_content_and_file(self, unlocked_client, tmp_path):
        unlocked_client.post("/api/vault/passwords", json={"name": "Site", "password": "pw"})
        data = unlocked_client.post("/api/vault/export", json={"format": "json"}).json()
        assert data["count"] == 1
        assert json.loads(data["content"])["entries"][0]["name"] == "Site"

        path = tmp_path / "backup.svault"
        resp = unlocked_client.post("/api/vault/export", json={
            "format": "securevault", "path": str(path), "password": "backup-pass",
        })
        assert resp.json()["path"] == str(path)
        assert path.exists()

    def test_export_without_backup_password(self, unlocked_client):
        resp = unlocked_client.post("/api/vault/export", json={"format": "securevault"})
        assert resp.status_code == 400
        assert resp.json()["detail"]["error"] == "PasswordRequired"


class TestEventPublishing:

    def test_publish_without_loop_is_noop(self):
        manager.loop = None
        manager.publish(SessionEvent.AUTO_LOCKED)
