from fastapi import FastAPI, Depends
from fastapi.testclient import TestClient

from billing.utils.security import get_current_user, require_admin, COOKIE_NAME


def _make_app():
    app = FastAPI()

    @app.get("/me")
    def me(user=Depends(get_current_user)):
        return user

    @app.get("/admin")
    def admin(user=Depends(require_admin)):
        return {"ok": True}

    return app


def test_get_current_user_bearer_success(monkeypatch):
    seen = {}

    def _fake(token):
        seen["token"] = token
        return {"id": "u1", "email": "a@b", "role": "user"}

    monkeypatch.setattr("billing.users.repository.get_user_from_token", _fake)
    client = TestClient(_make_app())

    r = client.get("/me", headers={"Authorization": "Bearer tok-123"})
    assert r.status_code == 200
    assert r.json() == {"id": "u1", "email": "a@b", "role": "user"}
    assert seen["token"] == "tok-123"


def test_get_current_user_cookie_fallback(monkeypatch):
    monkeypatch.setattr("billing.users.repository.get_user_from_token", lambda token: {"id": "u1", "role": "admin"})
    client = TestClient(_make_app())
    client.cookies.set(COOKIE_NAME, "cookie-token")

    r = client.get("/me")
    assert r.status_code == 200
    assert r.json()["role"] == "admin"


def test_get_current_user_missing_token_401():
    client = TestClient(_make_app())
    r = client.get("/me")
    assert r.status_code == 401


def test_get_current_user_unknown_token_401(monkeypatch):
    monkeypatch.setattr("billing.users.repository.get_user_from_token", lambda token: {})
    client = TestClient(_make_app())
    r = client.get("/me", headers={"Authorization": "Bearer tok"})
    assert r.status_code == 401


def test_get_current_user_auth_error_401(monkeypatch):
    def _boom(token):
        raise RuntimeError("auth down")

    monkeypatch.setattr("billing.users.repository.get_user_from_token", _boom)
    client = TestClient(_make_app())
    r = client.get("/me", headers={"Authorization": "Bearer tok"})
    assert r.status_code == 401


def test_require_admin_forbidden_and_allowed(monkeypatch):
    client = TestClient(_make_app())

    monkeypatch.setattr("billing.users.repository.get_user_from_token", lambda token: {"id": "u1", "role": "user"})
    assert client.get("/admin", headers={"Authorization": "Bearer tok"}).status_code == 403

    monkeypatch.setattr("billing.users.repository.get_user_from_token", lambda token: {"id": "u1", "role": "admin"})
    r_ok = client.get("/admin", headers={"Authorization": "Bearer tok"})
    assert r_ok.status_code == 200
    assert r_ok.json() == {"ok": True}
