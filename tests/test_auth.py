"""Tests for login/logout, token validation and session-backed auth."""
from datetime import timedelta

import jwt
import pytest

from app.panel import create_app
from app.panel.db import session_scope
from app.panel.models import AuditLog, Base, User
from app.panel.modules.sessions.models import LoginSession
from app.panel.security import hash_password
from app.panel.utils import utcnow


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("JWT_SECRET", "test-jwt-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("LOGIN_RATE_LIMIT", "3")
    monkeypatch.delenv("SESSION_TTL_DAYS", raising=False)
    monkeypatch.delenv("TRUSTED_PROXY_HOPS", raising=False)

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        s.add_all(
            [
                User(username="admin", email="admin@example.com", password_hash=hash_password("admin-pw"), is_admin=True),
                User(username="alice", email="alice@example.com", password_hash=hash_password("alice-pw")),
                User(
                    username="mallory",
                    email="mallory@example.com",
                    password_hash=hash_password("mallory-pw"),
                    is_banned=True,
                ),
            ]
        )
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, username="alice", password="alice-pw"):
    return client.post("/api/auth/login", json={"username": username, "password": password})


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


def _actions(app):
    with session_scope(app) as s:
        return [(a.action, a.user_id) for a in s.query(AuditLog).order_by(AuditLog.id).all()]


def test_login_success_creates_session_and_audit(app, client):
    r = _login(client)
    assert r.status_code == 200
    body = r.json
    assert body["success"] is True
    assert body["user"]["username"] == "alice"
    assert body["user"]["isAdmin"] is False
    assert body["user"]["loginCount"] == 1
    assert body["expiresAt"].endswith("Z")

    claims = jwt.decode(body["token"], "test-jwt-secret", algorithms=["HS256"])
    with session_scope(app) as s:
        user = s.query(User).filter(User.username == "alice").one()
        session = s.query(LoginSession).one()
        assert session.user_id == user.id
        assert session.token == claims["sessionId"]
        assert claims["userId"] == user.id
        assert claims["isAdmin"] is False
        assert session.expires_at - session.created_at == timedelta(days=7)
        assert user.last_login is not None
        assert user.login_count == 1

    assert ("login", user.id) in _actions(app)


def test_login_by_email(client):
    r = _login(client, username="ALICE@example.com")
    assert r.status_code == 200
    assert r.json["user"]["username"] == "alice"


def test_login_wrong_password_is_audited(app, client):
    r = _login(client, password="nope")
    assert r.status_code == 401
    assert r.json == {"success": False, "error": "Invalid credentials"}
    actions = _actions(app)
    assert len(actions) == 1
    assert actions[0][0] == "login_failed"
    assert actions[0][1] is not None


def test_login_unknown_user(app, client):
    r = _login(client, username="ghost")
    assert r.status_code == 401
    assert _actions(app) == [("login_failed", None)]


def test_login_banned_user_rejected(client):
    r = _login(client, username="mallory", password="mallory-pw")
    assert r.status_code == 401
    assert r.json["error"] == "Invalid credentials"


def test_login_missing_fields(client):
    r = client.post("/api/auth/login", json={"username": "alice"})
    assert r.status_code == 400


def test_login_rate_limited_after_failures(client):
    for _ in range(3):
        assert _login(client, password="bad").status_code == 401
    r = _login(client)
    assert r.status_code == 429


def test_me_requires_token(client):
    r = client.get("/api/auth/me")
    assert r.status_code == 401
    r = client.get("/api/auth/me", headers=_auth("not-a-jwt"))
    assert r.status_code == 401


def test_me_returns_current_user(client):
    token = _login(client).json["token"]
    r = client.get("/api/auth/me", headers=_auth(token))
    assert r.status_code == 200
    assert r.json["user"]["username"] == "alice"
    assert "password_hash" not in r.json["user"]


def test_token_signed_with_other_secret_rejected(client):
    token = _login(client).json["token"]
    claims = jwt.decode(token, "test-jwt-secret", algorithms=["HS256"])
    forged = jwt.encode(claims, "someone-elses-secret", algorithm="HS256")
    assert client.get("/api/auth/me", headers=_auth(forged)).status_code == 401


def test_logout_revokes_session(app, client):
    token = _login(client).json["token"]
    r = client.post("/api/auth/logout", headers=_auth(token))
    assert r.status_code == 200
    assert r.json["success"] is True

    assert client.get("/api/auth/me", headers=_auth(token)).status_code == 401
    with session_scope(app) as s:
        session = s.query(LoginSession).one()
        assert session.is_revoked is True
        assert session.revoked_at is not None
    assert [a for a, _ in _actions(app)] == ["login", "logout"]


def test_logout_without_token_is_noop(app, client):
    r = client.post("/api/auth/logout")
    assert r.status_code == 200
    assert _actions(app) == []


def test_check_session(client):
    assert client.get("/api/auth/check-session").status_code == 401

    token = _login(client).json["token"]
    r = client.get("/api/auth/check-session", headers=_auth(token))
    assert r.status_code == 200
    assert r.json["valid"] is True
    assert r.json["user"]["username"] == "alice"

    client.post("/api/auth/logout", headers=_auth(token))
    r = client.get("/api/auth/check-session", headers=_auth(token))
    assert r.status_code == 200
    assert r.json == {"valid": False}


def test_expired_session_row_invalidates_token(app, client):
    token = _login(client).json["token"]
    with session_scope(app) as s:
        session = s.query(LoginSession).one()
        session.expires_at = utcnow() - timedelta(minutes=1)
    assert client.get("/api/auth/me", headers=_auth(token)).status_code == 401


def test_banning_invalidates_existing_token(app, client):
    token = _login(client).json["token"]
    with session_scope(app) as s:
        s.query(User).filter(User.username == "alice").one().is_banned = True
    assert client.get("/api/auth/me", headers=_auth(token)).status_code == 401


def test_non_admin_gets_403_on_admin_routes(client):
    token = _login(client).json["token"]
    r = client.get("/api/admin/users", headers=_auth(token))
    assert r.status_code == 403
    assert r.json["error"] == "Admin access required"


def test_rate_limit_ignores_forwarded_for_without_trusted_proxy(client):
    codes = []
    for i in range(6):
        r = client.post(
            "/api/auth/login",
            json={"username": "alice", "password": "bad"},
            headers={"X-Forwarded-For": f"10.0.0.{i}"},
        )
        codes.append(r.status_code)
    assert codes == [401, 401, 401, 429, 429, 429]


def test_rate_limit_response_shape(client):
    for _ in range(3):
        _login(client, password="bad")
    r = _login(client)
    assert r.status_code == 429
    assert r.json["success"] is False
    assert "Too many login attempts" in r.json["error"]


def test_failed_login_records_peer_address_not_forwarded_header(app, client):
    client.post(
        "/api/auth/login",
        json={"username": "alice", "password": "bad"},
        headers={"X-Forwarded-For": "6.6.6.6"},
    )
    with session_scope(app) as s:
        assert s.query(AuditLog).one().ip_address == "127.0.0.1"


def test_authenticated_request_touches_session(app, client):
    token = _login(client).json["token"]
    earlier = utcnow() - timedelta(seconds=5)
    with session_scope(app) as s:
        s.query(LoginSession).one().last_activity = earlier

    assert client.get("/api/auth/me", headers=_auth(token)).status_code == 200
    with session_scope(app) as s:
        session = s.query(LoginSession).one()
        assert session.last_activity > earlier
        assert session.updated_at == session.last_activity


@pytest.mark.parametrize(
    "body",
    [
        {"username": 123, "password": "alice-pw"},
        {"username": "alice", "password": 1234567},
        {"username": ["alice"], "password": {"x": 1}},
    ],
)
def test_login_rejects_non_string_credentials(app, client, body):
    r = client.post("/api/auth/login", json=body)
    assert r.status_code == 400
    assert r.json["success"] is False
    assert _actions(app) == []


def test_login_rejects_non_object_body(client):
    r = client.post("/api/auth/login", json=["alice", "alice-pw"])
    assert r.status_code == 400
    assert r.json["error"] == "Request body must be a JSON object"


def test_oversized_request_id_is_replaced(app, client):
    r = client.post(
        "/api/auth/login",
        json={"username": "alice", "password": "bad"},
        headers={"X-Request-ID": "x" * 500},
    )
    assert r.status_code == 401
    rid = r.headers["X-Request-ID"]
    assert len(rid) == 32
    with session_scope(app) as s:
        assert s.query(AuditLog).one().request_id == rid


def test_request_id_with_unsafe_characters_is_replaced(client):
    r = client.get("/api/auth/check-session", headers={"X-Request-ID": "abc def;<script>"})
    assert r.headers["X-Request-ID"] != "abc def;<script>"


def test_well_formed_request_id_is_kept_on_audit_rows(app, client):
    client.post(
        "/api/auth/login",
        json={"username": "alice", "password": "bad"},
        headers={"X-Request-ID": "req-42.a:b"},
    )
    with session_scope(app) as s:
        assert s.query(AuditLog).order_by(AuditLog.id.desc()).first().request_id == "req-42.a:b"


def test_wrong_method_returns_json_405(client):
    r = client.get("/api/auth/login")
    assert r.status_code == 405
    assert r.json == {"success": False, "error": "Method not allowed"}


def test_oversized_body_returns_json_413(client):
    r = client.post(
        "/api/auth/login",
        data=b"{" + b" " * (1024 * 1024 + 10) + b"}",
        content_type="application/json",
    )
    assert r.status_code == 413
    assert r.json == {"success": False, "error": "Request body too large"}
