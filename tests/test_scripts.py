"""Tests for the operations scripts (seed, purge, start)."""
from datetime import timedelta

import pytest

from app.panel.models import Base, User
from app.panel.modules.sessions.models import LoginSession
from app.panel.security import hash_password, verify_password
from app.panel.utils import utcnow
from scripts import init_db, purge_expired_sessions, start
from scripts._db_utils import create_script_engine, script_session


@pytest.fixture()
def db_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path/'scripts.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    engine = create_script_engine(url)
    Base.metadata.create_all(bind=engine)
    engine.dispose()
    return url


def test_seed_is_idempotent_and_keeps_existing_password(db_url, monkeypatch):
    monkeypatch.setenv("ADMIN_USERNAME", "root")
    monkeypatch.setenv("ADMIN_EMAIL", "Root@Example.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "first-pw")
    init_db.seed_only(database_url=db_url)

    monkeypatch.setenv("ADMIN_PASSWORD", "second-pw")
    init_db.seed_only(database_url=db_url)

    with script_session(db_url) as s:
        users = s.query(User).all()
        assert len(users) == 1
        assert users[0].username == "root"
        assert users[0].email == "root@example.com"
        assert users[0].is_admin is True
        assert verify_password(users[0].password_hash, "first-pw")
        assert not verify_password(users[0].password_hash, "second-pw")


def test_seed_promotes_existing_user_without_touching_password(db_url, monkeypatch):
    with script_session(db_url) as s:
        s.add(User(username="root", email="root@example.com", password_hash=hash_password("mine")))
    monkeypatch.setenv("ADMIN_USERNAME", "root")
    monkeypatch.setenv("ADMIN_PASSWORD", "other")
    init_db.seed_only(database_url=db_url)

    with script_session(db_url) as s:
        user = s.query(User).one()
        assert user.is_admin is True
        assert verify_password(user.password_hash, "mine")


def _seed_sessions(db_url):
    now = utcnow()
    with script_session(db_url) as s:
        user = User(username="alice", email="alice@example.com", password_hash=hash_password("alice-pw"))
        s.add(user)
        s.flush()
        s.add_all(
            [
                LoginSession(user_id=user.id, token="expired", expires_at=now - timedelta(days=2)),
                LoginSession(user_id=user.id, token="live", expires_at=now + timedelta(days=2)),
            ]
        )


def test_purge_dry_run_rolls_back(db_url, monkeypatch, capsys):
    _seed_sessions(db_url)
    monkeypatch.setattr("sys.argv", ["purge_expired_sessions.py", "--dry-run"])
    purge_expired_sessions.main()
    assert "Would delete 1 session row(s)" in capsys.readouterr().out

    with script_session(db_url) as s:
        assert sorted(t for (t,) in s.query(LoginSession.token).all()) == ["expired", "live"]


def test_purge_deletes_expired_rows(db_url, monkeypatch, capsys):
    _seed_sessions(db_url)
    monkeypatch.setattr("sys.argv", ["purge_expired_sessions.py", "--days", "1"])
    purge_expired_sessions.main()
    assert "Deleted 1 session row(s)" in capsys.readouterr().out

    with script_session(db_url) as s:
        assert [t for (t,) in s.query(LoginSession.token).all()] == ["live"]


def test_gunicorn_argv():
    argv = start.gunicorn_argv(port=8080, workers=4, timeout=30)
    assert argv[:2] == ["gunicorn", "app.wsgi:app"]
    assert argv[argv.index("--bind") + 1] == "0.0.0.0:8080"
    assert argv[argv.index("--workers") + 1] == "4"
    assert argv[argv.index("--timeout") + 1] == "30"
    assert "--forwarded-allow-ips" not in argv
    assert "--forwarded-allow-ips" in start.gunicorn_argv(port=1, workers=1, timeout=1, trust_proxy=True)


def test_start_execs_gunicorn_with_env_settings(monkeypatch):
    calls = []
    monkeypatch.setattr(start.os, "execvp", lambda file, args: calls.append((file, args)))
    monkeypatch.setenv("PORT", "9000")
    monkeypatch.setenv("WEB_CONCURRENCY", "3")
    monkeypatch.setenv("GUNICORN_TIMEOUT", "90")
    monkeypatch.delenv("TRUSTED_PROXY_HOPS", raising=False)

    start.main(["--skip-release"])

    (file, args), = calls
    assert file == "gunicorn"
    assert args == start.gunicorn_argv(port=9000, workers=3, timeout=90)


@pytest.mark.parametrize("port", ["abc", "0", "70000"])
def test_start_rejects_bad_port(monkeypatch, port):
    monkeypatch.setenv("PORT", port)
    with pytest.raises(SystemExit):
        start.main(["--skip-release"])
