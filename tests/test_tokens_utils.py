from datetime import datetime, timedelta, timezone

import pytest
from werkzeug.datastructures import MultiDict

from app.panel.models import User
from app.panel.modules.sessions.models import LoginSession
from app.panel.security import LoginRateLimiter, password_errors
from app.panel.tokens import decode_token, issue_token
from app.panel.utils import isoformat, page_args, pagination, parse_bool, parse_date_bound, utcnow


def _user_and_session(expires_in: timedelta):
    now = utcnow()
    user = User(id=7, username="alice", password_hash="x", is_admin=True)
    session = LoginSession(user_id=7, token="abc123", created_at=now, expires_at=now + expires_in)
    return user, session


def test_issue_and_decode_token():
    user, session = _user_and_session(timedelta(days=7))
    claims = decode_token(issue_token(user, session, "s3cret"), "s3cret")
    assert claims["userId"] == 7
    assert claims["isAdmin"] is True
    assert claims["sessionId"] == "abc123"
    assert claims["exp"] - claims["iat"] == 7 * 24 * 3600


def test_decode_token_rejects_bad_secret_and_garbage():
    user, session = _user_and_session(timedelta(days=7))
    token = issue_token(user, session, "s3cret")
    assert decode_token(token, "other") is None
    assert decode_token("garbage", "s3cret") is None
    assert decode_token(None, "s3cret") is None


def test_decode_token_rejects_expired():
    user, session = _user_and_session(timedelta(seconds=-5))
    session.created_at = session.expires_at - timedelta(days=1)
    assert decode_token(issue_token(user, session, "s3cret"), "s3cret") is None


def test_page_args_clamps():
    assert page_args(MultiDict(), default_limit=10) == (1, 10)
    assert page_args(MultiDict({"page": "3", "limit": "25"}), default_limit=10) == (3, 25)
    assert page_args(MultiDict({"page": "0", "limit": "-4"}), default_limit=20) == (1, 20)
    assert page_args(MultiDict({"page": "x", "limit": "500"}), default_limit=20) == (1, 100)


def test_pagination_total_pages():
    assert pagination(0, 1, 10)["totalPages"] == 0
    assert pagination(21, 2, 10) == {"total": 21, "page": 2, "limit": 10, "totalPages": 3}


def test_parse_date_bound():
    assert parse_date_bound("2024-03-05") == datetime(2024, 3, 5)
    assert parse_date_bound("2024-03-05", end=True) == datetime(2024, 3, 5, 23, 59, 59, 999999)
    assert parse_date_bound("2024-03-05T10:00:00Z") == datetime(2024, 3, 5, 10, 0)
    assert parse_date_bound("2024-03-05T12:00:00+02:00") == datetime(2024, 3, 5, 10, 0)
    assert parse_date_bound("") is None
    with pytest.raises(ValueError):
        parse_date_bound("05/03/2024")


def test_isoformat_marks_utc():
    assert isoformat(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02T03:04:05Z"
    assert isoformat(datetime(2024, 1, 2, 5, 4, 5, tzinfo=timezone(timedelta(hours=2)))) == "2024-01-02T03:04:05Z"
    assert isoformat(None) is None


def test_parse_bool():
    assert parse_bool("true") is True
    assert parse_bool("0") is False
    assert parse_bool(None, default=True) is True
    assert parse_bool("maybe") is False


def test_password_errors():
    assert password_errors("") == ["Password is required."]
    assert password_errors("12345")
    assert password_errors("1" * 101)
    assert password_errors("123456") == []


def test_login_rate_limiter_window():
    limiter = LoginRateLimiter(2, 60)
    assert not limiter.is_limited("1.2.3.4")
    limiter.record_failure("1.2.3.4")
    limiter.record_failure("1.2.3.4")
    assert limiter.is_limited("1.2.3.4")
    assert not limiter.is_limited("5.6.7.8")

    limiter.reset("1.2.3.4")
    assert not limiter.is_limited("1.2.3.4")

    limiter.record_failure("9.9.9.9")
    limiter.record_failure("9.9.9.9")
    limiter._attempts["9.9.9.9"] = [utcnow() - timedelta(minutes=5)] * 2
    assert not limiter.is_limited("9.9.9.9")


def test_login_rate_limiter_forgets_idle_addresses():
    limiter = LoginRateLimiter(3, 60)
    for i in range(50):
        assert not limiter.is_limited(f"10.0.{i}.1")
    assert limiter._attempts == {}

    limiter.record_failure("1.1.1.1")
    limiter._attempts["1.1.1.1"] = [utcnow() - timedelta(minutes=2)]
    assert not limiter.is_limited("1.1.1.1")
    assert "1.1.1.1" not in limiter._attempts


def test_password_errors_rejects_non_strings():
    assert password_errors(1234567) == ["Password must be a string."]
    assert password_errors(None) == ["Password is required."]
