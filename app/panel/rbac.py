from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g

from app.panel.models import User
from app.panel.utils import json_error


def current_user() -> User | None:
    user: User | None = getattr(g, "current_user", None)
    if not user or user.is_banned:
        return None
    return user


def user_is_admin(user: User | None) -> bool:
    return bool(user and not user.is_banned and user.is_admin)


def require_auth(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if current_user() is None:
            return json_error("Authentication required", 401)
        return fn(*args, **kwargs)

    return wrapped


def require_admin(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user = current_user()
        # Unauthenticated → 401 so the client drops its token and re-prompts.
        if user is None:
            return json_error("Authentication required", 401)
        # Authenticated but not an admin → 403
        if not user_is_admin(user):
            g.missing_permission = "admin"
            return json_error("Admin access required", 403)
        return fn(*args, **kwargs)

    return wrapped
