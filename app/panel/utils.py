from __future__ import annotations

import math
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from app.panel.constants import MAX_PAGE_SIZE


def utcnow() -> datetime:
    """Naive UTC timestamp (all DateTime columns store naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def start_of_today() -> datetime:
    return datetime.combine(utcnow().date(), time.min)


def isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="seconds") + "Z"


def parse_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    s = str(value).strip().lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off"):
        return False
    return default


def parse_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def parse_date_bound(raw: str | None, *, end: bool = False) -> datetime | None:
    """
    Parse a YYYY-MM-DD date or ISO datetime used as a range filter.
    A date-only upper bound covers the whole day. Raises ValueError on bad input.
    """
    s = (raw or "").strip()
    if not s:
        return None
    if len(s) == 10:
        d = date.fromisoformat(s)
        if end:
            return datetime.combine(d + timedelta(days=1), time.min) - timedelta(microseconds=1)
        return datetime.combine(d, time.min)
    dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def page_args(args, *, default_limit: int) -> tuple[int, int]:
    """Read page/limit from query args, clamping to sane bounds."""
    page = parse_int(args.get("page"))
    if page is None or page < 1:
        page = 1
    limit = parse_int(args.get("limit"))
    if limit is None or limit < 1:
        limit = default_limit
    limit = min(limit, MAX_PAGE_SIZE)
    return page, limit


def pagination(total: int, page: int, limit: int) -> dict:
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": math.ceil(total / limit) if limit else 0,
    }


def json_error(message: str, status: int, **extra: Any):
    body: dict[str, Any] = {"success": False, "error": message}
    body.update(extra)
    return body, status
