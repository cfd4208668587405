import time

from flask import Blueprint, current_app
from sqlalchemy import text

from app.panel.db import db_session
from app.panel.utils import isoformat, utcnow

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast liveness probe. No DB access, minimal overhead.
    """
    return "ok", 200


@bp.get("/api/health")
def api_health():
    """Readiness check including a trivial DB round trip."""
    database = "connected"
    try:
        db_session().execute(text("SELECT 1"))
    except Exception as e:
        current_app.logger.error("Health check DB error: %s", e)
        database = "error"
    started = current_app.extensions.get("started_at", time.time())
    return {
        "status": "ok" if database == "connected" else "degraded",
        "timestamp": isoformat(utcnow()),
        "uptime": round(time.time() - started, 1),
        "database": database,
    }, (200 if database == "connected" else 503)
