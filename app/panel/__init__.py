import logging
import os
import time

from dotenv import load_dotenv
from flask import Flask, g, request
from flask_cors import CORS
from sqlalchemy import inspect as sa_inspect
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from app.panel.config import DEFAULT_SECRET, is_production, load_config
from app.panel.constants import UNAUTHENTICATED_PREFIXES
from app.panel.db import init_db, teardown_db_session
from app.panel.routes import bp as routes_bp
from app.panel.auth import bp as auth_bp, assign_request_id, load_current_user
from app.panel.admin import bp as admin_bp
from app.panel.modules.accounts.admin import bp as accounts_bp
from app.panel.modules.sessions.admin import bp as sessions_bp
from app.panel.utils import json_error

# Columns the code relies on; anything missing means migrations were not run.
_EXPECTED_SCHEMA = {
    "users": ("username", "email", "password_hash", "is_admin", "is_banned", "ban_reason", "login_count"),
    "sessions": ("user_id", "token", "expires_at", "last_activity", "is_revoked", "revoked_at"),
    "audit_logs": ("user_id", "admin_id", "action", "details", "metadata_json", "request_id"),
}

_DEFAULT_ERROR_MESSAGES = {
    400: "Bad request",
    401: "Authentication required",
    403: "Forbidden",
    404: "Endpoint not found",
    405: "Method not allowed",
    413: "Request body too large",
    429: "Too many requests",
}


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config.setdefault("MAX_CONTENT_LENGTH", 1 * 1024 * 1024)
    app.extensions["started_at"] = time.time()

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if is_production(env):
        if not os.environ.get("DATABASE_URL"):
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if app.config.get("SECRET_KEY") in ("", DEFAULT_SECRET):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if app.config.get("JWT_SECRET") in ("", DEFAULT_SECRET):
            raise RuntimeError("JWT_SECRET must be set to a strong value in production (not default).")

    hops = app.config["TRUSTED_PROXY_HOPS"]
    if hops > 0:
        # Only then do X-Forwarded-* headers become remote_addr / scheme.
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=hops, x_proto=hops, x_host=hops)
        app.logger.info("Trusting %s proxy hop(s) for client addresses", hops)

    CORS(
        app,
        resources={r"/api/*": {"origins": app.config["CORS_ORIGINS"]}},
        supports_credentials=True,
        methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        expose_headers=["Content-Range", "X-Content-Range", "X-Request-ID"],
    )
    app.logger.info("CORS allowlist: %s", app.config["CORS_ORIGINS"])

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")
    app.register_blueprint(accounts_bp, url_prefix="/api/admin")
    app.register_blueprint(sessions_bp, url_prefix="/api/admin")

    @app.before_request
    def _request_context():
        assign_request_id()
        if request.path.startswith(UNAUTHENTICATED_PREFIXES):
            g.current_user = None
            g.current_session = None
            return None
        app.logger.info("%s %s (request_id=%s)", request.method, request.full_path.rstrip("?"), g.request_id)
        if request.method == "OPTIONS":
            return None
        return load_current_user()

    @app.after_request
    def _stamp_request_id(response):
        rid = getattr(g, "request_id", None)
        if rid:
            response.headers["X-Request-ID"] = rid
        return response

    app.teardown_appcontext(teardown_db_session)

    # Migration health (lean): detect drift between code expectations and DB schema.
    app.config.setdefault("_schema_health_ok", True)
    app.config.setdefault("_schema_health_missing", [])

    def _run_schema_health_check() -> None:
        missing: list[str] = []
        try:
            insp = sa_inspect(app.extensions["sqlalchemy_engine"])
            for table, columns in _EXPECTED_SCHEMA.items():
                if not insp.has_table(table):
                    missing.append(f"{table} (table)")
                    continue
                present = {c["name"] for c in insp.get_columns(table)}
                missing.extend(f"{table}.{col}" for col in columns if col not in present)
        except Exception as e:
            app.logger.exception("Schema health check failed: %s", e)

        app.config["_schema_health_ok"] = not missing
        app.config["_schema_health_missing"] = missing
        if missing:
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))

    _run_schema_health_check()

    @app.before_request
    def _schema_health_guardrail():  # type: ignore[no-redef]
        if app.config.get("_schema_health_ok"):
            return None
        if request.path.startswith("/api/") and not request.path.startswith(UNAUTHENTICATED_PREFIXES):
            # Tables may have been created since boot (e.g. alembic run against a live app).
            _run_schema_health_check()
            if not app.config.get("_schema_health_ok"):
                return json_error(
                    "Database schema out of date",
                    500,
                    missing=app.config.get("_schema_health_missing") or [],
                )
        return None

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        code = e.code or 500
        message = e.description if e.description != type(e).description else None
        if code == 403:
            missing = getattr(g, "missing_permission", None)
            if missing:
                app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return json_error(message or _DEFAULT_ERROR_MESSAGES.get(code, e.name), code)

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        original = getattr(e, "original_exception", None) or e
        app.logger.error("Unhandled 500 (request_id=%s)", rid, exc_info=original)
        extra = {"requestId": rid}
        if not is_production(env):
            extra["details"] = str(original)
        return json_error("Internal server error", 500, **extra)

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
