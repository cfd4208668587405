import os
from dataclasses import dataclass


DEFAULT_SECRET = "change-me"
DEFAULT_SERVER_ORIGINS = ("http://localhost:5003", "http://127.0.0.1:5003")


@dataclass(frozen=True)
class Settings:
    secret_key: str
    jwt_secret: str
    env: str
    database_url: str
    db_auto_create: bool

    session_ttl_days: int
    frontend_url: str
    cors_origins: tuple[str, ...]

    login_rate_limit: int
    login_rate_window: int
    log_level: str
    trusted_proxy_hops: int


def is_production(env: str | None) -> bool:
    return (env or "").strip().lower() in ("prod", "production")


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getint(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).")


def _parse_origins(raw: str) -> tuple[str, ...]:
    return tuple(o.strip() for o in raw.split(",") if o.strip())


def load_settings() -> Settings:
    env = _getenv("ENV", "development").lower()
    secret_key = _getenv("SECRET_KEY", DEFAULT_SECRET)
    frontend_url = _getenv("FRONTEND_URL", "http://localhost:3000")
    origins = _parse_origins(_getenv("CORS_ORIGINS"))
    if not origins:
        origins = (frontend_url, *DEFAULT_SERVER_ORIGINS)
    auto_create_default = "0" if is_production(env) else "1"
    return Settings(
        secret_key=secret_key,
        jwt_secret=_getenv("JWT_SECRET", secret_key),
        env=env,
        database_url=_getenv("DATABASE_URL", "sqlite:///trauma.db"),
        db_auto_create=_getenv("DB_AUTO_CREATE", auto_create_default) == "1",
        session_ttl_days=_getint("SESSION_TTL_DAYS", 7),
        frontend_url=frontend_url,
        cors_origins=origins,
        login_rate_limit=_getint("LOGIN_RATE_LIMIT", 5),
        login_rate_window=_getint("LOGIN_RATE_WINDOW", 300),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        trusted_proxy_hops=_getint("TRUSTED_PROXY_HOPS", 0),
    )


def load_config() -> dict:
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "JWT_SECRET": s.jwt_secret,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "DB_AUTO_CREATE": s.db_auto_create,
        "SESSION_TTL_DAYS": s.session_ttl_days,
        "FRONTEND_URL": s.frontend_url,
        "CORS_ORIGINS": list(s.cors_origins),
        "LOGIN_RATE_LIMIT": s.login_rate_limit,
        "LOGIN_RATE_WINDOW": s.login_rate_window,
        "LOG_LEVEL": s.log_level,
        "TRUSTED_PROXY_HOPS": s.trusted_proxy_hops,
    }
