#!/usr/bin/env python3
"""
Container entrypoint: migrate + seed, then hand the process over to gunicorn.

Environment:
  PORT              listen port (default 5003)
  WEB_CONCURRENCY   gunicorn workers (default 2)
  GUNICORN_TIMEOUT  worker timeout in seconds (default 60)
  TRUSTED_PROXY_HOPS  also passed to gunicorn as --forwarded-allow-ips when > 0

Usage:
    python scripts/start.py [--skip-release]
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

DEFAULT_PORT = 5003


def _env_int(name: str, default: int, *, low: int = 1, high: int | None = None) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise SystemExit(f"ERROR: {name}={raw!r} is not an integer.")
    if value < low or (high is not None and value > high):
        raise SystemExit(f"ERROR: {name}={value} is out of range.")
    return value


def gunicorn_argv(*, port: int, workers: int, timeout: int, trust_proxy: bool = False) -> list[str]:
    argv = [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", str(workers),
        "--timeout", str(timeout),
        "--preload",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]
    if trust_proxy:
        argv += ["--forwarded-allow-ips", "*"]
    return argv


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--skip-release", action="store_true", help="Do not run migrations/seed before starting")
    args = parser.parse_args(argv)

    port = _env_int("PORT", DEFAULT_PORT, high=65535)
    workers = _env_int("WEB_CONCURRENCY", 2)
    timeout = _env_int("GUNICORN_TIMEOUT", 60)
    trust_proxy = _env_int("TRUSTED_PROXY_HOPS", 0, low=0) > 0

    if not args.skip_release:
        from scripts.release import run_release

        try:
            run_release()
        except Exception as e:
            raise SystemExit(f"Release failed: {e}")

    cmd = gunicorn_argv(port=port, workers=workers, timeout=timeout, trust_proxy=trust_proxy)
    print(f"trauma-admin: exec {' '.join(cmd)}", flush=True)
    # gunicorn replaces this process so it receives SIGTERM directly
    os.execvp(cmd[0], cmd)


if __name__ == "__main__":
    main()
