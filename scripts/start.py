#!/usr/bin/env python3
"""
Container entrypoint: optionally run the release step, then hand the
process over to gunicorn serving app.wsgi:app.

Environment:
  PORT               listen port (default 8000)
  WEB_CONCURRENCY    gunicorn workers (default 2)
  GUNICORN_TIMEOUT   worker timeout in seconds (default 60)

Usage:
  python scripts/start.py [--no-release]
"""
from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Mapping
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from scripts.release import run_release


def _positive_int(env: Mapping[str, str], name: str, default: int, *, upper: int | None = None) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < 1 or (upper is not None and value > upper):
        raise ValueError(f"{name} out of range: {value}")
    return value


def gunicorn_argv(env: Mapping[str, str] = os.environ) -> list[str]:
    port = _positive_int(env, "PORT", 8000, upper=65535)
    workers = _positive_int(env, "WEB_CONCURRENCY", 2)
    timeout = _positive_int(env, "GUNICORN_TIMEOUT", 60)
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", str(workers),
        "--timeout", str(timeout),
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run the release step and start gunicorn.")
    parser.add_argument("--no-release", action="store_true", help="Skip migrations and admin seeding")
    args = parser.parse_args(argv)

    try:
        cmd = gunicorn_argv()
        if not args.no_release:
            run_release()
    except Exception as e:
        print(f"Startup aborted: {e}", flush=True)
        sys.exit(1)

    print(f"Starting {' '.join(cmd)}", flush=True)
    # exec so gunicorn becomes PID 1 and receives signals directly
    os.execvp(cmd[0], cmd)


if __name__ == "__main__":
    main()
