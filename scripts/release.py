"""
Deploy step for the user management service: bring the schema to the
target Alembic revision, then make sure the bootstrap admin exists.

The admin account comes from ADMIN_EMAIL / ADMIN_PASSWORD (plus the
optional ADMIN_FIRST_NAME / ADMIN_LAST_NAME); see init_db.seed_only.

Usage:
  python scripts/release.py [--revision REV] [--skip-seed]
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from alembic import command
from alembic.config import Config
from dotenv import load_dotenv

from app.ums.config import load_settings
from scripts import init_db


def alembic_config(database_url: str) -> Config:
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", database_url)
    return cfg


def migrate(database_url: str, revision: str = "head") -> None:
    print(f"Upgrading schema to {revision}", flush=True)
    command.upgrade(alembic_config(database_url), revision)


def run_release(*, database_url: str | None = None, revision: str = "head", seed: bool = True) -> None:
    settings = load_settings()
    db_url = (database_url or settings.database_url).strip()
    if settings.env.strip().lower() in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")

    migrate(db_url, revision)
    if seed:
        init_db.seed_only(database_url=db_url)
    print(f"Release complete (revision={revision}, seeded={seed})", flush=True)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Migrate the database and seed the bootstrap admin.")
    parser.add_argument("--revision", default="head", help="Alembic revision to upgrade to (default: head)")
    parser.add_argument("--skip-seed", action="store_true", help="Only run migrations")
    args = parser.parse_args(argv)

    load_dotenv()
    run_release(revision=args.revision, seed=not args.skip_seed)


if __name__ == "__main__":
    main()
