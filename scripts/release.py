"""
Release phase: migrate the database, then seed reference data.

- Fails fast if DATABASE_URL is missing (no silent SQLite in prod).
- Runs Alembic migrations to head.
- Seeds the RBAC catalog, standard controls, default org and owner user
  (idempotent; existing passwords are left alone). Set SKIP_SEED=1 to skip.

Usage:
  python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _require_env(name: str) -> str:
    v = (os.environ.get(name) or "").strip()
    if not v:
        raise RuntimeError(f"Missing required environment variable {name}.")
    return v


def run_migrations(db_url: str) -> None:
    from alembic import command
    from alembic.config import Config

    from app.companyos.config import normalize_database_url

    print("Running Alembic migrations...", flush=True)
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", normalize_database_url(db_url))
    command.upgrade(cfg, "head")
    print("Migrations complete.", flush=True)


def run_seed(db_url: str) -> None:
    if (os.environ.get("SKIP_SEED") or "").strip() in ("1", "true", "yes"):
        print("SKIP_SEED set; not seeding.", flush=True)
        return
    print("Seeding reference data (idempotent)...", flush=True)
    from scripts import init_db

    init_db.seed_only(database_url=db_url)
    print("Seed complete.", flush=True)


def run_release() -> None:
    db_url = _require_env("DATABASE_URL")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to run release on sqlite DATABASE_URL in production. Set DATABASE_URL to Postgres.")

    print("=== CompanyOS release start ===", flush=True)
    print(f"ENV={env or '(unset)'}", flush=True)
    run_migrations(db_url)
    run_seed(db_url)
    print("=== CompanyOS release done ===", flush=True)


def main() -> None:
    run_release()


if __name__ == "__main__":
    main()
