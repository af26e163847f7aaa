"""
Release phase for ContactHub: migrate, seed the superadmin, optionally prune
expired cache snapshots.

Refuses to touch sqlite when ENV=production.

Usage:
  python scripts/release.py
  python scripts/release.py --skip-seed --prune-cache
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _database_url() -> str:
    db_url = (os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("DATABASE_URL is not set; refusing to guess a database for a release.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("ENV=production with a sqlite DATABASE_URL. Point DATABASE_URL at Postgres.")
    return db_url


def migrate(db_url: str, revision: str = "head") -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    print(f"Upgrading schema to {revision}...", flush=True)
    command.upgrade(cfg, revision)


def prune_cache() -> int:
    """Reading an expired snapshot deletes it, so one pass over the keys is a prune."""
    from app.contacthub.cache import StorageCache
    from app.contacthub.config import load_config
    from app.contacthub.storage import storage_from_config

    config = load_config()
    cache = StorageCache(storage_from_config(config), default_ttl=config["CACHE_TTL_SECONDS"])
    keys = cache.keys()
    removed = sum(1 for key in keys if cache.get(key) is None)
    print(f"Pruned {removed} of {len(keys)} cache snapshots.", flush=True)
    return removed


def run_release(*, seed: bool = True, migrations: bool = True, prune: bool = False, revision: str = "head") -> None:
    db_url = _database_url()
    print(f"=== ContactHub release (ENV={os.environ.get('ENV') or 'unset'}) ===", flush=True)

    if migrations:
        migrate(db_url, revision)
    if seed:
        from scripts import init_db

        init_db.seed_only(database_url=db_url)
    if prune:
        prune_cache()
    print("=== ContactHub release done ===", flush=True)


def main() -> None:
    parser = argparse.ArgumentParser(description="ContactHub release phase")
    parser.add_argument("--skip-migrations", action="store_true", help="Do not run alembic")
    parser.add_argument("--skip-seed", action="store_true", help="Do not seed the superadmin")
    parser.add_argument("--prune-cache", action="store_true", help="Delete expired cache snapshots")
    parser.add_argument("--revision", default="head", help="Alembic target revision")
    args = parser.parse_args()

    run_release(
        seed=not args.skip_seed,
        migrations=not args.skip_migrations,
        prune=args.prune_cache,
        revision=args.revision,
    )


if __name__ == "__main__":
    main()
