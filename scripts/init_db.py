"""
Seed the first superadmin account.

Idempotent: an existing account with the same email is left untouched
(password and role included). Values come from ADMIN_EMAIL, ADMIN_PASSWORD
and ADMIN_NAME unless given on the command line.

Usage:
  python scripts/init_db.py [--email E] [--name N] [--create-tables]
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.contacthub.config import load_settings  # noqa: E402
from app.contacthub.constants import ROLE_SUPERADMIN  # noqa: E402
from app.contacthub.models import Base, User  # noqa: E402
from app.contacthub.modules.users.utils import default_avatar, unique_username  # noqa: E402


def seed_only(
    *,
    database_url: str | None = None,
    email: str | None = None,
    name: str | None = None,
    create_tables: bool = False,
) -> User | None:
    """Returns the created user, or None when the account already existed."""
    settings = load_settings()
    email = (email or settings.admin_email).strip().lower()
    name = (name or settings.admin_name).strip()
    password = settings.admin_password
    db_url = (database_url or settings.database_url).strip()

    # Plain engine: the release phase runs before (and without) the Flask app.
    engine = create_engine(db_url, future=True)
    if create_tables:
        Base.metadata.create_all(bind=engine)

    try:
        with Session(engine, expire_on_commit=False) as s, s.begin():
            if s.scalar(select(User.id).where(User.email == email)) is not None:
                print(f"Superadmin {email} already exists; nothing to do.", flush=True)
                return None
            taken = set(s.scalars(select(User.username).where(User.username.like("admin%"))))
            user = User(
                email=email,
                username=unique_username("admin", taken),
                password_hash=generate_password_hash(password),
                role=ROLE_SUPERADMIN,
                name=name,
                employee_number="0000",
                position="Administrator",
                avatar=default_avatar(name),
            )
            s.add(user)
        print(f"Created superadmin {email} (username {user.username}).", flush=True)
        if password == "change-me":
            print("WARNING: ADMIN_PASSWORD not set; the default password is in use.", flush=True)
        return user
    finally:
        engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the ContactHub superadmin")
    parser.add_argument("--email", help="Superadmin email (default ADMIN_EMAIL)")
    parser.add_argument("--name", help="Display name (default ADMIN_NAME)")
    parser.add_argument("--create-tables", action="store_true", help="create_all before seeding (local dev only)")
    args = parser.parse_args()
    seed_only(email=args.email, name=args.name, create_tables=args.create_tables)


if __name__ == "__main__":
    main()
