"""
Create the flow automation tables (users, boards, cards, card_comments,
notifications, flow_rules, flow_run_log) and optionally an admin user.

Usage:
    python migrations/create_flow_tables.py [--database-url URL] [--dry-run]
        [--admin-username NAME --admin-password PW [--workspace-id ID]]

Idempotent: only tables missing from the current schema are created, and an
existing admin username is left untouched.
"""

import argparse
import os
import sys

from dotenv import load_dotenv

from sqlalchemy import create_engine, inspect
from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.orm import Session

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

sys.path.insert(0, ROOT_DIR)

load_dotenv()


def normalize_sqlite_path(path: str) -> str:
    """SQLite URL for a filesystem path, relative paths anchored at the repo root."""
    if not os.path.isabs(path):
        path = os.path.join(ROOT_DIR, path)
    return f"sqlite:///{path}"


def infer_database_url(cli_url: str = None) -> str:
    """
    --database-url wins (a bare path means a SQLite file); otherwise use the
    same per-environment lookup as the app.
    """
    from flowauto.db_config import current_environment, resolve_database_url

    if cli_url:
        cli_url = cli_url.strip()
        if "://" not in cli_url:
            return normalize_sqlite_path(cli_url)
        return cli_url.replace("postgres://", "postgresql://", 1)

    url = resolve_database_url(current_environment())
    if url.startswith("sqlite:///") and not url.startswith("sqlite:////"):
        return normalize_sqlite_path(url[len("sqlite:///"):])
    return url


def ensure_admin(engine, username, password, workspace_id=None):
    from flowauto.auth.utils import hash_password
    from flowauto.models import User

    with Session(engine) as session:
        if session.query(User).filter_by(username=username).first():
            print(f"✓ User '{username}' already exists.")
            return
        session.add(User(
            username=username,
            workspace_id=workspace_id,
            password_hash=hash_password(password),
            is_admin=True,
            is_active=True,
        ))
        session.commit()
        print(f"✓ Created admin user '{username}'.")


def migrate(database_url: str = None, admin_username: str = None, admin_password: str = None,
            workspace_id: str = None, dry_run: bool = False) -> bool:
    """Create missing tables, then the admin user if requested."""
    from flowauto.models import db

    db_url = infer_database_url(database_url)
    print(f"Connecting to database: {db_url}")

    engine = create_engine(db_url)
    try:
        existing = set(inspect(engine).get_table_names())
        missing = [table for table in db.metadata.sorted_tables if table.name not in existing]

        if not missing:
            print("✓ All flow tables already exist.")
        for table in missing:
            print(f"{'Would create' if dry_run else 'Creating'} '{table.name}' table...")

        if dry_run:
            return True

        if missing:
            db.metadata.create_all(engine, tables=missing)
            print(f"✓ Created {len(missing)} table(s).")

        if admin_username and admin_password:
            ensure_admin(engine, admin_username, admin_password, workspace_id)

        print("✓ Migration completed successfully.")
        return True

    except (OperationalError, ProgrammingError) as exc:
        print(f"✗ Database error during migration: {exc}")
        return False
    finally:
        engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create flow automation tables.")
    parser.add_argument("--database-url", help="Database URL or SQLite file path (default: from environment).")
    parser.add_argument("--dry-run", action="store_true", help="List the tables that would be created.")
    parser.add_argument("--admin-username", help="Create an admin user with this username.")
    parser.add_argument("--admin-password", help="Password for --admin-username.")
    parser.add_argument("--workspace-id", help="Workspace the admin user belongs to.")
    args = parser.parse_args()

    success = migrate(args.database_url, args.admin_username, args.admin_password,
                      workspace_id=args.workspace_id, dry_run=args.dry_run)
    sys.exit(0 if success else 1)
