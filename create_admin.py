#!/usr/bin/env python3
"""
Create (or promote) an admin account
Run this once per environment after the database is reachable
"""
import argparse
import getpass
import sys

from dotenv import load_dotenv

load_dotenv()

from app.core.config import get_settings
from app.database import build_engine, create_db_and_tables
from app.exceptions import StoreError
from app.infrastructure.identity.local_identity_provider import SqlIdentityProvider
from app.infrastructure.persistence.sqlalchemy.repositories.profile_repository_sql import SqlProfileRepository


def create_admin(email: str, password: str, full_name: str = None) -> int:
    settings = get_settings()
    engine = build_engine(settings)
    try:
        print("Connecting to database...")
        create_db_and_tables(engine)
        identity = SqlIdentityProvider(engine, settings)
        profiles = SqlProfileRepository(engine)

        user = identity.get_user_by_email(email)
        if user is None:
            user = identity.create_user(email, password, email_confirmed=True)
            print(f"Created user {user.email} ({user.id})")
        else:
            print(f"User {user.email} already exists, keeping its password")

        if profiles.get_role_record(user.id) is None:
            profiles.create(user.id, user.email, full_name, "admin")
        else:
            profiles.set_role(user.id, "admin")
        print(f"{user.email} now has the admin role")
        return 0
    except (StoreError, ValueError) as e:
        print(f"Failed to create admin: {e}")
        return 1
    finally:
        engine.dispose()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create or promote an admin account")
    parser.add_argument("email")
    parser.add_argument("--name", dest="full_name", default=None, help="Display name for the profile")
    parser.add_argument("--password", default=None, help="Prompted for when omitted")
    args = parser.parse_args(argv)

    password = args.password or getpass.getpass("Password: ")
    if len(password) < 8:
        print("Password must be at least 8 characters")
        return 1
    return create_admin(args.email.strip().lower(), password, args.full_name)


if __name__ == "__main__":
    sys.exit(main())
