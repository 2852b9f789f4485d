"""
Seed Administrator

Creates the first administrator account.
Run this script once to set up the admin account.

Credentials come from the environment:
    SEED_ADMIN_EMAIL, SEED_ADMIN_PASSWORD, SEED_ADMIN_FIRST_NAME, SEED_ADMIN_LAST_NAME

Usage:
    cd apps/api
    python scripts/seed_admin.py
"""

import asyncio
import os
import sys
from pathlib import Path

# Add the src directory to the path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from intake.core.database import async_session_maker, close_db
from intake.core.exceptions import ServiceError
from intake.modules.admissions.credentials import provision_admin
from intake.modules.admissions.store import SqlAdmissionStore
from intake.modules.recovery.service import validate_secret_strength


async def seed_admin() -> int:
    """Create the administrator if it doesn't exist. Returns an exit code."""
    email = os.getenv("SEED_ADMIN_EMAIL")
    password = os.getenv("SEED_ADMIN_PASSWORD")
    first_name = os.getenv("SEED_ADMIN_FIRST_NAME", "Admin")
    last_name = os.getenv("SEED_ADMIN_LAST_NAME", "")

    if not email or not password:
        print("SEED_ADMIN_EMAIL and SEED_ADMIN_PASSWORD must be set")
        return 1

    try:
        validate_secret_strength(password)
        async with async_session_maker() as db:
            admin = await provision_admin(
                SqlAdmissionStore(db),
                email=email,
                password=password,
                first_name=first_name,
                last_name=last_name,
            )
    except ServiceError as e:
        print(f"Admin not created: {e.message}")
        return 1
    finally:
        await close_db()

    print("Administrator created successfully!")
    print(f"  Email: {admin.email}")
    print(f"  Name: {admin.full_name}")
    print(f"  ID: {admin.id}")
    print(f"  Role: {admin.role.value}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(seed_admin()))
