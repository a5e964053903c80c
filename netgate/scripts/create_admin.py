"""
One-time bootstrap script — creates the first ADMIN user.

Usage:
    python -m netgate.scripts.create_admin

You only need this ONCE.  Run ``alembic upgrade head`` first.
"""

import asyncio
import getpass

from netgate.core.config import get_settings
from netgate.core.database import Database
from netgate.core.errors import ValidationError
from netgate.services.user_service import UserService


async def create_admin() -> None:
    settings = get_settings()
    database = Database.from_settings(settings)

    # ── Collect input ────────────────────────────────────────────────
    print("\n🔧  Netgate — First Admin Setup\n")
    email = input("  Admin email: ").strip()
    username = input("  Username:    ").strip()
    password = getpass.getpass("  Password:    ")
    confirm = getpass.getpass("  Confirm:     ")

    if password != confirm:
        print("\n❌  Passwords do not match.")
        return
    if not email or not username or not password:
        print("\n❌  All fields are required.")
        return

    # ── Create the admin user ────────────────────────────────────────
    try:
        admin_user = await UserService(database, settings).create_user(
            email=email,
            username=username,
            password=password,
            is_admin=True,
        )
    except ValidationError as exc:
        print(f"\n❌  {exc.message}")
        return
    finally:
        await database.dispose()

    print("\n✅  Admin user created successfully!")
    print(f"    ID:       {admin_user.id}")
    print(f"    Email:    {admin_user.email}")
    print(f"    Username: {admin_user.username}")
    print("\n   You can now log in via POST /api/auth/login\n")


if __name__ == "__main__":
    asyncio.run(create_admin())
