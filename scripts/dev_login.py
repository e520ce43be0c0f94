#!/usr/bin/env python3
"""
Generate an access token for a local user, creating the user if needed.

Handy for exercising the API and the notification socket without an identity
provider. Users whose e-mail is listed in ADMIN_EMAILS get administrator rights.

Usage:
    python scripts/dev_login.py alice
    python scripts/dev_login.py admin --email admin@example.com
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add apps/ to the path so we can import streetpaddle modules
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "apps"))

from sqlalchemy import select
from streetpaddle.database.db import AsyncSessionLocal
from streetpaddle.database.models import User
from streetpaddle.services import user_service
from streetpaddle.services.auth_service import create_access_token


async def list_users(session):
    """Print existing users for reference."""
    print("\n📋 Existing users:")
    result = await session.execute(select(User.id, User.username, User.email).order_by(User.username).limit(20))
    for row in result.all():
        print(f"  {row[1]:<20}  {row[2] or '-':<30}  {row[0]}")
    print()


async def main(username: str, email: str = None):
    """
    Print a bearer token for the given username.

    Args:
        username: Username to log in as (created if missing)
        email: E-mail to store when the user is created
    """
    async with AsyncSessionLocal() as session:
        result = await session.execute(select(User).where(User.username == username))
        user = result.scalar_one_or_none()
        if user is None:
            user_id = await user_service.create_user(session, username, email=email)
            print(f"✅ Created user {username} ({user_id})")
        else:
            user_id = user.id
            email = user.email

        token = create_access_token(user_id)
        admin = "yes" if user_service.is_admin_email(email) else "no"
        print(f"\n🔑 Token for {username} (admin: {admin}):\n")
        print(token)
        print(f"\nWebSocket: ws://localhost:8000/api/ws/notifications?token={token}")

        await list_users(session)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Generate an access token for a local user")
    parser.add_argument("username", help="Username to log in as")
    parser.add_argument("--email", help="E-mail for a newly created user", default=None)
    args = parser.parse_args()

    asyncio.run(main(args.username, args.email))
