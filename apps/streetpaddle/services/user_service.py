"""
User service layer for user lookups and administrator checks.

Account creation flows (sign-up, login) live with the identity provider; this
module only manages the local user documents the other services read.
"""

import os
from typing import Optional, Dict
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from streetpaddle.database.models import User
from streetpaddle.utils.datetime_utils import isoformat_or_none
import logging

logger = logging.getLogger(__name__)


def get_admin_emails() -> set:
    """
    Administrator e-mail addresses from the ADMIN_EMAILS setting.

    Read on every call so the allow list can change without a restart.
    """
    raw = os.getenv("ADMIN_EMAILS", "")
    return {e.strip().lower() for e in raw.split(",") if e.strip()}


def is_admin_email(email: Optional[str]) -> bool:
    """Check whether an e-mail address belongs to a tournament administrator."""
    if not email:
        return False
    return email.strip().lower() in get_admin_emails()


async def create_user(
    session: AsyncSession,
    username: str,
    email: Optional[str] = None,
    full_name: Optional[str] = None,
    user_id: Optional[str] = None,
) -> str:
    """
    Create a local user document.

    Args:
        session: Database session
        username: Unique public handle
        email: Optional e-mail address (normalized to lowercase)
        full_name: Optional display name
        user_id: Optional id issued by the identity provider

    Returns:
        ID of the created user

    Raises:
        ValueError: If the username is missing or already taken
    """
    if not username or not username.strip():
        raise ValueError("username is required")
    username = username.strip()

    result = await session.execute(select(User.id).where(User.username == username))
    if result.scalar_one_or_none():
        raise ValueError(f"Username {username} is already taken")

    user = User(
        username=username,
        email=email.strip().lower() if email else None,
        full_name=full_name,
    )
    if user_id:
        user.id = user_id
    session.add(user)
    await session.flush()
    new_id = user.id
    await session.commit()

    return new_id


async def get_user_by_id(session: AsyncSession, user_id: str) -> Optional[Dict]:
    """
    Get user by ID.

    Args:
        session: Database session
        user_id: User ID

    Returns:
        User dictionary or None if not found
    """
    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    return _user_to_dict(user) if user else None


def _user_to_dict(user: User) -> Dict:
    """
    Convert a User ORM instance to a dictionary.

    Args:
        user: User ORM instance

    Returns:
        User dictionary
    """
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "full_name": user.full_name,
        "is_admin": is_admin_email(user.email),
        "last_read_announcements_at": isoformat_or_none(user.last_read_announcements_at),
        "created_at": isoformat_or_none(user.created_at),
    }
