"""
Unread count service.

Counts are never stored: each one is derived from a message stream and the
reader's "last read" watermark. A missing watermark means the reader has
never opened the stream, so every message counts as unread.
"""

from typing import Dict, List, Optional
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, and_
from streetpaddle.database.models import (
    User,
    GroupMember,
    GroupMessage,
    PublicMessage,
    ChangeKind,
)
from streetpaddle.services.change_feed import ChangeFeed, ChangeEvent
from streetpaddle.utils.datetime_utils import utcnow, EPOCH_ZERO
import logging

logger = logging.getLogger(__name__)


async def get_group_ids_for_user(session: AsyncSession, user_id: str) -> List[str]:
    """
    Get the IDs of every group the user currently belongs to.

    Args:
        session: Database session
        user_id: ID of the user

    Returns:
        List of group IDs (ordered for stable fan-out)
    """
    result = await session.execute(
        select(GroupMember.group_id)
        .where(GroupMember.user_id == user_id)
        .order_by(GroupMember.group_id)
    )
    return list(result.scalars().all())


async def compute_unread_for_group(session: AsyncSession, group_id: str, user_id: str) -> int:
    """
    Count messages in a group newer than the user's watermark.

    Args:
        session: Database session
        group_id: ID of the group
        user_id: ID of the reader

    Returns:
        Number of unread messages; 0 if the user is not a member
    """
    result = await session.execute(
        select(GroupMember.last_read_at).where(
            and_(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
        )
    )
    row = result.one_or_none()
    if row is None:
        return 0

    watermark = row[0] or EPOCH_ZERO

    result = await session.execute(
        select(func.count())
        .select_from(GroupMessage)
        .where(
            and_(
                GroupMessage.group_id == group_id,
                GroupMessage.created_at > watermark,
            )
        )
    )
    return result.scalar_one() or 0


async def compute_unread_announcements(session: AsyncSession, user_id: str) -> int:
    """
    Count announcements newer than the user's announcement watermark.

    Args:
        session: Database session
        user_id: ID of the reader

    Returns:
        Number of unread announcements

    Raises:
        ValueError: If the user does not exist
    """
    result = await session.execute(
        select(User.last_read_announcements_at).where(User.id == user_id)
    )
    row = result.one_or_none()
    if row is None:
        raise ValueError("User not found")

    watermark = row[0] or EPOCH_ZERO

    result = await session.execute(
        select(func.count())
        .select_from(PublicMessage)
        .where(PublicMessage.created_at > watermark)
    )
    return result.scalar_one() or 0


async def get_unread_summary(session: AsyncSession, user_id: str) -> Dict:
    """
    Per-group and announcement unread counts computed in one session.

    Used for inbox listings; the badge total goes through UnreadAggregator,
    which isolates failures per group.

    Returns:
        Dict with ``groups`` (group_id -> count), ``announcements`` and ``total``
    """
    groups = {}
    for group_id in await get_group_ids_for_user(session, user_id):
        groups[group_id] = await compute_unread_for_group(session, group_id, user_id)
    announcements = await compute_unread_announcements(session, user_id)
    return {
        "groups": groups,
        "announcements": announcements,
        "total": sum(groups.values()) + announcements,
    }


async def mark_group_read(
    session: AsyncSession,
    group_id: str,
    user_id: str,
    feed: Optional[ChangeFeed] = None,
) -> datetime:
    """
    Move the user's watermark for a group to now.

    Args:
        session: Database session
        group_id: ID of the group
        user_id: ID of the reader
        feed: Optional change feed to notify listeners after commit

    Returns:
        The new watermark

    Raises:
        ValueError: If the user is not a member of the group
    """
    now = utcnow()
    result = await session.execute(
        update(GroupMember)
        .where(and_(GroupMember.group_id == group_id, GroupMember.user_id == user_id))
        .values(last_read_at=now)
    )
    if result.rowcount == 0:
        raise ValueError("Group not found or user is not a member")

    await session.commit()

    if feed is not None:
        feed.publish(
            ChangeEvent(kind=ChangeKind.WATERMARK, group_id=group_id, user_ids=frozenset({user_id}))
        )
    return now


async def mark_announcements_read(
    session: AsyncSession,
    user_id: str,
    feed: Optional[ChangeFeed] = None,
) -> datetime:
    """
    Move the user's announcement watermark to now.

    Raises:
        ValueError: If the user does not exist
    """
    now = utcnow()
    result = await session.execute(
        update(User).where(User.id == user_id).values(last_read_announcements_at=now)
    )
    if result.rowcount == 0:
        raise ValueError("User not found")

    await session.commit()

    if feed is not None:
        feed.publish(ChangeEvent(kind=ChangeKind.WATERMARK, user_ids=frozenset({user_id})))
    return now
