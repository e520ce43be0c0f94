"""
Group chat and announcement service.

Handles group creation, membership changes, message posting and the public
announcement feed. Every write commits and then publishes a change event so
live unread listeners can recompute.
"""

from typing import List, Dict, Optional, Iterable
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, and_
from streetpaddle.database.models import (
    User,
    Group,
    GroupMember,
    GroupMessage,
    PublicMessage,
    ChangeKind,
)
from streetpaddle.services.change_feed import ChangeFeed, ChangeEvent
from streetpaddle.utils.constants import MAX_MESSAGE_LENGTH
from streetpaddle.utils.datetime_utils import utcnow, isoformat_or_none
import logging

logger = logging.getLogger(__name__)


def _publish(feed: Optional[ChangeFeed], kind: ChangeKind, group_id: Optional[str], user_ids: Iterable[str]) -> None:
    if feed is None:
        return
    feed.publish(ChangeEvent(kind=kind, group_id=group_id, user_ids=frozenset(user_ids)))


def _validate_text(text: Optional[str], field: str) -> str:
    if text is None or not text.strip():
        raise ValueError(f"{field} is required")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ValueError(f"{field} must be at most {MAX_MESSAGE_LENGTH} characters")
    return text.strip()


async def _get_member_ids(session: AsyncSession, group_id: str) -> List[str]:
    result = await session.execute(
        select(GroupMember.user_id).where(GroupMember.group_id == group_id)
    )
    return list(result.scalars().all())


async def _require_group(session: AsyncSession, group_id: str) -> Group:
    result = await session.execute(select(Group).where(Group.id == group_id))
    group = result.scalar_one_or_none()
    if not group:
        raise ValueError("Group not found")
    return group


async def is_group_member(session: AsyncSession, group_id: str, user_id: str) -> bool:
    result = await session.execute(
        select(GroupMember.id).where(
            and_(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
        )
    )
    return result.scalar_one_or_none() is not None


def _group_to_dict(group: Group, member_ids: List[str]) -> Dict:
    return {
        "id": group.id,
        "name": group.name,
        "creator_id": group.creator_id,
        "member_ids": sorted(member_ids),
        "latest_message": group.latest_message,
        "latest_message_at": isoformat_or_none(group.latest_message_at),
        "created_at": isoformat_or_none(group.created_at),
    }


def _message_to_dict(message: GroupMessage) -> Dict:
    return {
        "id": message.id,
        "group_id": message.group_id,
        "sender_id": message.sender_id,
        "text": message.text,
        "created_at": isoformat_or_none(message.created_at),
    }


def _announcement_to_dict(announcement: PublicMessage) -> Dict:
    return {
        "id": announcement.id,
        "sender_username": announcement.sender_username,
        "content": announcement.content,
        "created_at": isoformat_or_none(announcement.created_at),
    }


async def create_group(
    session: AsyncSession,
    creator_id: str,
    member_ids: List[str],
    name: Optional[str] = None,
    feed: Optional[ChangeFeed] = None,
) -> Dict:
    """
    Create a group chat.

    The creator is always a member. Every member starts without a watermark,
    so the whole history counts as unread until they open the chat.

    Args:
        session: Database session
        creator_id: User creating the group
        member_ids: Other members (creator may be included)
        name: Optional group name (None for a direct chat)
        feed: Optional change feed

    Returns:
        Group dict

    Raises:
        ValueError: If fewer than two distinct members or an unknown user is given
    """
    all_ids = sorted(set(member_ids) | {creator_id})
    if len(all_ids) < 2:
        raise ValueError("A group needs at least two members")

    result = await session.execute(select(User.id).where(User.id.in_(all_ids)))
    known = set(result.scalars().all())
    missing = [uid for uid in all_ids if uid not in known]
    if missing:
        raise ValueError(f"Unknown user(s): {', '.join(missing)}")

    group = Group(name=name.strip() if name else None, creator_id=creator_id)
    session.add(group)
    await session.flush()
    for uid in all_ids:
        session.add(GroupMember(group_id=group.id, user_id=uid))
    await session.flush()
    group_dict = _group_to_dict(group, all_ids)
    await session.commit()

    _publish(feed, ChangeKind.MEMBERSHIP, group_dict["id"], all_ids)
    logger.info(f"Created group {group_dict['id']} with {len(all_ids)} members")
    return group_dict


async def add_member(
    session: AsyncSession,
    group_id: str,
    user_id: str,
    feed: Optional[ChangeFeed] = None,
) -> Dict:
    """
    Add a user to a group. Adding an existing member is a no-op.

    Raises:
        ValueError: If the group or user does not exist
    """
    group = await _require_group(session, group_id)

    result = await session.execute(select(User.id).where(User.id == user_id))
    if result.scalar_one_or_none() is None:
        raise ValueError("User not found")

    member_ids = await _get_member_ids(session, group_id)
    if user_id in member_ids:
        return _group_to_dict(group, member_ids)

    session.add(GroupMember(group_id=group_id, user_id=user_id))
    await session.flush()
    member_ids.append(user_id)
    group_dict = _group_to_dict(group, member_ids)
    await session.commit()

    _publish(feed, ChangeKind.MEMBERSHIP, group_id, [user_id])
    return group_dict


async def _dissolve_group(session: AsyncSession, group_id: str) -> None:
    """Stage deletion of a group with its messages and memberships."""
    await session.execute(delete(GroupMessage).where(GroupMessage.group_id == group_id))
    await session.execute(delete(GroupMember).where(GroupMember.group_id == group_id))
    await session.execute(delete(Group).where(Group.id == group_id))


async def remove_member(
    session: AsyncSession,
    group_id: str,
    user_id: str,
    feed: Optional[ChangeFeed] = None,
) -> bool:
    """
    Remove a user from a group, dropping their watermark with the membership.

    A group never drops below two members: removing someone from a
    two-person chat deletes the whole group.

    Returns:
        True if a membership was removed
    """
    member_ids = await _get_member_ids(session, group_id)
    if user_id not in member_ids:
        return False

    if len(member_ids) <= 2:
        await _dissolve_group(session, group_id)
        logger.info(f"Deleted group {group_id}: removing {user_id} would leave fewer than two members")
    else:
        await session.execute(
            delete(GroupMember).where(
                and_(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
            )
        )
    await session.commit()

    _publish(feed, ChangeKind.MEMBERSHIP, group_id, member_ids)
    return True


async def delete_group(
    session: AsyncSession,
    group_id: str,
    user_id: str,
    feed: Optional[ChangeFeed] = None,
) -> List[str]:
    """
    Delete a group chat with all its messages. Any member may delete it.

    Returns:
        IDs of the former members

    Raises:
        ValueError: If the group does not exist or the user is not a member
    """
    member_ids = await _get_member_ids(session, group_id)
    if user_id not in member_ids:
        raise ValueError("Group not found or user is not a member")

    await _dissolve_group(session, group_id)
    await session.commit()

    _publish(feed, ChangeKind.MEMBERSHIP, group_id, member_ids)
    logger.info(f"Group {group_id} deleted by user {user_id}")
    return member_ids


async def get_group(session: AsyncSession, group_id: str) -> Optional[Dict]:
    result = await session.execute(select(Group).where(Group.id == group_id))
    group = result.scalar_one_or_none()
    if not group:
        return None
    return _group_to_dict(group, await _get_member_ids(session, group_id))


async def list_groups_for_user(session: AsyncSession, user_id: str) -> List[Dict]:
    """
    List the user's groups, most recently active first.
    """
    result = await session.execute(
        select(Group)
        .join(GroupMember, GroupMember.group_id == Group.id)
        .where(GroupMember.user_id == user_id)
    )
    groups = result.scalars().all()

    group_dicts = []
    for group in groups:
        member_ids = await _get_member_ids(session, group.id)
        group_dicts.append(_group_to_dict(group, member_ids))

    # Groups without messages sort by creation time
    group_dicts.sort(
        key=lambda g: g["latest_message_at"] or g["created_at"] or "",
        reverse=True,
    )
    return group_dicts


async def get_group_messages(
    session: AsyncSession,
    group_id: str,
    user_id: str,
    limit: int = 100,
) -> List[Dict]:
    """
    Fetch the most recent messages of a group, oldest first.

    Raises:
        ValueError: If the user is not a member of the group
    """
    member_ids = await _get_member_ids(session, group_id)
    if user_id not in member_ids:
        raise ValueError("Group not found or user is not a member")

    result = await session.execute(
        select(GroupMessage)
        .where(GroupMessage.group_id == group_id)
        .order_by(GroupMessage.created_at.desc(), GroupMessage.id.desc())
        .limit(limit)
    )
    messages = list(result.scalars().all())
    messages.reverse()
    return [_message_to_dict(m) for m in messages]


async def post_group_message(
    session: AsyncSession,
    group_id: str,
    sender_id: str,
    text: str,
    feed: Optional[ChangeFeed] = None,
) -> Dict:
    """
    Post a message to a group and update the group's latest message.

    Raises:
        ValueError: If the text is empty/too long or the sender is not a member
    """
    text = _validate_text(text, "text")
    group = await _require_group(session, group_id)
    member_ids = await _get_member_ids(session, group_id)
    if sender_id not in member_ids:
        raise ValueError("Group not found or user is not a member")

    now = utcnow()
    message = GroupMessage(group_id=group_id, sender_id=sender_id, text=text, created_at=now)
    session.add(message)
    group.latest_message = text
    group.latest_message_at = now
    await session.flush()
    message_dict = _message_to_dict(message)
    await session.commit()

    _publish(feed, ChangeKind.GROUP_MESSAGE, group_id, member_ids)
    return message_dict


async def post_announcement(
    session: AsyncSession,
    sender_id: str,
    content: str,
    feed: Optional[ChangeFeed] = None,
) -> Dict:
    """
    Post to the public announcement feed.

    Raises:
        ValueError: If the content is empty/too long or the sender does not exist
    """
    content = _validate_text(content, "content")
    result = await session.execute(select(User.username).where(User.id == sender_id))
    username = result.scalar_one_or_none()
    if username is None:
        raise ValueError("User not found")

    announcement = PublicMessage(sender_id=sender_id, sender_username=username, content=content)
    session.add(announcement)
    await session.flush()
    announcement_dict = _announcement_to_dict(announcement)
    await session.commit()

    # Empty user set: every user is affected
    _publish(feed, ChangeKind.ANNOUNCEMENT, None, [])
    return announcement_dict


async def list_announcements(session: AsyncSession, limit: int = 50) -> List[Dict]:
    """Fetch the most recent announcements, newest first."""
    result = await session.execute(
        select(PublicMessage)
        .order_by(PublicMessage.created_at.desc(), PublicMessage.id.desc())
        .limit(limit)
    )
    return [_announcement_to_dict(a) for a in result.scalars().all()]
