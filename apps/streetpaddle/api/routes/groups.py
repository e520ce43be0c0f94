"""Group chat route handlers."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from streetpaddle.api.app_state import get_change_feed
from streetpaddle.api.auth_dependencies import require_user
from streetpaddle.api.routes import limiter
from streetpaddle.database.db import get_db_session
from streetpaddle.models.schemas import (
    GroupCreateRequest,
    GroupMemberRequest,
    GroupResponse,
    MarkReadResponse,
    MessageCreateRequest,
    MessageResponse,
)
from streetpaddle.services import chat_service, unread_service
from streetpaddle.services.change_feed import ChangeFeed

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/groups", response_model=GroupResponse)
async def create_group(
    payload: GroupCreateRequest,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Create a group chat with the caller as creator and member."""
    try:
        return await chat_service.create_group(
            session, user["id"], payload.member_ids, name=payload.name, feed=feed
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error creating group: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error creating group: {str(e)}")


@router.get("/api/groups", response_model=List[GroupResponse])
async def list_groups(
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """List the caller's groups, most recently active first."""
    try:
        return await chat_service.list_groups_for_user(session, user["id"])
    except Exception as e:
        logger.error(f"Error listing groups: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error listing groups: {str(e)}")


@router.post("/api/groups/{group_id}/members", response_model=GroupResponse)
async def add_group_member(
    group_id: str,
    payload: GroupMemberRequest,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Add a user to a group. Only members can add others."""
    try:
        if not await chat_service.is_group_member(session, group_id, user["id"]):
            raise ValueError("Group not found or user is not a member")
        return await chat_service.add_member(session, group_id, payload.user_id, feed=feed)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error adding member to group {group_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error adding member: {str(e)}")


@router.delete("/api/groups/{group_id}/members/{member_id}")
async def remove_group_member(
    group_id: str,
    member_id: str,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Remove a member from a group. Users may remove themselves; group creators anyone."""
    try:
        if member_id != user["id"]:
            group = await chat_service.get_group(session, group_id)
            if group is None or user["id"] not in group["member_ids"]:
                raise HTTPException(status_code=404, detail="Group not found or user is not a member")
            if group["creator_id"] != user["id"]:
                raise HTTPException(status_code=403, detail="Only the group creator can remove other members")

        removed = await chat_service.remove_member(session, group_id, member_id, feed=feed)
        if not removed:
            raise HTTPException(status_code=404, detail="Membership not found")
        return {"success": True}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error removing member from group {group_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error removing member: {str(e)}")


@router.delete("/api/groups/{group_id}")
async def delete_group(
    group_id: str,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Delete a group chat and its messages. Any member may delete it."""
    try:
        await chat_service.delete_group(session, group_id, user["id"], feed=feed)
        return {"success": True}
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error deleting group {group_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error deleting group: {str(e)}")


@router.get("/api/groups/{group_id}/messages", response_model=List[MessageResponse])
async def get_group_messages(
    group_id: str,
    limit: int = 100,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Get the latest messages of a group, oldest first."""
    try:
        return await chat_service.get_group_messages(session, group_id, user["id"], limit=limit)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error fetching messages for group {group_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error fetching messages: {str(e)}")


@router.post("/api/groups/{group_id}/messages", response_model=MessageResponse)
@limiter.limit("30/minute")
async def post_group_message(
    request: Request,
    group_id: str,
    payload: MessageCreateRequest,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Post a message to a group."""
    try:
        return await chat_service.post_group_message(
            session, group_id, user["id"], payload.text, feed=feed
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error posting message to group {group_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error posting message: {str(e)}")


@router.put("/api/groups/{group_id}/read", response_model=MarkReadResponse)
async def mark_group_read(
    group_id: str,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Move the caller's read watermark for a group to now."""
    try:
        last_read_at = await unread_service.mark_group_read(session, group_id, user["id"], feed=feed)
        return {"success": True, "last_read_at": last_read_at.isoformat()}
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error marking group {group_id} as read: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error marking group as read: {str(e)}")
