"""Announcement feed route handlers."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from streetpaddle.api.app_state import get_change_feed
from streetpaddle.api.auth_dependencies import require_admin, require_user
from streetpaddle.api.routes import limiter
from streetpaddle.database.db import get_db_session
from streetpaddle.models.schemas import (
    AnnouncementCreateRequest,
    AnnouncementResponse,
    MarkReadResponse,
)
from streetpaddle.services import chat_service, unread_service
from streetpaddle.services.change_feed import ChangeFeed

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/announcements", response_model=List[AnnouncementResponse])
async def list_announcements(
    limit: int = 50,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Get the most recent announcements, newest first."""
    try:
        return await chat_service.list_announcements(session, limit=limit)
    except Exception as e:
        logger.error(f"Error fetching announcements: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error fetching announcements: {str(e)}")


@router.post("/api/announcements", response_model=AnnouncementResponse)
@limiter.limit("10/minute")
async def post_announcement(
    request: Request,
    payload: AnnouncementCreateRequest,
    user: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Post to the announcement feed (administrators only)."""
    try:
        return await chat_service.post_announcement(session, user["id"], payload.content, feed=feed)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error posting announcement: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error posting announcement: {str(e)}")


@router.put("/api/announcements/read", response_model=MarkReadResponse)
async def mark_announcements_read(
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Move the caller's announcement watermark to now."""
    try:
        last_read_at = await unread_service.mark_announcements_read(session, user["id"], feed=feed)
        return {"success": True, "last_read_at": last_read_at.isoformat()}
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error marking announcements as read: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error marking announcements as read: {str(e)}")
