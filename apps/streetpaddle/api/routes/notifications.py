"""Unread count and WebSocket route handlers."""

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from streetpaddle.api.app_state import get_aggregator
from streetpaddle.api.auth_dependencies import require_user, user_id_from_token
from streetpaddle.database import db
from streetpaddle.models.schemas import UnreadSummaryResponse
from streetpaddle.services import unread_service
from streetpaddle.services.change_feed import watch_snapshots
from streetpaddle.services.unread_aggregator import UnreadAggregator
from streetpaddle.services.websocket_manager import INBOX_CHANNEL, WEBSOCKET_TIMEOUT_SECONDS
from streetpaddle.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/unread", response_model=UnreadSummaryResponse)
async def get_unread(
    user: dict = Depends(require_user),
    aggregator: UnreadAggregator = Depends(get_aggregator),
):
    """Get the caller's unread counts per group plus announcements."""
    try:
        summary = await aggregator.aggregate(user["id"])
        return summary.to_dict()
    except Exception as e:
        logger.error(f"Error computing unread counts: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error computing unread counts: {str(e)}")


async def _authenticate_websocket(websocket: WebSocket) -> Optional[str]:
    """
    Resolve the user id from the ``token`` query parameter.

    Closes the socket and returns None if the token is missing or invalid.
    """
    user_id = user_id_from_token(websocket.query_params.get("token"))
    if user_id is None:
        await websocket.close(code=1008, reason="Invalid authentication token")
    return user_id


@router.websocket("/api/ws/notifications")
async def websocket_notifications(websocket: WebSocket):
    """
    WebSocket endpoint for live badge counts.

    Requires JWT token in query parameter: ?token=<jwt_token>

    While at least one socket is open for a user, the unread aggregator
    listens for changes and pushes ``{"type": "badge", "count": n}`` frames.
    """
    await websocket.accept()

    user_id = await _authenticate_websocket(websocket)
    if user_id is None:
        return

    manager = websocket.app.state.ws_manager
    aggregator = websocket.app.state.aggregator
    await manager.connect(user_id, websocket)
    aggregator.start(user_id)

    try:
        last_activity = utcnow()

        while True:
            try:
                data = await asyncio.wait_for(
                    websocket.receive_text(), timeout=WEBSOCKET_TIMEOUT_SECONDS
                )

                last_activity = utcnow()
                await manager.update_activity(websocket)

                # Client sends "ping", server responds "pong"
                if data == "ping":
                    await websocket.send_text("pong")
            except asyncio.TimeoutError:
                if utcnow() - last_activity > timedelta(seconds=WEBSOCKET_TIMEOUT_SECONDS):
                    logger.info(f"WebSocket timeout for user {user_id}, closing connection")
                    await websocket.close(code=1000, reason="Connection timeout")
                    break
                try:
                    await websocket.send_text("ping")
                except Exception:
                    break
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for user {user_id}")
    except Exception as e:
        logger.error(f"WebSocket error for user {user_id}: {e}")
    finally:
        remaining = await manager.disconnect(user_id, websocket)
        if remaining == 0:
            aggregator.stop(user_id)


@router.websocket("/api/ws/inbox")
async def websocket_inbox(websocket: WebSocket):
    """
    WebSocket endpoint streaming inbox snapshots.

    Requires JWT token in query parameter: ?token=<jwt_token>

    Sends ``{"type": "inbox", "unread": {...}}`` on connect and again after
    every change that affects the user. Clients send "ping" at least every
    WEBSOCKET_TIMEOUT_SECONDS or the sweeper closes the socket.
    """
    await websocket.accept()

    user_id = await _authenticate_websocket(websocket)
    if user_id is None:
        return

    feed = websocket.app.state.change_feed
    manager = websocket.app.state.ws_manager
    await manager.connect(user_id, websocket, channel=INBOX_CHANNEL)

    async def fetch():
        async with db.AsyncSessionLocal() as session:
            return await unread_service.get_unread_summary(session, user_id)

    async def pump():
        try:
            async for snapshot in watch_snapshots(feed, lambda event: event.affects(user_id), fetch):
                await websocket.send_json({"type": "inbox", "unread": snapshot})
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Inbox updates failed for user {user_id}: {e}", exc_info=True)
            await websocket.close(code=1011, reason="Inbox updates failed")

    pump_task = asyncio.create_task(pump())
    try:
        while True:
            data = await websocket.receive_text()
            await manager.update_activity(websocket)
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        logger.info(f"Inbox WebSocket disconnected for user {user_id}")
    except Exception as e:
        logger.error(f"Inbox WebSocket error for user {user_id}: {e}")
    finally:
        pump_task.cancel()
        await asyncio.gather(pump_task, return_exceptions=True)
        await manager.disconnect(user_id, websocket)
