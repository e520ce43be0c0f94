"""
WebSocket connection registry for badge and inbox sockets.

Each open socket is tracked as a Connection record (owner, channel, last
activity). Badge frames go only to a user's ``notifications`` sockets; the
``inbox`` channel carries snapshot streams and never authorizes badges.

A background sweeper closes sockets that stayed silent past the timeout and
reports users whose last badge socket went away, so their unread listener
can be stopped.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from fastapi import WebSocket

from streetpaddle.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

# Sockets silent for longer than this are considered dead
WEBSOCKET_TIMEOUT_SECONDS = 30

# How often the sweeper looks for dead sockets (seconds)
SWEEP_INTERVAL_SECONDS = 60

NOTIFICATIONS_CHANNEL = "notifications"
INBOX_CHANNEL = "inbox"


@dataclass(eq=False)
class Connection:
    websocket: WebSocket
    user_id: str
    channel: str = NOTIFICATIONS_CHANNEL
    last_activity: datetime = field(default_factory=utcnow)

    def is_stale(self, threshold: datetime) -> bool:
        return self.last_activity < threshold


class WebSocketManager:
    """Tracks open sockets per user and channel."""

    def __init__(self, on_user_offline: Optional[Callable[[str], None]] = None):
        """
        Args:
            on_user_offline: Called with a user id when the sweeper removes
                that user's last notifications socket
        """
        self.on_user_offline = on_user_offline
        self._connections: Dict[WebSocket, Connection] = {}
        self._lock = asyncio.Lock()
        self._sweeper: Optional[asyncio.Task] = None

    def _count(self, user_id: str, channel: str) -> int:
        return sum(
            1 for c in self._connections.values()
            if c.user_id == user_id and c.channel == channel
        )

    async def connect(self, user_id: str, websocket: WebSocket, channel: str = NOTIFICATIONS_CHANNEL) -> int:
        """
        Register an accepted socket.

        Returns:
            Number of sockets the user now has open on the channel
        """
        async with self._lock:
            self._connections[websocket] = Connection(websocket, user_id, channel)
            count = self._count(user_id, channel)
        logger.info(f"WebSocket connected for user {user_id} on {channel} ({count} open)")
        return count

    async def disconnect(self, user_id: str, websocket: WebSocket) -> int:
        """
        Forget a socket.

        Returns:
            Number of sockets the user still has open on that socket's channel
        """
        async with self._lock:
            connection = self._connections.pop(websocket, None)
            channel = connection.channel if connection else NOTIFICATIONS_CHANNEL
            remaining = self._count(user_id, channel)
        logger.info(f"WebSocket disconnected for user {user_id} on {channel} ({remaining} left)")
        return remaining

    async def get_connection_count(self, user_id: str, channel: str = NOTIFICATIONS_CHANNEL) -> int:
        async with self._lock:
            return self._count(user_id, channel)

    async def update_activity(self, websocket: WebSocket) -> None:
        """Mark a socket as alive (called on every frame received from the client)."""
        async with self._lock:
            connection = self._connections.get(websocket)
            if connection is not None:
                connection.last_activity = utcnow()

    async def send_to_user(self, user_id: str, message: dict, channel: str = NOTIFICATIONS_CHANNEL) -> bool:
        """
        Send a JSON frame to every socket the user has open on a channel.

        Sockets that fail to send are dropped.

        Returns:
            True if at least one socket received the frame
        """
        async with self._lock:
            targets = [
                c for c in self._connections.values()
                if c.user_id == user_id and c.channel == channel
            ]
        if not targets:
            return False

        payload = json.dumps(message)
        delivered = 0
        for connection in targets:
            try:
                await connection.websocket.send_text(payload)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping {channel} socket for user {user_id} after send error: {e}")
                async with self._lock:
                    self._connections.pop(connection.websocket, None)
        return delivered > 0

    async def sweep(self) -> List[str]:
        """
        Close and forget sockets idle past WEBSOCKET_TIMEOUT_SECONDS.

        Returns:
            IDs of users left without any notifications socket
        """
        threshold = utcnow() - timedelta(seconds=WEBSOCKET_TIMEOUT_SECONDS)
        async with self._lock:
            stale = [c for c in self._connections.values() if c.is_stale(threshold)]
            for connection in stale:
                del self._connections[connection.websocket]
            offline = sorted({
                c.user_id for c in stale
                if c.channel == NOTIFICATIONS_CHANNEL and self._count(c.user_id, NOTIFICATIONS_CHANNEL) == 0
            })

        for connection in stale:
            try:
                await connection.websocket.close(code=1001, reason="Connection timeout")
            except Exception as e:
                logger.debug(f"Error closing stale socket for user {connection.user_id}: {e}")
        if stale:
            logger.info(f"Swept {len(stale)} stale WebSocket connection(s)")

        if self.on_user_offline is not None:
            for user_id in offline:
                self.on_user_offline(user_id)
        return offline

    def start_sweeper(self) -> None:
        """Start the background sweep loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop())
            logger.info("WebSocket sweeper started")

    async def stop_sweeper(self) -> None:
        if self._sweeper is not None and not self._sweeper.done():
            self._sweeper.cancel()
            await asyncio.gather(self._sweeper, return_exceptions=True)
            logger.info("WebSocket sweeper stopped")
        self._sweeper = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(SWEEP_INTERVAL_SECONDS)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Error sweeping WebSocket connections: {e}", exc_info=True)
