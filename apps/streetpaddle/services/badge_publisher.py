"""
Badge publisher: pushes a user's total unread count to their badge.

Publishing is coalesced per user. While a delivery is in progress, newer
totals replace each other in a single pending slot, so bursts collapse to
the most recent value and the final value is always delivered. Deliveries
for the same user never overlap.
"""

import asyncio
import logging
from typing import Dict, Optional

from streetpaddle.services.websocket_manager import WebSocketManager

logger = logging.getLogger(__name__)


class WebSocketBadgeBackend:
    """Badge backend that pushes counts over the user's notification sockets."""

    def __init__(self, manager: WebSocketManager):
        self._manager = manager

    async def is_authorized(self, user_id: str) -> bool:
        """A user can receive badge updates while a notification socket is open."""
        return await self._manager.get_connection_count(user_id) > 0

    async def set_badge_count(self, user_id: str, count: int) -> bool:
        return await self._manager.send_to_user(user_id, {"type": "badge", "count": count})


class BadgePublisher:
    """Coalescing, per-user serialized badge delivery."""

    def __init__(self, backend):
        """
        Args:
            backend: Object with async ``is_authorized(user_id)`` and
                ``set_badge_count(user_id, count)`` methods
        """
        self._backend = backend
        self._pending: Dict[str, int] = {}
        self._workers: Dict[str, asyncio.Task] = {}
        self._delivered: Dict[str, int] = {}

    def publish(self, user_id: str, total: int) -> None:
        """
        Request that the user's badge show ``total``.

        Raises:
            ValueError: If total is negative
        """
        if total < 0:
            raise ValueError("Badge total must be non-negative")

        self._pending[user_id] = total
        worker = self._workers.get(user_id)
        if worker is None or worker.done():
            self._workers[user_id] = asyncio.create_task(self._drain(user_id))

    def reset(self, user_id: str) -> None:
        """Clear the badge, superseding any value still waiting to be delivered."""
        logger.info(f"Resetting badge for user {user_id}")
        self.publish(user_id, 0)

    async def flush(self, user_id: str) -> Optional[int]:
        """
        Wait until every requested value for the user has been handled.

        Returns:
            Last value delivered to the backend, or None if nothing was delivered
        """
        worker = self._workers.get(user_id)
        if worker is not None:
            await asyncio.shield(worker)
        return self._delivered.get(user_id)

    def last_delivered(self, user_id: str) -> Optional[int]:
        return self._delivered.get(user_id)

    def forget(self, user_id: str) -> None:
        """Drop all state for a user, cancelling any delivery still running."""
        self._pending.pop(user_id, None)
        self._delivered.pop(user_id, None)
        worker = self._workers.pop(user_id, None)
        if worker is not None and not worker.done():
            worker.cancel()

    async def shutdown(self) -> None:
        """Cancel outstanding deliveries."""
        workers = [w for w in self._workers.values() if not w.done()]
        for worker in workers:
            worker.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
        self._workers.clear()
        self._pending.clear()
        self._delivered.clear()

    async def _drain(self, user_id: str) -> None:
        try:
            while user_id in self._pending:
                total = self._pending.pop(user_id)
                await self._apply(user_id, total)
        finally:
            if self._workers.get(user_id) is asyncio.current_task():
                del self._workers[user_id]

    async def _apply(self, user_id: str, total: int) -> None:
        try:
            if not await self._backend.is_authorized(user_id):
                logger.debug(f"Badge updates not authorized for user {user_id}, skipping")
                return
            if not await self._backend.set_badge_count(user_id, total):
                logger.debug(f"Badge count for user {user_id} was not delivered")
                return
            self._delivered[user_id] = total
            logger.debug(f"Badge count for user {user_id} updated to {total}")
        except Exception as e:
            # Delivery errors are reported, never raised to the aggregator
            logger.warning(f"Error setting badge count for user {user_id}: {e}")
