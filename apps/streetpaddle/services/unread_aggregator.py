"""
Unread aggregation across a user's group chats and the announcement feed.

For each aggregation the aggregator fans out one branch per group membership
plus one for announcements. Every branch runs in its own database session,
is bounded by a timeout and always resolves to a count (0 on failure), and
the total is reported only after all branches have resolved.

Live mode: start(user_id) listens on the change feed and recomputes whenever
the user's memberships, messages, announcements or watermarks change. A new
trigger cancels any aggregation still in flight for that user; only the
latest result is published to the badge.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from streetpaddle.database import db
from streetpaddle.services import unread_service
from streetpaddle.services.badge_publisher import BadgePublisher
from streetpaddle.services.change_feed import ChangeFeed, Subscription
from streetpaddle.utils.constants import UNREAD_BRANCH_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnreadSummary:
    """Result of one aggregation cycle."""

    groups: Dict[str, int] = field(default_factory=dict)
    announcements: int = 0

    @property
    def total(self) -> int:
        return sum(self.groups.values()) + self.announcements

    def to_dict(self) -> Dict:
        return {
            "groups": dict(self.groups),
            "announcements": self.announcements,
            "total": self.total,
        }


class UnreadAggregator:
    """Computes unread totals per user and keeps their badge in sync."""

    def __init__(
        self,
        feed: ChangeFeed,
        publisher: BadgePublisher,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        branch_timeout: float = UNREAD_BRANCH_TIMEOUT_SECONDS,
    ):
        """
        Args:
            feed: Change feed to listen on in live mode
            publisher: Badge publisher receiving each fresh total
            session_factory: Session factory for branch sessions
                (defaults to db.AsyncSessionLocal, looked up at call time)
            branch_timeout: Seconds before a branch counts as failed
        """
        self._feed = feed
        self._publisher = publisher
        self._session_factory = session_factory
        self._branch_timeout = branch_timeout
        self._listeners: Dict[str, asyncio.Task] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._generations: Dict[str, int] = {}
        self._sequence = itertools.count(1)
        self._latest: Dict[str, UnreadSummary] = {}

    def _new_session(self) -> AsyncSession:
        factory = self._session_factory or db.AsyncSessionLocal
        return factory()

    async def _in_session(self, compute: Callable[[AsyncSession], Awaitable[int]]) -> int:
        async with self._new_session() as session:
            return await compute(session)

    async def _run_branch(self, label: str, compute: Callable[[AsyncSession], Awaitable[int]]) -> int:
        """Run one fan-out branch; failures and timeouts count as 0."""
        try:
            return await asyncio.wait_for(self._in_session(compute), timeout=self._branch_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Unread branch {label} timed out after {self._branch_timeout}s, counting 0")
            return 0
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Unread branch {label} failed, counting 0: {e}")
            return 0

    async def _fetch_group_ids(self, user_id: str) -> List[str]:
        try:
            return await asyncio.wait_for(
                self._in_session(lambda s: unread_service.get_group_ids_for_user(s, user_id)),
                timeout=self._branch_timeout,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Could not load group memberships for user {user_id}: {e}")
            return []

    async def aggregate(self, user_id: str) -> UnreadSummary:
        """
        Compute the user's unread counts.

        Returns only after every branch has resolved. Never raises for
        collaborator failures; a failed branch contributes 0.
        """
        group_ids = await self._fetch_group_ids(user_id)

        def group_branch(group_id: str):
            return lambda s: unread_service.compute_unread_for_group(s, group_id, user_id)

        branches = [
            self._run_branch(f"group {group_id}", group_branch(group_id))
            for group_id in group_ids
        ]
        branches.append(
            self._run_branch(
                "announcements",
                lambda s: unread_service.compute_unread_announcements(s, user_id),
            )
        )

        counts = await asyncio.gather(*branches)
        summary = UnreadSummary(
            groups=dict(zip(group_ids, counts[:-1])),
            announcements=counts[-1],
        )
        logger.debug(f"Unread total for user {user_id}: {summary.total}")
        return summary

    async def aggregate_total(self, user_id: str) -> int:
        summary = await self.aggregate(user_id)
        return summary.total

    def latest(self, user_id: str) -> Optional[UnreadSummary]:
        """Most recent published summary for the user, if any."""
        return self._latest.get(user_id)

    def trigger(self, user_id: str, reason: str = "manual") -> asyncio.Task:
        """
        Start a recompute for the user, superseding any in-flight one.

        Returns:
            Task resolving to the published summary, or None if superseded
        """
        previous = self._inflight.get(user_id)
        if previous is not None and not previous.done():
            previous.cancel()

        generation = next(self._sequence)
        self._generations[user_id] = generation
        logger.debug(f"Unread recompute #{generation} for user {user_id} ({reason})")

        task = asyncio.create_task(self._refresh(user_id, generation))
        self._inflight[user_id] = task
        return task

    async def _refresh(self, user_id: str, generation: int) -> Optional[UnreadSummary]:
        try:
            summary = await self.aggregate(user_id)
            if self._generations.get(user_id) != generation:
                logger.debug(f"Discarding superseded unread result for user {user_id}")
                return None
            self._latest[user_id] = summary
            self._publisher.publish(user_id, summary.total)
            return summary
        finally:
            if self._inflight.get(user_id) is asyncio.current_task():
                del self._inflight[user_id]

    def is_listening(self, user_id: str) -> bool:
        listener = self._listeners.get(user_id)
        return listener is not None and not listener.done()

    def start(self, user_id: str) -> None:
        """
        Begin live tracking for a user: reset the badge, subscribe to changes
        that affect the user, and run the first aggregation.
        """
        if self.is_listening(user_id):
            return

        self._publisher.reset(user_id)
        subscription = self._feed.subscribe(lambda event: event.affects(user_id))
        self._listeners[user_id] = asyncio.create_task(self._listen(user_id, subscription))
        self.trigger(user_id, "start")
        logger.info(f"Started unread listener for user {user_id}")

    async def _listen(self, user_id: str, subscription: Subscription) -> None:
        try:
            async for event in subscription:
                self.trigger(user_id, event.kind.value)
        finally:
            subscription.close()

    def stop(self, user_id: str) -> None:
        """
        Stop live tracking for a user, cancel any in-flight aggregation and
        drop the user's cached summary and badge state.
        """
        listener = self._listeners.pop(user_id, None)
        if listener is not None and not listener.done():
            listener.cancel()
        inflight = self._inflight.pop(user_id, None)
        if inflight is not None and not inflight.done():
            inflight.cancel()
        # A result that slipped past cancellation no longer matches any generation
        self._generations.pop(user_id, None)
        self._latest.pop(user_id, None)
        self._publisher.forget(user_id)
        if listener is not None:
            logger.info(f"Stopped unread listener for user {user_id}")

    def stop_all(self) -> None:
        for user_id in list(self._listeners) + list(self._inflight):
            self.stop(user_id)
