"""
In-process change feed for live listeners.

Write services publish a ChangeEvent after their transaction commits.
Listeners subscribe with a predicate and receive matching events through an
async iterator, or use watch_snapshots() to get a full result set re-fetched
after every relevant change.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, FrozenSet, Optional, Set, TypeVar

from streetpaddle.database.models import ChangeKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Marker put on a subscription queue to end iteration
_CLOSED = object()


@dataclass(frozen=True)
class ChangeEvent:
    """A change that may affect some users' unread state."""

    kind: ChangeKind
    group_id: Optional[str] = None
    # Users whose counts may change; empty means every user
    user_ids: FrozenSet[str] = field(default_factory=frozenset)

    def affects(self, user_id: str) -> bool:
        return not self.user_ids or user_id in self.user_ids


EventPredicate = Callable[[ChangeEvent], bool]


class Subscription:
    """Async iterator over the events of a ChangeFeed that match a predicate."""

    def __init__(self, feed: "ChangeFeed", predicate: Optional[EventPredicate] = None):
        self._feed = feed
        self._predicate = predicate
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def matches(self, event: ChangeEvent) -> bool:
        return self._predicate is None or self._predicate(event)

    def deliver(self, event: ChangeEvent) -> None:
        if not self.closed:
            self._queue.put_nowait(event)

    def drain(self) -> int:
        """Drop queued events, returning how many were dropped."""
        dropped = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return dropped
            if item is _CLOSED:
                # Keep the close marker so iteration still ends
                self._queue.put_nowait(item)
                return dropped
            dropped += 1

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed.unsubscribe(self)
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class ChangeFeed:
    """Publish/subscribe hub for change events."""

    def __init__(self):
        self._subscriptions: Set[Subscription] = set()

    def subscribe(self, predicate: Optional[EventPredicate] = None) -> Subscription:
        """
        Register a new subscription.

        Args:
            predicate: Optional filter; only events it accepts are delivered

        Returns:
            Subscription to iterate with ``async for``. Close it when done.
        """
        subscription = Subscription(self, predicate)
        self._subscriptions.add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscriptions.discard(subscription)

    def publish(self, event: ChangeEvent) -> int:
        """
        Deliver an event to every matching subscription.

        Returns:
            Number of subscriptions the event was delivered to
        """
        delivered = 0
        for subscription in list(self._subscriptions):
            try:
                if subscription.matches(event):
                    subscription.deliver(event)
                    delivered += 1
            except Exception as e:
                # A broken predicate must not stop delivery to other listeners
                logger.warning(f"Error delivering {event.kind.value} event to subscriber: {e}")
        logger.debug(f"Published {event.kind.value} event to {delivered} subscriber(s)")
        return delivered

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def close_all(self) -> None:
        """Close every open subscription (used on shutdown)."""
        for subscription in list(self._subscriptions):
            subscription.close()


async def watch_snapshots(
    feed: ChangeFeed,
    predicate: Optional[EventPredicate],
    fetch: Callable[[], Awaitable[T]],
) -> AsyncIterator[T]:
    """
    Yield a full snapshot now and again after each matching change.

    Events that arrive while a snapshot is being fetched are coalesced into
    the next fetch. The sequence is unbounded; stop it with ``aclose()`` or by
    breaking out of the loop. Calling this again starts a fresh sequence.

    Args:
        feed: Change feed to listen on
        predicate: Filter for relevant events
        fetch: Coroutine function returning the current result set
    """
    subscription = feed.subscribe(predicate)
    try:
        yield await fetch()
        async for _event in subscription:
            subscription.drain()
            yield await fetch()
    finally:
        subscription.close()
