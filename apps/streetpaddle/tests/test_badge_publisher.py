"""
Unit tests for the badge publisher.
Tests coalescing, authorization handling and resets.
"""

import asyncio
import pytest
from unittest.mock import AsyncMock
from streetpaddle.services.badge_publisher import BadgePublisher, WebSocketBadgeBackend
from streetpaddle.services.websocket_manager import WebSocketManager


class RecordingBackend:
    """Backend that records delivered counts and can hold deliveries open."""

    def __init__(self, authorized=True):
        self.authorized = authorized
        self.delivered = []
        self.gate = asyncio.Event()
        self.gate.set()

    async def is_authorized(self, user_id):
        return self.authorized

    async def set_badge_count(self, user_id, count):
        await self.gate.wait()
        self.delivered.append((user_id, count))
        return True


@pytest.mark.asyncio
async def test_publish_delivers_total():
    backend = RecordingBackend()
    publisher = BadgePublisher(backend)

    publisher.publish("u1", 4)

    assert await publisher.flush("u1") == 4
    assert backend.delivered == [("u1", 4)]


@pytest.mark.asyncio
async def test_burst_collapses_to_latest_value():
    backend = RecordingBackend()
    backend.gate.clear()
    publisher = BadgePublisher(backend)

    publisher.publish("u1", 1)
    await asyncio.sleep(0)  # first delivery is now in progress
    for total in (2, 3, 4, 5):
        publisher.publish("u1", total)
    backend.gate.set()

    assert await publisher.flush("u1") == 5
    assert backend.delivered == [("u1", 1), ("u1", 5)]


@pytest.mark.asyncio
async def test_unauthorized_user_is_silently_skipped():
    backend = RecordingBackend(authorized=False)
    publisher = BadgePublisher(backend)

    publisher.publish("u1", 7)

    assert await publisher.flush("u1") is None
    assert backend.delivered == []


@pytest.mark.asyncio
async def test_reset_sets_zero():
    backend = RecordingBackend()
    publisher = BadgePublisher(backend)

    publisher.publish("u1", 3)
    await publisher.flush("u1")
    publisher.reset("u1")

    assert await publisher.flush("u1") == 0
    assert publisher.last_delivered("u1") == 0


@pytest.mark.asyncio
async def test_negative_total_rejected():
    publisher = BadgePublisher(RecordingBackend())
    with pytest.raises(ValueError):
        publisher.publish("u1", -1)


@pytest.mark.asyncio
async def test_backend_error_is_not_raised():
    backend = AsyncMock()
    backend.is_authorized = AsyncMock(return_value=True)
    backend.set_badge_count = AsyncMock(side_effect=Exception("push failed"))
    publisher = BadgePublisher(backend)

    publisher.publish("u1", 2)

    assert await publisher.flush("u1") is None
    backend.set_badge_count.assert_awaited_once_with("u1", 2)


@pytest.mark.asyncio
async def test_users_are_independent():
    backend = RecordingBackend()
    publisher = BadgePublisher(backend)

    publisher.publish("u1", 1)
    publisher.publish("u2", 9)

    assert await publisher.flush("u1") == 1
    assert await publisher.flush("u2") == 9


@pytest.mark.asyncio
async def test_websocket_backend_requires_open_socket():
    manager = WebSocketManager()
    backend = WebSocketBadgeBackend(manager)

    assert await backend.is_authorized("u1") is False

    ws = AsyncMock()
    ws.send_text = AsyncMock()
    await manager.connect("u1", ws)

    assert await backend.is_authorized("u1") is True
    assert await backend.set_badge_count("u1", 3) is True
    assert '"count": 3' in ws.send_text.call_args[0][0]


@pytest.mark.asyncio
async def test_shutdown_cancels_pending_delivery():
    backend = RecordingBackend()
    backend.gate.clear()
    publisher = BadgePublisher(backend)

    publisher.publish("u1", 1)
    await asyncio.sleep(0)
    await publisher.shutdown()

    assert backend.delivered == []


@pytest.mark.asyncio
async def test_undelivered_count_is_not_recorded():
    backend = AsyncMock()
    backend.is_authorized = AsyncMock(return_value=True)
    backend.set_badge_count = AsyncMock(return_value=False)
    publisher = BadgePublisher(backend)

    publisher.publish("u1", 6)

    assert await publisher.flush("u1") is None
    assert publisher.last_delivered("u1") is None


@pytest.mark.asyncio
async def test_finished_worker_is_released():
    publisher = BadgePublisher(RecordingBackend())

    publisher.publish("u1", 2)
    await publisher.flush("u1")

    assert "u1" not in publisher._workers
    publisher.publish("u1", 3)
    assert await publisher.flush("u1") == 3


@pytest.mark.asyncio
async def test_forget_drops_user_state():
    backend = RecordingBackend()
    publisher = BadgePublisher(backend)
    publisher.publish("u1", 4)
    await publisher.flush("u1")

    backend.gate.clear()
    publisher.publish("u1", 5)
    await asyncio.sleep(0)
    publisher.forget("u1")
    await asyncio.sleep(0)

    assert publisher.last_delivered("u1") is None
    assert "u1" not in publisher._workers
    assert "u1" not in publisher._pending
    assert backend.delivered == [("u1", 4)]
