"""
Unit tests for the WebSocket connection registry.
Covers channel separation, delivery, failure cleanup and the stale sweep.
"""

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock
from datetime import timedelta
from streetpaddle.services.websocket_manager import (
    INBOX_CHANNEL,
    WEBSOCKET_TIMEOUT_SECONDS,
    WebSocketManager,
)
from streetpaddle.utils.datetime_utils import utcnow


@pytest_asyncio.fixture
async def ws_manager():
    """Create a fresh WebSocket manager for each test."""
    return WebSocketManager()


def _socket(fails=False):
    ws = AsyncMock()
    ws.send_text = AsyncMock(side_effect=Exception("Connection error") if fails else None)
    ws.close = AsyncMock()
    return ws


def _age(manager, websocket):
    manager._connections[websocket].last_activity = utcnow() - timedelta(seconds=WEBSOCKET_TIMEOUT_SECONDS + 10)


@pytest.mark.asyncio
async def test_counts_are_per_channel(ws_manager):
    badge, inbox = _socket(), _socket()

    assert await ws_manager.connect("u1", badge) == 1
    assert await ws_manager.connect("u1", inbox, channel=INBOX_CHANNEL) == 1

    assert await ws_manager.get_connection_count("u1") == 1
    assert await ws_manager.get_connection_count("u1", INBOX_CHANNEL) == 1
    assert await ws_manager.get_connection_count("u2") == 0


@pytest.mark.asyncio
async def test_disconnect_reports_remaining(ws_manager):
    ws1, ws2 = _socket(), _socket()
    await ws_manager.connect("u1", ws1)
    await ws_manager.connect("u1", ws2)

    assert await ws_manager.disconnect("u1", ws1) == 1
    assert await ws_manager.disconnect("u1", ws2) == 0
    # Unknown sockets are ignored
    assert await ws_manager.disconnect("u1", ws2) == 0


@pytest.mark.asyncio
async def test_send_goes_to_channel_only(ws_manager):
    badge, inbox = _socket(), _socket()
    await ws_manager.connect("u1", badge)
    await ws_manager.connect("u1", inbox, channel=INBOX_CHANNEL)

    assert await ws_manager.send_to_user("u1", {"type": "badge", "count": 2}) is True

    badge.send_text.assert_called_once()
    assert '"count": 2' in badge.send_text.call_args[0][0]
    inbox.send_text.assert_not_called()


@pytest.mark.asyncio
async def test_send_without_sockets(ws_manager):
    assert await ws_manager.send_to_user("u1", {"type": "badge"}) is False


@pytest.mark.asyncio
async def test_failing_socket_is_dropped(ws_manager):
    healthy, broken = _socket(), _socket(fails=True)
    await ws_manager.connect("u1", healthy)
    await ws_manager.connect("u1", broken)

    assert await ws_manager.send_to_user("u1", {"type": "badge"}) is True
    assert await ws_manager.get_connection_count("u1") == 1

    await ws_manager.disconnect("u1", healthy)
    await ws_manager.connect("u1", broken)
    assert await ws_manager.send_to_user("u1", {"type": "badge"}) is False
    assert await ws_manager.get_connection_count("u1") == 0


@pytest.mark.asyncio
async def test_update_activity_keeps_socket_fresh(ws_manager):
    ws = _socket()
    await ws_manager.connect("u1", ws)
    _age(ws_manager, ws)

    await ws_manager.update_activity(ws)

    assert await ws_manager.sweep() == []
    assert await ws_manager.get_connection_count("u1") == 1


@pytest.mark.asyncio
async def test_sweep_closes_stale_and_reports_offline_users(ws_manager):
    offline = MagicMock()
    ws_manager.on_user_offline = offline
    stale, fresh, stale_inbox = _socket(), _socket(), _socket()
    await ws_manager.connect("u1", stale)
    await ws_manager.connect("u2", fresh)
    await ws_manager.connect("u3", stale_inbox, channel=INBOX_CHANNEL)
    _age(ws_manager, stale)
    _age(ws_manager, stale_inbox)

    assert await ws_manager.sweep() == ["u1"]

    stale.close.assert_awaited_once()
    stale_inbox.close.assert_awaited_once()
    fresh.close.assert_not_called()
    offline.assert_called_once_with("u1")
    assert await ws_manager.get_connection_count("u2") == 1


@pytest.mark.asyncio
async def test_sweep_keeps_user_with_another_badge_socket(ws_manager):
    stale, fresh = _socket(), _socket()
    await ws_manager.connect("u1", stale)
    await ws_manager.connect("u1", fresh)
    _age(ws_manager, stale)

    assert await ws_manager.sweep() == []
    assert await ws_manager.get_connection_count("u1") == 1


@pytest.mark.asyncio
async def test_sweeper_start_stop(ws_manager):
    ws_manager.start_sweeper()
    ws_manager.start_sweeper()  # idempotent

    await ws_manager.stop_sweeper()
    await ws_manager.stop_sweeper()
