"""
Application-scoped service instances.

The change feed, socket manager, badge publisher, unread aggregator and
bracket registry are constructed once per application and stored on
``app.state``. Routes reach them through the dependency helpers below.
"""

from fastapi import FastAPI, Request
from starlette.requests import HTTPConnection

from streetpaddle.services.badge_publisher import BadgePublisher, WebSocketBadgeBackend
from streetpaddle.services.change_feed import ChangeFeed
from streetpaddle.services.draw_service import BracketRegistry
from streetpaddle.services.unread_aggregator import UnreadAggregator
from streetpaddle.services.websocket_manager import WebSocketManager


def init_app_state(app: FastAPI) -> None:
    """Construct and attach the application's service instances."""
    feed = ChangeFeed()
    manager = WebSocketManager()
    publisher = BadgePublisher(WebSocketBadgeBackend(manager))

    app.state.change_feed = feed
    app.state.ws_manager = manager
    app.state.badge_publisher = publisher
    app.state.aggregator = UnreadAggregator(feed, publisher)
    manager.on_user_offline = app.state.aggregator.stop
    app.state.bracket_registry = BracketRegistry()


async def shutdown_app_state(app: FastAPI) -> None:
    """Stop the socket sweeper, live listeners and pending badge deliveries."""
    await app.state.ws_manager.stop_sweeper()
    app.state.aggregator.stop_all()
    await app.state.badge_publisher.shutdown()
    app.state.change_feed.close_all()


def get_change_feed(request: Request) -> ChangeFeed:
    return request.app.state.change_feed


def get_aggregator(conn: HTTPConnection) -> UnreadAggregator:
    return conn.app.state.aggregator


def get_bracket_registry(request: Request) -> BracketRegistry:
    return request.app.state.bracket_registry
