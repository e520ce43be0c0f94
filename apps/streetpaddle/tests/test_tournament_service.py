"""
Tests for tournament configuration CRUD.
"""

import pytest
from datetime import datetime, timedelta
import pytz
from streetpaddle.services import tournament_service

START = datetime(2026, 6, 1, tzinfo=pytz.UTC)
END = START + timedelta(days=2)


async def _create(session, **overrides):
    values = dict(
        title="Summer Open",
        number_of_players=8,
        categories=["Men", "Women"],
        start_date=START,
        end_date=END,
    )
    values.update(overrides)
    return await tournament_service.create_tournament(session, **values)


@pytest.mark.asyncio
async def test_create_and_get(db_session):
    created = await _create(db_session, link="https://example.com/open")

    fetched = await tournament_service.get_tournament(db_session, created["id"])

    assert fetched["title"] == "Summer Open"
    assert fetched["number_of_players"] == 8
    assert fetched["categories"] == ["Men", "Women"]
    assert fetched["start_date"].startswith("2026-06-01")
    assert fetched["link"] == "https://example.com/open"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"title": "  "},
        {"number_of_players": 6},
        {"categories": []},
        {"categories": ["Men", "Men"]},
        {"end_date": START - timedelta(days=1)},
    ],
)
async def test_create_validation(db_session, overrides):
    with pytest.raises(ValueError):
        await _create(db_session, **overrides)


@pytest.mark.asyncio
async def test_list_latest_start_first(db_session):
    await _create(db_session, title="Spring Cup", start_date=START - timedelta(days=60), end_date=START - timedelta(days=59))
    await _create(db_session, title="Summer Open")

    titles = [t["title"] for t in await tournament_service.list_tournaments(db_session)]

    assert titles == ["Summer Open", "Spring Cup"]


@pytest.mark.asyncio
async def test_update_partial(db_session):
    created = await _create(db_session)

    updated = await tournament_service.update_tournament(db_session, created["id"], number_of_players=16)

    assert updated["number_of_players"] == 16
    assert updated["title"] == "Summer Open"


@pytest.mark.asyncio
async def test_update_missing(db_session):
    with pytest.raises(ValueError, match="not found"):
        await tournament_service.update_tournament(db_session, 999, title="Nope")


@pytest.mark.asyncio
async def test_delete(db_session):
    created = await _create(db_session)

    assert await tournament_service.delete_tournament(db_session, created["id"]) is True
    assert await tournament_service.get_tournament(db_session, created["id"]) is None
    assert await tournament_service.delete_tournament(db_session, created["id"]) is False
