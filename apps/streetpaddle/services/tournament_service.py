"""
Tournament configuration service.

Administrators create a tournament (player count, categories, dates) before
any draw exists. Editing or deleting a tournament invalidates cached brackets.
"""

from typing import List, Dict, Optional
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from streetpaddle.database.models import Tournament, DrawRound
from streetpaddle.utils.constants import VALID_PLAYER_COUNTS
from streetpaddle.utils.datetime_utils import ensure_utc, isoformat_or_none
import logging

logger = logging.getLogger(__name__)


def _normalize_categories(categories: List[str]) -> List[str]:
    cleaned = [c.strip() for c in (categories or []) if c and c.strip()]
    if not cleaned:
        raise ValueError("At least one category is required")
    if len(set(cleaned)) != len(cleaned):
        raise ValueError("Category names must be unique")
    return cleaned


def _validate(title: str, number_of_players: int, start_date: datetime, end_date: datetime) -> None:
    if not title or not title.strip():
        raise ValueError("title is required")
    if number_of_players not in VALID_PLAYER_COUNTS:
        allowed = ", ".join(str(n) for n in VALID_PLAYER_COUNTS)
        raise ValueError(f"number_of_players must be one of {allowed}")
    if ensure_utc(end_date) < ensure_utc(start_date):
        raise ValueError("end_date must not be before start_date")


def _tournament_to_dict(tournament: Tournament) -> Dict:
    return {
        "id": tournament.id,
        "title": tournament.title,
        "number_of_players": tournament.number_of_players,
        "categories": list(tournament.categories or []),
        "start_date": isoformat_or_none(tournament.start_date),
        "end_date": isoformat_or_none(tournament.end_date),
        "link": tournament.link,
        "created_at": isoformat_or_none(tournament.created_at),
    }


async def create_tournament(
    session: AsyncSession,
    title: str,
    number_of_players: int,
    categories: List[str],
    start_date: datetime,
    end_date: datetime,
    link: Optional[str] = None,
) -> Dict:
    """
    Create a tournament configuration.

    Args:
        session: Database session
        title: Tournament title
        number_of_players: Bracket size per category (one of VALID_PLAYER_COUNTS)
        categories: Category names (unique, at least one)
        start_date: First day of play
        end_date: Last day of play
        link: Optional external page

    Returns:
        Tournament dict

    Raises:
        ValueError: If validation fails
    """
    _validate(title, number_of_players, start_date, end_date)
    tournament = Tournament(
        title=title.strip(),
        number_of_players=number_of_players,
        categories=_normalize_categories(categories),
        start_date=ensure_utc(start_date),
        end_date=ensure_utc(end_date),
        link=link,
    )
    session.add(tournament)
    await session.flush()
    await session.refresh(tournament)
    tournament_dict = _tournament_to_dict(tournament)
    await session.commit()
    logger.info(f"Created tournament {tournament_dict['id']} ({tournament_dict['title']})")
    return tournament_dict


async def list_tournaments(session: AsyncSession) -> List[Dict]:
    """List tournaments, latest start date first."""
    result = await session.execute(
        select(Tournament).order_by(Tournament.start_date.desc(), Tournament.id.desc())
    )
    return [_tournament_to_dict(t) for t in result.scalars().all()]


async def get_tournament(session: AsyncSession, tournament_id: int) -> Optional[Dict]:
    result = await session.execute(select(Tournament).where(Tournament.id == tournament_id))
    tournament = result.scalar_one_or_none()
    return _tournament_to_dict(tournament) if tournament else None


async def update_tournament(
    session: AsyncSession,
    tournament_id: int,
    title: Optional[str] = None,
    number_of_players: Optional[int] = None,
    categories: Optional[List[str]] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    link: Optional[str] = None,
) -> Dict:
    """
    Update a tournament configuration. Only provided fields change.

    Raises:
        ValueError: If the tournament does not exist or validation fails
    """
    result = await session.execute(select(Tournament).where(Tournament.id == tournament_id))
    tournament = result.scalar_one_or_none()
    if not tournament:
        raise ValueError("Tournament not found")

    new_title = title if title is not None else tournament.title
    new_players = number_of_players if number_of_players is not None else tournament.number_of_players
    new_start = start_date if start_date is not None else tournament.start_date
    new_end = end_date if end_date is not None else tournament.end_date
    _validate(new_title, new_players, new_start, new_end)

    tournament.title = new_title.strip()
    tournament.number_of_players = new_players
    tournament.start_date = ensure_utc(new_start)
    tournament.end_date = ensure_utc(new_end)
    if categories is not None:
        tournament.categories = _normalize_categories(categories)
    if link is not None:
        tournament.link = link or None

    await session.flush()
    tournament_dict = _tournament_to_dict(tournament)
    await session.commit()
    return tournament_dict


async def delete_tournament(session: AsyncSession, tournament_id: int) -> bool:
    """
    Delete a tournament and all of its draws.

    Returns:
        True if a tournament was deleted
    """
    result = await session.execute(select(Tournament).where(Tournament.id == tournament_id))
    tournament = result.scalar_one_or_none()
    if not tournament:
        return False
    await session.execute(delete(DrawRound).where(DrawRound.tournament_id == tournament_id))
    await session.execute(delete(Tournament).where(Tournament.id == tournament_id))
    await session.commit()
    logger.info(f"Deleted tournament {tournament_id}")
    return True
