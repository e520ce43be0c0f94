"""
Draw service: loads, mutates and persists tournament brackets.

One BracketEngine is kept per (tournament, category) in a BracketRegistry.
All operations on the same bracket are serialized by a per-bracket lock.
Round transitions write to the database first and only change the in-memory
bracket once the write committed; on a failed write the bracket is left as
edited and the administrator retries.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, delete, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from streetpaddle.database.models import DrawRound, Tournament
from streetpaddle.services.bracket_engine import BracketEngine, BracketRound, Champion
from streetpaddle.utils.constants import CHAMPION_KEY, DEFAULT_PLAYER_COUNT
from streetpaddle.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

BracketKey = Tuple[int, str]


class DrawPersistenceError(Exception):
    """A round or champion write failed; the in-memory bracket is unchanged."""


class BracketRegistry:
    """In-memory brackets and their write locks."""

    def __init__(self):
        self._engines: Dict[BracketKey, BracketEngine] = {}
        self._locks: Dict[BracketKey, asyncio.Lock] = {}

    def get(self, tournament_id: int, category: str) -> Optional[BracketEngine]:
        return self._engines.get((tournament_id, category))

    def put(self, engine: BracketEngine) -> None:
        self._engines[(engine.tournament_id, engine.category)] = engine

    def lock(self, tournament_id: int, category: str) -> asyncio.Lock:
        key = (tournament_id, category)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def evict(self, tournament_id: int, category: Optional[str] = None) -> None:
        """Forget cached brackets (e.g. after the tournament was edited or deleted)."""
        for key in list(self._engines):
            if key[0] == tournament_id and (category is None or key[1] == category):
                del self._engines[key]

    def clear(self) -> None:
        self._engines.clear()
        self._locks.clear()


async def _get_tournament(session: AsyncSession, tournament_id: int, category: str) -> Tournament:
    result = await session.execute(select(Tournament).where(Tournament.id == tournament_id))
    tournament = result.scalar_one_or_none()
    if not tournament:
        raise ValueError("Tournament not found")
    if category not in (tournament.categories or []):
        raise ValueError(f"Category {category} not found in tournament")
    return tournament


async def _read_persisted(
    session: AsyncSession, tournament_id: int, category: str
) -> Tuple[List[BracketRound], Optional[Champion]]:
    result = await session.execute(
        select(DrawRound).where(
            and_(DrawRound.tournament_id == tournament_id, DrawRound.category == category)
        )
    )
    rounds = []
    champion = None
    for row in result.scalars().all():
        if row.round_key == CHAMPION_KEY:
            champion = Champion(name=row.champion_name or "", score=row.champion_score or "")
        elif row.round_index is not None:
            try:
                rounds.append(
                    BracketRound(
                        index=row.round_index,
                        player_names=tuple(row.player_names or ()),
                        scores=tuple(row.scores or ()),
                        completed=row.is_completed,
                    )
                )
            except ValueError as e:
                logger.warning(f"Skipping malformed draw round {row.round_key} for tournament {tournament_id}: {e}")
    return rounds, champion


async def _upsert(session: AsyncSession, tournament_id: int, category: str, round_key: str, values: Dict) -> None:
    result = await session.execute(
        select(DrawRound).where(
            and_(
                DrawRound.tournament_id == tournament_id,
                DrawRound.category == category,
                DrawRound.round_key == round_key,
            )
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = DrawRound(tournament_id=tournament_id, category=category, round_key=round_key)
        session.add(row)
    for name, value in values.items():
        setattr(row, name, value)
    row.updated_at = utcnow()


def _round_values(bracket_round: BracketRound) -> Dict:
    return {
        "round_index": bracket_round.index,
        "player_names": list(bracket_round.player_names),
        "scores": list(bracket_round.scores),
        "is_completed": bracket_round.completed,
    }


async def _commit_writes(session: AsyncSession, engine: BracketEngine, what: str) -> None:
    try:
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(
            f"Failed to save {what} for tournament {engine.tournament_id} / {engine.category}: {e}",
            exc_info=True,
        )
        raise DrawPersistenceError(f"Could not save {what}; please retry") from e


async def _stage_round_close(session: AsyncSession, engine: BracketEngine, completed: BracketRound) -> None:
    """Write a closed round and drop persisted rounds (and champion) after it."""
    await _upsert(session, engine.tournament_id, engine.category, completed.key, _round_values(completed))
    await session.execute(
        delete(DrawRound).where(
            and_(
                DrawRound.tournament_id == engine.tournament_id,
                DrawRound.category == engine.category,
                DrawRound.round_index > completed.index,
            )
        )
    )


async def load_bracket(
    session: AsyncSession, registry: BracketRegistry, tournament_id: int, category: str
) -> BracketEngine:
    """
    Get the bracket for a tournament category, loading it on first use.

    Raises:
        ValueError: If the tournament or category does not exist
    """
    engine = registry.get(tournament_id, category)
    if engine is not None:
        return engine

    async with registry.lock(tournament_id, category):
        engine = registry.get(tournament_id, category)
        if engine is not None:
            return engine

        tournament = await _get_tournament(session, tournament_id, category)
        rounds, champion = await _read_persisted(session, tournament_id, category)

        engine = BracketEngine(tournament_id, category)
        engine.load(tournament.number_of_players or DEFAULT_PLAYER_COUNT, rounds, champion)
        registry.put(engine)
        logger.info(
            f"Loaded bracket for tournament {tournament_id} / {category}: "
            f"{len(rounds)} persisted round(s), state {engine.state.value}"
        )
        return engine


async def advance_round(
    session: AsyncSession, registry: BracketRegistry, tournament_id: int, category: str
) -> Tuple[BracketEngine, bool]:
    """
    Persist the current round and move to the next one.

    Returns:
        (engine, applied); applied is False when the current round is the final

    Raises:
        DrawPersistenceError: If the round could not be saved
    """
    engine = await load_bracket(session, registry, tournament_id, category)
    async with registry.lock(tournament_id, category):
        if not engine.can_advance:
            return engine, False

        completed = engine.current_round.mark_completed()
        await _stage_round_close(session, engine, completed)
        await session.execute(
            delete(DrawRound).where(
                and_(
                    DrawRound.tournament_id == tournament_id,
                    DrawRound.category == category,
                    DrawRound.round_key == CHAMPION_KEY,
                )
            )
        )
        await _commit_writes(session, engine, completed.key)

        engine.advance()
        return engine, True


async def declare_champion(
    session: AsyncSession, registry: BracketRegistry, tournament_id: int, category: str
) -> Tuple[BracketEngine, bool]:
    """
    Persist the final and open the champion record with empty fields.

    Returns:
        (engine, applied); applied is False unless the current round is the final

    Raises:
        DrawPersistenceError: If the final or champion could not be saved
    """
    engine = await load_bracket(session, registry, tournament_id, category)
    async with registry.lock(tournament_id, category):
        if not engine.can_declare_champion:
            return engine, False

        final = engine.current_round.mark_completed()
        await _stage_round_close(session, engine, final)
        await _upsert(
            session, tournament_id, category, CHAMPION_KEY,
            {"round_index": None, "champion_name": "", "champion_score": ""},
        )
        await _commit_writes(session, engine, "final round")

        engine.declare_champion()
        return engine, True


async def go_back(
    session: AsyncSession, registry: BracketRegistry, tournament_id: int, category: str
) -> Tuple[BracketEngine, bool]:
    """Navigate to the previous view. Nothing is written."""
    engine = await load_bracket(session, registry, tournament_id, category)
    async with registry.lock(tournament_id, category):
        return engine, engine.go_back()


def _require_admin(user: Dict) -> None:
    if not user.get("is_admin"):
        raise PermissionError("Only tournament administrators can edit the draw")


async def edit_slot(
    session: AsyncSession,
    registry: BracketRegistry,
    tournament_id: int,
    category: str,
    round_index: int,
    slot_index: int,
    name: str,
    user: Dict,
) -> BracketEngine:
    """
    Set a player name in memory (saved on the next transition or explicit save).

    Raises:
        PermissionError: If the user is not an administrator
        ValueError: If the round/slot does not exist or name is None
    """
    _require_admin(user)
    engine = await load_bracket(session, registry, tournament_id, category)
    async with registry.lock(tournament_id, category):
        engine.edit_slot(round_index, slot_index, name)
    return engine


async def edit_score(
    session: AsyncSession,
    registry: BracketRegistry,
    tournament_id: int,
    category: str,
    round_index: int,
    slot_index: int,
    score: str,
    user: Dict,
) -> BracketEngine:
    """
    Set a score in memory (saved on the next transition or explicit save).

    Raises:
        PermissionError: If the user is not an administrator
        ValueError: If the round/slot does not exist or score is None
    """
    _require_admin(user)
    engine = await load_bracket(session, registry, tournament_id, category)
    async with registry.lock(tournament_id, category):
        engine.edit_score(round_index, slot_index, score)
    return engine


async def set_champion(
    session: AsyncSession,
    registry: BracketRegistry,
    tournament_id: int,
    category: str,
    name: str,
    score: str,
    user: Dict,
) -> Tuple[BracketEngine, bool]:
    """
    Fill in and save the champion record.

    Returns:
        (engine, applied); applied is False before a champion is declared

    Raises:
        PermissionError: If the user is not an administrator
        DrawPersistenceError: If the champion could not be saved
    """
    _require_admin(user)
    engine = await load_bracket(session, registry, tournament_id, category)
    async with registry.lock(tournament_id, category):
        if engine.set_champion(name, score) is None:
            return engine, False
        await _upsert(
            session, tournament_id, category, CHAMPION_KEY,
            {"round_index": None, "champion_name": name, "champion_score": score},
        )
        await _commit_writes(session, engine, "champion")
        return engine, True


async def save_current_round(
    session: AsyncSession,
    registry: BracketRegistry,
    tournament_id: int,
    category: str,
    user: Dict,
) -> BracketEngine:
    """
    Persist the round currently shown without changing state.

    Raises:
        PermissionError: If the user is not an administrator
        DrawPersistenceError: If the round could not be saved
    """
    _require_admin(user)
    engine = await load_bracket(session, registry, tournament_id, category)
    async with registry.lock(tournament_id, category):
        current = engine.current_round
        await _upsert(session, tournament_id, category, current.key, _round_values(current))
        await _commit_writes(session, engine, current.key)
    return engine
