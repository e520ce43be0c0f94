"""Tournament draw (bracket) route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from streetpaddle.api.app_state import get_bracket_registry
from streetpaddle.api.auth_dependencies import require_admin, require_user
from streetpaddle.database.db import get_db_session
from streetpaddle.models.schemas import (
    BracketResponse,
    ChampionUpdateRequest,
    ScoreUpdateRequest,
    SlotUpdateRequest,
)
from streetpaddle.services import draw_service
from streetpaddle.services.bracket_engine import BracketEngine
from streetpaddle.services.draw_service import BracketRegistry, DrawPersistenceError

logger = logging.getLogger(__name__)
router = APIRouter()

DRAW_PATH = "/api/tournaments/{tournament_id}/draws/{category}"


async def _load_or_404(
    session: AsyncSession, registry: BracketRegistry, tournament_id: int, category: str
) -> BracketEngine:
    try:
        return await draw_service.load_bracket(session, registry, tournament_id, category)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


def _rejected(engine: BracketEngine, message: str) -> HTTPException:
    """409 carrying the unchanged bracket so clients can refresh their controls."""
    return HTTPException(status_code=409, detail={"message": message, "bracket": engine.to_dict()})


@router.get(DRAW_PATH, response_model=BracketResponse)
async def get_draw(
    tournament_id: int,
    category: str,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
    registry: BracketRegistry = Depends(get_bracket_registry),
):
    """Get the bracket for a tournament category, loading persisted rounds on first use."""
    try:
        engine = await _load_or_404(session, registry, tournament_id, category)
        return engine.to_dict()
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error loading draw {tournament_id}/{category}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error loading draw: {str(e)}")


@router.put(DRAW_PATH + "/slots", response_model=BracketResponse)
async def edit_slot(
    tournament_id: int,
    category: str,
    payload: SlotUpdateRequest,
    user: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
    registry: BracketRegistry = Depends(get_bracket_registry),
):
    """Set a player name in a slot (administrators only; saved on the next transition)."""
    await _load_or_404(session, registry, tournament_id, category)
    try:
        engine = await draw_service.edit_slot(
            session, registry, tournament_id, category,
            payload.round_index, payload.slot_index, payload.name, user,
        )
        return engine.to_dict()
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put(DRAW_PATH + "/scores", response_model=BracketResponse)
async def edit_score(
    tournament_id: int,
    category: str,
    payload: ScoreUpdateRequest,
    user: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
    registry: BracketRegistry = Depends(get_bracket_registry),
):
    """Set a score in a slot (administrators only; saved on the next transition)."""
    await _load_or_404(session, registry, tournament_id, category)
    try:
        engine = await draw_service.edit_score(
            session, registry, tournament_id, category,
            payload.round_index, payload.slot_index, payload.score, user,
        )
        return engine.to_dict()
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post(DRAW_PATH + "/advance", response_model=BracketResponse)
async def advance_round(
    tournament_id: int,
    category: str,
    user: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
    registry: BracketRegistry = Depends(get_bracket_registry),
):
    """Save the current round and open the next one."""
    await _load_or_404(session, registry, tournament_id, category)
    try:
        engine, applied = await draw_service.advance_round(session, registry, tournament_id, category)
    except DrawPersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    if not applied:
        raise _rejected(engine, "The current round cannot be advanced")
    return engine.to_dict()


@router.post(DRAW_PATH + "/champion", response_model=BracketResponse)
async def declare_champion(
    tournament_id: int,
    category: str,
    user: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
    registry: BracketRegistry = Depends(get_bracket_registry),
):
    """Save the final and declare a champion."""
    await _load_or_404(session, registry, tournament_id, category)
    try:
        engine, applied = await draw_service.declare_champion(session, registry, tournament_id, category)
    except DrawPersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    if not applied:
        raise _rejected(engine, "A champion can only be declared from the final")
    return engine.to_dict()


@router.put(DRAW_PATH + "/champion", response_model=BracketResponse)
async def set_champion(
    tournament_id: int,
    category: str,
    payload: ChampionUpdateRequest,
    user: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
    registry: BracketRegistry = Depends(get_bracket_registry),
):
    """Fill in and save the champion's name and score."""
    await _load_or_404(session, registry, tournament_id, category)
    try:
        engine, applied = await draw_service.set_champion(
            session, registry, tournament_id, category, payload.name, payload.score, user
        )
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except DrawPersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    if not applied:
        raise _rejected(engine, "No champion has been declared yet")
    return engine.to_dict()


@router.post(DRAW_PATH + "/back", response_model=BracketResponse)
async def go_back(
    tournament_id: int,
    category: str,
    user: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
    registry: BracketRegistry = Depends(get_bracket_registry),
):
    """Show the previous round. Nothing is saved or discarded."""
    await _load_or_404(session, registry, tournament_id, category)
    engine, applied = await draw_service.go_back(session, registry, tournament_id, category)
    if not applied:
        raise _rejected(engine, "Already at the first round")
    return engine.to_dict()


@router.post(DRAW_PATH + "/save", response_model=BracketResponse)
async def save_current_round(
    tournament_id: int,
    category: str,
    user: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
    registry: BracketRegistry = Depends(get_bracket_registry),
):
    """Save the round currently shown without changing state."""
    await _load_or_404(session, registry, tournament_id, category)
    try:
        engine = await draw_service.save_current_round(session, registry, tournament_id, category, user)
        return engine.to_dict()
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except DrawPersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
