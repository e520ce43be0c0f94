"""Tournament configuration route handlers."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from streetpaddle.api.app_state import get_bracket_registry
from streetpaddle.api.auth_dependencies import require_admin, require_user
from streetpaddle.database.db import get_db_session
from streetpaddle.models.schemas import (
    TournamentCreateRequest,
    TournamentResponse,
    TournamentUpdateRequest,
)
from streetpaddle.services import tournament_service
from streetpaddle.services.draw_service import BracketRegistry

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/tournaments", response_model=List[TournamentResponse])
async def list_tournaments(
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """List tournaments, latest start date first."""
    try:
        return await tournament_service.list_tournaments(session)
    except Exception as e:
        logger.error(f"Error listing tournaments: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error listing tournaments: {str(e)}")


@router.post("/api/tournaments", response_model=TournamentResponse)
async def create_tournament(
    payload: TournamentCreateRequest,
    user: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Create a tournament (administrators only)."""
    try:
        return await tournament_service.create_tournament(
            session,
            title=payload.title,
            number_of_players=payload.number_of_players,
            categories=payload.categories,
            start_date=payload.start_date,
            end_date=payload.end_date,
            link=payload.link,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error creating tournament: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error creating tournament: {str(e)}")


@router.get("/api/tournaments/{tournament_id}", response_model=TournamentResponse)
async def get_tournament(
    tournament_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Get a tournament by id."""
    tournament = await tournament_service.get_tournament(session, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return tournament


@router.put("/api/tournaments/{tournament_id}", response_model=TournamentResponse)
async def update_tournament(
    tournament_id: int,
    payload: TournamentUpdateRequest,
    user: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
    registry: BracketRegistry = Depends(get_bracket_registry),
):
    """Update a tournament (administrators only). Cached brackets are reloaded on next use."""
    try:
        tournament = await tournament_service.update_tournament(
            session, tournament_id, **payload.model_dump(exclude_unset=True)
        )
        registry.evict(tournament_id)
        return tournament
    except ValueError as e:
        status_code = 404 if "not found" in str(e).lower() else 400
        raise HTTPException(status_code=status_code, detail=str(e))
    except Exception as e:
        logger.error(f"Error updating tournament {tournament_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error updating tournament: {str(e)}")


@router.delete("/api/tournaments/{tournament_id}")
async def delete_tournament(
    tournament_id: int,
    user: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
    registry: BracketRegistry = Depends(get_bracket_registry),
):
    """Delete a tournament and its draws (administrators only)."""
    try:
        deleted = await tournament_service.delete_tournament(session, tournament_id)
    except Exception as e:
        logger.error(f"Error deleting tournament {tournament_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error deleting tournament: {str(e)}")
    if not deleted:
        raise HTTPException(status_code=404, detail="Tournament not found")
    registry.evict(tournament_id)
    return {"success": True}
