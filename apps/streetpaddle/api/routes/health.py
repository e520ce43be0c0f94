"""Health check route."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from streetpaddle.database.db import get_db_session

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/health")
async def health_check(session: AsyncSession = Depends(get_db_session)):
    """
    Health check endpoint.

    Returns:
        dict: Service status, including whether the database answers
    """
    try:
        await session.execute(text("SELECT 1"))
        return {"status": "healthy", "message": "API is running", "database": True}
    except Exception as e:
        logger.warning(f"Health check database probe failed: {e}")
        return {"status": "unhealthy", "database": False, "message": f"Error: {str(e)}"}
