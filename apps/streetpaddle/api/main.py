"""
Street Paddle API Server

FastAPI server for group chat unread badges, announcements and tournament draws.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
import uvicorn
from slowapi import _rate_limit_exceeded_handler  # type: ignore
from slowapi.errors import RateLimitExceeded  # type: ignore

from streetpaddle.api.app_state import init_app_state, shutdown_app_state
from streetpaddle.api.routes import router, limiter as routes_limiter
from streetpaddle.database import db

# Allow log level to be configured via environment variable (default: INFO)
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    logger.info("Starting up Street Paddle API...")

    # Fallback for tables that are not in migrations yet
    try:
        await db.init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)
        # Don't raise - allow app to start even if initialization fails

    app.state.ws_manager.start_sweeper()

    yield  # App is running

    logger.info("Shutting down Street Paddle API...")

    try:
        await shutdown_app_state(app)
        logger.info("Unread listeners and badge deliveries stopped")
    except Exception as e:
        logger.error(f"Error stopping unread listeners: {e}", exc_info=True)

    try:
        await db.close_database()
        logger.info("Database connections closed")
    except Exception as e:
        logger.error(f"Error closing database connections: {e}", exc_info=True)


app = FastAPI(
    title="Street Paddle API",
    description="API for chat unread badges, announcements and tournament draws",
    version="1.0.0",
    lifespan=lifespan,
)

# Service instances live on app.state so TestClient works without lifespan
init_app_state(app)

# Setup rate limiter
app.state.limiter = routes_limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Origins configured via ALLOWED_ORIGINS env var
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(router)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
