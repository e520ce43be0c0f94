"""
API routes - combined router from all domain modules.

Shared infrastructure (limiter) lives here; every sub-router imports what it
needs from this package.
"""

import os

from fastapi import APIRouter
from slowapi import Limiter
from slowapi.util import get_remote_address

# ---------------------------------------------------------------------------
# Shared rate limiter
# ---------------------------------------------------------------------------
IS_TEST_ENV = os.getenv("ENV", "").lower() == "test"
limiter = Limiter(key_func=get_remote_address)
if IS_TEST_ENV:

    def no_op_limit(*args, **kwargs):
        """No-op decorator for test mode - doesn't apply any rate limiting."""
        def decorator(func):
            return func
        return decorator

    limiter.limit = no_op_limit

# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from streetpaddle.api.routes.health import router as health_router  # noqa: E402
from streetpaddle.api.routes.groups import router as groups_router  # noqa: E402
from streetpaddle.api.routes.announcements import router as announcements_router  # noqa: E402
from streetpaddle.api.routes.notifications import router as notifications_router  # noqa: E402
from streetpaddle.api.routes.tournaments import router as tournaments_router  # noqa: E402
from streetpaddle.api.routes.draws import router as draws_router  # noqa: E402

router = APIRouter()
router.include_router(health_router)
router.include_router(groups_router)
router.include_router(announcements_router)
router.include_router(notifications_router)
router.include_router(tournaments_router)
router.include_router(draws_router)
