"""
API routes - combined router from all domain modules.

Shared infrastructure (limiter, error translation) lives here; every
sub-router imports what it needs from this package.
"""

import os

from fastapi import APIRouter, HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from scouting.services.data_service import (
    CompetitionInUseError,
    DuplicateObservationError,
    NotFoundError,
    ScoutingDataError,
)
from scouting.services.frc_api_service import (
    ProviderError,
    ProviderNotFoundError,
    ProviderRequestError,
    ProviderUnauthorizedError,
    ProviderUnavailableError,
)

# ---------------------------------------------------------------------------
# Shared rate limiter
# ---------------------------------------------------------------------------
IS_TEST_ENV = os.getenv("ENV", "").lower() == "test"
if IS_TEST_ENV:
    limiter = Limiter(key_func=get_remote_address)

    def no_op_limit(*args, **kwargs):
        """No-op decorator for test mode - doesn't apply any rate limiting."""
        def decorator(func):
            return func
        return decorator

    limiter.limit = lambda *args, **kwargs: no_op_limit()
else:
    limiter = Limiter(key_func=get_remote_address)

PROVIDER_RATE_LIMIT = os.getenv("PROVIDER_RATE_LIMIT", "10/minute")


# ---------------------------------------------------------------------------
# Shared error translation
# ---------------------------------------------------------------------------
def data_error_response(error: ScoutingDataError) -> HTTPException:
    """HTTPException for a data service error."""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, DuplicateObservationError):
        return HTTPException(
            status_code=409,
            detail={"message": str(error), "existing_id": error.existing_id},
        )
    if isinstance(error, CompetitionInUseError):
        return HTTPException(status_code=409, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))


def provider_error_response(error: ProviderError) -> HTTPException:
    """HTTPException for an FRC API failure."""
    if isinstance(error, ProviderNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ProviderUnauthorizedError):
        return HTTPException(status_code=401, detail="Invalid or missing FRC API key")
    if isinstance(error, ProviderUnavailableError):
        headers = {"Retry-After": str(error.retry_after)} if error.retry_after is not None else None
        return HTTPException(status_code=503, detail="FRC API is currently unavailable", headers=headers)
    if isinstance(error, ProviderRequestError):
        return HTTPException(status_code=400, detail=str(error))
    return HTTPException(status_code=502, detail=str(error))


# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from scouting.api.routes.competitions import router as competitions_router  # noqa: E402
from scouting.api.routes.teams import router as teams_router  # noqa: E402
from scouting.api.routes.matches import router as matches_router  # noqa: E402
from scouting.api.routes.observations import router as observations_router  # noqa: E402
from scouting.api.routes.analysis import router as analysis_router  # noqa: E402
from scouting.api.routes.frc import router as frc_router  # noqa: E402

router = APIRouter()
router.include_router(competitions_router)
router.include_router(teams_router)
router.include_router(matches_router)
router.include_router(observations_router)
router.include_router(analysis_router)
router.include_router(frc_router)
