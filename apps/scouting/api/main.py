"""
FRC Scouting Analytics API Server

FastAPI server that stores scouting observations and serves per-team statistics.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import math
import os
import uvicorn
from slowapi import _rate_limit_exceeded_handler  # type: ignore
from slowapi.errors import RateLimitExceeded  # type: ignore

from scouting.api.routes import router, limiter as routes_limiter
from scouting.database import db
from scouting.services.subscription_service import reset_subscription_manager
from scouting.services.frc_api_service import get_frc_client

# Set up logging
# Allow log level to be configured via environment variable (default: INFO)
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, report provider configuration, dispose the engine on shutdown."""
    logger.info("Starting up FRC Scouting Analytics API...")

    try:
        await db.init_database()
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    frc_client = get_frc_client()
    if frc_client.api_key:
        logger.info(f"FRC Events API configured for season {frc_client.season} at {frc_client.base_url}")
    else:
        logger.warning("FRC_API_KEY is not set; competition import and FRC lookups will return 401")

    # Start with no live subscribers
    reset_subscription_manager()

    yield

    logger.info("Shutting down FRC Scouting Analytics API...")
    await db.engine.dispose()


app = FastAPI(
    title="FRC Scouting Analytics API",
    description="API for recording FRC scouting observations and computing per-team statistics",
    version="1.0.0",
    lifespan=lifespan,
)

# Setup rate limiter
app.state.limiter = routes_limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


def _json_safe_float(value: float):
    return value if math.isfinite(value) else str(value)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """FastAPI's 422 body, with Infinity and NaN inputs echoed back as strings."""
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors(), custom_encoder={float: _json_safe_float})},
    )


app.add_exception_handler(RequestValidationError, validation_exception_handler)

# Add CORS middleware, origins configured via CORS_ORIGINS env var
allowed_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
