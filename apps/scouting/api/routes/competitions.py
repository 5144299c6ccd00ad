"""Competition CRUD and FRC import route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from scouting.api.routes import (
    PROVIDER_RATE_LIMIT,
    data_error_response,
    limiter,
    provider_error_response,
)
from scouting.database.db import get_db_session
from scouting.models.schemas import CompetitionCreate, CompetitionResponse, CompetitionUpdate
from scouting.services import data_service, import_service
from scouting.services.data_service import ScoutingDataError
from scouting.services.frc_api_service import FRCEventsClient, ProviderError, get_frc_client

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/competitions", response_model=CompetitionResponse)
async def create_competition(
    body: CompetitionCreate,
    session: AsyncSession = Depends(get_db_session),
):
    """
    Create a competition.

    Request body:
        {
            "name": "San Diego Regional",
            "event_key": "casd",       // Optional, stored upper-case
            "start_date": "2025-03-05", // Optional
            "end_date": "2025-03-08"    // Optional
        }
    """
    try:
        return await data_service.create_competition(
            session,
            name=body.name,
            event_key=body.event_key,
            start_date=body.start_date,
            end_date=body.end_date,
        )
    except ScoutingDataError as e:
        raise data_error_response(e)
    except Exception as e:
        logger.error(f"Error creating competition: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error creating competition: {str(e)}")


@router.get("/api/competitions")
async def list_competitions(session: AsyncSession = Depends(get_db_session)):
    """List all competitions."""
    try:
        return await data_service.list_competitions(session)
    except Exception as e:
        logger.error(f"Error listing competitions: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error listing competitions: {str(e)}")


@router.get("/api/competitions/{competition_id}", response_model=CompetitionResponse)
async def get_competition(competition_id: str, session: AsyncSession = Depends(get_db_session)):
    competition = await data_service.get_competition(session, competition_id)
    if not competition:
        raise HTTPException(status_code=404, detail=f"Competition {competition_id} not found")
    return competition


@router.patch("/api/competitions/{competition_id}", response_model=CompetitionResponse)
async def update_competition(
    competition_id: str,
    body: CompetitionUpdate,
    session: AsyncSession = Depends(get_db_session),
):
    """
    Update a competition. Only fields present in the body change.

    The event key cannot change once matches or observations reference the
    competition (409).
    """
    try:
        return await data_service.update_competition(
            session, competition_id, body.model_dump(exclude_unset=True)
        )
    except ScoutingDataError as e:
        raise data_error_response(e)
    except Exception as e:
        logger.error(f"Error updating competition {competition_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error updating competition: {str(e)}")


@router.delete("/api/competitions/{competition_id}")
async def delete_competition(competition_id: str, session: AsyncSession = Depends(get_db_session)):
    """Delete a competition together with its matches and observations."""
    try:
        deleted = await data_service.delete_competition(session, competition_id)
    except Exception as e:
        logger.error(f"Error deleting competition {competition_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error deleting competition: {str(e)}")
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Competition {competition_id} not found")
    return {"success": True}


@router.post("/api/competitions/{competition_id}/import")
@limiter.limit(PROVIDER_RATE_LIMIT)
async def import_competition(
    request: Request,
    competition_id: str,
    session: AsyncSession = Depends(get_db_session),
    client: FRCEventsClient = Depends(get_frc_client),
):
    """
    Import teams and the match schedule from the FRC Events API using the
    competition's event key.

    Returns:
        dict: event_key, event_name, teams and matches counts
    """
    try:
        return await import_service.import_competition(session, competition_id, client)
    except ScoutingDataError as e:
        raise data_error_response(e)
    except ProviderError as e:
        logger.warning(f"FRC import failed for competition {competition_id}: {e}")
        raise provider_error_response(e)
    except Exception as e:
        logger.error(f"Error importing competition {competition_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error importing competition: {str(e)}")
