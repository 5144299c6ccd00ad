"""Scouting observation route handlers."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from scouting.api.routes import data_error_response
from scouting.database.db import get_db_session
from scouting.models.schemas import ObservationCreate, ObservationResponse, ObservationUpdate
from scouting.services import data_service, export_service
from scouting.services.data_service import ScoutingDataError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/observations", response_model=ObservationResponse)
async def create_observation(
    body: ObservationCreate,
    overwrite: bool = False,
    session: AsyncSession = Depends(get_db_session),
):
    """
    Record a scouting observation.

    The match reference may be a match id, a label ("Q12") or a composite
    reference; it is stored as the match id when it resolves. A second
    observation for the same team in the same match returns 409 with the
    existing id unless ?overwrite=true.
    """
    try:
        return await data_service.create_observation(session, body.model_dump(), overwrite=overwrite)
    except ScoutingDataError as e:
        raise data_error_response(e)
    except Exception as e:
        logger.error(f"Error creating observation: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error creating observation: {str(e)}")


@router.get("/api/observations")
async def list_observations(
    competition_id: Optional[str] = None,
    team_number: Optional[int] = None,
    match_ref: Optional[str] = None,
    session: AsyncSession = Depends(get_db_session),
):
    """List observations. Omitting competition_id lists the whole season."""
    try:
        return await data_service.list_observations(
            session, competition_id=competition_id, team_number=team_number, match_ref=match_ref
        )
    except Exception as e:
        logger.error(f"Error listing observations: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error listing observations: {str(e)}")


@router.get("/api/observations/export")
async def export_observations(
    competition_id: Optional[str] = None,
    team_number: Optional[int] = None,
    session: AsyncSession = Depends(get_db_session),
):
    """
    Export observations to CSV.

    Returns:
        CSV file download
    """
    try:
        observations = await data_service.list_observations(
            session, competition_id=competition_id, team_number=team_number
        )
        matches = await data_service.list_matches(session, competition_id)
        csv_content = export_service.export_observations_to_csv(observations, matches)
    except Exception as e:
        logger.error(f"Error exporting observations: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error exporting observations: {str(e)}")

    filename = f"scouting-data-{competition_id}.csv" if competition_id else "scouting-data.csv"
    return Response(
        content=csv_content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/api/observations/{observation_id}", response_model=ObservationResponse)
async def get_observation(observation_id: str, session: AsyncSession = Depends(get_db_session)):
    observation = await data_service.get_observation(session, observation_id)
    if not observation:
        raise HTTPException(status_code=404, detail=f"Observation {observation_id} not found")
    return observation


@router.patch("/api/observations/{observation_id}", response_model=ObservationResponse)
async def update_observation(
    observation_id: str,
    body: ObservationUpdate,
    overwrite: bool = False,
    session: AsyncSession = Depends(get_db_session),
):
    """
    Update the fields present in the body; a new match reference is resolved again.

    Moving the observation onto a team and match that is already scouted
    returns 409 unless ?overwrite=true, which replaces the other observation.
    """
    try:
        return await data_service.update_observation(
            session, observation_id, body.changes(), overwrite=overwrite
        )
    except ScoutingDataError as e:
        raise data_error_response(e)
    except Exception as e:
        logger.error(f"Error updating observation {observation_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error updating observation: {str(e)}")


@router.delete("/api/observations/{observation_id}")
async def delete_observation(observation_id: str, session: AsyncSession = Depends(get_db_session)):
    if not await data_service.delete_observation(session, observation_id):
        raise HTTPException(status_code=404, detail=f"Observation {observation_id} not found")
    return {"success": True}
