"""Team route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from scouting.api.routes import data_error_response
from scouting.database.db import get_db_session
from scouting.models.schemas import TeamResponse, TeamUpsert
from scouting.services import data_service
from scouting.services.data_service import ScoutingDataError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/teams", response_model=TeamResponse)
async def upsert_team(body: TeamUpsert, session: AsyncSession = Depends(get_db_session)):
    """Create a team, or update its name if the number already exists."""
    try:
        return await data_service.upsert_team(session, body.team_number, body.team_name)
    except ScoutingDataError as e:
        raise data_error_response(e)
    except Exception as e:
        logger.error(f"Error saving team {body.team_number}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error saving team: {str(e)}")


@router.get("/api/teams")
async def list_teams(session: AsyncSession = Depends(get_db_session)):
    """List teams ordered by team number."""
    try:
        return await data_service.list_teams(session)
    except Exception as e:
        logger.error(f"Error listing teams: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error listing teams: {str(e)}")


@router.get("/api/teams/{team_number}", response_model=TeamResponse)
async def get_team(team_number: int, session: AsyncSession = Depends(get_db_session)):
    team = await data_service.get_team(session, team_number)
    if not team:
        raise HTTPException(status_code=404, detail=f"Team {team_number} not found")
    return team


@router.delete("/api/teams/{team_number}")
async def delete_team(team_number: int, session: AsyncSession = Depends(get_db_session)):
    if not await data_service.delete_team(session, team_number):
        raise HTTPException(status_code=404, detail=f"Team {team_number} not found")
    return {"success": True}
