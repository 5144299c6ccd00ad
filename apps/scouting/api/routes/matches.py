"""Match schedule and match-reference repair route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from scouting.api.routes import data_error_response
from scouting.database.db import get_db_session
from scouting.models.schemas import (
    BulkMatchesRequest,
    GenerateMatchesRequest,
    MatchCreate,
    MatchResponse,
    RepairRequest,
    RepairResponse,
)
from scouting.services import data_service
from scouting.services.data_service import ScoutingDataError
from scouting.services.aggregation_service import match_alliances
from scouting.services.schedule_service import match_result, parse_bulk_labels

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/competitions/{competition_id}/matches", response_model=MatchResponse)
async def create_match(
    competition_id: str,
    body: MatchCreate,
    session: AsyncSession = Depends(get_db_session),
):
    """
    Create a match. A match with the same label in the competition is
    updated instead of duplicated.

    Request body:
        {
            "label": "Q12",
            "category": "qualification",       // qualification | playoff | practice
            "teams": [254, 1678, 971, 118, 148, 2056],  // Optional, Red1..Blue3
            "red_score": 112,  // Optional, with blue_score
            "blue_score": 98
        }
    """
    result = None
    if body.red_score is not None:
        result = match_result(body.red_score, body.blue_score)
    try:
        return await data_service.upsert_match(
            session, competition_id, body.label, body.category, body.teams, result
        )
    except ScoutingDataError as e:
        raise data_error_response(e)
    except Exception as e:
        logger.error(f"Error creating match in competition {competition_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error creating match: {str(e)}")


@router.get("/api/competitions/{competition_id}/matches")
async def list_matches(competition_id: str, session: AsyncSession = Depends(get_db_session)):
    """Matches in schedule order: qualification, then playoff by stage, then number."""
    try:
        return await data_service.list_matches(session, competition_id)
    except Exception as e:
        logger.error(f"Error listing matches for competition {competition_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error listing matches: {str(e)}")


@router.post("/api/competitions/{competition_id}/matches/bulk")
async def bulk_create_matches(
    competition_id: str,
    body: BulkMatchesRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """Create many matches from one label per line (or a label list)."""
    labels = list(body.labels or [])
    if body.text:
        labels.extend(parse_bulk_labels(body.text))
    try:
        created = await data_service.create_matches_from_labels(
            session, competition_id, labels, body.category
        )
        return {"count": len(created), "matches": created}
    except ScoutingDataError as e:
        raise data_error_response(e)
    except Exception as e:
        logger.error(f"Error bulk creating matches for competition {competition_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error creating matches: {str(e)}")


@router.post("/api/competitions/{competition_id}/matches/generate")
async def generate_matches(
    competition_id: str,
    body: GenerateMatchesRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """Generate Q1..Qn and optionally the playoff bracket."""
    try:
        return await data_service.generate_matches(
            session,
            competition_id,
            qualification_count=body.qualification_count,
            include_playoffs=body.include_playoffs,
        )
    except ScoutingDataError as e:
        raise data_error_response(e)
    except Exception as e:
        logger.error(f"Error generating matches for competition {competition_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error generating matches: {str(e)}")


@router.get("/api/matches/{match_id}/alliances")
async def get_match_alliances(match_id: str, session: AsyncSession = Depends(get_db_session)):
    """
    Alliance breakdown for one match.

    Each red and blue station's team comes with its statistics over the
    match's competition, plus per-alliance totals, the predicted winner and
    the official result once played.
    """
    match = await data_service.get_match(session, match_id)
    if not match:
        raise HTTPException(status_code=404, detail=f"Match {match_id} not found")
    try:
        observations = await data_service.list_observations(session, competition_id=match["competition_id"])
        return match_alliances(match, observations)
    except Exception as e:
        logger.error(f"Error building alliances for match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error building alliances: {str(e)}")


@router.delete("/api/matches/{match_id}")
async def delete_match(match_id: str, session: AsyncSession = Depends(get_db_session)):
    """Delete a match and every observation that refers to it."""
    try:
        deleted = await data_service.delete_match(session, match_id)
    except Exception as e:
        logger.error(f"Error deleting match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error deleting match: {str(e)}")
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Match {match_id} not found")
    return {"success": True}


@router.post("/api/competitions/{competition_id}/matches/repair", response_model=RepairResponse)
async def repair_match_references(
    competition_id: str,
    body: RepairRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """
    Point observations that refer to a match by label or composite reference
    at the match's id.

    Without "confirm": true nothing changes and the response reports how many
    observations would be updated.
    """
    try:
        result = await data_service.repair_match_references(
            session, competition_id, body.target_label.strip(), confirm=body.confirm
        )
        return result.to_dict()
    except ScoutingDataError as e:
        raise data_error_response(e)
    except Exception as e:
        logger.error(f"Error repairing match references in competition {competition_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error repairing match references: {str(e)}")
