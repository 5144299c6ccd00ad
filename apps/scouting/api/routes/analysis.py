"""Team statistics, live stats feed and health route handlers."""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from scouting.database import db
from scouting.database.db import get_db_session
from scouting.services import data_service
from scouting.services.aggregation_service import (
    SORT_DESCENDING,
    aggregate_team_stats,
    sort_by,
    team_metric_variability,
)
from scouting.services.identity_service import display_label
from scouting.services.scoring_service import compute_point_breakdown
from scouting.services.subscription_service import LiveTeamStats, get_subscription_manager

logger = logging.getLogger(__name__)
router = APIRouter()

WEBSOCKET_TIMEOUT_SECONDS = 30


@router.get("/api/analysis/team-stats")
async def get_team_stats(
    competition_id: Optional[str] = None,
    sort: Optional[str] = None,
    direction: str = SORT_DESCENDING,
    session: AsyncSession = Depends(get_db_session),
):
    """
    Per-team summary statistics.

    Query params:
        competition_id: Limit to one competition; omit for the season-wide view
        sort: Any statistic key (default avg_points)
        direction: asc or desc
    """
    try:
        observations = await data_service.list_observations(session, competition_id=competition_id)
        stats = aggregate_team_stats(observations)
        if sort:
            stats = sort_by(stats, sort, direction)
        return stats
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error computing team stats: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error computing team stats: {str(e)}")


@router.get("/api/analysis/teams/{team_number}/variability")
async def get_team_variability(
    team_number: int,
    competition_id: Optional[str] = None,
    session: AsyncSession = Depends(get_db_session),
):
    """Mean, sample standard deviation and n per metric for one team."""
    observations = await data_service.list_observations(
        session, competition_id=competition_id, team_number=team_number
    )
    if not observations:
        raise HTTPException(status_code=404, detail=f"No observations for team {team_number}")
    variability = team_metric_variability(observations)
    return {
        "team_number": team_number,
        "match_count": len(observations),
        "metrics": variability.get(team_number, {}),
    }


@router.get("/api/analysis/teams/{team_number}/matches")
async def get_team_match_points(
    team_number: int,
    competition_id: Optional[str] = None,
    session: AsyncSession = Depends(get_db_session),
):
    """Point breakdown for each of a team's observations."""
    observations = await data_service.list_observations(
        session, competition_id=competition_id, team_number=team_number
    )
    matches = await data_service.list_matches(session, competition_id)
    return [
        {
            "observation_id": o["id"],
            "competition_id": o["competition_id"],
            "match_ref": o["match_ref"],
            "match_label": display_label(o["match_ref"], matches),
            **compute_point_breakdown(o),
        }
        for o in observations
    ]


@router.websocket("/api/ws/competitions/{competition_id}/team-stats")
async def websocket_team_stats(websocket: WebSocket, competition_id: str):
    """
    WebSocket feed of team statistics for a competition.

    Sends the current statistics on connect and again after every
    observation change. The initial statistics are skipped when a change
    arrived while they were being read.

    Client may send "ping"; server answers "pong".
    """
    await websocket.accept()

    async def push(stats):
        await websocket.send_json({"competition_id": competition_id, "team_stats": stats})

    live = LiveTeamStats(get_subscription_manager(), competition_id, on_update=push)
    try:
        async with db.AsyncSessionLocal() as session:
            observations = await data_service.list_observations(session, competition_id=competition_id)
        # A snapshot published during the read is newer than what was read
        if live.snapshot_count == 0:
            await push(aggregate_team_stats(observations))

        while True:
            try:
                data = await asyncio.wait_for(websocket.receive_text(), timeout=WEBSOCKET_TIMEOUT_SECONDS)
                if data == "ping":
                    await websocket.send_text("pong")
            except asyncio.TimeoutError:
                # Raises once the connection is gone
                await websocket.send_text("ping")
    except WebSocketDisconnect:
        logger.info(f"Team stats WebSocket disconnected for competition {competition_id}")
    except Exception as e:
        logger.error(f"Team stats WebSocket error for competition {competition_id}: {e}")
    finally:
        live.close()


@router.get("/api/health")
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Service status
    """
    return {
        "status": "healthy",
        "message": "API is running",
    }
