"""FRC Events API proxy route handlers. The API key never leaves the server."""

import asyncio
import logging
from typing import Optional, Set

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect

from scouting.api.routes import PROVIDER_RATE_LIMIT, limiter, provider_error_response
from scouting.services.frc_api_service import FRCEventsClient, ProviderError, get_frc_client
from scouting.services.schedule_service import ScheduleLookup

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/frc/events/{event_code}")
@limiter.limit(PROVIDER_RATE_LIMIT)
async def get_event(
    request: Request,
    event_code: str,
    client: FRCEventsClient = Depends(get_frc_client),
):
    """Event details from the FRC Events API."""
    try:
        return await client.get_event_details(event_code)
    except ProviderError as e:
        raise provider_error_response(e)
    except Exception as e:
        logger.error(f"Error fetching FRC event {event_code}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error fetching event: {str(e)}")


@router.get("/api/frc/events/{event_code}/teams")
@limiter.limit(PROVIDER_RATE_LIMIT)
async def get_event_teams(
    request: Request,
    event_code: str,
    client: FRCEventsClient = Depends(get_frc_client),
):
    """All teams registered for an event."""
    try:
        return await client.get_event_teams(event_code)
    except ProviderError as e:
        raise provider_error_response(e)
    except Exception as e:
        logger.error(f"Error fetching FRC teams for {event_code}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error fetching teams: {str(e)}")


@router.get("/api/frc/events/{event_code}/schedule")
@limiter.limit(PROVIDER_RATE_LIMIT)
async def get_event_schedule(
    request: Request,
    event_code: str,
    tournament_level: Optional[str] = None,
    team_number: Optional[int] = None,
    client: FRCEventsClient = Depends(get_frc_client),
):
    """
    Match schedule for an event.

    Query params:
        tournament_level: Qualification or Playoff (both when omitted)
        team_number: Only matches this team plays in
    """
    try:
        return await client.get_event_schedule(
            event_code, tournament_level=tournament_level, team_number=team_number
        )
    except ProviderError as e:
        raise provider_error_response(e)
    except Exception as e:
        logger.error(f"Error fetching FRC schedule for {event_code}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error fetching schedule: {str(e)}")


@router.websocket("/api/ws/frc/events/{event_code}/schedule")
async def websocket_event_schedule(
    websocket: WebSocket,
    event_code: str,
    client: FRCEventsClient = Depends(get_frc_client),
):
    """
    Live schedule view for an event, filtered by the team number the client types.

    Client messages:
        "254"  filter to team 254
        ""     clear the filter (served from the cached full schedule)
        "ping" answered with "pong"

    Every message starts a new lookup without waiting for the previous
    one; a response that a newer message has superseded is never sent.
    """
    await websocket.accept()

    async def fetch(team_number=None):
        return await client.get_event_schedule(event_code, team_number=team_number)

    lookup = ScheduleLookup(fetch)
    pending: Set[asyncio.Task] = set()

    async def refresh_and_send(team_number: Optional[int]):
        try:
            applied = await lookup.refresh(team_number)
        except ProviderError as e:
            await websocket.send_json({"event_code": event_code, "team_number": team_number, "error": str(e)})
            return
        except Exception as e:
            logger.error(f"Schedule lookup failed for event {event_code}: {e}", exc_info=True)
            return
        if applied:
            await websocket.send_json({
                "event_code": event_code,
                "team_number": lookup.team_filter,
                "schedule": lookup.visible_schedule,
            })

    def start(team_number: Optional[int]):
        task = asyncio.create_task(refresh_and_send(team_number))
        pending.add(task)
        task.add_done_callback(pending.discard)

    try:
        start(None)
        while True:
            data = (await websocket.receive_text()).strip()
            if data == "ping":
                await websocket.send_text("pong")
            elif not data:
                start(None)
            elif data.isdigit() and int(data) > 0:
                start(int(data))
            else:
                await websocket.send_json({"event_code": event_code, "error": f"Invalid team number: {data!r}"})
    except WebSocketDisconnect:
        logger.info(f"Schedule WebSocket disconnected for event {event_code}")
    except Exception as e:
        logger.error(f"Schedule WebSocket error for event {event_code}: {e}")
    finally:
        for task in list(pending):
            task.cancel()
