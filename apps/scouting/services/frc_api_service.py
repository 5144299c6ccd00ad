"""
FRC Events API client.

Reads event details, team lists and match schedules for a season. Every
failure surfaces as a typed ProviderError so callers can tell a missing event
from a bad key or an outage; nothing is turned into an empty result.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import httpx

from scouting.utils.constants import (
    DEFAULT_FRC_API_BASE_URL,
    DEFAULT_FRC_SEASON,
    FRC_TEAMS_PAGE_SIZE,
)

logger = logging.getLogger(__name__)

TOURNAMENT_LEVELS = ("Qualification", "Playoff")


class ProviderError(Exception):
    """Base class for FRC Events API failures."""

    status_code: Optional[int] = None

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class ProviderNotFoundError(ProviderError):
    status_code = 404


class ProviderUnauthorizedError(ProviderError):
    status_code = 401


class ProviderUnavailableError(ProviderError):
    """Upstream outage, rate limit or network failure. retry_after is in seconds when known."""

    status_code = 503

    def __init__(self, message: str, status_code: Optional[int] = None, retry_after: Optional[int] = None):
        super().__init__(message, status_code)
        self.retry_after = retry_after


class ProviderRequestError(ProviderError):
    status_code = 400


def _parse_retry_after(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return max(int(value.strip()), 0)
    except ValueError:
        return None


def _get_frc_api_key() -> Optional[str]:
    """Read the FRC Events API key from the environment."""
    return os.environ.get("FRC_API_KEY")


class FRCEventsClient:
    """Async client for the FRC Events API (HTTP Basic auth, JSON)."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        season: Optional[int] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else _get_frc_api_key()
        self.base_url = (base_url or os.getenv("FRC_API_BASE_URL", DEFAULT_FRC_API_BASE_URL)).rstrip("/")
        self.season = int(season if season is not None else os.getenv("FRC_SEASON", DEFAULT_FRC_SEASON))
        self.timeout = float(timeout if timeout is not None else os.getenv("FRC_API_TIMEOUT", "10.0"))
        self._transport = transport

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        GET a season-relative path and decode the JSON body.

        Raises:
            ProviderUnauthorizedError: Missing key, 401 or 403
            ProviderNotFoundError: 404
            ProviderUnavailableError: 5xx, 429, timeout or network failure
            ProviderRequestError: Any other 4xx
        """
        if not self.api_key:
            raise ProviderUnauthorizedError("FRC API key is not configured. Set FRC_API_KEY.")

        url = f"{self.base_url}/{self.season}{path}"
        params = {k: v for k, v in (params or {}).items() if v is not None}
        logger.debug("FRC API request: %s %s", url, params)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(
                    url,
                    params=params,
                    auth=(self.api_key, ""),
                    headers={"Accept": "application/json"},
                )
        except httpx.TimeoutException as e:
            raise ProviderUnavailableError(f"FRC API request timed out: {url}") from e
        except httpx.RequestError as e:
            raise ProviderUnavailableError(f"FRC API request failed: {e}") from e

        status = response.status_code
        if status >= 400:
            logger.warning("FRC API error %s for %s: %s", status, url, response.text[:200])
        if status in (401, 403):
            raise ProviderUnauthorizedError("FRC API rejected the credentials", status)
        if status == 404:
            raise ProviderNotFoundError(f"FRC API resource not found: {path}", status)
        if status == 429 or status >= 500:
            raise ProviderUnavailableError(
                f"FRC API unavailable ({status})",
                status,
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )
        if status >= 400:
            raise ProviderRequestError(f"FRC API rejected the request ({status})", status)

        try:
            return response.json()
        except ValueError as e:
            raise ProviderUnavailableError("FRC API returned a non-JSON body") from e

    async def get_event_details(self, event_code: str) -> Dict[str, Any]:
        """Event record for an event code (e.g., "CASD")."""
        data = await self._get("/events", {"eventCode": event_code.upper()})
        events = data.get("Events") or []
        if not events:
            raise ProviderNotFoundError(f"Event {event_code.upper()} not found for season {self.season}")
        return events[0]

    async def get_event_teams(self, event_code: str) -> List[Dict[str, Any]]:
        """All teams at an event, following pagination."""
        teams: List[Dict[str, Any]] = []
        page = 1
        while True:
            data = await self._get("/teams", {"eventCode": event_code.upper(), "page": page})
            page_teams = data.get("teams") or []
            teams.extend(page_teams)

            page_total = data.get("pageTotal")
            if not page_teams or len(page_teams) < FRC_TEAMS_PAGE_SIZE:
                break
            if page_total is not None and page >= int(page_total):
                break
            page += 1
        return teams

    async def get_event_schedule(
        self,
        event_code: str,
        tournament_level: Optional[str] = None,
        team_number: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Match schedule for an event.

        Args:
            event_code: Event code
            tournament_level: Qualification or Playoff; both (qualification first) when None
            team_number: Only matches this team plays in

        Returns:
            Schedule entries with matchNumber, description, tournamentLevel,
            startTime, field and teams
        """
        levels = [tournament_level] if tournament_level else list(TOURNAMENT_LEVELS)
        schedule: List[Dict[str, Any]] = []
        for level in levels:
            data = await self._get(
                f"/schedule/{event_code.upper()}",
                {"tournamentLevel": level, "teamNumber": team_number},
            )
            for match in data.get("Schedule") or []:
                schedule.append({
                    "matchNumber": match.get("matchNumber"),
                    "description": match.get("description"),
                    "tournamentLevel": match.get("tournamentLevel") or level,
                    "startTime": match.get("startTime"),
                    "field": match.get("field"),
                    "teams": match.get("teams") or [],
                })
        return schedule

    async def get_event_results(
        self,
        event_code: str,
        tournament_level: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Official results of the matches played so far.

        Unplayed matches are absent. Entries carry matchNumber, description,
        tournamentLevel, scoreRedFinal and scoreBlueFinal.
        """
        levels = [tournament_level] if tournament_level else list(TOURNAMENT_LEVELS)
        results: List[Dict[str, Any]] = []
        for level in levels:
            data = await self._get(f"/matches/{event_code.upper()}", {"tournamentLevel": level})
            for match in data.get("Matches") or []:
                results.append({
                    "matchNumber": match.get("matchNumber"),
                    "description": match.get("description"),
                    "tournamentLevel": match.get("tournamentLevel") or level,
                    "scoreRedFinal": match.get("scoreRedFinal"),
                    "scoreBlueFinal": match.get("scoreBlueFinal"),
                })
        return results

    async def get_team(self, team_number: int) -> Dict[str, Any]:
        data = await self._get("/teams", {"teamNumber": team_number})
        teams = data.get("teams") or []
        if not teams:
            raise ProviderNotFoundError(f"Team {team_number} not found for season {self.season}")
        return teams[0]


def get_frc_client() -> FRCEventsClient:
    """FastAPI dependency returning a client configured from the environment."""
    return FRCEventsClient()
