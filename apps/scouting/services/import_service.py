"""
Competition importer.
Pulls an event's teams and match schedule from the FRC Events API into the store.
"""

import asyncio
import logging
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession

from scouting.database.models import MatchCategory
from scouting.services import data_service
from scouting.services.frc_api_service import FRCEventsClient
from scouting.services.schedule_service import match_result, order_teams_by_station

logger = logging.getLogger(__name__)


def team_display_name(team: Dict[str, Any]) -> str:
    """Short name when the provider has one, else the full name."""
    return (team.get("nameShort") or team.get("nameFull") or "").strip()


def match_category_for(tournament_level: str) -> MatchCategory:
    if (tournament_level or "").strip().lower() == "qualification":
        return MatchCategory.QUALIFICATION
    return MatchCategory.PLAYOFF


def match_label_for(entry: Dict[str, Any]) -> str:
    """Provider description as the label ("Qualification 9"), falling back to level and number."""
    description = (entry.get("description") or "").strip()
    if description:
        return description
    return f"{entry.get('tournamentLevel') or 'Match'} {entry.get('matchNumber')}"


async def import_competition(
    session: AsyncSession,
    competition_id: str,
    client: FRCEventsClient,
) -> Dict[str, Any]:
    """
    Import teams, schedule and official results for a competition from its event key.

    Event details are fetched first so an unknown event fails before any
    write; teams, schedule and results are then fetched concurrently.
    Results are joined to schedule entries by label; a result for a match
    missing from the schedule still creates the match.

    Args:
        session: Database session
        competition_id: Competition to import into
        client: FRC Events API client

    Returns:
        Dict with event_key, event_name and the teams, matches and results counts

    Raises:
        NotFoundError: Competition does not exist
        ScoutingDataError: Competition has no event key
        ProviderError: Any provider failure
    """
    competition = await data_service.get_competition(session, competition_id)
    if competition is None:
        raise data_service.NotFoundError(f"Competition {competition_id} not found")
    event_key = competition.get("event_key")
    if not event_key:
        raise data_service.ScoutingDataError(f"Competition {competition_id} has no event key to import from")

    event = await client.get_event_details(event_key)
    teams, schedule, results = await asyncio.gather(
        client.get_event_teams(event_key),
        client.get_event_schedule(event_key),
        client.get_event_results(event_key),
    )

    team_count = await data_service.upsert_teams(
        session,
        [(team["teamNumber"], team_display_name(team) or None) for team in teams if team.get("teamNumber")],
    )

    # Unplayed matches carry no usable scores
    results_by_label = {}
    for entry in results:
        result = match_result(entry.get("scoreRedFinal"), entry.get("scoreBlueFinal"))
        if result["winning_alliance"] is not None:
            results_by_label[match_label_for(entry)] = (entry, result)

    match_entries = []
    scheduled = set()
    for entry in schedule:
        label = match_label_for(entry)
        scheduled.add(label)
        match_entries.append({
            "label": label,
            "category": match_category_for(entry.get("tournamentLevel")),
            "teams": order_teams_by_station(entry.get("teams") or []),
            "result": results_by_label[label][1] if label in results_by_label else None,
        })
    for label, (entry, result) in results_by_label.items():
        if label not in scheduled:
            match_entries.append({
                "label": label,
                "category": match_category_for(entry.get("tournamentLevel")),
                "result": result,
            })
    result_count = len(results_by_label)
    match_ids = await data_service.upsert_matches(session, competition_id, match_entries)

    # Fill dates the user left blank
    missing = {}
    if not competition.get("start_date") and event.get("dateStart"):
        missing["start_date"] = event["dateStart"][:10]
    if not competition.get("end_date") and event.get("dateEnd"):
        missing["end_date"] = event["dateEnd"][:10]
    if missing:
        await data_service.update_competition(session, competition_id, missing)

    logger.info(
        f"Imported {team_count} teams, {len(match_ids)} matches and {result_count} results "
        f"for {event_key} into competition {competition_id}"
    )
    return {
        "event_key": event_key,
        "event_name": event.get("name"),
        "teams": team_count,
        "matches": len(match_ids),
        "results": result_count,
    }
