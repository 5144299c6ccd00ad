"""
Data service layer for database operations.
Handles CRUD for competitions, teams, matches and scouting observations.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import select, update, delete, exists, or_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from scouting.database.models import (
    Competition,
    Team,
    Match,
    Observation,
    MatchCategory,
    generate_id,
)
from scouting.services.identity_service import (
    find_target_match,
    normalize_existing_observations,
    resolve_canonical_match_id,
)
from scouting.services.schedule_service import (
    PLAYOFF_BRACKET_LABELS,
    generate_qualification_labels,
    match_sort_key,
    sort_matches,
)
from scouting.services.scoring_service import endgame_state
from scouting.services.subscription_service import get_subscription_manager
from scouting.utils.constants import DEFAULT_QUAL_MATCH_COUNT
from scouting.utils.datetime_utils import isoformat_or_none, utcnow

logger = logging.getLogger(__name__)

# Writable observation columns
OBSERVATION_FIELDS = (
    "competition_id",
    "match_ref",
    "team_number",
    "scout_name",
    "auto_coral_l1",
    "auto_coral_l2",
    "auto_coral_l3",
    "auto_coral_l4",
    "auto_algae_barge",
    "auto_algae_processor",
    "auto_leave_zone",
    "teleop_coral_l1",
    "teleop_coral_l2",
    "teleop_coral_l3",
    "teleop_coral_l4",
    "teleop_algae_barge",
    "teleop_algae_processor",
    "endgame",
    "played_defense",
    "defense_rating",
    "driver_skill",
    "robot_speed",
    "minor_fouls",
    "major_fouls",
    "notes",
)

COMPETITION_FIELDS = ("name", "event_key", "start_date", "end_date")

MATCH_RESULT_FIELDS = ("red_score", "blue_score", "winning_alliance")

REPAIR_CONFIRMATION_REQUIRED = "confirmation_required"
REPAIR_NOTHING_TO_REPAIR = "nothing_to_repair"
REPAIR_COMPLETED = "completed"


# ============================================================================
# Errors
# ============================================================================

class ScoutingDataError(ValueError):
    """Base class for data service errors the API reports to clients."""


class NotFoundError(ScoutingDataError):
    """The referenced row does not exist."""


class CompetitionInUseError(ScoutingDataError):
    """The competition is referenced by matches or observations."""


class DuplicateObservationError(ScoutingDataError):
    """An observation already exists for this team in this match."""

    def __init__(self, existing_id: str, match_ref: str, team_number: int):
        self.existing_id = existing_id
        self.match_ref = match_ref
        self.team_number = team_number
        super().__init__(
            f"An observation for team {team_number} in match {match_ref} already exists ({existing_id})"
        )


@dataclass
class RepairResult:
    """Outcome of a batch match-reference repair."""

    status: str
    match_id: Optional[str] = None
    eligible: int = 0
    updated: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "match_id": self.match_id,
            "eligible": self.eligible,
            "updated": self.updated,
            "failed": self.failed,
        }


#
# Helper functions
#
def _insert(session: AsyncSession, model):
    """Dialect-specific INSERT so ON CONFLICT works on PostgreSQL and SQLite."""
    if session.get_bind().dialect.name == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)


def _normalize_event_key(event_key: Optional[str]) -> Optional[str]:
    if event_key is None:
        return None
    event_key = str(event_key).strip().upper()
    return event_key or None


def _validate_team_number(team_number: Any) -> int:
    if isinstance(team_number, bool):
        raise ScoutingDataError(f"Invalid team number: {team_number!r}")
    try:
        number = int(team_number)
    except (TypeError, ValueError):
        raise ScoutingDataError(f"Invalid team number: {team_number!r}")
    if number <= 0:
        raise ScoutingDataError(f"Invalid team number: {team_number!r}")
    return number


def _competition_to_dict(competition: Competition) -> Dict:
    return {
        "id": competition.id,
        "name": competition.name,
        "event_key": competition.event_key,
        "start_date": competition.start_date,
        "end_date": competition.end_date,
        "created_at": isoformat_or_none(competition.created_at),
        "updated_at": isoformat_or_none(competition.updated_at),
    }


def _team_to_dict(team: Team) -> Dict:
    return {
        "id": team.id,
        "team_number": team.team_number,
        "team_name": team.team_name,
        "created_at": isoformat_or_none(team.created_at),
        "updated_at": isoformat_or_none(team.updated_at),
    }


def _match_to_dict(match: Match) -> Dict:
    category = match.category
    return {
        "id": match.id,
        "competition_id": match.competition_id,
        "label": match.label,
        "category": category.value if isinstance(category, MatchCategory) else category,
        "teams": list(match.teams) if match.teams is not None else None,
        "red_score": match.red_score,
        "blue_score": match.blue_score,
        "winning_alliance": match.winning_alliance,
        "created_at": isoformat_or_none(match.created_at),
        "updated_at": isoformat_or_none(match.updated_at),
    }


def _observation_to_dict(observation: Observation) -> Dict:
    record = {"id": observation.id}
    for field in OBSERVATION_FIELDS:
        record[field] = getattr(observation, field)
    record["endgame"] = endgame_state(observation).value
    record["created_at"] = isoformat_or_none(observation.created_at)
    return record


def _apply_defense_gate(target: Any) -> None:
    """Defense rating is only kept when the robot played defense."""
    if isinstance(target, dict):
        if not target.get("played_defense"):
            target["defense_rating"] = None
    elif not target.played_defense:
        target.defense_rating = None


async def _get_competition_row(session: AsyncSession, competition_id: str) -> Optional[Competition]:
    result = await session.execute(
        select(Competition)
        .where(Competition.id == competition_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _require_competition(session: AsyncSession, competition_id: str) -> Competition:
    competition = await _get_competition_row(session, competition_id)
    if competition is None:
        raise NotFoundError(f"Competition {competition_id} not found")
    return competition


async def _load_matches(session: AsyncSession, competition_id: Optional[str] = None) -> List[Match]:
    """Match rows in schedule order; every competition when competition_id is None."""
    query = select(Match).execution_options(populate_existing=True)
    if competition_id is not None:
        query = query.where(Match.competition_id == competition_id)
    result = await session.execute(query)
    rows = list(result.scalars().all())
    if competition_id is not None:
        return sort_matches(rows)
    return sorted(rows, key=lambda m: (m.competition_id, match_sort_key(m)))


def _resolved_key(competition_id: str, reference: str, known_matches: List[Match], known_ids: Set[str]) -> str:
    # Canonical ids skip resolution so only raw references are looked up
    if reference in known_ids:
        return reference
    return resolve_canonical_match_id(competition_id, reference, known_matches).key


async def _publish(session: AsyncSession, collection: str, competition_id: Optional[str] = None) -> None:
    """
    Push fresh snapshots to subscribers after a committed write.

    The competition scope gets its own records; the None scope gets the
    whole collection.
    """
    manager = get_subscription_manager()
    scopes = [None] if competition_id is None else [competition_id, None]
    for scope in scopes:
        if not manager.has_subscribers(collection, scope):
            continue
        if collection == "competitions":
            records = await list_competitions(session)
        elif collection == "teams":
            records = await list_teams(session)
        elif collection == "matches":
            records = await list_matches(session, scope)
        else:
            records = await list_observations(session, competition_id=scope)
        await manager.publish(collection, scope, records)


# ============================================================================
# Competitions
# ============================================================================

async def create_competition(
    session: AsyncSession,
    name: str,
    event_key: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> Dict:
    """Create a competition. Event keys are stored upper-case."""
    name = (name or "").strip()
    if not name:
        raise ScoutingDataError("Competition name is required")

    competition = Competition(
        id=generate_id(),
        name=name,
        event_key=_normalize_event_key(event_key),
        start_date=start_date,
        end_date=end_date,
    )
    session.add(competition)
    await session.commit()
    await session.refresh(competition)
    logger.info(f"Created competition {competition.id} ({competition.name})")

    await _publish(session, "competitions")
    return _competition_to_dict(competition)


async def list_competitions(session: AsyncSession) -> List[Dict]:
    """List competitions, most recent start date first."""
    result = await session.execute(
        select(Competition)
        .order_by(Competition.start_date.desc(), Competition.name)
        .execution_options(populate_existing=True)
    )
    return [_competition_to_dict(c) for c in result.scalars().all()]


async def get_competition(session: AsyncSession, competition_id: str) -> Optional[Dict]:
    competition = await _get_competition_row(session, competition_id)
    return _competition_to_dict(competition) if competition else None


async def competition_in_use(session: AsyncSession, competition_id: str) -> bool:
    """True once any match or observation references the competition."""
    result = await session.execute(
        select(
            or_(
                exists().where(Match.competition_id == competition_id),
                exists().where(Observation.competition_id == competition_id),
            )
        )
    )
    return bool(result.scalar())


async def update_competition(session: AsyncSession, competition_id: str, updates: Dict) -> Dict:
    """
    Partially update a competition.

    Name and dates are always editable. The event key is frozen once matches
    or observations reference the competition.

    Raises:
        NotFoundError: Competition does not exist
        CompetitionInUseError: Event key change on a referenced competition
    """
    competition = await _require_competition(session, competition_id)
    values = {k: v for k, v in updates.items() if k in COMPETITION_FIELDS}

    if "event_key" in values:
        values["event_key"] = _normalize_event_key(values["event_key"])
        if values["event_key"] != competition.event_key and await competition_in_use(session, competition_id):
            raise CompetitionInUseError(
                f"Competition {competition_id} has matches or observations; its event key cannot change"
            )

    if "name" in values:
        values["name"] = (values["name"] or "").strip()
        if not values["name"]:
            raise ScoutingDataError("Competition name is required")

    for field, value in values.items():
        setattr(competition, field, value)

    await session.commit()
    await session.refresh(competition)

    await _publish(session, "competitions")
    return _competition_to_dict(competition)


async def delete_competition(session: AsyncSession, competition_id: str) -> bool:
    """
    Delete a competition.

    Deletes dependent records first:
    - Observation records
    - Match records
    - Then the Competition itself
    """
    await session.execute(delete(Observation).where(Observation.competition_id == competition_id))
    await session.execute(delete(Match).where(Match.competition_id == competition_id))
    result = await session.execute(delete(Competition).where(Competition.id == competition_id))
    await session.commit()

    deleted = result.rowcount > 0
    if deleted:
        logger.info(f"Deleted competition {competition_id} with its matches and observations")
        await _publish(session, "competitions")
        await _publish(session, "matches", competition_id)
        await _publish(session, "observations", competition_id)
    return deleted


# ============================================================================
# Teams
# ============================================================================

async def _upsert_team_row(session: AsyncSession, team_number: Any, team_name: Optional[str]) -> str:
    number = _validate_team_number(team_number)
    stmt = _insert(session, Team).values(id=str(number), team_number=number, team_name=team_name)
    set_ = {"updated_at": utcnow()}
    if team_name is not None:
        set_["team_name"] = stmt.excluded.team_name
    stmt = stmt.on_conflict_do_update(index_elements=["team_number"], set_=set_).returning(Team.id)
    result = await session.execute(stmt)
    return result.scalar_one()


async def upsert_team(session: AsyncSession, team_number: Any, team_name: Optional[str] = None) -> Dict:
    """
    Create or update a team keyed by team number.

    A team_name of None keeps the stored name.
    """
    await _upsert_team_row(session, team_number, team_name)
    await session.commit()
    await _publish(session, "teams")
    return await get_team(session, _validate_team_number(team_number))


async def upsert_teams(session: AsyncSession, teams: Iterable[Tuple[Any, Optional[str]]]) -> int:
    """Upsert (team_number, team_name) pairs in one transaction. Returns the count."""
    count = 0
    for team_number, team_name in teams:
        await _upsert_team_row(session, team_number, team_name)
        count += 1
    await session.commit()
    if count:
        await _publish(session, "teams")
    return count


async def list_teams(session: AsyncSession) -> List[Dict]:
    result = await session.execute(
        select(Team).order_by(Team.team_number).execution_options(populate_existing=True)
    )
    return [_team_to_dict(t) for t in result.scalars().all()]


async def get_team(session: AsyncSession, team_number: int) -> Optional[Dict]:
    result = await session.execute(
        select(Team).where(Team.team_number == team_number).execution_options(populate_existing=True)
    )
    team = result.scalar_one_or_none()
    return _team_to_dict(team) if team else None


async def delete_team(session: AsyncSession, team_number: int) -> bool:
    """Delete a team. Observations keep their team number."""
    result = await session.execute(delete(Team).where(Team.team_number == team_number))
    await session.commit()
    deleted = result.rowcount > 0
    if deleted:
        await _publish(session, "teams")
    return deleted


# ============================================================================
# Matches
# ============================================================================

async def _upsert_match_row(
    session: AsyncSession,
    competition_id: str,
    label: str,
    category: Any = MatchCategory.QUALIFICATION,
    teams: Optional[List[int]] = None,
    result: Optional[Dict[str, Any]] = None,
) -> str:
    label = (label or "").strip()
    if not label:
        raise ScoutingDataError("Match label is required")
    category = MatchCategory(category)
    result_values = {field: (result or {}).get(field) for field in MATCH_RESULT_FIELDS}

    stmt = _insert(session, Match).values(
        id=generate_id(),
        competition_id=competition_id,
        label=label,
        category=category,
        teams=[int(t) for t in teams] if teams is not None else None,
        **result_values,
    )
    set_ = {"category": stmt.excluded.category, "updated_at": utcnow()}
    if teams is not None:
        set_["teams"] = stmt.excluded.teams
    if result is not None:
        for field in MATCH_RESULT_FIELDS:
            set_[field] = getattr(stmt.excluded, field)
    stmt = stmt.on_conflict_do_update(
        index_elements=["competition_id", "label"],
        set_=set_,
    ).returning(Match.id)
    stored = await session.execute(stmt)
    return stored.scalar_one()


async def upsert_match(
    session: AsyncSession,
    competition_id: str,
    label: str,
    category: Any = MatchCategory.QUALIFICATION,
    teams: Optional[List[int]] = None,
    result: Optional[Dict[str, Any]] = None,
) -> Dict:
    """
    Create a match, or merge into the existing one with the same label.

    Args:
        session: Database session
        competition_id: Owning competition
        label: Human label, unique within the competition
        category: qualification, playoff or practice
        teams: Team numbers in station order; None leaves stored teams untouched
        result: red_score, blue_score and winning_alliance; None leaves the stored result untouched

    Returns:
        The stored match
    """
    await _require_competition(session, competition_id)
    match_id = await _upsert_match_row(session, competition_id, label, category, teams, result)
    await session.commit()
    await _publish(session, "matches", competition_id)
    return await get_match(session, match_id)


async def upsert_matches(session: AsyncSession, competition_id: str, matches: Iterable[Dict]) -> List[str]:
    """
    Upsert many matches in one transaction.

    Each entry carries label and optionally category, teams and result.
    Returns the stored match ids in input order.
    """
    await _require_competition(session, competition_id)
    match_ids = []
    for entry in matches:
        match_ids.append(
            await _upsert_match_row(
                session,
                competition_id,
                entry.get("label"),
                entry.get("category") or MatchCategory.QUALIFICATION,
                entry.get("teams"),
                entry.get("result"),
            )
        )
    await session.commit()
    if match_ids:
        await _publish(session, "matches", competition_id)
    return match_ids


async def create_matches_from_labels(
    session: AsyncSession,
    competition_id: str,
    labels: Iterable[str],
    category: Any = MatchCategory.QUALIFICATION,
) -> List[Dict]:
    """Bulk-create matches from labels; existing labels are merged, not duplicated."""
    entries = [{"label": label, "category": category} for label in labels if label and label.strip()]
    match_ids = await upsert_matches(session, competition_id, entries)
    by_id = {m["id"]: m for m in await list_matches(session, competition_id)}
    return [by_id[match_id] for match_id in match_ids if match_id in by_id]


async def generate_matches(
    session: AsyncSession,
    competition_id: str,
    qualification_count: Optional[int] = DEFAULT_QUAL_MATCH_COUNT,
    include_playoffs: bool = False,
) -> Dict[str, int]:
    """
    Quick-generate a schedule skeleton: Q1..Qn and optionally the playoff bracket.

    Returns:
        Dict with qualification and playoff counts
    """
    entries = []
    qualification_labels = generate_qualification_labels(qualification_count) if qualification_count else []
    entries.extend({"label": label, "category": MatchCategory.QUALIFICATION} for label in qualification_labels)
    if include_playoffs:
        entries.extend({"label": label, "category": MatchCategory.PLAYOFF} for label in PLAYOFF_BRACKET_LABELS)

    await upsert_matches(session, competition_id, entries)
    logger.info(
        f"Generated {len(qualification_labels)} qualification matches"
        f"{' and the playoff bracket' if include_playoffs else ''} for competition {competition_id}"
    )
    return {
        "qualification": len(qualification_labels),
        "playoff": len(PLAYOFF_BRACKET_LABELS) if include_playoffs else 0,
    }


async def list_matches(session: AsyncSession, competition_id: Optional[str] = None) -> List[Dict]:
    """Matches in schedule order: qualification, playoff stage, number."""
    return [_match_to_dict(m) for m in await _load_matches(session, competition_id)]


async def get_match(session: AsyncSession, match_id: str) -> Optional[Dict]:
    result = await session.execute(
        select(Match).where(Match.id == match_id).execution_options(populate_existing=True)
    )
    match = result.scalar_one_or_none()
    return _match_to_dict(match) if match else None


async def delete_match(session: AsyncSession, match_id: str) -> bool:
    """
    Delete a match and the observations that point at it.

    Observations are removed when their reference is the match id or a raw
    reference that resolves to it.

    Returns:
        True if successful, False if match not found
    """
    result = await session.execute(select(Match).where(Match.id == match_id))
    match = result.scalar_one_or_none()
    if match is None:
        return False

    competition_id = match.competition_id
    known = await _load_matches(session, competition_id)
    known_ids = {m.id for m in known}

    result = await session.execute(
        select(Observation.id, Observation.match_ref).where(Observation.competition_id == competition_id)
    )
    observation_ids = [
        row.id for row in result.all()
        if _resolved_key(competition_id, row.match_ref, known, known_ids) == match_id
    ]

    if observation_ids:
        await session.execute(delete(Observation).where(Observation.id.in_(observation_ids)))
    await session.execute(delete(Match).where(Match.id == match_id))
    await session.commit()
    logger.info(f"Deleted match {match_id} and {len(observation_ids)} observations")

    await _publish(session, "matches", competition_id)
    if observation_ids:
        await _publish(session, "observations", competition_id)
    return True


# ============================================================================
# Observations
# ============================================================================

async def _find_duplicate(
    session: AsyncSession,
    competition_id: str,
    match_key: str,
    team_number: int,
    known_matches: List[Match],
    exclude_id: Optional[str] = None,
) -> Optional[Observation]:
    """Existing observation for the same team in the same match, comparing resolved references."""
    known_ids = {m.id for m in known_matches}
    query = select(Observation).where(
        Observation.competition_id == competition_id,
        Observation.team_number == team_number,
    )
    if exclude_id is not None:
        query = query.where(Observation.id != exclude_id)
    result = await session.execute(query.order_by(Observation.created_at, Observation.id))
    for candidate in result.scalars().all():
        if _resolved_key(competition_id, candidate.match_ref, known_matches, known_ids) == match_key:
            return candidate
    return None


async def create_observation(session: AsyncSession, data: Dict, overwrite: bool = False) -> Dict:
    """
    Store a scouting observation.

    The match reference is resolved to the canonical match id before the
    duplicate check and the write.

    Args:
        session: Database session
        data: Observation fields (already validated and clamped)
        overwrite: Replace an existing observation for the same team and match

    Returns:
        The stored observation

    Raises:
        NotFoundError: Competition does not exist
        DuplicateObservationError: Same team and match already scouted and overwrite is False
    """
    values = {k: v for k, v in data.items() if k in OBSERVATION_FIELDS}
    competition_id = values.get("competition_id")
    await _require_competition(session, competition_id)
    values["team_number"] = _validate_team_number(values.get("team_number"))

    known = await _load_matches(session, competition_id)
    reference = resolve_canonical_match_id(competition_id, values.get("match_ref"), known)
    if not reference.key.strip():
        raise ScoutingDataError("Match reference is required")
    values["match_ref"] = reference.key
    if "endgame" in values:
        values["endgame"] = endgame_state(values)
    _apply_defense_gate(values)

    existing = await _find_duplicate(session, competition_id, reference.key, values["team_number"], known)
    if existing is not None:
        if not overwrite:
            raise DuplicateObservationError(existing.id, reference.key, values["team_number"])
        for field, value in values.items():
            setattr(existing, field, value)
        observation = existing
        logger.info(f"Overwriting observation {existing.id} for team {values['team_number']}")
    else:
        observation = Observation(id=generate_id(), **values)
        session.add(observation)

    await session.commit()
    await session.refresh(observation)

    await _publish(session, "observations", competition_id)
    return _observation_to_dict(observation)


async def get_observation(session: AsyncSession, observation_id: str) -> Optional[Dict]:
    result = await session.execute(
        select(Observation).where(Observation.id == observation_id).execution_options(populate_existing=True)
    )
    observation = result.scalar_one_or_none()
    return _observation_to_dict(observation) if observation else None


async def list_observations(
    session: AsyncSession,
    competition_id: Optional[str] = None,
    team_number: Optional[int] = None,
    match_ref: Optional[str] = None,
) -> List[Dict]:
    """List observations, oldest first. No competition filter means season-wide."""
    query = select(Observation).execution_options(populate_existing=True)
    if competition_id is not None:
        query = query.where(Observation.competition_id == competition_id)
    if team_number is not None:
        query = query.where(Observation.team_number == team_number)
    if match_ref is not None:
        query = query.where(Observation.match_ref == match_ref)
    query = query.order_by(Observation.created_at, Observation.id)

    result = await session.execute(query)
    return [_observation_to_dict(o) for o in result.scalars().all()]


async def update_observation(
    session: AsyncSession,
    observation_id: str,
    updates: Dict,
    overwrite: bool = False,
) -> Dict:
    """
    Partially update an observation.

    A changed match reference or competition is resolved again. When the
    update moves the observation onto a team and match that another
    observation already covers, the other row is only replaced with
    overwrite set.

    Raises:
        NotFoundError: Observation or target competition does not exist
        DuplicateObservationError: Another observation covers the new team and match
    """
    result = await session.execute(select(Observation).where(Observation.id == observation_id))
    observation = result.scalar_one_or_none()
    if observation is None:
        raise NotFoundError(f"Observation {observation_id} not found")

    previous_competition = observation.competition_id
    values = {k: v for k, v in updates.items() if k in OBSERVATION_FIELDS}
    if "team_number" in values:
        values["team_number"] = _validate_team_number(values["team_number"])

    identity_fields = {"competition_id", "match_ref", "team_number"}
    if identity_fields & values.keys():
        competition_id = values.get("competition_id", observation.competition_id)
        await _require_competition(session, competition_id)
        known = await _load_matches(session, competition_id)
        known_ids = {m.id for m in known}
        values["match_ref"] = _resolved_key(
            competition_id, values.get("match_ref", observation.match_ref), known, known_ids
        )
        team_number = values.get("team_number", observation.team_number)

        existing = await _find_duplicate(
            session, competition_id, values["match_ref"], team_number, known, exclude_id=observation.id
        )
        if existing is not None:
            if not overwrite:
                raise DuplicateObservationError(existing.id, values["match_ref"], team_number)
            logger.info(f"Observation {observation.id} replaces {existing.id} for team {team_number}")
            await session.delete(existing)
    if "endgame" in values:
        values["endgame"] = endgame_state(values)

    for field, value in values.items():
        setattr(observation, field, value)
    _apply_defense_gate(observation)

    await session.commit()
    await session.refresh(observation)

    await _publish(session, "observations", observation.competition_id)
    if previous_competition != observation.competition_id:
        await _publish(session, "observations", previous_competition)
    return _observation_to_dict(observation)


async def delete_observation(session: AsyncSession, observation_id: str) -> bool:
    result = await session.execute(select(Observation).where(Observation.id == observation_id))
    observation = result.scalar_one_or_none()
    if observation is None:
        return False

    competition_id = observation.competition_id
    await session.delete(observation)
    await session.commit()

    await _publish(session, "observations", competition_id)
    return True


# ============================================================================
# Batch Repair
# ============================================================================

async def repair_match_references(
    session: AsyncSession,
    competition_id: str,
    target_label: str,
    confirm: bool = False,
) -> RepairResult:
    """
    Point stray observation references at the canonical match labelled target_label.

    Reads the competition's matches and observations once, selects the
    eligible rows, then updates each row in its own savepoint. A failed row
    is counted and logged; rows already updated stay updated.

    Returns:
        RepairResult with status nothing_to_repair, confirmation_required
        (nothing changed) or completed

    Raises:
        NotFoundError: No match in the competition has target_label
    """
    known = await _load_matches(session, competition_id)
    target = find_target_match(competition_id, target_label, known)
    if target is None:
        raise NotFoundError(f"No match labelled {target_label!r} in competition {competition_id}")

    result = await session.execute(
        select(Observation)
        .where(Observation.competition_id == competition_id)
        .order_by(Observation.created_at, Observation.id)
    )
    eligible = normalize_existing_observations(competition_id, target_label, known, result.scalars().all())

    if not eligible:
        return RepairResult(status=REPAIR_NOTHING_TO_REPAIR, match_id=target.id)
    if not confirm:
        return RepairResult(status=REPAIR_CONFIRMATION_REQUIRED, match_id=target.id, eligible=len(eligible))

    eligible_ids = [observation.id for observation in eligible]
    updated = 0
    failed = 0
    for observation_id in eligible_ids:
        try:
            async with session.begin_nested():
                await session.execute(
                    update(Observation)
                    .where(Observation.id == observation_id)
                    .values(match_ref=target.id)
                )
            updated += 1
        except SQLAlchemyError as e:
            failed += 1
            logger.error(f"Failed to repair observation {observation_id}: {e}")

    await session.commit()
    logger.info(
        f"Repaired {updated}/{len(eligible_ids)} observations to match {target.id} ({target_label}), {failed} failed"
    )

    if updated:
        await _publish(session, "observations", competition_id)
    return RepairResult(
        status=REPAIR_COMPLETED,
        match_id=target.id,
        eligible=len(eligible_ids),
        updated=updated,
        failed=failed,
    )
