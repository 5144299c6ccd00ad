"""
Tests for data_service CRUD operations against a real database.
"""

import pytest
from sqlalchemy import Update, func, select
from sqlalchemy.exc import OperationalError

from scouting.database.models import EndgameState, Match, Observation, Team
from scouting.services import data_service
from scouting.services.data_service import (
    CompetitionInUseError,
    DuplicateObservationError,
    NotFoundError,
    REPAIR_COMPLETED,
    REPAIR_CONFIRMATION_REQUIRED,
    REPAIR_NOTHING_TO_REPAIR,
    ScoutingDataError,
)
from scouting.services.subscription_service import LiveTeamStats, get_subscription_manager


async def make_competition(db_session, **kwargs):
    kwargs.setdefault("name", "San Diego Regional")
    kwargs.setdefault("event_key", "casd")
    return await data_service.create_competition(db_session, **kwargs)


def observation_data(competition_id, match_ref, team_number=254, **fields):
    data = {
        "competition_id": competition_id,
        "match_ref": match_ref,
        "team_number": team_number,
        "scout_name": "Avery",
        "endgame": "deep",
    }
    data.update(fields)
    return data


# ============================================================================
# Competitions
# ============================================================================

@pytest.mark.asyncio
async def test_create_competition_uppercases_event_key(db_session):
    competition = await make_competition(db_session)
    assert competition["event_key"] == "CASD"
    assert competition["id"]

    fetched = await data_service.get_competition(db_session, competition["id"])
    assert fetched["name"] == "San Diego Regional"


@pytest.mark.asyncio
async def test_create_competition_requires_name(db_session):
    with pytest.raises(ScoutingDataError):
        await data_service.create_competition(db_session, name="  ")


@pytest.mark.asyncio
async def test_event_key_editable_until_referenced(db_session):
    competition = await make_competition(db_session)
    updated = await data_service.update_competition(db_session, competition["id"], {"event_key": "cala"})
    assert updated["event_key"] == "CALA"

    await data_service.upsert_match(db_session, competition["id"], "Q1")

    with pytest.raises(CompetitionInUseError):
        await data_service.update_competition(db_session, competition["id"], {"event_key": "casd"})

    # Name and dates stay editable
    renamed = await data_service.update_competition(
        db_session, competition["id"], {"name": "LA Regional", "start_date": "2025-03-20"}
    )
    assert renamed["name"] == "LA Regional"
    assert renamed["start_date"] == "2025-03-20"
    assert renamed["event_key"] == "CALA"


@pytest.mark.asyncio
async def test_update_missing_competition_raises(db_session):
    with pytest.raises(NotFoundError):
        await data_service.update_competition(db_session, "missing", {"name": "x"})


@pytest.mark.asyncio
async def test_delete_competition_cascades(db_session):
    competition = await make_competition(db_session)
    other = await make_competition(db_session, name="Other", event_key="cmptx")
    match = await data_service.upsert_match(db_session, competition["id"], "Q1")
    await data_service.upsert_match(db_session, other["id"], "Q1")
    await data_service.create_observation(db_session, observation_data(competition["id"], match["id"]))

    assert await data_service.delete_competition(db_session, competition["id"]) is True

    assert await data_service.get_competition(db_session, competition["id"]) is None
    assert await data_service.list_matches(db_session, competition["id"]) == []
    assert await data_service.list_observations(db_session, competition_id=competition["id"]) == []
    assert len(await data_service.list_matches(db_session, other["id"])) == 1
    assert await data_service.delete_competition(db_session, competition["id"]) is False


# ============================================================================
# Teams
# ============================================================================

@pytest.mark.asyncio
async def test_upsert_team_never_duplicates(db_session):
    await data_service.upsert_team(db_session, 254, "The Cheesy Poofs")
    team = await data_service.upsert_team(db_session, 254, "Cheesy Poofs")

    assert team["id"] == "254"
    assert team["team_name"] == "Cheesy Poofs"
    count = (await db_session.execute(select(func.count()).select_from(Team))).scalar()
    assert count == 1


@pytest.mark.asyncio
async def test_upsert_team_without_name_keeps_existing(db_session):
    await data_service.upsert_team(db_session, 1678, "Citrus Circuits")
    team = await data_service.upsert_team(db_session, 1678)
    assert team["team_name"] == "Citrus Circuits"


@pytest.mark.asyncio
async def test_upsert_team_rejects_invalid_numbers(db_session):
    with pytest.raises(ScoutingDataError):
        await data_service.upsert_team(db_session, 0)
    with pytest.raises(ScoutingDataError):
        await data_service.upsert_team(db_session, "abc")


@pytest.mark.asyncio
async def test_list_and_delete_teams(db_session):
    await data_service.upsert_teams(db_session, [(971, "Spartan Robotics"), (118, None), (254, "Poofs")])
    teams = await data_service.list_teams(db_session)
    assert [t["team_number"] for t in teams] == [118, 254, 971]

    assert await data_service.delete_team(db_session, 118) is True
    assert await data_service.delete_team(db_session, 118) is False
    assert len(await data_service.list_teams(db_session)) == 2


# ============================================================================
# Matches
# ============================================================================

@pytest.mark.asyncio
async def test_upsert_match_merges_on_label(db_session):
    competition = await make_competition(db_session)
    first = await data_service.upsert_match(db_session, competition["id"], "Q1", teams=[1, 2, 3, 4, 5, 6])
    second = await data_service.upsert_match(db_session, competition["id"], "Q1")

    assert second["id"] == first["id"]
    assert second["teams"] == [1, 2, 3, 4, 5, 6]

    third = await data_service.upsert_match(db_session, competition["id"], "Q1", teams=[6, 5, 4, 3, 2, 1])
    assert third["teams"] == [6, 5, 4, 3, 2, 1]

    count = (await db_session.execute(select(func.count()).select_from(Match))).scalar()
    assert count == 1


@pytest.mark.asyncio
async def test_upsert_match_result_is_kept_until_replaced(db_session):
    competition = await make_competition(db_session)
    created = await data_service.upsert_match(db_session, competition["id"], "Q1")
    assert created["red_score"] is None
    assert created["winning_alliance"] is None

    result = {"red_score": 140, "blue_score": 121, "winning_alliance": "red"}
    scored = await data_service.upsert_match(db_session, competition["id"], "Q1", result=result)
    assert (scored["red_score"], scored["blue_score"], scored["winning_alliance"]) == (140, 121, "red")

    relabelled = await data_service.upsert_match(db_session, competition["id"], "Q1", teams=[1, 2, 3, 4, 5, 6])
    assert relabelled["winning_alliance"] == "red"

    corrected = await data_service.upsert_match(
        db_session, competition["id"], "Q1",
        result={"red_score": 120, "blue_score": 121, "winning_alliance": "blue"},
    )
    assert corrected["winning_alliance"] == "blue"


@pytest.mark.asyncio
async def test_upsert_match_requires_competition(db_session):
    with pytest.raises(NotFoundError):
        await data_service.upsert_match(db_session, "missing", "Q1")


@pytest.mark.asyncio
async def test_same_label_in_two_competitions_is_two_matches(db_session):
    a = await make_competition(db_session, name="A")
    b = await make_competition(db_session, name="B")
    match_a = await data_service.upsert_match(db_session, a["id"], "Q1")
    match_b = await data_service.upsert_match(db_session, b["id"], "Q1")
    assert match_a["id"] != match_b["id"]


@pytest.mark.asyncio
async def test_list_matches_in_schedule_order(db_session):
    competition = await make_competition(db_session)
    await data_service.create_matches_from_labels(db_session, competition["id"], ["Q10", "Q2", "Q1"])
    await data_service.create_matches_from_labels(db_session, competition["id"], ["F1-1", "SF1-1"], "playoff")

    labels = [m["label"] for m in await data_service.list_matches(db_session, competition["id"])]
    assert labels == ["Q1", "Q2", "Q10", "SF1-1", "F1-1"]


@pytest.mark.asyncio
async def test_generate_matches(db_session):
    competition = await make_competition(db_session)
    counts = await data_service.generate_matches(
        db_session, competition["id"], qualification_count=12, include_playoffs=True
    )
    assert counts == {"qualification": 12, "playoff": 21}

    # Regenerating merges into the existing rows
    await data_service.generate_matches(db_session, competition["id"], qualification_count=12)
    assert len(await data_service.list_matches(db_session, competition["id"])) == 33


@pytest.mark.asyncio
async def test_delete_match_removes_its_observations(db_session):
    competition = await make_competition(db_session)
    q1 = await data_service.upsert_match(db_session, competition["id"], "Q1")
    q2 = await data_service.upsert_match(db_session, competition["id"], "Q2")

    await data_service.create_observation(db_session, observation_data(competition["id"], q1["id"], 254))
    await data_service.create_observation(db_session, observation_data(competition["id"], q2["id"], 254))
    # Raw reference written before the match existed
    await db_session.execute(
        Observation.__table__.insert().values(
            id="raw1", competition_id=competition["id"], match_ref="doc9-Q1", team_number=1678,
            scout_name="", notes="", endgame=EndgameState.NONE,
        )
    )
    await db_session.commit()

    assert await data_service.delete_match(db_session, q1["id"]) is True

    remaining = await data_service.list_observations(db_session, competition_id=competition["id"])
    assert [o["match_ref"] for o in remaining] == [q2["id"]]
    assert await data_service.delete_match(db_session, q1["id"]) is False


# ============================================================================
# Observations
# ============================================================================

@pytest.mark.asyncio
async def test_create_observation_resolves_match_reference(db_session):
    competition = await make_competition(db_session)
    match = await data_service.upsert_match(db_session, competition["id"], "Qualification 9")

    observation = await data_service.create_observation(
        db_session, observation_data(competition["id"], "abc123-Qualification 9")
    )
    assert observation["match_ref"] == match["id"]
    assert observation["endgame"] == "deep"


@pytest.mark.asyncio
async def test_create_observation_keeps_unresolved_reference(db_session):
    competition = await make_competition(db_session)
    observation = await data_service.create_observation(
        db_session, observation_data(competition["id"], "Practice 4")
    )
    assert observation["match_ref"] == "Practice 4"


@pytest.mark.asyncio
async def test_create_observation_drops_defense_rating_without_defense(db_session):
    competition = await make_competition(db_session)
    observation = await data_service.create_observation(
        db_session, observation_data(competition["id"], "Q1", played_defense=False, defense_rating=4)
    )
    assert observation["defense_rating"] is None


@pytest.mark.asyncio
async def test_duplicate_observation_requires_overwrite(db_session):
    competition = await make_competition(db_session)
    match = await data_service.upsert_match(db_session, competition["id"], "Q5")
    first = await data_service.create_observation(db_session, observation_data(competition["id"], "Q5"))

    with pytest.raises(DuplicateObservationError) as exc_info:
        await data_service.create_observation(db_session, observation_data(competition["id"], match["id"]))
    assert exc_info.value.existing_id == first["id"]

    replaced = await data_service.create_observation(
        db_session,
        observation_data(competition["id"], "Q5", endgame="park", notes="rescouted"),
        overwrite=True,
    )
    assert replaced["id"] == first["id"]
    assert replaced["endgame"] == "park"
    assert len(await data_service.list_observations(db_session, competition_id=competition["id"])) == 1


@pytest.mark.asyncio
async def test_same_match_different_team_is_not_duplicate(db_session):
    competition = await make_competition(db_session)
    await data_service.create_observation(db_session, observation_data(competition["id"], "Q1", 254))
    await data_service.create_observation(db_session, observation_data(competition["id"], "Q1", 1678))
    assert len(await data_service.list_observations(db_session, competition_id=competition["id"])) == 2


@pytest.mark.asyncio
async def test_create_observation_requires_competition(db_session):
    with pytest.raises(NotFoundError):
        await data_service.create_observation(db_session, observation_data("missing", "Q1"))


@pytest.mark.asyncio
async def test_list_observations_filters(db_session):
    a = await make_competition(db_session, name="A")
    b = await make_competition(db_session, name="B")
    await data_service.create_observation(db_session, observation_data(a["id"], "Q1", 254))
    await data_service.create_observation(db_session, observation_data(a["id"], "Q1", 1678))
    await data_service.create_observation(db_session, observation_data(b["id"], "Q1", 254))

    assert len(await data_service.list_observations(db_session)) == 3
    assert len(await data_service.list_observations(db_session, competition_id=a["id"])) == 2
    assert len(await data_service.list_observations(db_session, team_number=254)) == 2


@pytest.mark.asyncio
async def test_update_observation_re_resolves_reference(db_session):
    competition = await make_competition(db_session)
    observation = await data_service.create_observation(
        db_session, observation_data(competition["id"], "Q3", played_defense=True, defense_rating=3)
    )
    match = await data_service.upsert_match(db_session, competition["id"], "Q3")

    updated = await data_service.update_observation(
        db_session, observation["id"], {"match_ref": "Q3", "played_defense": False}
    )
    assert updated["match_ref"] == match["id"]
    assert updated["defense_rating"] is None


@pytest.mark.asyncio
async def test_update_missing_observation_raises(db_session):
    with pytest.raises(NotFoundError):
        await data_service.update_observation(db_session, "missing", {"notes": "x"})


@pytest.mark.asyncio
async def test_update_onto_scouted_match_requires_overwrite(db_session):
    competition = await make_competition(db_session)
    match = await data_service.upsert_match(db_session, competition["id"], "Q1")
    first = await data_service.create_observation(db_session, observation_data(competition["id"], "Q1"))
    second = await data_service.create_observation(db_session, observation_data(competition["id"], "Q2"))

    with pytest.raises(DuplicateObservationError) as exc_info:
        await data_service.update_observation(db_session, second["id"], {"match_ref": "Q1"})
    assert exc_info.value.existing_id == first["id"]
    assert exc_info.value.match_ref == match["id"]

    stored = await data_service.get_observation(db_session, second["id"])
    assert stored["match_ref"] == "Q2"


@pytest.mark.asyncio
async def test_update_team_number_onto_scouted_team_requires_overwrite(db_session):
    competition = await make_competition(db_session)
    first = await data_service.create_observation(db_session, observation_data(competition["id"], "Q1", 254))
    second = await data_service.create_observation(db_session, observation_data(competition["id"], "Q1", 1678))

    with pytest.raises(DuplicateObservationError) as exc_info:
        await data_service.update_observation(db_session, second["id"], {"team_number": 254})
    assert exc_info.value.existing_id == first["id"]


@pytest.mark.asyncio
async def test_update_with_overwrite_replaces_other_observation(db_session):
    competition = await make_competition(db_session)
    match = await data_service.upsert_match(db_session, competition["id"], "Q1")
    first = await data_service.create_observation(db_session, observation_data(competition["id"], "Q1"))
    second = await data_service.create_observation(
        db_session, observation_data(competition["id"], "Q2", notes="rescouted")
    )

    updated = await data_service.update_observation(
        db_session, second["id"], {"match_ref": "Q1"}, overwrite=True
    )

    assert updated["id"] == second["id"]
    assert updated["match_ref"] == match["id"]
    assert await data_service.get_observation(db_session, first["id"]) is None
    remaining = await data_service.list_observations(db_session, competition_id=competition["id"])
    assert [o["notes"] for o in remaining] == ["rescouted"]


@pytest.mark.asyncio
async def test_update_keeping_own_match_is_not_duplicate(db_session):
    competition = await make_competition(db_session)
    await data_service.upsert_match(db_session, competition["id"], "Q1")
    observation = await data_service.create_observation(db_session, observation_data(competition["id"], "Q1"))

    updated = await data_service.update_observation(
        db_session, observation["id"], {"match_ref": "Q1", "team_number": 254, "notes": "same match"}
    )
    assert updated["notes"] == "same match"


@pytest.mark.asyncio
async def test_delete_observation(db_session):
    competition = await make_competition(db_session)
    observation = await data_service.create_observation(db_session, observation_data(competition["id"], "Q1"))

    assert await data_service.delete_observation(db_session, observation["id"]) is True
    assert await data_service.get_observation(db_session, observation["id"]) is None
    assert await data_service.delete_observation(db_session, observation["id"]) is False


# ============================================================================
# Batch Repair
# ============================================================================

async def seed_stray_references(db_session):
    competition = await make_competition(db_session)
    # Observations scouted before the schedule existed keep their raw references
    for team, reference in ((254, "Q12"), (1678, "doc1-Q12"), (971, "Q112")):
        await data_service.create_observation(db_session, observation_data(competition["id"], reference, team))
    match = await data_service.upsert_match(db_session, competition["id"], "Q12")
    return competition, match


@pytest.mark.asyncio
async def test_repair_requires_confirmation(db_session):
    competition, match = await seed_stray_references(db_session)

    result = await data_service.repair_match_references(db_session, competition["id"], "Q12")

    assert result.status == REPAIR_CONFIRMATION_REQUIRED
    assert result.eligible == 2
    references = {o["match_ref"] for o in await data_service.list_observations(db_session)}
    assert references == {"Q12", "doc1-Q12", "Q112"}


@pytest.mark.asyncio
async def test_repair_updates_and_is_idempotent(db_session):
    competition, match = await seed_stray_references(db_session)

    result = await data_service.repair_match_references(db_session, competition["id"], "Q12", confirm=True)
    assert result.status == REPAIR_COMPLETED
    assert result.updated == 2
    assert result.failed == 0
    assert result.match_id == match["id"]

    references = sorted(o["match_ref"] for o in await data_service.list_observations(db_session))
    assert references == sorted([match["id"], match["id"], "Q112"])

    again = await data_service.repair_match_references(db_session, competition["id"], "Q12", confirm=True)
    assert again.status == REPAIR_NOTHING_TO_REPAIR
    assert again.eligible == 0


@pytest.mark.asyncio
async def test_repair_counts_failed_rows_and_keeps_the_rest(db_session, monkeypatch):
    competition, match = await seed_stray_references(db_session)

    original_execute = db_session.execute
    updates = []

    async def execute_failing_first_update(statement, *args, **kwargs):
        if isinstance(statement, Update):
            updates.append(statement)
            if len(updates) == 1:
                raise OperationalError("UPDATE observations", {}, Exception("database is locked"))
        return await original_execute(statement, *args, **kwargs)

    monkeypatch.setattr(db_session, "execute", execute_failing_first_update)

    result = await data_service.repair_match_references(db_session, competition["id"], "Q12", confirm=True)

    assert result.status == REPAIR_COMPLETED
    assert result.eligible == 2
    assert result.updated == 1
    assert result.failed == 1

    monkeypatch.undo()
    references = {o["team_number"]: o["match_ref"] for o in await data_service.list_observations(db_session)}
    repaired = [team for team in (254, 1678) if references[team] == match["id"]]
    assert len(repaired) == 1
    # The failed row keeps its raw reference
    untouched = 1678 if repaired == [254] else 254
    assert references[untouched] == {254: "Q12", 1678: "doc1-Q12"}[untouched]
    assert references[971] == "Q112"


@pytest.mark.asyncio
async def test_repair_unknown_target_raises(db_session):
    competition = await make_competition(db_session)
    with pytest.raises(NotFoundError):
        await data_service.repair_match_references(db_session, competition["id"], "Q99", confirm=True)


# ============================================================================
# Live updates
# ============================================================================

@pytest.mark.asyncio
async def test_writes_publish_to_live_team_stats(db_session):
    competition = await make_competition(db_session)
    other = await make_competition(db_session, name="Other")
    manager = get_subscription_manager()
    live = LiveTeamStats(manager, competition["id"])
    season = LiveTeamStats(manager, None)

    await data_service.create_observation(db_session, observation_data(competition["id"], "Q1", 254))
    await data_service.create_observation(db_session, observation_data(other["id"], "Q1", 1678))

    assert [r["team_number"] for r in live.team_stats] == [254]
    assert live.team_stats[0]["avg_points"] == 12.0
    assert sorted(r["team_number"] for r in season.team_stats) == [254, 1678]

    live.close()
    season.close()
