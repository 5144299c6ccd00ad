"""
Unit tests for team statistics aggregation.
"""

import math
import random

import pytest

from scouting.services.aggregation_service import (
    SORT_ASCENDING,
    SORT_DESCENDING,
    SortState,
    TeamStatsAccumulator,
    aggregate_team_stats,
    filter_observations,
    match_alliances,
    next_sort_state,
    sort_by,
    team_metric_variability,
)


def make_observation(team_number, **fields):
    obs = {
        "competition_id": "comp1",
        "match_ref": "m1",
        "team_number": team_number,
        "driver_skill": 3,
        "robot_speed": 3,
        "endgame": "none",
    }
    obs.update(fields)
    return obs


def stats_for(records, team_number):
    return next(r for r in records if r["team_number"] == team_number)


# ============================================================================
# aggregate_team_stats
# ============================================================================

def test_defense_rating_mean_uses_defense_matches_only():
    observations = [
        make_observation(620, played_defense=True, defense_rating=4),
        make_observation(620, played_defense=False, defense_rating=None),
    ]
    stats = stats_for(aggregate_team_stats(observations), 620)
    assert stats["match_count"] == 2
    assert stats["defense_match_count"] == 1
    assert stats["avg_defense_rating"] == 4.0


def test_defense_rating_ignored_when_defense_not_played():
    observations = [make_observation(620, played_defense=False, defense_rating=5)]
    stats = stats_for(aggregate_team_stats(observations), 620)
    assert stats["avg_defense_rating"] == 0.0
    assert stats["defense_match_count"] == 0


def test_empty_collection_returns_empty_list():
    assert aggregate_team_stats([]) == []


def test_means_rates_and_totals():
    observations = [
        make_observation(254, auto_coral_l4=2, teleop_coral_l4=1, auto_leave_zone=True, endgame="deep"),
        make_observation(254, auto_coral_l1=1, teleop_coral_l2=3, endgame="park", minor_fouls=2),
    ]
    stats = stats_for(aggregate_team_stats(observations), 254)

    assert stats["match_count"] == 2
    assert stats["avg_auto_coral_l4"] == 1.0
    assert stats["avg_teleop_coral_l2"] == 1.5
    assert stats["avg_minor_fouls"] == 1.0
    assert stats["total_coral_l4"] == 3
    assert stats["total_coral"] == 7
    assert stats["leave_count"] == 1
    assert stats["leave_rate"] == 50.0
    assert stats["endgame_deep_count"] == 1
    assert stats["endgame_park_rate"] == 50.0
    assert stats["endgame_shallow_count"] == 0
    # (14 + 5 + 3 + 12) and (3 + 9 + 2 - 4)
    assert stats["total_points"] == 44
    assert stats["avg_points"] == 22.0


def test_algae_combines_phases():
    observations = [make_observation(1, auto_algae_barge=1, teleop_algae_barge=2, teleop_algae_processor=4)]
    stats = stats_for(aggregate_team_stats(observations), 1)
    assert stats["avg_algae_barge"] == 3.0
    assert stats["avg_algae_processor"] == 4.0


def test_default_order_is_descending_average_points():
    observations = [
        make_observation(1, endgame="park"),
        make_observation(2, endgame="deep"),
        make_observation(3, endgame="shallow"),
    ]
    assert [r["team_number"] for r in aggregate_team_stats(observations)] == [2, 3, 1]


def test_aggregation_is_order_independent():
    observations = [
        make_observation(team, auto_coral_l3=i % 4, endgame=["none", "park", "deep"][i % 3],
                         played_defense=i % 2 == 0, defense_rating=(i % 5) + 1)
        for i, team in enumerate([1, 2, 3, 4] * 5)
    ]
    expected = {r["team_number"]: r for r in aggregate_team_stats(observations)}

    shuffled = list(observations)
    random.Random(7).shuffle(shuffled)
    actual = {r["team_number"]: r for r in aggregate_team_stats(shuffled)}

    assert actual.keys() == expected.keys()
    for team, record in expected.items():
        for key, value in record.items():
            assert actual[team][key] == pytest.approx(value)


def test_accumulator_finalize_with_no_records():
    summary = TeamStatsAccumulator(99).finalize()
    assert summary["match_count"] == 0
    assert summary["avg_points"] == 0.0
    assert summary["leave_rate"] == 0.0


def test_aggregate_returns_fresh_records():
    observations = [make_observation(5)]
    first = aggregate_team_stats(observations)
    first[0]["avg_points"] = 1000
    assert aggregate_team_stats(observations)[0]["avg_points"] == 0.0


# ============================================================================
# filter_observations
# ============================================================================

def test_filter_by_competition_and_team():
    observations = [
        make_observation(1, competition_id="a"),
        make_observation(2, competition_id="a"),
        make_observation(1, competition_id="b"),
    ]
    assert len(filter_observations(observations, competition_id="a")) == 2
    assert len(filter_observations(observations, team_number=1)) == 2
    assert len(filter_observations(observations, competition_id="b", team_number=1)) == 1
    assert len(filter_observations(observations)) == 3


# ============================================================================
# Sorting
# ============================================================================

def test_sort_by_numeric_key_both_directions():
    records = [{"team_number": 1, "avg_points": 5}, {"team_number": 2, "avg_points": 9}]
    assert [r["team_number"] for r in sort_by(records, "avg_points", SORT_DESCENDING)] == [2, 1]
    assert [r["team_number"] for r in sort_by(records, "avg_points", SORT_ASCENDING)] == [1, 2]


def test_sort_is_stable_for_ties():
    records = [{"team_number": n, "avg_points": 1} for n in (5, 3, 8)]
    assert [r["team_number"] for r in sort_by(records, "avg_points", SORT_DESCENDING)] == [5, 3, 8]
    assert [r["team_number"] for r in sort_by(records, "avg_points", SORT_ASCENDING)] == [5, 3, 8]


def test_sort_strings_lexicographically():
    records = [{"name": "b"}, {"name": "a"}, {"name": None}]
    assert [r["name"] for r in sort_by(records, "name", SORT_ASCENDING)] == [None, "a", "b"]


def test_sort_missing_numeric_values_as_zero():
    records = [{"v": 2}, {}, {"v": -1}]
    assert sort_by(records, "v", SORT_ASCENDING) == [{"v": -1}, {}, {"v": 2}]


def test_sort_rejects_unknown_direction():
    with pytest.raises(ValueError):
        sort_by([], "avg_points", "sideways")


def test_next_sort_state_toggles_direction():
    state = next_sort_state(None, "avg_points")
    assert state == SortState("avg_points", SORT_DESCENDING)
    state = next_sort_state(state, "avg_points")
    assert state == SortState("avg_points", SORT_ASCENDING)
    state = next_sort_state(state, "avg_points")
    assert state.direction == SORT_DESCENDING


def test_next_sort_state_new_key_starts_descending():
    state = SortState("avg_points", SORT_ASCENDING)
    assert next_sort_state(state, "total_coral") == SortState("total_coral", SORT_DESCENDING)


# ============================================================================
# Variability
# ============================================================================

def test_variability_single_observation_has_zero_std_dev():
    result = team_metric_variability([make_observation(7, driver_skill=4)])
    assert result[7]["driver_skill"] == {"mean": 4.0, "std_dev": 0.0, "n": 1}


def test_variability_uses_sample_standard_deviation():
    observations = [make_observation(7, driver_skill=s) for s in (2, 4, 4, 4, 5, 5, 7, 9)]
    metric = team_metric_variability(observations)[7]["driver_skill"]
    assert metric["mean"] == 5.0
    assert metric["std_dev"] == pytest.approx(math.sqrt(32 / 7))
    assert metric["n"] == 8


def test_variability_defense_rating_gated_by_played_defense():
    observations = [
        make_observation(7, played_defense=True, defense_rating=2),
        make_observation(7, played_defense=True, defense_rating=4),
        make_observation(7, played_defense=False, defense_rating=5),
    ]
    metric = team_metric_variability(observations)[7]["defense_rating"]
    assert metric["n"] == 2
    assert metric["mean"] == 3.0


def test_variability_points_metric():
    observations = [make_observation(7, endgame="deep"), make_observation(7, endgame="none")]
    metric = team_metric_variability(observations)[7]["points"]
    assert metric["mean"] == 6.0
    assert metric["n"] == 2


def test_variability_empty_input():
    assert team_metric_variability([]) == {}


# ============================================================================
# match_alliances
# ============================================================================

MATCH = {
    "id": "m-q3",
    "label": "Q3",
    "teams": [254, 1678, 971, 118, 148, 2056],
    "red_score": 140,
    "blue_score": 121,
    "winning_alliance": "red",
}


def test_match_alliances_joins_stations_with_team_stats():
    observations = [
        make_observation(254, endgame="deep"),
        make_observation(254, endgame="park"),
        make_observation(1678, endgame="shallow"),
        make_observation(118, endgame="deep", minor_fouls=1),
        make_observation(9999, endgame="deep"),
    ]

    breakdown = match_alliances(MATCH, observations)

    assert breakdown["match_id"] == "m-q3"
    assert breakdown["label"] == "Q3"
    red, blue = breakdown["red"], breakdown["blue"]
    assert [s["station"] for s in red["teams"]] == ["Red1", "Red2", "Red3"]
    assert [s["team_number"] for s in blue["teams"]] == [118, 148, 2056]
    assert red["teams"][0]["stats"]["match_count"] == 2
    # 971 has not been scouted
    assert red["teams"][2]["stats"] is None
    assert red["scouted_count"] == 2
    assert blue["scouted_count"] == 1

    # 254 averages (12 + 2) / 2, 1678 scores 6
    assert red["totals"]["avg_points"] == 13.0
    # 12 endgame minus a 2 point minor foul
    assert blue["totals"]["avg_points"] == 10.0
    assert blue["totals"]["avg_minor_fouls"] == 1.0
    assert breakdown["predicted_winner"] == "red"
    assert breakdown["result"] == {"red_score": 140, "blue_score": 121, "winning_alliance": "red"}


def test_match_alliances_without_scouting_has_no_prediction():
    breakdown = match_alliances({"id": "m-q4", "label": "Q4", "teams": None}, [])

    assert breakdown["red"]["teams"] == []
    assert breakdown["blue"]["totals"]["avg_points"] == 0
    assert breakdown["predicted_winner"] is None
    assert breakdown["result"]["winning_alliance"] is None
