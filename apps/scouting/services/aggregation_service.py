"""
Team statistics aggregation service.
Folds scouting observations into per-team summary statistics.
"""

import math
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

from scouting.database.models import EndgameState
from scouting.services.scoring_service import (
    ACTIVE_SCORING_TABLE,
    ScoringTable,
    compute_points,
    endgame_state,
    flag,
    get_field,
    tally,
)
from scouting.services.schedule_service import (
    ALLIANCE_BLUE,
    ALLIANCE_RED,
    split_alliances,
    winning_alliance,
)

CORAL_TIERS = (1, 2, 3, 4)
PHASES = ("auto", "teleop")

# Metrics reported by team_metric_variability
VARIABILITY_METRICS = (
    "driver_skill",
    "defense_rating",
    "robot_speed",
    "points",
    "minor_fouls",
    "major_fouls",
)

SORT_ASCENDING = "asc"
SORT_DESCENDING = "desc"

# Team averages summed per alliance in a match breakdown
ALLIANCE_TOTAL_FIELDS = (
    "avg_points",
    "avg_algae_barge",
    "avg_algae_processor",
    "avg_minor_fouls",
    "avg_major_fouls",
)


# ============================================================================
# Helper Functions
# ============================================================================

def _mean(total: float, count: int) -> float:
    """Mean that reports 0.0 instead of dividing by zero."""
    if count == 0:
        return 0.0
    return total / count


def _rate(count: int, match_count: int) -> float:
    """Percentage of matches, 0.0 when there are no matches."""
    if match_count == 0:
        return 0.0
    return (count / match_count) * 100


def defense_rating_of(observation: Any) -> Optional[int]:
    """Defense rating for the row, or None when defense was not played or not rated."""
    if not flag(observation, "played_defense"):
        return None
    value = get_field(observation, "defense_rating")
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# ============================================================================
# TeamStatsAccumulator Class
# ============================================================================

class TeamStatsAccumulator:
    """Running sums for a single team across its observations."""

    def __init__(self, team_number: int, table: ScoringTable = ACTIVE_SCORING_TABLE):
        self.team_number = team_number
        self.table = table
        self.match_count = 0
        self.coral_sums: Dict[str, int] = {
            f"{phase}_coral_l{tier}": 0 for phase in PHASES for tier in CORAL_TIERS
        }
        self.algae_barge_sum = 0
        self.algae_processor_sum = 0
        self.minor_foul_sum = 0
        self.major_foul_sum = 0
        self.leave_count = 0
        self.endgame_counts: Dict[EndgameState, int] = {state: 0 for state in EndgameState}
        self.driver_skill_sum = 0
        self.robot_speed_sum = 0
        # Conditional mean: own numerator and denominator, never match_count
        self.defense_rating_sum = 0
        self.defense_count = 0
        self.points_sum = 0
        self.total_coral_l4 = 0
        self.total_coral = 0

    def record(self, observation: Any) -> None:
        """Fold one observation into the running sums."""
        self.match_count += 1

        for field in self.coral_sums:
            self.coral_sums[field] += tally(observation, field)

        self.algae_barge_sum += tally(observation, "auto_algae_barge") + tally(observation, "teleop_algae_barge")
        self.algae_processor_sum += (
            tally(observation, "auto_algae_processor") + tally(observation, "teleop_algae_processor")
        )
        self.minor_foul_sum += tally(observation, "minor_fouls")
        self.major_foul_sum += tally(observation, "major_fouls")

        if flag(observation, "auto_leave_zone"):
            self.leave_count += 1
        self.endgame_counts[endgame_state(observation)] += 1

        self.driver_skill_sum += tally(observation, "driver_skill")
        self.robot_speed_sum += tally(observation, "robot_speed")

        rating = defense_rating_of(observation)
        if rating is not None:
            self.defense_rating_sum += rating
            self.defense_count += 1

        self.points_sum += compute_points(observation, self.table)
        self.total_coral_l4 += tally(observation, "auto_coral_l4") + tally(observation, "teleop_coral_l4")
        self.total_coral += sum(
            tally(observation, f"{phase}_coral_l{tier}") for phase in PHASES for tier in CORAL_TIERS
        )

    def finalize(self) -> Dict[str, Any]:
        """Convert running sums into the exposed summary record."""
        n = self.match_count
        summary: Dict[str, Any] = {
            "team_number": self.team_number,
            "match_count": n,
        }
        for field, total in self.coral_sums.items():
            summary[f"avg_{field}"] = _mean(total, n)

        summary.update({
            "avg_algae_barge": _mean(self.algae_barge_sum, n),
            "avg_algae_processor": _mean(self.algae_processor_sum, n),
            "avg_minor_fouls": _mean(self.minor_foul_sum, n),
            "avg_major_fouls": _mean(self.major_foul_sum, n),
            "avg_driver_skill": _mean(self.driver_skill_sum, n),
            "avg_robot_speed": _mean(self.robot_speed_sum, n),
            "avg_defense_rating": _mean(self.defense_rating_sum, self.defense_count),
            "defense_match_count": self.defense_count,
            "avg_points": _mean(self.points_sum, n),
            "total_points": self.points_sum,
            "total_coral_l4": self.total_coral_l4,
            "total_coral": self.total_coral,
            "leave_count": self.leave_count,
            "leave_rate": _rate(self.leave_count, n),
        })

        for state in EndgameState:
            count = self.endgame_counts[state]
            summary[f"endgame_{state.value}_count"] = count
            summary[f"endgame_{state.value}_rate"] = _rate(count, n)

        return summary


# ============================================================================
# Aggregation
# ============================================================================

def filter_observations(
    observations: Iterable[Any],
    competition_id: Optional[str] = None,
    team_number: Optional[int] = None,
    match_ref: Optional[str] = None,
) -> List[Any]:
    """
    Scope observations before aggregating.

    competition_id=None is the season-wide view across every competition.
    """
    scoped = []
    for observation in observations:
        if competition_id is not None and get_field(observation, "competition_id") != competition_id:
            continue
        if team_number is not None and get_field(observation, "team_number") != team_number:
            continue
        if match_ref is not None and get_field(observation, "match_ref") != match_ref:
            continue
        scoped.append(observation)
    return scoped


def aggregate_team_stats(
    observations: Iterable[Any],
    table: ScoringTable = ACTIVE_SCORING_TABLE,
) -> List[Dict[str, Any]]:
    """
    Produce one summary record per team number, ranked by mean points.

    Args:
        observations: Observations already scoped by the caller
        table: Scoring table used for per-row points

    Returns:
        List of summary dicts, highest avg_points first; ties keep first-seen order.
        Empty input returns an empty list.
    """
    accumulators: Dict[int, TeamStatsAccumulator] = {}
    for observation in observations:
        team_number = get_field(observation, "team_number")
        if team_number not in accumulators:
            accumulators[team_number] = TeamStatsAccumulator(team_number, table)
        accumulators[team_number].record(observation)

    records = [acc.finalize() for acc in accumulators.values()]
    return rank_team_stats(records)


def rank_team_stats(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Default ranking: descending mean computed points, stable."""
    return sort_by(records, "avg_points", SORT_DESCENDING)


# ============================================================================
# Sorting
# ============================================================================

class SortState(NamedTuple):
    """Active sort key and direction, held by the caller."""

    key: str
    direction: str = SORT_DESCENDING


def next_sort_state(current: Optional[SortState], key: str) -> SortState:
    """Selecting the active key flips direction; a new key starts descending."""
    if current is not None and current.key == key:
        flipped = SORT_ASCENDING if current.direction == SORT_DESCENDING else SORT_DESCENDING
        return SortState(key, flipped)
    return SortState(key, SORT_DESCENDING)


def sort_by(records: Iterable[Dict[str, Any]], key: str, direction: str = SORT_DESCENDING) -> List[Dict[str, Any]]:
    """
    Stable sort of summary records by any exposed statistic.

    Strings compare lexicographically, numbers numerically. Missing values
    sort as "" or 0 depending on the field's type elsewhere in the list.
    """
    if direction not in (SORT_ASCENDING, SORT_DESCENDING):
        raise ValueError(f"Unknown sort direction: {direction}")

    items = list(records)
    is_text = any(isinstance(r.get(key), str) for r in items)

    def sort_value(record):
        value = record.get(key)
        if is_text:
            return "" if value is None else str(value)
        return value if isinstance(value, (int, float)) else 0

    # sorted() stays stable with reverse=True
    return sorted(items, key=sort_value, reverse=(direction == SORT_DESCENDING))


# ============================================================================
# Variability
# ============================================================================

def _sample_std_dev(values: List[float], mean: float) -> float:
    """Sample standard deviation (n-1); 0.0 for fewer than two values."""
    n = len(values)
    if n <= 1:
        return 0.0
    return math.sqrt(sum((v - mean) ** 2 for v in values) / (n - 1))


def _metric_values(observations: List[Any], metric: str, table: ScoringTable) -> List[float]:
    if metric == "points":
        return [compute_points(o, table) for o in observations]
    if metric == "defense_rating":
        return [r for r in (defense_rating_of(o) for o in observations) if r is not None]
    return [tally(o, metric) for o in observations]


def team_metric_variability(
    observations: Iterable[Any],
    table: ScoringTable = ACTIVE_SCORING_TABLE,
) -> Dict[int, Dict[str, Dict[str, float]]]:
    """
    Per-team sample mean, sample standard deviation and n for each scalar metric.

    Defense rating only counts rows where defense was played, so its n can be
    smaller than the team's match count.

    Returns:
        {team_number: {metric: {"mean": float, "std_dev": float, "n": int}}}
    """
    by_team: Dict[int, List[Any]] = {}
    for observation in observations:
        by_team.setdefault(get_field(observation, "team_number"), []).append(observation)

    result: Dict[int, Dict[str, Dict[str, float]]] = {}
    for team_number, rows in by_team.items():
        metrics = {}
        for metric in VARIABILITY_METRICS:
            values = _metric_values(rows, metric, table)
            mean = _mean(sum(values), len(values))
            metrics[metric] = {
                "mean": mean,
                "std_dev": _sample_std_dev(values, mean),
                "n": len(values),
            }
        result[team_number] = metrics
    return result


# ============================================================================
# Match Alliances
# ============================================================================

def match_alliances(
    match: Any,
    observations: Iterable[Any],
    table: ScoringTable = ACTIVE_SCORING_TABLE,
) -> Dict[str, Any]:
    """
    Station-by-station breakdown of one match.

    Each station's team carries its summary record over the given
    observations, or None when the team has not been scouted. Each alliance
    sums the averages of its scouted teams; the higher expected points name
    the predicted winner.

    Args:
        match: Match with teams in station order Red1..Red3, Blue1..Blue3
        observations: Observations already scoped by the caller
        table: Scoring table used for per-row points

    Returns:
        Dict with match_id, label, red, blue, predicted_winner and result
    """
    stats_by_team = {r["team_number"]: r for r in aggregate_team_stats(observations, table)}

    breakdown: Dict[str, Any] = {
        "match_id": get_field(match, "id"),
        "label": get_field(match, "label"),
    }
    expected: Dict[str, float] = {}
    scouted_any = False
    for alliance, teams in split_alliances(get_field(match, "teams")).items():
        stations = [
            {
                "station": f"{alliance.title()}{position}",
                "team_number": team_number,
                "stats": stats_by_team.get(team_number),
            }
            for position, team_number in enumerate(teams, start=1)
        ]
        scouted = [s["stats"] for s in stations if s["stats"] is not None]
        totals = {field: sum(record[field] for record in scouted) for field in ALLIANCE_TOTAL_FIELDS}
        breakdown[alliance] = {
            "teams": stations,
            "scouted_count": len(scouted),
            "totals": totals,
        }
        expected[alliance] = totals["avg_points"]
        scouted_any = scouted_any or bool(scouted)

    breakdown["predicted_winner"] = (
        winning_alliance(expected[ALLIANCE_RED], expected[ALLIANCE_BLUE]) if scouted_any else None
    )
    breakdown["result"] = {
        "red_score": get_field(match, "red_score"),
        "blue_score": get_field(match, "blue_score"),
        "winning_alliance": get_field(match, "winning_alliance"),
    }
    return breakdown
