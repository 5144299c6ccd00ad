"""
Match schedule helpers: ordering, quick generation, bulk label parsing,
and supersede-able schedule lookups against the FRC provider.
"""

import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional

from scouting.database.models import MatchCategory
from scouting.services.scoring_service import get_field
from scouting.utils.constants import DEFAULT_QUAL_MATCH_COUNT, MAX_QUAL_MATCH_COUNT

logger = logging.getLogger(__name__)

# Playoff bracket created by quick generation
PLAYOFF_BRACKET_LABELS = [
    "QF1-1", "QF1-2", "QF1-3",
    "QF2-1", "QF2-2", "QF2-3",
    "QF3-1", "QF3-2", "QF3-3",
    "QF4-1", "QF4-2", "QF4-3",
    "SF1-1", "SF1-2", "SF1-3",
    "SF2-1", "SF2-2", "SF2-3",
    "F1-1", "F1-2", "F1-3",
]

_CATEGORY_ORDER = {
    MatchCategory.QUALIFICATION.value: 0,
    MatchCategory.PLAYOFF.value: 1,
    MatchCategory.PRACTICE.value: 2,
}

_NUMBER_RE = re.compile(r"(\d+)")
_FINAL_RE = re.compile(r"^F\b|^F\d|\bFINAL", re.IGNORECASE)

# Alliance stations as the FRC API names them, in display order
STATION_ORDER = ["Red1", "Red2", "Red3", "Blue1", "Blue2", "Blue3"]

ALLIANCE_RED = "red"
ALLIANCE_BLUE = "blue"
ALLIANCE_TIE = "tie"


# ============================================================================
# Ordering
# ============================================================================

def _category_value(match: Any) -> str:
    category = get_field(match, "category")
    return category.value if isinstance(category, MatchCategory) else str(category or "")


def playoff_stage_rank(label: str) -> int:
    """Quarterfinals before semifinals before finals; unknown playoff labels first."""
    if not label:
        return 0
    upper = label.upper()
    if _FINAL_RE.search(upper):
        return 3
    if upper.startswith("SF"):
        return 2
    if upper.startswith("QF"):
        return 1
    return 0


def label_number(label: str) -> float:
    """First integer in the label, or +inf so unnumbered labels sort last."""
    found = _NUMBER_RE.search(label or "")
    return int(found.group(1)) if found else float("inf")


def match_sort_key(match: Any):
    """Qualification, playoff, practice; playoff stage; number in label; label."""
    label = get_field(match, "label") or ""
    category_rank = _CATEGORY_ORDER.get(_category_value(match), 2)
    stage = playoff_stage_rank(label) if category_rank == 1 else 0
    return (category_rank, stage, label_number(label), label)


def sort_matches(matches: List[Any]) -> List[Any]:
    """Schedule order for a single competition's matches."""
    return sorted(matches, key=match_sort_key)


def order_teams_by_station(teams: List[Dict[str, Any]]) -> List[int]:
    """Team numbers from provider team assignments, ordered Red1..Red3, Blue1..Blue3."""
    def station_rank(entry):
        station = entry.get("station") or ""
        return STATION_ORDER.index(station) if station in STATION_ORDER else len(STATION_ORDER)

    return [int(entry["teamNumber"]) for entry in sorted(teams, key=station_rank) if entry.get("teamNumber")]


def split_alliances(teams: Optional[List[int]]) -> Dict[str, List[int]]:
    """Station-ordered team list as {"red": [Red1..Red3], "blue": [Blue1..Blue3]}."""
    teams = list(teams or [])
    return {ALLIANCE_RED: teams[:3], ALLIANCE_BLUE: teams[3:6]}


# ============================================================================
# Results
# ============================================================================

def winning_alliance(red_score: Optional[int], blue_score: Optional[int]) -> Optional[str]:
    if red_score is None or blue_score is None:
        return None
    if red_score > blue_score:
        return ALLIANCE_RED
    if blue_score > red_score:
        return ALLIANCE_BLUE
    return ALLIANCE_TIE


def match_result(red_score: Any, blue_score: Any) -> Dict[str, Any]:
    """
    Result columns for a match from its final scores.

    A missing or negative score means the match has not been played and
    yields an empty result.
    """
    scores = []
    for score in (red_score, blue_score):
        try:
            score = int(score)
        except (TypeError, ValueError):
            score = None
        scores.append(score if score is not None and score >= 0 else None)
    red, blue = scores
    if red is None or blue is None:
        red = blue = None
    return {"red_score": red, "blue_score": blue, "winning_alliance": winning_alliance(red, blue)}


# ============================================================================
# Generation
# ============================================================================

def generate_qualification_labels(count: int = DEFAULT_QUAL_MATCH_COUNT) -> List[str]:
    """Labels Q1..Qn, n clamped to 1..MAX_QUAL_MATCH_COUNT."""
    count = max(1, min(int(count), MAX_QUAL_MATCH_COUNT))
    return [f"Q{i}" for i in range(1, count + 1)]


def parse_bulk_labels(text: str) -> List[str]:
    """One label per line; blank lines dropped, duplicates kept once in first-seen order."""
    labels: List[str] = []
    for line in (text or "").splitlines():
        label = line.strip()
        if label and label not in labels:
            labels.append(label)
    return labels


# ============================================================================
# Supersede-able Lookups
# ============================================================================

class ScheduleLookup:
    """
    Holds the full provider schedule for an event plus the current team-filtered view.

    Each refresh takes a generation number; a response is only applied if no
    newer refresh has started since, so a slow stale request can never
    overwrite a newer result.
    """

    def __init__(self, fetch: Callable[..., Awaitable[List[Dict[str, Any]]]]):
        """
        Args:
            fetch: async callable(team_number=None) returning schedule entries
        """
        self._fetch = fetch
        self._generation = 0
        self.full_schedule: Optional[List[Dict[str, Any]]] = None
        self.visible_schedule: Optional[List[Dict[str, Any]]] = None
        self.team_filter: Optional[int] = None
        self.last_error: Optional[Exception] = None

    @property
    def generation(self) -> int:
        return self._generation

    def _begin(self) -> int:
        self._generation += 1
        return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    async def refresh(self, team_number: Optional[int] = None) -> bool:
        """
        Fetch the schedule, optionally filtered to one team.

        Returns:
            True if the result was applied, False if a newer refresh superseded it.

        Raises:
            Whatever the fetch raises, but only for the current generation.
        """
        generation = self._begin()
        self.team_filter = team_number

        if team_number is None and self.full_schedule is not None:
            # Clearing the filter restores the full list without a round trip
            self.visible_schedule = self.full_schedule
            self.last_error = None
            return True

        try:
            schedule = await self._fetch(team_number=team_number)
        except Exception as e:
            if not self.is_current(generation):
                logger.info("Discarding error from superseded schedule request %s", generation)
                return False
            self.last_error = e
            raise

        if not self.is_current(generation):
            logger.info("Discarding superseded schedule response %s (current %s)", generation, self._generation)
            return False

        self.last_error = None
        self.visible_schedule = schedule
        if team_number is None:
            # Filtered fetches never replace the full list
            self.full_schedule = schedule
        return True
