"""
Point calculation service.
Computes a deterministic single-match point total for one observation.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping

from scouting.database.models import EndgameState


# ============================================================================
# Scoring Tables
# ============================================================================

@dataclass(frozen=True)
class ScoringTable:
    """Point values for one game season. Values are per occurrence unless noted."""

    season: int

    auto_coral_l1: int
    auto_coral_l2: int
    auto_coral_l3: int
    auto_coral_l4: int
    auto_algae_processor: int
    auto_algae_barge: int
    auto_leave_zone: int  # flat bonus

    teleop_coral_l1: int
    teleop_coral_l2: int
    teleop_coral_l3: int
    teleop_coral_l4: int
    teleop_algae_processor: int
    teleop_algae_barge: int

    endgame_park: int
    endgame_shallow: int
    endgame_deep: int

    minor_foul_penalty: int
    major_foul_penalty: int

    @property
    def auto_tally_points(self) -> Dict[str, int]:
        return {
            "auto_coral_l1": self.auto_coral_l1,
            "auto_coral_l2": self.auto_coral_l2,
            "auto_coral_l3": self.auto_coral_l3,
            "auto_coral_l4": self.auto_coral_l4,
            "auto_algae_processor": self.auto_algae_processor,
            "auto_algae_barge": self.auto_algae_barge,
        }

    @property
    def teleop_tally_points(self) -> Dict[str, int]:
        return {
            "teleop_coral_l1": self.teleop_coral_l1,
            "teleop_coral_l2": self.teleop_coral_l2,
            "teleop_coral_l3": self.teleop_coral_l3,
            "teleop_coral_l4": self.teleop_coral_l4,
            "teleop_algae_processor": self.teleop_algae_processor,
            "teleop_algae_barge": self.teleop_algae_barge,
        }

    def endgame_points(self, state: EndgameState) -> int:
        """Points for an exclusive endgame state (none scores 0)."""
        return {
            EndgameState.PARK: self.endgame_park,
            EndgameState.SHALLOW: self.endgame_shallow,
            EndgameState.DEEP: self.endgame_deep,
        }.get(state, 0)


SCORING_TABLE_2025 = ScoringTable(
    season=2025,
    auto_coral_l1=3,
    auto_coral_l2=4,
    auto_coral_l3=6,
    auto_coral_l4=7,
    auto_algae_processor=2,
    auto_algae_barge=6,
    auto_leave_zone=3,
    teleop_coral_l1=2,
    teleop_coral_l2=3,
    teleop_coral_l3=4,
    teleop_coral_l4=5,
    teleop_algae_processor=2,
    teleop_algae_barge=6,
    endgame_park=2,
    endgame_shallow=6,
    endgame_deep=12,
    minor_foul_penalty=2,
    major_foul_penalty=6,
)

# The single rule set in effect. Swap this to change seasons.
ACTIVE_SCORING_TABLE = SCORING_TABLE_2025


# ============================================================================
# Field Access Helpers
# ============================================================================

def get_field(observation: Any, name: str, default: Any = None) -> Any:
    """Read a field from an ORM row, a pydantic model or a plain mapping."""
    if isinstance(observation, Mapping):
        return observation.get(name, default)
    return getattr(observation, name, default)


def tally(observation: Any, name: str) -> int:
    """
    Read a numeric tally, treating missing, None and non-numeric values as 0.

    Negative values are floored at 0; counters can never subtract points.
    """
    value = get_field(observation, name)
    if value is None or isinstance(value, bool):
        return 0
    try:
        number = int(value)
    except (TypeError, ValueError):
        return 0
    return max(number, 0)


def flag(observation: Any, name: str) -> bool:
    """Read a boolean field; accepts real booleans and the export's Yes/No tokens."""
    value = get_field(observation, name)
    if isinstance(value, str):
        return value.strip().lower() in ("yes", "true", "1")
    return bool(value)


def endgame_state(observation: Any) -> EndgameState:
    """Coerce the stored endgame to EndgameState; unknown values become NONE."""
    value = get_field(observation, "endgame")
    if isinstance(value, EndgameState):
        return value
    try:
        return EndgameState(str(value).strip().lower())
    except ValueError:
        return EndgameState.NONE


# ============================================================================
# Point Calculation
# ============================================================================

def compute_point_breakdown(observation: Any, table: ScoringTable = ACTIVE_SCORING_TABLE) -> Dict[str, int]:
    """
    Break one observation's points into auto, teleop, endgame and penalty parts.

    Args:
        observation: Observation row, request model or dict
        table: Scoring table to apply

    Returns:
        Dict with auto, teleop, endgame, penalties and total (total may be negative)
    """
    auto = sum(tally(observation, field) * points for field, points in table.auto_tally_points.items())
    if flag(observation, "auto_leave_zone"):
        auto += table.auto_leave_zone

    teleop = sum(tally(observation, field) * points for field, points in table.teleop_tally_points.items())
    endgame = table.endgame_points(endgame_state(observation))
    penalties = (
        tally(observation, "minor_fouls") * table.minor_foul_penalty
        + tally(observation, "major_fouls") * table.major_foul_penalty
    )

    return {
        "auto": auto,
        "teleop": teleop,
        "endgame": endgame,
        "penalties": penalties,
        "total": auto + teleop + endgame - penalties,
    }


def compute_points(observation: Any, table: ScoringTable = ACTIVE_SCORING_TABLE) -> int:
    """Single-match point total for one observation, fouls subtracted."""
    return compute_point_breakdown(observation, table)["total"]
