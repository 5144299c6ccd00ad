"""
CSV export of scouting observations.
"""

import csv
import io
from typing import Any, Iterable, List

from scouting.services.identity_service import display_label
from scouting.services.scoring_service import (
    ACTIVE_SCORING_TABLE,
    ScoringTable,
    compute_points,
    endgame_state,
    flag,
    get_field,
)

# (header, field) in export order. "match_label" and "points" are computed.
OBSERVATION_EXPORT_COLUMNS = [
    ("Competition ID", "competition_id"),
    ("Match ID", "match_ref"),
    ("Match", "match_label"),
    ("Team Number", "team_number"),
    ("Scout Name", "scout_name"),
    ("Auto Coral L1", "auto_coral_l1"),
    ("Auto Coral L2", "auto_coral_l2"),
    ("Auto Coral L3", "auto_coral_l3"),
    ("Auto Coral L4", "auto_coral_l4"),
    ("Auto Algae Barge", "auto_algae_barge"),
    ("Auto Algae Processor", "auto_algae_processor"),
    ("Auto Leave Zone", "auto_leave_zone"),
    ("Teleop Coral L1", "teleop_coral_l1"),
    ("Teleop Coral L2", "teleop_coral_l2"),
    ("Teleop Coral L3", "teleop_coral_l3"),
    ("Teleop Coral L4", "teleop_coral_l4"),
    ("Teleop Algae Barge", "teleop_algae_barge"),
    ("Teleop Algae Processor", "teleop_algae_processor"),
    ("Endgame", "endgame"),
    ("Played Defense?", "played_defense"),
    ("Defense Rating", "defense_rating"),
    ("Driver Skill", "driver_skill"),
    ("Robot Speed", "robot_speed"),
    ("Minor Fouls", "minor_fouls"),
    ("Major Fouls", "major_fouls"),
    ("Notes", "notes"),
    ("Points", "points"),
]

BOOLEAN_FIELDS = {"auto_leave_zone", "played_defense"}
TEXT_FIELDS = {"competition_id", "match_ref", "match_label", "scout_name", "notes", "endgame"}


def _yes_no(value: bool) -> str:
    return "Yes" if value else "No"


def _export_row(observation: Any, known_matches: List[Any], table: ScoringTable) -> List[Any]:
    played_defense = flag(observation, "played_defense")
    row = []
    for _, field in OBSERVATION_EXPORT_COLUMNS:
        if field == "match_label":
            value = display_label(get_field(observation, "match_ref"), known_matches)
        elif field == "points":
            value = compute_points(observation, table)
        elif field == "endgame":
            value = endgame_state(observation).value
        elif field in BOOLEAN_FIELDS:
            value = _yes_no(flag(observation, field))
        elif field == "defense_rating":
            rating = get_field(observation, field)
            value = rating if played_defense and rating is not None else ""
        else:
            value = get_field(observation, field)
            if value is None:
                value = "" if field in TEXT_FIELDS else 0
        row.append(value)
    return row


def export_observations_to_csv(
    observations: Iterable[Any],
    known_matches: Iterable[Any],
    table: ScoringTable = ACTIVE_SCORING_TABLE,
) -> str:
    """
    Export observations to CSV.

    Numbers are written as numbers, booleans as Yes/No, endgame as its state
    name, and defense rating is blank when defense was not played.

    Returns:
        str: CSV formatted string with header and one row per observation
    """
    known = list(known_matches)

    # Create CSV in memory
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([header for header, _ in OBSERVATION_EXPORT_COLUMNS])
    for observation in observations:
        writer.writerow(_export_row(observation, known, table))
    return output.getvalue()

