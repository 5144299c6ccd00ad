"""
Pydantic models for API request/response validation.
"""

import math
from typing import Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

from scouting.database.models import EndgameState, MatchCategory
from scouting.utils.constants import (
    DEFAULT_QUAL_MATCH_COUNT,
    MAX_FOULS,
    MAX_QUAL_MATCH_COUNT,
    MAX_RATING,
    MAX_TALLY,
    MIN_RATING,
)

TALLY_FIELDS = (
    "auto_coral_l1",
    "auto_coral_l2",
    "auto_coral_l3",
    "auto_coral_l4",
    "auto_algae_barge",
    "auto_algae_processor",
    "teleop_coral_l1",
    "teleop_coral_l2",
    "teleop_coral_l3",
    "teleop_coral_l4",
    "teleop_algae_barge",
    "teleop_algae_processor",
)
FOUL_FIELDS = ("minor_fouls", "major_fouls")
RATING_FIELDS = ("driver_skill", "robot_speed", "defense_rating")


def _whole_number(value: Any) -> int:
    """Accept ints, floats and numeric strings; reject anything else."""
    if isinstance(value, bool):
        raise ValueError("must be a whole number")
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError("must be a finite number")
        return int(value)
    try:
        return int(str(value).strip())
    except ValueError:
        raise ValueError("must be a whole number")


def clamp(value: Any, low: int, high: int) -> Optional[int]:
    """Clamp a numeric input into [low, high]. None and blank stay None."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return max(low, min(_whole_number(value), high))


# Competition schemas


class CompetitionCreate(BaseModel):
    """Request to create a competition."""

    name: str = Field(min_length=1)
    event_key: Optional[str] = None  # FRC event code, e.g. "CASD"
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class CompetitionUpdate(BaseModel):
    """Partial competition update. Omitted fields are left unchanged."""

    name: Optional[str] = None
    event_key: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class CompetitionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    event_key: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# Team schemas


class TeamUpsert(BaseModel):
    """Create or rename a team by number."""

    team_number: int = Field(gt=0)
    team_name: Optional[str] = None


class TeamResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    team_number: int
    team_name: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# Match schemas


class MatchCreate(BaseModel):
    """Request to create (or merge into) a match."""

    label: str = Field(min_length=1)
    category: MatchCategory = MatchCategory.QUALIFICATION
    teams: Optional[List[int]] = None  # alliance-station order Red1..Red3, Blue1..Blue3
    red_score: Optional[int] = Field(default=None, ge=0)
    blue_score: Optional[int] = Field(default=None, ge=0)

    @field_validator("label")
    @classmethod
    def strip_label(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("label must not be blank")
        return value

    @model_validator(mode="after")
    def validate_scores(self):
        """A result needs both final scores."""
        if (self.red_score is None) != (self.blue_score is None):
            raise ValueError("red_score and blue_score must be given together")
        return self


class BulkMatchesRequest(BaseModel):
    """Bulk match creation from a newline-separated text block or a label list."""

    text: Optional[str] = None
    labels: Optional[List[str]] = None
    category: MatchCategory = MatchCategory.QUALIFICATION

    @model_validator(mode="after")
    def validate_text_or_labels(self):
        """Ensure either text or labels is provided."""
        if not self.text and not self.labels:
            raise ValueError("Either text or labels must be provided")
        return self


class GenerateMatchesRequest(BaseModel):
    """Quick schedule generation. qualification_count 0 skips qualification matches."""

    qualification_count: int = Field(default=DEFAULT_QUAL_MATCH_COUNT, ge=0, le=MAX_QUAL_MATCH_COUNT)
    include_playoffs: bool = False


class MatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    competition_id: str
    label: str
    category: MatchCategory
    teams: Optional[List[int]] = None
    red_score: Optional[int] = None
    blue_score: Optional[int] = None
    winning_alliance: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class RepairRequest(BaseModel):
    """Request to repoint stray observation references at one match."""

    target_label: str = Field(min_length=1)
    confirm: bool = False


class RepairResponse(BaseModel):
    status: str
    match_id: Optional[str] = None
    eligible: int = 0
    updated: int = 0
    failed: int = 0


# Observation schemas


class ObservationCreate(BaseModel):
    """
    One scout's record of one team in one match.

    Tallies are clamped to 0..99, fouls to 0..20, ratings to 1..5.
    Non-numeric values are rejected. The defense rating is dropped when the
    robot did not play defense.
    """

    competition_id: str = Field(min_length=1)
    match_ref: str = Field(min_length=1)  # match id, label or composite reference
    team_number: int = Field(gt=0)
    scout_name: str = ""

    auto_coral_l1: int = 0
    auto_coral_l2: int = 0
    auto_coral_l3: int = 0
    auto_coral_l4: int = 0
    auto_algae_barge: int = 0
    auto_algae_processor: int = 0
    auto_leave_zone: bool = False

    teleop_coral_l1: int = 0
    teleop_coral_l2: int = 0
    teleop_coral_l3: int = 0
    teleop_coral_l4: int = 0
    teleop_algae_barge: int = 0
    teleop_algae_processor: int = 0

    endgame: EndgameState = EndgameState.NONE
    played_defense: bool = False
    defense_rating: Optional[int] = None
    driver_skill: int = 3
    robot_speed: int = 3
    minor_fouls: int = 0
    major_fouls: int = 0
    notes: str = ""

    @field_validator(*TALLY_FIELDS, mode="before")
    @classmethod
    def clamp_tally(cls, value: Any) -> int:
        clamped = clamp(value, 0, MAX_TALLY)
        return 0 if clamped is None else clamped

    @field_validator(*FOUL_FIELDS, mode="before")
    @classmethod
    def clamp_fouls(cls, value: Any) -> int:
        clamped = clamp(value, 0, MAX_FOULS)
        return 0 if clamped is None else clamped

    @field_validator("driver_skill", "robot_speed", mode="before")
    @classmethod
    def clamp_rating(cls, value: Any) -> int:
        clamped = clamp(value, MIN_RATING, MAX_RATING)
        return 3 if clamped is None else clamped

    @field_validator("defense_rating", mode="before")
    @classmethod
    def clamp_defense_rating(cls, value: Any) -> Optional[int]:
        return clamp(value, MIN_RATING, MAX_RATING)

    @field_validator("match_ref", "competition_id")
    @classmethod
    def strip_reference(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @model_validator(mode="after")
    def gate_defense_rating(self):
        """Defense rating only counts when defense was played."""
        if not self.played_defense:
            self.defense_rating = None
        return self


class ObservationUpdate(BaseModel):
    """Partial observation update. Only fields present in the request are changed."""

    competition_id: Optional[str] = None
    match_ref: Optional[str] = None
    team_number: Optional[int] = Field(default=None, gt=0)
    scout_name: Optional[str] = None

    auto_coral_l1: Optional[int] = None
    auto_coral_l2: Optional[int] = None
    auto_coral_l3: Optional[int] = None
    auto_coral_l4: Optional[int] = None
    auto_algae_barge: Optional[int] = None
    auto_algae_processor: Optional[int] = None
    auto_leave_zone: Optional[bool] = None

    teleop_coral_l1: Optional[int] = None
    teleop_coral_l2: Optional[int] = None
    teleop_coral_l3: Optional[int] = None
    teleop_coral_l4: Optional[int] = None
    teleop_algae_barge: Optional[int] = None
    teleop_algae_processor: Optional[int] = None

    endgame: Optional[EndgameState] = None
    played_defense: Optional[bool] = None
    defense_rating: Optional[int] = None
    driver_skill: Optional[int] = None
    robot_speed: Optional[int] = None
    minor_fouls: Optional[int] = None
    major_fouls: Optional[int] = None
    notes: Optional[str] = None

    @field_validator(*TALLY_FIELDS, mode="before")
    @classmethod
    def clamp_tally(cls, value: Any) -> Optional[int]:
        return clamp(value, 0, MAX_TALLY)

    @field_validator(*FOUL_FIELDS, mode="before")
    @classmethod
    def clamp_fouls(cls, value: Any) -> Optional[int]:
        return clamp(value, 0, MAX_FOULS)

    @field_validator(*RATING_FIELDS, mode="before")
    @classmethod
    def clamp_rating(cls, value: Any) -> Optional[int]:
        return clamp(value, MIN_RATING, MAX_RATING)

    def changes(self) -> dict:
        """Fields the client sent, minus nulls for columns that cannot be null."""
        data = self.model_dump(exclude_unset=True)
        nullable = {"defense_rating", "minor_fouls", "major_fouls"}
        return {k: v for k, v in data.items() if v is not None or k in nullable}


class ObservationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    competition_id: str
    match_ref: str
    team_number: int
    scout_name: str = ""
    auto_coral_l1: int = 0
    auto_coral_l2: int = 0
    auto_coral_l3: int = 0
    auto_coral_l4: int = 0
    auto_algae_barge: int = 0
    auto_algae_processor: int = 0
    auto_leave_zone: bool = False
    teleop_coral_l1: int = 0
    teleop_coral_l2: int = 0
    teleop_coral_l3: int = 0
    teleop_coral_l4: int = 0
    teleop_algae_barge: int = 0
    teleop_algae_processor: int = 0
    endgame: EndgameState = EndgameState.NONE
    played_defense: bool = False
    defense_rating: Optional[int] = None
    driver_skill: int = 3
    robot_speed: int = 3
    minor_fouls: Optional[int] = 0
    major_fouls: Optional[int] = 0
    notes: str = ""
    created_at: Optional[str] = None
