"""
SQLAlchemy ORM models for the scouting analysis system.
"""

import enum
import uuid
from sqlalchemy import (
    JSON,
    Column,
    Integer,
    String,
    Text,
    Boolean,
    DateTime,
    Enum,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from scouting.database.db import Base


def generate_id() -> str:
    """Store-assigned identifier for competitions, matches and observations."""
    return uuid.uuid4().hex


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
TeamList = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


class MatchCategory(str, enum.Enum):
    """Match category enum."""

    QUALIFICATION = "qualification"
    PLAYOFF = "playoff"
    PRACTICE = "practice"


class EndgameState(str, enum.Enum):
    """Exclusive endgame outcome recorded for a robot."""

    NONE = "none"
    PARK = "park"
    SHALLOW = "shallow"
    DEEP = "deep"


class Competition(Base):
    """An event the scouting team attends."""

    __tablename__ = "competitions"

    id = Column(String(32), primary_key=True, default=generate_id)
    name = Column(String, nullable=False)
    event_key = Column(String, nullable=True)  # FRC event code, stored upper-case (e.g., "CASD")
    start_date = Column(String, nullable=True)  # ISO date string
    end_date = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (Index("idx_competitions_event_key", "event_key"),)


class Team(Base):
    """FRC team. The id is the team number, so upserts are deterministic."""

    __tablename__ = "teams"

    id = Column(String(16), primary_key=True)
    team_number = Column(Integer, nullable=False, unique=True)
    team_name = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (CheckConstraint("team_number > 0", name="ck_teams_team_number_positive"),)


class Match(Base):
    """A scheduled match within a competition."""

    __tablename__ = "matches"

    id = Column(String(32), primary_key=True, default=generate_id)
    competition_id = Column(String(32), nullable=False)  # owned by convention, no hard FK
    label = Column(String, nullable=False)  # human label, e.g. "Q12", "SF1-2", "Qualification 9"
    category = Column(
        Enum(MatchCategory, values_callable=lambda e: [m.value for m in e], name="match_category"),
        nullable=False,
        default=MatchCategory.QUALIFICATION,
    )
    teams = Column(TeamList, nullable=True)  # team numbers in alliance-station order
    # Official result, empty until the match is played
    red_score = Column(Integer, nullable=True)
    blue_score = Column(Integer, nullable=True)
    winning_alliance = Column(String(8), nullable=True)  # red, blue or tie
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("competition_id", "label", name="uq_matches_competition_label"),
        Index("idx_matches_competition", "competition_id"),
    )


class Observation(Base):
    """One scouted record of one team's performance in one match."""

    __tablename__ = "observations"

    id = Column(String(32), primary_key=True, default=generate_id)
    competition_id = Column(String(32), nullable=False)
    match_ref = Column(String, nullable=False)  # canonical match id, or a raw reference until repaired
    team_number = Column(Integer, nullable=False)
    scout_name = Column(String, nullable=False, default="")

    # Autonomous period
    auto_coral_l1 = Column(Integer, nullable=False, default=0)
    auto_coral_l2 = Column(Integer, nullable=False, default=0)
    auto_coral_l3 = Column(Integer, nullable=False, default=0)
    auto_coral_l4 = Column(Integer, nullable=False, default=0)
    auto_algae_barge = Column(Integer, nullable=False, default=0)
    auto_algae_processor = Column(Integer, nullable=False, default=0)
    auto_leave_zone = Column(Boolean, nullable=False, default=False)

    # Tele-operated period
    teleop_coral_l1 = Column(Integer, nullable=False, default=0)
    teleop_coral_l2 = Column(Integer, nullable=False, default=0)
    teleop_coral_l3 = Column(Integer, nullable=False, default=0)
    teleop_coral_l4 = Column(Integer, nullable=False, default=0)
    teleop_algae_barge = Column(Integer, nullable=False, default=0)
    teleop_algae_processor = Column(Integer, nullable=False, default=0)

    endgame = Column(
        Enum(EndgameState, values_callable=lambda e: [m.value for m in e], name="endgame_state"),
        nullable=False,
        default=EndgameState.NONE,
    )

    played_defense = Column(Boolean, nullable=False, default=False)
    defense_rating = Column(Integer, nullable=True)  # only set when played_defense
    driver_skill = Column(Integer, nullable=False, default=3)
    robot_speed = Column(Integer, nullable=False, default=3)
    minor_fouls = Column(Integer, nullable=True, default=0)
    major_fouls = Column(Integer, nullable=True, default=0)
    notes = Column(Text, nullable=False, default="")

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_observations_competition", "competition_id"),
        Index("idx_observations_lookup", "competition_id", "match_ref", "team_number"),
        CheckConstraint(
            "defense_rating IS NULL OR (defense_rating >= 1 AND defense_rating <= 5)",
            name="ck_observations_defense_rating_range",
        ),
    )
