"""
Constants used across the scouting analysis system.
"""

# Match reference handling
MATCH_REF_SEPARATOR = "-"  # composite references look like "<docid>-Qualification 9"
DISPLAY_LABEL_MAX_LENGTH = 40

# Input clamping for tally fields coming off the scouting form
MAX_TALLY = 99
MAX_FOULS = 20
MIN_RATING = 1
MAX_RATING = 5

# Quick schedule generation
DEFAULT_QUAL_MATCH_COUNT = 60
MAX_QUAL_MATCH_COUNT = 200

# FRC Events API
DEFAULT_FRC_API_BASE_URL = "https://frc-api.firstinspires.org/v3.0"
DEFAULT_FRC_SEASON = 2025
FRC_TEAMS_PAGE_SIZE = 100
