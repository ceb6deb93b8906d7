"""
H2H Analytics - Constants Module

Position and chip lookup tables, gameweek bounds, upstream endpoints
and small validation helpers shared by every other module.
"""

import os

from h2h_analytics.errors import InvalidGameweek


# =============================================================================
# UPSTREAM
# =============================================================================

FPL_BASE_URL = os.environ.get("FPL_API_BASE_URL", "https://fantasy.premierleague.com/api")


# =============================================================================
# GAMEWEEKS
# =============================================================================

MIN_GAMEWEEK = 1
MAX_GAMEWEEK = 38

# Second set of chips becomes available from this gameweek
CHIP_RENEWAL_GW = 20


# =============================================================================
# POSITIONS
# =============================================================================

GKP, DEF, MID, FWD = 1, 2, 3, 4

POSITION_MAP = {1: "GKP", 2: "DEF", 3: "MID", 4: "FWD"}
POSITION_ID_MAP = {"GKP": 1, "DEF": 2, "MID": 3, "FWD": 4}


# =============================================================================
# CHIPS
# =============================================================================

ALL_CHIPS = {"wildcard", "freehit", "bboost", "3xc"}  # FPL API chip names
CHIP_DISPLAY = {"wildcard": "WC", "freehit": "FH", "bboost": "BB", "3xc": "TC"}

BENCH_BOOST = "bboost"
TRIPLE_CAPTAIN = "3xc"

# Chips that raise the opponent's score in the match they are played
OFFENSIVE_CHIPS = frozenset({BENCH_BOOST, TRIPLE_CAPTAIN})

# Each chip type can be played this many times per season (once per half)
CHIP_USES_PER_SEASON = 2


def validate_gameweek(gw: int) -> int:
    """Reject gameweeks outside [1, 38]. Never clamps."""
    if isinstance(gw, bool) or not isinstance(gw, int):
        raise InvalidGameweek(gw)
    if gw < MIN_GAMEWEEK or gw > MAX_GAMEWEEK:
        raise InvalidGameweek(gw)
    return gw


def position_id(position) -> int:
    """Normalize a position given as id (1-4) or label ("GKP".."FWD")."""
    if isinstance(position, str):
        label = position.upper()
        if label == "GK":
            label = "GKP"
        if label not in POSITION_ID_MAP:
            raise ValueError(f"Unknown position: {position}")
        return POSITION_ID_MAP[label]
    pos = int(position)
    if pos not in POSITION_MAP:
        raise ValueError(f"Unknown position id: {position}")
    return pos
