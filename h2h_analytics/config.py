import os
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional

from h2h_analytics.constants import OFFENSIVE_CHIPS


# =============================================================================
# MODEL CONFIGURATION - scoring tables, auto-sub rules, luck weights
# =============================================================================

@dataclass
class ScoringConfig:
    """
    Fantasy points scoring table.

    Position keys: 1 = GKP, 2 = DEF, 3 = MID, 4 = FWD.
    These mirror the provider's official live scoring and are the only
    place the coefficients live; the calculator never hard-codes them.
    """

    # Appearance
    minutes_short_points: int = 1        # 1-59 minutes
    minutes_full_points: int = 2         # 60+ minutes
    minutes_full_threshold: int = 60

    goal_points: Dict[int, int] = field(default_factory=lambda: {
        1: 10, 2: 6, 3: 5, 4: 4  # GKP, DEF, MID, FWD
    })

    assist_points: int = 3

    # Clean sheets need minutes_full_threshold minutes
    cs_points: Dict[int, int] = field(default_factory=lambda: {
        1: 4, 2: 4, 3: 1, 4: 0
    })

    # -1 per 2 goals conceded, GKP/DEF only
    goals_conceded_points: int = -1
    goals_conceded_step: int = 2
    goals_conceded_positions: FrozenSet[int] = frozenset({1, 2})

    # +1 per 3 saves, GKP only
    save_points: int = 1
    saves_step: int = 3
    save_positions: FrozenSet[int] = frozenset({1})

    penalty_save_points: int = 5
    penalty_miss_points: int = -2
    own_goal_points: int = -2
    yellow_card_points: int = -1
    red_card_points: int = -3

    # DEFCON: one-off award once defensive actions reach the threshold
    defcon_thresholds: Dict[int, int] = field(default_factory=lambda: {
        2: 10, 3: 12, 4: 12  # GKP not eligible
    })
    defcon_points: int = 2


@dataclass
class AutoSubPolicy:
    """
    Automatic substitution rules.

    Starters with 0 minutes are replaced in lineup order by the first
    playing bench player that keeps the formation inside these bounds.
    """

    min_per_position: Dict[int, int] = field(default_factory=lambda: {
        1: 1, 2: 3, 3: 2, 4: 1
    })
    max_per_position: Dict[int, int] = field(default_factory=lambda: {
        1: 1, 2: 5, 3: 5, 4: 3
    })

    # Goalkeepers are only swapped for the bench goalkeeper
    goalkeeper_for_goalkeeper_only: bool = True

    # Lineup slots 1-11 start, 12-15 are the bench in priority order
    starting_slots: int = 11

    def is_valid_formation(self, counts: Dict[int, int]) -> bool:
        for pos, minimum in self.min_per_position.items():
            if counts.get(pos, 0) < minimum:
                return False
        for pos, maximum in self.max_per_position.items():
            if counts.get(pos, 0) > maximum:
                return False
        return True


@dataclass
class CaptainConfig:
    """Captaincy multipliers."""

    captain_multiplier: int = 2
    triple_captain_multiplier: int = 3


@dataclass
class StatusConfig:
    """
    Gameweek status policy.

    require_next_started: persisted aggregates for GW g are trusted only
    once GW g+1 is underway. The provider keeps correcting bonus points and
    officials' stats for hours after the last match, so "finished" alone is
    not enough.
    """

    require_next_started: bool = True
    final_gameweek: int = 38


@dataclass
class LuckWeightPreset:
    """
    Named, versioned weighting for the season luck index.

    index = sum(weight[c] * component[c] / divisor[c])
    """

    name: str
    version: int
    description: str
    weights: Dict[str, float]
    divisors: Dict[str, float]
    # "points": raw point-difference variance; "clamped": per-match clamp(raw / 30, -1, 1)
    variance_basis: str = "points"

    def as_dict(self) -> Dict:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "weights": dict(self.weights),
            "divisors": dict(self.divisors),
            "variance_basis": self.variance_basis,
        }


def _default_presets() -> Dict[str, LuckWeightPreset]:
    return {
        "season_v2": LuckWeightPreset(
            name="season_v2",
            version=2,
            description="Primary index: 40% variance, 30% rank, 20% schedule, 10% chip",
            weights={"variance": 0.4, "rank": 0.3, "schedule": 0.2, "chip": 0.1},
            divisors={"variance": 10.0, "rank": 1.0, "schedule": 5.0, "chip": 3.0},
        ),
        "debug_v1": LuckWeightPreset(
            name="debug_v1",
            version=1,
            description="Debug page index: 60% variance, 20% rank, 20% chip, scaled x10",
            weights={"variance": 0.6, "rank": 0.2, "schedule": 0.0, "chip": 0.2},
            divisors={"variance": 0.1, "rank": 0.1, "schedule": 1.0, "chip": 0.7},
            variance_basis="clamped",
        ),
    }


@dataclass
class LuckConfig:
    """Luck decomposition constants."""

    # Normalized variance: net swing / scale, clamped to [-1, 1]
    variance_clamp_scale: float = 30.0

    # Points credited per offensive chip faced below the league average
    points_per_chip: float = 7.0
    offensive_chips: FrozenSet[str] = OFFENSIVE_CHIPS

    # Per-GW luck = variance weight * (variance / divisor) + rank weight * rank
    gw_variance_weight: float = 0.6
    gw_variance_divisor: float = 10.0
    gw_rank_weight: float = 0.4

    # |sum| tolerance for the zero-sum components
    zero_sum_tolerance: float = 0.1

    default_preset: str = "season_v2"
    presets: Dict[str, LuckWeightPreset] = field(default_factory=_default_presets)


@dataclass
class UpstreamConfig:
    """Upstream HTTP client and fan-out settings (environment overridable)."""

    timeout: float = float(os.environ.get("H2H_HTTP_TIMEOUT", "30.0"))
    max_retries: int = 3
    base_delay: float = 1.0
    max_concurrency: int = int(os.environ.get("H2H_MAX_CONCURRENCY", "8"))
    user_agent: str = "H2H-Analytics/1.0"
    circuit_threshold: int = 3
    circuit_cooldown: int = 60
    snapshot_path: Optional[str] = os.environ.get("H2H_SNAPSHOT_PATH")


# Initialize global config
MODEL_CONFIG = {
    "scoring": ScoringConfig(),
    "auto_sub": AutoSubPolicy(),
    "captain": CaptainConfig(),
    "status": StatusConfig(),
    "luck": LuckConfig(),
    "upstream": UpstreamConfig(),
}
