"""
H2H Analytics - Calculators Module

Points calculator mirroring the provider's live scoring, plus the
calculator-vs-provider comparison used to flag data inconsistencies.
"""

import logging
from typing import Dict, Optional

from h2h_analytics.config import MODEL_CONFIG, ScoringConfig
from h2h_analytics.constants import position_id
from h2h_analytics.errors import DataInconsistency
from h2h_analytics.models import PlayerStatLine, PointsResult

__all__ = [
    "PointsCalculator",
    "points_calculator",
    "validate_points",
    "audit_points",
]

logger = logging.getLogger("h2h_analytics")


# Breakdown keys in the order terms are evaluated
BREAKDOWN_ORDER = (
    "minutes",
    "goals_scored",
    "assists",
    "clean_sheets",
    "goals_conceded",
    "saves",
    "penalties_saved",
    "penalties_missed",
    "yellow_cards",
    "red_cards",
    "own_goals",
    "bonus",
    "defensive_contribution",
)


class PointsCalculator:
    """
    Turns a raw stat line into fantasy points.

    Pure and deterministic: the same stat line and position always yield
    the same total and breakdown. The provider remains the system of
    record for completed gameweeks; this is a best-effort mirror of its
    live scoring.
    """

    def __init__(self, config: ScoringConfig = None):
        self.config = config or MODEL_CONFIG["scoring"]

    def calculate(self, stat_line: PlayerStatLine, position=None) -> PointsResult:
        """
        Args:
            stat_line: raw per-player match statistics
            position: 1-4 or "GKP".."FWD"; defaults to the stat line's position

        Returns:
            PointsResult with the total and every non-zero contributing term
        """
        cfg = self.config
        pos = position_id(position if position is not None else stat_line.position)
        minutes = stat_line.minutes
        terms: Dict[str, int] = {}

        # 1. Appearance
        if minutes >= cfg.minutes_full_threshold:
            terms["minutes"] = cfg.minutes_full_points
        elif minutes > 0:
            terms["minutes"] = cfg.minutes_short_points

        # 2. Goals (position-based)
        terms["goals_scored"] = stat_line.goals_scored * cfg.goal_points.get(pos, 0)

        # 3. Assists
        terms["assists"] = stat_line.assists * cfg.assist_points

        # 4. Clean sheet needs a full appearance
        if minutes >= cfg.minutes_full_threshold and stat_line.clean_sheets > 0:
            terms["clean_sheets"] = cfg.cs_points.get(pos, 0)

        # 5. Goals conceded, applied regardless of minutes
        if pos in cfg.goals_conceded_positions:
            terms["goals_conceded"] = (
                (stat_line.goals_conceded // cfg.goals_conceded_step) * cfg.goals_conceded_points
            )

        # 6. Saves
        if pos in cfg.save_positions:
            terms["saves"] = (stat_line.saves // cfg.saves_step) * cfg.save_points

        # 7-11. Flat awards and penalties
        terms["penalties_saved"] = stat_line.penalties_saved * cfg.penalty_save_points
        terms["penalties_missed"] = stat_line.penalties_missed * cfg.penalty_miss_points
        terms["yellow_cards"] = stat_line.yellow_cards * cfg.yellow_card_points
        terms["red_cards"] = stat_line.red_cards * cfg.red_card_points
        terms["own_goals"] = stat_line.own_goals * cfg.own_goal_points

        # 12. Bonus comes from upstream BPS rankings
        terms["bonus"] = stat_line.bonus

        # 13. DEFCON
        threshold = cfg.defcon_thresholds.get(pos)
        if threshold is not None and stat_line.defensive_contribution >= threshold:
            terms["defensive_contribution"] = cfg.defcon_points

        breakdown = {
            key: terms[key]
            for key in BREAKDOWN_ORDER
            if terms.get(key, 0) != 0
        }
        return PointsResult(total=sum(breakdown.values()), breakdown=breakdown)


# Global instance
points_calculator = PointsCalculator()


def validate_points(calculated: int, provider_total: int) -> Dict:
    """Compare a calculated total against the provider's total_points."""
    return {
        "match": calculated == provider_total,
        "difference": calculated - provider_total,
    }


def audit_points(
    stat_line: PlayerStatLine,
    provider_total: Optional[int] = None,
    calculator: PointsCalculator = None,
) -> Optional[DataInconsistency]:
    """
    Recalculate a player's points and compare with the provider total.

    A mismatch is logged as a warning with the full breakdown and returned,
    never raised: provider corrections land after the match and the
    provider's total is authoritative for completed gameweeks.
    """
    if provider_total is None:
        provider_total = stat_line.total_points
    if provider_total is None:
        return None

    calc = calculator or points_calculator
    result = calc.calculate(stat_line)
    check = validate_points(result.total, int(provider_total))
    if check["match"]:
        return None

    inconsistency = DataInconsistency(
        player_id=stat_line.player_id,
        calculated=result.total,
        provider_total=int(provider_total),
        breakdown=result.breakdown,
    )
    logger.warning(
        f"Points mismatch GW{stat_line.gameweek} player {stat_line.player_id}: "
        f"calculated {result.total} vs provider {provider_total} "
        f"(diff {check['difference']:+d}) breakdown={result.breakdown}"
    )
    return inconsistency
