"""
H2H Analytics - Points Audit Module

Recomputes every player's points for a gameweek and compares them with
the provider-reported totals. Callable from API endpoints, tests, or CLI.

CAVEAT: the provider applies bonus and stat corrections for hours after
the last match. An audit run on a live gameweek will show mismatches that
disappear once the gameweek is trusted; run it on completed gameweeks.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from h2h_analytics.calculators import PointsCalculator, audit_points, points_calculator
from h2h_analytics.constants import validate_gameweek
from h2h_analytics.context import RequestContext
from h2h_analytics.errors import DataInconsistency
from h2h_analytics.models import PlayerStatLine, position_label

logger = logging.getLogger("h2h_analytics")


@dataclass
class PositionAudit:
    label: str
    checked: int = 0
    mismatches: int = 0
    total_abs_difference: int = 0

    @property
    def match_rate(self) -> float:
        return 1.0 if self.checked == 0 else (self.checked - self.mismatches) / self.checked


@dataclass
class GameweekAudit:
    gameweek: int
    checked: int = 0
    skipped: int = 0
    mismatches: List[DataInconsistency] = field(default_factory=list)
    by_position: Dict[str, PositionAudit] = field(default_factory=dict)

    @property
    def match_rate(self) -> float:
        return 1.0 if self.checked == 0 else (self.checked - len(self.mismatches)) / self.checked

    def as_dict(self) -> Dict:
        return {
            "gameweek": self.gameweek,
            "checked": self.checked,
            "skipped": self.skipped,
            "match_rate": round(self.match_rate, 4),
            "mismatches": [
                {
                    "player_id": m.player_id,
                    "calculated": m.calculated,
                    "provider_total": m.provider_total,
                    "difference": m.difference,
                    "breakdown": m.breakdown,
                }
                for m in sorted(self.mismatches, key=lambda m: -abs(m.difference))
            ],
            "by_position": {
                label: {
                    "checked": p.checked,
                    "mismatches": p.mismatches,
                    "match_rate": round(p.match_rate, 4),
                    "total_abs_difference": p.total_abs_difference,
                }
                for label, p in sorted(self.by_position.items())
            },
        }


def audit_stat_lines(
    gw: int,
    stat_lines: Iterable[PlayerStatLine],
    calculator: Optional[PointsCalculator] = None,
) -> GameweekAudit:
    """
    Audit every stat line that carries a provider total.

    Players who did not feature (0 minutes, provider total 0) are counted
    as checked; lines without a provider total are skipped.
    """
    calc = calculator or points_calculator
    result = GameweekAudit(gameweek=gw)
    positions: Dict[str, PositionAudit] = defaultdict(lambda: PositionAudit(label=""))

    for line in stat_lines:
        if line.total_points is None:
            result.skipped += 1
            continue
        label = position_label(line.position)
        seg = positions[label]
        seg.label = label
        seg.checked += 1
        result.checked += 1

        issue = audit_points(line, calculator=calc)
        if issue is not None:
            result.mismatches.append(issue)
            seg.mismatches += 1
            seg.total_abs_difference += abs(issue.difference)

    result.by_position = dict(positions)
    if result.mismatches:
        logger.warning(
            f"GW{gw} audit: {len(result.mismatches)}/{result.checked} players differ from provider totals"
        )
    else:
        logger.info(f"GW{gw} audit: all {result.checked} players match provider totals")
    return result


async def audit_gameweek(gw: int, ctx: RequestContext, calculator: Optional[PointsCalculator] = None) -> GameweekAudit:
    """Fetch the live feed for `gw` through the request context and audit it."""
    validate_gameweek(gw)
    event = ctx.event(gw)
    if event is not None and not event.finished:
        logger.warning(f"GW{gw} audit on an unfinished gameweek, provider totals may still change")
    stats = await ctx.live_stats(gw)
    return audit_stat_lines(gw, stats.values(), calculator)
