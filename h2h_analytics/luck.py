"""
H2H Analytics - Luck Engine

Four-component luck decomposition over a closed window of completed
gameweeks and a fixed roster of managers.

Per-match components:
1. Variance luck  - how far you beat your own running average, minus how
                    far your opponent beat theirs. Zero-sum per match.
2. Rank luck      - actual H2H result minus the win rate your league-wide
                    GW rank implies. NOT zero-sum, by construction.

Seasonal components:
3. Schedule luck  - how much weaker your opponents were than the league
                    field at the time you played them. Zero-sum.
4. Chip luck      - offensive chips faced below the league average,
                    in points. Zero-sum.

All averages are progressive (through the match gameweek) so early-season
results are never judged with hindsight.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set, Tuple

from h2h_analytics.config import MODEL_CONFIG, LuckConfig, LuckWeightPreset
from h2h_analytics.errors import InvalidInput, PartialComputation
from h2h_analytics.models import (
    ChipUsage, GWLuckDetail, H2HMatch, LuckComponents, LuckReport, LuckValidation,
    ManagerGWHistory,
)

logger = logging.getLogger("h2h_analytics")


def expected_win_rate(points: float, other_points: List[float]) -> float:
    """(teams outscored + 0.5 * teams tied) / opponents. 0 with no opponents."""
    if not other_points:
        return 0.0
    beaten = sum(1 for p in other_points if points > p)
    tied = sum(1 for p in other_points if points == p)
    return (beaten + 0.5 * tied) / len(other_points)


def calculate_gw_rank_luck(points: float, other_points: List[float], actual: float) -> float:
    """Actual result (1 / 0.5 / 0) minus rank-implied expected win rate."""
    return actual - expected_win_rate(points, other_points)


def progressive_averages(
    points_by_gw: Dict[int, Dict[int, float]],
) -> Dict[int, Dict[int, float]]:
    """
    Running mean of each manager's points through every gameweek.

    averages[gw][entry] covers all of the entry's scored gameweeks <= gw.
    """
    totals: Dict[int, float] = defaultdict(float)
    counts: Dict[int, int] = defaultdict(int)
    averages: Dict[int, Dict[int, float]] = {}
    for gw in sorted(points_by_gw):
        for entry_id, pts in points_by_gw[gw].items():
            totals[entry_id] += pts
            counts[entry_id] += 1
        averages[gw] = {e: totals[e] / counts[e] for e in counts}
    return averages


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class LuckEngine:
    """Computes per-manager luck components and the weighted season index."""

    def __init__(self, config: LuckConfig = None):
        self.config = config or MODEL_CONFIG["luck"]

    def get_preset(self, name: Optional[str] = None) -> LuckWeightPreset:
        name = name or self.config.default_preset
        preset = self.config.presets.get(name)
        if preset is None:
            raise InvalidInput(
                f"Unknown luck preset: {name} (available: {sorted(self.config.presets)})"
            )
        return preset

    def compute(
        self,
        matches: Iterable[H2HMatch],
        chips: Iterable[ChipUsage] = (),
        histories: Iterable[ManagerGWHistory] = (),
        roster: Optional[Iterable[int]] = None,
        gameweeks: Optional[Iterable[int]] = None,
        preset: Optional[str] = None,
        league_id: Optional[int] = None,
    ) -> LuckReport:
        """
        Args:
            matches: H2H match rows for the league (any order)
            chips: chip usage rows for the league's managers
            histories: per-manager gameweek history; its gross points drive
                the running averages and league-wide rank. Match-row points
                (net of hits) fill in wherever no history row exists.
            roster: entry ids to report on; defaults to everyone in `matches`
            gameweeks: restrict to these (completed) gameweeks
            preset: name of the season-index weighting preset
            league_id: echoed back on the report

        Returns:
            LuckReport with one LuckComponents per roster manager, sorted by
            season luck index, and the league-level validation sums.
        """
        weights = self.get_preset(preset)
        window = set(gameweeks) if gameweeks is not None else None
        matches = list(matches)

        if roster is None:
            roster_ids = sorted({m.entry_1_id for m in matches} | {m.entry_2_id for m in matches})
        else:
            roster_ids = list(dict.fromkeys(roster))
        roster_set = set(roster_ids)

        # Unscored fixtures and pairings outside the roster (e.g. the AVERAGE entry) are ignored
        played = sorted(
            (
                m for m in matches
                if m.is_played
                and m.entry_1_id in roster_set and m.entry_2_id in roster_set
                and (window is None or m.event in window)
            ),
            key=lambda m: (m.event, m.entry_1_id),
        )

        paired_by_gw: Dict[int, Set[int]] = defaultdict(set)
        points_by_gw: Dict[int, Dict[int, float]] = defaultdict(dict)
        for m in played:
            paired_by_gw[m.event].update((m.entry_1_id, m.entry_2_id))
            points_by_gw[m.event][m.entry_1_id] = m.entry_1_points
            points_by_gw[m.event][m.entry_2_id] = m.entry_2_points
        for h in histories:
            if h.entry_id in roster_set and (window is None or h.event in window):
                points_by_gw[h.event][h.entry_id] = h.points
        points_by_gw = dict(points_by_gw)
        paired_by_gw = dict(paired_by_gw)
        gws = sorted(paired_by_gw)
        averages = progressive_averages(points_by_gw)

        chip_by_entry_gw: Dict[Tuple[int, int], str] = {}
        for c in chips:
            if c.entry_id in roster_set and c.gameweek in paired_by_gw:
                chip_by_entry_gw[(c.entry_id, c.gameweek)] = c.chip_name

        matches_by_entry: Dict[int, List[H2HMatch]] = defaultdict(list)
        for m in played:
            matches_by_entry[m.entry_1_id].append(m)
            matches_by_entry[m.entry_2_id].append(m)

        components: List[LuckComponents] = []
        for entry_id in roster_ids:
            try:
                components.append(self._manager_components(
                    entry_id, matches_by_entry.get(entry_id, []),
                    points_by_gw, paired_by_gw, averages, chip_by_entry_gw,
                ))
            except Exception as e:
                err = PartialComputation(entry_id, e)
                logger.error(f"Luck computation failed, using neutral luck: {err}")
                components.append(LuckComponents.neutral(entry_id))

        league_avg_faced = self._apply_chip_luck(components)
        for c in components:
            c.season_luck_index = self.season_index(c, weights)

        validation = self.validate(components, gws)
        components.sort(key=lambda c: c.season_luck_index, reverse=True)

        return LuckReport(
            league_id=league_id,
            preset=weights.name,
            gameweeks=gws,
            managers=components,
            validation=validation,
            league_avg_chips_faced=league_avg_faced,
        )

    def season_index(self, c: LuckComponents, preset: LuckWeightPreset) -> float:
        variance = c.variance_luck_normalized if preset.variance_basis == "clamped" else c.variance_luck
        values = {
            "variance": variance,
            "rank": c.rank_luck,
            "schedule": c.schedule_luck,
            "chip": c.chip_luck,
        }
        index = 0.0
        for name, value in values.items():
            weight = preset.weights.get(name, 0.0)
            if weight:
                index += weight * (value / preset.divisors.get(name, 1.0))
        return index

    def validate(self, components: List[LuckComponents], gws: List[int]) -> LuckValidation:
        """League-wide sums; variance, schedule and chip must be ~0."""
        tol = self.config.zero_sum_tolerance
        variance_sum = sum(c.variance_luck for c in components)
        rank_sum = sum(c.rank_luck for c in components)
        schedule_sum = sum(c.schedule_luck for c in components)
        chip_sum = sum(c.chip_luck for c in components)
        balanced = all(abs(s) < tol for s in (variance_sum, schedule_sum, chip_sum))
        if not balanced:
            logger.warning(
                f"Zero-sum luck check failed: variance={variance_sum:.4f} "
                f"schedule={schedule_sum:.4f} chip={chip_sum:.4f}"
            )

        per_gw = []
        for gw in gws:
            var_gw = 0.0
            rank_gw = 0.0
            for c in components:
                for d in c.per_gw:
                    if d.gameweek == gw:
                        var_gw += d.variance
                        rank_gw += d.rank_luck
            per_gw.append({"gw": gw, "variance_sum": var_gw, "rank_sum": rank_gw})

        return LuckValidation(
            variance_sum=variance_sum,
            rank_sum=rank_sum,
            schedule_sum=schedule_sum,
            chip_sum=chip_sum,
            balanced=balanced,
            per_gw=per_gw,
        )

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _manager_components(
        self,
        entry_id: int,
        entry_matches: List[H2HMatch],
        points_by_gw: Dict[int, Dict[int, float]],
        paired_by_gw: Dict[int, Set[int]],
        averages: Dict[int, Dict[int, float]],
        chip_by_entry_gw: Dict[Tuple[int, int], str],
    ) -> LuckComponents:
        cfg = self.config
        c = LuckComponents(entry_id=entry_id)

        opp_strength_total = 0.0
        theoretical_total = 0.0

        for m in entry_matches:
            gw = m.event
            opp_id = m.opponent_of(entry_id)
            pts = m.points_for(entry_id)
            opp_pts = m.points_for(opp_id)
            avg = averages[gw][entry_id]
            opp_avg = averages[gw][opp_id]

            # 1. Variance (antisymmetric per match)
            variance = (pts - avg) - (opp_pts - opp_avg)
            variance_norm = _clamp(variance / cfg.variance_clamp_scale, -1.0, 1.0)

            # 2. Rank on gross points against everyone who scored this GW
            gw_scores = points_by_gw[gw]
            raw = gw_scores.get(entry_id, pts)
            others = [s for e, s in gw_scores.items() if e != entry_id]
            expected = expected_win_rate(raw, others)
            actual = m.result_for(entry_id)
            rank_luck = actual - expected
            rank = 1 + sum(1 for s in others if s > raw)

            # 3. Schedule: opponent vs the rest of the field, at match time
            other_avgs = [averages[gw][e] for e in paired_by_gw[gw] if e != entry_id]
            theoretical = sum(other_avgs) / len(other_avgs) if other_avgs else 0.0
            opp_strength_total += opp_avg
            theoretical_total += theoretical

            # 4. Offensive chips faced
            opp_chip = chip_by_entry_gw.get((opp_id, gw))
            if opp_chip in cfg.offensive_chips:
                c.chips_faced += 1

            gw_luck = (
                cfg.gw_variance_weight * (variance / cfg.gw_variance_divisor)
                + cfg.gw_rank_weight * rank_luck
            )

            c.variance_luck += variance
            c.variance_luck_normalized += variance_norm
            c.rank_luck += rank_luck
            c.per_gw.append(GWLuckDetail(
                gameweek=gw,
                opponent_id=opp_id,
                points=pts,
                opponent_points=opp_pts,
                season_avg=avg,
                opponent_season_avg=opp_avg,
                variance=variance,
                variance_normalized=variance_norm,
                rank=rank,
                expected_win=expected,
                actual=actual,
                rank_luck=rank_luck,
                gw_luck=gw_luck,
                opponent_chip=opp_chip,
            ))

        n = len(entry_matches)
        c.matches_played = n
        if n:
            c.avg_opp_strength = opp_strength_total / n
            c.theoretical_opp_strength = theoretical_total / n
            c.schedule_luck = (c.theoretical_opp_strength - c.avg_opp_strength) * n

        c.chips_played = sum(
            1 for (e, gw) in chip_by_entry_gw if e == entry_id
        )
        return c

    def _apply_chip_luck(self, components: List[LuckComponents]) -> float:
        """chip_luck = (league average faced - faced) * points per chip."""
        scored = [c for c in components if not c.degraded]
        if not scored:
            return 0.0
        avg_faced = sum(c.chips_faced for c in scored) / len(scored)
        for c in scored:
            c.chip_luck = (avg_faced - c.chips_faced) * self.config.points_per_chip
        return avg_faced


# Global instance
luck_engine = LuckEngine()


def chip_luck_value(league_avg_faced: float, chips_faced: int, points_per_chip: float = None) -> float:
    """Single-manager chip luck, e.g. (3.65 - 0) * 7 = 25.55."""
    if points_per_chip is None:
        points_per_chip = MODEL_CONFIG["luck"].points_per_chip
    return (league_avg_faced - chips_faced) * points_per_chip


def roster_from_matches(matches: Iterable[H2HMatch]) -> Set[int]:
    out: Set[int] = set()
    for m in matches:
        out.add(m.entry_1_id)
        out.add(m.entry_2_id)
    return out
