"""
H2H Analytics - Live Score Aggregator

Combines a manager's 15-player squad, captaincy, active chip and transfer
cost into a single net gameweek score.

Rules:
1. Picks 1-11 start, 12-15 are the bench in priority order
2. Starters with 0 minutes are auto-subbed by the first playing bench
   player that keeps the formation valid (skipped under bench boost)
3. Captain x2 (x3 with triple captain); vice-captain takes over if the
   captain did not play
4. net = gross - transfer cost
"""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import List, Mapping, Optional, Tuple, Union

from h2h_analytics.calculators import PointsCalculator, points_calculator
from h2h_analytics.config import MODEL_CONFIG, AutoSubPolicy, CaptainConfig
from h2h_analytics.constants import ALL_CHIPS, BENCH_BOOST, TRIPLE_CAPTAIN
from h2h_analytics.errors import InvalidInput
from h2h_analytics.models import (
    AggregatedScore, AutoSubRecord, PlayerPoints, PlayerStatLine, SquadPick,
)

logger = logging.getLogger("h2h_analytics")

PlayerInput = Union[PlayerStatLine, PlayerPoints, int]


@dataclass
class _Resolved:
    """Points, minutes and position for one pick after lookup."""
    pick: SquadPick
    points: int
    minutes: int
    position: Optional[int]
    name: Optional[str]
    missing: bool

    @property
    def played(self) -> bool:
        return self.minutes > 0


class LiveScoreAggregator:
    """Turns squad picks plus per-player stats into one manager score."""

    def __init__(
        self,
        calculator: PointsCalculator = None,
        policy: AutoSubPolicy = None,
        captain_config: CaptainConfig = None,
    ):
        self.calculator = calculator or points_calculator
        self.policy = policy or MODEL_CONFIG["auto_sub"]
        self.captain_config = captain_config or MODEL_CONFIG["captain"]

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def aggregate(
        self,
        squad: List[SquadPick],
        stats: Mapping[int, PlayerInput],
        chip: Optional[str] = None,
        transfer_cost: int = 0,
        player_names: Optional[Mapping[int, str]] = None,
        player_positions: Optional[Mapping[int, int]] = None,
    ) -> AggregatedScore:
        """
        Args:
            squad: the manager's picks for the gameweek (normally 15)
            stats: player_id -> PlayerStatLine (live), PlayerPoints (completed)
                   or a bare int of pre-computed points
            chip: active chip name or None
            transfer_cost: hit points, must be >= 0
            player_names / player_positions: per-request lookups used when
                   the stats entry does not carry a name or position

        Returns:
            AggregatedScore. A player missing from `stats` counts 0 points
            and 0 minutes; the omission is logged, never raised.
        """
        if transfer_cost is None:
            transfer_cost = 0
        if transfer_cost < 0:
            raise InvalidInput(f"transfer_cost must be >= 0, got {transfer_cost}")
        if chip is not None and chip not in ALL_CHIPS:
            raise InvalidInput(f"Unknown chip: {chip}")

        names = player_names or {}
        positions = player_positions or {}

        ordered = sorted(squad, key=lambda p: p.lineup_position)
        resolved = [self._resolve(p, stats, names, positions) for p in ordered]
        missing = [r.pick.player_id for r in resolved if r.missing]
        if missing:
            entry = ordered[0].entry_id if ordered else "?"
            logger.warning(f"Entry {entry}: no stats for players {missing}, counted as 0")

        slots = self.policy.starting_slots
        starters = [r for r in resolved if r.pick.lineup_position <= slots]
        bench = [r for r in resolved if r.pick.lineup_position > slots]

        if chip == BENCH_BOOST:
            counted = starters + bench
            auto_subs: List[AutoSubRecord] = []
        else:
            counted, auto_subs = self.apply_auto_subs(starters, bench)

        captain, multiplier = self._effective_captain(resolved, counted, chip)

        starting_xi_total = 0
        bench_boost_total = 0
        captain_bonus = 0
        counted_ids = {r.pick.player_id for r in counted}
        for r in counted:
            if r.pick.lineup_position <= slots:
                starting_xi_total += r.points
            else:
                bench_boost_total += r.points
            if captain is not None and r is captain:
                captain_bonus += r.points * (multiplier - 1)

        # Subbed-in players count toward the XI total, not bench boost
        auto_sub_total = sum(s.points_gained for s in auto_subs)
        if chip != BENCH_BOOST:
            starting_xi_total += bench_boost_total
            bench_boost_total = 0

        points_on_bench = sum(r.points for r in bench if r.pick.player_id not in counted_ids)

        gross_total = starting_xi_total + bench_boost_total + captain_bonus
        return AggregatedScore(
            gross_total=gross_total,
            net_total=gross_total - transfer_cost,
            transfer_cost=transfer_cost,
            active_chip=chip,
            captain_id=captain.pick.player_id if captain else None,
            captain_name=captain.name if captain else None,
            captain_multiplier=multiplier if captain else 1,
            starting_xi_total=starting_xi_total,
            captain_bonus=captain_bonus,
            bench_boost_total=bench_boost_total,
            auto_sub_total=auto_sub_total,
            points_on_bench=points_on_bench,
            auto_subs=auto_subs,
            counted_player_ids=[r.pick.player_id for r in counted],
            missing_players=missing,
        )

    def apply_auto_subs(
        self,
        starters: List[_Resolved],
        bench: List[_Resolved],
    ) -> Tuple[List[_Resolved], List[AutoSubRecord]]:
        """Replace non-playing starters in lineup order, bench in priority order."""
        final_xi = list(starters)
        available = [b for b in bench if b.played]
        auto_subs = []

        for i, starter in enumerate(starters):
            if starter.played:
                continue
            sub = self._find_valid_sub(starter, final_xi, available)
            if sub is None:
                if available:
                    logger.info(
                        f"No formation-preserving substitute for player {starter.pick.player_id}"
                    )
                continue
            final_xi[i] = sub
            available.remove(sub)
            auto_subs.append(AutoSubRecord(
                player_out_id=starter.pick.player_id,
                player_in_id=sub.pick.player_id,
                player_out_name=starter.name,
                player_in_name=sub.name,
                points_gained=sub.points,
            ))

        return final_xi, auto_subs

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _resolve(
        self,
        pick: SquadPick,
        stats: Mapping[int, PlayerInput],
        names: Mapping[int, str],
        positions: Mapping[int, int],
    ) -> _Resolved:
        pid = pick.player_id
        entry = stats.get(pid)
        name = names.get(pid)
        position = positions.get(pid)

        if entry is None:
            return _Resolved(pick, 0, 0, position, name, missing=True)

        if isinstance(entry, PlayerStatLine):
            result = self.calculator.calculate(entry, position or entry.position)
            return _Resolved(pick, result.total, entry.minutes,
                             position or entry.position, name or entry.web_name, missing=False)

        if isinstance(entry, PlayerPoints):
            return _Resolved(pick, entry.points, entry.minutes,
                             position or entry.position, name or entry.web_name, missing=False)

        # Bare points: minutes unknown, assume the player featured
        points = int(entry)
        return _Resolved(pick, points, 90, position, name, missing=False)

    def _find_valid_sub(
        self,
        starter: _Resolved,
        current_xi: List[_Resolved],
        available: List[_Resolved],
    ) -> Optional[_Resolved]:
        policy = self.policy
        gk_only = policy.goalkeeper_for_goalkeeper_only

        for candidate in available:
            if gk_only and (starter.position == 1) != (candidate.position == 1):
                continue
            counts = Counter(
                r.position for r in current_xi if r is not starter and r.position is not None
            )
            if candidate.position is not None:
                counts[candidate.position] += 1
            if self._formation_known(current_xi, candidate) and not policy.is_valid_formation(counts):
                continue
            return candidate
        return None

    @staticmethod
    def _formation_known(current_xi: List[_Resolved], candidate: _Resolved) -> bool:
        # Without positions the formation cannot be checked; fall back to bench order
        return candidate.position is not None and all(r.position is not None for r in current_xi)

    def _effective_captain(
        self,
        resolved: List[_Resolved],
        counted: List[_Resolved],
        chip: Optional[str],
    ) -> Tuple[Optional[_Resolved], int]:
        cfg = self.captain_config
        multiplier = cfg.triple_captain_multiplier if chip == TRIPLE_CAPTAIN else cfg.captain_multiplier

        captain = next((r for r in resolved if r.pick.is_captain), None)
        if captain is None:
            # Upstream rows without flags still carry the multiplier
            captain = next((r for r in resolved if r.pick.multiplier >= 2), None)
        vice = next((r for r in resolved if r.pick.is_vice_captain), None)

        if captain is not None and captain.played and captain in counted:
            return captain, multiplier
        if vice is not None and vice.played and vice in counted:
            return vice, multiplier
        return None, 1


# Global instance
score_aggregator = LiveScoreAggregator()
