"""
H2H Analytics - Score Source Router

Chooses where a manager's gameweek score comes from:

    upcoming  -> zero score, no lookups
    live      -> live feed, persisted store as fallback
    completed -> persisted store, live feed as fallback

Every answer is wrapped in a Result so callers can tell a fallback apart
from a clean read. When both sources fail the manager is reported as
unavailable rather than failing the whole league.
"""

import logging
from typing import Optional

from h2h_analytics.aggregator import LiveScoreAggregator, score_aggregator
from h2h_analytics.context import RequestContext
from h2h_analytics.models import (
    GameweekStatus, ManagerScore, Result, ScoreSource, SquadPick,
)
from h2h_analytics.store import AggregateStore

logger = logging.getLogger("h2h_analytics")


class ScoreSourceRouter:
    def __init__(self, store: AggregateStore, aggregator: LiveScoreAggregator = None):
        self.store = store
        self.aggregator = aggregator or score_aggregator

    async def manager_score(
        self,
        entry_id: int,
        gw: int,
        status: GameweekStatus,
        ctx: RequestContext,
    ) -> Result[ManagerScore]:
        if status == GameweekStatus.UPCOMING:
            return Result.ok(ManagerScore(entry_id=entry_id, source=ScoreSource.NONE))

        if status == GameweekStatus.COMPLETED:
            sources = [("persisted", self._persisted_score), ("live", self._live_score)]
        else:
            sources = [("live", self._live_score), ("persisted", self._persisted_score)]

        reasons = []
        for i, (label, fetch) in enumerate(sources):
            try:
                score = await fetch(entry_id, gw, ctx)
            except Exception as e:
                reasons.append(f"{label} failed: {e}")
                logger.warning(f"Entry {entry_id} GW{gw}: {label} source failed: {e}")
                continue
            if score is None:
                reasons.append(f"{label} missing")
                continue
            if i == 0:
                return Result.ok(score)
            score.reason = "; ".join(reasons)
            return Result.degraded(score, score.reason)

        reason = "; ".join(reasons)
        logger.error(f"Entry {entry_id} GW{gw}: no score source available ({reason})")
        return Result.failed(reason)

    # ------------------------------------------------------------------ #
    # Sources
    # ------------------------------------------------------------------ #

    async def _live_score(self, entry_id: int, gw: int, ctx: RequestContext) -> Optional[ManagerScore]:
        payload = await ctx.feed.fetch_entry_picks(entry_id, gw)
        picks = [SquadPick.from_api(p, entry_id, gw) for p in payload.get("picks", [])]
        if not picks:
            return None
        entry_history = payload.get("entry_history") or {}
        stats = await ctx.live_stats(gw)

        agg = self.aggregator.aggregate(
            picks,
            stats,
            chip=payload.get("active_chip"),
            transfer_cost=int(entry_history.get("event_transfers_cost") or 0),
            player_names=ctx.player_names,
            player_positions=ctx.player_positions,
        )
        return ManagerScore(
            entry_id=entry_id,
            gross_total=agg.gross_total,
            net_total=agg.net_total,
            transfer_cost=agg.transfer_cost,
            active_chip=agg.active_chip,
            captain_name=agg.captain_name,
            source=ScoreSource.LIVE,
        )

    async def _persisted_score(self, entry_id: int, gw: int, ctx: RequestContext) -> Optional[ManagerScore]:
        history = self.store.get_history(entry_id, gw)
        if history is None:
            return None
        chip = self.store.get_chip(entry_id, gw)

        captain_name = None
        picks = self.store.get_picks(entry_id, gw)
        player_points = self.store.get_player_points(gw)
        if picks and player_points:
            agg = self.aggregator.aggregate(
                picks, player_points, chip=chip, transfer_cost=history.transfer_cost,
                player_names=ctx.player_names, player_positions=ctx.player_positions,
            )
            captain_name = agg.captain_name
            if agg.gross_total != history.points:
                # Provider total stays authoritative for completed gameweeks
                logger.warning(
                    f"GW{gw} entry {entry_id}: persisted total {history.points} "
                    f"!= recomputed {agg.gross_total} from stored picks"
                )

        return ManagerScore(
            entry_id=entry_id,
            gross_total=history.points,
            net_total=history.points - history.transfer_cost,
            transfer_cost=history.transfer_cost,
            active_chip=chip,
            captain_name=captain_name,
            source=ScoreSource.PERSISTED,
        )
