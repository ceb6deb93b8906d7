"""
H2H Analytics - Persisted Aggregate Store

Read-only view over per-manager, per-gameweek aggregates produced by an
external sync job. The engine never writes to it.

SnapshotStore keeps everything in memory and can be loaded from a JSON
snapshot on disk:

{
  "saved_at": "2025-12-01T10:00:00",
  "leagues":  {"<league_id>": {"roster": [...], "matches": [<h2h match rows>]}},
  "histories": {"<entry_id>": [<entry/{id}/history current[] rows>]},
  "chips":     {"<entry_id>": [{"name": "bboost", "event": 7}, ...]},
  "picks":     {"<entry_id>": {"<gw>": [<picks rows>]}},
  "player_points": {"<gw>": {"<player_id>": {"position": 2, "minutes": 90, "points": 6}}}
}
"""

import json
import logging
import os
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from h2h_analytics.chips import chips_from_api
from h2h_analytics.models import (
    ChipUsage, H2HMatch, ManagerGWHistory, PlayerPoints, SquadPick,
)

logger = logging.getLogger("h2h_analytics")


class AggregateStore:
    """Interface for persisted aggregates. Missing data returns None / empty."""

    def get_history(self, entry_id: int, gw: int) -> Optional[ManagerGWHistory]:
        raise NotImplementedError

    def get_histories(self, entry_ids: Iterable[int]) -> List[ManagerGWHistory]:
        raise NotImplementedError

    def get_picks(self, entry_id: int, gw: int) -> List[SquadPick]:
        raise NotImplementedError

    def get_player_points(self, gw: int) -> Dict[int, PlayerPoints]:
        raise NotImplementedError

    def get_matches(self, league_id: int) -> List[H2HMatch]:
        raise NotImplementedError

    def get_roster(self, league_id: int) -> List[int]:
        raise NotImplementedError

    def get_chips(self, entry_ids: Iterable[int]) -> List[ChipUsage]:
        raise NotImplementedError

    def get_chip(self, entry_id: int, gw: int) -> Optional[str]:
        for c in self.get_chips([entry_id]):
            if c.gameweek == gw:
                return c.chip_name
        return None


class SnapshotStore(AggregateStore):
    def __init__(self):
        self.histories: Dict[int, Dict[int, ManagerGWHistory]] = {}
        self.picks: Dict[int, Dict[int, List[SquadPick]]] = {}
        self.player_points: Dict[int, Dict[int, PlayerPoints]] = {}
        self.matches: Dict[int, List[H2HMatch]] = {}
        self.rosters: Dict[int, List[int]] = {}
        self.chips: Dict[int, List[ChipUsage]] = {}
        self.saved_at: Optional[datetime] = None

    # ============ READS ============

    def get_history(self, entry_id: int, gw: int) -> Optional[ManagerGWHistory]:
        return self.histories.get(entry_id, {}).get(gw)

    def get_histories(self, entry_ids: Iterable[int]) -> List[ManagerGWHistory]:
        out = []
        for entry_id in entry_ids:
            by_gw = self.histories.get(entry_id, {})
            out.extend(by_gw[gw] for gw in sorted(by_gw))
        return out

    def get_picks(self, entry_id: int, gw: int) -> List[SquadPick]:
        return list(self.picks.get(entry_id, {}).get(gw, []))

    def get_player_points(self, gw: int) -> Dict[int, PlayerPoints]:
        return dict(self.player_points.get(gw, {}))

    def get_matches(self, league_id: int) -> List[H2HMatch]:
        return list(self.matches.get(league_id, []))

    def get_roster(self, league_id: int) -> List[int]:
        if league_id in self.rosters:
            return list(self.rosters[league_id])
        entries = set()
        for m in self.matches.get(league_id, []):
            entries.add(m.entry_1_id)
            entries.add(m.entry_2_id)
        return sorted(entries)

    def get_chips(self, entry_ids: Iterable[int]) -> List[ChipUsage]:
        out = []
        for entry_id in entry_ids:
            out.extend(self.chips.get(entry_id, []))
        return out

    # ============ LOADING ============

    def add_history(self, history: ManagerGWHistory):
        self.histories.setdefault(history.entry_id, {})[history.event] = history

    def add_picks(self, picks: List[SquadPick]):
        for p in picks:
            self.picks.setdefault(p.entry_id, {}).setdefault(p.gameweek, []).append(p)

    def add_chip(self, chip: ChipUsage):
        self.chips.setdefault(chip.entry_id, []).append(chip)

    def add_matches(self, league_id: int, matches: Iterable[H2HMatch]):
        self.matches.setdefault(league_id, []).extend(matches)

    def set_player_points(self, gw: int, points: Dict[int, PlayerPoints]):
        self.player_points[gw] = dict(points)

    @classmethod
    def from_dict(cls, data: Dict) -> "SnapshotStore":
        store = cls()

        for league_str, league in data.get("leagues", {}).items():
            league_id = int(league_str)
            if "roster" in league:
                store.rosters[league_id] = [int(e) for e in league["roster"]]
            store.add_matches(
                league_id, [H2HMatch.from_api(m, league_id) for m in league.get("matches", [])]
            )

        for entry_str, rows in data.get("histories", {}).items():
            entry_id = int(entry_str)
            for row in rows:
                store.add_history(ManagerGWHistory.from_api(row, entry_id))

        for entry_str, rows in data.get("chips", {}).items():
            for chip in chips_from_api(rows, int(entry_str)):
                store.add_chip(chip)

        for entry_str, by_gw in data.get("picks", {}).items():
            entry_id = int(entry_str)
            for gw_str, rows in by_gw.items():
                gw = int(gw_str)
                store.add_picks([SquadPick.from_api(r, entry_id, gw) for r in rows])

        for gw_str, by_player in data.get("player_points", {}).items():
            gw = int(gw_str)
            store.set_player_points(gw, {
                int(pid): PlayerPoints(
                    player_id=int(pid),
                    position=int(row.get("position", 3)),
                    minutes=int(row.get("minutes", 0)),
                    points=int(row.get("points", 0)),
                    web_name=row.get("web_name"),
                )
                for pid, row in by_player.items()
            })

        saved_at = data.get("saved_at")
        if saved_at:
            store.saved_at = datetime.fromisoformat(saved_at)
        return store

    @classmethod
    def load(cls, path: Optional[str]) -> "SnapshotStore":
        """Load a snapshot file; an absent or unreadable file yields an empty store."""
        if not path or not os.path.exists(path):
            if path:
                logger.info(f"No snapshot at {path}, starting with an empty store")
            return cls()
        try:
            with open(path, "r") as f:
                data = json.load(f)
            store = cls.from_dict(data)
            logger.info(
                f"Loaded snapshot from {path}: {len(store.histories)} managers, "
                f"{sum(len(m) for m in store.matches.values())} matches"
            )
            return store
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"Failed to load snapshot {path}: {e}")
            return cls()
