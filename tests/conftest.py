"""Shared fixtures for H2H analytics test suite."""
import asyncio
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from h2h_analytics.errors import UpstreamUnavailable
from h2h_analytics.models import (
    GameweekEvent, H2HMatch, PlayerPoints, PlayerStatLine, SquadPick,
)


@pytest.fixture
def make_stat_line():
    """Factory for PlayerStatLine with a 90-minute blank as the default."""
    def _make(**overrides):
        base = {
            "player_id": 1,
            "gameweek": 10,
            "position": 3,  # MID
            "minutes": 90,
        }
        base.update(overrides)
        return PlayerStatLine(**base)
    return _make


@pytest.fixture
def make_squad():
    """
    Factory for a 15-man squad in a 4-4-2.

    Player ids equal lineup positions (1-15). Positions:
      1 GKP, 2-5 DEF, 6-9 MID, 10-11 FWD | bench 12 GKP, 13 DEF, 14 MID, 15 FWD
    """
    positions = dict(SQUAD_POSITIONS)

    def _make(captain=10, vice=6, entry_id=100, gameweek=10, chip=None):
        picks = []
        for slot in range(1, 16):
            multiplier = 0 if slot > 11 else 1
            if slot == captain:
                multiplier = 3 if chip == "3xc" else 2
            picks.append(SquadPick(
                entry_id=entry_id,
                gameweek=gameweek,
                player_id=slot,
                lineup_position=slot,
                multiplier=multiplier,
                is_captain=slot == captain,
                is_vice_captain=slot == vice,
            ))
        return picks

    _make.positions = positions
    return _make


@pytest.fixture
def make_points(make_squad):
    """Factory for a player_id -> PlayerPoints map over the default squad."""
    def _make(points=None, minutes=None, default_points=2):
        points = points or {}
        minutes = minutes or {}
        return {
            pid: PlayerPoints(
                player_id=pid,
                position=pos,
                minutes=minutes.get(pid, 90),
                points=points.get(pid, default_points),
                web_name=f"Player{pid}",
            )
            for pid, pos in make_squad.positions.items()
        }
    return _make


@pytest.fixture
def make_event():
    """Factory for GameweekEvent."""
    def _make(gw=10, **overrides):
        base = {
            "id": gw,
            "finished": False,
            "is_current": False,
            "data_checked": False,
        }
        base.update(overrides)
        return GameweekEvent(**base)
    return _make


@pytest.fixture
def make_match():
    """Factory for an H2HMatch; the winner is derived from the points."""
    def _make(gw, a, b, a_pts, b_pts, league_id=1):
        winner = None
        if a_pts > b_pts:
            winner = a
        elif b_pts > a_pts:
            winner = b
        return H2HMatch(
            league_id=league_id,
            event=gw,
            entry_1_id=a,
            entry_2_id=b,
            entry_1_points=a_pts,
            entry_2_points=b_pts,
            winner=winner,
        )
    return _make


# ============ FAKE UPSTREAM ============

SQUAD_POSITIONS = {
    1: 1, 2: 2, 3: 2, 4: 2, 5: 2, 6: 3, 7: 3, 8: 3, 9: 3, 10: 4, 11: 4,
    12: 1, 13: 2, 14: 3, 15: 4,
}


class FakeFeed:
    """
    In-memory stand-in for FPLFeed.

    Every manager owns players 1-15 with player 10 as captain. Live stats
    give everyone 90 minutes and player 10 a goal, so a live score is
    11 x 2 + 4 + 6 (captain) = 32 gross.
    """

    def __init__(self, events=None, matches=None, chips=None, delays=None):
        self.events = events or [
            {"id": gw, "finished": gw < 10, "data_checked": gw < 10, "is_current": gw == 10}
            for gw in range(1, 39)
        ]
        self._event_objs = [GameweekEvent.from_api(e) for e in self.events]
        self.matches = matches or []
        self.chips = chips or {}
        self.delays = delays or {}
        self.fail_bootstrap = False
        self.fail_live = False
        self.fail_picks = set()
        self.transfer_cost = 4
        self.active_chip = None
        self.calls = {"bootstrap": 0, "live": 0, "picks": 0, "matches": 0, "chips": 0}
        self.in_flight = 0
        self.max_in_flight = 0

    def _unavailable(self, what):
        return UpstreamUnavailable(f"{what} down")

    async def fetch_bootstrap(self):
        self.calls["bootstrap"] += 1
        if self.fail_bootstrap:
            raise self._unavailable("bootstrap")
        return {
            "events": self.events,
            "elements": [
                {"id": pid, "web_name": f"Player{pid}", "element_type": pos}
                for pid, pos in SQUAD_POSITIONS.items()
            ],
        }

    async def fetch_events(self):
        if self.fail_bootstrap:
            raise self._unavailable("bootstrap")
        return list(self._event_objs)

    async def fetch_event_live(self, gw):
        self.calls["live"] += 1
        if self.fail_live:
            raise self._unavailable("live")
        return {
            "elements": [
                {"id": pid, "stats": {"minutes": 90, "goals_scored": 1 if pid == 10 else 0}}
                for pid in SQUAD_POSITIONS
            ]
        }

    async def fetch_entry_picks(self, entry_id, gw):
        self.calls["picks"] += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(entry_id, 0))
            if entry_id in self.fail_picks:
                raise self._unavailable(f"picks {entry_id}")
            return {
                "active_chip": self.active_chip,
                "entry_history": {"event_transfers_cost": self.transfer_cost},
                "picks": [
                    {
                        "element": pid,
                        "position": pid,
                        "multiplier": 2 if pid == 10 else (0 if pid > 11 else 1),
                        "is_captain": pid == 10,
                        "is_vice_captain": pid == 6,
                    }
                    for pid in SQUAD_POSITIONS
                ],
            }
        finally:
            self.in_flight -= 1

    async def fetch_h2h_matches(self, league_id):
        self.calls["matches"] += 1
        return list(self.matches)

    async def fetch_entry_chips(self, entry_id):
        self.calls["chips"] += 1
        if entry_id in self.fail_picks:
            raise self._unavailable(f"history {entry_id}")
        return list(self.chips.get(entry_id, []))


@pytest.fixture
def fake_feed():
    return FakeFeed
