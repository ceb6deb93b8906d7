"""
H2H Analytics - Request Context

Everything a single request needs from the bootstrap and live feeds,
fetched at most once and passed explicitly to the components that need it.
Nothing here outlives the request.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from h2h_analytics.constants import position_id
from h2h_analytics.models import GameweekEvent, PlayerStatLine

logger = logging.getLogger("h2h_analytics")


class RequestContext:
    def __init__(
        self,
        events: List[GameweekEvent],
        player_names: Optional[Dict[int, str]] = None,
        player_positions: Optional[Dict[int, int]] = None,
        feed=None,
    ):
        self.events = events
        self.player_names: Dict[int, str] = player_names or {}
        self.player_positions: Dict[int, int] = player_positions or {}
        self.feed = feed
        self._live: Dict[int, Dict[int, PlayerStatLine]] = {}
        self._live_lock = asyncio.Lock()

    @classmethod
    def from_bootstrap(cls, bootstrap: Dict, feed=None) -> "RequestContext":
        """Build from a raw `bootstrap-static/` payload."""
        events = [GameweekEvent.from_api(e) for e in bootstrap.get("events", [])]
        names = {}
        positions = {}
        for el in bootstrap.get("elements", []):
            pid = int(el["id"])
            names[pid] = el.get("web_name", f"#{pid}")
            positions[pid] = position_id(el.get("element_type", 3))
        return cls(events, names, positions, feed)

    @classmethod
    async def build(cls, feed) -> "RequestContext":
        bootstrap = await feed.fetch_bootstrap()
        ctx = cls.from_bootstrap(bootstrap, feed)
        logger.debug(f"Request context: {len(ctx.events)} events, {len(ctx.player_names)} players")
        return ctx

    def event(self, gw: int) -> Optional[GameweekEvent]:
        for e in self.events:
            if e.id == gw:
                return e
        return None

    async def live_stats(self, gw: int) -> Dict[int, PlayerStatLine]:
        """
        player_id -> PlayerStatLine for `gw`, fetched from the live feed
        on first use. Concurrent callers share one fetch.
        """
        if gw in self._live:
            return self._live[gw]
        async with self._live_lock:
            if gw not in self._live:
                if self.feed is None:
                    raise RuntimeError("RequestContext has no feed to fetch live stats from")
                payload = await self.feed.fetch_event_live(gw)
                self._live[gw] = self.parse_live(payload, gw)
        return self._live[gw]

    def set_live_stats(self, gw: int, stats: Dict[int, PlayerStatLine]):
        self._live[gw] = stats

    def parse_live(self, payload: Dict, gw: int) -> Dict[int, PlayerStatLine]:
        stats = {}
        for element in payload.get("elements", []):
            pid = int(element["id"])
            position = self.player_positions.get(pid)
            if position is None:
                # Player not in bootstrap (e.g. mid-season signing); cannot score by position
                logger.warning(f"GW{gw}: live element {pid} has no known position, skipped")
                continue
            stats[pid] = PlayerStatLine.from_live_element(
                element, gw, position, self.player_names.get(pid)
            )
        return stats
