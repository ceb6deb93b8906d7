"""
H2H Analytics - Gameweek Status Resolver

Single policy for deciding whether a gameweek is upcoming, live or
completed, and therefore whether its scores come from the live feed or
from persisted aggregates.
"""

import logging
from typing import Iterable, List, Optional

from h2h_analytics.config import MODEL_CONFIG, StatusConfig
from h2h_analytics.constants import validate_gameweek
from h2h_analytics.errors import UpstreamUnavailable
from h2h_analytics.models import GameweekEvent, GameweekStatus, Result

logger = logging.getLogger("h2h_analytics")


class GameweekStatusResolver:
    """
    resolve():          finished -> completed; current or data_checked -> live; else upcoming.
    resolve_trusted():  completed only once the next gameweek has started.

    For a fixed gameweek the answer only moves forward over the season:
    upcoming -> live -> completed.
    """

    def __init__(self, config: StatusConfig = None):
        self.config = config or MODEL_CONFIG["status"]

    def resolve(self, event: GameweekEvent) -> GameweekStatus:
        if event.finished:
            return GameweekStatus.COMPLETED
        if event.is_current or event.data_checked:
            return GameweekStatus.LIVE
        return GameweekStatus.UPCOMING

    def resolve_trusted(
        self,
        event: GameweekEvent,
        next_event: Optional[GameweekEvent] = None,
    ) -> GameweekStatus:
        """
        Stricter variant: persisted aggregates for GW g are only trusted once
        GW g+1 is underway. A finished gameweek whose successor has not
        started is still reported live so scores are recomputed from the feed.
        """
        status = self.resolve(event)
        if status != GameweekStatus.COMPLETED or not self.config.require_next_started:
            return status

        if next_event is None:
            # Season's last gameweek has no successor: trust it once data is checked
            if event.id >= self.config.final_gameweek and event.data_checked:
                return GameweekStatus.COMPLETED
            return GameweekStatus.LIVE

        if next_event.has_started:
            return GameweekStatus.COMPLETED
        return GameweekStatus.LIVE

    def resolve_gameweek(
        self,
        gw: int,
        events: Iterable[GameweekEvent],
        trusted: bool = True,
    ) -> GameweekStatus:
        """Look up `gw` in the bootstrap events list and resolve it."""
        validate_gameweek(gw)
        by_id = {e.id: e for e in events}
        event = by_id.get(gw)
        if event is None:
            logger.warning(f"No event found for GW{gw}, treating as upcoming")
            return GameweekStatus.UPCOMING
        if not trusted:
            return self.resolve(event)
        return self.resolve_trusted(event, by_id.get(gw + 1))

    def completed_gameweeks(self, events: Iterable[GameweekEvent], trusted: bool = True) -> List[int]:
        """All gameweek ids whose data can be read from persisted aggregates."""
        events = sorted(events, key=lambda e: e.id)
        by_id = {e.id: e for e in events}
        result = []
        for event in events:
            if trusted:
                status = self.resolve_trusted(event, by_id.get(event.id + 1))
            else:
                status = self.resolve(event)
            if status == GameweekStatus.COMPLETED:
                result.append(event.id)
        return result

    async def fetch_status(self, gw: int, feed, trusted: bool = True) -> Result[GameweekStatus]:
        """
        Resolve `gw` against the live bootstrap.

        If the feed is unreachable the status degrades to live: never
        completed (stale or missing persisted data) and never upcoming
        (would hide matches already underway).
        """
        validate_gameweek(gw)
        try:
            events = await feed.fetch_events()
        except UpstreamUnavailable as e:
            logger.warning(f"Bootstrap unavailable for GW{gw} status, defaulting to live: {e}")
            return Result.degraded(GameweekStatus.LIVE, "upstream_unavailable")
        return Result.ok(self.resolve_gameweek(gw, events, trusted=trusted))


# Global instance
status_resolver = GameweekStatusResolver()


def get_current_gameweek(events: List[GameweekEvent]) -> int:
    for event in events:
        if event.is_current:
            return event.id
    for event in events:
        if event.is_next:
            return event.id
    return 1
