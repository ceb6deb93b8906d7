"""
H2H Analytics - Chips

Chip availability and usage rules. Each chip type can be played twice a
season, once in each half; the second half opens at CHIP_RENEWAL_GW.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List

from h2h_analytics.constants import (
    ALL_CHIPS, CHIP_DISPLAY, CHIP_RENEWAL_GW, CHIP_USES_PER_SEASON, validate_gameweek,
)
from h2h_analytics.errors import InvalidInput, UpstreamUnavailable
from h2h_analytics.models import ChipUsage, Result

logger = logging.getLogger("h2h_analytics")


def chips_from_api(rows: Iterable[Dict], entry_id: int) -> List[ChipUsage]:
    """
    ChipUsage rows from an upstream `chips` list.

    Chip names outside ALL_CHIPS (e.g. seasonal chips like "manager")
    are logged and skipped.
    """
    out = []
    for row in rows:
        name = row.get("name")
        if name not in ALL_CHIPS:
            logger.warning(f"Skipping unknown chip {name!r} for entry {entry_id} in GW{row.get('event')}")
            continue
        out.append(ChipUsage(entry_id, int(row["event"]), name))
    return out


def season_half(gw: int) -> int:
    return 2 if gw >= CHIP_RENEWAL_GW else 1


def get_available_chips(chips_used: Iterable[ChipUsage], current_gw: int) -> Dict[str, bool]:
    """Determine which chips are still available."""
    validate_gameweek(current_gw)
    half = season_half(current_gw)
    used_this_half = {c.chip_name for c in chips_used if season_half(c.gameweek) == half}
    return {chip: chip not in used_this_half for chip in sorted(ALL_CHIPS)}


def validate_chip_usage(chips_used: Iterable[ChipUsage]) -> List[ChipUsage]:
    """
    Check one manager's (or a league's) chip history is possible:
    - no chip type more than CHIP_USES_PER_SEASON times
    - no chip type twice in the same half
    - at most one chip per manager per gameweek

    Returns the rows sorted by gameweek; raises InvalidInput otherwise.
    """
    rows = sorted(chips_used, key=lambda c: (c.entry_id, c.gameweek))
    per_type = defaultdict(list)
    per_gw = defaultdict(list)
    for c in rows:
        validate_gameweek(c.gameweek)
        per_type[(c.entry_id, c.chip_name)].append(c.gameweek)
        per_gw[(c.entry_id, c.gameweek)].append(c.chip_name)

    for (entry_id, chip), gws in per_type.items():
        if len(gws) > CHIP_USES_PER_SEASON:
            raise InvalidInput(f"Entry {entry_id} played {chip} {len(gws)} times: {gws}")
        halves = [season_half(g) for g in gws]
        if len(set(halves)) != len(halves):
            raise InvalidInput(f"Entry {entry_id} played {chip} twice in one half: {gws}")

    for (entry_id, gw), names in per_gw.items():
        if len(names) > 1:
            raise InvalidInput(f"Entry {entry_id} played {len(names)} chips in GW{gw}: {names}")

    return rows


def chips_summary(chips_used: Iterable[ChipUsage], current_gw: int) -> Dict:
    """Availability plus the played list, shaped for the API."""
    rows = sorted(chips_used, key=lambda c: c.gameweek)
    available = get_available_chips(rows, current_gw)
    return {
        "available": available,
        "played": [
            {"chip": c.chip_name, "display": CHIP_DISPLAY.get(c.chip_name, c.chip_name), "gw": c.gameweek}
            for c in rows
        ],
    }


async def fetch_available_chips(entry_id: int, current_gw: int, feed) -> Result[Dict]:
    """
    Availability for one manager from the upstream history.

    If the feed is unreachable every chip is reported available, flagged
    degraded, so a planning view can still render.
    """
    validate_gameweek(current_gw)
    try:
        chips_used = await feed.fetch_entry_chips(entry_id)
    except UpstreamUnavailable as e:
        logger.warning(f"Chip history unavailable for entry {entry_id}, assuming all available: {e}")
        return Result.degraded(
            {"available": {chip: True for chip in sorted(ALL_CHIPS)}, "played": []},
            "upstream_unavailable",
        )
    return Result.ok(chips_summary(chips_used, current_gw))
