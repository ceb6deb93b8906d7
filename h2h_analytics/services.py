"""
H2H Analytics - Services Module

HTTP client, circuit breaker, upstream feed fetchers and league-wide
orchestration (concurrent per-manager scoring, luck report assembly).
"""

import asyncio
import random
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

import httpx

from h2h_analytics.chips import chips_from_api
from h2h_analytics.config import MODEL_CONFIG
from h2h_analytics.constants import FPL_BASE_URL, validate_gameweek
from h2h_analytics.context import RequestContext
from h2h_analytics.errors import PartialComputation, UpstreamUnavailable
from h2h_analytics.luck import LuckEngine, luck_engine
from h2h_analytics.models import (
    ChipUsage, GameweekEvent, GameweekStatus, H2HMatch, LuckReport, ManagerScore, Result,
)
from h2h_analytics.sources import ScoreSourceRouter
from h2h_analytics.status import GameweekStatusResolver, status_resolver
from h2h_analytics.store import AggregateStore


logger = logging.getLogger("h2h_analytics")


# ============ HTTP CLIENT & CIRCUIT BREAKER ============

# Global HTTP client (initialized in lifespan)
http_client: Optional[httpx.AsyncClient] = None


async def get_http_client() -> httpx.AsyncClient:
    """Get the shared HTTP client, creating one if needed."""
    global http_client
    if http_client is None:
        cfg = MODEL_CONFIG["upstream"]
        http_client = httpx.AsyncClient(
            timeout=cfg.timeout,
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=50),
            headers={"User-Agent": cfg.user_agent}
        )
    return http_client


async def close_http_client():
    global http_client
    if http_client is not None:
        await http_client.aclose()
        http_client = None


# Circuit breaker state for the upstream API
_circuit_breaker = {
    "consecutive_failures": 0,
    "open_until": None,  # datetime when circuit can be retried
    "threshold": MODEL_CONFIG["upstream"].circuit_threshold,
    "cooldown": MODEL_CONFIG["upstream"].circuit_cooldown,
}


def reset_circuit_breaker():
    _circuit_breaker["consecutive_failures"] = 0
    _circuit_breaker["open_until"] = None


def _retry_after_seconds(value: Optional[str], fallback: float) -> float:
    """Seconds from a Retry-After header; HTTP-date or junk values use the backoff delay."""
    if value is None:
        return fallback
    try:
        return max(0.0, float(value))
    except ValueError:
        return fallback


async def fetch_with_retry(
    url: str,
    max_retries: int = None,
    base_delay: float = None,
) -> httpx.Response:
    """
    Fetch URL with exponential backoff retry logic.
    Handles rate limiting (429) and transient errors.
    Includes circuit breaker: after 3 consecutive failures, fails fast for 60s.

    Raises UpstreamUnavailable once retries are exhausted, on a non-retryable
    status, or while the circuit is open.
    """
    cfg = MODEL_CONFIG["upstream"]
    if max_retries is None:
        max_retries = cfg.max_retries
    if base_delay is None:
        base_delay = cfg.base_delay

    cb = _circuit_breaker
    now = datetime.now()

    # Circuit breaker: fail fast if open
    if cb["open_until"] and now < cb["open_until"]:
        remaining = (cb["open_until"] - now).seconds
        raise UpstreamUnavailable(
            f"Upstream circuit breaker open, retrying in {remaining}s", url=url
        )

    client = await get_http_client()
    last_error = None

    for attempt in range(max_retries):
        try:
            response = await client.get(url)

            if response.status_code == 429:
                # Rate limited - wait and retry
                retry_after = _retry_after_seconds(
                    response.headers.get("Retry-After"), base_delay * (2 ** attempt)
                )
                logger.warning(f"Rate limited on {url}, waiting {retry_after}s")
                await asyncio.sleep(retry_after)
                last_error = UpstreamUnavailable("Rate limited", url=url, status_code=429)
                continue

            response.raise_for_status()
            # Success - reset circuit breaker
            cb["consecutive_failures"] = 0
            cb["open_until"] = None
            return response

        except httpx.HTTPStatusError as e:
            if e.response.status_code in (500, 502, 503, 504):
                # Server error - retry with backoff
                delay = base_delay * (2 ** attempt) + random.uniform(0, 1)
                logger.warning(f"Server error {e.response.status_code} on {url}, retry in {delay:.1f}s")
                await asyncio.sleep(delay)
                last_error = e
                continue
            raise UpstreamUnavailable(
                f"Upstream returned {e.response.status_code} for {url}",
                url=url, status_code=e.response.status_code,
            ) from e
        except (httpx.TimeoutException, httpx.ConnectError) as e:
            delay = base_delay * (2 ** attempt) + random.uniform(0, 1)
            logger.warning(f"Connection error on {url}, retry in {delay:.1f}s: {e}")
            await asyncio.sleep(delay)
            last_error = e
            continue

    # All retries exhausted - update circuit breaker
    cb["consecutive_failures"] += 1
    if cb["consecutive_failures"] >= cb["threshold"]:
        cb["open_until"] = now + timedelta(seconds=cb["cooldown"])
        logger.error(f"Circuit breaker OPEN after {cb['consecutive_failures']} consecutive failures. Cooldown {cb['cooldown']}s.")

    raise UpstreamUnavailable(f"Failed after {max_retries} retries: {last_error}", url=url)


# ============ UPSTREAM FEED ============

class FPLFeed:
    """Thin async wrapper over the upstream endpoints the engine consumes."""

    def __init__(self, base_url: str = FPL_BASE_URL):
        self.base_url = base_url.rstrip("/")

    async def _get_json(self, path: str):
        response = await fetch_with_retry(f"{self.base_url}/{path}")
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamUnavailable(f"Malformed JSON from {path}: {e}", url=path) from e

    async def fetch_bootstrap(self) -> Dict:
        return await self._get_json("bootstrap-static/")

    async def fetch_events(self) -> List[GameweekEvent]:
        data = await self.fetch_bootstrap()
        return [GameweekEvent.from_api(e) for e in data.get("events", [])]

    async def fetch_event_live(self, gw: int) -> Dict:
        validate_gameweek(gw)
        return await self._get_json(f"event/{gw}/live/")

    async def fetch_entry_picks(self, entry_id: int, gw: int) -> Dict:
        validate_gameweek(gw)
        return await self._get_json(f"entry/{entry_id}/event/{gw}/picks/")

    async def fetch_entry_history(self, entry_id: int) -> Dict:
        return await self._get_json(f"entry/{entry_id}/history/")

    async def fetch_entry_chips(self, entry_id: int) -> List[ChipUsage]:
        history = await self.fetch_entry_history(entry_id)
        return chips_from_api(history.get("chips", []), entry_id)

    async def fetch_h2h_matches(self, league_id: int, max_pages: int = 50) -> List[H2HMatch]:
        """All H2H matches for a league, following `has_next` pagination."""
        matches = []
        page = 1
        while page <= max_pages:
            data = await self._get_json(f"leagues-h2h-matches/league/{league_id}/?page={page}")
            for row in data.get("results", []):
                # Bye weeks pair an entry with nobody
                if not row.get("entry_1_entry") or not row.get("entry_2_entry"):
                    continue
                matches.append(H2HMatch.from_api(row, league_id))
            if not data.get("has_next"):
                break
            page += 1
        return matches


# ============ LEAGUE ORCHESTRATION ============

async def _gather_bounded(coros, limit: int):
    semaphore = asyncio.Semaphore(max(1, limit))

    async def _run(coro):
        async with semaphore:
            return await coro

    return await asyncio.gather(*(_run(c) for c in coros))


async def _league_roster(league_id: int, gw: int, feed, store: AggregateStore) -> List[int]:
    roster = store.get_roster(league_id)
    if roster:
        return roster
    matches = await feed.fetch_h2h_matches(league_id)
    entries = set()
    for m in matches:
        if m.event == gw:
            entries.add(m.entry_1_id)
            entries.add(m.entry_2_id)
    return sorted(entries)


async def compute_league_scores(
    league_id: int,
    gw: int,
    feed,
    store: AggregateStore,
    resolver: GameweekStatusResolver = None,
    router: ScoreSourceRouter = None,
    max_concurrency: int = None,
) -> Tuple[Result[GameweekStatus], Dict[int, ManagerScore]]:
    """
    Score every manager in the league for `gw`.

    Per-manager work runs concurrently, at most `max_concurrency` at once.
    Results are merged by entry_id so completion order never matters. A
    manager whose sources all fail is returned as unavailable.
    """
    validate_gameweek(gw)
    resolver = resolver or status_resolver
    router = router or ScoreSourceRouter(store)
    if max_concurrency is None:
        max_concurrency = MODEL_CONFIG["upstream"].max_concurrency

    try:
        ctx = await RequestContext.build(feed)
        status = Result.ok(resolver.resolve_gameweek(gw, ctx.events))
    except UpstreamUnavailable as e:
        logger.warning(f"Bootstrap unavailable for league {league_id} GW{gw}, defaulting to live: {e}")
        ctx = RequestContext([], feed=feed)
        status = Result.degraded(GameweekStatus.LIVE, "upstream_unavailable")

    roster = await _league_roster(league_id, gw, feed, store)
    logger.info(f"Scoring league {league_id} GW{gw}: {len(roster)} managers, status={status.value.value}")

    async def _score(entry_id: int) -> ManagerScore:
        try:
            result = await router.manager_score(entry_id, gw, status.value, ctx)
        except Exception as e:
            err = PartialComputation(entry_id, e)
            logger.error(str(err))
            return ManagerScore.unavailable_for(entry_id, str(e))
        if result.is_failed:
            return ManagerScore.unavailable_for(entry_id, result.reason)
        return result.value

    scores = await _gather_bounded([_score(e) for e in roster], max_concurrency)
    return status, {s.entry_id: s for s in scores}


async def _league_chips(roster: List[int], feed, store: AggregateStore, max_concurrency: int) -> List[ChipUsage]:
    chips = store.get_chips(roster)
    if chips:
        return chips

    async def _fetch(entry_id: int) -> List[ChipUsage]:
        try:
            return await feed.fetch_entry_chips(entry_id)
        except UpstreamUnavailable as e:
            logger.warning(f"Chip history unavailable for entry {entry_id}: {e}")
            return []

    per_entry = await _gather_bounded([_fetch(e) for e in roster], max_concurrency)
    return [c for rows in per_entry for c in rows]


async def build_luck_report(
    league_id: int,
    feed,
    store: AggregateStore,
    preset: Optional[str] = None,
    through_gw: Optional[int] = None,
    engine: LuckEngine = None,
    resolver: GameweekStatusResolver = None,
    max_concurrency: int = None,
) -> LuckReport:
    """
    Luck report over every completed gameweek (optionally up to `through_gw`).

    Matches and chips come from the persisted store when present, otherwise
    from the feed. Stored gameweek histories supply the gross scores used
    for averages and rank. Raises UpstreamUnavailable if neither can supply
    matches.
    """
    engine = engine or luck_engine
    resolver = resolver or status_resolver
    if max_concurrency is None:
        max_concurrency = MODEL_CONFIG["upstream"].max_concurrency
    if through_gw is not None:
        validate_gameweek(through_gw)
    # Fail fast on a bad preset before any upstream calls
    engine.get_preset(preset)

    matches = store.get_matches(league_id)
    from_store = bool(matches)
    if not matches:
        matches = await feed.fetch_h2h_matches(league_id)

    try:
        events = await feed.fetch_events()
        completed = resolver.completed_gameweeks(events)
    except UpstreamUnavailable as e:
        if not from_store:
            raise
        # Persisted matches only exist for completed gameweeks
        logger.warning(f"Bootstrap unavailable for luck report, using persisted gameweeks: {e}")
        completed = sorted({m.event for m in matches})

    if through_gw is not None:
        completed = [g for g in completed if g <= through_gw]

    roster = store.get_roster(league_id)
    if not roster:
        roster = sorted({m.entry_1_id for m in matches} | {m.entry_2_id for m in matches})

    chips = await _league_chips(roster, feed, store, max_concurrency)
    histories = store.get_histories(roster)

    report = engine.compute(
        matches, chips, histories=histories, roster=roster, gameweeks=completed,
        preset=preset, league_id=league_id,
    )
    logger.info(
        f"Luck report league {league_id}: {len(report.managers)} managers over "
        f"{len(report.gameweeks)} gameweeks, preset={report.preset}, balanced={report.validation.balanced}"
    )
    return report
