"""
H2H Analytics - Endpoints Module

FastAPI app initialization, CORS middleware, lifespan handler,
and the API endpoint handlers exposing the engine.
"""

import os
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

import httpx
from fastapi import FastAPI, HTTPException, Query

from fastapi.middleware.cors import CORSMiddleware

from h2h_analytics.audit import audit_gameweek
from h2h_analytics.calculators import points_calculator
from h2h_analytics.chips import fetch_available_chips
from h2h_analytics.config import MODEL_CONFIG
from h2h_analytics.constants import validate_gameweek
from h2h_analytics.context import RequestContext
from h2h_analytics.errors import InvalidInput, UpstreamUnavailable
from h2h_analytics.models import (
    LeagueScoresResponse, LuckComponents, LuckReport, LuckReportResponse,
    ManagerLuckResponse, ManagerScoreResponse, StatLineRequest, position_label,
)
from h2h_analytics.services import (
    FPLFeed, build_luck_report, close_http_client, compute_league_scores,
)
from h2h_analytics.status import status_resolver
from h2h_analytics.store import SnapshotStore
import h2h_analytics.services as services_module


logger = logging.getLogger("h2h_analytics")


# Upstream feed and persisted store shared by all requests
feed = FPLFeed()
store = SnapshotStore()


def _http_error(e: Exception) -> HTTPException:
    """Map engine errors onto HTTP status codes."""
    if isinstance(e, InvalidInput):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, UpstreamUnavailable):
        return HTTPException(status_code=503, detail=f"Upstream unavailable: {e}")
    return HTTPException(status_code=500, detail=str(e))


# ============ SERIALIZATION ============

def _manager_luck(c: LuckComponents, include_detail: bool) -> Dict:
    row = {
        "entry_id": c.entry_id,
        "variance_luck": round(c.variance_luck, 2),
        "variance_luck_normalized": round(c.variance_luck_normalized, 3),
        "rank_luck": round(c.rank_luck, 3),
        "schedule_luck": round(c.schedule_luck, 2),
        "chip_luck": round(c.chip_luck, 2),
        "season_luck_index": round(c.season_luck_index, 3),
        "matches_played": c.matches_played,
        "avg_opp_strength": round(c.avg_opp_strength, 2),
        "theoretical_opp_strength": round(c.theoretical_opp_strength, 2),
        "chips_faced": c.chips_faced,
        "chips_played": c.chips_played,
        "degraded": c.degraded,
    }
    if include_detail:
        row["per_gw"] = [
            {
                "gw": d.gameweek,
                "opponent_id": d.opponent_id,
                "points": d.points,
                "opponent_points": d.opponent_points,
                "season_avg": round(d.season_avg, 2),
                "opponent_season_avg": round(d.opponent_season_avg, 2),
                "variance": round(d.variance, 2),
                "rank": d.rank,
                "expected_win": round(d.expected_win, 3),
                "actual": d.actual,
                "rank_luck": round(d.rank_luck, 3),
                "gw_luck": round(d.gw_luck, 3),
                "opponent_chip": d.opponent_chip,
            }
            for d in c.per_gw
        ]
    return row


def luck_report_to_dict(report: LuckReport, include_detail: bool = False) -> Dict:
    v = report.validation
    return {
        "league_id": report.league_id,
        "preset": report.preset,
        "gameweeks": report.gameweeks,
        "league_avg_chips_faced": round(report.league_avg_chips_faced, 2),
        "managers": [_manager_luck(c, include_detail) for c in report.managers],
        "validation": {
            "variance_sum": round(v.variance_sum, 4),
            "rank_sum": round(v.rank_sum, 4),
            "schedule_sum": round(v.schedule_sum, 4),
            "chip_sum": round(v.chip_sum, 4),
            "balanced": v.balanced,
        },
    }


# ============ LIFESPAN ============

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    global store
    cfg = MODEL_CONFIG["upstream"]
    # Startup - create shared HTTP client
    services_module.http_client = httpx.AsyncClient(
        timeout=cfg.timeout,
        limits=httpx.Limits(max_keepalive_connections=20, max_connections=50),
        headers={"User-Agent": cfg.user_agent}
    )
    store = SnapshotStore.load(cfg.snapshot_path)

    yield

    # Shutdown - close HTTP client
    await close_http_client()


# ============ APP INITIALIZATION ============

app = FastAPI(title="H2H Analytics API", version="1.0.0", lifespan=lifespan)

CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=False,  # Set to True only with specific origins, not "*"
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============ ENDPOINTS ============

@app.get("/api/health")
async def health():
    return {"status": "ok", "snapshot_loaded": store.saved_at is not None}


@app.get("/api/config")
async def get_model_config():
    """
    Get current engine configuration.

    Useful for understanding scoring coefficients and luck weights.
    """
    scoring = MODEL_CONFIG["scoring"]
    luck = MODEL_CONFIG["luck"]
    auto_sub = MODEL_CONFIG["auto_sub"]
    return {
        "scoring": {
            "goal_points": {position_label(p): v for p, v in scoring.goal_points.items()},
            "cs_points": {position_label(p): v for p, v in scoring.cs_points.items()},
            "assist_points": scoring.assist_points,
            "defcon_thresholds": {position_label(p): v for p, v in scoring.defcon_thresholds.items()},
            "defcon_points": scoring.defcon_points,
        },
        "auto_sub": {
            "min_per_position": {position_label(p): v for p, v in auto_sub.min_per_position.items()},
            "max_per_position": {position_label(p): v for p, v in auto_sub.max_per_position.items()},
            "goalkeeper_for_goalkeeper_only": auto_sub.goalkeeper_for_goalkeeper_only,
        },
        "status": {
            "require_next_started": MODEL_CONFIG["status"].require_next_started,
        },
        "luck": {
            "default_preset": luck.default_preset,
            "presets": {name: p.as_dict() for name, p in luck.presets.items()},
            "points_per_chip": luck.points_per_chip,
            "offensive_chips": sorted(luck.offensive_chips),
            "variance_clamp_scale": luck.variance_clamp_scale,
        },
    }


@app.get("/api/gameweek/{gw}/status")
async def get_gameweek_status(gw: int):
    try:
        validate_gameweek(gw)
        result = await status_resolver.fetch_status(gw, feed)
    except InvalidInput as e:
        raise _http_error(e)
    return {
        "gameweek": gw,
        "status": result.value.value,
        "degraded": result.is_degraded,
        "reason": result.reason,
    }


@app.post("/api/points/calculate")
async def calculate_points(request: StatLineRequest):
    """Score a single stat line; useful for checking provider totals by hand."""
    try:
        stat_line = request.to_stat_line()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    result = points_calculator.calculate(stat_line)
    return {
        "position": position_label(stat_line.position),
        "total": result.total,
        "breakdown": result.breakdown,
    }


@app.get("/api/gameweek/{gw}/audit")
async def get_gameweek_audit(gw: int):
    """Calculator vs provider totals for every player in the gameweek."""
    try:
        validate_gameweek(gw)
        ctx = await RequestContext.build(feed)
        audit = await audit_gameweek(gw, ctx)
    except (InvalidInput, UpstreamUnavailable) as e:
        raise _http_error(e)
    return audit.as_dict()


@app.get("/api/league/{league_id}/gameweek/{gw}/scores", response_model=LeagueScoresResponse)
async def get_league_scores(league_id: int, gw: int):
    try:
        status, scores = await compute_league_scores(league_id, gw, feed, store)
    except (InvalidInput, UpstreamUnavailable) as e:
        raise _http_error(e)

    ordered = sorted(scores.values(), key=lambda s: (s.unavailable, -s.net_total, s.entry_id))
    return LeagueScoresResponse(
        league_id=league_id,
        gameweek=gw,
        status=status.value.value,
        status_degraded=status.is_degraded,
        scores=[ManagerScoreResponse(**s.as_dict()) for s in ordered],
    )


@app.get("/api/league/{league_id}/luck", response_model=LuckReportResponse)
async def get_league_luck(
    league_id: int,
    preset: Optional[str] = Query(None, description="Luck index weighting preset"),
    through_gw: Optional[int] = Query(None, description="Last gameweek to include"),
    detail: bool = Query(False, description="Include per-gameweek rows"),
):
    try:
        report = await build_luck_report(league_id, feed, store, preset=preset, through_gw=through_gw)
    except (InvalidInput, UpstreamUnavailable) as e:
        raise _http_error(e)

    data = luck_report_to_dict(report, include_detail=detail)
    data["managers"] = [ManagerLuckResponse(**m) for m in data["managers"]]
    return LuckReportResponse(**data)


@app.get("/api/entry/{entry_id}/chips")
async def get_entry_chips(entry_id: int, gw: int = Query(..., description="Gameweek to check availability for")):
    try:
        result = await fetch_available_chips(entry_id, gw, feed)
    except InvalidInput as e:
        raise _http_error(e)
    return {
        "entry_id": entry_id,
        "gameweek": gw,
        "degraded": result.is_degraded,
        **result.value,
    }
