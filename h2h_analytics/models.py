from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel

from h2h_analytics.constants import ALL_CHIPS, POSITION_MAP, position_id, validate_gameweek
from h2h_analytics.errors import InvalidInput


# ============ ENUMS ============

class GameweekStatus(str, Enum):
    UPCOMING = "upcoming"
    LIVE = "live"
    COMPLETED = "completed"


class ResultTag(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"
    FAILED = "failed"


class ScoreSource(str, Enum):
    LIVE = "live"
    PERSISTED = "persisted"
    NONE = "none"


def parse_deadline(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    # FPL uses ISO strings like "2025-08-15T17:30:00Z"
    if value.endswith("Z"):
        value = value.replace("Z", "+00:00")
    return datetime.fromisoformat(value)


# =============================================================================
# RESULT TYPE
# =============================================================================

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    """
    Ok(value) | Degraded(value, reason) | Failed(reason).

    Lets callers tell "used a fallback" apart from "fully succeeded"
    without inspecting logs.
    """
    tag: ResultTag
    value: Optional[T] = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls, value: T) -> "Result[T]":
        return cls(ResultTag.OK, value)

    @classmethod
    def degraded(cls, value: T, reason: str) -> "Result[T]":
        return cls(ResultTag.DEGRADED, value, reason)

    @classmethod
    def failed(cls, reason: str) -> "Result[T]":
        return cls(ResultTag.FAILED, None, reason)

    @property
    def is_ok(self) -> bool:
        return self.tag == ResultTag.OK

    @property
    def is_degraded(self) -> bool:
        return self.tag == ResultTag.DEGRADED

    @property
    def is_failed(self) -> bool:
        return self.tag == ResultTag.FAILED


# =============================================================================
# DATA MODEL
# =============================================================================

@dataclass(frozen=True)
class GameweekEvent:
    """One gameweek from the upstream bootstrap events list."""
    id: int
    finished: bool = False
    is_current: bool = False
    data_checked: bool = False
    deadline_time: Optional[datetime] = None
    is_next: bool = False

    @property
    def has_started(self) -> bool:
        return self.finished or self.is_current or self.data_checked

    @classmethod
    def from_api(cls, event: Dict) -> "GameweekEvent":
        return cls(
            id=int(event["id"]),
            finished=bool(event.get("finished")),
            is_current=bool(event.get("is_current")),
            data_checked=bool(event.get("data_checked")),
            deadline_time=parse_deadline(event.get("deadline_time")),
            is_next=bool(event.get("is_next")),
        )


@dataclass(frozen=True)
class PlayerStatLine:
    """Raw per-player match statistics for one gameweek."""
    player_id: int
    gameweek: int
    position: int
    minutes: int = 0
    goals_scored: int = 0
    assists: int = 0
    clean_sheets: int = 0
    goals_conceded: int = 0
    own_goals: int = 0
    penalties_saved: int = 0
    penalties_missed: int = 0
    yellow_cards: int = 0
    red_cards: int = 0
    saves: int = 0
    bonus: int = 0
    bps: int = 0
    defensive_contribution: int = 0
    web_name: Optional[str] = None
    # Provider-reported total, used only for audits
    total_points: Optional[int] = None

    @classmethod
    def from_live_element(cls, element: Dict, gameweek: int, position: int,
                          web_name: Optional[str] = None) -> "PlayerStatLine":
        """Build from an `event/{gw}/live/` element ({"id", "stats": {...}})."""
        stats = element.get("stats", {})

        def _int(key: str) -> int:
            return int(stats.get(key, 0) or 0)

        return cls(
            player_id=int(element["id"]),
            gameweek=gameweek,
            position=position_id(position),
            minutes=_int("minutes"),
            goals_scored=_int("goals_scored"),
            assists=_int("assists"),
            clean_sheets=_int("clean_sheets"),
            goals_conceded=_int("goals_conceded"),
            own_goals=_int("own_goals"),
            penalties_saved=_int("penalties_saved"),
            penalties_missed=_int("penalties_missed"),
            yellow_cards=_int("yellow_cards"),
            red_cards=_int("red_cards"),
            saves=_int("saves"),
            bonus=_int("bonus"),
            bps=_int("bps"),
            defensive_contribution=_int("defensive_contribution"),
            web_name=web_name,
            total_points=stats.get("total_points"),
        )


@dataclass(frozen=True)
class PlayerPoints:
    """Pre-computed points for a player in a completed gameweek."""
    player_id: int
    position: int
    minutes: int
    points: int
    web_name: Optional[str] = None


@dataclass(frozen=True)
class SquadPick:
    entry_id: int
    gameweek: int
    player_id: int
    lineup_position: int  # 1-11 starting, 12-15 bench
    multiplier: int = 1   # 0 benched, 1 normal, 2 captain, 3 triple captain
    is_captain: bool = False
    is_vice_captain: bool = False

    @classmethod
    def from_api(cls, pick: Dict, entry_id: int, gameweek: int) -> "SquadPick":
        return cls(
            entry_id=entry_id,
            gameweek=gameweek,
            player_id=int(pick["element"]),
            lineup_position=int(pick["position"]),
            multiplier=int(pick.get("multiplier", 1)),
            is_captain=bool(pick.get("is_captain")),
            is_vice_captain=bool(pick.get("is_vice_captain")),
        )


@dataclass(frozen=True)
class ChipUsage:
    entry_id: int
    gameweek: int
    chip_name: str

    def __post_init__(self):
        if self.chip_name not in ALL_CHIPS:
            raise InvalidInput(f"Unknown chip: {self.chip_name}")


@dataclass(frozen=True)
class H2HMatch:
    """One row per (league, event, unordered pair). winner None = draw."""
    league_id: int
    event: int
    entry_1_id: int
    entry_2_id: int
    entry_1_points: int
    entry_2_points: int
    winner: Optional[int] = None

    def opponent_of(self, entry_id: int) -> int:
        return self.entry_2_id if entry_id == self.entry_1_id else self.entry_1_id

    def points_for(self, entry_id: int) -> int:
        return self.entry_1_points if entry_id == self.entry_1_id else self.entry_2_points

    def result_for(self, entry_id: int) -> float:
        """1 win, 0.5 draw, 0 loss."""
        if self.winner is None:
            return 0.5
        return 1.0 if self.winner == entry_id else 0.0

    @property
    def is_played(self) -> bool:
        # Both sides on zero means the fixture has not been scored yet
        return self.entry_1_points > 0 or self.entry_2_points > 0

    @classmethod
    def from_api(cls, match: Dict, league_id: int) -> "H2HMatch":
        winner = match.get("winner")
        return cls(
            league_id=league_id,
            event=int(match["event"]),
            entry_1_id=int(match["entry_1_entry"]),
            entry_2_id=int(match["entry_2_entry"]),
            entry_1_points=int(match.get("entry_1_points") or 0),
            entry_2_points=int(match.get("entry_2_points") or 0),
            winner=int(winner) if winner else None,
        )


@dataclass(frozen=True)
class ManagerGWHistory:
    entry_id: int
    event: int
    points: int = 0
    transfers: int = 0
    transfer_cost: int = 0
    points_on_bench: int = 0
    rank: Optional[int] = None

    @classmethod
    def from_api(cls, row: Dict, entry_id: int) -> "ManagerGWHistory":
        return cls(
            entry_id=entry_id,
            event=int(row["event"]),
            points=int(row.get("points") or 0),
            transfers=int(row.get("event_transfers") or 0),
            transfer_cost=int(row.get("event_transfers_cost") or 0),
            points_on_bench=int(row.get("points_on_bench") or 0),
            rank=row.get("rank"),
        )


# =============================================================================
# ENGINE OUTPUTS
# =============================================================================

@dataclass
class PointsResult:
    total: int
    breakdown: Dict[str, int] = field(default_factory=dict)


@dataclass
class AutoSubRecord:
    player_out_id: int
    player_in_id: int
    player_out_name: Optional[str] = None
    player_in_name: Optional[str] = None
    points_gained: int = 0


@dataclass
class AggregatedScore:
    """One manager's gameweek score after auto-subs, captaincy, chip and hits."""
    gross_total: int
    net_total: int
    transfer_cost: int
    active_chip: Optional[str]
    captain_id: Optional[int] = None
    captain_name: Optional[str] = None
    captain_multiplier: int = 1
    starting_xi_total: int = 0
    captain_bonus: int = 0
    bench_boost_total: int = 0
    auto_sub_total: int = 0
    points_on_bench: int = 0
    auto_subs: List[AutoSubRecord] = field(default_factory=list)
    counted_player_ids: List[int] = field(default_factory=list)
    missing_players: List[int] = field(default_factory=list)


@dataclass
class ManagerScore:
    """Per-manager score object handed to presentation layers."""
    entry_id: int
    gross_total: int = 0
    net_total: int = 0
    transfer_cost: int = 0
    active_chip: Optional[str] = None
    captain_name: Optional[str] = None
    unavailable: bool = False
    source: ScoreSource = ScoreSource.NONE
    reason: Optional[str] = None

    @classmethod
    def unavailable_for(cls, entry_id: int, reason: str) -> "ManagerScore":
        return cls(entry_id=entry_id, unavailable=True, reason=reason)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "gross_total": self.gross_total,
            "net_total": self.net_total,
            "transfer_cost": self.transfer_cost,
            "active_chip": self.active_chip,
            "captain_name": self.captain_name,
            "unavailable": self.unavailable,
            "source": self.source.value,
            "reason": self.reason,
        }


@dataclass
class GWLuckDetail:
    gameweek: int
    opponent_id: int
    points: int
    opponent_points: int
    season_avg: float
    opponent_season_avg: float
    variance: float
    variance_normalized: float
    rank: int
    expected_win: float
    actual: float
    rank_luck: float
    gw_luck: float
    opponent_chip: Optional[str] = None


@dataclass
class LuckComponents:
    """Per-manager luck decomposition. Derived, never persisted."""
    entry_id: int
    variance_luck: float = 0.0
    variance_luck_normalized: float = 0.0
    rank_luck: float = 0.0
    schedule_luck: float = 0.0
    chip_luck: float = 0.0
    season_luck_index: float = 0.0
    matches_played: int = 0
    avg_opp_strength: float = 0.0
    theoretical_opp_strength: float = 0.0
    chips_faced: int = 0
    chips_played: int = 0
    degraded: bool = False
    per_gw: List[GWLuckDetail] = field(default_factory=list)

    @classmethod
    def neutral(cls, entry_id: int) -> "LuckComponents":
        return cls(entry_id=entry_id, degraded=True)


@dataclass
class LuckValidation:
    variance_sum: float
    rank_sum: float
    schedule_sum: float
    chip_sum: float
    balanced: bool
    per_gw: List[Dict[str, float]] = field(default_factory=list)


@dataclass
class LuckReport:
    league_id: Optional[int]
    preset: str
    gameweeks: List[int]
    managers: List[LuckComponents]
    validation: LuckValidation
    league_avg_chips_faced: float = 0.0


# ============ RESPONSE SCHEMAS ============
# Contract between the engine and presentation layers

class ManagerScoreResponse(BaseModel):
    entry_id: int
    gross_total: int
    net_total: int
    transfer_cost: int
    active_chip: Optional[str] = None
    captain_name: Optional[str] = None
    unavailable: bool = False
    source: str = "none"
    reason: Optional[str] = None


class LeagueScoresResponse(BaseModel):
    league_id: int
    gameweek: int
    status: str
    status_degraded: bool = False
    scores: List[ManagerScoreResponse]


class ManagerLuckResponse(BaseModel):
    entry_id: int
    variance_luck: float
    rank_luck: float
    schedule_luck: float
    chip_luck: float
    season_luck_index: float
    degraded: bool = False

    class Config:
        extra = "allow"


class LuckValidationResponse(BaseModel):
    variance_sum: float
    rank_sum: float
    schedule_sum: float
    chip_sum: float
    balanced: bool


class LuckReportResponse(BaseModel):
    league_id: int
    preset: str
    gameweeks: List[int]
    managers: List[ManagerLuckResponse]
    validation: LuckValidationResponse
    league_avg_chips_faced: float = 0.0


class StatLineRequest(BaseModel):
    """Request body for the points calculator endpoint."""
    player_id: int = 0
    gameweek: int = 1
    position: str
    minutes: int = 0
    goals_scored: int = 0
    assists: int = 0
    clean_sheets: int = 0
    goals_conceded: int = 0
    own_goals: int = 0
    penalties_saved: int = 0
    penalties_missed: int = 0
    yellow_cards: int = 0
    red_cards: int = 0
    saves: int = 0
    bonus: int = 0
    bps: int = 0
    defensive_contribution: int = 0

    def to_stat_line(self) -> PlayerStatLine:
        validate_gameweek(self.gameweek)
        return PlayerStatLine(
            player_id=self.player_id,
            gameweek=self.gameweek,
            position=position_id(self.position),
            minutes=self.minutes,
            goals_scored=self.goals_scored,
            assists=self.assists,
            clean_sheets=self.clean_sheets,
            goals_conceded=self.goals_conceded,
            own_goals=self.own_goals,
            penalties_saved=self.penalties_saved,
            penalties_missed=self.penalties_missed,
            yellow_cards=self.yellow_cards,
            red_cards=self.red_cards,
            saves=self.saves,
            bonus=self.bonus,
            bps=self.bps,
            defensive_contribution=self.defensive_contribution,
        )


def position_label(pos: int) -> str:
    return POSITION_MAP.get(pos, "???")
