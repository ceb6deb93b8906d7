"""
H2H Analytics - Error Taxonomy

UpstreamUnavailable: feed call failed or timed out, callers degrade.
InvalidGameweek / InvalidInput: malformed parameters, rejected as client errors.
PartialComputation: one manager's computation failed, neutral default used.
DataInconsistency: calculator total differs from provider total, warning only.
"""

from typing import Dict, Optional


class EngineError(Exception):
    """Base class for all engine errors."""


class UpstreamUnavailable(EngineError):
    """Upstream feed call failed, timed out or the circuit breaker is open."""

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class InvalidInput(EngineError, ValueError):
    """Malformed request parameter."""


class InvalidGameweek(InvalidInput):
    """Gameweek outside [1, 38]."""

    def __init__(self, gameweek):
        super().__init__(f"Invalid gameweek: {gameweek!r} (expected 1-38)")
        self.gameweek = gameweek


class PartialComputation(EngineError):
    """A single manager's computation failed; the rest of the league continues."""

    def __init__(self, entry_id: int, cause: Exception):
        super().__init__(f"Computation failed for entry {entry_id}: {cause}")
        self.entry_id = entry_id
        self.cause = cause


class DataInconsistency(EngineError):
    """Calculator total disagrees with the provider-reported total."""

    def __init__(
        self,
        player_id: int,
        calculated: int,
        provider_total: int,
        breakdown: Optional[Dict[str, int]] = None,
    ):
        super().__init__(
            f"Player {player_id}: calculated {calculated} != provider {provider_total}"
        )
        self.player_id = player_id
        self.calculated = calculated
        self.provider_total = provider_total
        self.breakdown = breakdown or {}

    @property
    def difference(self) -> int:
        return self.calculated - self.provider_total
