"""Exception hierarchy for the tournament engine.

Every domain error carries a short ``code`` so callers can tell failure kinds
apart without matching on message text.
"""

from typing import Iterable, Optional


class TournamentError(Exception):
    """Base class for all tournament engine errors."""

    code = "error"
    retriable = False


class NotFoundError(TournamentError):
    """Referenced tournament, standing, match, game or participant does not exist."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: Optional[int] = None):
        self.entity = entity
        self.entity_id = entity_id
        if entity_id is None:
            super().__init__(f"{entity} not found")
        else:
            super().__init__(f"{entity} {entity_id} not found")


class InvalidStateError(TournamentError):
    """Operation attempted outside its legal window."""

    code = "invalid_state"


class InvalidTransitionError(InvalidStateError):
    """Tournament status change not allowed by the state machine."""

    code = "invalid_transition"

    def __init__(self, from_status, to_status, allowed: Iterable = ()):
        self.from_status = from_status
        self.to_status = to_status
        self.allowed = list(allowed)
        allowed_str = ", ".join(_status_name(s) for s in self.allowed) or "none"
        super().__init__(
            f"Invalid state transition: {_status_name(from_status)} -> "
            f"{_status_name(to_status)}. Allowed: {allowed_str}"
        )


class InvalidTeamCountError(InvalidStateError):
    """Bracket seeding needs a power-of-two number of teams."""

    code = "invalid_team_count"

    def __init__(self, team_count: int):
        self.team_count = team_count
        super().__init__(
            f"Bracket needs a power of two number of teams (at least 2), got {team_count}"
        )


class ConflictError(TournamentError):
    """Concurrent modification detected; retry with fresh data."""

    code = "conflict"
    retriable = True


class IntegrityViolationError(TournamentError):
    """Internal invariant broken. Not recoverable by retry."""

    code = "integrity_violation"


class PipelineCancelledError(TournamentError):
    """Caller cancelled the run before commit."""

    code = "cancelled"


def _status_name(status) -> str:
    return getattr(status, "value", str(status))
