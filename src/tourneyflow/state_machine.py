"""Tournament state machine.

The lifecycle of a tournament is a single ``TournamentStatus`` value that only
moves along the edges of a fixed transition table. Formats without a group
stage (or without a bracket stage) use their own table that skips the states
they never visit.

The machine is stateless: it only answers questions about statuses, so one
instance can be shared freely between threads.
"""

import logging
from typing import Optional

from tourneyflow.errors import InvalidTransitionError
from tourneyflow.models import Format, TournamentStatus as S

logger = logging.getLogger(__name__)


# Valid transitions: {current_status: (allowed_next_statuses)}
DEFAULT_TRANSITIONS: dict[S, tuple[S, ...]] = {
    S.SETUP: (S.SEEDING_GROUPS, S.CANCELLED),
    S.SEEDING_GROUPS: (S.GROUPS_IN_PROGRESS, S.CANCELLED),
    S.GROUPS_IN_PROGRESS: (S.GROUPS_COMPLETED, S.CANCELLED),
    S.GROUPS_COMPLETED: (S.SEEDING_BRACKET, S.CANCELLED),
    S.SEEDING_BRACKET: (S.BRACKET_IN_PROGRESS, S.CANCELLED),
    S.BRACKET_IN_PROGRESS: (S.FINISHED, S.CANCELLED),
    S.FINISHED: (),
    S.CANCELLED: (),
}

BRACKET_ONLY_TRANSITIONS: dict[S, tuple[S, ...]] = {
    S.SETUP: (S.SEEDING_BRACKET, S.CANCELLED),
    S.SEEDING_BRACKET: (S.BRACKET_IN_PROGRESS, S.CANCELLED),
    S.BRACKET_IN_PROGRESS: (S.FINISHED, S.CANCELLED),
    S.FINISHED: (),
    S.CANCELLED: (),
}

GROUPS_ONLY_TRANSITIONS: dict[S, tuple[S, ...]] = {
    S.SETUP: (S.SEEDING_GROUPS, S.CANCELLED),
    S.SEEDING_GROUPS: (S.GROUPS_IN_PROGRESS, S.CANCELLED),
    S.GROUPS_IN_PROGRESS: (S.FINISHED, S.CANCELLED),
    S.FINISHED: (),
    S.CANCELLED: (),
}

FORMAT_TRANSITIONS: dict[Format, dict[S, tuple[S, ...]]] = {
    Format.BRACKET_ONLY: BRACKET_ONLY_TRANSITIONS,
    Format.GROUPS_ONLY: GROUPS_ONLY_TRANSITIONS,
    Format.GROUPS_AND_BRACKET: DEFAULT_TRANSITIONS,
}

TRANSITION_STATES = frozenset({S.SEEDING_GROUPS, S.SEEDING_BRACKET})
ACTIVE_STATES = frozenset({S.GROUPS_IN_PROGRESS, S.BRACKET_IN_PROGRESS})
TERMINAL_STATES = frozenset({S.FINISHED, S.CANCELLED})


class TournamentStateMachine:
    """Table-driven validator for tournament status changes."""

    def transitions_for(self, fmt: Optional[Format] = None) -> dict[S, tuple[S, ...]]:
        """Return the transition table for a format (default table when None)."""
        if fmt is None:
            return DEFAULT_TRANSITIONS
        return FORMAT_TRANSITIONS[Format(fmt)]

    def get_allowed_transitions(self, current: S, fmt: Optional[Format] = None) -> tuple[S, ...]:
        """Statuses directly reachable from ``current``.

        Statuses a format never visits have no outgoing edges in that format.
        """
        return self.transitions_for(fmt).get(S(current), ())

    def is_transition_valid(self, current: S, target: S, fmt: Optional[Format] = None) -> bool:
        return S(target) in self.get_allowed_transitions(current, fmt)

    def validate_transition(self, current: S, target: S, fmt: Optional[Format] = None) -> None:
        """Check a status change.

        Args:
            current: Status the tournament is in now
            target: Status the caller wants to move to
            fmt: Tournament format; None validates against the default table

        Raises:
            InvalidTransitionError: If ``target`` is not a direct successor
                of ``current``. The error lists the allowed targets.
        """
        allowed = self.get_allowed_transitions(current, fmt)
        if S(target) not in allowed:
            logger.warning(
                "Rejected transition %s -> %s (format=%s)",
                S(current).value,
                S(target).value,
                Format(fmt).value if fmt is not None else "default",
            )
            raise InvalidTransitionError(S(current), S(target), allowed)

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def is_transition_state(self, status: S) -> bool:
        """True while a stage is being seeded (the tournament is processing)."""
        return S(status) in TRANSITION_STATES

    def is_active_state(self, status: S) -> bool:
        return S(status) in ACTIVE_STATES

    def is_terminal_state(self, status: S) -> bool:
        return S(status) in TERMINAL_STATES

    def can_score_matches(self, status: S) -> bool:
        """Games can only be scored while a stage is in progress."""
        return self.is_active_state(status)

    def can_modify_teams(self, status: S) -> bool:
        """Registrations can only change during setup."""
        return S(status) == S.SETUP


state_machine = TournamentStateMachine()


def apply_transition(tournament, target: S) -> S:
    """Move a tournament row to ``target`` after validating the change.

    The transition is checked against the table of the tournament's own
    format.

    Args:
        tournament: Object with ``status`` and ``format`` string attributes
        target: Status to move to

    Returns:
        The status the tournament was in before

    Raises:
        InvalidTransitionError: If the format does not allow the change
    """
    current = S(tournament.status)
    state_machine.validate_transition(current, target, Format(tournament.format))
    tournament.status = S(target).value
    logger.info("Tournament %s: %s -> %s", tournament.id, current.value, S(target).value)
    return current
