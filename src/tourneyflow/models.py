"""Data models for tourneyflow.

Domain model hierarchy:
- Tournament has a Format and a Status (driven by the state machine)
- Tournament contains Standings (one per group, one "Main Bracket")
- Standing contains Matches and participant entries
- Match contains Games (count fixed by its BestOf)

The persisted rows live in storage.py; this module holds the enums shared by
every layer and the plain dataclasses that flow in and out of the engine.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Format(str, Enum):
    """Tournament format."""

    BRACKET_ONLY = "bracket_only"
    GROUPS_ONLY = "groups_only"
    GROUPS_AND_BRACKET = "groups_and_bracket"


class TournamentStatus(str, Enum):
    """Tournament lifecycle status."""

    SETUP = "setup"  # Registration open
    SEEDING_GROUPS = "seeding_groups"
    GROUPS_IN_PROGRESS = "groups_in_progress"
    GROUPS_COMPLETED = "groups_completed"
    SEEDING_BRACKET = "seeding_bracket"
    BRACKET_IN_PROGRESS = "bracket_in_progress"
    FINISHED = "finished"
    CANCELLED = "cancelled"


class StandingType(str, Enum):
    """Kind of competitive container."""

    GROUP = "group"  # Round robin
    BRACKET = "bracket"  # Single elimination


class BestOf(str, Enum):
    """Match format."""

    BO1 = "Bo1"
    BO3 = "Bo3"
    BO5 = "Bo5"


class TeamStatus(str, Enum):
    """Status of a participant entry inside a standing."""

    COMPETING = "competing"
    ADVANCED = "advanced"
    ELIMINATED = "eliminated"
    CHAMPION = "champion"


class EventKind(str, Enum):
    """Kind of entity a change notification refers to."""

    GAME = "game"
    MATCH = "match"
    STANDING = "standing"
    TOURNAMENT = "tournament"


# ============================================================================
# Engine Inputs and Results
# ============================================================================


@dataclass
class GameResultInput:
    """A reported game result.

    Scores are optional; only the winner decides the game.
    """

    game_id: int
    winner_id: int
    team_a_score: Optional[int] = None
    team_b_score: Optional[int] = None


@dataclass
class TeamPlacement:
    """Final placement of one team in a finished tournament."""

    team_id: int
    placement: int
    eliminated_in_round: Optional[int] = None  # None for the champion and group-only events

    def __str__(self) -> str:
        """String representation."""
        return f"#{self.placement} Team {self.team_id}"


@dataclass
class ProcessResult:
    """Outcome of processing one game result."""

    success: bool
    message: str
    match_finished: bool = False
    winner_id: Optional[int] = None
    loser_id: Optional[int] = None
    standing_finished: bool = False
    all_groups_finished: bool = False
    tournament_finished: bool = False
    new_status: Optional[TournamentStatus] = None
    final_standings: list[TeamPlacement] = field(default_factory=list)
    error: Optional[str] = None  # Error code when success is False
    retriable: bool = False


@dataclass
class StandingProgressResult:
    """What a progress strategy decided after a match finished."""

    continue_pipeline: bool
    message: str
    standing_finished: bool = False
    all_groups_finished: bool = False
    tournament_finished: bool = False
    new_status: Optional[TournamentStatus] = None
    advanced_match_id: Optional[int] = None  # Next-round match the winner moved into


@dataclass
class StartGroupsResult:
    """Outcome of starting the group stage."""

    success: bool
    message: str
    new_status: Optional[TournamentStatus] = None
    groups_created: int = 0
    matches_created: int = 0
    error: Optional[str] = None
    retriable: bool = False


@dataclass
class StartBracketResult:
    """Outcome of starting the bracket stage."""

    success: bool
    message: str
    new_status: Optional[TournamentStatus] = None
    total_rounds: int = 0
    teams_advanced: int = 0
    error: Optional[str] = None
    retriable: bool = False


@dataclass(frozen=True)
class NotificationEvent:
    """A change notification emitted after a unit of work commits."""

    kind: EventKind
    tournament_id: int
    entity_id: int
    actor_name: str

    def __str__(self) -> str:
        """String representation."""
        return f"{self.kind.value}:{self.entity_id} (tournament {self.tournament_id}, by {self.actor_name})"
