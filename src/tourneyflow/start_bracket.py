"""Bracket stage start.

Steps:
1.  ValidateAndTransitionToSeedingBracket
2.  ValidateBracketNotSeeded
3.  GetAdvancedTeams
4.  RandomSeedTeams                        (bracket-only tournaments)
5.  ValidateTeamCount
6.  CalculateBracketStructure
7.  GenerateBracketMatches
8.  CreateBracketEntries
9.  MarkBracketAsSeeded
10. TransitionToBracketInProgress
11. BuildBracketResponse

After groups, teams are seeded by group result: group winners first, then
runners-up. Bracket-only tournaments are drawn at random.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Optional

from tourneyflow.bracket import (
    bracket_layout,
    create_single_elimination_pairs,
    total_rounds,
    validate_team_count,
)
from tourneyflow.errors import InvalidStateError, NotFoundError
from tourneyflow.formats import requires_bracket, requires_groups, total_games
from tourneyflow.group_builder import teams_advancing_per_group
from tourneyflow.models import (
    BestOf,
    EventKind,
    Format,
    NotificationEvent,
    StartBracketResult,
    TeamStatus,
    TournamentStatus,
)
from tourneyflow.pipeline import Pipeline, PipelineStep
from tourneyflow.rollback import StageRollback
from tourneyflow.standings import rank_group_entries, select_advancing_teams
from tourneyflow.state_machine import apply_transition
from tourneyflow.storage import UnitOfWork, unit_of_work

logger = logging.getLogger(__name__)


@dataclass
class StartBracketContext:
    tournament_id: int
    actor_name: str = "system"
    best_of: BestOf = BestOf.BO3
    remainder_policy: str = "drop"
    rng: random.Random = field(default_factory=random.Random)
    uow: Optional[UnitOfWork] = None

    tournament_format: Optional[Format] = None
    previous_status: Optional[TournamentStatus] = None
    bracket_standing_id: Optional[int] = None
    group_standing_ids: list[int] = field(default_factory=list)
    team_ids: list[int] = field(default_factory=list)  # Seed order
    pairs: list[tuple[int, int]] = field(default_factory=list)
    total_rounds: int = 0
    matches_created: int = 0
    new_status: Optional[TournamentStatus] = None
    events: list[NotificationEvent] = field(default_factory=list)
    message: str = ""
    halted_at: Optional[str] = None

    def to_result(self) -> StartBracketResult:
        return StartBracketResult(
            success=True,
            message=self.message,
            new_status=self.new_status,
            total_rounds=self.total_rounds,
            teams_advanced=len(self.team_ids),
        )


def _load_tournament(context):
    tournament = context.uow.tournaments.get_by_id(context.tournament_id)
    if tournament is None:
        raise NotFoundError("Tournament", context.tournament_id)
    return tournament


class ValidateAndTransitionToSeedingBracket(PipelineStep):
    def execute(self, context: StartBracketContext) -> bool:
        tournament = _load_tournament(context)
        fmt = tournament.tournament_format
        if not requires_bracket(fmt):
            raise InvalidStateError(f"Tournament {tournament.id} format '{fmt.value}' has no bracket stage")
        context.tournament_format = fmt
        context.previous_status = apply_transition(tournament, TournamentStatus.SEEDING_BRACKET)
        return True


class ValidateBracketNotSeeded(PipelineStep):
    def execute(self, context: StartBracketContext) -> bool:
        bracket = context.uow.standings.get_bracket(context.tournament_id)
        if bracket is None:
            raise NotFoundError("Bracket standing for tournament", context.tournament_id)
        if bracket.is_seeded:
            raise InvalidStateError(f"{bracket.name} is already seeded")
        context.bracket_standing_id = bracket.id
        return True


class GetAdvancedTeams(PipelineStep):
    """Collect the teams entering the bracket."""

    def execute(self, context: StartBracketContext) -> bool:
        uow = context.uow
        if not requires_groups(context.tournament_format):
            context.team_ids = [team.id for team in uow.teams.get_by_tournament(context.tournament_id)]
            return True

        groups = uow.standings.get_groups(context.tournament_id)
        unfinished = [g.name for g in groups if not g.is_finished]
        if not groups or unfinished:
            raise InvalidStateError(f"Groups not finished: {', '.join(unfinished) or 'none created'}")

        bracket = uow.standings.get_by_id(context.bracket_standing_id)
        per_group = teams_advancing_per_group(bracket.max_teams, len(groups))
        ranked = [rank_group_entries(uow.group_entries.get_by_standing(g.id)) for g in groups]
        advancing, eliminated = select_advancing_teams(
            ranked, per_group, bracket.max_teams, context.remainder_policy
        )

        advancing_set = set(advancing)
        for group_entries in ranked:
            for entry in group_entries:
                if entry.team_id in advancing_set:
                    entry.status = TeamStatus.ADVANCED.value
                else:
                    entry.status = TeamStatus.ELIMINATED.value

        context.group_standing_ids = [g.id for g in groups]
        context.team_ids = advancing
        logger.info(
            "%d teams advance from %d groups (%d per group, %d eliminated)",
            len(advancing), len(groups), per_group, len(eliminated),
        )
        return True


class RandomSeedTeams(PipelineStep):
    """Random draw for bracket-only tournaments."""

    def execute(self, context: StartBracketContext) -> bool:
        if context.tournament_format == Format.BRACKET_ONLY:
            context.rng.shuffle(context.team_ids)
        return True


class ValidateTeamCount(PipelineStep):
    def execute(self, context: StartBracketContext) -> bool:
        validate_team_count(len(context.team_ids))
        return True


class CalculateBracketStructure(PipelineStep):
    def execute(self, context: StartBracketContext) -> bool:
        context.pairs = create_single_elimination_pairs(context.team_ids)
        context.total_rounds = total_rounds(len(context.team_ids))
        return True


class GenerateBracketMatches(PipelineStep):
    """Round 1 with its teams, later rounds with empty slots."""

    def execute(self, context: StartBracketContext) -> bool:
        uow = context.uow
        games_per_match = total_games(context.best_of)
        layout = bracket_layout(len(context.team_ids))
        for number, (round_number, seed) in enumerate(layout, start=1):
            team_a_id, team_b_id = context.pairs[seed - 1] if round_number == 1 else (None, None)
            match = uow.matches.create(
                context.bracket_standing_id,
                context.best_of,
                team_a_id=team_a_id,
                team_b_id=team_b_id,
                round=round_number,
                seed=seed,
                match_number=number,
            )
            uow.games.create_for_match(match, games_per_match)
        context.matches_created = len(layout)
        return True


class CreateBracketEntries(PipelineStep):
    def execute(self, context: StartBracketContext) -> bool:
        for team_id in context.team_ids:
            context.uow.bracket_entries.create(context.tournament_id, context.bracket_standing_id, team_id)
        return True


class MarkBracketAsSeeded(PipelineStep):
    def execute(self, context: StartBracketContext) -> bool:
        bracket = context.uow.standings.get_by_id(context.bracket_standing_id)
        bracket.is_seeded = True
        return True


class TransitionToBracketInProgress(PipelineStep):
    def execute(self, context: StartBracketContext) -> bool:
        tournament = _load_tournament(context)
        apply_transition(tournament, TournamentStatus.BRACKET_IN_PROGRESS)
        context.new_status = TournamentStatus.BRACKET_IN_PROGRESS
        return True


class BuildBracketResponse(PipelineStep):
    runs_after_halt = True

    def execute(self, context: StartBracketContext) -> bool:
        context.message = (
            f"Bracket stage started successfully with {len(context.team_ids)} teams "
            f"across {context.total_rounds} rounds"
        )
        context.events.append(
            NotificationEvent(
                kind=EventKind.TOURNAMENT,
                tournament_id=context.tournament_id,
                entity_id=context.tournament_id,
                actor_name=context.actor_name,
            )
        )
        return True


class StartBracketPipeline(Pipeline):
    """Seed the bracket and open the bracket stage."""

    def build_steps(self) -> list[PipelineStep]:
        return [
            ValidateAndTransitionToSeedingBracket(),
            ValidateBracketNotSeeded(),
            GetAdvancedTeams(),
            RandomSeedTeams(),
            ValidateTeamCount(),
            CalculateBracketStructure(),
            GenerateBracketMatches(),
            CreateBracketEntries(),
            MarkBracketAsSeeded(),
            TransitionToBracketInProgress(),
            BuildBracketResponse(),
        ]

    def compensate(self, context: StartBracketContext) -> None:
        if context.previous_status is None:
            return
        standing_ids = [context.bracket_standing_id] if context.bracket_standing_id else []
        with unit_of_work(self.db) as uow:
            StageRollback(uow).undo_failed_start(
                context.tournament_id,
                standing_ids,
                context.previous_status,
                TournamentStatus.SEEDING_BRACKET,
                reset_group_standing_ids=context.group_standing_ids,
            )
            uow.commit()
