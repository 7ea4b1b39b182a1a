"""Group stage start.

Steps:
1. ValidateAndTransitionToSeedingGroups
2. ValidateStandingsNotSeeded
3. DistributeTeamsIntoGroups
4. CreateGroupEntries
5. GenerateRoundRobinMatches
6. MarkStandingsAsSeeded
7. TransitionToGroupsInProgress
8. BuildGroupsResponse

All steps run in one unit of work, so a failure leaves the tournament and
its groups exactly as they were before the run.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Optional

from tourneyflow.errors import InvalidStateError, NotFoundError
from tourneyflow.formats import requires_groups, total_games
from tourneyflow.group_builder import distribute_teams_into_groups, generate_round_robin_fixtures
from tourneyflow.models import BestOf, EventKind, NotificationEvent, StartGroupsResult, TournamentStatus
from tourneyflow.pipeline import Pipeline, PipelineStep
from tourneyflow.rollback import StageRollback
from tourneyflow.state_machine import apply_transition
from tourneyflow.storage import UnitOfWork, unit_of_work

logger = logging.getLogger(__name__)


@dataclass
class StartGroupsContext:
    tournament_id: int
    actor_name: str = "system"
    best_of: BestOf = BestOf.BO3
    rng: random.Random = field(default_factory=random.Random)
    uow: Optional[UnitOfWork] = None

    previous_status: Optional[TournamentStatus] = None
    group_standing_ids: list[int] = field(default_factory=list)
    assignments: dict[int, list[int]] = field(default_factory=dict)  # standing id -> team ids
    matches_created: int = 0
    new_status: Optional[TournamentStatus] = None
    events: list[NotificationEvent] = field(default_factory=list)
    message: str = ""
    halted_at: Optional[str] = None

    def to_result(self) -> StartGroupsResult:
        return StartGroupsResult(
            success=True,
            message=self.message,
            new_status=self.new_status,
            groups_created=len(self.group_standing_ids),
            matches_created=self.matches_created,
        )


def _load_tournament(context):
    tournament = context.uow.tournaments.get_by_id(context.tournament_id)
    if tournament is None:
        raise NotFoundError("Tournament", context.tournament_id)
    return tournament


class ValidateAndTransitionToSeedingGroups(PipelineStep):
    """Close registration by moving the tournament into SEEDING_GROUPS."""

    def execute(self, context: StartGroupsContext) -> bool:
        tournament = _load_tournament(context)
        if not requires_groups(tournament.tournament_format):
            raise InvalidStateError(
                f"Tournament {tournament.id} format '{tournament.format}' has no group stage"
            )
        context.previous_status = apply_transition(tournament, TournamentStatus.SEEDING_GROUPS)
        return True


class ValidateStandingsNotSeeded(PipelineStep):
    def execute(self, context: StartGroupsContext) -> bool:
        groups = context.uow.standings.get_groups(context.tournament_id)
        if not groups:
            raise NotFoundError("Group standings for tournament", context.tournament_id)
        seeded = [g.name for g in groups if g.is_seeded]
        if seeded:
            raise InvalidStateError(f"Groups already seeded: {', '.join(seeded)}")
        context.group_standing_ids = [g.id for g in groups]
        return True


class DistributeTeamsIntoGroups(PipelineStep):
    """Random draw of the registered teams into balanced groups."""

    def execute(self, context: StartGroupsContext) -> bool:
        uow = context.uow
        team_ids = [team.id for team in uow.teams.get_by_tournament(context.tournament_id)]
        groups = distribute_teams_into_groups(team_ids, len(context.group_standing_ids), context.rng)

        for standing_id, members in zip(context.group_standing_ids, groups):
            standing = uow.standings.get_by_id(standing_id)
            if len(members) < 2:
                raise InvalidStateError(f"{standing.name} would have {len(members)} team(s); at least 2 are needed")
            if len(members) > standing.max_teams:
                raise InvalidStateError(
                    f"{standing.name} holds at most {standing.max_teams} teams, draw placed {len(members)}"
                )
            context.assignments[standing_id] = members
        return True


class CreateGroupEntries(PipelineStep):
    def execute(self, context: StartGroupsContext) -> bool:
        for standing_id, members in context.assignments.items():
            for team_id in members:
                context.uow.group_entries.create(context.tournament_id, standing_id, team_id)
        return True


class GenerateRoundRobinMatches(PipelineStep):
    """One match per pair of teams in each group, with its games."""

    def execute(self, context: StartGroupsContext) -> bool:
        uow = context.uow
        games_per_match = total_games(context.best_of)
        for standing_id, members in context.assignments.items():
            fixtures = generate_round_robin_fixtures(len(members))
            for number, (pos_a, pos_b) in enumerate(fixtures, start=1):
                match = uow.matches.create(
                    standing_id,
                    context.best_of,
                    team_a_id=members[pos_a - 1],
                    team_b_id=members[pos_b - 1],
                    match_number=number,
                )
                uow.games.create_for_match(match, games_per_match)
            context.matches_created += len(fixtures)
            logger.info("Standing %s: %d teams, %d matches", standing_id, len(members), len(fixtures))
        return True


class MarkStandingsAsSeeded(PipelineStep):
    def execute(self, context: StartGroupsContext) -> bool:
        for standing_id in context.group_standing_ids:
            standing = context.uow.standings.get_by_id(standing_id)
            if standing.is_seeded:
                raise InvalidStateError(f"{standing.name} is already seeded")
            standing.is_seeded = True
        return True


class TransitionToGroupsInProgress(PipelineStep):
    def execute(self, context: StartGroupsContext) -> bool:
        tournament = _load_tournament(context)
        apply_transition(tournament, TournamentStatus.GROUPS_IN_PROGRESS)
        context.new_status = TournamentStatus.GROUPS_IN_PROGRESS
        return True


class BuildGroupsResponse(PipelineStep):
    runs_after_halt = True

    def execute(self, context: StartGroupsContext) -> bool:
        context.message = "Group stage started successfully"
        context.events.append(
            NotificationEvent(
                kind=EventKind.TOURNAMENT,
                tournament_id=context.tournament_id,
                entity_id=context.tournament_id,
                actor_name=context.actor_name,
            )
        )
        return True


class StartGroupsPipeline(Pipeline):
    """Seed all groups of a tournament and open the group stage."""

    def build_steps(self) -> list[PipelineStep]:
        return [
            ValidateAndTransitionToSeedingGroups(),
            ValidateStandingsNotSeeded(),
            DistributeTeamsIntoGroups(),
            CreateGroupEntries(),
            GenerateRoundRobinMatches(),
            MarkStandingsAsSeeded(),
            TransitionToGroupsInProgress(),
            BuildGroupsResponse(),
        ]

    def compensate(self, context: StartGroupsContext) -> None:
        if context.previous_status is None:
            return
        # Only standings that passed validation were touched by this run
        with unit_of_work(self.db) as uow:
            StageRollback(uow).undo_failed_start(
                context.tournament_id,
                context.group_standing_ids,
                context.previous_status,
                TournamentStatus.SEEDING_GROUPS,
            )
            uow.commit()
