"""Game-result pipeline.

Processing one reported game runs these steps in order:

1. ScoreGame                  record the winner (and scores) on the game
2. CheckMatchCompletion       decide the match once a side has enough wins
3. UpdateStandingStats        apply the match outcome to participant entries
4. HandleStandingProgress     finish the standing / advance the winner
5. TransitionTournamentState  move the tournament to its next status
6. CalculateFinalPlacements   persist final placements when it finished
7. BroadcastUpdates           collect change events (always runs)
8. BuildResponse              make sure there is a message (always runs)

Steps 2 and 4 halt the pipeline when nothing further needs computing. The
whole run is one unit of work; events are dispatched only after it commits.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from tourneyflow.errors import IntegrityViolationError, InvalidStateError, NotFoundError
from tourneyflow.formats import games_to_win, requires_bracket
from tourneyflow.models import (
    EventKind,
    GameResultInput,
    NotificationEvent,
    ProcessResult,
    StandingType,
    TeamPlacement,
    TeamStatus,
    TournamentStatus,
)
from tourneyflow.pipeline import Pipeline, PipelineStep
from tourneyflow.standings import (
    calculate_bracket_placements,
    calculate_group_placements,
    rank_group_entries,
)
from tourneyflow.state_machine import apply_transition, state_machine
from tourneyflow.storage import GameORM, MatchORM, StandingORM, TournamentORM, UnitOfWork
from tourneyflow.strategies import get_progress_strategy, get_stats_strategy

logger = logging.getLogger(__name__)


@dataclass
class GameResultContext:
    """Facts accumulated while one game result flows through the steps."""

    input: GameResultInput
    actor_name: str = "system"
    uow: Optional[UnitOfWork] = None

    # Resolved by ScoreGame
    game: Optional[GameORM] = None
    match: Optional[MatchORM] = None
    standing: Optional[StandingORM] = None
    tournament: Optional[TournamentORM] = None
    tournament_id: Optional[int] = None
    already_recorded: bool = False

    match_finished: bool = False
    match_winner_id: Optional[int] = None
    match_loser_id: Optional[int] = None
    standing_type: Optional[StandingType] = None
    stats_updated: bool = False
    advanced_match_id: Optional[int] = None
    standing_finished: bool = False
    all_groups_finished: bool = False
    tournament_finished: bool = False
    new_tournament_status: Optional[TournamentStatus] = None
    final_standings: list[TeamPlacement] = field(default_factory=list)

    events: list[NotificationEvent] = field(default_factory=list)
    message: str = ""
    success: bool = True
    halted_at: Optional[str] = None

    def to_result(self) -> ProcessResult:
        return ProcessResult(
            success=self.success,
            message=self.message,
            match_finished=self.match_finished,
            winner_id=self.match_winner_id,
            loser_id=self.match_loser_id,
            standing_finished=self.standing_finished,
            all_groups_finished=self.all_groups_finished,
            tournament_finished=self.tournament_finished,
            new_status=self.new_tournament_status,
            final_standings=list(self.final_standings),
        )


# ============================================================================
# Steps
# ============================================================================


class ScoreGame(PipelineStep):
    """Record the winner and optional scores of the reported game."""

    def execute(self, context: GameResultContext) -> bool:
        uow = context.uow
        data = context.input

        game = uow.games.get_by_id(data.game_id)
        if game is None:
            raise NotFoundError("Game", data.game_id)
        match = uow.matches.get_by_id(game.match_id)
        if match is None:
            raise NotFoundError("Match", game.match_id)
        standing = uow.standings.get_by_id(match.standing_id)
        if standing is None:
            raise NotFoundError("Standing", match.standing_id)
        tournament = uow.tournaments.get_by_id(standing.tournament_id)
        if tournament is None:
            raise NotFoundError("Tournament", standing.tournament_id)

        context.game = game
        context.match = match
        context.standing = standing
        context.tournament = tournament
        context.tournament_id = tournament.id

        if match.winner_id is not None:
            raise InvalidStateError(
                f"Match {match.id} already has a winner (team {match.winner_id}); "
                f"game {game.id} can no longer be scored"
            )
        if not state_machine.can_score_matches(tournament.tournament_status):
            raise InvalidStateError(
                f"Tournament {tournament.id} is not accepting results (status: {tournament.status})"
            )
        if game.team_a_id is None or game.team_b_id is None:
            raise InvalidStateError(f"Game {game.id} has no opponent yet")
        if data.winner_id not in (game.team_a_id, game.team_b_id):
            raise InvalidStateError(
                f"Team {data.winner_id} does not play in game {game.id} "
                f"({game.team_a_id} vs {game.team_b_id})"
            )

        if game.winner_id == data.winner_id:
            context.already_recorded = True
            logger.info("Game %s already recorded with winner %s", game.id, data.winner_id)
        elif game.winner_id is not None:
            logger.info("Game %s corrected: winner %s -> %s", game.id, game.winner_id, data.winner_id)

        game.winner_id = data.winner_id
        if data.team_a_score is not None:
            game.team_a_score = data.team_a_score
        if data.team_b_score is not None:
            game.team_b_score = data.team_b_score

        # Touch the match so concurrent submissions for it conflict on its version
        match.updated_at = datetime.utcnow()

        context.message = "Game result recorded."
        return True


class CheckMatchCompletion(PipelineStep):
    """Decide the match when one side reaches the games-to-win threshold."""

    def execute(self, context: GameResultContext) -> bool:
        match = context.match
        games = context.uow.games.get_by_match(match.id)
        threshold = games_to_win(match.best_of)

        wins = Counter(g.winner_id for g in games if g.winner_id is not None)
        qualified = [team_id for team_id, count in wins.items() if count >= threshold]
        if not qualified:
            context.message = "Game result recorded. Match still in progress."
            return False

        winner_id = qualified[0]
        loser_id = match.team_b_id if winner_id == match.team_a_id else match.team_a_id
        if loser_id is None:
            raise IntegrityViolationError(f"Match {match.id} was won by team {winner_id} but has no loser")

        match.winner_id = winner_id
        match.loser_id = loser_id

        context.match_finished = True
        context.match_winner_id = winner_id
        context.match_loser_id = loser_id
        context.message = "Match completed."
        logger.info("Match %s won by team %s", match.id, winner_id)
        return True


class UpdateStandingStats(PipelineStep):
    """Apply the match outcome to the standing's participant entries."""

    def execute(self, context: GameResultContext) -> bool:
        context.standing_type = context.standing.standing_type
        strategy = get_stats_strategy(context.standing_type, context.uow)
        strategy.update_stats(context.standing.id, context.match_winner_id, context.match_loser_id)
        context.stats_updated = True
        return True


class HandleStandingProgress(PipelineStep):
    """Finish the standing or advance the winner, depending on its type."""

    def execute(self, context: GameResultContext) -> bool:
        strategy = get_progress_strategy(context.standing_type, context.uow)
        result = strategy.progress_standing(
            context.tournament_id,
            context.standing.id,
            context.match.id,
            context.match_winner_id,
        )

        context.standing_finished = result.standing_finished
        context.all_groups_finished = result.all_groups_finished
        context.tournament_finished = result.tournament_finished
        if result.new_status is not None:
            context.new_tournament_status = result.new_status
        context.advanced_match_id = result.advanced_match_id
        context.message = result.message
        return result.continue_pipeline


class TransitionTournamentState(PipelineStep):
    """Move the tournament on after all groups or the final finished."""

    def execute(self, context: GameResultContext) -> bool:
        if not (context.all_groups_finished or context.tournament_finished):
            return True

        tournament = context.tournament
        if context.tournament_finished:
            target = TournamentStatus.FINISHED
        elif requires_bracket(tournament.tournament_format):
            target = TournamentStatus.GROUPS_COMPLETED
        else:
            target = TournamentStatus.FINISHED

        # An invalid transition here means earlier state is inconsistent; let it propagate
        apply_transition(tournament, target)

        context.new_tournament_status = target
        if target == TournamentStatus.FINISHED:
            context.tournament_finished = True
            context.message = "Tournament finished!"
        else:
            context.message = "All groups finished! The bracket stage can now be started."
        return True


class CalculateFinalPlacements(PipelineStep):
    """Persist final placements once the tournament finished."""

    def execute(self, context: GameResultContext) -> bool:
        if not context.tournament_finished:
            return True

        uow = context.uow
        tournament = context.tournament

        if requires_bracket(tournament.tournament_format):
            bracket = uow.standings.get_bracket(tournament.id)
            if bracket is None:
                raise IntegrityViolationError(f"Tournament {tournament.id} has no bracket standing")
            placements = calculate_bracket_placements(uow.matches.get_by_standing(bracket.id))
            champion = uow.bracket_entries.get_by_standing_and_team(bracket.id, placements[0].team_id)
            if champion is None:
                raise IntegrityViolationError(
                    f"Participant not found: champion team {placements[0].team_id} has no bracket entry"
                )
            champion.status = TeamStatus.CHAMPION.value
        else:
            ranked = [
                rank_group_entries(uow.group_entries.get_by_standing(group.id))
                for group in uow.standings.get_groups(tournament.id)
            ]
            placements = calculate_group_placements(ranked)

        finalized_at = datetime.utcnow()
        for placement in placements:
            registration = uow.registrations.get_by_tournament_and_team(tournament.id, placement.team_id)
            if registration is None:
                raise IntegrityViolationError(
                    f"Team {placement.team_id} is not registered in tournament {tournament.id}"
                )
            registration.final_placement = placement.placement
            registration.eliminated_in_round = placement.eliminated_in_round
            registration.result_finalized_at = finalized_at

        context.final_standings = placements
        champion_team = uow.teams.get_by_id(placements[0].team_id)
        champion_name = champion_team.name if champion_team is not None else f"Team {placements[0].team_id}"
        context.message = f"TOURNAMENT FINISHED! Champion: {champion_name}"
        logger.info("Tournament %s finished, champion %s", tournament.id, champion_name)
        return True


class BroadcastUpdates(PipelineStep):
    """Collect the change events of this run for dispatch after commit."""

    runs_after_halt = True

    def execute(self, context: GameResultContext) -> bool:
        if context.tournament_id is None:
            return True

        def add(kind: EventKind, entity_id: int) -> None:
            context.events.append(
                NotificationEvent(
                    kind=kind,
                    tournament_id=context.tournament_id,
                    entity_id=entity_id,
                    actor_name=context.actor_name,
                )
            )

        add(EventKind.GAME, context.game.id)
        if context.match_finished:
            add(EventKind.MATCH, context.match.id)
        if context.advanced_match_id is not None:
            add(EventKind.MATCH, context.advanced_match_id)
        if context.stats_updated:
            add(EventKind.STANDING, context.standing.id)
        if context.new_tournament_status is not None:
            add(EventKind.TOURNAMENT, context.tournament_id)
        return True


class BuildResponse(PipelineStep):
    """Terminal step: guarantee a message."""

    runs_after_halt = True

    def execute(self, context: GameResultContext) -> bool:
        if not context.message:
            context.message = "Game result processed successfully."
        return True


class GameResultPipeline(Pipeline):
    """The ordered step list for processing one game result."""

    def build_steps(self) -> list[PipelineStep]:
        return [
            ScoreGame(),
            CheckMatchCompletion(),
            UpdateStandingStats(),
            HandleStandingProgress(),
            TransitionTournamentState(),
            CalculateFinalPlacements(),
            BroadcastUpdates(),
            BuildResponse(),
        ]
