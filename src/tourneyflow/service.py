"""Tournament service: the operations exposed to callers.

Each operation runs its pipeline, dispatches the collected notifications
once the work is committed and turns domain errors into failure results.
Anything that is not a TournamentError is a bug and propagates.
"""

import logging
import random
from typing import Any, Optional

from tourneyflow.config_loader import DEFAULT_CONFIG, validate_config
from tourneyflow.errors import IntegrityViolationError, TournamentError
from tourneyflow.formats import parse_best_of
from tourneyflow.game_result import GameResultContext, GameResultPipeline
from tourneyflow.models import GameResultInput, ProcessResult, StartBracketResult, StartGroupsResult
from tourneyflow.notifier import ActorContext, Broadcaster, LoggingNotifier, Notifier, StaticActor
from tourneyflow.pipeline import CancellationToken
from tourneyflow.start_bracket import StartBracketContext, StartBracketPipeline
from tourneyflow.start_groups import StartGroupsContext, StartGroupsPipeline
from tourneyflow.storage import DatabaseManager

logger = logging.getLogger(__name__)


class TournamentService:
    """Facade over the tournament progression engine.

    Args:
        db: Database the engine works on
        config: Validated configuration (defaults when None)
        notifier: Receives change notifications (logging notifier when None)
        actor: Resolves who performs the actions
        broadcaster: Dispatcher for notifications; built from ``notifier``
            when None
    """

    def __init__(
        self,
        db: DatabaseManager,
        config: Optional[dict[str, Any]] = None,
        notifier: Optional[Notifier] = None,
        actor: Optional[ActorContext] = None,
        broadcaster: Optional[Broadcaster] = None,
    ):
        self.db = db
        self.config = config if config is not None else validate_config(
            {"database": {"path": str(db.db_path)}}
        )
        self.actor = actor or StaticActor()
        self.broadcaster = broadcaster or Broadcaster(
            notifier or LoggingNotifier(),
            max_workers=self.config.get("notifications", DEFAULT_CONFIG["notifications"])["max_workers"],
        )
        self.rng = random.Random(self.config.get("random_seed"))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def process_game_result(
        self,
        game_id: int,
        winner_id: int,
        team_a_score: Optional[int] = None,
        team_b_score: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ProcessResult:
        """Record a game result and apply everything that follows from it.

        Args:
            game_id: Game being reported
            winner_id: Team that won the game
            team_a_score: Optional score of team A
            team_b_score: Optional score of team B
            cancel_token: Lets the caller cancel before the result is committed

        Returns:
            ProcessResult; on failure ``error`` holds the error code and
            ``retriable`` tells whether trying again may succeed
        """
        context = GameResultContext(
            input=GameResultInput(game_id, winner_id, team_a_score, team_b_score),
            actor_name=self.actor.current_user_name(),
        )
        try:
            GameResultPipeline(self.db, cancel_token).run(context)
        except TournamentError as e:
            self._log_failure("process_game_result", e, game_id=game_id, winner_id=winner_id)
            return ProcessResult(success=False, message=str(e), error=e.code, retriable=e.retriable)

        self.broadcaster.dispatch(context.events)
        return context.to_result()

    def start_group_stage(self, tournament_id: int) -> StartGroupsResult:
        """Draw the groups, generate round robin matches and open the group stage."""
        context = StartGroupsContext(
            tournament_id=tournament_id,
            actor_name=self.actor.current_user_name(),
            best_of=parse_best_of(self.config.get("group_best_of", "Bo3")),
            rng=self.rng,
        )
        try:
            StartGroupsPipeline(self.db).run(context)
        except TournamentError as e:
            self._log_failure("start_group_stage", e, tournament_id=tournament_id)
            return StartGroupsResult(success=False, message=str(e), error=e.code, retriable=e.retriable)

        self.broadcaster.dispatch(context.events)
        return context.to_result()

    def start_bracket_stage(self, tournament_id: int) -> StartBracketResult:
        """Seed the bracket, generate its matches and open the bracket stage."""
        context = StartBracketContext(
            tournament_id=tournament_id,
            actor_name=self.actor.current_user_name(),
            best_of=parse_best_of(self.config.get("bracket_best_of", "Bo3")),
            remainder_policy=self.config.get("advancement", {}).get("remainder_policy", "drop"),
            rng=self.rng,
        )
        try:
            StartBracketPipeline(self.db).run(context)
        except TournamentError as e:
            self._log_failure("start_bracket_stage", e, tournament_id=tournament_id)
            return StartBracketResult(success=False, message=str(e), error=e.code, retriable=e.retriable)

        self.broadcaster.dispatch(context.events)
        return context.to_result()

    def close(self) -> None:
        """Wait for pending notifications and stop the dispatcher."""
        self.broadcaster.drain()
        self.broadcaster.shutdown()

    @staticmethod
    def _log_failure(operation: str, error: TournamentError, **details) -> None:
        if isinstance(error, IntegrityViolationError):
            logger.error("%s: integrity violation %s (%s)", operation, error, details, exc_info=error)
        else:
            logger.warning("%s failed [%s]: %s (%s)", operation, error.code, error, details)
