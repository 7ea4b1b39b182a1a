"""Stats and progress strategies, one pair per standing type.

Groups accumulate wins, losses and points and finish when every match has
a winner. Brackets mark winners advanced and losers eliminated, and move the
winner into the next round until the final is decided.

The pipeline picks a strategy once from ``Standing.type`` through
``get_stats_strategy`` / ``get_progress_strategy``; adding a new standing
type means adding a pair here and registering it.
"""

import logging
from typing import Optional

from tourneyflow.bracket import is_final_match, next_slot
from tourneyflow.errors import IntegrityViolationError, NotFoundError
from tourneyflow.models import StandingProgressResult, StandingType, TeamStatus
from tourneyflow.storage import MatchORM, UnitOfWork

logger = logging.getLogger(__name__)

POINTS_PER_WIN = 3


# ============================================================================
# Stats Strategies
# ============================================================================


class StandingStatsStrategy:
    """Applies a finished match to the participant entries of a standing."""

    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    def update_stats(self, standing_id: int, winner_id: int, loser_id: int) -> None:
        raise NotImplementedError

    @staticmethod
    def _require(entry, standing_id: int, team_id: int):
        if entry is None:
            raise IntegrityViolationError(
                f"Participant not found: team {team_id} has no entry in standing {standing_id}"
            )
        return entry


class GroupStatsStrategy(StandingStatsStrategy):
    """Winner +1 win and +3 points, loser +1 loss."""

    def update_stats(self, standing_id: int, winner_id: int, loser_id: int) -> None:
        repo = self.uow.group_entries
        winner = self._require(repo.get_by_standing_and_team(standing_id, winner_id), standing_id, winner_id)
        loser = self._require(repo.get_by_standing_and_team(standing_id, loser_id), standing_id, loser_id)

        winner.wins += 1
        winner.points += POINTS_PER_WIN
        loser.losses += 1


class BracketStatsStrategy(StandingStatsStrategy):
    """Winner advanced into the next round, loser eliminated."""

    def update_stats(self, standing_id: int, winner_id: int, loser_id: int) -> None:
        repo = self.uow.bracket_entries
        winner = self._require(repo.get_by_standing_and_team(standing_id, winner_id), standing_id, winner_id)
        loser = self._require(repo.get_by_standing_and_team(standing_id, loser_id), standing_id, loser_id)

        winner.status = TeamStatus.ADVANCED.value
        winner.current_round += 1
        loser.status = TeamStatus.ELIMINATED.value


# ============================================================================
# Progress Strategies
# ============================================================================


class StandingProgressStrategy:
    """Decides what a finished match means for its standing."""

    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    def progress_standing(
        self, tournament_id: int, standing_id: int, match_id: int, winner_id: int
    ) -> StandingProgressResult:
        raise NotImplementedError

    def _load_standing(self, standing_id: int):
        standing = self.uow.standings.get_by_id(standing_id)
        if standing is None:
            raise NotFoundError("Standing", standing_id)
        return standing


class GroupProgressStrategy(StandingProgressStrategy):
    """A group finishes when all its matches have a winner."""

    def progress_standing(
        self, tournament_id: int, standing_id: int, match_id: int, winner_id: int
    ) -> StandingProgressResult:
        matches = self.uow.matches.get_by_standing(standing_id)
        if not all(m.winner_id is not None and m.loser_id is not None for m in matches):
            return StandingProgressResult(continue_pipeline=False, message="Match completed.")

        standing = self._load_standing(standing_id)
        if not standing.is_finished:
            standing.is_finished = True
            logger.info("Standing %s (%s) finished", standing.id, standing.name)

        groups = self.uow.standings.get_groups(tournament_id)
        if not groups or not all(group.is_finished for group in groups):
            return StandingProgressResult(
                continue_pipeline=False,
                message="Match completed and standing finished. Other groups still in progress.",
                standing_finished=True,
            )

        logger.info("All %d groups of tournament %s finished", len(groups), tournament_id)
        return StandingProgressResult(
            continue_pipeline=True,
            message="All groups finished!",
            standing_finished=True,
            all_groups_finished=True,
        )


class BracketProgressStrategy(StandingProgressStrategy):
    """Advance the winner, or finish the tournament after the final."""

    def progress_standing(
        self, tournament_id: int, standing_id: int, match_id: int, winner_id: int
    ) -> StandingProgressResult:
        match = self.uow.matches.get_by_id(match_id)
        if match is None:
            raise NotFoundError("Match", match_id)
        matches = self.uow.matches.get_by_standing(standing_id)

        if not is_final_match(match, matches):
            target = self.advance_winner(match, winner_id)
            return StandingProgressResult(
                continue_pipeline=False,
                message="Match completed. Winner advanced to next round.",
                advanced_match_id=target.id if target is not None else None,
            )

        standing = self._load_standing(standing_id)
        if not standing.is_finished:
            standing.is_finished = True
        logger.info("Final of standing %s decided, winner team %s", standing_id, winner_id)
        return StandingProgressResult(
            continue_pipeline=True,
            message="Tournament finished!",
            standing_finished=True,
            tournament_finished=True,
        )

    def advance_winner(self, match: MatchORM, winner_id: int) -> Optional[MatchORM]:
        """Place the winner of ``match`` into its next-round match.

        Odd seeds fill team A of the next match, even seeds team B. The
        games of the target match get the new team ids as well.

        Returns:
            The next-round match, or None when there is no match to advance
            into
        """
        next_round, next_seed, slot = next_slot(match.round, match.seed)
        target = self.uow.matches.get_by_round_and_seed(match.standing_id, next_round, next_seed)
        if target is None:
            return None

        current = target.team_a_id if slot == "a" else target.team_b_id
        if current is not None and current != winner_id:
            raise IntegrityViolationError(
                f"Slot {slot.upper()} of match {target.id} (round {next_round}, seed {next_seed}) "
                f"already holds team {current}"
            )
        if slot == "a":
            target.team_a_id = winner_id
        else:
            target.team_b_id = winner_id

        for game in self.uow.games.get_by_match(target.id):
            game.team_a_id = target.team_a_id
            game.team_b_id = target.team_b_id

        logger.info(
            "Team %s advanced to round %s seed %s (slot %s)", winner_id, next_round, next_seed, slot.upper()
        )
        return target


STATS_STRATEGIES = {
    StandingType.GROUP: GroupStatsStrategy,
    StandingType.BRACKET: BracketStatsStrategy,
}

PROGRESS_STRATEGIES = {
    StandingType.GROUP: GroupProgressStrategy,
    StandingType.BRACKET: BracketProgressStrategy,
}


def get_stats_strategy(standing_type: StandingType, uow: UnitOfWork) -> StandingStatsStrategy:
    return STATS_STRATEGIES[StandingType(standing_type)](uow)


def get_progress_strategy(standing_type: StandingType, uow: UnitOfWork) -> StandingProgressStrategy:
    return PROGRESS_STRATEGIES[StandingType(standing_type)](uow)
