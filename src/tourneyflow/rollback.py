"""Cleanup for stage starts that failed.

A stage start runs in one unit of work, so a failure is first rolled back.
The cleanup then removes whatever structure still exists for the standings
the run touched, in dependency order (games, matches, participant entries),
clears their seeded flag and puts the tournament back in the status it had
before the run. It leaves the tournament alone when another run has moved it
on in the meantime.
"""

import logging
from typing import Optional, Sequence

from tourneyflow.errors import NotFoundError
from tourneyflow.models import TeamStatus, TournamentStatus
from tourneyflow.storage import UnitOfWork

logger = logging.getLogger(__name__)


class StageRollback:
    """Undo a partially started stage inside a unit of work."""

    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    def undo(
        self,
        tournament_id: int,
        standing_ids: Sequence[int],
        restore_status: Optional[TournamentStatus],
        reset_group_standing_ids: Sequence[int] = (),
    ) -> dict[str, int]:
        """Remove the structure of the given standings and restore the tournament.

        Args:
            tournament_id: Tournament whose stage start failed
            standing_ids: Standings the run was seeding
            restore_status: Status to put back (None leaves it unchanged)
            reset_group_standing_ids: Group standings whose entries were
                marked advanced/eliminated by the run

        Returns:
            Number of deleted rows per table
        """
        uow = self.uow
        tournament = uow.tournaments.get_by_id(tournament_id)
        if tournament is None:
            raise NotFoundError("Tournament", tournament_id)

        deleted = {
            "games": uow.games.delete_by_standings(standing_ids),
            "matches": uow.matches.delete_by_standings(standing_ids),
            "group_entries": uow.group_entries.delete_by_standings(standing_ids),
            "bracket_entries": uow.bracket_entries.delete_by_standings(standing_ids),
        }

        for standing_id in standing_ids:
            standing = uow.standings.get_by_id(standing_id)
            if standing is not None and standing.is_seeded:
                standing.is_seeded = False

        for standing_id in reset_group_standing_ids:
            for entry in uow.group_entries.get_by_standing(standing_id):
                if entry.status != TeamStatus.COMPETING.value:
                    entry.status = TeamStatus.COMPETING.value

        # Restoring is an undo, not a lifecycle step, so it bypasses the state machine
        if restore_status is not None and tournament.status != restore_status.value:
            logger.warning(
                "Restoring tournament %s status %s -> %s after failed stage start",
                tournament_id,
                tournament.status,
                restore_status.value,
            )
            tournament.status = restore_status.value

        logger.warning("Rolled back stage start for tournament %s: %s", tournament_id, deleted)
        return deleted

    def undo_failed_start(
        self,
        tournament_id: int,
        standing_ids: Sequence[int],
        previous_status: TournamentStatus,
        seeding_status: TournamentStatus,
        reset_group_standing_ids: Sequence[int] = (),
    ) -> Optional[dict[str, int]]:
        """Clean up after a rolled back stage start.

        Args:
            tournament_id: Tournament whose stage start failed
            standing_ids: Standings the run was seeding
            previous_status: Status the tournament had before the run
            seeding_status: SEEDING_* status of the failed stage
            reset_group_standing_ids: Group standings whose entries the run
                was marking

        Returns:
            Deleted rows per table, or None when the tournament has moved on
            and was left untouched
        """
        tournament = self.uow.tournaments.get_by_id(tournament_id)
        if tournament is None:
            raise NotFoundError("Tournament", tournament_id)
        if tournament.tournament_status not in (previous_status, seeding_status):
            logger.info(
                "Tournament %s is %s now, nothing to clean up after the failed start",
                tournament_id,
                tournament.status,
            )
            return None
        return self.undo(tournament_id, standing_ids, previous_status, reset_group_standing_ids)
