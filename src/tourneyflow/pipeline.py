"""Step pipeline runner.

A pipeline is an ordered list of step objects sharing one mutable context.
Each step returns True to continue or False to halt. Halting is not a
failure: it means there is nothing further to compute. After a halt only
steps flagged ``runs_after_halt`` (response building, broadcasting) still
run.

``Pipeline`` runs all steps of one invocation inside a single unit of work:
the staged changes commit together or not at all. After a failure the
rollback comes first, then ``compensate`` gets a chance to clean up.
"""

import logging
import threading
from typing import Optional, Sequence

from tourneyflow.errors import PipelineCancelledError
from tourneyflow.storage import DatabaseManager, unit_of_work

logger = logging.getLogger(__name__)


class CancellationToken:
    """Lets a caller cancel a run at the next step boundary before commit."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, where: str) -> None:
        if self.cancelled:
            raise PipelineCancelledError(f"Run cancelled before {where}")


class PipelineStep:
    """One step of a pipeline."""

    runs_after_halt = False

    @property
    def name(self) -> str:
        return type(self).__name__

    def execute(self, context) -> bool:
        """Apply the step to the context.

        Returns:
            True to continue with the next step, False to halt
        """
        raise NotImplementedError


class PipelineRunner:
    """Runs steps in order against one context."""

    def __init__(self, steps: Sequence[PipelineStep], cancel_token: Optional[CancellationToken] = None):
        self.steps = list(steps)
        self.cancel_token = cancel_token

    def run(self, context) -> bool:
        """Run every step.

        Returns:
            True if no step halted
        """
        halted_at = getattr(context, "halted_at", None)
        for step in self.steps:
            if self.cancel_token is not None:
                self.cancel_token.raise_if_cancelled(step.name)
            if halted_at is not None and not step.runs_after_halt:
                logger.debug("Skipping %s (halted at %s)", step.name, halted_at)
                continue

            logger.debug("Running step %s", step.name)
            proceed = step.execute(context)
            if not proceed and halted_at is None:
                halted_at = step.name
                logger.info("Pipeline halted at %s", step.name)

        if self.cancel_token is not None:
            self.cancel_token.raise_if_cancelled("commit")
        context.halted_at = halted_at
        return halted_at is None


class Pipeline:
    """Runs a step list inside one unit of work.

    Args:
        db: Database the unit of work is opened on
        cancel_token: Optional token checked between steps
    """

    def __init__(self, db: DatabaseManager, cancel_token: Optional[CancellationToken] = None):
        self.db = db
        self.cancel_token = cancel_token

    def build_steps(self) -> list[PipelineStep]:
        raise NotImplementedError

    def run(self, context):
        """Run every step and commit their changes together.

        Raises:
            Whatever a step raises; everything staged by the run is rolled
            back and ``compensate`` runs afterwards.
        """
        try:
            with unit_of_work(self.db) as uow:
                context.uow = uow
                PipelineRunner(self.build_steps(), self.cancel_token).run(context)
                uow.commit()
        except Exception:
            self._compensate_safely(context)
            raise
        finally:
            context.uow = None
        return context

    def compensate(self, context) -> None:
        """Clean up after a failed run, once its changes were rolled back."""

    def _compensate_safely(self, context) -> None:
        try:
            self.compensate(context)
        except Exception:
            logger.exception("Compensating cleanup failed for %s", type(self).__name__)
