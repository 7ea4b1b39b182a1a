"""Change notifications and actor identity.

The engine never talks to a transport directly. It collects NotificationEvent
values while a unit of work runs and hands them to a Broadcaster once the
work is committed. The Broadcaster fans the events out to a Notifier on a
thread pool; delivery is best effort and never affects the outcome of the
operation that produced the events.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Iterable, Optional

from tourneyflow.models import EventKind, NotificationEvent

logger = logging.getLogger(__name__)


# ============================================================================
# Actor identity
# ============================================================================


class ActorContext:
    """Resolves who performed the current action (audit and payloads only)."""

    def current_user_name(self) -> str:
        raise NotImplementedError


class StaticActor(ActorContext):
    """Actor context that always reports the same name."""

    def __init__(self, name: str = "system"):
        self.name = name

    def current_user_name(self) -> str:
        return self.name


# ============================================================================
# Notifiers
# ============================================================================


class Notifier:
    """Notification contract. Subclasses deliver events to clients."""

    def notify_game_changed(self, tournament_id: int, game_id: int, actor_name: str) -> None:
        raise NotImplementedError

    def notify_match_changed(self, tournament_id: int, match_id: int, actor_name: str) -> None:
        raise NotImplementedError

    def notify_standing_changed(self, tournament_id: int, standing_id: int, actor_name: str) -> None:
        raise NotImplementedError

    def notify_tournament_changed(self, tournament_id: int, entity_id: int, actor_name: str) -> None:
        raise NotImplementedError

    def send(self, event: NotificationEvent) -> None:
        """Route an event to the matching notify_* method."""
        handler = {
            EventKind.GAME: self.notify_game_changed,
            EventKind.MATCH: self.notify_match_changed,
            EventKind.STANDING: self.notify_standing_changed,
            EventKind.TOURNAMENT: self.notify_tournament_changed,
        }[event.kind]
        handler(event.tournament_id, event.entity_id, event.actor_name)


class LoggingNotifier(Notifier):
    """Notifier that writes every event to the log."""

    def notify_game_changed(self, tournament_id: int, game_id: int, actor_name: str) -> None:
        logger.info("Game %s updated in tournament %s by %s", game_id, tournament_id, actor_name)

    def notify_match_changed(self, tournament_id: int, match_id: int, actor_name: str) -> None:
        logger.info("Match %s updated in tournament %s by %s", match_id, tournament_id, actor_name)

    def notify_standing_changed(self, tournament_id: int, standing_id: int, actor_name: str) -> None:
        logger.info("Standing %s updated in tournament %s by %s", standing_id, tournament_id, actor_name)

    def notify_tournament_changed(self, tournament_id: int, entity_id: int, actor_name: str) -> None:
        logger.info("Tournament %s updated by %s", tournament_id, actor_name)


class Broadcaster:
    """Dispatches batches of events concurrently without blocking the caller.

    Args:
        notifier: Where events are delivered
        max_workers: Size of the dispatch thread pool
    """

    def __init__(self, notifier: Notifier, max_workers: int = 4):
        self.notifier = notifier
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")
        self._pending: list[Future] = []
        self._lock = threading.Lock()

    def dispatch(self, events: Iterable[NotificationEvent]) -> list[Future]:
        """Submit every event for delivery and return immediately."""
        futures = [self._executor.submit(self._deliver, event) for event in events]
        with self._lock:
            self._pending = [f for f in self._pending if not f.done()] + futures
        return futures

    def _deliver(self, event: NotificationEvent) -> None:
        try:
            self.notifier.send(event)
        except Exception:
            # Delivery failures never reach the caller
            logger.warning("Failed to deliver notification %s", event, exc_info=True)

    def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for all submitted deliveries to finish."""
        with self._lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)
        with self._lock:
            self._pending = [f for f in self._pending if not f.done()]

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
