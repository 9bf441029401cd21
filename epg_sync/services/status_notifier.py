"""
Sync status notifications

In-process broadcast of sync lifecycle events. Delivery is best-effort and
local: observers registered at publish time receive the event, nothing is
queued for late subscribers.
"""
import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable

from epg_sync.services.sync_types import SyncStatusEvent


logger = logging.getLogger(__name__)

StatusObserver = Callable[[SyncStatusEvent], None | Awaitable[None]]


class SyncStatusNotifier:
    """Fan-out of SyncStatusEvent to registered observers."""

    def __init__(self):
        self._observers: list[StatusObserver] = []
        self._last_events: dict[str, SyncStatusEvent] = {}
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, observer: StatusObserver) -> Callable[[], None]:
        """
        Register an observer.

        Args:
            observer: Function or coroutine function taking a SyncStatusEvent

        Returns:
            Callable that unsubscribes the observer
        """
        if observer not in self._observers:
            self._observers.append(observer)
        return lambda: self.unsubscribe(observer)

    def unsubscribe(self, observer: StatusObserver) -> None:
        try:
            self._observers.remove(observer)
        except ValueError:
            logger.debug("Observer %r was not subscribed", observer)

    def publish(self, event: SyncStatusEvent) -> None:
        """Deliver ``event`` to every current observer."""
        self._last_events[event.input_id] = event
        logger.debug("Sync status for %s: %s", event.input_id, event.status.value)

        for observer in list(self._observers):
            try:
                result = observer(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._on_observer_done)
            except Exception as exc:
                logger.error(
                    "Status observer %r failed for %s: %s",
                    observer,
                    event.input_id,
                    exc,
                    exc_info=True,
                )

    def last_event(self, input_id: str) -> SyncStatusEvent | None:
        return self._last_events.get(input_id)

    def _on_observer_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Async status observer failed: %s", exc, exc_info=exc)
