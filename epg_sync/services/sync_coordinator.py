"""
Sync Coordination

Tracks in-flight sync sessions per input so at most one runs for a given
input at a time. Triggers that arrive while a session is active are dropped,
not queued.
"""
import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ActiveSync:
    task: asyncio.Task
    cancel_event: asyncio.Event


class SyncCoordinator:
    """
    Coordinates sync sessions to prevent concurrent runs for the same input.

    Sessions for different inputs are independent and may run concurrently.
    """

    def __init__(self):
        self._active: dict[str, ActiveSync] = {}

    def start(
        self,
        input_id: str,
        sync_func: Callable[[asyncio.Event], Coroutine[Any, Any, Any]],
    ) -> asyncio.Task | None:
        """
        Start a sync task for ``input_id`` unless one is already running.

        Args:
            input_id: Input identity the sync belongs to
            sync_func: Coroutine function receiving the session's cancel event

        Returns:
            The new task, or None if a sync for this input is in progress
        """
        if self.is_syncing(input_id):
            logger.warning("Sync for %s already in progress, skipping this request", input_id)
            return None

        cancel_event = asyncio.Event()
        task = asyncio.create_task(sync_func(cancel_event), name=f"epg-sync:{input_id}")
        active = ActiveSync(task=task, cancel_event=cancel_event)
        self._active[input_id] = active
        task.add_done_callback(lambda _: self._release(input_id, active))
        return task

    def cancel(self, input_id: str) -> bool:
        """
        Signal cancellation to the in-flight sync for ``input_id``.

        Returns:
            True if a running sync was signalled
        """
        active = self._active.get(input_id)
        if active is None or active.task.done():
            return False
        active.cancel_event.set()
        logger.info("Cancellation requested for in-flight sync of %s", input_id)
        return True

    def is_syncing(self, input_id: str) -> bool:
        active = self._active.get(input_id)
        return active is not None and not active.task.done()

    def active_inputs(self) -> list[str]:
        return [input_id for input_id in self._active if self.is_syncing(input_id)]

    async def wait(self, input_id: str) -> None:
        """Wait for the in-flight sync of ``input_id`` to finish, if any."""
        active = self._active.get(input_id)
        if active is not None:
            await asyncio.gather(active.task, return_exceptions=True)

    def _release(self, input_id: str, active: ActiveSync) -> None:
        if self._active.get(input_id) is active:
            del self._active[input_id]
