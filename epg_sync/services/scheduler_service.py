import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from epg_sync.config import CustomSettings, settings as default_settings
from epg_sync.exceptions import UnknownInputError
from epg_sync.services.db_service import SqlAlchemyStore
from epg_sync.services.interfaces import Clock, ProgramSource, Store
from epg_sync.services.status_notifier import SyncStatusNotifier
from epg_sync.services.sync_coordinator import SyncCoordinator
from epg_sync.services.sync_session import SyncResult, SyncSession
from epg_sync.services.sync_types import SyncStatus, SyncStatusEvent
from epg_sync.utils.logging_helpers import log_sync_request, log_sync_summary
from epg_sync.utils.timezone import DAY_MS, SystemClock, compute_sync_window


logger = logging.getLogger(__name__)

CLEANUP_JOB_ID = "epg_cleanup"


def periodic_job_id(input_id: str) -> str:
    return f"epg_sync:{input_id}"


@dataclass(frozen=True, slots=True)
class PeriodicRegistration:
    period_ms: int
    interval_ms: int


class SyncScheduler:
    """Periodic and immediate EPG sync requests, one in-flight session per input"""

    def __init__(
        self,
        store: Store,
        *,
        notifier: SyncStatusNotifier | None = None,
        clock: Clock | None = None,
        coordinator: SyncCoordinator | None = None,
        settings: CustomSettings | None = None,
    ):
        self.store = store
        self.notifier = notifier or SyncStatusNotifier()
        self.clock = clock or SystemClock()
        self.coordinator = coordinator or SyncCoordinator()
        self.settings = settings or default_settings
        self.scheduler: AsyncIOScheduler | None = None
        self._sources: dict[str, ProgramSource] = {}
        self._periodic: dict[str, PeriodicRegistration] = {}

    @property
    def running(self) -> bool:
        return bool(self.scheduler and self.scheduler.running)

    def register_source(self, input_id: str, source: ProgramSource) -> None:
        """Make ``source`` the program source for ``input_id``"""
        self._sources[input_id] = source
        logger.info("Registered program source for %s: %s", input_id, type(source).__name__)

    def unregister_source(self, input_id: str) -> None:
        self.cancel_all_sync_requests(input_id)
        self._sources.pop(input_id, None)

    def registered_inputs(self) -> list[str]:
        return sorted(self._sources)

    def _get_source(self, input_id: str) -> ProgramSource:
        try:
            return self._sources[input_id]
        except KeyError:
            raise UnknownInputError(input_id) from None

    def start(self) -> None:
        """Start the scheduler with the retention job and any registered periodic syncs"""
        if self.running:
            logger.warning("Scheduler already running")
            return

        try:
            cleanup_trigger = CronTrigger.from_crontab(self.settings.epg_cleanup_cron, timezone="UTC")
        except (ValueError, KeyError) as exc:
            logger.error("Invalid cron expression '%s': %s", self.settings.epg_cleanup_cron, exc)
            raise

        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.scheduler.add_job(
            self._cleanup_job,
            trigger=cleanup_trigger,
            id=CLEANUP_JOB_ID,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self.settings.epg_sync_misfire_grace_sec,
        )
        for input_id, registration in self._periodic.items():
            self._add_periodic_job(input_id, registration)

        self.scheduler.start()
        logger.info(
            "Scheduler started with %s periodic sync(s)",
            len(self._periodic),
        )

    def shutdown(self) -> None:
        """Shutdown the scheduler and signal cancellation to running syncs"""
        for input_id in self.coordinator.active_inputs():
            self.coordinator.cancel(input_id)
        if self.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
        self.scheduler = None

    async def drain(self) -> None:
        """Wait for in-flight syncs to reach a final status"""
        active = self.coordinator.active_inputs()
        if active:
            logger.info("Waiting for %s in-flight sync(s) to stop", len(active))
            await asyncio.gather(*(self.coordinator.wait(input_id) for input_id in active))

    def request_periodic_sync(
        self,
        input_id: str,
        period_ms: int,
        *,
        interval_ms: int | None = None,
    ) -> None:
        """
        Register a recurring sync, replacing any previous registration.

        Args:
            input_id: Input to sync
            period_ms: Length of the window each run covers
            interval_ms: Time between runs; defaults to settings.epg_sync_interval_sec

        Raises:
            UnknownInputError: If no source is registered for input_id
            ValueError: If period or interval is not positive
        """
        self._get_source(input_id)
        if interval_ms is None:
            interval_ms = self.settings.epg_sync_interval_sec * 1000
        if period_ms <= 0 or interval_ms <= 0:
            raise ValueError("Sync period and interval must be positive")

        registration = PeriodicRegistration(period_ms=period_ms, interval_ms=interval_ms)
        self._periodic[input_id] = registration
        log_sync_request(logger, "Periodic", input_id, period_ms)
        if self.running:
            self._add_periodic_job(input_id, registration)

    def request_immediate_sync(self, input_id: str, period_ms: int) -> asyncio.Task | None:
        """
        Run one sync now without touching the periodic registration.

        Returns:
            Task resolving to the SyncResult, or None if a sync for the input is already running

        Raises:
            UnknownInputError: If no source is registered for input_id
        """
        log_sync_request(logger, "Immediate", input_id, period_ms)
        return self.trigger_sync(input_id, period_ms)

    def trigger_sync(self, input_id: str, period_ms: int) -> asyncio.Task | None:
        """Start a session for ``input_id`` unless one is in flight"""
        source = self._get_source(input_id)
        if period_ms <= 0:
            raise ValueError("Sync period must be positive")
        return self.coordinator.start(
            input_id,
            lambda cancel_event: self._run_session(input_id, source, period_ms, cancel_event),
        )

    def cancel_all_sync_requests(self, input_id: str) -> bool:
        """
        Drop the periodic registration and cancel any in-flight sync for ``input_id``.

        Returns:
            True if a registration or running sync was affected
        """
        had_registration = self._periodic.pop(input_id, None) is not None
        if self.scheduler:
            try:
                self.scheduler.remove_job(periodic_job_id(input_id))
            except JobLookupError:
                pass
        cancelled = self.coordinator.cancel(input_id)
        logger.info(
            "Cancelled sync requests for %s (periodic=%s, in_flight=%s)",
            input_id,
            had_registration,
            cancelled,
        )
        return had_registration or cancelled

    def get_periodic_registration(self, input_id: str) -> PeriodicRegistration | None:
        return self._periodic.get(input_id)

    def get_next_run_time(self, input_id: str) -> datetime | None:
        """Get next scheduled sync time for an input"""
        if not self.scheduler:
            return None
        job = self.scheduler.get_job(periodic_job_id(input_id))
        return job.next_run_time if job else None

    def is_syncing(self, input_id: str) -> bool:
        return self.coordinator.is_syncing(input_id)

    def _add_periodic_job(self, input_id: str, registration: PeriodicRegistration) -> None:
        self.scheduler.add_job(
            self._periodic_job,
            trigger=IntervalTrigger(seconds=registration.interval_ms / 1000, timezone="UTC"),
            args=[input_id, registration.period_ms],
            id=periodic_job_id(input_id),
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self.settings.epg_sync_misfire_grace_sec,
        )

    async def _periodic_job(self, input_id: str, period_ms: int) -> None:
        """Background job that triggers a periodic sync"""
        logger.info("Scheduled sync triggered for %s", input_id)
        try:
            self.trigger_sync(input_id, period_ms)
        except UnknownInputError as exc:
            logger.error("Scheduled sync skipped: %s", exc)

    async def _run_session(
        self,
        input_id: str,
        source: ProgramSource,
        period_ms: int,
        cancel_event: asyncio.Event,
    ) -> SyncResult:
        window = compute_sync_window(self.clock.now_ms(), period_ms)
        session = SyncSession(
            input_id,
            source,
            self.store,
            window=window,
            cancel_event=cancel_event,
            notifier=self.notifier,
        )

        self.notifier.publish(SyncStatusEvent(input_id=input_id, status=SyncStatus.STARTED))
        result = await session.run()
        self.notifier.publish(SyncStatusEvent(
            input_id=input_id,
            status=result.status,
            error_code=result.error_code,
        ))

        log_sync_summary(
            logger,
            input_id,
            result.status.value,
            len(result.channels),
            result.write_count,
        )
        return result

    async def _cleanup_job(self) -> int:
        """Background job deleting programs older than the archive depth"""
        cutoff_ms = self.clock.now_ms() - self.settings.max_epg_depth * DAY_MS
        logger.info("Scheduled program cleanup triggered (cutoff %s)", cutoff_ms)
        try:
            return await self.store.delete_programs_ended_before(cutoff_ms)
        except Exception as e:
            logger.error(f"Exception in scheduled cleanup: {e}", exc_info=True)
            return 0


sync_scheduler = SyncScheduler(SqlAlchemyStore())
