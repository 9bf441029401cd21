"""
EPG Sync Session

Runs one end-to-end sync pass for a single input: fetch channels, reconcile
them, then fetch, tile and reconcile programs channel by channel.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, TypeVar

from epg_sync.exceptions import (
    InvalidRepeatCycle,
    NoChannelsAvailable,
    SourceUnavailable,
    StoreError,
    SyncCancelled,
    SyncError,
)
from epg_sync.services.interfaces import ProgramSource, Store
from epg_sync.services.program_tiler import tile_programs
from epg_sync.services.reconciler import reconcile_channels, reconcile_programs
from epg_sync.services.status_notifier import SyncStatusNotifier
from epg_sync.services.sync_types import (
    ChannelPayload,
    ProgramPayload,
    SyncErrorCode,
    SyncStatus,
    SyncStatusEvent,
    SyncWindow,
)
from epg_sync.utils.logging_helpers import log_section_end, log_section_start


logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionState(str, Enum):
    IDLE = "idle"
    FETCHING_CHANNELS = "fetching_channels"
    RECONCILING_CHANNELS = "reconciling_channels"
    SYNCING_PROGRAMS = "syncing_programs"
    FINISHED = "finished"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class ChannelSyncSummary:
    external_id: str
    display_name: str
    channel_id: int | None
    status: Literal["success", "failed"] = "success"
    programs_fetched: int = 0
    programs_inserted: int = 0
    programs_updated: int = 0
    programs_deleted: int = 0
    programs_unchanged: int = 0
    error: str | None = None

    def to_dict(self) -> dict:
        payload = {
            "external_id": self.external_id,
            "display_name": self.display_name,
            "channel_id": self.channel_id,
            "status": self.status,
            "programs_fetched": self.programs_fetched,
            "programs_inserted": self.programs_inserted,
            "programs_updated": self.programs_updated,
            "programs_deleted": self.programs_deleted,
            "programs_unchanged": self.programs_unchanged,
        }
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass(slots=True)
class SyncResult:
    input_id: str
    window: SyncWindow
    started_at: datetime
    completed_at: datetime | None = None
    status: SyncStatus = SyncStatus.STARTED
    error_code: SyncErrorCode | None = None
    error: str | None = None
    channels_upserted: int = 0
    channels_deleted: int = 0
    channels: list[ChannelSyncSummary] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        if self.completed_at is None:
            return 0.0
        return max(0.0, (self.completed_at - self.started_at).total_seconds())

    @property
    def write_count(self) -> int:
        return sum(
            summary.programs_inserted + summary.programs_updated + summary.programs_deleted
            for summary in self.channels
        )

    def to_dict(self) -> dict:
        payload = {
            "input_id": self.input_id,
            "status": self.status.value,
            "window_start_ms": self.window.start_ms,
            "window_end_ms": self.window.end_ms,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "channels_upserted": self.channels_upserted,
            "channels_deleted": self.channels_deleted,
            "channels_failed": sum(1 for s in self.channels if s.status == "failed"),
            "channel_details": [summary.to_dict() for summary in self.channels],
        }
        if self.error_code:
            payload["error_code"] = self.error_code.value
        if self.error:
            payload["error"] = self.error
        return payload


class SyncSession:
    """One sync pass over all channels of one input.

    Cancellation is cooperative: the cancel event is checked before the
    channel fetch, before channel reconciliation, and before each channel's
    program fetch. Calls already issued to the source or store complete.
    """

    def __init__(
        self,
        input_id: str,
        source: ProgramSource,
        store: Store,
        *,
        window: SyncWindow,
        cancel_event: asyncio.Event | None = None,
        notifier: SyncStatusNotifier | None = None,
    ) -> None:
        self.input_id = input_id
        self.source = source
        self.store = store
        self.window = window
        self.cancel_event = cancel_event or asyncio.Event()
        self.notifier = notifier
        self._state = SessionState.IDLE

    @property
    def state(self) -> SessionState:
        return self._state

    def cancel(self) -> None:
        self.cancel_event.set()

    async def run(self) -> SyncResult:
        """
        Execute the pass.

        Never raises for sync failures: session-scoped errors are logged and
        reported through the returned SyncResult.

        Returns:
            SyncResult with per-channel summaries

        Raises:
            RuntimeError: If the session has already been run
        """
        if self._state is not SessionState.IDLE:
            raise RuntimeError(f"Sync session for {self.input_id} has already run")

        result = SyncResult(
            input_id=self.input_id,
            window=self.window,
            started_at=datetime.now(timezone.utc),
        )
        log_section_start(logger, f"sync for input {self.input_id}")
        logger.info(
            "[%s] Target window: %s -> %s",
            self.input_id,
            self.window.start_ms,
            self.window.end_ms,
        )

        try:
            await self._sync(result)
        except SyncCancelled:
            self._state = SessionState.CANCELLED
            result.status = SyncStatus.CANCELLED
            logger.info(
                "[%s] Sync cancelled after %s channel(s)",
                self.input_id,
                len(result.channels),
            )
        except NoChannelsAvailable as exc:
            self._fail(result, SyncErrorCode.NO_CHANNELS, exc)
        except SourceUnavailable as exc:
            self._fail(result, SyncErrorCode.SOURCE_UNAVAILABLE, exc)
        except StoreError as exc:
            self._fail(result, SyncErrorCode.STORE_WRITE_FAILED, exc)
        except Exception as exc:  # Catch-all so a background job never crashes the scheduler
            self._fail(result, SyncErrorCode.UNKNOWN, exc)
        else:
            self._state = SessionState.FINISHED
            result.status = SyncStatus.FINISHED

        result.completed_at = datetime.now(timezone.utc)
        log_section_end(logger, f"sync for input {self.input_id} ({result.status.value})")
        return result

    def _fail(self, result: SyncResult, code: SyncErrorCode, exc: Exception) -> None:
        logger.error(
            "[%s] Sync failed during %s: %s",
            self.input_id,
            self._state.value,
            exc,
            exc_info=True,
        )
        self._state = SessionState.ERROR
        result.status = SyncStatus.ERROR
        result.error_code = code
        result.error = str(exc)

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise SyncCancelled(f"Sync for {self.input_id} was cancelled")

    async def _sync(self, result: SyncResult) -> None:
        self._check_cancelled()
        self._state = SessionState.FETCHING_CHANNELS
        channels = await self._call_source(
            "channel fetch",
            self.source.get_channels,
        )
        if not channels:
            raise NoChannelsAvailable(f"Source for {self.input_id} returned no channels")
        logger.info("[%s] Source reported %s channels", self.input_id, len(channels))

        self._check_cancelled()
        self._state = SessionState.RECONCILING_CHANNELS
        synced_channels = await self._sync_channels(channels, result)

        self._state = SessionState.SYNCING_PROGRAMS
        total = len(synced_channels)
        for index, channel in enumerate(synced_channels, start=1):
            self._check_cancelled()
            summary = await self._sync_channel(channel)
            result.channels.append(summary)
            if self.notifier:
                self.notifier.publish(SyncStatusEvent(
                    input_id=self.input_id,
                    status=SyncStatus.SCANNED,
                    channels_scanned=index,
                    channel_count=total,
                    channel_display_name=channel.display_name,
                ))

        failures = sum(1 for summary in result.channels if summary.status == "failed")
        logger.info(
            "[%s] Program sync complete: %s channels, %s failed, %s writes",
            self.input_id,
            total,
            failures,
            result.write_count,
        )

    async def _sync_channels(
        self,
        channels: Sequence[ChannelPayload],
        result: SyncResult,
    ) -> list[ChannelPayload]:
        """Reconcile the channel list and return it with internal ids assigned."""
        stored = await self.store.get_channels(self.input_id)
        write_set = reconcile_channels(channels, stored)

        id_map = {channel.external_id: channel.id for channel in write_set.unchanged}
        if write_set.upserts:
            id_map.update(await self.store.upsert_channels(self.input_id, write_set.upserts))
        if write_set.deletes:
            await self.store.delete_channels(
                self.input_id,
                [channel.id for channel in write_set.deletes if channel.id is not None],
            )

        result.channels_upserted = len(write_set.upserts)
        result.channels_deleted = len(write_set.deletes)
        logger.info(
            "[%s] Channels reconciled: %s upserted, %s deleted, %s unchanged",
            self.input_id,
            len(write_set.upserts),
            len(write_set.deletes),
            len(write_set.unchanged),
        )

        # Repeated external ids collapse to their last occurrence, as in reconciliation
        unique = {channel.external_id: channel for channel in channels}
        synced: list[ChannelPayload] = []
        for channel in unique.values():
            channel_id = id_map.get(channel.external_id)
            if channel_id is None:
                logger.warning(
                    "[%s] No internal id for channel %s; skipping its programs",
                    self.input_id,
                    channel.external_id,
                )
                continue
            channel.id = channel_id
            synced.append(channel)
        return synced

    async def _sync_channel(self, channel: ChannelPayload) -> ChannelSyncSummary:
        summary = ChannelSyncSummary(
            external_id=channel.external_id,
            display_name=channel.display_name,
            channel_id=channel.id,
        )

        fetched = await self._call_source(
            f"program fetch for {channel.external_id}",
            self.source.get_programs,
            channel,
            self.window.start_ms,
            self.window.end_ms,
        )
        try:
            programs = self._expand_programs(channel, fetched)
        except InvalidRepeatCycle as exc:
            logger.error("[%s] Channel %s: %s", self.input_id, channel.external_id, exc)
            summary.status = "failed"
            summary.error = str(exc)
            return summary
        summary.programs_fetched = len(programs)

        try:
            stored = await self.store.get_programs(channel.id)
            write_set = reconcile_programs(programs, stored, self.window)
            if not write_set.is_empty:
                await self.store.write_programs(
                    channel.id,
                    write_set.inserts,
                    write_set.updates,
                    write_set.deletes,
                )
        except StoreError as exc:
            logger.error(
                "[%s] Failed to store programs for channel %s: %s",
                self.input_id,
                channel.external_id,
                exc,
                exc_info=True,
            )
            summary.status = "failed"
            summary.error = str(exc)
            return summary

        summary.programs_inserted = len(write_set.inserts)
        summary.programs_updated = len(write_set.updates)
        summary.programs_deleted = len(write_set.deletes)
        summary.programs_unchanged = write_set.unchanged
        logger.info(
            "[%s] Channel %s: %s fetched, %s inserted, %s updated, %s deleted",
            self.input_id,
            channel.external_id,
            summary.programs_fetched,
            summary.programs_inserted,
            summary.programs_updated,
            summary.programs_deleted,
        )
        return summary

    def _expand_programs(
        self,
        channel: ChannelPayload,
        fetched: Sequence[ProgramPayload],
    ) -> list[ProgramPayload]:
        if channel.repeatable:
            return list(tile_programs(fetched, self.window, channel_id=channel.id))

        programs = []
        for program in fetched:
            if program.end_time_ms <= program.start_time_ms:
                logger.warning(
                    "[%s] Dropping program '%s' on %s: end %s is not after start %s",
                    self.input_id,
                    program.title,
                    channel.external_id,
                    program.end_time_ms,
                    program.start_time_ms,
                )
                continue
            program.channel_id = channel.id
            programs.append(program)
        return programs

    async def _call_source(
        self,
        description: str,
        func: Callable[..., Awaitable[Sequence[T]]],
        *args,
    ) -> list[T]:
        try:
            return list(await func(*args))
        except SyncError:
            raise
        except Exception as exc:
            raise SourceUnavailable(f"{description} failed for {self.input_id}: {exc}") from exc
