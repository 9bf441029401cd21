"""
Shared dataclasses used across the EPG sync pipeline.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any


@dataclass(slots=True)
class ChannelPayload:
    """In-memory representation of a channel row.

    ``external_id`` is assigned by the program source and is the
    reconciliation key; ``id`` is assigned by the store on first write.
    """
    external_id: str
    display_name: str
    repeatable: bool = False
    display_number: str | None = None
    provider_data: dict[str, Any] = field(default_factory=dict)
    id: int | None = None


@dataclass(slots=True)
class ProgramPayload:
    """In-memory representation of a program row, times in UTC milliseconds."""
    start_time_ms: int
    end_time_ms: int
    title: str
    episode_title: str | None = None
    description: str | None = None
    poster_art_url: str | None = None
    provider_data: dict[str, Any] = field(default_factory=dict)
    channel_id: int | None = None
    id: int | None = None

    @property
    def duration_ms(self) -> int:
        return self.end_time_ms - self.start_time_ms

    def moved_to(self, start_time_ms: int, channel_id: int | None) -> ProgramPayload:
        """Copy of this program placed at a new start time, keeping its duration."""
        return replace(
            self,
            start_time_ms=start_time_ms,
            end_time_ms=start_time_ms + self.duration_ms,
            channel_id=channel_id,
            id=None,
            provider_data=dict(self.provider_data),
        )


@dataclass(frozen=True, slots=True)
class SyncWindow:
    """Half-open ``[start_ms, end_ms)`` range a sync pass covers."""
    start_ms: int
    end_ms: int

    def __post_init__(self) -> None:
        if self.start_ms >= self.end_ms:
            raise ValueError(
                f"Sync window start ({self.start_ms}) must be before end ({self.end_ms})"
            )

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms

    def overlaps(self, start_ms: int, end_ms: int) -> bool:
        return start_ms < self.end_ms and end_ms > self.start_ms

    def contains(self, timestamp_ms: int) -> bool:
        return self.start_ms <= timestamp_ms < self.end_ms


class SyncStatus(str, Enum):
    STARTED = "started"
    SCANNED = "scanned"
    FINISHED = "finished"
    ERROR = "error"
    CANCELLED = "cancelled"


class SyncErrorCode(str, Enum):
    SOURCE_UNAVAILABLE = "source_unavailable"
    NO_CHANNELS = "no_channels"
    STORE_WRITE_FAILED = "store_write_failed"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class SyncStatusEvent:
    """Lifecycle notification broadcast to status observers."""
    input_id: str
    status: SyncStatus
    error_code: SyncErrorCode | None = None
    channels_scanned: int | None = None
    channel_count: int | None = None
    channel_display_name: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {
            "input_id": self.input_id,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.error_code is not None:
            payload["error_code"] = self.error_code.value
        if self.channel_count is not None:
            payload["channels_scanned"] = self.channels_scanned
            payload["channel_count"] = self.channel_count
            payload["channel_display_name"] = self.channel_display_name
        return payload


__all__ = [
    "ChannelPayload",
    "ProgramPayload",
    "SyncWindow",
    "SyncStatus",
    "SyncErrorCode",
    "SyncStatusEvent",
]
