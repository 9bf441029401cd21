"""
Collaborator interfaces

The sync engine depends only on these protocols. The SQLite store in
``db_service`` and the sample source in ``sample_source`` are the bundled
implementations.
"""
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from epg_sync.services.sync_types import ChannelPayload, ProgramPayload


@runtime_checkable
class ProgramSource(Protocol):
    """Supplies channels and programs for one input."""

    async def get_channels(self) -> Sequence[ChannelPayload]:
        """Return every channel the input currently offers."""

    async def get_programs(
        self,
        channel: ChannelPayload,
        start_ms: int,
        end_ms: int,
    ) -> Sequence[ProgramPayload]:
        """Return programs for ``channel`` in ``[start_ms, end_ms)``.

        For repeatable channels this is one representative cycle only.
        """


@runtime_checkable
class Store(Protocol):
    """Channel/program persistence used by sync sessions."""

    async def get_channels(self, input_id: str) -> list[ChannelPayload]:
        ...

    async def upsert_channels(
        self,
        input_id: str,
        channels: Sequence[ChannelPayload],
    ) -> dict[str, int]:
        """Insert or update channels, returning external id -> internal id."""

    async def delete_channels(self, input_id: str, channel_ids: Sequence[int]) -> int:
        ...

    async def get_programs(self, channel_id: int) -> list[ProgramPayload]:
        ...

    async def write_programs(
        self,
        channel_id: int,
        inserts: Sequence[ProgramPayload],
        updates: Sequence[ProgramPayload],
        deletes: Sequence[ProgramPayload],
    ) -> None:
        """Apply one channel's program writes atomically."""

    async def delete_programs_ended_before(self, cutoff_ms: int) -> int:
        ...


@runtime_checkable
class Clock(Protocol):
    def now_ms(self) -> int:
        """Current time in UTC milliseconds."""
