"""Shared fixtures: fake collaborators and a temporary SQLite database."""

import asyncio
from collections.abc import Sequence
from dataclasses import replace
from itertools import count

import pytest

from epg_sync.database import close_db, init_db
from epg_sync.exceptions import StoreWriteFailure
from epg_sync.services.db_service import SqlAlchemyStore
from epg_sync.services.status_notifier import SyncStatusNotifier
from epg_sync.services.sync_types import ChannelPayload, ProgramPayload

HOUR_MS = 60 * 60 * 1000
TWO_WEEKS_MS = 14 * 24 * HOUR_MS

# 2025-01-15T10:17:23.456Z
NOW_MS = 1736936243456


class FakeClock:
    def __init__(self, now_ms: int = NOW_MS):
        self.current_ms = now_ms

    def now_ms(self) -> int:
        return self.current_ms


class StaticSource:
    """ProgramSource serving fixed channels and per-channel programs."""

    def __init__(self, channels, programs=None):
        self.channels = list(channels)
        self.programs = dict(programs or {})
        self.program_calls: list[str] = []
        self.channel_calls = 0
        self.fail_channels: Exception | None = None
        self.fail_programs: dict[str, Exception] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.entered: dict[str, asyncio.Event] = {}

    async def get_channels(self) -> Sequence[ChannelPayload]:
        self.channel_calls += 1
        if self.fail_channels:
            raise self.fail_channels
        return [replace(channel, provider_data=dict(channel.provider_data)) for channel in self.channels]

    async def get_programs(self, channel, start_ms, end_ms) -> Sequence[ProgramPayload]:
        self.program_calls.append(channel.external_id)
        if channel.external_id in self.entered:
            self.entered[channel.external_id].set()
        if channel.external_id in self.gates:
            await self.gates[channel.external_id].wait()
        if channel.external_id in self.fail_programs:
            raise self.fail_programs[channel.external_id]
        return [replace(program) for program in self.programs.get(channel.external_id, [])]


class InMemoryStore:
    """Store keeping rows in dictionaries and counting writes."""

    def __init__(self):
        self._ids = count(1)
        self.channels: dict[int, tuple[str, ChannelPayload]] = {}
        self.programs: dict[int, ProgramPayload] = {}
        self.channel_writes = 0
        self.program_writes = 0
        self.fail_channel_writes = False
        self.fail_program_writes_for: set[int] = set()

    async def get_channels(self, input_id):
        return [
            replace(channel) for owner, channel in self.channels.values() if owner == input_id
        ]

    async def upsert_channels(self, input_id, channels):
        if self.fail_channel_writes:
            raise StoreWriteFailure("channel table is read-only")
        self.channel_writes += len(channels)
        id_map = {}
        for channel in channels:
            channel_id = channel.id
            if channel_id is None:
                channel_id = next(
                    (cid for cid, (owner, stored) in self.channels.items()
                     if owner == input_id and stored.external_id == channel.external_id),
                    None,
                ) or next(self._ids)
            self.channels[channel_id] = (input_id, replace(channel, id=channel_id))
            id_map[channel.external_id] = channel_id
        return id_map

    async def delete_channels(self, input_id, channel_ids):
        deleted = 0
        for channel_id in channel_ids:
            if self.channels.get(channel_id, (None,))[0] == input_id:
                del self.channels[channel_id]
                deleted += 1
                for program_id in [
                    pid for pid, program in self.programs.items() if program.channel_id == channel_id
                ]:
                    del self.programs[program_id]
        return deleted

    async def get_programs(self, channel_id):
        return sorted(
            (replace(p) for p in self.programs.values() if p.channel_id == channel_id),
            key=lambda p: p.start_time_ms,
        )

    async def write_programs(self, channel_id, inserts, updates, deletes):
        if channel_id in self.fail_program_writes_for:
            raise StoreWriteFailure(f"program table locked for channel {channel_id}")
        self.program_writes += len(inserts) + len(updates) + len(deletes)
        for program in deletes:
            self.programs.pop(program.id, None)
        for program in updates:
            self.programs[program.id] = replace(program, channel_id=channel_id)
        for program in inserts:
            program_id = next(self._ids)
            self.programs[program_id] = replace(program, channel_id=channel_id, id=program_id)

    async def delete_programs_ended_before(self, cutoff_ms):
        doomed = [pid for pid, p in self.programs.items() if p.end_time_ms <= cutoff_ms]
        for program_id in doomed:
            del self.programs[program_id]
        return len(doomed)

    def programs_for(self, external_id):
        channel_id = next(
            cid for cid, (_, channel) in self.channels.items() if channel.external_id == external_id
        )
        return sorted(
            (p for p in self.programs.values() if p.channel_id == channel_id),
            key=lambda p: p.start_time_ms,
        )


def make_program(start_ms, duration_ms=HOUR_MS, title="Program", **kwargs) -> ProgramPayload:
    return ProgramPayload(
        start_time_ms=start_ms,
        end_time_ms=start_ms + duration_ms,
        title=title,
        **kwargs,
    )


def two_channel_source(window_start_ms: int) -> StaticSource:
    """One repeatable channel with a single 1h template, one with five fetched programs."""
    channels = [
        ChannelPayload(external_id="loop", display_name="Test Channel", repeatable=True),
        ChannelPayload(external_id="news", display_name="News Channel"),
    ]
    programs = {
        "loop": [make_program(0, HOUR_MS, title="On Repeat")],
        "news": [
            make_program(window_start_ms + index * 2 * HOUR_MS, HOUR_MS, title=f"News {index}")
            for index in range(5)
        ],
    }
    return StaticSource(channels, programs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    return InMemoryStore()


@pytest.fixture
def notifier():
    return SyncStatusNotifier()


@pytest.fixture
def recorded_events(notifier):
    events = []
    notifier.subscribe(events.append)
    return events


@pytest.fixture
async def sqlite_store(tmp_path):
    await init_db(str(tmp_path / "epg_sync_test.db"))
    yield SqlAlchemyStore()
    await close_db()
