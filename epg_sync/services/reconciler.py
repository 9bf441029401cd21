"""
Reconciliation utilities

This module diffs freshly fetched channels and programs against what the
store already holds and produces the minimal set of writes.
"""
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field, replace

from epg_sync.services.sync_types import ChannelPayload, ProgramPayload, SyncWindow

logger = logging.getLogger(__name__)

# Persisted program fields compared when deciding between update and no-op
PROGRAM_FIELDS = (
    "end_time_ms",
    "title",
    "episode_title",
    "description",
    "poster_art_url",
    "provider_data",
)

CHANNEL_FIELDS = (
    "display_name",
    "display_number",
    "repeatable",
    "provider_data",
)


@dataclass(slots=True)
class ProgramWriteSet:
    """Writes needed to bring one channel's stored programs in line with a fetch."""
    inserts: list[ProgramPayload] = field(default_factory=list)
    updates: list[ProgramPayload] = field(default_factory=list)
    deletes: list[ProgramPayload] = field(default_factory=list)
    unchanged: int = 0

    @property
    def write_count(self) -> int:
        return len(self.inserts) + len(self.updates) + len(self.deletes)

    @property
    def is_empty(self) -> bool:
        return self.write_count == 0


@dataclass(slots=True)
class ChannelWriteSet:
    """Channel writes for one input; ``unchanged`` already carries internal ids."""
    upserts: list[ChannelPayload] = field(default_factory=list)
    deletes: list[ChannelPayload] = field(default_factory=list)
    unchanged: list[ChannelPayload] = field(default_factory=list)


def create_program_key(program: ProgramPayload) -> tuple[int | None, int]:
    """
    Identity of a program slot: owning channel and start time.

    Args:
        program: ProgramPayload instance

    Returns:
        Tuple of (channel_id, start_time_ms)
    """
    return program.channel_id, program.start_time_ms


def _differs(left: object, right: object, fields: Sequence[str]) -> bool:
    return any(getattr(left, name) != getattr(right, name) for name in fields)


def reconcile_programs(
    fetched: Sequence[ProgramPayload],
    stored: Sequence[ProgramPayload],
    window: SyncWindow,
) -> ProgramWriteSet:
    """
    Compute the program writes for one channel.

    Fetched programs sharing a slot with a stored program update it in place
    when any persisted field changed, and produce no write otherwise. Stored
    programs overlapping the window with no fetched counterpart are deleted;
    stored programs outside the window are left alone.

    Args:
        fetched: Programs fetched or generated for the window
        stored: Programs currently persisted for the channel
        window: Sync window the fetch covered

    Returns:
        ProgramWriteSet with inserts, updates (carrying stored ids) and deletes
    """
    # Deduplicate by slot while preserving last occurrence
    incoming: dict[tuple[int | None, int], ProgramPayload] = {}
    for program in fetched:
        key = create_program_key(program)
        if key in incoming:
            logger.debug(
                "Replacing duplicate fetched program '%s' at %s",
                incoming[key].title,
                program.start_time_ms,
            )
        incoming[key] = program

    existing = {create_program_key(program): program for program in stored}
    write_set = ProgramWriteSet()

    for key, program in incoming.items():
        current = existing.get(key)
        if current is None:
            write_set.inserts.append(program)
        elif _differs(program, current, PROGRAM_FIELDS):
            write_set.updates.append(replace(program, id=current.id))
        else:
            write_set.unchanged += 1

    for key, program in existing.items():
        if key in incoming:
            continue
        if window.overlaps(program.start_time_ms, program.end_time_ms):
            write_set.deletes.append(program)

    logger.debug(
        "Program reconciliation: %s insert(s), %s update(s), %s delete(s), %s unchanged",
        len(write_set.inserts),
        len(write_set.updates),
        len(write_set.deletes),
        write_set.unchanged,
    )
    return write_set


def reconcile_channels(
    fetched: Sequence[ChannelPayload],
    stored: Sequence[ChannelPayload],
) -> ChannelWriteSet:
    """
    Compute the channel writes for one input, keyed by external id.

    Args:
        fetched: Channels reported by the source
        stored: Channels currently persisted for the input

    Returns:
        ChannelWriteSet; changed channels in ``upserts`` keep their stored id
    """
    deduped: dict[str, ChannelPayload] = {
        channel.external_id: channel for channel in fetched
    }
    existing = {channel.external_id: channel for channel in stored}
    write_set = ChannelWriteSet()

    for external_id, channel in deduped.items():
        current = existing.get(external_id)
        if current is None:
            write_set.upserts.append(replace(channel, id=None))
        elif _differs(channel, current, CHANNEL_FIELDS):
            write_set.upserts.append(replace(channel, id=current.id))
        else:
            write_set.unchanged.append(replace(channel, id=current.id))

    write_set.deletes = [
        channel for external_id, channel in existing.items() if external_id not in deduped
    ]

    logger.debug(
        "Channel reconciliation: %s upsert(s), %s delete(s), %s unchanged",
        len(write_set.upserts),
        len(write_set.deletes),
        len(write_set.unchanged),
    )
    return write_set
