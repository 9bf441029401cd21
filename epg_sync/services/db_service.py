"""
Database operations for EPG data

This module implements the sync engine's Store interface on top of the
SQLAlchemy async session.
"""
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from epg_sync.database import session_scope
from epg_sync.exceptions import StoreError, StoreWriteFailure
from epg_sync.models import Channel, Program
from epg_sync.services.sync_types import ChannelPayload, ProgramPayload


logger = logging.getLogger(__name__)

PROGRAM_CHUNK_SIZE = 5000


def channel_to_payload(row: Channel) -> ChannelPayload:
    return ChannelPayload(
        external_id=row.external_id,
        display_name=row.display_name,
        repeatable=row.repeatable,
        display_number=row.display_number,
        provider_data=dict(row.provider_data or {}),
        id=row.id,
    )


def program_to_payload(row: Program) -> ProgramPayload:
    return ProgramPayload(
        start_time_ms=row.start_time_ms,
        end_time_ms=row.end_time_ms,
        title=row.title,
        episode_title=row.episode_title,
        description=row.description,
        poster_art_url=row.poster_art_url,
        provider_data=dict(row.provider_data or {}),
        channel_id=row.channel_id,
        id=row.id,
    )


def _program_values(program: ProgramPayload) -> dict[str, object]:
    return {
        "start_time_ms": program.start_time_ms,
        "end_time_ms": program.end_time_ms,
        "title": program.title,
        "episode_title": program.episode_title,
        "description": program.description,
        "poster_art_url": program.poster_art_url,
        "provider_data": program.provider_data,
    }


@asynccontextmanager
async def _store_scope(action: str, error_cls: type[StoreError]) -> AsyncIterator[AsyncSession]:
    """Transaction that converts database errors into store errors."""
    try:
        async with session_scope() as session:
            yield session
    except SQLAlchemyError as exc:
        logger.error("Database error during %s: %s", action, exc, exc_info=True)
        raise error_cls(f"{action} failed: {exc}") from exc


class SqlAlchemyStore:
    """Store backed by the application database (see ``epg_sync.database``)."""

    async def get_channels(self, input_id: str) -> list[ChannelPayload]:
        """
        Load the stored channels of an input.

        Args:
            input_id: Input identity

        Returns:
            Channels ordered by internal id
        """
        async with _store_scope(f"channel load for {input_id}", StoreError) as session:
            result = await session.execute(
                select(Channel).where(Channel.input_id == input_id).order_by(Channel.id)
            )
            return [channel_to_payload(row) for row in result.scalars().all()]

    async def upsert_channels(
        self,
        input_id: str,
        channels: Sequence[ChannelPayload],
    ) -> dict[str, int]:
        """
        Insert new channels and update changed ones, preserving internal ids.

        Args:
            input_id: Input identity the channels belong to
            channels: Channels to write; ``id`` set means update in place

        Returns:
            Mapping of external id to internal id for the written channels
        """
        # Deduplicate by external_id while preserving last occurrence
        deduped: dict[str, ChannelPayload] = {
            channel.external_id: channel for channel in channels
        }
        if not deduped:
            logger.debug("No channels to store")
            return {}

        logger.info("Storing %s channels for %s", len(deduped), input_id)
        id_map: dict[str, int] = {}

        async with _store_scope(f"channel upsert for {input_id}", StoreWriteFailure) as session:
            result = await session.execute(
                select(Channel).where(
                    Channel.input_id == input_id,
                    Channel.external_id.in_(list(deduped)),
                )
            )
            rows = {row.external_id: row for row in result.scalars().all()}

            for external_id, channel in deduped.items():
                row = rows.get(external_id)
                if row is None:
                    row = Channel(input_id=input_id, external_id=external_id)
                    session.add(row)
                    rows[external_id] = row
                row.display_name = channel.display_name
                row.display_number = channel.display_number
                row.repeatable = channel.repeatable
                row.provider_data = dict(channel.provider_data)

            # Flush assigns internal ids to new rows
            await session.flush()
            for external_id in deduped:
                id_map[external_id] = rows[external_id].id

        logger.debug("Channel upsert complete: %s", id_map)
        return id_map

    async def delete_channels(self, input_id: str, channel_ids: Sequence[int]) -> int:
        """
        Delete channels of an input together with their programs.

        Returns:
            Number of deleted channels
        """
        ids = list(channel_ids)
        if not ids:
            return 0

        async with _store_scope(f"channel delete for {input_id}", StoreWriteFailure) as session:
            owned = select(Channel.id).where(Channel.input_id == input_id, Channel.id.in_(ids))
            await session.execute(delete(Program).where(Program.channel_id.in_(owned)))
            result = await session.execute(
                delete(Channel).where(Channel.input_id == input_id, Channel.id.in_(ids))
            )
            deleted = result.rowcount or 0

        logger.info("Deleted %s channels of %s removed at the source", deleted, input_id)
        return deleted

    async def get_programs(self, channel_id: int) -> list[ProgramPayload]:
        async with _store_scope(f"program load for channel {channel_id}", StoreError) as session:
            result = await session.execute(
                select(Program)
                .where(Program.channel_id == channel_id)
                .order_by(Program.start_time_ms)
            )
            return [program_to_payload(row) for row in result.scalars().all()]

    async def write_programs(
        self,
        channel_id: int,
        inserts: Sequence[ProgramPayload],
        updates: Sequence[ProgramPayload],
        deletes: Sequence[ProgramPayload],
    ) -> None:
        """
        Apply one channel's program writes in a single transaction.

        Deletes run first so a freed slot can be reinserted in the same pass.

        Args:
            channel_id: Internal id of the owning channel
            inserts: New programs
            updates: Changed programs carrying their stored id
            deletes: Stored programs to remove
        """
        async with _store_scope(f"program write for channel {channel_id}", StoreWriteFailure) as session:
            delete_ids = [program.id for program in deletes if program.id is not None]
            if delete_ids:
                await session.execute(
                    delete(Program).where(
                        Program.channel_id == channel_id,
                        Program.id.in_(delete_ids),
                    )
                )

            for program in updates:
                await session.execute(
                    update(Program)
                    .where(Program.id == program.id, Program.channel_id == channel_id)
                    .values(**_program_values(program))
                )

            now = datetime.now(timezone.utc)
            payload = [
                {**_program_values(program), "channel_id": channel_id, "created_at": now}
                for program in inserts
            ]
            for start_index in range(0, len(payload), PROGRAM_CHUNK_SIZE):
                chunk = payload[start_index:start_index + PROGRAM_CHUNK_SIZE]
                await session.execute(insert(Program), chunk)

        logger.debug(
            "Channel %s programs written: %s inserted, %s updated, %s deleted",
            channel_id,
            len(inserts),
            len(updates),
            len(delete_ids),
        )

    async def delete_programs_ended_before(self, cutoff_ms: int) -> int:
        """
        Delete programs that ended before the cutoff.

        Args:
            cutoff_ms: Remove programs with end_time_ms at or before this value

        Returns:
            Number of deleted programs
        """
        async with _store_scope("program retention cleanup", StoreWriteFailure) as session:
            result = await session.execute(
                select(func.count(Program.id)).where(Program.end_time_ms <= cutoff_ms)
            )
            deleted_count = result.scalar_one_or_none() or 0

            await session.execute(delete(Program).where(Program.end_time_ms <= cutoff_ms))

        logger.info("Deleted %s old programs (end_time_ms <= %s)", deleted_count, cutoff_ms)
        return deleted_count
