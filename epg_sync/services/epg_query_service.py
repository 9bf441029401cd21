"""
EPG Query Service

Business logic for querying stored EPG data from the database.
This service handles all read operations used by the HTTP surface.
"""
from datetime import datetime, timezone
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from epg_sync.models import Channel, Program
from epg_sync.schemas import ChannelResponse, EPGRequest, EPGResponse, ProgramResponse
from epg_sync.utils.timezone import format_ms_in_timezone, parse_iso8601_to_utc, utc_datetime_to_ms

logger = logging.getLogger(__name__)


async def get_channels_for_input(db: AsyncSession, input_id: str) -> list[ChannelResponse]:
    """List the stored channels of an input"""
    result = await db.execute(
        select(Channel).where(Channel.input_id == input_id).order_by(Channel.id)
    )
    return [
        ChannelResponse(
            id=row.id,
            external_id=row.external_id,
            display_name=row.display_name,
            display_number=row.display_number,
            repeatable=row.repeatable,
        )
        for row in result.scalars().all()
    ]


async def get_epg_data(db: AsyncSession, request: EPGRequest) -> EPGResponse:
    """
    Get EPG data for multiple channels

    Args:
        db: Database session
        request: EPG request with channel ids, from_date, to_date, and timezone

    Returns:
        EPG data grouped by channel id with timestamps in requested timezone
    """
    logger.info(f"Received EPG request: {len(request.channel_ids)} channels, timezone={request.timezone}")
    logger.info(f"Date range: from_date={request.from_date}, to_date={request.to_date}")

    start_ms = utc_datetime_to_ms(parse_iso8601_to_utc(request.from_date))
    end_ms = utc_datetime_to_ms(parse_iso8601_to_utc(request.to_date))

    epg_data: dict[str, list[ProgramResponse]] = {}
    channels_found = 0
    total_programs = 0

    for channel_id in dict.fromkeys(request.channel_ids):
        rows = await _query_programs_for_channel(db, channel_id, start_ms, end_ms)
        if rows:
            channels_found += 1
        epg_data[str(channel_id)] = [
            ProgramResponse(
                id=row.id,
                start_time=format_ms_in_timezone(row.start_time_ms, request.timezone),
                end_time=format_ms_in_timezone(row.end_time_ms, request.timezone),
                title=row.title,
                episode_title=row.episode_title,
                description=row.description,
            )
            for row in rows
        ]
        total_programs += len(rows)

    logger.info(f"EPG response: {channels_found} channels found, {total_programs} programs, timezone={request.timezone}")

    return EPGResponse(
        timestamp=format_ms_in_timezone(
            utc_datetime_to_ms(datetime.now(timezone.utc)), request.timezone
        ),
        timezone=request.timezone,
        channels_requested=len(request.channel_ids),
        channels_found=channels_found,
        total_programs=total_programs,
        epg=epg_data,
    )


async def _query_programs_for_channel(
    db: AsyncSession,
    channel_id: int,
    start_ms: int,
    end_ms: int
) -> list[Program]:
    """
    Query programs of a channel overlapping a time range

    Args:
        db: Database session
        channel_id: Internal channel id
        start_ms: Start of range (UTC milliseconds)
        end_ms: End of range (UTC milliseconds)

    Returns:
        List of program rows ordered by start time
    """
    stmt = (
        select(Program)
        .where(
            Program.channel_id == channel_id,
            Program.start_time_ms < end_ms,
            Program.end_time_ms > start_ms,
        )
        .order_by(Program.start_time_ms)
    )

    result = await db.execute(stmt)
    return list(result.scalars().all())
