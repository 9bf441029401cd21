"""
Sample program source

Generates a small deterministic guide: one repeatable channel looping a
single one-hour program, and one channel with five programs splitting the
requested window evenly. Useful for demos and for exercising a deployment
without a real provider.
"""
import logging
from collections.abc import Sequence

from epg_sync.services.sync_types import ChannelPayload, ProgramPayload
from epg_sync.utils.timezone import HOUR_MS


logger = logging.getLogger(__name__)

LOOP_CHANNEL_ID = "sample-loop"
SCHEDULE_CHANNEL_ID = "sample-schedule"
SCHEDULE_PROGRAM_COUNT = 5


class SampleProgramSource:
    """ProgramSource returning generated sample data."""

    def __init__(self, *, loop_program_ms: int = HOUR_MS):
        self.loop_program_ms = loop_program_ms

    async def get_channels(self) -> Sequence[ChannelPayload]:
        return [
            ChannelPayload(
                external_id=LOOP_CHANNEL_ID,
                display_name="Test Channel",
                display_number="1-1",
                repeatable=True,
                provider_data={"generator": "sample"},
            ),
            ChannelPayload(
                external_id=SCHEDULE_CHANNEL_ID,
                display_name="Sample Schedule",
                display_number="1-2",
                provider_data={"generator": "sample"},
            ),
        ]

    async def get_programs(
        self,
        channel: ChannelPayload,
        start_ms: int,
        end_ms: int,
    ) -> Sequence[ProgramPayload]:
        if channel.external_id == LOOP_CHANNEL_ID:
            # One cycle; offsets are relative, the tiler places it in time.
            return [
                ProgramPayload(
                    start_time_ms=0,
                    end_time_ms=self.loop_program_ms,
                    title="Around the Clock",
                    description="A looping sample program.",
                )
            ]

        if channel.external_id == SCHEDULE_CHANNEL_ID:
            slot_ms = max(1, (end_ms - start_ms) // SCHEDULE_PROGRAM_COUNT)
            return [
                ProgramPayload(
                    start_time_ms=start_ms + index * slot_ms,
                    end_time_ms=start_ms + (index + 1) * slot_ms,
                    title=f"Sample Program {index + 1}",
                    episode_title=f"Part {index + 1} of {SCHEDULE_PROGRAM_COUNT}",
                )
                for index in range(SCHEDULE_PROGRAM_COUNT)
            ]

        logger.warning("Sample source has no programs for channel %s", channel.external_id)
        return []
