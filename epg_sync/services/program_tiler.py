"""
Repeat-cycle tiling

Expands the short template cycle of a repeatable channel into concrete
programs covering a sync window. Cycles are laid end to end from the most
recent multiple of the cycle duration (counted from the epoch) at or before
the window start, so every device produces identical instances for any
given absolute time.
"""
import logging
from collections.abc import Iterator, Sequence

from epg_sync.exceptions import InvalidRepeatCycle
from epg_sync.services.sync_types import ProgramPayload, SyncWindow


logger = logging.getLogger(__name__)


def cycle_duration_ms(templates: Sequence[ProgramPayload]) -> int:
    """
    Total duration of one repeat cycle.

    Args:
        templates: Ordered template programs of the cycle

    Returns:
        Sum of template durations in milliseconds

    Raises:
        InvalidRepeatCycle: If a template has negative duration or the total is not positive
    """
    total = 0
    for template in templates:
        if template.duration_ms < 0:
            raise InvalidRepeatCycle(
                f"Template '{template.title}' ends before it starts "
                f"({template.start_time_ms} -> {template.end_time_ms})"
            )
        total += template.duration_ms

    if total <= 0:
        raise InvalidRepeatCycle(
            f"Repeat cycle of {len(templates)} program(s) has no positive duration"
        )
    return total


def tile_programs(
    templates: Sequence[ProgramPayload],
    window: SyncWindow,
    *,
    channel_id: int | None = None,
) -> Iterator[ProgramPayload]:
    """
    Lazily generate programs tiling ``window`` from a repeat cycle.

    Instances intersecting the window are emitted whole; the first may start
    before the window and the last may end after it.

    Args:
        templates: Ordered template programs of one cycle
        window: Sync window to cover
        channel_id: Internal id of the owning channel stamped on each instance

    Yields:
        ProgramPayload instances in start-time order

    Raises:
        InvalidRepeatCycle: Raised before the first instance if the cycle is invalid
    """
    cycle_ms = cycle_duration_ms(templates)
    # Validate eagerly; the generator body runs only on first iteration.
    return _generate(list(templates), window, cycle_ms, channel_id)


def _generate(
    templates: list[ProgramPayload],
    window: SyncWindow,
    cycle_ms: int,
    channel_id: int | None,
) -> Iterator[ProgramPayload]:
    cursor = window.start_ms - window.start_ms % cycle_ms
    emitted = 0

    while cursor < window.end_ms:
        for template in templates:
            if cursor >= window.end_ms:
                break
            duration = template.duration_ms
            if duration == 0:
                continue
            end = cursor + duration
            if end > window.start_ms:
                emitted += 1
                yield template.moved_to(cursor, channel_id)
            cursor = end

    logger.debug(
        "Tiled %s program(s) from a %s-program cycle of %s ms over [%s, %s)",
        emitted,
        len(templates),
        cycle_ms,
        window.start_ms,
        window.end_ms,
    )
