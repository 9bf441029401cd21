"""
Structured logging helpers for consistent log formatting.
"""
import logging
from datetime import datetime, timezone


def log_section_start(logger: logging.Logger, section_name: str) -> None:
    """
    Log the start of a processing section.

    Args:
        logger: Logger instance
        section_name: Name of the section being started
    """
    logger.info(f"Starting: {section_name}")


def log_section_end(logger: logging.Logger, section_name: str) -> None:
    """
    Log the end of a processing section.

    Args:
        logger: Logger instance
        section_name: Name of the section being ended
    """
    logger.info(f"Completed: {section_name}")


def log_sync_request(logger: logging.Logger, kind: str, input_id: str, period_ms: int) -> None:
    """Log an incoming sync request with its window length."""
    logger.info(
        f"{kind} sync requested for {input_id} "
        f"(window {period_ms / 3_600_000:.1f}h, at {datetime.now(timezone.utc).isoformat()})"
    )


def log_sync_summary(
    logger: logging.Logger,
    input_id: str,
    status: str,
    channels_count: int,
    writes_count: int
) -> None:
    """
    Log the outcome of a finished sync session.

    Args:
        logger: Logger instance
        input_id: Input the session synced
        status: Final session status
        channels_count: Number of channels processed
        writes_count: Number of program rows written
    """
    logger.info(
        f"Sync summary for {input_id} - Status: {status}, Channels: {channels_count}, Writes: {writes_count}"
    )
