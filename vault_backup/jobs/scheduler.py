"""APScheduler setup for the snapshot timer and the retention sweep."""

import logging
import re
from typing import Any, Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from vault_backup.errors import StartupFatal

logger = logging.getLogger(__name__)

_scheduler: Optional[AsyncIOScheduler] = None

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h|d)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(expression: str) -> float:
    """
    Parse a duration such as ``"90s"``, ``"30m"``, ``"1h30m"`` or ``"24h"`` into seconds.

    Raises:
        ValueError: When the expression is not a positive duration
    """
    text = expression.strip().lower()
    if not text:
        raise ValueError("Empty duration")

    position = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        seconds += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        position = match.end()

    if position != len(text):
        raise ValueError(f"Invalid duration: {expression!r}")
    if seconds <= 0:
        raise ValueError(f"Duration must be positive: {expression!r}")
    return seconds


def build_trigger(expression: str):
    """Turn an interval expression (duration or five-field crontab) into an APScheduler trigger."""
    if len(expression.split()) == 5:
        return CronTrigger.from_crontab(expression)
    return IntervalTrigger(seconds=parse_duration(expression))


def setup_scheduler(
    snapshot_job: Callable[[], Awaitable[Any]],
    snapshot_interval: str,
    sweep_job: Callable[[], Awaitable[Any]],
    sweep_interval: str,
) -> AsyncIOScheduler:
    """
    Set up and start the background scheduler.

    Raises:
        StartupFatal: When an interval is invalid or the scheduler cannot start
    """
    global _scheduler

    try:
        snapshot_trigger = build_trigger(snapshot_interval)
        sweep_trigger = build_trigger(sweep_interval)
    except ValueError as e:
        raise StartupFatal(f"Error while scheduling jobs: {e}") from e

    scheduler = AsyncIOScheduler()

    # Scheduled snapshot
    scheduler.add_job(
        snapshot_job,
        trigger=snapshot_trigger,
        id="scheduled_snapshot",
        name="Scheduled Vault Snapshot",
        replace_existing=True,
        coalesce=True,
    )

    # Retention cleanup of remote backups
    scheduler.add_job(
        sweep_job,
        trigger=sweep_trigger,
        id="retention_sweep",
        name="Retention Sweep",
        replace_existing=True,
        coalesce=True,
    )

    try:
        scheduler.start()
    except Exception as e:
        raise StartupFatal(f"Unable to start the scheduler: {e}") from e

    _scheduler = scheduler
    logger.info(
        f"Background scheduler started (snapshots every {snapshot_interval}, "
        f"retention sweep every {sweep_interval})"
    )
    return scheduler


def shutdown_scheduler() -> None:
    """Shutdown the scheduler."""
    global _scheduler

    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Background scheduler stopped")


def get_scheduler() -> Optional[AsyncIOScheduler]:
    """Get the current scheduler instance."""
    return _scheduler
