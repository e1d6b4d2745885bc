"""Utilities for managing background tasks."""

import asyncio
import logging
from typing import Any, Coroutine

logger = logging.getLogger(__name__)


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Error in background task '{task.get_name()}': {error}", exc_info=error)


def create_background_task(coro: Coroutine[Any, Any, Any], task_name: str = "background_task") -> asyncio.Task:
    """
    Start ``coro`` as a named task whose failure is logged as soon as it ends.

    The task's outcome is left intact: awaiting a failed task still raises,
    and cancellation still propagates.
    """
    task = asyncio.create_task(coro, name=task_name)
    task.add_done_callback(_log_task_failure)
    return task
