"""Process-wide logging setup.

Called once by the entry point. Components never configure logging
themselves; they receive a logger at construction or fall back to their
module logger.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def configure_logging(
    level: str = "info",
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name (debug, info, warning, ...)
        log_file: Optional path of a rotating log file
        max_bytes: Rotate the log file after this size
        backup_count: Number of rotated files to keep

    Raises:
        ValueError: When the level name is unknown
    """
    global _configured
    if _configured:
        return

    resolved = getattr(logging, str(level or "info").strip().upper(), None)
    if not isinstance(resolved, int):
        raise ValueError(f"Invalid log level: {level}")

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    file_error: Optional[OSError] = None

    if log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            handlers.append(
                RotatingFileHandler(
                    filename=log_file,
                    maxBytes=max_bytes,
                    backupCount=backup_count,
                    encoding="utf-8",
                )
            )
        except OSError as e:
            # Reported once the console handler is installed
            file_error = e

    logging.basicConfig(level=resolved, format=LOG_FORMAT, handlers=handlers, force=True)

    # APScheduler logs every job execution at INFO
    logging.getLogger("apscheduler.executors").setLevel(max(resolved, logging.WARNING))

    if file_error is not None:
        logging.getLogger(__name__).warning(
            f"Could not open log file {log_file}: {file_error}; logging to console only"
        )

    _configured = True


def shutdown_logging() -> None:
    """Flush and close all handlers."""
    global _configured
    logging.shutdown()
    _configured = False
