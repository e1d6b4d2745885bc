"""Retention sweep: delete remote backups older than the retention window."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from vault_backup.alerts.email import EmailNotifier, send_alert
from vault_backup.errors import RetentionSweepError, StorageError
from vault_backup.status import BackupStatus
from vault_backup.storage.base import RemoteEntry, StorageClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepResult:
    """Outcome of one sweep cycle."""

    selected: int
    deleted: int
    error: Optional[RetentionSweepError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def age_in_days(entry: RemoteEntry, now: datetime) -> int:
    """Whole days elapsed since ``entry`` was created."""
    created = entry.created_at
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return (now - created).days


def select_expired(
    entries: Iterable[RemoteEntry],
    retention_days: int,
    now: Optional[datetime] = None,
) -> List[RemoteEntry]:
    """Return the files older than ``retention_days``. Folders are never selected."""
    now = now or datetime.now(timezone.utc)
    return [
        entry
        for entry in entries
        if not entry.is_folder and age_in_days(entry, now) > retention_days
    ]


class RetentionSweeper:
    """Lists remote backups and deletes the expired ones concurrently."""

    def __init__(
        self,
        storage: StorageClient,
        retention_days: int,
        max_concurrent_deletes: int = 4,
        notifier: Optional[EmailNotifier] = None,
        status: Optional[BackupStatus] = None,
        log: Optional[logging.Logger] = None,
    ):
        if retention_days < 0:
            raise ValueError("Retention window must not be negative")
        self._storage = storage
        self.retention_days = retention_days
        self.max_concurrent_deletes = max(1, max_concurrent_deletes)
        self._notifier = notifier
        self._status = status
        self._log = log or logger

    async def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Run one sweep cycle.

        Every selected entry gets a deletion attempt; the result is reported
        only after all of them have finished.
        """
        try:
            entries = await asyncio.to_thread(self._storage.list)
        except StorageError as e:
            self._log.error(f"Retention sweep: unable to list remote backups: {e}")
            error = RetentionSweepError(f"Unable to list remote backups: {e}", [e])
            error.__cause__ = e
            return SweepResult(selected=0, deleted=0, error=error)

        expired = select_expired(entries, self.retention_days, now)
        if not expired:
            self._log.debug("Retention sweep: no outdated backups")
            return SweepResult(selected=0, deleted=0)

        self._log.info(f"Retention sweep: deleting {len(expired)} backup(s) older than {self.retention_days} days")

        semaphore = asyncio.Semaphore(self.max_concurrent_deletes)

        async def _delete(entry: RemoteEntry) -> None:
            async with semaphore:
                await asyncio.to_thread(self._storage.delete, entry.id)
            self._log.debug(f"Retention sweep: deleted {entry.name} ({entry.id})")

        results = await asyncio.gather(*(_delete(e) for e in expired), return_exceptions=True)

        failures: List[BaseException] = []
        for entry, result in zip(expired, results):
            if isinstance(result, BaseException):
                self._log.error(f"Error while deleting file {entry.name} ({entry.id}): {result}")
                failures.append(result)

        deleted = len(expired) - len(failures)
        error = None
        if failures:
            error = RetentionSweepError(
                f"{len(failures)} of {len(expired)} deletions failed; first error: {failures[0]}",
                failures,
            )
            error.__cause__ = failures[0]

        return SweepResult(selected=len(expired), deleted=deleted, error=error)

    async def run(self) -> SweepResult:
        """Scheduled job entry point: sweep, log, record. Never raises."""
        result = await self.sweep()

        if result.error is not None:
            self._log.error(
                f"Retention sweep: error when removing outdated backups "
                f"(deleted {result.deleted} of {result.selected}): {result.error}"
            )
            await send_alert(self._notifier, "retention_failed", str(result.error))
        else:
            self._log.info(f"Retention sweep: successfully deleted {result.deleted} backup files")

        if self._status is not None:
            self._status.record_sweep(
                result.selected,
                result.deleted,
                str(result.error) if result.error is not None else None,
            )
        return result
