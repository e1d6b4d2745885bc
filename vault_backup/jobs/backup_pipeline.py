"""Backup pipeline: consume triggers, take a snapshot, upload it."""

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional, Protocol

from vault_backup.alerts.email import EmailNotifier, send_alert
from vault_backup.errors import StorageError, VaultBackupError
from vault_backup.status import BackupStatus
from vault_backup.storage.base import StorageClient
from vault_backup.triggers.events import Trigger
from vault_backup.triggers.merger import EventMerger
from vault_backup.utils.tasks import create_background_task

logger = logging.getLogger(__name__)

SNAPSHOT_SUFFIX = ".snap"


class SnapshotTaker(Protocol):
    async def snapshot(self, destination_path) -> Path: ...


def snapshot_filename(timestamp: Optional[float] = None) -> str:
    """Name of a snapshot artifact: ``<unix_seconds>.snap``."""
    if timestamp is None:
        timestamp = time.time()
    return f"{int(timestamp)}{SNAPSHOT_SUFFIX}"


class BackupPipeline:
    """
    Processes merged triggers one at a time.

    A failed snapshot or upload is logged and the next trigger is processed;
    the pipeline itself only stops when asked to.
    """

    def __init__(
        self,
        merger: EventMerger,
        vault: SnapshotTaker,
        storage: StorageClient,
        snapshot_folder: str,
        notifier: Optional[EmailNotifier] = None,
        status: Optional[BackupStatus] = None,
        log: Optional[logging.Logger] = None,
    ):
        self._merger = merger
        self._vault = vault
        self._storage = storage
        self.snapshot_folder = Path(snapshot_folder)
        self._notifier = notifier
        self._status = status
        self._log = log or logger
        self._task: Optional[asyncio.Task] = None
        self._busy = False
        self._stopping = False

    @property
    def busy(self) -> bool:
        return self._busy

    async def process(self, trigger: Trigger) -> Optional[str]:
        """
        Back up once for ``trigger``.

        Returns the remote id of the uploaded snapshot, or None on failure.
        """
        source = trigger.describe()
        file_path = self.snapshot_folder / snapshot_filename()
        self._log.info(f"Event {source} received. Performing backup...")

        try:
            backup_file = await self._vault.snapshot(file_path)
        except VaultBackupError as e:
            await self._record_failure(trigger, file_path, f"snapshot failed: {e}")
            return None

        self._log.info(f"Backup {backup_file} created successfully")

        try:
            remote_id = await asyncio.to_thread(self._storage.upload, backup_file, trigger.destination)
        except StorageError as e:
            await self._record_failure(trigger, backup_file, f"upload failed: {e}")
            return None

        self._log.info(f"Backup {backup_file.name} deployed to {trigger.destination}; new file id: {remote_id}")
        if self._status is not None:
            self._status.record_success(source, str(backup_file), remote_id)
        return remote_id

    async def _record_failure(self, trigger: Trigger, file_path: Path, error: str) -> None:
        source = trigger.describe()
        self._log.error(
            f"Backup for {source} failed (file={file_path}, destination={trigger.destination}): {error}"
        )
        if self._status is not None:
            self._status.record_failure(source, error, str(file_path))
        await send_alert(
            self._notifier,
            "backup_failed",
            f"Trigger: {source}\nFile: {file_path}\nDestination: {trigger.destination}\nError: {error}",
        )

    async def run(self) -> None:
        """Consume triggers until stopped."""
        self._log.info("Backup pipeline started")
        while not self._stopping:
            trigger = await self._merger.get()
            self._busy = True
            try:
                await self.process(trigger)
            except Exception as e:
                self._log.exception(f"Unexpected error while backing up for {trigger.describe()}: {e}")
            finally:
                self._busy = False
                self._merger.task_done()
        self._log.info("Backup pipeline stopped")

    def start(self) -> asyncio.Task:
        self._task = create_background_task(self.run(), task_name="backup_pipeline")
        return self._task

    async def stop(self, timeout: float = 300.0) -> None:
        """Stop consuming, letting an in-flight backup finish within ``timeout`` seconds."""
        self._stopping = True
        task, self._task = self._task, None
        if task is None or task.done():
            return

        if not self._busy:
            task.cancel()

        done, _ = await asyncio.wait({task}, timeout=timeout)
        if not done:
            self._log.warning(f"In-flight backup did not finish within {timeout}s; abandoned")
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
