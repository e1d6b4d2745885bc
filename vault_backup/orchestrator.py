"""Wires the components together and owns startup and shutdown."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from vault_backup.alerts.email import EmailNotifier, send_alert
from vault_backup.api.status import StatusServer
from vault_backup.config import Settings, parse_address_list
from vault_backup.errors import AuthError, PushSourceError, ReauthFailure, StartupFatal
from vault_backup.jobs.backup_pipeline import BackupPipeline
from vault_backup.jobs.retention import RetentionSweeper
from vault_backup.jobs.scheduler import setup_scheduler, shutdown_scheduler
from vault_backup.status import BackupStatus
from vault_backup.storage.base import StorageClient
from vault_backup.storage.google_drive import GoogleDriveStorage
from vault_backup.triggers.merger import EventMerger
from vault_backup.triggers.push import PushSource
from vault_backup.triggers.timer import TimerSource
from vault_backup.utils.tasks import create_background_task
from vault_backup.vault.renewal import RenewalLoop

logger = logging.getLogger(__name__)

StorageFactory = Callable[[Settings, Any], Awaitable[StorageClient]]
NotifierFactory = Callable[[Settings, Any], Awaitable[Optional[EmailNotifier]]]


async def build_drive_storage(settings: Settings, vault) -> StorageClient:
    """Google Drive client from a service account file or the Vault KV secret."""
    if settings.google_service_account_file:
        return await asyncio.to_thread(
            GoogleDriveStorage.from_service_account_file, settings.google_service_account_file
        )

    info = await vault.get_kv_secret(
        settings.google_service_account_kv_mount,
        settings.google_service_account_kv_path,
    )
    return await asyncio.to_thread(GoogleDriveStorage.from_service_account_info, info)


async def build_email_notifier(settings: Settings, vault) -> Optional[EmailNotifier]:
    """Email notifier with SMTP credentials from Vault, or None when email is not configured."""
    if not settings.email_host:
        logger.info("Email notifications disabled (no email host configured)")
        return None

    secret = await vault.get_kv_secret(settings.email_kv_mount, settings.email_kv_path)
    return EmailNotifier(
        host=settings.email_host,
        port=settings.email_host_port,
        username=secret.get("login"),
        password=secret.get("pass"),
        mailbox=settings.email_mailbox,
        recipients=parse_address_list(settings.email_notify_addresses),
    )


class Orchestrator:
    """
    Starts the renewal loop, trigger sources, pipeline and sweeper, and stops them.

    ``run()`` returns normally after ``request_stop()``, and raises
    ReauthFailure if the credential could not be kept alive.
    """

    def __init__(
        self,
        settings: Settings,
        vault,
        storage_factory: StorageFactory = build_drive_storage,
        notifier_factory: NotifierFactory = build_email_notifier,
        push_connector: Optional[Callable[..., Awaitable[Any]]] = None,
        status: Optional[BackupStatus] = None,
        log: Optional[logging.Logger] = None,
    ):
        self.settings = settings
        self.vault = vault
        self.handle = vault.handle
        self.status = status or BackupStatus()
        self._storage_factory = storage_factory
        self._notifier_factory = notifier_factory
        self._push_connector = push_connector
        self._log = log or logger
        self._stop_event = asyncio.Event()

        self.storage: Optional[StorageClient] = None
        self.notifier: Optional[EmailNotifier] = None
        self.merger: Optional[EventMerger] = None
        self.push: Optional[PushSource] = None
        self.timer: Optional[TimerSource] = None
        self.sweeper: Optional[RetentionSweeper] = None
        self.pipeline: Optional[BackupPipeline] = None
        self.renewal: Optional[RenewalLoop] = None
        self._renewal_task: Optional[asyncio.Task] = None
        self._push_task: Optional[asyncio.Task] = None
        self._status_server: Optional[StatusServer] = None
        self._started = False

    def request_stop(self) -> None:
        """Signal-safe stop request."""
        if not self._stop_event.is_set():
            self._log.info("Received stop request")
        self._stop_event.set()

    async def start(self) -> None:
        """
        Acquire the credential, open the subscription and start every component.

        Raises:
            StartupFatal: When any startup step fails
        """
        s = self.settings
        self._log.info("Starting Vault backup service...")

        try:
            credential = await self.vault.login(s.vault_app_role_id, s.vault_app_secret_id)
        except AuthError as e:
            raise StartupFatal(f"Unable to initialize vault connection @ {s.vault_address}: {e}") from e
        self.handle.install(credential)
        self._log.info("Connecting to vault: success!")

        try:
            self.storage = await self._storage_factory(s, self.vault)
        except Exception as e:
            raise StartupFatal(f"Unable to initialize remote storage: {e}") from e

        try:
            self.notifier = await self._notifier_factory(s, self.vault)
        except Exception as e:
            raise StartupFatal(f"Unable to initialize email notifier: {e}") from e

        self.merger = EventMerger(s.event_queue_size)

        push_kwargs = {}
        if self._push_connector is not None:
            push_kwargs["connector"] = self._push_connector
        self.push = PushSource(
            s.events_subscription_url,
            self.handle,
            s.google_on_event_deploy_folder_id,
            self.merger,
            max_reconnects=s.push_max_reconnects,
            reconnect_base_delay=s.push_reconnect_base_delay,
            reconnect_max_delay=s.push_reconnect_max_delay,
            **push_kwargs,
        )
        try:
            await self.push.connect()
        except PushSourceError as e:
            raise StartupFatal(str(e)) from e

        self.timer = TimerSource(self.merger, s.google_scheduled_deploy_folder_id)
        self.sweeper = RetentionSweeper(
            self.storage,
            s.google_backup_file_retention_days,
            max_concurrent_deletes=s.retention_max_concurrent_deletes,
            notifier=self.notifier,
            status=self.status,
        )
        self.pipeline = BackupPipeline(
            self.merger,
            self.vault,
            self.storage,
            s.vault_snapshot_folder,
            notifier=self.notifier,
            status=self.status,
        )
        self.renewal = RenewalLoop(
            self.vault,
            self.handle,
            s.vault_app_role_id,
            s.vault_app_secret_id,
            on_state_change=self.status.record_renewal_state,
        )

        try:
            setup_scheduler(
                self.timer.fire,
                s.vault_scheduled_snapshot_interval,
                self.sweeper.run,
                s.sweep_interval,
            )
        except StartupFatal:
            await self.push.close()
            raise

        self._renewal_task = asyncio.create_task(self.renewal.run(), name="credential_renewal")
        self._push_task = create_background_task(self.push.run(), task_name="vault_event_listener")
        self.pipeline.start()

        if s.status_server_enabled:
            self._status_server = StatusServer(self.status, s.status_server_host, s.status_server_port)
            self._status_server.start()

        self._started = True
        self._log.info("Vault backup service started")

    async def run(self) -> None:
        """
        Start, then wait for a stop request or for the renewal loop to end.

        Raises:
            StartupFatal: When startup fails
            ReauthFailure: When re-login failed during the run
        """
        try:
            await self.start()
        except StartupFatal:
            await self.shutdown()
            raise

        stop_task = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait({self._renewal_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop_task.cancel()
            await asyncio.gather(stop_task, return_exceptions=True)

        error = self._renewal_error()
        if isinstance(error, ReauthFailure):
            self.status.record_failure("credential renewal", str(error))
            await send_alert(self.notifier, "reauth_failed", str(error))

        await self.shutdown()

        if error is not None:
            raise error

    def _renewal_error(self) -> Optional[BaseException]:
        task = self._renewal_task
        if task is None or not task.done() or task.cancelled():
            return None
        return task.exception()

    async def shutdown(self) -> None:
        """Stop every component. Safe to call more than once."""
        self._log.info("Shutting down...")

        if self.renewal is not None:
            self.renewal.stop()
        if self._renewal_task is not None:
            await asyncio.gather(self._renewal_task, return_exceptions=True)

        shutdown_scheduler()

        if self.push is not None:
            await self.push.close()
        if self._push_task is not None:
            self._push_task.cancel()
            await asyncio.gather(self._push_task, return_exceptions=True)
            self._push_task = None

        if self.pipeline is not None:
            await self.pipeline.stop(self.settings.shutdown_timeout)

        if self._status_server is not None:
            await self._status_server.stop()
            self._status_server = None

        self._started = False
        self._log.info("Shutdown complete")
