"""Status endpoints served alongside the backup service."""

import asyncio
import contextlib
import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI, status
from fastapi.responses import JSONResponse

from vault_backup import __version__
from vault_backup.status import BackupStatus
from vault_backup.utils.tasks import create_background_task

logger = logging.getLogger(__name__)


def create_status_app(backup_status: BackupStatus) -> FastAPI:
    """Build the FastAPI app exposing ``/health`` and ``/status``."""
    app = FastAPI(
        title="Vault Backup",
        description="Status of the Vault snapshot backup service",
        version=__version__,
    )

    @app.get("/health")
    async def health_check():
        """Health check endpoint for monitoring."""
        if backup_status.renewal_state == "terminated":
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "unhealthy", "error": "Vault credential renewal has stopped"},
            )
        return {"status": "healthy", "renewal_state": backup_status.renewal_state}

    @app.get("/status")
    async def get_status():
        """Backup counters and the last success, failure and sweep."""
        return backup_status.to_dict()

    return app


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the orchestrator."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class StatusServer:
    """Runs the status app with uvicorn inside the service's event loop."""

    def __init__(self, backup_status: BackupStatus, host: str, port: int, log_level: str = "warning"):
        config = uvicorn.Config(
            create_status_app(backup_status),
            host=host,
            port=port,
            log_level=log_level,
        )
        self._server = _EmbeddedServer(config)
        self._task: Optional[asyncio.Task] = None
        self.host = host
        self.port = port

    def start(self) -> asyncio.Task:
        self._task = create_background_task(self._server.serve(), task_name="status_server")
        logger.info(f"Status server listening on {self.host}:{self.port}")
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        self._server.should_exit = True
        await asyncio.gather(task, return_exceptions=True)
