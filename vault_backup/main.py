"""Command-line entry point."""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional, Sequence

from vault_backup.config import get_settings, set_config_path
from vault_backup.errors import ReauthFailure, StartupFatal
from vault_backup.logging_config import configure_logging, shutdown_logging
from vault_backup.orchestrator import Orchestrator
from vault_backup.vault.client import VaultClient
from vault_backup.vault.credential import CredentialHandle

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="vault-backup",
        description="Back up HashiCorp Vault Raft snapshots to Google Drive.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path of the YAML configuration file",
    )
    return parser.parse_args(argv)


def _install_signal_handlers(orchestrator: Orchestrator) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, orchestrator.request_stop)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(orchestrator.request_stop))


async def run_service() -> None:
    """Build the service from settings and run it until stopped."""
    settings = get_settings()

    handle = CredentialHandle()
    vault = VaultClient(settings.vault_address, handle, timeout=settings.vault_request_timeout)
    orchestrator = Orchestrator(settings, vault)
    _install_signal_handlers(orchestrator)

    try:
        await orchestrator.run()
    finally:
        await vault.aclose()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    set_config_path(args.config)

    try:
        settings = get_settings()
    except Exception as e:
        print(f"Error when reading config file: {e}", file=sys.stderr)
        return 1

    configure_logging(settings.log_level, settings.log_file_path)

    try:
        asyncio.run(run_service())
    except StartupFatal as e:
        logger.critical(f"Startup failed: {e}")
        return 1
    except ReauthFailure as e:
        logger.critical(f"Lost Vault credentials: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1
    finally:
        shutdown_logging()

    return 0


if __name__ == "__main__":
    sys.exit(main())
