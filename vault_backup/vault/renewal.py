"""Credential renewal loop.

Keeps the Vault token alive for the lifetime of the process:

    ACTIVE -> WATCHING            loop start / new credential installed
    WATCHING -> WATCHING          lease renewed in place
    WATCHING -> REAUTHENTICATING  lease can no longer be renewed
    REAUTHENTICATING -> WATCHING  login succeeded, new credential installed
    REAUTHENTICATING -> TERMINATED  login failed (ReauthFailure)
    any -> TERMINATED             stop requested

The old credential stays installed until its replacement is ready, so
readers of the handle never see a gap.
"""

import asyncio
import enum
import logging
from typing import AsyncIterator, Callable, Optional, Protocol

from vault_backup.errors import AuthError, ReauthFailure
from vault_backup.vault.credential import Credential, CredentialHandle
from vault_backup.vault.outcomes import (
    CancelRequested,
    Expiring,
    RenewalFailed,
    RenewalOutcome,
    Renewed,
)

logger = logging.getLogger(__name__)


class RenewalState(str, enum.Enum):
    ACTIVE = "active"
    WATCHING = "watching"
    REAUTHENTICATING = "reauthenticating"
    TERMINATED = "terminated"


class LeaseClient(Protocol):
    async def login(self, role_id: str, secret_id: str) -> Credential: ...

    def watch(self, credential: Credential) -> AsyncIterator[RenewalOutcome]: ...


class RenewalLoop:
    """Owns the credential handle and keeps its credential valid."""

    def __init__(
        self,
        client: LeaseClient,
        handle: CredentialHandle,
        role_id: str,
        secret_id: str,
        on_state_change: Optional[Callable[[RenewalState], None]] = None,
        log: Optional[logging.Logger] = None,
    ):
        self._client = client
        self._handle = handle
        self._role_id = role_id
        self._secret_id = secret_id
        self._on_state_change = on_state_change
        self._log = log or logger
        self._stop = asyncio.Event()
        self._state = RenewalState.ACTIVE

    @property
    def state(self) -> RenewalState:
        return self._state

    def _set_state(self, state: RenewalState) -> None:
        if state is self._state:
            return
        self._log.debug(f"Renewal loop: {self._state.value} -> {state.value}")
        self._state = state
        if self._on_state_change is not None:
            self._on_state_change(state)

    def stop(self) -> None:
        """Ask the loop to terminate at its next suspension point."""
        self._stop.set()

    async def run(self) -> None:
        """
        Run until stopped.

        Raises:
            ReauthFailure: When a re-login fails; the handle is invalidated first
        """
        self._log.info("Renew / re-login loop: begin")
        try:
            credential = self._handle.current()
            while True:
                self._set_state(RenewalState.WATCHING)
                outcome = await self._watch(credential)

                if isinstance(outcome, CancelRequested):
                    return

                if isinstance(outcome, RenewalFailed):
                    self._log.warning(f"Auth token: renewal failed ({outcome.cause}); will log in again")
                else:
                    self._log.info(f"Auth token: can no longer be renewed ({outcome.cause}); will log in again")

                self._set_state(RenewalState.REAUTHENTICATING)
                credential = await self._reauthenticate()
        finally:
            self._set_state(RenewalState.TERMINATED)
            self._log.info("Renew / re-login loop: end")

    async def _reauthenticate(self) -> Credential:
        try:
            credential = await self._client.login(self._role_id, self._secret_id)
        except AuthError as e:
            self._handle.invalidate()
            self._log.critical(f"Login authentication error: {e}")
            raise ReauthFailure(f"Re-login to Vault failed: {e}") from e
        except Exception as e:
            self._handle.invalidate()
            self._log.critical(f"Unexpected error during re-login: {e}", exc_info=True)
            raise ReauthFailure(f"Re-login to Vault failed: {e}") from e

        self._handle.install(credential)
        self._log.info("Auth token: new credential installed")
        return credential

    async def _watch(self, credential: Credential) -> RenewalOutcome:
        """Follow one credential's lease until it needs replacing or we stop."""
        stream = self._client.watch(credential)
        try:
            while True:
                outcome = await self._next_outcome(stream)
                if outcome is None:
                    if self._stop.is_set():
                        return CancelRequested()
                    return Expiring("lease watcher ended")

                if isinstance(outcome, Renewed):
                    self._handle.refresh_lease(credential, outcome.remaining)
                    self._log.info(
                        f"Auth token: successfully renewed; remaining duration: "
                        f"{int(outcome.remaining.total_seconds())}s"
                    )
                    continue

                return outcome
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _next_outcome(self, stream: AsyncIterator[RenewalOutcome]) -> Optional[RenewalOutcome]:
        """Wait for the next watcher outcome or the stop signal, whichever comes first."""
        if self._stop.is_set():
            return CancelRequested()

        next_task = asyncio.ensure_future(_pull(stream))
        stop_task = asyncio.ensure_future(self._stop.wait())
        try:
            done, pending = await asyncio.wait(
                {next_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            next_task.cancel()
            stop_task.cancel()
            raise

        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        if next_task in done:
            return next_task.result()
        return CancelRequested()


async def _pull(stream: AsyncIterator[RenewalOutcome]) -> Optional[RenewalOutcome]:
    try:
        return await stream.__anext__()
    except StopAsyncIteration:
        return None
