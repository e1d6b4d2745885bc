"""Vault HTTP API client: AppRole login, token renewal, Raft snapshots, KV reads."""

import asyncio
import logging
import os
import random
from datetime import timedelta
from pathlib import Path
from typing import AsyncIterator, Optional, Union

import httpx

from vault_backup.errors import AuthError, SnapshotError, VaultRequestError
from vault_backup.vault.credential import Credential, CredentialHandle
from vault_backup.vault.outcomes import Expiring, RenewalFailed, RenewalOutcome, Renewed

logger = logging.getLogger(__name__)

TOKEN_HEADER = "X-Vault-Token"

# Vault renews at roughly two thirds of the remaining lease
RENEW_FRACTION = 2 / 3
RENEW_JITTER = 0.1
MIN_GRACE_SECONDS = 5


def _error_detail(response: httpx.Response) -> str:
    """Extract Vault's error list from a response, falling back to the raw text."""
    try:
        body = response.json()
    except ValueError:
        body = None
    errors = body.get("errors") if isinstance(body, dict) else None
    if isinstance(errors, list) and errors:
        return "; ".join(str(e) for e in errors)
    return response.text.strip() or response.reason_phrase


def _json_object(response: httpx.Response, error_cls: type, what: str) -> dict:
    """Decode a JSON object body, raising ``error_cls`` for anything else."""
    try:
        body = response.json()
    except ValueError as e:
        raise error_cls(f"Vault returned an unreadable {what} response: {e}") from e
    if not isinstance(body, dict):
        raise error_cls(f"Vault returned an unexpected {what} response: {type(body).__name__}")
    return body


def credential_from_auth(auth: dict) -> Credential:
    """Build a Credential from the ``auth`` block of a Vault response."""
    token = auth.get("client_token")
    if not token:
        raise AuthError("Vault response did not contain a client token")
    try:
        lease_duration = int(auth.get("lease_duration") or 0)
    except (TypeError, ValueError) as e:
        raise AuthError(f"Vault returned an invalid lease duration: {auth.get('lease_duration')!r}") from e
    return Credential(
        token=token,
        accessor=auth.get("accessor"),
        lease_duration=lease_duration,
        renewable=bool(auth.get("renewable")),
    )


class VaultClient:
    """Thin async wrapper around the parts of the Vault API this service uses."""

    def __init__(
        self,
        address: str,
        handle: CredentialHandle,
        timeout: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None,
        log: Optional[logging.Logger] = None,
    ):
        self.address = address.rstrip("/")
        self.handle = handle
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._log = log or logger

    async def aclose(self) -> None:
        await self._client.aclose()

    def _url(self, path: str) -> str:
        return f"{self.address}/v1/{path.lstrip('/')}"

    def _headers(self, token: Optional[str] = None) -> dict:
        return {TOKEN_HEADER: token or self.handle.token()}

    async def login(self, role_id: str, secret_id: str) -> Credential:
        """
        Log in with AppRole.

        Does not install the credential; that is the renewal loop's job.

        Raises:
            AuthError: When Vault is unreachable or rejects the login
        """
        try:
            response = await self._client.post(
                self._url("auth/approle/login"),
                json={"role_id": role_id, "secret_id": secret_id},
            )
        except httpx.HTTPError as e:
            raise AuthError(f"Unable to reach Vault at {self.address}: {e}") from e

        if response.status_code != 200:
            raise AuthError(
                f"Unable to login to AppRole auth method: {_error_detail(response)}",
                status_code=response.status_code,
            )

        auth = _json_object(response, AuthError, "login").get("auth")
        if not isinstance(auth, dict) or not auth:
            raise AuthError("No auth info was returned after login")

        credential = credential_from_auth(auth)
        self._log.info(
            f"Logged in to Vault at {self.address} "
            f"(lease {credential.lease_duration}s, renewable={credential.renewable})"
        )
        return credential

    async def renew_self(self, credential: Credential, increment: Optional[int] = None) -> dict:
        """Renew ``credential`` and return the new ``auth`` block."""
        body = {"increment": f"{increment}s"} if increment else {}
        try:
            response = await self._client.post(
                self._url("auth/token/renew-self"),
                json=body,
                headers=self._headers(credential.token),
            )
        except httpx.HTTPError as e:
            raise VaultRequestError(f"Token renewal request failed: {e}") from e

        if response.status_code != 200:
            raise VaultRequestError(
                f"Token renewal rejected: {_error_detail(response)}",
                status_code=response.status_code,
            )

        auth = _json_object(response, VaultRequestError, "renewal").get("auth")
        if not isinstance(auth, dict) or not auth:
            raise VaultRequestError("No auth info was returned after renewal")
        return auth

    def _renew_delay(self, lease_seconds: float) -> float:
        """Seconds to wait before the next renewal."""
        delay = lease_seconds * RENEW_FRACTION
        return delay * (1 - random.uniform(0, RENEW_JITTER))

    async def watch(self, credential: Credential) -> AsyncIterator[RenewalOutcome]:
        """
        Keep ``credential`` alive, yielding one outcome per renewal cycle.

        The stream ends after the first Expiring or RenewalFailed outcome.
        A credential without a lease never expires, so the stream just waits.
        """
        if credential.lease_duration <= 0:
            self._log.info("Vault token has no lease; nothing to renew")
            await asyncio.Event().wait()
            return

        if not credential.renewable:
            yield Expiring("token is not renewable")
            return

        grace = max(credential.lease_duration / 10, MIN_GRACE_SECONDS)
        remaining = credential.lease_duration

        while True:
            await asyncio.sleep(self._renew_delay(remaining))

            try:
                auth = await self.renew_self(credential, increment=credential.lease_duration)
                remaining = int(auth.get("lease_duration") or 0)
            except (TypeError, ValueError) as e:
                yield RenewalFailed(VaultRequestError(f"Vault returned an invalid lease duration: {e}"))
                return
            except VaultRequestError as e:
                if e.status_code is not None and 400 <= e.status_code < 500:
                    yield Expiring(f"renewal rejected: {e}")
                else:
                    yield RenewalFailed(e)
                return

            if not auth.get("renewable") or remaining <= grace:
                yield Expiring(f"lease can no longer be extended ({remaining}s left)")
                return

            yield Renewed(timedelta(seconds=remaining))

    async def snapshot(self, destination_path: Union[str, os.PathLike]) -> Path:
        """
        Write a Raft snapshot of the cluster to ``destination_path``.

        A partially written file is removed on failure.

        Raises:
            SnapshotError: When the snapshot cannot be taken or written
        """
        path = Path(destination_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with self._client.stream(
                "GET",
                self._url("sys/storage/raft/snapshot"),
                headers=self._headers(),
                follow_redirects=True,
            ) as response:
                if response.status_code != 200:
                    await response.aread()
                    raise SnapshotError(
                        f"Vault Raft snapshot invocation failed: {_error_detail(response)}",
                        status_code=response.status_code,
                    )
                f = await asyncio.to_thread(open, path, "wb")
                try:
                    async for chunk in response.aiter_bytes():
                        await asyncio.to_thread(f.write, chunk)
                finally:
                    await asyncio.to_thread(f.close)
        except SnapshotError:
            path.unlink(missing_ok=True)
            raise
        except (httpx.HTTPError, OSError) as e:
            path.unlink(missing_ok=True)
            raise SnapshotError(f"Snapshot file at {path} could not be created: {e}") from e

        return path

    async def get_kv_secret(self, mount: str, secret_path: str) -> dict:
        """Read the latest version of a KV v2 secret."""
        try:
            response = await self._client.get(
                self._url(f"{mount.strip('/')}/data/{secret_path.strip('/')}"),
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            raise VaultRequestError(f"Unable to read secret {mount}/{secret_path}: {e}") from e

        if response.status_code != 200:
            raise VaultRequestError(
                f"Unable to read secret {mount}/{secret_path}: {_error_detail(response)}",
                status_code=response.status_code,
            )

        data = _json_object(response, VaultRequestError, "secret").get("data")
        data = data.get("data") if isinstance(data, dict) else None
        if not isinstance(data, dict):
            raise VaultRequestError(f"Secret {mount}/{secret_path} has no data")
        return data
