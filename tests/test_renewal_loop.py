"""Tests for the credential renewal loop."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


class _RecordingVault:
    """Watches a scripted list of outcomes, recording the installed credential after each one."""

    def __init__(self, handle, scripts, login_results, hang_after_script=False):
        self.handle = handle
        self.hang_after_script = hang_after_script
        self.scripts = list(scripts)
        self.login_results = list(login_results)
        self.seen_after_outcome = []
        self.logins = 0

    async def login(self, role_id, secret_id):
        self.logins += 1
        result = self.login_results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def watch(self, credential):
        script = self.scripts.pop(0) if self.scripts else None
        if script is None:
            await asyncio.Event().wait()
            return
        for outcome in script:
            yield outcome
            self.seen_after_outcome.append(self.handle.current())
        if self.hang_after_script:
            await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_renewals_keep_credential_and_expiry_replaces_it_once(credential, credential_factory):
    """Renewed, Renewed, Expiring: same instance through renewals, exactly one replacement."""
    from vault_backup.vault.credential import CredentialHandle
    from vault_backup.vault.outcomes import Expiring, Renewed
    from vault_backup.vault.renewal import RenewalLoop, RenewalState

    handle = CredentialHandle(credential)
    replacement = credential_factory("s.replacement")
    vault = _RecordingVault(
        handle,
        scripts=[[Renewed(timedelta(seconds=3000)), Renewed(timedelta(seconds=2000)), Expiring("max ttl")]],
        login_results=[replacement],
    )
    states = []
    loop = RenewalLoop(vault, handle, "role", "secret", on_state_change=states.append)

    task = asyncio.create_task(loop.run())
    await _wait_until(lambda: vault.logins == 1 and loop.state is RenewalState.WATCHING and not vault.scripts)

    # The first two outcomes were renewals of the original credential
    assert vault.seen_after_outcome[:2] == [credential, credential]
    assert handle.current() is replacement
    assert vault.logins == 1

    loop.stop()
    await asyncio.wait_for(task, timeout=1)

    assert loop.state is RenewalState.TERMINATED
    assert states == [
        RenewalState.WATCHING,
        RenewalState.REAUTHENTICATING,
        RenewalState.WATCHING,
        RenewalState.TERMINATED,
    ]
    # Stopping does not invalidate the last good credential
    assert handle.current() is replacement


@pytest.mark.asyncio
async def test_renewed_outcome_refreshes_lease(credential):
    from vault_backup.vault.credential import CredentialHandle
    from vault_backup.vault.outcomes import Renewed
    from vault_backup.vault.renewal import RenewalLoop

    handle = CredentialHandle(credential)
    vault = _RecordingVault(
        handle,
        scripts=[[Renewed(timedelta(seconds=1234))]],
        login_results=[],
        hang_after_script=True,
    )
    loop = RenewalLoop(vault, handle, "role", "secret")

    task = asyncio.create_task(loop.run())
    await _wait_until(lambda: handle.lease().remaining == timedelta(seconds=1234))
    loop.stop()
    await asyncio.wait_for(task, timeout=1)


@pytest.mark.asyncio
async def test_failed_relogin_invalidates_handle_and_raises(credential):
    from vault_backup.errors import AuthError, CredentialUnavailable, ReauthFailure
    from vault_backup.vault.credential import CredentialHandle
    from vault_backup.vault.outcomes import Expiring
    from vault_backup.vault.renewal import RenewalLoop, RenewalState

    handle = CredentialHandle(credential)
    vault = _RecordingVault(
        handle,
        scripts=[[Expiring("token is not renewable")]],
        login_results=[AuthError("invalid secret id", status_code=400)],
    )
    loop = RenewalLoop(vault, handle, "role", "secret")

    with pytest.raises(ReauthFailure) as exc_info:
        await asyncio.wait_for(loop.run(), timeout=1)

    assert isinstance(exc_info.value.__cause__, AuthError)
    assert loop.state is RenewalState.TERMINATED
    assert handle.is_valid is False
    with pytest.raises(CredentialUnavailable):
        handle.token()


@pytest.mark.asyncio
async def test_renewal_failure_triggers_relogin_not_termination(credential, credential_factory):
    from vault_backup.errors import VaultRequestError
    from vault_backup.vault.credential import CredentialHandle
    from vault_backup.vault.outcomes import RenewalFailed
    from vault_backup.vault.renewal import RenewalLoop, RenewalState

    handle = CredentialHandle(credential)
    replacement = credential_factory("s.after-failure")
    vault = _RecordingVault(
        handle,
        scripts=[[RenewalFailed(VaultRequestError("connection refused"))]],
        login_results=[replacement],
    )
    loop = RenewalLoop(vault, handle, "role", "secret")

    task = asyncio.create_task(loop.run())
    await _wait_until(lambda: vault.logins == 1 and loop.state is RenewalState.WATCHING)
    assert handle.current() is replacement

    loop.stop()
    await asyncio.wait_for(task, timeout=1)


@pytest.mark.asyncio
async def test_watcher_stream_ending_is_treated_as_expiry(credential, credential_factory):
    from vault_backup.vault.credential import CredentialHandle
    from vault_backup.vault.renewal import RenewalLoop, RenewalState

    handle = CredentialHandle(credential)
    replacement = credential_factory("s.next")
    vault = _RecordingVault(handle, scripts=[[]], login_results=[replacement])
    loop = RenewalLoop(vault, handle, "role", "secret")

    task = asyncio.create_task(loop.run())
    await _wait_until(lambda: vault.logins == 1 and loop.state is RenewalState.WATCHING)
    assert handle.current() is replacement

    loop.stop()
    await asyncio.wait_for(task, timeout=1)


@pytest.mark.asyncio
async def test_stop_while_watching_terminates_promptly(credential):
    from vault_backup.vault.credential import CredentialHandle
    from vault_backup.vault.renewal import RenewalLoop, RenewalState

    handle = CredentialHandle(credential)
    vault = _RecordingVault(handle, scripts=[None], login_results=[])
    loop = RenewalLoop(vault, handle, "role", "secret")

    task = asyncio.create_task(loop.run())
    await _wait_until(lambda: loop.state is RenewalState.WATCHING)

    loop.stop()
    await asyncio.wait_for(task, timeout=1)

    assert loop.state is RenewalState.TERMINATED
    assert vault.logins == 0
    assert handle.current() is credential


@pytest.mark.asyncio
async def test_run_without_credential_raises(fake_vault):
    from vault_backup.errors import CredentialUnavailable
    from vault_backup.vault.renewal import RenewalLoop, RenewalState

    loop = RenewalLoop(fake_vault, fake_vault.handle, "role", "secret")
    with pytest.raises(CredentialUnavailable):
        await loop.run()
    assert loop.state is RenewalState.TERMINATED


@pytest.mark.asyncio
async def test_cancel_requested_from_watcher_ends_loop_cleanly(credential, credential_factory):
    """Renewed, Renewed, Expiring, then CancelRequested from the replacement's watcher."""
    from vault_backup.vault.credential import CredentialHandle
    from vault_backup.vault.outcomes import CancelRequested, Expiring, Renewed
    from vault_backup.vault.renewal import RenewalLoop, RenewalState

    handle = CredentialHandle(credential)
    replacement = credential_factory("s.replacement")
    vault = _RecordingVault(
        handle,
        scripts=[
            [Renewed(timedelta(seconds=3000)), Renewed(timedelta(seconds=2000)), Expiring("max ttl")],
            [CancelRequested()],
        ],
        login_results=[replacement],
    )
    loop = RenewalLoop(vault, handle, "role", "secret")

    await asyncio.wait_for(loop.run(), timeout=1)

    assert loop.state is RenewalState.TERMINATED
    assert vault.logins == 1
    assert handle.current() is replacement
    assert handle.is_valid


# ---------------------------------------------------------------------------
# Against the HTTP client
# ---------------------------------------------------------------------------


def _http_vault(handler, handle):
    import httpx

    from vault_backup.vault.client import VaultClient

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return VaultClient("http://vault:8200", handle, http_client=http_client)


@pytest.mark.asyncio
async def test_unreadable_relogin_response_is_reauth_failure(credential_factory):
    import httpx

    from vault_backup.errors import CredentialUnavailable, ReauthFailure
    from vault_backup.vault.credential import CredentialHandle
    from vault_backup.vault.renewal import RenewalLoop, RenewalState

    handle = CredentialHandle(credential_factory("s.old", renewable=False))

    def handler(request):
        assert request.url.path == "/v1/auth/approle/login"
        return httpx.Response(200, text="<html>proxy error</html>")

    client = _http_vault(handler, handle)
    loop = RenewalLoop(client, handle, "role", "secret")

    with pytest.raises(ReauthFailure):
        await asyncio.wait_for(loop.run(), timeout=1)
    await client.aclose()

    assert loop.state is RenewalState.TERMINATED
    assert handle.is_valid is False
    with pytest.raises(CredentialUnavailable):
        handle.token()


@pytest.mark.asyncio
async def test_unreadable_renewal_response_leads_to_relogin(monkeypatch, credential):
    import httpx

    from vault_backup.vault.credential import CredentialHandle
    from vault_backup.vault.renewal import RenewalLoop, RenewalState

    handle = CredentialHandle(credential)
    paths = []

    def handler(request):
        paths.append(request.url.path)
        if request.url.path == "/v1/auth/token/renew-self":
            return httpx.Response(200, text="not json")
        return httpx.Response(
            200,
            json={"auth": {"client_token": "s.fresh", "lease_duration": 0, "renewable": False}},
        )

    client = _http_vault(handler, handle)
    monkeypatch.setattr(client, "_renew_delay", lambda lease: 0)
    loop = RenewalLoop(client, handle, "role", "secret")

    task = asyncio.create_task(loop.run())
    await _wait_until(lambda: handle.is_valid and handle.token() == "s.fresh")
    assert loop.state is RenewalState.WATCHING
    assert paths == ["/v1/auth/token/renew-self", "/v1/auth/approle/login"]

    loop.stop()
    await asyncio.wait_for(task, timeout=1)
    await client.aclose()
    assert loop.state is RenewalState.TERMINATED
