"""Pytest configuration and fixtures."""

import asyncio
import os
from pathlib import Path

import pytest

from vault_backup.errors import DeleteError, SnapshotError, StorageError, UploadError
from vault_backup.storage.base import StorageClient
from vault_backup.vault.credential import Credential, CredentialHandle

# Keep the developer's Vault environment out of the settings under test
os.environ.pop("VAULT_ADDR", None)
os.environ.pop("APPROLE_SECRET_ID", None)


def make_credential(token: str = "s.token", lease_duration: int = 3600, renewable: bool = True) -> Credential:
    return Credential(token=token, lease_duration=lease_duration, renewable=renewable, accessor="accessor-1")


class FakeVault:
    """In-memory stand-in for VaultClient."""

    def __init__(self, handle: CredentialHandle = None):
        self.handle = handle or CredentialHandle()
        self.logins: list[tuple[str, str]] = []
        # Each entry is a Credential to return or an exception to raise
        self.login_results: list = []
        # One list of outcomes per watched credential; None means wait forever
        self.watch_scripts: list = []
        self.watched: list[Credential] = []
        self.snapshots: list[Path] = []
        self.fail_snapshots = 0
        self.secrets: dict = {}

    async def login(self, role_id: str, secret_id: str) -> Credential:
        self.logins.append((role_id, secret_id))
        result = self.login_results.pop(0) if self.login_results else make_credential(f"s.login{len(self.logins)}")
        if isinstance(result, Exception):
            raise result
        return result

    async def watch(self, credential: Credential):
        self.watched.append(credential)
        script = self.watch_scripts.pop(0) if self.watch_scripts else None
        if script is None:
            await asyncio.Event().wait()
            return
        for outcome in script:
            await asyncio.sleep(0)
            yield outcome

    async def snapshot(self, destination_path) -> Path:
        if self.fail_snapshots:
            self.fail_snapshots -= 1
            raise SnapshotError("Vault Raft snapshot invocation failed: permission denied", status_code=403)
        path = Path(destination_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"raft-snapshot")
        self.snapshots.append(path)
        return path

    async def get_kv_secret(self, mount: str, secret_path: str) -> dict:
        return self.secrets[(mount, secret_path)]


class FakeStorage(StorageClient):
    """In-memory remote storage recording every call."""

    def __init__(self, entries=None):
        self.entries = list(entries or [])
        self.uploads: list[tuple[str, str]] = []
        self.deleted: list[str] = []
        self.fail_list = False
        self.fail_uploads = 0
        self.fail_delete_ids: set[str] = set()

    def list(self):
        if self.fail_list:
            raise StorageError("Unable to list files: quota exceeded")
        return list(self.entries)

    def upload(self, local_path, destination: str) -> str:
        if self.fail_uploads:
            self.fail_uploads -= 1
            raise UploadError(f"Unable to upload file {local_path}: connection reset")
        self.uploads.append((Path(local_path).name, destination))
        return f"remote-{len(self.uploads)}"

    def delete(self, entry_id: str) -> None:
        if entry_id in self.fail_delete_ids:
            raise DeleteError(f"Unable to delete file {entry_id}: 403 forbidden")
        self.deleted.append(entry_id)


@pytest.fixture
def credential():
    """A fresh renewable credential."""
    return make_credential()


@pytest.fixture
def credential_factory():
    return make_credential


@pytest.fixture
def fake_vault():
    return FakeVault()


@pytest.fixture
def fake_storage():
    return FakeStorage()
