"""Remote storage for uploaded snapshots."""

from vault_backup.storage.base import EntryKind, RemoteEntry, StorageClient

__all__ = ["EntryKind", "RemoteEntry", "StorageClient"]
