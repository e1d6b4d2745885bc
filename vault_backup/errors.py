"""Exception types raised by the backup service."""

from typing import Optional


class VaultBackupError(Exception):
    """Base class for all service errors."""


class StartupFatal(VaultBackupError):
    """The process cannot start (no credential, no subscription, no scheduler)."""


class ReauthFailure(VaultBackupError):
    """Re-login during credential renewal failed; no valid credential remains."""


class CredentialUnavailable(VaultBackupError):
    """No credential is installed in the handle."""


class VaultRequestError(VaultBackupError):
    """A Vault HTTP request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthError(VaultRequestError):
    """AppRole login failed."""


class SnapshotError(VaultRequestError):
    """A Raft snapshot could not be written to disk."""


class PushSourceError(VaultBackupError):
    """The event subscription could not be opened."""


class StorageError(VaultBackupError):
    """A remote storage call failed."""


class UploadError(StorageError):
    """Uploading a backup failed."""


class DeleteError(StorageError):
    """Deleting a remote backup failed."""


class RetentionSweepError(VaultBackupError):
    """One or more deletions in a retention sweep failed."""

    def __init__(self, message: str, failures: Optional[list] = None):
        super().__init__(message)
        self.failures = list(failures or [])
