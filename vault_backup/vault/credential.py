"""Vault credential and the shared handle that holds the current one."""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from vault_backup.errors import CredentialUnavailable


@dataclass(frozen=True)
class Credential:
    """An authentication token with a renewable lease."""

    token: str
    lease_duration: int
    renewable: bool
    accessor: Optional[str] = None
    issued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __repr__(self) -> str:
        # Never leak the token into logs
        return (
            f"Credential(accessor={self.accessor!r}, lease_duration={self.lease_duration}, "
            f"renewable={self.renewable})"
        )


@dataclass(frozen=True)
class LeaseStatus:
    """Remaining lease of the current credential as last reported by Vault."""

    remaining: timedelta
    refreshed_at: datetime


class CredentialHandle:
    """
    Holds the current credential.

    Readers get a complete immutable snapshot. Writers swap whole snapshots
    under a lock; nothing is ever mutated in place.
    """

    def __init__(self, credential: Optional[Credential] = None):
        self._lock = threading.Lock()
        self._credential: Optional[Credential] = None
        self._lease: Optional[LeaseStatus] = None
        if credential is not None:
            self.install(credential)

    def current(self) -> Credential:
        """Return the current credential or raise CredentialUnavailable."""
        with self._lock:
            credential = self._credential
        if credential is None:
            raise CredentialUnavailable("No valid Vault credential is installed")
        return credential

    def token(self) -> str:
        """Shortcut for the current token."""
        return self.current().token

    def lease(self) -> Optional[LeaseStatus]:
        """Return the lease status of the current credential."""
        with self._lock:
            return self._lease

    @property
    def is_valid(self) -> bool:
        with self._lock:
            return self._credential is not None

    def install(self, credential: Credential) -> None:
        """Replace the current credential with a new one."""
        lease = LeaseStatus(
            remaining=timedelta(seconds=credential.lease_duration),
            refreshed_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._credential = credential
            self._lease = lease

    def refresh_lease(self, credential: Credential, remaining: timedelta) -> bool:
        """
        Record a successful renewal of ``credential``.

        Returns False (and changes nothing) when ``credential`` is no longer
        the installed one.
        """
        lease = LeaseStatus(remaining=remaining, refreshed_at=datetime.now(timezone.utc))
        with self._lock:
            if self._credential is not credential:
                return False
            self._lease = lease
            return True

    def invalidate(self) -> None:
        """Drop the current credential so it can never be reused."""
        with self._lock:
            self._credential = None
            self._lease = None
