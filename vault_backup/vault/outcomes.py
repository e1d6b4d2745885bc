"""Results reported by a lease watcher, one per renewal cycle."""

from dataclasses import dataclass
from datetime import timedelta
from typing import Union


@dataclass(frozen=True)
class Renewed:
    """The lease was extended; the same credential stays in use."""

    remaining: timedelta


@dataclass(frozen=True)
class Expiring:
    """The lease can no longer be extended; a new login is needed."""

    cause: str


@dataclass(frozen=True)
class RenewalFailed:
    """A renewal request failed outright."""

    cause: Exception


@dataclass(frozen=True)
class CancelRequested:
    """The watcher was asked to stop."""


RenewalOutcome = Union[Renewed, Expiring, RenewalFailed, CancelRequested]
