"""Trigger events produced by the trigger sources."""

import enum
from dataclasses import dataclass
from typing import Optional


class TriggerSource(str, enum.Enum):
    PUSH = "vault event"
    SCHEDULED = "scheduled event"


@dataclass(frozen=True)
class Trigger:
    """A request for one backup, deployed to ``destination`` (a remote folder id)."""

    source: TriggerSource
    destination: str
    event_type: Optional[str] = None

    def describe(self) -> str:
        if self.event_type:
            return f"{self.source.value} ({self.event_type})"
        return self.source.value
