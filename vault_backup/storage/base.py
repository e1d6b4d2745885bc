"""Remote storage interface for backup destinations."""

import enum
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Union


class EntryKind(str, enum.Enum):
    FILE = "file"
    FOLDER = "folder"


@dataclass(frozen=True)
class RemoteEntry:
    """One object as reported by the storage listing."""

    id: str
    name: str
    created_at: datetime
    kind: EntryKind = EntryKind.FILE

    @property
    def is_folder(self) -> bool:
        return self.kind is EntryKind.FOLDER


class StorageClient(ABC):
    """
    Blocking storage calls.

    Callers on the event loop run these in a worker thread; implementations
    must be safe to call from several threads at once.
    """

    @abstractmethod
    def list(self) -> List[RemoteEntry]:
        """List every entry visible to this client, folders included."""

    @abstractmethod
    def upload(self, local_path: Union[str, os.PathLike], destination: str) -> str:
        """Upload a local file into ``destination`` and return its remote id."""

    @abstractmethod
    def delete(self, entry_id: str) -> None:
        """Delete one remote entry."""
