"""In-memory record of what the service has done since it started."""

import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class BackupRecord:
    time: datetime
    source: str
    local_file: Optional[str] = None
    remote_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class SweepRecord:
    time: datetime
    selected: int
    deleted: int
    error: Optional[str] = None


class BackupStatus:
    """Thread-safe tracker fed by the pipeline, the sweeper and the renewal loop."""

    def __init__(self):
        self._lock = threading.Lock()
        self.started_at = _utcnow()
        self.last_success: Optional[BackupRecord] = None
        self.last_failure: Optional[BackupRecord] = None
        self.last_sweep: Optional[SweepRecord] = None
        self.backups_succeeded = 0
        self.backups_failed = 0
        self.renewal_state: Optional[str] = None

    def record_success(self, source: str, local_file: str, remote_id: str) -> None:
        record = BackupRecord(time=_utcnow(), source=source, local_file=local_file, remote_id=remote_id)
        with self._lock:
            self.last_success = record
            self.backups_succeeded += 1

    def record_failure(self, source: str, error: str, local_file: Optional[str] = None) -> None:
        record = BackupRecord(time=_utcnow(), source=source, local_file=local_file, error=error)
        with self._lock:
            self.last_failure = record
            self.backups_failed += 1

    def record_sweep(self, selected: int, deleted: int, error: Optional[str] = None) -> None:
        record = SweepRecord(time=_utcnow(), selected=selected, deleted=deleted, error=error)
        with self._lock:
            self.last_sweep = record

    def record_renewal_state(self, state) -> None:
        with self._lock:
            self.renewal_state = getattr(state, "value", str(state))

    def to_dict(self) -> dict:
        """Serializable snapshot of the tracker."""
        with self._lock:
            now = _utcnow()
            return {
                "started_at": self.started_at.isoformat(),
                "uptime_seconds": int((now - self.started_at).total_seconds()),
                "backups_succeeded": self.backups_succeeded,
                "backups_failed": self.backups_failed,
                "last_success": _record_dict(self.last_success),
                "last_failure": _record_dict(self.last_failure),
                "last_sweep": _record_dict(self.last_sweep),
                "renewal_state": self.renewal_state,
            }


def _record_dict(record) -> Optional[dict]:
    if record is None:
        return None
    data = asdict(record)
    data["time"] = record.time.isoformat()
    return data
