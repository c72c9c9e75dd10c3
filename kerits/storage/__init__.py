# kerits/storage/__init__.py
"""
Append-only log stores for KELs and TELs.

The engines depend only on `LogStore`. Appends are per-log transactions with an
optimistic `expected_sn` precondition, so two writers can never both land an
event at the same sequence number.
"""

from abc import ABC, abstractmethod
from typing import List, Optional
from pathlib import Path

from kerits.core.errors import ChainDiscontinuity, DuplicateEvent, ForkDetected
from kerits.core.types import LogKind, StoredEvent


class LogStore(ABC):
    """Abstract base for all persistent storage implementations."""

    @abstractmethod
    def append(self, record: StoredEvent, expected_sn: Optional[int] = None) -> None:
        """
        Atomically append `record` to its log.

        Raises DuplicateEvent if the same SAID is already stored at that sn,
        ForkDetected if a different event is, and ChainDiscontinuity if the
        log's next sn is not `expected_sn` (defaults to record.sn).
        """

    @abstractmethod
    def load_events(self, log_id: str) -> List[StoredEvent]:
        pass

    @abstractmethod
    def get_event(self, log_id: str, sn: int) -> Optional[StoredEvent]:
        pass

    @abstractmethod
    def find_by_said(self, said: str) -> Optional[StoredEvent]:
        pass

    @abstractmethod
    def list_logs(self) -> List[str]:
        pass

    @abstractmethod
    def get_log_kind(self, log_id: str) -> Optional[LogKind]:
        """Kind of the log (KEL, TEL or stored credential), or None if the log is unknown."""

    @abstractmethod
    def get_event_count(self, log_id: str) -> int:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def check_append(record: StoredEvent, existing: Optional[StoredEvent], count: int,
                 expected_sn: Optional[int]) -> None:
    """Shared precondition check, run inside each backend's write transaction."""
    if existing is not None:
        if existing.said == record.said:
            raise DuplicateEvent(
                f"Event {record.said} already stored at sn {record.sn}",
                log_id=record.log_id, sn=record.sn, said=record.said,
            )
        raise ForkDetected(
            f"Fork in log {record.log_id} at sn {record.sn}: "
            f"stored {existing.said}, incoming {record.said}",
            sn=record.sn, existing=existing.said, incoming=record.said,
        )
    expected = record.sn if expected_sn is None else expected_sn
    if count != expected or record.sn != expected:
        raise ChainDiscontinuity(
            f"Log {record.log_id} is at sn {count}, cannot append sn {record.sn}",
            expected_sn=count, actual_sn=record.sn,
        )


def create_storage(uri: str) -> LogStore:
    if uri.startswith("sqlite://"):
        from .sqlite import SQLiteStorage
        # Extract everything after sqlite://
        raw_path = uri[len("sqlite://"):]
        if not raw_path:
            return SQLiteStorage()
        return SQLiteStorage(Path(raw_path).resolve())

    elif uri.startswith("memory://"):
        from .memory import MemoryStorage
        return MemoryStorage()
    else:
        raise ValueError(f"Unsupported storage URI: {uri}")


def open_storage(storage) -> Optional[LogStore]:
    """Accept a LogStore, a storage URI, a plain file path, or None."""
    if storage is None or isinstance(storage, LogStore):
        return storage
    stripped = str(storage).strip()
    if not stripped:
        return None
    if stripped.startswith(("sqlite://", "memory://")):
        return create_storage(stripped)
    # Plain file path → SQLite
    return create_storage(f"sqlite://{stripped}")


from .sqlite import SQLiteStorage
from .memory import MemoryStorage

__all__ = ["LogStore", "create_storage", "open_storage", "check_append", "SQLiteStorage", "MemoryStorage"]
