# kerits/storage/memory.py
import threading
from collections import defaultdict
from typing import Dict, List, Optional

from kerits.core.types import LogKind, StoredEvent
from . import LogStore, check_append


class MemoryStorage(LogStore):
    """In-process store; same append semantics as SQLiteStorage, nothing persisted."""

    def __init__(self):
        self._logs: Dict[str, List[StoredEvent]] = defaultdict(list)
        self._by_said: Dict[str, StoredEvent] = {}
        self._lock = threading.Lock()
        self._closed = False

    def _check_open(self):
        if self._closed:
            raise RuntimeError("Storage connection is closed")

    def append(self, record: StoredEvent, expected_sn: Optional[int] = None) -> None:
        with self._lock:
            self._check_open()
            events = self._logs[record.log_id]
            existing = events[record.sn] if 0 <= record.sn < len(events) else None
            check_append(record, existing, len(events), expected_sn)
            events.append(record)
            self._by_said.setdefault(record.said, record)

    def load_events(self, log_id: str) -> List[StoredEvent]:
        self._check_open()
        return list(self._logs.get(log_id, ()))

    def get_event(self, log_id: str, sn: int) -> Optional[StoredEvent]:
        self._check_open()
        events = self._logs.get(log_id, [])
        return events[sn] if 0 <= sn < len(events) else None

    def find_by_said(self, said: str) -> Optional[StoredEvent]:
        self._check_open()
        return self._by_said.get(said)

    def list_logs(self) -> List[str]:
        self._check_open()
        logs = [log_id for log_id, events in self._logs.items() if events]
        order = {LogKind.KEL: 0, LogKind.TEL: 1, LogKind.ACDC: 2}
        return sorted(logs, key=lambda log_id: order[self._logs[log_id][0].kind])

    def get_log_kind(self, log_id: str) -> Optional[LogKind]:
        events = self.load_events(log_id)
        return events[0].kind if events else None

    def get_event_count(self, log_id: str) -> int:
        self._check_open()
        return len(self._logs.get(log_id, ()))

    def close(self) -> None:
        self._closed = True
