# kerits/storage/sqlite.py
import os
import sqlite3
import json
import threading
from pathlib import Path
from typing import List, Optional

import structlog

from kerits.core.errors import StorageError
from kerits.core.types import IndexedSignature, LogKind, StoredEvent
from . import LogStore, check_append

log = structlog.get_logger(__name__)

DB_PATH_ENV = "KERITS_DB_PATH"


class SQLiteStorage(LogStore):
    """SQLite persistent storage for key and transaction event logs."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            env_path = os.environ.get(DB_PATH_ENV)
            db_path = env_path if env_path else Path.cwd() / "kerits.db"

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = self.db_path.resolve()

        self._conn: Optional[sqlite3.Connection] = None
        self._write_lock = threading.Lock()
        self._connect()

    def _connect(self):
        conn_str = str(self.db_path)
        self._conn = sqlite3.connect(conn_str, isolation_level=None, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_schema()

    def _create_schema(self):
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS events (
                log_id          TEXT    NOT NULL,
                sn              INTEGER NOT NULL,
                said            TEXT    NOT NULL,
                ilk             TEXT    NOT NULL,
                kind            TEXT    NOT NULL,
                raw             TEXT    NOT NULL,
                signatures_json TEXT    NOT NULL,
                PRIMARY KEY (log_id, sn)
            )
        """)
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_said ON events(said)")

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Storage connection is closed")
        return self._conn

    def append(self, record: StoredEvent, expected_sn: Optional[int] = None) -> None:
        sigs = json.dumps([s.to_dict() for s in record.signatures], sort_keys=True, separators=(",", ":"))
        with self._write_lock:
            conn = self.conn
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageError(f"Could not start append transaction: {e}") from e
            try:
                existing = self.get_event(record.log_id, record.sn)
                count = self.get_event_count(record.log_id)
                check_append(record, existing, count, expected_sn)
                conn.execute("""
                    INSERT INTO events (log_id, sn, said, ilk, kind, raw, signatures_json)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    record.log_id, record.sn, record.said, record.ilk,
                    record.kind.value, record.raw, sigs,
                ))
            except sqlite3.Error as e:
                conn.execute("ROLLBACK")
                raise StorageError(f"Append to {record.log_id} failed: {e}") from e
            except Exception:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        log.debug("event_stored", log_id=record.log_id, sn=record.sn, said=record.said)

    @staticmethod
    def _row_to_record(row) -> StoredEvent:
        log_id, sn, said, ilk, kind, raw, sigs = row
        return StoredEvent(
            log_id=log_id,
            sn=sn,
            said=said,
            ilk=ilk,
            kind=LogKind(kind),
            raw=raw,
            signatures=tuple(IndexedSignature.from_dict(s) for s in json.loads(sigs)),
        )

    def load_events(self, log_id: str) -> List[StoredEvent]:
        cursor = self.conn.execute("""
            SELECT log_id, sn, said, ilk, kind, raw, signatures_json
            FROM events WHERE log_id = ? ORDER BY sn ASC
        """, (log_id,))
        return [self._row_to_record(row) for row in cursor]

    def get_event(self, log_id: str, sn: int) -> Optional[StoredEvent]:
        row = self.conn.execute("""
            SELECT log_id, sn, said, ilk, kind, raw, signatures_json
            FROM events WHERE log_id = ? AND sn = ?
        """, (log_id, sn)).fetchone()
        return self._row_to_record(row) if row else None

    def find_by_said(self, said: str) -> Optional[StoredEvent]:
        row = self.conn.execute("""
            SELECT log_id, sn, said, ilk, kind, raw, signatures_json
            FROM events WHERE said = ? ORDER BY sn ASC LIMIT 1
        """, (said,)).fetchone()
        return self._row_to_record(row) if row else None

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def list_logs(self) -> List[str]:
        """All log ids: KELs, then TELs, then credentials, each group in order of first appearance."""
        cursor = self.conn.execute("""
            SELECT log_id
            FROM events
            GROUP BY log_id
            ORDER BY MAX(CASE kind WHEN 'kel' THEN 0 WHEN 'tel' THEN 1 ELSE 2 END), MIN(rowid)
        """)
        return [row[0] for row in cursor.fetchall()]

    def get_log_kind(self, log_id: str) -> Optional[LogKind]:
        row = self.conn.execute(
            "SELECT kind FROM events WHERE log_id = ? AND sn = 0", (log_id,)
        ).fetchone()
        return LogKind(row[0]) if row else None

    def get_event_count(self, log_id: str) -> int:
        cursor = self.conn.execute(
            "SELECT COUNT(*) FROM events WHERE log_id = ?",
            (log_id,)
        )
        return cursor.fetchone()[0]
