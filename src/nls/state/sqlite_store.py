from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime

from ..models import DnsLogEvent
from .store import STREAM_ID_KEY, InsertOutcome, StoreError


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass(slots=True)
class SqliteStore:
    """
    默认存储：SQLite

    表设计：
    - dns_logs：事件表，identity 为主键（INSERT OR IGNORE 实现幂等）
    - sync_state：key/value 进度表，目前只有 stream_id 一行
    """

    sqlite_path: str

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self.sqlite_path)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
        except sqlite3.Error as e:
            raise StoreError(f"cannot open sqlite database {self.sqlite_path!r}: {e}") from e
        conn.row_factory = sqlite3.Row
        return conn

    def ensure_schema(self) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS dns_logs (
                        id TEXT PRIMARY KEY,
                        timestamp TEXT NOT NULL,
                        domain TEXT NOT NULL,
                        type TEXT,
                        status TEXT,
                        blocked INTEGER,
                        client_ip TEXT,
                        protocol TEXT,
                        device TEXT,
                        root TEXT,
                        tracker TEXT,
                        encrypted INTEGER,
                        created_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_timestamp ON dns_logs(timestamp)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_domain ON dns_logs(domain)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_root ON dns_logs(root)")
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS sync_state (
                        key TEXT PRIMARY KEY,
                        value TEXT,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
        except sqlite3.Error as e:
            raise StoreError(f"sqlite schema init failed: {e}") from e

    def get_position(self) -> str | None:
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT value FROM sync_state WHERE key = ?", (STREAM_ID_KEY,)).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"read checkpoint failed: {e}") from e
        if not row:
            return None
        return row["value"] or None

    def set_position(self, position: str) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO sync_state(key, value, updated_at)
                    VALUES(?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value=excluded.value,
                        updated_at=excluded.updated_at
                    """,
                    (STREAM_ID_KEY, position, _utc_now_iso()),
                )
        except (sqlite3.Error, UnicodeError) as e:
            raise StoreError(f"write checkpoint failed: {e}") from e

    def put(self, identity: str, event: DnsLogEvent) -> InsertOutcome:
        device = event.device_json()
        try:
            with self._connect() as conn:
                cur = conn.execute(
                    """
                    INSERT OR IGNORE INTO dns_logs(
                        id, timestamp, domain, type, status, blocked, client_ip,
                        protocol, device, root, tracker, encrypted, created_at
                    )
                    VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        identity,
                        event.timestamp.isoformat(),
                        event.domain,
                        event.record_type,
                        event.status,
                        int(event.blocked),
                        event.client_ip,
                        event.protocol,
                        json.dumps(device, ensure_ascii=False) if device is not None else None,
                        event.root,
                        event.tracker,
                        int(event.encrypted),
                        _utc_now_iso(),
                    ),
                )
                inserted = cur.rowcount
        except (sqlite3.Error, UnicodeError) as e:
            raise StoreError(f"insert {identity!r} failed: {e}") from e
        return InsertOutcome.INSERTED if inserted else InsertOutcome.DUPLICATE

    def count(self) -> int:
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT COUNT(*) AS n FROM dns_logs").fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"count failed: {e}") from e
        return int(row["n"])

    def close(self) -> None:
        # 每次操作独立连接，无需释放
        pass
