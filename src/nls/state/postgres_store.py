from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import psycopg
from psycopg.types.json import Jsonb

from ..models import DnsLogEvent
from .store import STREAM_ID_KEY, InsertOutcome, StoreError


def is_postgres_dsn(value: str | None) -> bool:
    if not value:
        return False
    return value.startswith("postgres://") or value.startswith("postgresql://")


@dataclass(slots=True)
class PostgresStore:
    """
    PostgreSQL 存储，与 SqliteStore 同构：
    - dns_logs.id 主键 + ON CONFLICT DO NOTHING 实现跨进程幂等
    - device 使用 JSONB（对象 / 字符串 / null）
    - 每个实例懒加载并复用一条 autocommit 连接；任一语句失败后丢弃连接，下次操作重连
    """

    dsn: str
    _conn: psycopg.Connection | None = field(default=None, init=False, repr=False)

    def _connection(self) -> psycopg.Connection:
        if self._conn is not None and not self._conn.closed:
            return self._conn
        try:
            self._conn = psycopg.connect(self.dsn, autocommit=True)
        except psycopg.Error as e:
            raise StoreError(f"cannot connect to postgres: {e}") from e
        return self._conn

    def _execute(self, query: str, params: tuple[Any, ...] | None, *, action: str) -> psycopg.Cursor:
        conn = self._connection()
        try:
            return conn.execute(query, params)
        except (psycopg.Error, UnicodeError) as e:
            self.close()
            raise StoreError(f"{action} failed: {e}") from e

    def close(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None and not conn.closed:
            conn.close()

    def ensure_schema(self) -> None:
        self._execute(
            """
            CREATE TABLE IF NOT EXISTS dns_logs (
                id VARCHAR(255) PRIMARY KEY,
                timestamp TIMESTAMPTZ NOT NULL,
                domain TEXT NOT NULL,
                type VARCHAR(50),
                status VARCHAR(50),
                blocked BOOLEAN,
                client_ip VARCHAR(50),
                protocol VARCHAR(50),
                device JSONB,
                root TEXT,
                tracker TEXT,
                encrypted BOOLEAN,
                created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
            )
            """,
            None,
            action="postgres schema init",
        )
        for column in ("timestamp", "domain", "root"):
            self._execute(
                f"CREATE INDEX IF NOT EXISTS idx_{column} ON dns_logs({column})",
                None,
                action="postgres schema init",
            )
        self._execute(
            """
            CREATE TABLE IF NOT EXISTS sync_state (
                key VARCHAR(50) PRIMARY KEY,
                value TEXT,
                updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
            )
            """,
            None,
            action="postgres schema init",
        )

    def get_position(self) -> str | None:
        row = self._execute(
            "SELECT value FROM sync_state WHERE key = %s",
            (STREAM_ID_KEY,),
            action="read checkpoint",
        ).fetchone()
        if not row:
            return None
        return row[0] or None

    def set_position(self, position: str) -> None:
        self._execute(
            """
            INSERT INTO sync_state (key, value, updated_at)
            VALUES (%s, %s, CURRENT_TIMESTAMP)
            ON CONFLICT (key) DO UPDATE SET
                value = EXCLUDED.value,
                updated_at = CURRENT_TIMESTAMP
            """,
            (STREAM_ID_KEY, position),
            action="write checkpoint",
        )

    def put(self, identity: str, event: DnsLogEvent) -> InsertOutcome:
        device = event.device_json()
        inserted = self._execute(
            """
            INSERT INTO dns_logs (
                id, timestamp, domain, type, status, blocked, client_ip,
                protocol, device, root, tracker, encrypted
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (id) DO NOTHING
            """,
            (
                identity,
                event.timestamp,
                event.domain,
                event.record_type,
                event.status,
                event.blocked,
                event.client_ip,
                event.protocol,
                Jsonb(device) if device is not None else None,
                event.root,
                event.tracker,
                event.encrypted,
            ),
            action=f"insert {identity!r}",
        ).rowcount
        return InsertOutcome.INSERTED if inserted else InsertOutcome.DUPLICATE

    def count(self) -> int:
        row = self._execute("SELECT COUNT(*) FROM dns_logs", None, action="count").fetchone()
        return int(row[0]) if row else 0
