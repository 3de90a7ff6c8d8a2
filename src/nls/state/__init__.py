from .postgres_store import PostgresStore, is_postgres_dsn
from .sqlite_store import SqliteStore
from .store import InsertOutcome, PositionStore, RecordStore, StoreError, SyncStore


def open_store(database: str) -> SyncStore:
    """postgres:// 或 postgresql:// 走 PostgresStore，其余视为 SQLite 文件路径。"""
    if is_postgres_dsn(database):
        return PostgresStore(database)
    return SqliteStore(database)


__all__ = [
    "InsertOutcome",
    "PositionStore",
    "PostgresStore",
    "RecordStore",
    "SqliteStore",
    "StoreError",
    "SyncStore",
    "open_store",
]
