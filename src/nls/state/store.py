from __future__ import annotations

import enum
from typing import Protocol

from ..models import DnsLogEvent


STREAM_ID_KEY = "stream_id"


class StoreError(RuntimeError):
    """底层数据库异常（连接失败、写入失败等）。重复写入不属于错误。"""


class InsertOutcome(enum.Enum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"


class PositionStore(Protocol):
    """
    进度存储：单一 key（stream_id）的 checkpoint。

    分页接口发现的 stream id 与流式接口最近消费的 event id 写入同一个槽位，
    两者都可以直接作为流式接口的起始位置。
    """

    def get_position(self) -> str | None: ...

    def set_position(self, position: str) -> None: ...


class RecordStore(Protocol):
    """
    事件存储：以 identity 为主键的 insert-or-ignore。

    - 重复 identity 返回 DUPLICATE，不抛异常
    - 其余数据库异常统一抛 StoreError
    """

    def put(self, identity: str, event: DnsLogEvent) -> InsertOutcome: ...


class SyncStore(PositionStore, RecordStore, Protocol):
    def ensure_schema(self) -> None: ...

    def count(self) -> int: ...

    def close(self) -> None: ...
