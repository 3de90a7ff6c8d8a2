"""
测试用内存替身：不依赖真实网络与数据库。
"""

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from nls.http_utils import TransportError
from nls.lifecycle import Cancellation
from nls.models import DnsLogEvent
from nls.sources.base import LogPage
from nls.state.store import InsertOutcome, StoreError


BASE_TIME = datetime(2026, 2, 10, 0, 0, tzinfo=UTC)


def event_obj(i: int, *, domain: str = "example.com", client_ip: str = "10.0.0.1") -> dict:
    ts = (BASE_TIME + timedelta(milliseconds=i)).isoformat().replace("+00:00", "Z")
    return {
        "timestamp": ts,
        "domain": domain,
        "type": "A",
        "status": "default",
        "blocked": False,
        "clientIp": client_ip,
        "protocol": "DNS-over-HTTPS",
        "device": {"id": "D1", "name": "laptop"},
        "root": domain,
        "tracker": "",
        "encrypted": True,
    }


def data_line(i: int, **kwargs) -> str:  # noqa: ANN003
    return "data: " + json.dumps(event_obj(i, **kwargs))


@dataclass
class MemoryStore:
    """
    内存版 SyncStore：记录每一次 checkpoint 写入，便于断言写入次数。
    """

    rows: dict[str, DnsLogEvent] = field(default_factory=dict)
    position: str | None = None
    position_writes: list[str] = field(default_factory=list)
    fail_position_writes: bool = False
    fail_position_reads: bool = False

    def ensure_schema(self) -> None:
        pass

    def get_position(self) -> str | None:
        if self.fail_position_reads:
            raise StoreError("db down")
        return self.position

    def set_position(self, position: str) -> None:
        if self.fail_position_writes:
            raise StoreError("db down")
        self.position_writes.append(position)
        self.position = position

    def put(self, identity: str, event: DnsLogEvent) -> InsertOutcome:
        if identity in self.rows:
            return InsertOutcome.DUPLICATE
        self.rows[identity] = event
        return InsertOutcome.INSERTED

    def count(self) -> int:
        return len(self.rows)

    def close(self) -> None:
        pass


@dataclass
class FakeFeed:
    """
    预设行序列的流：读完后若设置了 error 则抛出（模拟断线），否则正常结束。
    """

    lines: list[str]
    error: Exception | None = None
    closed: bool = False

    def __iter__(self):  # noqa: ANN204
        for line in self.lines:
            if self.closed:
                return
            yield line
        if self.error is not None and not self.closed:
            raise self.error

    def __enter__(self) -> "FakeFeed":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.close()

    def close(self) -> None:
        self.closed = True


@dataclass
class FakeSource:
    """
    纯内存 LogSource：
    - pages：按调用顺序返回（元素为 Exception 时抛出）
    - feeds：每次 open_stream 依次取一个（元素为 Exception 时在连接阶段抛出）
    """

    pages: list = field(default_factory=list)
    feeds: list = field(default_factory=list)
    page_calls: list = field(default_factory=list)
    stream_calls: list = field(default_factory=list)
    opened: list = field(default_factory=list)

    def key(self) -> str:
        return "fake:logs"

    def fetch_page(self, cursor: str | None, *, limit: int) -> LogPage:  # noqa: ARG002
        self.page_calls.append(cursor)
        item = self.pages[len(self.page_calls) - 1]
        if isinstance(item, Exception):
            raise item
        return item

    def open_stream(self, position: str) -> FakeFeed:
        self.stream_calls.append(position)
        item = self.feeds[len(self.stream_calls) - 1]
        if isinstance(item, Exception):
            raise item
        self.opened.append(item)
        return item


def disconnect() -> FakeFeed:
    return FakeFeed(lines=[], error=TransportError("connection reset by peer"))


class RecordingCancellation(Cancellation):
    """不真正 sleep，只记录每次等待的时长。"""

    def __init__(self) -> None:
        super().__init__()
        self.waits: list[float] = []

    def wait(self, seconds: float) -> bool:
        self.waits.append(seconds)
        return self.cancelled
