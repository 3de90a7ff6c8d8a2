from __future__ import annotations

import time
from dataclasses import dataclass, field


@dataclass(slots=True)
class SyncSession:
    """
    一次编排运行内的会话状态（不落盘）。

    由 SyncOrchestrator 创建并持有，传入每一次 BatchFetcher / StreamConsumer 调用，
    调用方原地累加计数；心跳线程只读取其中的计数与 last_activity。
    """

    backoff_seconds: float = 1.0
    attempts: int = 0
    lines_read: int = 0
    events_seen: int = 0
    inserted: int = 0
    duplicates: int = 0
    malformed: int = 0
    store_failures: int = 0
    last_activity: float = field(default_factory=time.monotonic)

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def idle_seconds(self) -> float:
        return max(0.0, time.monotonic() - self.last_activity)

    def advance_backoff(self, maximum: float) -> None:
        self.backoff_seconds = min(self.backoff_seconds * 2, maximum)


@dataclass(slots=True)
class BatchRunReport:
    pages: int
    events_fetched: int
    inserted: int
    duplicates: int
    malformed: int
    store_failures: int
    stream_id: str | None
    termination: str
    cancelled: bool
    duration_ms: int


@dataclass(slots=True)
class StreamRunReport:
    start_position: str
    last_position: str | None
    lines_read: int
    events_seen: int
    inserted: int
    duplicates: int
    malformed: int
    store_failures: int
    checkpoints_written: int
    cancelled: bool
    duration_ms: int
