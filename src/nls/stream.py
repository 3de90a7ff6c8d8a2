from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass

from .http_utils import TransportError
from .ingest import IngestStatus, ingest
from .lifecycle import Cancellation
from .session import StreamRunReport, SyncSession
from .sources.base import LogSource
from .state.store import StoreError, SyncStore


logger = logging.getLogger(__name__)

DEFAULT_CHECKPOINT_EVERY = 100


class StreamError(RuntimeError):
    """流式连接失败或读取中断；可恢复，由编排层退避重连。"""


class Heartbeat:
    """
    流式消费期间的存活日志：每 interval 秒输出一次行数 / 入库数 / 空闲时长。

    只读 SyncSession 中的计数，不影响控制流；stop() 会等待线程退出。
    """

    def __init__(self, session: SyncSession, interval_seconds: float) -> None:
        self._session = session
        self._interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="nls-heartbeat", daemon=True)

    def start(self) -> None:
        if self._interval_seconds > 0:
            self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread.is_alive():
            self._thread.join()

    @property
    def running(self) -> bool:
        return self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.wait(self._interval_seconds):
            logger.info(
                "stream alive: lines=%d events=%d inserted=%d last_activity=%ds ago",
                self._session.lines_read,
                self._session.events_seen,
                self._session.inserted,
                int(self._session.idle_seconds()),
            )


@dataclass(slots=True)
class StreamConsumer:
    """
    流式消费：从给定位置打开长连接，逐行处理。

    协议（SSE 风格，空行分隔）：
    - id: <token>   更新“最近看到的位置”，本身不触发入库
    - data: <json>  解析为一条事件并入库；解析失败跳过
    checkpoint：
    - 每成功新增 checkpoint_every 条，写一次最近位置
    - 结束时（正常结束 / 出错 / 取消）若最近位置比已写入的新，再写一次
    """

    source: LogSource
    store: SyncStore
    checkpoint_every: int = DEFAULT_CHECKPOINT_EVERY
    heartbeat_seconds: float = 30.0

    def consume(
        self,
        position: str,
        session: SyncSession,
        cancel: Cancellation | None = None,
    ) -> StreamRunReport:
        cancel = cancel or Cancellation()
        start_t = time.monotonic()

        try:
            feed = self.source.open_stream(position)
        except TransportError as e:
            raise StreamError(f"open stream failed: {e}") from e
        logger.info("connected to stream: source=%s position=%s", self.source.key(), position)

        last_seen: str | None = None
        last_saved: str | None = None
        lines_read = 0
        events_seen = 0
        inserted = 0
        duplicates = 0
        malformed = 0
        store_failures = 0
        checkpoints_written = 0
        error: TransportError | None = None

        unregister = cancel.on_cancel(feed.close)
        heartbeat = Heartbeat(session, self.heartbeat_seconds)
        heartbeat.start()
        try:
            with feed:
                for line in feed:
                    lines_read += 1
                    session.lines_read += 1
                    session.touch()
                    if cancel.cancelled:
                        break
                    if not line or line.startswith(":"):
                        continue

                    field_name, _, value = line.partition(":")
                    if value.startswith(" "):
                        value = value[1:]

                    if field_name == "id":
                        if value:
                            last_seen = value
                            logger.debug("received event id: %s", value)
                        continue
                    if field_name != "data":
                        continue

                    events_seen += 1
                    session.events_seen += 1
                    status = ingest(self.store, value)
                    if status is IngestStatus.DUPLICATE:
                        duplicates += 1
                        session.duplicates += 1
                        continue
                    if status is IngestStatus.MALFORMED:
                        malformed += 1
                        session.malformed += 1
                        continue
                    if status is IngestStatus.FAILED:
                        store_failures += 1
                        session.store_failures += 1
                        continue

                    inserted += 1
                    session.inserted += 1
                    if inserted % self.checkpoint_every == 0 and last_seen:
                        if self._save(last_seen):
                            checkpoints_written += 1
                            last_saved = last_seen
        except TransportError as e:
            if not cancel.cancelled:
                error = e
        finally:
            heartbeat.stop()
            unregister()
            if last_seen and last_seen != last_saved:
                logger.info("saving final stream cursor: %s", last_seen)
                if self._save(last_seen):
                    checkpoints_written += 1

        duration_ms = int((time.monotonic() - start_t) * 1000)
        if error is not None:
            raise StreamError(f"stream disconnected after {lines_read} lines, {inserted} new events: {error}") from error

        if cancel.cancelled:
            logger.info("stream cancelled: lines=%d new=%d", lines_read, inserted)
        else:
            logger.info("stream ended cleanly: lines=%d new=%d duplicates=%d", lines_read, inserted, duplicates)
        return StreamRunReport(
            start_position=position,
            last_position=last_seen,
            lines_read=lines_read,
            events_seen=events_seen,
            inserted=inserted,
            duplicates=duplicates,
            malformed=malformed,
            store_failures=store_failures,
            checkpoints_written=checkpoints_written,
            cancelled=cancel.cancelled,
            duration_ms=duration_ms,
        )

    def _save(self, position: str) -> bool:
        try:
            self.store.set_position(position)
        except StoreError as e:
            logger.warning("failed to update stream cursor: %s", e)
            return False
        logger.info("updated stream cursor: %s", position)
        return True
