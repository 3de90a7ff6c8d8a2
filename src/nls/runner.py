from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from .batch import BatchFetcher
from .config import AppConfig
from .http_utils import HttpClient
from .lifecycle import Cancellation
from .session import BatchRunReport, StreamRunReport, SyncSession
from .sources.nextdns import NextDnsLogSource
from .state import open_store
from .state.store import StoreError, SyncStore
from .stream import StreamConsumer, StreamError


logger = logging.getLogger(__name__)

MODE_STREAM = "stream"
MODE_BATCH = "batch"


@dataclass(slots=True)
class SyncResult:
    mode: str
    session: SyncSession
    batch: BatchRunReport | None
    streams: tuple[StreamRunReport, ...]
    cancelled: bool
    duration_ms: int


@dataclass(slots=True)
class SyncOrchestrator:
    """
    顶层编排：在分页回填与流式消费之间选择，并负责流式断线的退避重连。

    - 有 checkpoint：STREAM，出错后按 1, 2, 4 ... 封顶 backoff_max_seconds 退避，
      每次重连前重新读取 checkpoint（流式消费过程中可能已前移）
    - 无 checkpoint：BATCH 跑一次，顺带发现并写入 stream id；本次运行不会再转入 STREAM
    - 退避时长在一次运行内只增不减，进程重启后才回到初始值
    """

    store: SyncStore
    batch: BatchFetcher
    stream: StreamConsumer
    backoff_initial_seconds: float = 1.0
    backoff_max_seconds: float = 60.0

    def prepare(self) -> None:
        self.store.ensure_schema()

    def run(self, cancel: Cancellation | None = None) -> SyncResult:
        """
        执行一次完整编排。

        BatchSyncError 直接向上抛出（致命）；StreamError 在内部消化并重连。
        """
        cancel = cancel or Cancellation()
        session = SyncSession(backoff_seconds=self.backoff_initial_seconds)

        position = self._read_position()
        if position:
            logger.info("using stream API: stream_id=%s", position)
            return self._run_stream(position, session, cancel)

        logger.info("no stream id available, using pagination")
        start_t = time.monotonic()
        report = self.batch.run(session, cancel)
        if report.stream_id:
            logger.info("pagination complete, next run will stream from %s", report.stream_id)
        else:
            logger.info("pagination complete, no stream id discovered")
        return SyncResult(
            mode=MODE_BATCH,
            session=session,
            batch=report,
            streams=(),
            cancelled=report.cancelled,
            duration_ms=int((time.monotonic() - start_t) * 1000),
        )

    def _run_stream(self, position: str, session: SyncSession, cancel: Cancellation) -> SyncResult:
        start_t = time.monotonic()
        reports: list[StreamRunReport] = []
        cancelled = False

        while not cancel.cancelled:
            session.attempts += 1
            try:
                report = self.stream.consume(position, session, cancel)
            except StreamError as e:
                if cancel.cancelled:
                    cancelled = True
                    break
                delay = session.backoff_seconds
                logger.warning(
                    "stream disconnected: attempt=%d error=%s; reconnecting in %.0fs",
                    session.attempts,
                    e,
                    delay,
                )
                if cancel.wait(delay):
                    cancelled = True
                    break
                session.advance_backoff(self.backoff_max_seconds)
                position = self._read_position() or position
                continue

            reports.append(report)
            cancelled = report.cancelled
            break
        else:
            cancelled = True

        logger.info(
            "stream sync done: attempts=%d inserted=%d duplicates=%d malformed=%d cancelled=%s",
            session.attempts,
            session.inserted,
            session.duplicates,
            session.malformed,
            cancelled,
        )
        return SyncResult(
            mode=MODE_STREAM,
            session=session,
            batch=None,
            streams=tuple(reports),
            cancelled=cancelled,
            duration_ms=int((time.monotonic() - start_t) * 1000),
        )

    def _read_position(self) -> str | None:
        try:
            return self.store.get_position()
        except StoreError as e:
            logger.warning("could not get stream id: %s", e)
            return None


def build_orchestrator(config: AppConfig) -> SyncOrchestrator:
    """
    根据配置装配 SyncOrchestrator：配置 -> 实例，编排类内只关注流程。
    """
    http = HttpClient(
        timeout_seconds=config.http_timeout_seconds,
        max_retries=config.http_max_retries,
    )
    store = open_store(config.database)
    source = NextDnsLogSource(
        profile_id=config.profile_id,
        api_key=config.api_key,
        http=http,
        api_base_url=config.api_base_url,
    )
    return SyncOrchestrator(
        store=store,
        batch=BatchFetcher(
            source=source,
            store=store,
            page_size=config.page_size,
            page_delay_seconds=config.page_delay_seconds,
        ),
        stream=StreamConsumer(
            source=source,
            store=store,
            checkpoint_every=config.checkpoint_every,
            heartbeat_seconds=config.heartbeat_seconds,
        ),
        backoff_initial_seconds=config.backoff_initial_seconds,
        backoff_max_seconds=config.backoff_max_seconds,
    )
