from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from .http_utils import TransportError
from .ingest import IngestStatus, ingest
from .lifecycle import Cancellation
from .session import BatchRunReport, SyncSession
from .sources.base import LogSource, PageFormatError
from .state.store import StoreError, SyncStore


logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000


class BatchSyncError(RuntimeError):
    """分页回填失败（网络 / 响应格式），整次回填中止，不做单页重试。"""


@dataclass(slots=True)
class BatchFetcher:
    """
    分页回填：从最新往历史方向翻页，直到追平本地库或翻完。

    终止条件：
    - caught_up：某一页非空且全部是重复事件（本地已追平远端历史）
    - empty_page：返回空页
    - exhausted：返回的 cursor 为空
    副作用：第一页携带的 stream id 立即写入 checkpoint，供后续流式消费使用。
    """

    source: LogSource
    store: SyncStore
    page_size: int = DEFAULT_PAGE_SIZE
    page_delay_seconds: float = 0.1

    def run(self, session: SyncSession, cancel: Cancellation | None = None) -> BatchRunReport:
        cancel = cancel or Cancellation()
        start_t = time.monotonic()

        cursor: str | None = None
        pages = 0
        events_fetched = 0
        inserted = 0
        duplicates = 0
        malformed = 0
        store_failures = 0
        stream_id: str | None = None
        termination = "exhausted"

        logger.info("batch start: source=%s page_size=%d", self.source.key(), self.page_size)
        while True:
            try:
                page = self.source.fetch_page(cursor, limit=self.page_size)
            except (TransportError, PageFormatError) as e:
                raise BatchSyncError(f"fetch page {pages + 1} failed: {e}") from e
            pages += 1
            session.touch()

            if pages == 1 and page.stream_id:
                stream_id = page.stream_id
                self._save_stream_id(stream_id)

            if not page.items:
                termination = "empty_page"
                break

            page_inserted = 0
            page_duplicates = 0
            for item in page.items:
                status = ingest(self.store, item)
                if status is IngestStatus.INSERTED:
                    page_inserted += 1
                elif status is IngestStatus.DUPLICATE:
                    page_duplicates += 1
                elif status is IngestStatus.MALFORMED:
                    malformed += 1
                    session.malformed += 1
                else:
                    store_failures += 1
                    session.store_failures += 1

            events_fetched += len(page.items)
            inserted += page_inserted
            duplicates += page_duplicates
            session.events_seen += len(page.items)
            session.inserted += page_inserted
            session.duplicates += page_duplicates
            logger.info(
                "page fetched: page=%d events=%d new=%d duplicates=%d total_new=%d",
                pages,
                len(page.items),
                page_inserted,
                page_duplicates,
                inserted,
            )

            if page_duplicates == len(page.items):
                termination = "caught_up"
                logger.info("all events on page are duplicates, caught up with existing data")
                break

            cursor = page.cursor
            if not cursor:
                termination = "exhausted"
                break

            if cancel.wait(self.page_delay_seconds):
                termination = "cancelled"
                break

        duration_ms = int((time.monotonic() - start_t) * 1000)
        logger.info(
            "batch done: termination=%s pages=%d events=%d new=%d duplicates=%d malformed=%d store_failures=%d duration_ms=%d",
            termination,
            pages,
            events_fetched,
            inserted,
            duplicates,
            malformed,
            store_failures,
            duration_ms,
        )
        return BatchRunReport(
            pages=pages,
            events_fetched=events_fetched,
            inserted=inserted,
            duplicates=duplicates,
            malformed=malformed,
            store_failures=store_failures,
            stream_id=stream_id,
            termination=termination,
            cancelled=termination == "cancelled",
            duration_ms=duration_ms,
        )

    def _save_stream_id(self, stream_id: str) -> None:
        logger.info("saving stream id for future streaming: %s", stream_id)
        try:
            self.store.set_position(stream_id)
        except StoreError as e:
            logger.warning("failed to save stream id: %s", e)
