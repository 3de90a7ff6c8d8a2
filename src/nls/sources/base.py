from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Protocol


class PageFormatError(ValueError):
    """分页响应结构不符合预期（非 JSON / 缺少 data 数组等）。"""


@dataclass(frozen=True, slots=True)
class LogPage:
    """
    分页接口的一页结果。

    items:
      - 原始事件对象（未解析），逐条解析失败不影响整页
    cursor:
      - 下一页游标；空串表示没有更多页
    stream_id:
      - 流式接口的起始位置（通常只在一次分页运行的第一页有意义）
    """

    items: list[Any]
    cursor: str
    stream_id: str


class LineFeed(Protocol):
    """按行迭代的长连接；close() 需要可以跨线程调用。"""

    def __iter__(self) -> Iterator[str]: ...

    def __enter__(self) -> LineFeed: ...

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None: ...

    def close(self) -> None: ...


class LogSource(Protocol):
    """
    远端日志源接口：同一份日志的两种读取协议。
    """

    def key(self) -> str: ...

    def fetch_page(self, cursor: str | None, *, limit: int) -> LogPage: ...

    def open_stream(self, position: str) -> LineFeed: ...
