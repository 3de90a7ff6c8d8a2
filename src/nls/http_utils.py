from __future__ import annotations

import http.client
import json
import logging
import random
import socket
import ssl
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Iterator, Mapping


logger = logging.getLogger(__name__)


class TransportError(RuntimeError):
    """网络层失败：连接失败、非 2xx 状态码、读取中断等。"""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


@dataclass(frozen=True, slots=True)
class HttpResponse:
    status: int
    url: str
    headers: Mapping[str, str]
    body: bytes

    def json(self) -> Any:
        return json.loads(self.body.decode("utf-8"))


MAX_LINE_BYTES = 1024 * 1024


class LineStream:
    """
    长连接按行读取（SSE 风格的 text/event-stream）。

    - 迭代得到去掉行尾换行的 str；单行超过 max_line_bytes 视为读取失败
    - 读取异常统一转为 TransportError
    - close() 只关闭底层 socket，可以在其它线程或信号处理函数中调用，用于打断阻塞中的读取；
      响应对象本身在 __exit__ 中释放
    """

    def __init__(self, resp: http.client.HTTPResponse, *, max_line_bytes: int = MAX_LINE_BYTES) -> None:
        self._resp = resp
        self._max_line_bytes = max_line_bytes
        self._closed = False

    def __iter__(self) -> Iterator[str]:
        while True:
            try:
                raw = self._resp.readline(self._max_line_bytes + 2)
            except (OSError, ValueError, http.client.HTTPException) as e:
                raise TransportError(f"stream read failed: {type(e).__name__}: {e}") from e
            if not raw:
                return
            line = raw.rstrip(b"\r\n")
            if len(line) > self._max_line_bytes:
                raise TransportError(f"stream line exceeds {self._max_line_bytes} bytes")
            yield line.decode("utf-8", errors="replace")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        sock = getattr(getattr(getattr(self._resp, "fp", None), "raw", None), "_sock", None)
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass

    def __enter__(self) -> LineStream:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.close()
        try:
            self._resp.close()
        except OSError:
            pass


class HttpClient:
    """
    轻量 HTTP 客户端（仅依赖标准库）。

    策略：
    - get：统一超时、User-Agent；对 429/5xx 做有限次退避重试（max_retries=0 则不重试）
    - open_stream：无读超时的长连接，不做重试（由上层编排负责重连退避）
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 30.0,
        user_agent: str = "nextdns-log-sync/0",
        max_retries: int = 0,
        base_backoff_seconds: float = 0.8,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._user_agent = user_agent
        self._max_retries = max_retries
        self._base_backoff_seconds = base_backoff_seconds
        self._ssl_context = ssl.create_default_context()

    def _request(self, url: str, headers: Mapping[str, str] | None) -> urllib.request.Request:
        request_headers = {"User-Agent": self._user_agent}
        if headers:
            request_headers.update(dict(headers))
        return urllib.request.Request(url=url, headers=request_headers, method="GET")

    def get(self, url: str, *, headers: Mapping[str, str] | None = None) -> HttpResponse:
        last_error: TransportError | None = None
        for attempt in range(self._max_retries + 1):
            try:
                req = self._request(url, headers)
                with urllib.request.urlopen(req, timeout=self._timeout_seconds, context=self._ssl_context) as resp:
                    resp_headers = {k: v for k, v in resp.headers.items()}
                    return HttpResponse(
                        status=getattr(resp, "status", 200),
                        url=resp.geturl(),
                        headers=resp_headers,
                        body=resp.read(),
                    )
            except urllib.error.HTTPError as e:
                last_error = TransportError(f"GET {_redact(url)} returned status {e.code}", status=e.code)
                retry = e.code in (429, 500, 502, 503, 504)
                if (not retry) or attempt >= self._max_retries:
                    raise last_error from e
            except (urllib.error.URLError, TimeoutError, OSError, http.client.HTTPException) as e:
                last_error = TransportError(f"GET {_redact(url)} failed: {type(e).__name__}: {e}")
                if attempt >= self._max_retries:
                    raise last_error from e

            backoff = self._base_backoff_seconds * (2**attempt)
            jitter = random.random() * 0.25 * backoff
            logger.warning("http retry: url=%s attempt=%d error=%s", _redact(url), attempt + 1, last_error)
            time.sleep(backoff + jitter)

        assert last_error is not None
        raise last_error

    def open_stream(self, url: str, *, headers: Mapping[str, str] | None = None) -> LineStream:
        req = self._request(url, headers)
        try:
            resp = urllib.request.urlopen(req, timeout=None, context=self._ssl_context)
        except urllib.error.HTTPError as e:
            raise TransportError(f"stream {_redact(url)} returned status {e.code}", status=e.code) from e
        except (urllib.error.URLError, TimeoutError, OSError, http.client.HTTPException) as e:
            raise TransportError(f"stream {_redact(url)} failed: {type(e).__name__}: {e}") from e
        return LineStream(resp)


def with_query_params(url: str, params: Mapping[str, str | None]) -> str:
    parsed = urllib.parse.urlparse(url)
    q = dict(urllib.parse.parse_qsl(parsed.query, keep_blank_values=True))
    q.update({k: v for k, v in params.items() if v is not None})
    new_query = urllib.parse.urlencode(q)
    return urllib.parse.urlunparse(parsed._replace(query=new_query))


def _redact(url: str) -> str:
    """日志中隐去 query（cursor/id 可能很长），只保留路径。"""
    parsed = urllib.parse.urlparse(url)
    return urllib.parse.urlunparse(parsed._replace(query=""))
