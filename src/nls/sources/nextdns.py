from __future__ import annotations

import json
import urllib.parse
from dataclasses import dataclass
from typing import Any, Mapping

from ..http_utils import HttpClient, LineStream, with_query_params
from .base import LogPage, PageFormatError


DEFAULT_API_BASE_URL = "https://api.nextdns.io"


def _get_str(d: Any, *path: str) -> str:
    cur = d
    for key in path:
        if not isinstance(cur, dict):
            return ""
        cur = cur.get(key)
    if cur is None:
        return ""
    return str(cur)


@dataclass(slots=True)
class NextDnsLogSource:
    """
    NextDNS 某个 profile 的 DNS 查询日志。

    - 分页：GET /profiles/{profile}/logs?limit=N[&cursor=...]
      响应 {"data": [...], "meta": {"pagination": {"cursor": ...}, "stream": {"id": ...}}}
    - 流式：GET /profiles/{profile}/logs/stream?id=...，按行返回 id:/data: 记录
    """

    profile_id: str
    api_key: str
    http: HttpClient
    api_base_url: str = DEFAULT_API_BASE_URL

    def key(self) -> str:
        return f"nextdns:{self.profile_id}:logs"

    def _headers(self) -> Mapping[str, str]:
        return {"Accept": "application/json", "X-Api-Key": self.api_key}

    def _logs_url(self, suffix: str = "") -> str:
        base = self.api_base_url.rstrip("/")
        profile = urllib.parse.quote(self.profile_id, safe="")
        return f"{base}/profiles/{profile}/logs{suffix}"

    def fetch_page(self, cursor: str | None, *, limit: int) -> LogPage:
        url = with_query_params(self._logs_url(), {"limit": str(limit), "cursor": cursor or None})
        resp = self.http.get(url, headers=self._headers())
        try:
            data = resp.json()
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise PageFormatError(f"logs page is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise PageFormatError(f"logs page expected object, got {type(data).__name__}")
        items = data.get("data")
        if items is None:
            items = []
        if not isinstance(items, list):
            raise PageFormatError(f"logs page 'data' expected list, got {type(items).__name__}")

        return LogPage(
            items=items,
            cursor=_get_str(data, "meta", "pagination", "cursor"),
            stream_id=_get_str(data, "meta", "stream", "id"),
        )

    def open_stream(self, position: str) -> LineStream:
        url = with_query_params(self._logs_url("/stream"), {"id": position})
        headers = dict(self._headers())
        headers["Accept"] = "text/event-stream"
        return self.http.open_stream(url, headers=headers)
