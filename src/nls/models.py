from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Mapping


_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_FRACTION_RE = re.compile(r"\.(\d+)")
_SURROGATE_RE = re.compile(r"[\ud800-\udfff]")


class EventParseError(ValueError):
    """单条事件 payload 无法解析（非对象 / 缺少必填字段 / 时间格式错误）。"""


def parse_rfc3339_datetime(value: str) -> datetime:
    """
    解析常见的 RFC3339/ISO8601 时间串为带 tzinfo 的 datetime。

    兼容：
    - 2026-02-10T12:34:56Z
    - 2026-02-10T12:34:56+00:00
    - 2026-02-10T12:34:56.123456789Z（超过微秒精度的部分会被截断）
    """
    value = value.strip()
    if value.endswith("Z") or value.endswith("z"):
        value = value[:-1] + "+00:00"
    m = _FRACTION_RE.search(value)
    if m and len(m.group(1)) > 6:
        value = value[: m.start(1)] + m.group(1)[:6] + value[m.end(1) :]
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


@dataclass(frozen=True, slots=True)
class StructuredDevice:
    """device 字段为 JSON 对象时的形态（保留原始对象用于落库）。"""

    id: str
    name: str
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True, slots=True)
class DeviceLabel:
    """device 字段为裸字符串时的形态。"""

    label: str


Device = StructuredDevice | DeviceLabel | None


def parse_device(value: Any) -> Device:
    if isinstance(value, dict):
        return StructuredDevice(
            id=str(value.get("id") or ""),
            name=str(value.get("name") or ""),
            raw=dict(value),
        )
    if isinstance(value, str):
        return DeviceLabel(label=value)
    return None


def _scrub_surrogates(value: Any) -> Any:
    """
    JSON 允许 "\\ud800" 这类孤立代理项转义，json.loads 会原样保留，
    但数据库驱动无法按 UTF-8 编码；统一替换为 U+FFFD。
    """
    if isinstance(value, str):
        return _SURROGATE_RE.sub("\ufffd", value)
    if isinstance(value, dict):
        return {_scrub_surrogates(k): _scrub_surrogates(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_scrub_surrogates(v) for v in value]
    return value


def _text(d: Mapping[str, Any], key: str) -> str:
    v = d.get(key)
    if v is None:
        return ""
    return str(v)


@dataclass(frozen=True, slots=True)
class DnsLogEvent:
    """
    DNS 查询事件：分页接口与流式接口返回同一结构，统一解析为该模型。

    远端不提供唯一键，幂等依赖 event_identity() 推导出的 identity。
    """

    timestamp: datetime
    domain: str
    record_type: str = ""
    status: str = ""
    blocked: bool = False
    client_ip: str = ""
    protocol: str = ""
    device: Device = None
    root: str = ""
    tracker: str = ""
    encrypted: bool = False

    @classmethod
    def from_json_dict(cls, obj: Any) -> DnsLogEvent:
        if not isinstance(obj, dict):
            raise EventParseError(f"event payload must be an object, got {type(obj).__name__}")
        obj = _scrub_surrogates(obj)
        ts = obj.get("timestamp")
        if not isinstance(ts, str) or not ts:
            raise EventParseError("event payload has no timestamp")
        try:
            timestamp = parse_rfc3339_datetime(ts)
        except ValueError as e:
            raise EventParseError(f"invalid timestamp {ts!r}: {e}") from e
        domain = obj.get("domain")
        if not isinstance(domain, str) or not domain:
            raise EventParseError("event payload has no domain")

        return cls(
            timestamp=timestamp,
            domain=domain,
            record_type=_text(obj, "type"),
            status=_text(obj, "status"),
            blocked=bool(obj.get("blocked")),
            client_ip=_text(obj, "clientIp"),
            protocol=_text(obj, "protocol"),
            device=parse_device(obj.get("device")),
            root=_text(obj, "root"),
            tracker=_text(obj, "tracker"),
            encrypted=bool(obj.get("encrypted")),
        )

    @classmethod
    def from_json_line(cls, payload: str) -> DnsLogEvent:
        try:
            obj = json.loads(payload)
        except json.JSONDecodeError as e:
            raise EventParseError(f"invalid JSON payload: {e}") from e
        return cls.from_json_dict(obj)

    @property
    def device_name(self) -> str:
        if isinstance(self.device, StructuredDevice):
            return self.device.name
        if isinstance(self.device, DeviceLabel):
            return self.device.label
        return ""

    def device_json(self) -> Any:
        """device 的落库形态：对象 / 字符串 / None。"""
        if isinstance(self.device, StructuredDevice):
            return dict(self.device.raw) if self.device.raw else {"id": self.device.id, "name": self.device.name}
        if isinstance(self.device, DeviceLabel):
            return self.device.label
        return None


def event_identity(event: DnsLogEvent) -> str:
    """
    事件 identity（幂等键）：{unix 纳秒}-{domain}-{client_ip}。

    只依赖 timestamp/domain/client_ip，因此分页与流式两种协议得到的同一事件
    会映射到同一个 identity。同一时刻、同一域名、同一客户端的两条不同记录
    （例如 A 与 AAAA）会被视为重复，这是已知的精度取舍。
    """
    delta = event.timestamp - _EPOCH
    nanos = (delta // timedelta(microseconds=1)) * 1000
    return f"{nanos}-{event.domain}-{event.client_ip}"
