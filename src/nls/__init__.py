"""
NextDNS Log Sync (nls)

将 NextDNS 的 DNS 查询日志镜像到本地库（SQLite / PostgreSQL），每条事件只落一次：
- 没有 checkpoint 时走分页接口回填历史，并顺带发现流式接口的起始位置
- 有 checkpoint 时走流式接口实时消费，断线后指数退避重连
"""

from .models import DnsLogEvent, event_identity

__all__ = [
    "DnsLogEvent",
    "event_identity",
]
