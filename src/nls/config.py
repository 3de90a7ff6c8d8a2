from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Mapping

from .sources.nextdns import DEFAULT_API_BASE_URL


ENV_PROFILE_ID = "NEXTDNS_PROFILE_ID"
ENV_API_KEY = "NEXTDNS_API_KEY"
ENV_DATABASE_URL = "DATABASE_URL"


class ConfigError(ValueError):
    """配置缺失或非法；在任何网络 / 数据库访问之前抛出。"""


def _require_dict(value: Any, *, where: str) -> Mapping[str, Any]:
    if not isinstance(value, dict):
        raise ConfigError(f"Expected object at {where}, got {type(value).__name__}")
    return value


def _get_int(d: Mapping[str, Any], key: str, default: int) -> int:
    v = d.get(key, default)
    if isinstance(v, bool):
        raise ConfigError(f"{key} must be an integer, got {v!r}")
    try:
        return int(v)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} must be an integer, got {v!r}") from e


def _get_float(d: Mapping[str, Any], key: str, default: float) -> float:
    v = d.get(key, default)
    if isinstance(v, bool):
        raise ConfigError(f"{key} must be a number, got {v!r}")
    try:
        return float(v)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} must be a number, got {v!r}") from e


def _get_str(d: Mapping[str, Any], key: str, default: str | None = None) -> str | None:
    v = d.get(key, default)
    if v is None:
        return None
    return str(v)


def _first(*values: str | None) -> str:
    for v in values:
        if v and v.strip():
            return v.strip()
    return ""


@dataclass(frozen=True, slots=True)
class AppConfig:
    """
    应用总配置。

    profile_id / api_key：
      - NextDNS profile 与 API key（必填）
    database：
      - SQLite 文件路径，或 postgres:// DSN（必填）
    page_size / page_delay_seconds：
      - 分页回填的每页条数与翻页间隔
    checkpoint_every / heartbeat_seconds：
      - 流式消费时每新增多少条写一次 checkpoint；心跳日志间隔
    backoff_initial_seconds / backoff_max_seconds：
      - 流式断线重连的指数退避起点与上限
    """

    profile_id: str
    api_key: str
    database: str
    api_base_url: str = DEFAULT_API_BASE_URL
    page_size: int = 1000
    page_delay_seconds: float = 0.1
    http_timeout_seconds: float = 30.0
    http_max_retries: int = 0
    checkpoint_every: int = 100
    heartbeat_seconds: float = 30.0
    backoff_initial_seconds: float = 1.0
    backoff_max_seconds: float = 60.0

    def validate(self) -> AppConfig:
        missing = [
            name
            for name, value in (
                ("profile_id", self.profile_id),
                ("api_key", self.api_key),
                ("database", self.database),
            )
            if not value
        ]
        if missing:
            raise ConfigError(
                "Missing required configuration: "
                + ", ".join(missing)
                + f". Set --profile/--api-key/--db or {ENV_PROFILE_ID}/{ENV_API_KEY}/{ENV_DATABASE_URL}."
            )
        if not 1 <= self.page_size <= 1000:
            raise ConfigError(f"page_size must be within 1..1000, got {self.page_size}")
        if self.checkpoint_every < 1:
            raise ConfigError(f"checkpoint_every must be >= 1, got {self.checkpoint_every}")
        if self.http_max_retries < 0:
            raise ConfigError(f"http_max_retries must be >= 0, got {self.http_max_retries}")
        if self.page_delay_seconds < 0 or self.heartbeat_seconds < 0:
            raise ConfigError("page_delay_seconds and heartbeat_seconds must be >= 0")
        if self.http_timeout_seconds <= 0:
            raise ConfigError(f"http_timeout_seconds must be > 0, got {self.http_timeout_seconds}")
        if self.backoff_initial_seconds <= 0 or self.backoff_max_seconds < self.backoff_initial_seconds:
            raise ConfigError(
                "backoff must satisfy 0 < backoff_initial_seconds <= backoff_max_seconds, got "
                f"{self.backoff_initial_seconds}/{self.backoff_max_seconds}"
            )
        return self


def load_config(
    config_path: str | None = None,
    *,
    profile_id: str | None = None,
    api_key: str | None = None,
    database: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> AppConfig:
    """
    配置来源优先级：命令行参数 > 环境变量 > JSON 配置文件 > 默认值。

    JSON 顶层结构（示意，均可选）：
    {
      "profile_id": "abc123",
      "api_key_env": "NEXTDNS_API_KEY",
      "database": "./nextdns_logs.sqlite3",
      "page_size": 1000,
      "checkpoint_every": 100,
      "backoff": { "initial_seconds": 1, "max_seconds": 60 }
    }
    API key 只通过环境变量（api_key_env 指定名称）或命令行传入，不写入配置文件。
    """
    env = os.environ if environ is None else environ

    root: Mapping[str, Any] = {}
    if config_path:
        try:
            with open(config_path, "rb") as f:
                raw = json.loads(f.read().decode("utf-8"))
        except OSError as e:
            raise ConfigError(f"cannot read config file {config_path!r}: {e}") from e
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ConfigError(f"config file {config_path!r} is not valid JSON: {e}") from e
        root = _require_dict(raw, where="$")

    backoff = _require_dict(root.get("backoff", {}), where="$.backoff")
    api_key_env = _get_str(root, "api_key_env", ENV_API_KEY) or ENV_API_KEY

    config = AppConfig(
        profile_id=_first(profile_id, env.get(ENV_PROFILE_ID), _get_str(root, "profile_id")),
        api_key=_first(api_key, env.get(api_key_env)),
        database=_first(database, env.get(ENV_DATABASE_URL), _get_str(root, "database")),
        api_base_url=_get_str(root, "api_base_url", DEFAULT_API_BASE_URL) or DEFAULT_API_BASE_URL,
        page_size=_get_int(root, "page_size", 1000),
        page_delay_seconds=_get_float(root, "page_delay_seconds", 0.1),
        http_timeout_seconds=_get_float(root, "http_timeout_seconds", 30.0),
        http_max_retries=_get_int(root, "http_max_retries", 0),
        checkpoint_every=_get_int(root, "checkpoint_every", 100),
        heartbeat_seconds=_get_float(root, "heartbeat_seconds", 30.0),
        backoff_initial_seconds=_get_float(backoff, "initial_seconds", 1.0),
        backoff_max_seconds=_get_float(backoff, "max_seconds", 60.0),
    )
    return config.validate()
