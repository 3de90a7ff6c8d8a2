from __future__ import annotations

import enum
import logging
from typing import Any

from .models import DnsLogEvent, EventParseError, event_identity
from .state.store import InsertOutcome, RecordStore, StoreError


logger = logging.getLogger(__name__)


class IngestStatus(enum.Enum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    MALFORMED = "malformed"
    FAILED = "failed"


def ingest(store: RecordStore, payload: Any) -> IngestStatus:
    """
    单条事件入库：解析 -> identity -> insert-or-ignore。

    payload 可以是已解码的 JSON 对象（分页）或一行 JSON 文本（流式）。
    解析失败与写库失败只记录日志，不向上抛出。
    """
    try:
        if isinstance(payload, str):
            event = DnsLogEvent.from_json_line(payload)
        else:
            event = DnsLogEvent.from_json_dict(payload)
    except EventParseError as e:
        logger.warning("skip malformed event: error=%s", e)
        return IngestStatus.MALFORMED

    identity = event_identity(event)
    try:
        outcome = store.put(identity, event)
    except StoreError as e:
        logger.error("insert failed: id=%s domain=%s error=%s", identity, event.domain, e)
        return IngestStatus.FAILED

    if outcome is InsertOutcome.DUPLICATE:
        logger.debug("duplicate event: id=%s domain=%s", identity, event.domain)
        return IngestStatus.DUPLICATE
    logger.debug(
        "inserted event: id=%s domain=%s status=%s device=%s",
        identity,
        event.domain,
        event.status,
        event.device_name or "-",
    )
    return IngestStatus.INSERTED
