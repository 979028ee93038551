"""캐시 작업 수집기.

계측 지점은 record_operation_start/end 또는 record_operation으로 작업을 기록하고,
CacheMetricsCollector가 실행 종료 시 이를 CacheMetrics로 변환한다.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ci_analytics.collector import (
    BaseCollector,
    CollectionContext,
    duration_ms,
    new_operation_id,
    utc_now,
)
from ci_analytics.models import CACHE_KEY_VERSION, CacheMetrics
from ci_analytics.store import OperationStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheOperation:
    operation: str
    key: str
    start_time: datetime
    version: str = CACHE_KEY_VERSION
    end_time: datetime | None = None
    success: bool | None = None
    hit: bool | None = None
    size: int | None = None
    error: str | None = None
    metadata: dict[str, Any] | None = None


# ── 기록 API ───────────────────────────────────────────


def record_operation_start(
    store: OperationStore[CacheOperation],
    operation: str,
    key: str,
    *,
    version: str = CACHE_KEY_VERSION,
    metadata: dict[str, Any] | None = None,
    operation_id: str | None = None,
    now: datetime | None = None,
) -> str:
    """캐시 작업 시작을 기록하고 작업 id를 반환한다."""
    op_id = operation_id or new_operation_id(operation, key)
    store.add(
        op_id,
        CacheOperation(
            operation=operation,
            key=key,
            version=version,
            start_time=now or utc_now(),
            metadata=metadata,
        ),
    )
    return op_id


def record_operation_end(
    store: OperationStore[CacheOperation],
    operation_id: str,
    *,
    success: bool,
    hit: bool | None = None,
    size: int | None = None,
    error: str | None = None,
    metadata: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> bool:
    """작업 종료를 기록한다. 시작 기록이 없으면 False."""
    changes: dict[str, Any] = {
        "end_time": now or utc_now(),
        "success": success,
        "hit": hit,
        "size": size,
        "error": error,
    }
    if metadata is not None:
        existing = store.get(operation_id)
        merged = dict(existing.metadata or {}) if existing else {}
        merged.update(metadata)
        changes["metadata"] = merged

    if not store.update(operation_id, **changes):
        logger.warning(
            "Unknown cache operation id: %s",
            operation_id,
            extra={"event_code": "UNKNOWN_OPERATION", "component": "cache"},
        )
        return False
    return True


def record_operation(
    store: OperationStore[CacheOperation],
    operation: str,
    key: str,
    *,
    start_time: datetime,
    end_time: datetime,
    success: bool,
    hit: bool | None = None,
    size: int | None = None,
    error: str | None = None,
    version: str = CACHE_KEY_VERSION,
    metadata: dict[str, Any] | None = None,
    operation_id: str | None = None,
) -> str:
    """이미 끝난 캐시 작업을 한 번에 기록한다."""
    op_id = operation_id or new_operation_id(operation, key)
    store.add(
        op_id,
        CacheOperation(
            operation=operation,
            key=key,
            version=version,
            start_time=start_time,
            end_time=end_time,
            success=success,
            hit=hit,
            size=size,
            error=error,
            metadata=metadata,
        ),
    )
    return op_id


def cache_hit_rate(
    store: OperationStore[CacheOperation],
    key_pattern: str | None = None,
) -> float:
    """hit 여부가 기록된 restore 작업 중 hit 비율(%)."""
    restores = [
        op
        for op in store.all()
        if op.operation == "restore"
        and op.hit is not None
        and (key_pattern is None or key_pattern in op.key)
    ]
    if not restores:
        return 0.0
    hits = sum(1 for op in restores if op.hit)
    return float(round(hits / len(restores) * 100))


# ── 수집기 ─────────────────────────────────────────────


class CacheMetricsCollector(BaseCollector[CacheOperation, CacheMetrics]):
    metric_type = "cache"

    def transform(self, record: CacheOperation, context: CollectionContext) -> CacheMetrics:
        end_time = record.end_time or utc_now()
        error = record.error
        if record.end_time is None and error is None:
            error = "operation did not complete"
        return CacheMetrics(
            operation=record.operation,  # type: ignore[arg-type]
            key=record.key,
            version=record.version,
            start_time=record.start_time,
            end_time=end_time,
            duration=duration_ms(record.start_time, end_time),
            success=bool(record.success),
            hit=record.hit,
            size=record.size,
            error=self.scrub(error),
            metadata=self.sanitize_mapping(record.metadata),
        )
