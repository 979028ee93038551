"""실패 이벤트 수집기.

record_failure는 메시지를 classifier로 분류하고, record_*_failure 계열은
분류를 건너뛰고 카테고리/타입과 문제 해결 가이드를 직접 지정한다.
"""

from __future__ import annotations

import logging
import traceback
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ci_analytics.classifier import classify_failure
from ci_analytics.collector import BaseCollector, CollectionContext, new_operation_id, utc_now
from ci_analytics.models import FailureMetrics, empty_failure_counts
from ci_analytics.store import OperationStore

logger = logging.getLogger(__name__)

TROUBLESHOOTING_GUIDES = {
    "docker-permission": "Check Docker daemon permissions and user group membership",
    "authentication": "Verify GitHub App credentials and installation permissions",
    "cache-corruption": "Clear corrupted cache and restart with fresh cache",
    "network": "Check network connectivity and firewall settings",
}


@dataclass(frozen=True)
class FailureEvent:
    category: str
    type: str
    timestamp: datetime
    message: str
    component: str
    stack_trace: str | None = None
    recoverable: bool = False
    retry_attempts: int | None = None
    context: dict[str, Any] | None = None


def _stack_of(error: BaseException | None) -> str | None:
    if error is None:
        return None
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


def record_failure(
    store: OperationStore[FailureEvent],
    message: str,
    component: str,
    *,
    error: BaseException | None = None,
    recoverable: bool = False,
    retry_attempts: int | None = None,
    context: dict[str, Any] | None = None,
    operation_id: str | None = None,
    now: datetime | None = None,
) -> str:
    """실패를 분류해 기록하고 작업 id를 반환한다."""
    classification = classify_failure(message)
    op_id = operation_id or new_operation_id("failure", component)
    store.add(
        op_id,
        FailureEvent(
            category=classification.category,
            type=classification.type,
            timestamp=now or utc_now(),
            message=message,
            component=component,
            stack_trace=_stack_of(error),
            recoverable=recoverable,
            retry_attempts=retry_attempts,
            context=context,
        ),
    )
    logger.debug(
        "Failure recorded as %s/%s",
        classification.category,
        classification.type,
        extra={"event_code": "FAILURE_RECORDED", "component": component},
    )
    return op_id


def record_specific_failure(
    store: OperationStore[FailureEvent],
    category: str,
    failure_type: str,
    message: str,
    component: str,
    *,
    troubleshooting_guide: str | None = None,
    recoverable: bool = False,
    retry_attempts: int | None = None,
    context: dict[str, Any] | None = None,
    error: BaseException | None = None,
    now: datetime | None = None,
) -> str:
    """분류를 거치지 않고 카테고리/타입을 지정해 기록한다."""
    merged = dict(context or {})
    if troubleshooting_guide:
        merged["troubleshootingGuide"] = troubleshooting_guide

    op_id = new_operation_id("failure", component)
    store.add(
        op_id,
        FailureEvent(
            category=category,
            type=failure_type,
            timestamp=now or utc_now(),
            message=message,
            component=component,
            stack_trace=_stack_of(error),
            recoverable=recoverable,
            retry_attempts=retry_attempts,
            context=merged or None,
        ),
    )
    return op_id


def record_docker_permission_failure(
    store: OperationStore[FailureEvent],
    message: str,
    *,
    context: dict[str, Any] | None = None,
) -> str:
    return record_specific_failure(
        store,
        "docker-issues",
        "permission-denied",
        message,
        "docker",
        troubleshooting_guide=TROUBLESHOOTING_GUIDES["docker-permission"],
        recoverable=True,
        context=context,
    )


def record_auth_failure(
    store: OperationStore[FailureEvent],
    message: str,
    endpoint: str,
    auth_method: str,
) -> str:
    return record_specific_failure(
        store,
        "authentication",
        "token-auth-failed",
        message,
        "api",
        troubleshooting_guide=TROUBLESHOOTING_GUIDES["authentication"],
        context={"endpoint": endpoint, "scheme": auth_method},
    )


def record_cache_corruption_failure(
    store: OperationStore[FailureEvent],
    message: str,
    cache_entry: str,
    operation: str,
) -> str:
    return record_specific_failure(
        store,
        "cache-corruption",
        "invalid-cache-data",
        message,
        "cache",
        troubleshooting_guide=TROUBLESHOOTING_GUIDES["cache-corruption"],
        recoverable=True,
        context={"cacheEntry": cache_entry, "operation": operation},
    )


def record_network_failure(
    store: OperationStore[FailureEvent],
    message: str,
    endpoint: str,
    retry_attempts: int,
) -> str:
    """메시지에 timeout이 있으면 timeout/request-timeout, 아니면 연결 실패로 기록한다."""
    if "timeout" in message.lower():
        category, failure_type = "timeout", "request-timeout"
    else:
        category, failure_type = "network-issues", "connection-failed"
    return record_specific_failure(
        store,
        category,
        failure_type,
        message,
        "api",
        troubleshooting_guide=TROUBLESHOOTING_GUIDES["network"],
        recoverable=True,
        retry_attempts=retry_attempts,
        context={"endpoint": endpoint},
    )


def failure_count_by_category(store: OperationStore[FailureEvent]) -> dict[str, int]:
    counts = empty_failure_counts()
    for event in store.all():
        if event.category in counts:
            counts[event.category] += 1
    return counts


class FailureMetricsCollector(BaseCollector[FailureEvent, FailureMetrics]):
    metric_type = "failures"

    def transform(self, record: FailureEvent, context: CollectionContext) -> FailureMetrics:
        return FailureMetrics(
            category=record.category,  # type: ignore[arg-type]
            type=record.type,
            timestamp=record.timestamp,
            message=self.scrub(record.message) or "",
            stack_trace=self.scrub(record.stack_trace),
            component=record.component,  # type: ignore[arg-type]
            recoverable=record.recoverable,
            retry_attempts=record.retry_attempts,
            context=self.sanitize_mapping(record.context),
        )
