"""실행 종료 시 저장 + 주기적 집계 작업."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field

from ci_analytics.aggregator import (
    AggregationError,
    AggregationOptions,
    aggregate_events,
    merge_aggregated_analytics,
)
from ci_analytics.cache_store import AnalyticsCacheStore
from ci_analytics.collector import CollectionContext, utc_now
from ci_analytics.manager import MetricsManager
from ci_analytics.models import (
    ActionMetrics,
    AggregatedAnalytics,
    AnalyticsEvent,
    MetricsBundle,
)

logger = logging.getLogger(__name__)


# ── 결과 데이터클래스 ─────────────────────────────────────


@dataclass
class RunReport:
    """persist_run 결과."""

    metrics_collected: int = 0
    stored: bool = False
    skipped: bool = False
    key: str | None = None
    error: str | None = None


@dataclass
class AggregationReport:
    repository: str
    events_read: int = 0
    dates_missing: list[str] = field(default_factory=list)
    aggregated: AggregatedAnalytics | None = None
    stored_key: str | None = None
    errors: list[str] = field(default_factory=list)


def build_analytics_event(
    context: CollectionContext,
    metrics: MetricsBundle,
    action: ActionMetrics,
) -> AnalyticsEvent:
    return AnalyticsEvent(
        id=f"{context.workflow.run_id}-{uuid.uuid4().hex[:12]}",
        timestamp=utc_now(),
        repository=context.repository,
        workflow=context.workflow,
        cache=metrics.cache,
        docker=metrics.docker,
        api=metrics.api,
        failures=metrics.failures,
        action=action,
    )


async def persist_run(
    context: CollectionContext,
    manager: MetricsManager,
    store: AnalyticsCacheStore,
    action: ActionMetrics,
    *,
    bucket: str | None = None,
) -> RunReport:
    """수집 → 이벤트 생성 → 당일 이벤트 목록에 추가 저장.

    동시 실행 간 쓰기는 마지막 저장이 이긴다. 예외를 전파하지 않는다.
    기존 목록 조회가 전송 오류로 실패하면 저장하지 않고 오류를 보고한다.
    손상되었거나 지원하지 않는 스키마의 목록은 새 이벤트로 덮어쓴다.
    """
    report = RunReport()
    if not context.config.enabled:
        report.skipped = True
        return report

    try:
        bundle = await manager.collect_all(context)
        report.metrics_collected = bundle.total()
        event = build_analytics_event(context, bundle, action)
    except Exception as e:
        logger.error(
            "Failed to build analytics event: %s",
            e,
            extra={"event_code": "EVENT_BUILD_FAILED", "repository": context.repository.full_name},
        )
        report.error = str(e)
        return report

    if not store.is_available():
        logger.info(
            "Remote cache unavailable, skipping persistence",
            extra={"event_code": "PERSIST_SKIPPED", "repository": context.repository.full_name},
        )
        report.skipped = True
        return report

    repository = context.repository.full_name
    existing = await store.retrieve_events(repository, bucket)
    if existing.error and not existing.hit:
        # 읽기 자체가 실패하면 기존 목록을 덮어쓰지 않도록 저장을 건너뛴다
        logger.warning(
            "Existing events unavailable, skipping store: %s",
            existing.error,
            extra={"event_code": "EVENTS_READ_FAILED", "repository": repository},
        )
        report.key = existing.key
        report.error = existing.error
        return report

    events = list(existing.data) if existing.success and existing.data else []
    if existing.error:
        logger.warning(
            "Existing events unreadable, overwriting: %s",
            existing.error,
            extra={"event_code": "EVENTS_OVERWRITE", "repository": repository},
        )
    events.append(event)

    result = await store.store_events(repository, events, bucket)
    report.stored = result.success
    report.key = result.key
    report.error = result.error
    return report


async def aggregate_repository(
    store: AnalyticsCacheStore,
    repository: str,
    dates: Sequence[str],
    *,
    options: AggregationOptions | None = None,
    persist: bool = True,
    bucket: str | None = None,
) -> AggregationReport:
    """여러 날짜의 이벤트를 읽어 하나의 집계를 만들고 (선택적으로) 저장한다."""
    report = AggregationReport(repository=repository)
    events: list[AnalyticsEvent] = []

    for day in dates:
        result = await store.retrieve_events(repository, day)
        if result.success:
            events.extend(result.data)
        elif result.error:
            report.errors.append(f"{day}: {result.error}")
        else:
            report.dates_missing.append(day)

    report.events_read = len(events)
    try:
        report.aggregated = aggregate_events(events, options)
    except AggregationError as e:
        report.errors.append(str(e))
        return report

    if persist and events:
        stored = await store.store_aggregated(repository, report.aggregated, bucket or dates[-1])
        if stored.success:
            report.stored_key = stored.key
        elif stored.error:
            report.errors.append(stored.error)

    logger.info(
        "Aggregated %d events for %s",
        len(events),
        repository,
        extra={"event_code": "AGGREGATE_REPOSITORY", "repository": repository, "count": len(events)},
    )
    return report


async def merge_repository_aggregates(
    store: AnalyticsCacheStore,
    repositories: Sequence[str],
    bucket: str | None = None,
) -> AggregatedAnalytics | None:
    """저장소별 집계를 읽어 병합한다. 읽은 집계가 없으면 None.

    Raises:
        SchemaVersionMismatchError: 저장된 집계의 schemaVersion이 서로 다른 경우
    """
    aggregates: list[AggregatedAnalytics] = []
    for repository in repositories:
        result = await store.retrieve_aggregated(repository, bucket)
        if result.success:
            aggregates.append(result.data)
        else:
            logger.info(
                "No aggregate for %s",
                repository,
                extra={"event_code": "AGGREGATE_MISSING", "repository": repository},
            )

    if not aggregates:
        return None
    return merge_aggregated_analytics(aggregates)
