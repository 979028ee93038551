"""이벤트 집계 및 집계 병합.

- aggregate_events: AnalyticsEvent 목록 → AggregatedAnalytics
- aggregate_events_extended: 분포(중앙값, 표준편차, p95/p99)와 저장소 통계 포함
- merge_aggregated_analytics: 여러 집계를 event_count 가중 평균으로 병합
"""

from __future__ import annotations

import logging
import math
import statistics
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from ci_analytics.models import (
    AggregatedAnalytics,
    AnalyticsEvent,
    ExtendedAggregatedAnalytics,
    MetricBreakdown,
    RepositoryStats,
    empty_failure_counts,
    is_supported_schema_version,
)

logger = logging.getLogger(__name__)

# 가중 평균으로 병합되는 필드
_RATE_FIELDS = (
    "cache_hit_rate",
    "avg_cache_duration",
    "avg_docker_duration",
    "avg_api_duration",
    "avg_action_duration",
    "action_success_rate",
)


class AggregationError(ValueError):
    """집계/병합 입력 오류."""


class SchemaVersionMismatchError(AggregationError):
    def __init__(self, versions: Iterable[str]):
        self.versions = sorted(set(versions))
        super().__init__(f"Cannot merge aggregates with different schema versions: {self.versions}")


class UnsupportedSchemaVersionError(AggregationError):
    def __init__(self, version: str):
        self.version = version
        super().__init__(f"Unsupported schema version: {version}")


@dataclass(frozen=True)
class AggregationOptions:
    period: str = "day"
    start_time: datetime | None = None
    end_time: datetime | None = None
    repositories: tuple[str, ...] | None = None


# ── 통계 헬퍼 ───────────────────────────────────────────


def _mean(values: Sequence[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


def _percent(part: int, total: int) -> float:
    return round(part / total * 100, 2) if total else 0.0


def _percentile(sorted_values: Sequence[float], p: float) -> float:
    """nearest-rank 백분위수."""
    if not sorted_values:
        return 0.0
    rank = max(1, math.ceil(p / 100 * len(sorted_values)))
    return float(sorted_values[rank - 1])


def calculate_metric_breakdown(values: Iterable[float]) -> MetricBreakdown:
    data = sorted(float(v) for v in values)
    if not data:
        return MetricBreakdown()
    return MetricBreakdown(
        count=len(data),
        sum=sum(data),
        average=sum(data) / len(data),
        median=statistics.median(data),
        min=data[0],
        max=data[-1],
        std_dev=statistics.pstdev(data),
        p95=_percentile(data, 95),
        p99=_percentile(data, 99),
    )


def size_class(size: int | None) -> str:
    if size is None:
        return "unknown"
    if size < 1000:
        return "small"
    if size < 10000:
        return "medium"
    if size < 100000:
        return "large"
    return "enterprise"


# ── 집계 ─────────────────────────────────────────────────


def filter_events(
    events: Iterable[AnalyticsEvent],
    options: AggregationOptions | None = None,
) -> list[AnalyticsEvent]:
    """시간 범위와 저장소 조건을 모두 만족하는 이벤트만 남긴다."""
    options = options or AggregationOptions()
    repos = set(options.repositories) if options.repositories else None
    selected = []
    for event in events:
        if options.start_time and event.timestamp < options.start_time:
            continue
        if options.end_time and event.timestamp > options.end_time:
            continue
        if repos is not None and event.repository.full_name not in repos:
            continue
        selected.append(event)
    return selected


def _check_versions(events: Iterable[AnalyticsEvent]) -> None:
    for event in events:
        if not is_supported_schema_version(event.schema_version):
            raise UnsupportedSchemaVersionError(event.schema_version)


def aggregate_events(
    events: Sequence[AnalyticsEvent],
    options: AggregationOptions | None = None,
) -> AggregatedAnalytics:
    """이벤트 목록을 기간 집계로 요약한다.

    Raises:
        UnsupportedSchemaVersionError: 지원하지 않는 schemaVersion 이벤트가 포함된 경우
    """
    options = options or AggregationOptions()
    _check_versions(events)
    selected = filter_events(events, options)

    now = datetime.now(tz=UTC)
    timestamps = [e.timestamp for e in selected]
    period_start = options.start_time or (min(timestamps) if timestamps else now)
    period_end = options.end_time or (max(timestamps) if timestamps else now)

    restores = [m for e in selected for m in e.cache if m.operation == "restore"]
    hits = sum(1 for m in restores if m.hit)

    failures = empty_failure_counts()
    for event in selected:
        for failure in event.failures:
            failures[failure.category] += 1

    successes = sum(1 for e in selected if e.action.success)

    aggregated = AggregatedAnalytics(
        period_start=period_start,
        period_end=period_end,
        event_count=len(selected),
        repository_count=len({e.repository.full_name for e in selected}),
        cache_hit_rate=_percent(hits, len(restores)),
        avg_cache_duration=_mean([m.duration for e in selected for m in e.cache]),
        avg_docker_duration=_mean([m.duration for e in selected for m in e.docker]),
        avg_api_duration=_mean([m.duration for e in selected for m in e.api]),
        failures_by_category=failures,
        avg_action_duration=_mean([e.action.duration for e in selected]),
        action_success_rate=_percent(successes, len(selected)),
    )
    logger.debug(
        "Aggregated %d/%d events (period=%s)",
        len(selected),
        len(events),
        options.period,
        extra={"event_code": "AGGREGATE_DONE", "count": len(selected)},
    )
    return aggregated


def aggregate_events_extended(
    events: Sequence[AnalyticsEvent],
    options: AggregationOptions | None = None,
) -> ExtendedAggregatedAnalytics:
    base = aggregate_events(events, options)
    selected = filter_events(events, options)

    per_event_hit_rates = []
    for event in selected:
        restores = [m for m in event.cache if m.operation == "restore"]
        if restores:
            per_event_hit_rates.append(_percent(sum(1 for m in restores if m.hit), len(restores)))

    cache = [m for e in selected for m in e.cache]
    docker = [m for e in selected for m in e.docker]
    api = [m for e in selected for m in e.api]

    rate_limit_hits = [
        sum(1 for m in e.api if m.secondary_rate_limit or m.rate_limit_remaining == 0)
        for e in selected
    ]

    by_operation = {
        op: calculate_metric_breakdown(m.duration for m in docker if m.operation == op)
        for op in sorted({m.operation for m in docker})
    }

    repos = {e.repository.full_name: e.repository for e in selected}
    stats = RepositoryStats(
        by_language=dict(Counter(r.language or "unknown" for r in repos.values())),
        by_size=dict(Counter(size_class(r.size) for r in repos.values())),
    )

    return ExtendedAggregatedAnalytics(
        **base.model_dump(),
        cache_metrics={
            "hitRate": calculate_metric_breakdown(per_event_hit_rates),
            "duration": calculate_metric_breakdown(m.duration for m in cache),
            "size": calculate_metric_breakdown(m.size for m in cache if m.size is not None),
        },
        docker_metrics={"duration": calculate_metric_breakdown(m.duration for m in docker)}
        | by_operation,
        api_metrics={
            "duration": calculate_metric_breakdown(m.duration for m in api),
            "rateLimitHits": calculate_metric_breakdown(rate_limit_hits),
        },
        repository_stats=stats,
    )


# ── 병합 ─────────────────────────────────────────────────


def _weighted(values: Sequence[float], weights: Sequence[int]) -> float:
    total = sum(weights)
    if total == 0:
        return sum(values) / len(values)
    return sum(v * w for v, w in zip(values, weights)) / total


def merge_aggregated_analytics(aggregates: Sequence[AggregatedAnalytics]) -> AggregatedAnalytics:
    """여러 집계를 하나로 병합한다.

    - event_count, repository_count, 실패 카테고리 수: 합산
    - 비율/평균 필드: event_count 가중 평균 (가중치 합이 0이면 단순 평균)
    - 기간: 가장 이른 period_start ~ 가장 늦은 period_end

    Raises:
        AggregationError: 입력이 비어 있는 경우
        SchemaVersionMismatchError: schemaVersion이 서로 다른 경우
        UnsupportedSchemaVersionError: 지원하지 않는 schemaVersion인 경우 (입력이 1개여도)
    """
    if not aggregates:
        raise AggregationError("Cannot merge empty aggregates")

    versions = {a.schema_version for a in aggregates}
    if len(versions) > 1:
        raise SchemaVersionMismatchError(versions)
    for version in versions:
        if not is_supported_schema_version(version):
            raise UnsupportedSchemaVersionError(version)

    if len(aggregates) == 1:
        return aggregates[0]

    weights = [a.event_count for a in aggregates]
    rates = {
        field: _weighted([getattr(a, field) for a in aggregates], weights)
        for field in _RATE_FIELDS
    }

    failures = empty_failure_counts()
    for aggregate in aggregates:
        for category, count in aggregate.failures_by_category.items():
            failures[category] += count

    return AggregatedAnalytics(
        period_start=min(a.period_start for a in aggregates),
        period_end=max(a.period_end for a in aggregates),
        event_count=sum(weights),
        # 서로 다른 집계에 같은 저장소가 있으면 중복 집계된다
        repository_count=sum(a.repository_count for a in aggregates),
        failures_by_category=failures,
        schema_version=versions.pop(),
        **rates,
    )
