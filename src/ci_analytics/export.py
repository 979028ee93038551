"""이벤트/집계 내보내기 (json, csv, summary)."""

from __future__ import annotations

import csv
import gzip
import io
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

import orjson

from ci_analytics.aggregator import AggregationOptions, filter_events
from ci_analytics.models import AggregatedAnalytics, AnalyticsEvent

ExportFormat = Literal["json", "csv", "summary"]
EXPORT_FORMATS: tuple[str, ...] = ("json", "csv", "summary")

_EVENT_COLUMNS = (
    "id",
    "timestamp",
    "repository",
    "run_id",
    "success",
    "duration_ms",
    "cache_operations",
    "cache_hits",
    "docker_operations",
    "api_calls",
    "failures",
)

_AGGREGATE_COLUMNS = (
    "period_start",
    "period_end",
    "event_count",
    "repository_count",
    "cache_hit_rate",
    "avg_cache_duration",
    "avg_docker_duration",
    "avg_api_duration",
    "avg_action_duration",
    "action_success_rate",
    "total_failures",
)


def summarize_event(event: AnalyticsEvent) -> dict[str, Any]:
    """이벤트 1건의 평탄화된 요약."""
    return {
        "id": event.id,
        "timestamp": event.timestamp.isoformat(),
        "repository": event.repository.full_name,
        "run_id": event.workflow.run_id,
        "success": event.action.success,
        "duration_ms": event.action.duration,
        "cache_operations": len(event.cache),
        "cache_hits": sum(1 for m in event.cache if m.hit),
        "docker_operations": len(event.docker),
        "api_calls": len(event.api),
        "failures": len(event.failures),
    }


def _aggregate_row(aggregate: AggregatedAnalytics) -> dict[str, Any]:
    row = aggregate.model_dump(mode="json", exclude={"failures_by_category", "schema_version"})
    row["total_failures"] = sum(aggregate.failures_by_category.values())
    return {column: row.get(column) for column in _AGGREGATE_COLUMNS}


def _to_csv(rows: Sequence[dict[str, Any]], columns: Sequence[str]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(columns), lineterminator="\n")
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue()


def _to_json(records: Any) -> str:
    return orjson.dumps(records, option=orjson.OPT_INDENT_2).decode()


def export_events(
    events: Sequence[AnalyticsEvent],
    fmt: ExportFormat = "json",
    *,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    repositories: Sequence[str] | None = None,
) -> str:
    options = AggregationOptions(
        start_time=start_time,
        end_time=end_time,
        repositories=tuple(repositories) if repositories else None,
    )
    selected = filter_events(events, options)

    if fmt == "json":
        return _to_json([e.to_record() for e in selected])
    if fmt == "csv":
        return _to_csv([summarize_event(e) for e in selected], _EVENT_COLUMNS)
    if fmt == "summary":
        return _events_summary(selected)
    raise ValueError(f"Unsupported export format: {fmt}")


def export_aggregated(
    aggregates: Sequence[AggregatedAnalytics],
    fmt: ExportFormat = "json",
) -> str:
    if fmt == "json":
        return _to_json([a.to_record() for a in aggregates])
    if fmt == "csv":
        return _to_csv([_aggregate_row(a) for a in aggregates], _AGGREGATE_COLUMNS)
    if fmt == "summary":
        return "\n\n".join(_aggregate_summary(a) for a in aggregates)
    raise ValueError(f"Unsupported export format: {fmt}")


def _events_summary(events: Sequence[AnalyticsEvent]) -> str:
    if not events:
        return "No events"
    successes = sum(1 for e in events if e.action.success)
    repos = sorted({e.repository.full_name for e in events})
    lines = [
        f"Events: {len(events)}",
        f"Repositories: {len(repos)} ({', '.join(repos)})",
        f"Successful runs: {successes}/{len(events)}",
        f"Cache operations: {sum(len(e.cache) for e in events)}",
        f"Docker operations: {sum(len(e.docker) for e in events)}",
        f"API calls: {sum(len(e.api) for e in events)}",
        f"Failures: {sum(len(e.failures) for e in events)}",
    ]
    return "\n".join(lines)


def _aggregate_summary(aggregate: AggregatedAnalytics) -> str:
    lines = [
        f"Period: {aggregate.period_start.isoformat()} ~ {aggregate.period_end.isoformat()}",
        f"Events: {aggregate.event_count} / Repositories: {aggregate.repository_count}",
        f"Cache hit rate: {aggregate.cache_hit_rate:.1f}%",
        f"Avg durations (ms): cache={aggregate.avg_cache_duration:.1f} "
        f"docker={aggregate.avg_docker_duration:.1f} api={aggregate.avg_api_duration:.1f} "
        f"action={aggregate.avg_action_duration:.1f}",
        f"Action success rate: {aggregate.action_success_rate:.1f}%",
    ]
    failures = {k: v for k, v in aggregate.failures_by_category.items() if v}
    if failures:
        lines.append("Failures: " + ", ".join(f"{k}={v}" for k, v in sorted(failures.items())))
    else:
        lines.append("Failures: none")
    return "\n".join(lines)


def load_events_file(path: Path) -> list[AnalyticsEvent]:
    """JSON(.json) 또는 gzip JSON(.json.gz) 이벤트 파일을 읽는다."""
    raw = path.read_bytes()
    if path.suffix == ".gz":
        raw = gzip.decompress(raw)
    data = orjson.loads(raw)
    if isinstance(data, dict):
        data = [data]
    return [AnalyticsEvent.model_validate(item) for item in data]
