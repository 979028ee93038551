"""click CLI 엔트리포인트.

ci-analytics 명령으로 저장된 CI 분석 데이터를 집계/병합/조회합니다.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import asdict
from datetime import date as date_type
from datetime import UTC, datetime, time, timedelta
from pathlib import Path

import click
import orjson

from ci_analytics.aggregator import AggregationError
from ci_analytics.cache_store import AnalyticsCacheStore
from ci_analytics.config import (
    AnalyticsConfig,
    ConfigValidationError,
    get_config_summary,
    load_config,
    log_level_from_name,
)
from ci_analytics.export import EXPORT_FORMATS, export_aggregated, export_events, load_events_file
from ci_analytics.logging_config import setup_logging
from ci_analytics.pipeline import aggregate_repository, merge_repository_aggregates
from ci_analytics.r2 import R2RemoteCache

logger = logging.getLogger(__name__)

_config_option = click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(exists=True, path_type=Path),
    help="설정 파일 경로 (기본: 환경변수만 사용)",
)
_json_log_option = click.option(
    "--json-log/--no-json-log", default=True, help="JSON 로그 포맷 (기본: 활성)"
)


def _parse_date(value: str) -> date_type:
    """YYYY-MM-DD 형식의 날짜를 파싱한다."""
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as exc:
        raise click.BadParameter(f"날짜 형식이 올바르지 않습니다: {value} (YYYY-MM-DD)") from exc


def _date_range(start: date_type, end: date_type) -> list[str]:
    """시작일~종료일 범위의 날짜 문자열 리스트를 반환한다."""
    if start > end:
        raise click.BadParameter(f"start-date({start})가 end-date({end})보다 늦습니다")
    days = (end - start).days + 1
    return [(start + timedelta(days=i)).strftime("%Y-%m-%d") for i in range(days)]


def _resolve_dates(single_date: str | None, start_date: str | None, end_date: str | None) -> list[str]:
    if single_date and (start_date or end_date):
        raise click.UsageError("--date와 --start-date/--end-date는 동시에 사용할 수 없습니다")
    if single_date:
        return [_parse_date(single_date).strftime("%Y-%m-%d")]
    if start_date and end_date:
        return _date_range(_parse_date(start_date), _parse_date(end_date))
    raise click.UsageError("--date 또는 --start-date/--end-date를 지정하세요")


def _load(config_path: Path | None, json_log: bool) -> AnalyticsConfig:
    try:
        config = load_config(config_path)
    except ConfigValidationError as exc:
        click.echo(f"Config error: {exc}", err=True)
        sys.exit(1)
    setup_logging(json_format=json_log, level=log_level_from_name(config.log_level))
    return config


def _open_store(config: AnalyticsConfig) -> AnalyticsCacheStore:
    store = AnalyticsCacheStore(config, R2RemoteCache(config.storage))
    if not store.is_available():
        click.echo(
            "ERROR: CI_ANALYTICS_R2_BUCKET, CLOUDFLARE_ACCOUNT_ID, CLOUDFLARE_API_TOKEN are required",
            err=True,
        )
        sys.exit(1)
    return store


def _echo_json(data: object) -> None:
    click.echo(orjson.dumps(data, option=orjson.OPT_INDENT_2).decode())


@click.group()
@click.version_option(version="0.1.0", prog_name="ci-analytics")
def main() -> None:
    """CI Analytics - CI 실행 텔레메트리를 집계하고 조회합니다."""


@main.command("config")
@_config_option
def show_config(config_path: Path | None) -> None:
    """현재 설정 요약을 출력합니다 (토큰/패턴은 노출하지 않음)."""
    try:
        config = load_config(config_path)
    except ConfigValidationError as exc:
        click.echo(f"Config error: {exc}", err=True)
        sys.exit(1)
    _echo_json(get_config_summary(config))


@main.command()
@click.option("--repository", required=True, help="대상 저장소 (owner/name)")
@click.option("--date", "single_date", default=None, help="집계 날짜 (예: 2024-01-15)")
@click.option("--start-date", default=None, help="범위 시작 날짜")
@click.option("--end-date", default=None, help="범위 종료 날짜")
@click.option("--persist/--no-persist", default=True, help="집계 결과 저장 여부 (기본: 저장)")
@_config_option
@_json_log_option
def aggregate(
    repository: str,
    single_date: str | None,
    start_date: str | None,
    end_date: str | None,
    persist: bool,
    config_path: Path | None,
    json_log: bool,
) -> None:
    """저장된 이벤트를 읽어 기간 집계를 생성합니다."""
    dates = _resolve_dates(single_date, start_date, end_date)
    config = _load(config_path, json_log)
    store = _open_store(config)

    report = asyncio.run(aggregate_repository(store, repository, dates, persist=persist))

    if report.dates_missing:
        click.echo(f"No events for: {', '.join(report.dates_missing)}")
    for err in report.errors:
        click.echo(f"ERR: {err}", err=True)
    if report.aggregated is not None:
        _echo_json(report.aggregated.to_record())
    if report.stored_key:
        click.echo(f"Stored: {report.stored_key}")
    if report.errors:
        sys.exit(1)


@main.command()
@click.option("--repository", "repositories", multiple=True, required=True, help="저장소 (반복 가능)")
@click.option("--date", "single_date", required=True, help="집계 날짜 (예: 2024-01-15)")
@click.option(
    "--format", "fmt", type=click.Choice(EXPORT_FORMATS), default="json", help="출력 포맷"
)
@_config_option
@_json_log_option
def merge(
    repositories: tuple[str, ...],
    single_date: str,
    fmt: str,
    config_path: Path | None,
    json_log: bool,
) -> None:
    """여러 저장소의 집계를 하나로 병합합니다."""
    bucket = _parse_date(single_date).strftime("%Y-%m-%d")
    config = _load(config_path, json_log)
    store = _open_store(config)

    try:
        merged = asyncio.run(merge_repository_aggregates(store, repositories, bucket))
    except AggregationError as exc:
        click.echo(f"Merge error: {exc}", err=True)
        sys.exit(1)

    if merged is None:
        click.echo("No aggregates found", err=True)
        sys.exit(1)
    click.echo(export_aggregated([merged], fmt))  # type: ignore[arg-type]


@main.command("export")
@click.option(
    "--input",
    "input_path",
    required=True,
    type=click.Path(exists=True, path_type=Path),
    help="이벤트 파일 (.json 또는 .json.gz)",
)
@click.option(
    "--format", "fmt", type=click.Choice(EXPORT_FORMATS), default="json", help="출력 포맷"
)
@click.option("--repository", "repositories", multiple=True, help="저장소 필터 (반복 가능)")
@click.option("--start-date", default=None, help="이 날짜 이후 이벤트만")
@click.option("--end-date", default=None, help="이 날짜 이전 이벤트만")
@click.option("--output", "output_path", default=None, type=click.Path(path_type=Path), help="출력 파일")
def export_cmd(
    input_path: Path,
    fmt: str,
    repositories: tuple[str, ...],
    start_date: str | None,
    end_date: str | None,
    output_path: Path | None,
) -> None:
    """이벤트 파일을 json/csv/summary로 내보냅니다."""
    start = datetime.combine(_parse_date(start_date), time.min, tzinfo=UTC) if start_date else None
    end = datetime.combine(_parse_date(end_date), time.max, tzinfo=UTC) if end_date else None

    events = load_events_file(input_path)
    text = export_events(
        events,
        fmt,  # type: ignore[arg-type]
        start_time=start,
        end_time=end,
        repositories=repositories or None,
    )

    if output_path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(text, encoding="utf-8")
        click.echo(f"Written: {output_path}")
    else:
        click.echo(text)


@main.command("list-keys")
@click.option("--repository", required=True, help="대상 저장소 (owner/name)")
@_config_option
@_json_log_option
def list_keys(repository: str, config_path: Path | None, json_log: bool) -> None:
    """저장소의 캐시 키 목록을 출력합니다."""
    store = _open_store(_load(config_path, json_log))
    for key in asyncio.run(store.list_keys(repository)):
        click.echo(key)


@main.command()
@click.option("--repository", default=None, help="대상 저장소 (기본: 전체)")
@_config_option
@_json_log_option
def stats(repository: str | None, config_path: Path | None, json_log: bool) -> None:
    """캐시 사용량 통계를 출력합니다."""
    store = _open_store(_load(config_path, json_log))
    _echo_json(asdict(asyncio.run(store.get_cache_stats(repository))))


@main.command()
@click.option("--repository", required=True, help="대상 저장소 (owner/name)")
@click.option("--yes", is_flag=True, default=False, help="확인 없이 삭제")
@_config_option
@_json_log_option
def clear(repository: str, yes: bool, config_path: Path | None, json_log: bool) -> None:
    """저장소의 모든 분석 데이터를 삭제합니다."""
    if not yes:
        click.confirm(f"{repository}의 모든 분석 데이터를 삭제합니다. 계속할까요?", abort=True)
    store = _open_store(_load(config_path, json_log))
    deleted = asyncio.run(store.clear_repository(repository))
    click.echo(f"Deleted {deleted} keys")


@main.command()
@click.option("--repository", required=True, help="대상 저장소 (owner/name)")
@click.option("--today", default=None, help="기준 날짜 (기본: 오늘, UTC)")
@_config_option
@_json_log_option
def prune(repository: str, today: str | None, config_path: Path | None, json_log: bool) -> None:
    """보존 기간이 지난 날짜 버킷을 삭제합니다."""
    reference = _parse_date(today) if today else None
    config = _load(config_path, json_log)
    store = _open_store(config)
    deleted = asyncio.run(store.prune_expired(repository, reference))
    click.echo(f"Pruned {deleted} keys (retention: {config.retention_days} days)")
