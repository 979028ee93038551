"""공통 fixture."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
import yaml
from ci_analytics.collector import CollectionContext, create_collection_context
from ci_analytics.config import AnalyticsConfig, StorageConfig, create_config
from ci_analytics.models import (
    ActionMetrics,
    AggregatedAnalytics,
    AnalyticsEvent,
    CacheMetrics,
    RepositoryInfo,
    WorkflowContext,
)
from ci_analytics.r2 import CacheEntry, ObjectInfo
from ci_analytics.store import RunStores

BASE_TIME = datetime(2024, 1, 15, 10, 0, 0, tzinfo=UTC)


class FakeRemoteCache:
    """메모리 기반 RemoteCache. 호출 기록과 오류 주입을 지원한다."""

    def __init__(self, *, available: bool = True):
        self.available = available
        self.objects: dict[str, bytes] = {}
        self.modified: dict[str, str] = {}
        self.save_calls: list[str] = []
        self.restore_calls: list[tuple[str, tuple[str, ...]]] = []
        self.deleted: list[str] = []
        self.save_error: Exception | None = None
        self.restore_error: Exception | None = None
        self.list_error: Exception | None = None
        self.delete_errors: dict[str, Exception] = {}
        self._clock = 0

    def is_feature_available(self) -> bool:
        return self.available

    async def save(self, key: str, payload: bytes) -> str:
        self.save_calls.append(key)
        if self.save_error is not None:
            raise self.save_error
        self.objects[key] = payload
        self._clock += 1
        self.modified[key] = f"2024-01-15T00:00:{self._clock:02d}Z"
        return key

    async def restore(self, key: str, restore_keys: Sequence[str] = ()) -> CacheEntry | None:
        self.restore_calls.append((key, tuple(restore_keys)))
        if self.restore_error is not None:
            raise self.restore_error
        if key in self.objects:
            return CacheEntry(key=key, payload=self.objects[key])
        for prefix in restore_keys:
            matches = [k for k in self.objects if k.startswith(prefix)]
            if matches:
                newest = max(matches, key=lambda k: self.modified.get(k, ""))
                return CacheEntry(key=newest, payload=self.objects[newest])
        return None

    async def list_objects(self, prefix: str) -> list[ObjectInfo]:
        if self.list_error is not None:
            raise self.list_error
        return [
            ObjectInfo(key=k, size=len(v), last_modified=self.modified.get(k, ""))
            for k, v in self.objects.items()
            if k.startswith(prefix)
        ]

    async def delete(self, key: str) -> None:
        if key in self.delete_errors:
            raise self.delete_errors[key]
        self.objects.pop(key, None)
        self.deleted.append(key)


@pytest.fixture()
def analytics_config() -> AnalyticsConfig:
    """모든 수집기가 켜진 설정."""
    return create_config(
        enabled=True,
        storage=StorageConfig(bucket_name="ci-analytics", account_id="acc", api_token="tok"),
    )


@pytest.fixture()
def disabled_config() -> AnalyticsConfig:
    return create_config(enabled=False)


@pytest.fixture()
def repository() -> RepositoryInfo:
    return RepositoryInfo(
        owner="pseudolab",
        name="test-repo",
        full_name="pseudolab/test-repo",
        id=100,
        visibility="public",
        size=2048,
        language="Python",
    )


@pytest.fixture()
def workflow() -> WorkflowContext:
    return WorkflowContext(
        run_id="123456",
        run_number=7,
        workflow="dependency-update",
        event_name="schedule",
        ref="refs/heads/main",
        sha="abc123",
        actor="bot",
    )


@pytest.fixture()
def context(
    analytics_config: AnalyticsConfig,
    repository: RepositoryInfo,
    workflow: WorkflowContext,
) -> CollectionContext:
    return create_collection_context(analytics_config, repository, workflow)


@pytest.fixture()
def stores() -> RunStores:
    return RunStores()


@pytest.fixture()
def remote() -> FakeRemoteCache:
    return FakeRemoteCache()


@pytest.fixture()
def make_action() -> Callable[..., ActionMetrics]:
    def _make(*, success: bool = True, duration: int = 60000) -> ActionMetrics:
        return ActionMetrics(
            start_time=BASE_TIME,
            end_time=BASE_TIME + timedelta(milliseconds=duration),
            duration=duration,
            success=success,
            tool_version="37.0.0",
            action_version="1.0.0",
            exit_code=0 if success else 1,
        )

    return _make


@pytest.fixture()
def make_event(
    repository: RepositoryInfo,
    workflow: WorkflowContext,
    make_action: Callable[..., ActionMetrics],
) -> Callable[..., AnalyticsEvent]:
    """AnalyticsEvent 팩토리."""

    def _make(
        *,
        event_id: str = "evt-1",
        timestamp: datetime = BASE_TIME,
        full_name: str | None = None,
        cache_hits: Sequence[bool] = (),
        cache_duration: int = 100,
        success: bool = True,
        action_duration: int = 60000,
        **overrides: Any,
    ) -> AnalyticsEvent:
        repo = repository
        if full_name is not None:
            owner, _, name = full_name.partition("/")
            repo = RepositoryInfo(owner=owner, name=name, full_name=full_name)
        cache = tuple(
            CacheMetrics(
                operation="restore",
                key=f"deps-{i}",
                start_time=timestamp,
                end_time=timestamp + timedelta(milliseconds=cache_duration),
                duration=cache_duration,
                success=True,
                hit=hit,
            )
            for i, hit in enumerate(cache_hits)
        )
        data: dict[str, Any] = {
            "id": event_id,
            "timestamp": timestamp,
            "repository": repo,
            "workflow": workflow,
            "cache": cache,
            "action": make_action(success=success, duration=action_duration),
        }
        data.update(overrides)
        return AnalyticsEvent(**data)

    return _make


@pytest.fixture()
def make_aggregate() -> Callable[..., AggregatedAnalytics]:
    def _make(**overrides: Any) -> AggregatedAnalytics:
        data: dict[str, Any] = {
            "period_start": BASE_TIME,
            "period_end": BASE_TIME + timedelta(days=1),
            "event_count": 5,
            "repository_count": 1,
            "cache_hit_rate": 80.0,
            "avg_cache_duration": 100.0,
            "avg_docker_duration": 2000.0,
            "avg_api_duration": 300.0,
            "failures_by_category": {"timeout": 1},
            "avg_action_duration": 60000.0,
            "action_success_rate": 100.0,
        }
        data.update(overrides)
        return AggregatedAnalytics(**data)

    return _make


@pytest.fixture()
def sample_config_data() -> dict[str, Any]:
    """테스트용 config dict."""
    return {
        "enabled": True,
        "log_level": "debug",
        "collect_docker": False,
        "sample_rate": 0.5,
        "cache_key_prefix": "test-analytics",
        "retention_days": 14,
        "sanitize_patterns": ["token", "secret"],
        "storage": {"bucket_name": "analytics-bucket", "max_retries": 2},
    }


@pytest.fixture()
def tmp_config_file(tmp_path: Path, sample_config_data: dict[str, Any]) -> Path:
    """임시 config.yaml 파일."""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.dump(sample_config_data), encoding="utf-8")
    return config_path


@pytest.fixture(autouse=True)
def _clear_analytics_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """호스트 환경변수가 설정 테스트에 섞이지 않도록 제거한다."""
    for name in (
        "CI_ANALYTICS_ENABLED",
        "CI_ANALYTICS_LOG_LEVEL",
        "CI_ANALYTICS_COLLECT_CACHE",
        "CI_ANALYTICS_COLLECT_DOCKER",
        "CI_ANALYTICS_COLLECT_API",
        "CI_ANALYTICS_COLLECT_FAILURES",
        "CI_ANALYTICS_SAMPLE_RATE",
        "CI_ANALYTICS_CACHE_KEY_PREFIX",
        "CI_ANALYTICS_MAX_DATA_SIZE",
        "CI_ANALYTICS_RETENTION_DAYS",
        "CI_ANALYTICS_SANITIZE_PATTERNS",
        "CI_ANALYTICS_R2_BUCKET",
        "CLOUDFLARE_ACCOUNT_ID",
        "CLOUDFLARE_API_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)
