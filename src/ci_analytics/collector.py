"""수집기 프레임워크.

- CollectionContext: 실행당 1회 생성되는 설정 + 저장소/워크플로 식별 정보
- BaseCollector: 작업 저장소를 비우고 원시 레코드를 마스킹된 불변 메트릭으로 변환
"""

from __future__ import annotations

import logging
import os
import random
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, ClassVar, Generic, TypeVar

from ci_analytics.config import AnalyticsConfig, is_metric_collection_enabled, should_collect_sample
from ci_analytics.models import RepositoryInfo, WorkflowContext
from ci_analytics.sanitizer import sanitize_with_report, scrub_text
from ci_analytics.store import OperationStore

logger = logging.getLogger(__name__)

R = TypeVar("R")
M = TypeVar("M")


@dataclass(frozen=True)
class CollectionContext:
    config: AnalyticsConfig
    repository: RepositoryInfo
    workflow: WorkflowContext


def create_collection_context(
    config: AnalyticsConfig,
    repository: RepositoryInfo,
    workflow: WorkflowContext,
) -> CollectionContext:
    return CollectionContext(config=config, repository=repository, workflow=workflow)


def _env_int(environ: Mapping[str, str], name: str) -> int:
    try:
        return int(environ.get(name, "0"))
    except ValueError:
        return 0


def repository_from_env(environ: Mapping[str, str] | None = None) -> RepositoryInfo:
    """GITHUB_REPOSITORY 등 Actions 환경변수로 RepositoryInfo를 만든다."""
    env = os.environ if environ is None else environ
    full_name = env.get("GITHUB_REPOSITORY", "unknown/unknown")
    owner, _, name = full_name.partition("/")
    visibility = env.get("GITHUB_REPOSITORY_VISIBILITY", "public")
    return RepositoryInfo(
        owner=env.get("GITHUB_REPOSITORY_OWNER", owner),
        name=name or full_name,
        full_name=full_name,
        id=_env_int(env, "GITHUB_REPOSITORY_ID"),
        visibility="private" if visibility == "private" else "public",
    )


def workflow_from_env(environ: Mapping[str, str] | None = None) -> WorkflowContext:
    env = os.environ if environ is None else environ
    return WorkflowContext(
        run_id=env.get("GITHUB_RUN_ID", "local"),
        run_number=_env_int(env, "GITHUB_RUN_NUMBER"),
        workflow=env.get("GITHUB_WORKFLOW", ""),
        event_name=env.get("GITHUB_EVENT_NAME", ""),
        ref=env.get("GITHUB_REF", ""),
        sha=env.get("GITHUB_SHA", ""),
        actor=env.get("GITHUB_ACTOR", ""),
    )


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def new_operation_id(kind: str, key: str) -> str:
    """`{kind}-{key}-{timestamp}` 형식의 작업 id. 같은 나노초 충돌 방지용 접미사를 붙인다."""
    return f"{kind}-{key}-{time.time_ns()}-{uuid.uuid4().hex[:8]}"


def duration_ms(start: datetime, end: datetime) -> int:
    """end - start (밀리초). 음수는 0으로 보정한다."""
    return max(0, int((end - start).total_seconds() * 1000))


class BaseCollector(ABC, Generic[R, M]):
    """수집기 공통 동작.

    하위 클래스는 metric_type과 transform()만 정의한다.
    """

    metric_type: ClassVar[str]

    def __init__(
        self,
        config: AnalyticsConfig,
        store: OperationStore[R],
        *,
        rng: Callable[[], float] = random.random,
    ):
        self._config = config
        self._store = store
        self._rng = rng
        self._enabled = True

    @property
    def store(self) -> OperationStore[R]:
        return self._store

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled

    def is_enabled(self) -> bool:
        return self._enabled and is_metric_collection_enabled(self._config, self.metric_type)

    def should_sample(self) -> bool:
        return should_collect_sample(self._config, self._rng)

    async def collect(self, context: CollectionContext) -> list[M]:
        """저장소를 비우고 각 레코드를 메트릭으로 변환한다.

        비활성 또는 샘플링 제외 시 저장소를 건드리지 않고 빈 리스트를 반환한다.
        변환에 실패한 레코드는 로깅 후 건너뛴다.
        """
        if not self.is_enabled() or not self.should_sample():
            return []

        metrics: list[M] = []
        skipped = 0
        for record in self._store.drain():
            try:
                metrics.append(self.transform(record, context))
            except Exception as e:
                skipped += 1
                logger.warning(
                    "Failed to transform %s record: %s",
                    self.metric_type,
                    e,
                    extra={"event_code": "TRANSFORM_FAILED", "component": self.metric_type},
                )

        logger.debug(
            "Collected %d %s metrics (%d skipped)",
            len(metrics),
            self.metric_type,
            skipped,
            extra={
                "event_code": "COLLECT_DONE",
                "component": self.metric_type,
                "count": len(metrics),
                "repository": context.repository.full_name,
            },
        )
        return metrics

    @abstractmethod
    def transform(self, record: R, context: CollectionContext) -> M:
        """원시 레코드 1건을 메트릭으로 변환한다."""

    def sanitize_mapping(self, data: Mapping[str, Any] | None) -> dict[str, Any] | None:
        if not data:
            return None
        result = sanitize_with_report(dict(data), self._config.sanitize_patterns)
        if result.was_modified:
            logger.debug(
                "Sanitized %d value(s) in %s metric",
                result.sanitized_count,
                self.metric_type,
                extra={"event_code": "SANITIZED", "component": self.metric_type},
            )
        return result.data

    @staticmethod
    def scrub(text: str | None) -> str | None:
        return scrub_text(text)
