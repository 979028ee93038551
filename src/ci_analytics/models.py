"""CI 분석 데이터 모델 (Pydantic).

모든 레코드는 불변(frozen)이며, 저장 포맷은 camelCase 필드명을 사용한다.
직렬화는 항상 ``model_dump(mode="json", by_alias=True)`` 를 거친다.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

ANALYTICS_SCHEMA_VERSION = "1.0.0"
SUPPORTED_SCHEMA_VERSIONS: tuple[str, ...] = (ANALYTICS_SCHEMA_VERSION,)

# 캐시 키 네임스페이스 버전 (레코드 스키마 버전과 별개)
CACHE_KEY_VERSION = "1.0"

CacheOperationType = Literal["restore", "save", "prepare", "finalize"]
DockerOperationType = Literal["pull", "run", "exec", "tool-install"]
HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]
AuthMethod = Literal["github-app", "pat", "none"]
FailureComponent = Literal["cache", "docker", "api", "config", "action", "tool"]
FailureCategory = Literal[
    "permissions",
    "authentication",
    "cache-corruption",
    "network-issues",
    "configuration-error",
    "docker-issues",
    "api-limits",
    "timeout",
    "unknown",
]
MetricType = Literal["cache", "docker", "api", "failures"]
Visibility = Literal["public", "private"]

CACHE_OPERATIONS: tuple[str, ...] = get_args(CacheOperationType)
DOCKER_OPERATIONS: tuple[str, ...] = get_args(DockerOperationType)
HTTP_METHODS: tuple[str, ...] = get_args(HttpMethod)
AUTH_METHODS: tuple[str, ...] = get_args(AuthMethod)
FAILURE_COMPONENTS: tuple[str, ...] = get_args(FailureComponent)
FAILURE_CATEGORIES: tuple[str, ...] = get_args(FailureCategory)
METRIC_TYPES: tuple[str, ...] = get_args(MetricType)


def empty_failure_counts() -> dict[str, int]:
    """모든 실패 카테고리를 0으로 채운 dict를 반환한다."""
    return {category: 0 for category in FAILURE_CATEGORIES}


def is_supported_schema_version(version: str) -> bool:
    return version in SUPPORTED_SCHEMA_VERSIONS


class AnalyticsModel(BaseModel):
    """camelCase 별칭을 쓰는 불변 모델의 공통 베이스."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_record(self) -> dict[str, Any]:
        """저장 포맷(dict)으로 직렬화한다."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ── 실행 식별 정보 ──────────────────────────────────────


class RepositoryInfo(AnalyticsModel):
    owner: str
    name: str
    full_name: str
    id: int = 0
    visibility: Visibility = "public"
    size: int | None = None
    language: str | None = None


class WorkflowContext(AnalyticsModel):
    run_id: str
    run_number: int = 0
    workflow: str = ""
    event_name: str = ""
    ref: str = ""
    sha: str = ""
    actor: str = ""


# ── 작업 메트릭 ─────────────────────────────────────────


class CacheMetrics(AnalyticsModel):
    operation: CacheOperationType
    key: str
    version: str = CACHE_KEY_VERSION
    start_time: datetime
    end_time: datetime
    duration: int = Field(ge=0, description="밀리초")
    success: bool
    hit: bool | None = None
    size: int | None = Field(default=None, ge=0)
    error: str | None = None
    metadata: dict[str, Any] | None = None


class DockerMetrics(AnalyticsModel):
    operation: DockerOperationType
    image: str | None = None
    container_id: str | None = None
    tool: str | None = None
    tool_version: str | None = None
    start_time: datetime
    end_time: datetime
    duration: int = Field(ge=0)
    success: bool
    exit_code: int | None = None
    error: str | None = None
    metadata: dict[str, Any] | None = None


class ApiMetrics(AnalyticsModel):
    endpoint: str
    method: HttpMethod
    start_time: datetime
    end_time: datetime
    duration: int = Field(ge=0)
    status_code: int
    success: bool
    rate_limit_remaining: int | None = None
    rate_limit_reset: int | None = None
    secondary_rate_limit: bool | None = None
    auth_method: AuthMethod = "none"
    response_size: int | None = None
    error: str | None = None


class FailureMetrics(AnalyticsModel):
    category: FailureCategory
    type: str
    timestamp: datetime
    message: str
    stack_trace: str | None = None
    component: FailureComponent
    recoverable: bool = False
    retry_attempts: int | None = None
    context: dict[str, Any] | None = None


class ActionMetrics(AnalyticsModel):
    """실행 전체 요약."""

    start_time: datetime
    end_time: datetime
    duration: int = Field(ge=0)
    success: bool
    tool_version: str = ""
    action_version: str = ""
    repositories_processed: int | None = None
    pull_requests_created: int | None = None
    dependencies_updated: int | None = None
    exit_code: int = 0
    error: str | None = None


class MetricsBundle(AnalyticsModel):
    """collect_all 결과. 네 키는 항상 존재한다."""

    cache: tuple[CacheMetrics, ...] = ()
    docker: tuple[DockerMetrics, ...] = ()
    api: tuple[ApiMetrics, ...] = ()
    failures: tuple[FailureMetrics, ...] = ()

    def total(self) -> int:
        return len(self.cache) + len(self.docker) + len(self.api) + len(self.failures)


# ── 저장 레코드 ─────────────────────────────────────────


class AnalyticsEvent(AnalyticsModel):
    """한 실행의 전체 텔레메트리."""

    id: str
    timestamp: datetime
    repository: RepositoryInfo
    workflow: WorkflowContext
    cache: tuple[CacheMetrics, ...] = ()
    docker: tuple[DockerMetrics, ...] = ()
    api: tuple[ApiMetrics, ...] = ()
    failures: tuple[FailureMetrics, ...] = ()
    action: ActionMetrics
    schema_version: str = ANALYTICS_SCHEMA_VERSION


class AggregatedAnalytics(AnalyticsModel):
    """기간 단위 집계.

    failures_by_category는 항상 모든 카테고리를 포함한다. 누락된 카테고리는
    0으로 채우고, 알 수 없는 카테고리는 검증 단계에서 거부된다.
    """

    period_start: datetime
    period_end: datetime
    event_count: int = Field(ge=0)
    repository_count: int = Field(ge=0)
    cache_hit_rate: float = Field(ge=0, le=100)
    avg_cache_duration: float = Field(ge=0)
    avg_docker_duration: float = Field(ge=0)
    avg_api_duration: float = Field(ge=0)
    failures_by_category: dict[FailureCategory, int] = Field(default_factory=empty_failure_counts)
    avg_action_duration: float = Field(ge=0)
    action_success_rate: float = Field(ge=0, le=100)
    schema_version: str = ANALYTICS_SCHEMA_VERSION

    @field_validator("failures_by_category")
    @classmethod
    def fill_missing_categories(cls, v: dict[str, int]) -> dict[str, int]:
        return {**empty_failure_counts(), **v}


class MetricBreakdown(AnalyticsModel):
    count: int = 0
    sum: float = 0.0
    average: float = 0.0
    median: float = 0.0
    min: float = 0.0
    max: float = 0.0
    std_dev: float = 0.0
    p95: float = 0.0
    p99: float = 0.0


class RepositoryStats(AnalyticsModel):
    by_language: dict[str, int] = Field(default_factory=dict)
    by_size: dict[str, int] = Field(default_factory=dict)


class ExtendedAggregatedAnalytics(AggregatedAnalytics):
    """세부 분포를 포함한 집계."""

    cache_metrics: dict[str, MetricBreakdown] = Field(default_factory=dict)
    docker_metrics: dict[str, MetricBreakdown] = Field(default_factory=dict)
    api_metrics: dict[str, MetricBreakdown] = Field(default_factory=dict)
    repository_stats: RepositoryStats = Field(default_factory=RepositoryStats)
