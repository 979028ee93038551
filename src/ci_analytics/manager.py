"""MetricsManager: 수집기 레지스트리 + 일괄 수집.

collect_all은 네 수집기를 동시에 실행하고, 실패한 수집기는 빈 결과로 대체한다.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from ci_analytics import api_metrics, cache_metrics, docker_metrics, failure_metrics
from ci_analytics.api_metrics import ApiMetricsCollector
from ci_analytics.cache_metrics import CacheMetricsCollector
from ci_analytics.collector import BaseCollector, CollectionContext
from ci_analytics.config import AnalyticsConfig
from ci_analytics.docker_metrics import DockerMetricsCollector
from ci_analytics.failure_metrics import FailureMetricsCollector
from ci_analytics.models import METRIC_TYPES, MetricsBundle
from ci_analytics.store import RunStores

logger = logging.getLogger(__name__)


class MetricsManager:
    """이름 → 수집기 레지스트리. 등록 가능한 이름은 cache, docker, api, failures뿐이다."""

    def __init__(self, config: AnalyticsConfig):
        self._config = config
        self._collectors: dict[str, BaseCollector[Any, Any]] = {}

    def register_collector(self, name: str, collector: BaseCollector[Any, Any]) -> None:
        if name not in METRIC_TYPES:
            raise ValueError(f"Unknown collector name: {name} (expected one of {METRIC_TYPES})")
        self._collectors[name] = collector

    def get_collector(self, name: str) -> BaseCollector[Any, Any] | None:
        return self._collectors.get(name)

    def get_collector_count(self) -> int:
        return len(self._collectors)

    def get_collector_names(self) -> list[str]:
        return list(self._collectors)

    async def collect_all(self, context: CollectionContext) -> MetricsBundle:
        """모든 수집기를 실행해 번들을 만든다. 예외는 전파하지 않는다."""
        results: dict[str, list[Any]] = {name: [] for name in METRIC_TYPES}

        if not self._config.enabled:
            logger.debug(
                "Analytics disabled, skipping collection",
                extra={"event_code": "COLLECT_SKIPPED"},
            )
            return MetricsBundle()

        names = list(self._collectors)
        outcomes = await asyncio.gather(
            *(self._collectors[name].collect(context) for name in names),
            return_exceptions=True,
        )

        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Collector %s failed: %s",
                    name,
                    outcome,
                    extra={"event_code": "COLLECTOR_FAILED", "component": name},
                )
                continue
            results[name] = outcome

        bundle = MetricsBundle(**results)
        logger.info(
            "Collected %d metrics",
            bundle.total(),
            extra={
                "event_code": "COLLECT_ALL_DONE",
                "count": bundle.total(),
                "repository": context.repository.full_name,
            },
        )
        return bundle


def create_metrics_manager(
    config: AnalyticsConfig,
    stores: RunStores,
    *,
    rng: Callable[[], float] | None = None,
) -> MetricsManager:
    """네 수집기가 모두 등록된 매니저를 만든다."""
    kwargs: dict[str, Any] = {} if rng is None else {"rng": rng}
    manager = MetricsManager(config)
    manager.register_collector("cache", CacheMetricsCollector(config, stores.cache, **kwargs))
    manager.register_collector("docker", DockerMetricsCollector(config, stores.docker, **kwargs))
    manager.register_collector("api", ApiMetricsCollector(config, stores.api, **kwargs))
    manager.register_collector(
        "failures", FailureMetricsCollector(config, stores.failures, **kwargs)
    )
    return manager


def get_collector_summary(stores: RunStores) -> dict[str, Any]:
    """수집 전 저장소 상태 요약 (로그/디버깅용)."""
    return {
        "cache": {
            "operations": len(stores.cache),
            "hit_rate": cache_metrics.cache_hit_rate(stores.cache),
        },
        "docker": {
            "operations": len(stores.docker),
            "success_rate": docker_metrics.success_rate(stores.docker),
        },
        "api": {
            "requests": len(stores.api),
            "success_rate": api_metrics.success_rate(stores.api),
            "avg_response_time": api_metrics.average_response_time(stores.api),
        },
        "failures": {
            "total": len(stores.failures),
            "by_category": failure_metrics.failure_count_by_category(stores.failures),
        },
    }
