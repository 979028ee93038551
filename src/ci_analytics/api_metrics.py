"""원격 API 호출 수집기.

엔드포인트는 저장 전에 정규화한다: 소유자/저장소/조직/사용자 경로 세그먼트는
플레이스홀더로, 쿼리 문자열의 토큰 값은 ***로 바뀐다.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from ci_analytics.collector import (
    BaseCollector,
    CollectionContext,
    duration_ms,
    new_operation_id,
    utc_now,
)
from ci_analytics.models import ApiMetrics
from ci_analytics.store import OperationStore

logger = logging.getLogger(__name__)

_ENDPOINT_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"/repos/[^/?#]+/[^/?#]+"), "/repos/{owner}/{repo}"),
    (re.compile(r"/orgs/[^/?#]+"), "/orgs/{org}"),
    (re.compile(r"/users/[^/?#]+"), "/users/{username}"),
    (re.compile(r"([?&](?:access_token|token)=)[^&#]*"), r"\1***"),
)

CACHE_API_ENDPOINT = "/repos/{owner}/{repo}/actions/caches"
TOKEN_API_ENDPOINT = "/app/installations/{installation_id}/access_tokens"

_CACHE_API_METHODS = {"get": "GET", "save": "POST", "delete": "DELETE"}
_CACHE_API_STATUS = {"get": 200, "save": 201, "delete": 204}


@dataclass(frozen=True)
class ApiRequest:
    endpoint: str
    method: str
    start_time: datetime
    auth_method: str = "none"
    end_time: datetime | None = None
    status_code: int | None = None
    rate_limit_remaining: int | None = None
    rate_limit_reset: int | None = None
    secondary_rate_limit: bool | None = None
    response_size: int | None = None
    error: str | None = None


def normalize_endpoint(endpoint: str) -> str:
    for pattern, replacement in _ENDPOINT_RULES:
        endpoint = pattern.sub(replacement, endpoint)
    return endpoint


def is_success_status(status_code: int | None) -> bool:
    return status_code is not None and 200 <= status_code < 300


def record_request_start(
    store: OperationStore[ApiRequest],
    endpoint: str,
    method: str,
    *,
    auth_method: str = "none",
    operation_id: str | None = None,
    now: datetime | None = None,
) -> str:
    normalized = normalize_endpoint(endpoint)
    op_id = operation_id or new_operation_id(method, normalized)
    store.add(
        op_id,
        ApiRequest(
            endpoint=normalized,
            method=method.upper(),
            start_time=now or utc_now(),
            auth_method=auth_method,
        ),
    )
    return op_id


def record_request_end(
    store: OperationStore[ApiRequest],
    operation_id: str,
    *,
    status_code: int,
    rate_limit_remaining: int | None = None,
    rate_limit_reset: int | None = None,
    secondary_rate_limit: bool | None = None,
    response_size: int | None = None,
    error: str | None = None,
    now: datetime | None = None,
) -> bool:
    updated = store.update(
        operation_id,
        end_time=now or utc_now(),
        status_code=status_code,
        rate_limit_remaining=rate_limit_remaining,
        rate_limit_reset=rate_limit_reset,
        secondary_rate_limit=secondary_rate_limit,
        response_size=response_size,
        error=error,
    )
    if not updated:
        logger.warning(
            "Unknown api request id: %s",
            operation_id,
            extra={"event_code": "UNKNOWN_OPERATION", "component": "api"},
        )
    return updated


def record_request(
    store: OperationStore[ApiRequest],
    endpoint: str,
    method: str,
    *,
    start_time: datetime,
    end_time: datetime,
    status_code: int,
    auth_method: str = "none",
    rate_limit_remaining: int | None = None,
    rate_limit_reset: int | None = None,
    secondary_rate_limit: bool | None = None,
    response_size: int | None = None,
    error: str | None = None,
    operation_id: str | None = None,
) -> str:
    normalized = normalize_endpoint(endpoint)
    op_id = operation_id or new_operation_id(method, normalized)
    store.add(
        op_id,
        ApiRequest(
            endpoint=normalized,
            method=method.upper(),
            start_time=start_time,
            end_time=end_time,
            status_code=status_code,
            auth_method=auth_method,
            rate_limit_remaining=rate_limit_remaining,
            rate_limit_reset=rate_limit_reset,
            secondary_rate_limit=secondary_rate_limit,
            response_size=response_size,
            error=error,
        ),
    )
    return op_id


def record_token_generation(
    store: OperationStore[ApiRequest],
    app_id: str,
    *,
    start_time: datetime,
    end_time: datetime,
    success: bool,
    error: str | None = None,
) -> str:
    """앱 설치 토큰 발급 요청을 기록한다. app id는 숫자를 X로 가려 로깅한다."""
    logger.debug(
        "Token generation recorded",
        extra={
            "event_code": "TOKEN_GENERATION",
            "component": "api",
            "data": {"app": re.sub(r"\d", "X", str(app_id)), "type": "installation"},
        },
    )
    return record_request(
        store,
        TOKEN_API_ENDPOINT,
        "POST",
        start_time=start_time,
        end_time=end_time,
        status_code=201 if success else 500,
        auth_method="github-app",
        error=error,
    )


def record_cache_api_operation(
    store: OperationStore[ApiRequest],
    operation: Literal["get", "save", "delete"],
    cache_key: str,
    *,
    start_time: datetime,
    end_time: datetime,
    success: bool,
    error: str | None = None,
) -> str:
    """캐시 API 호출(get/save/delete)을 기록한다."""
    shown = cache_key if len(cache_key) <= 20 else f"{cache_key[:20]}..."
    logger.debug(
        "Cache api %s recorded for %s",
        operation,
        shown,
        extra={"event_code": "CACHE_API", "component": "api"},
    )
    return record_request(
        store,
        CACHE_API_ENDPOINT,
        _CACHE_API_METHODS[operation],
        start_time=start_time,
        end_time=end_time,
        status_code=_CACHE_API_STATUS[operation] if success else 500,
        auth_method="github-app",
        error=error,
    )


def success_rate(store: OperationStore[ApiRequest]) -> float:
    done = [r for r in store.all() if r.status_code is not None]
    if not done:
        return 0.0
    return float(round(sum(1 for r in done if is_success_status(r.status_code)) / len(done) * 100))


def average_response_time(store: OperationStore[ApiRequest]) -> float:
    """완료된 요청의 평균 응답 시간(ms)."""
    durations = [duration_ms(r.start_time, r.end_time) for r in store.all() if r.end_time]
    if not durations:
        return 0.0
    return round(sum(durations) / len(durations), 2)


class ApiMetricsCollector(BaseCollector[ApiRequest, ApiMetrics]):
    metric_type = "api"

    def transform(self, record: ApiRequest, context: CollectionContext) -> ApiMetrics:
        end_time = record.end_time or utc_now()
        status_code = record.status_code if record.status_code is not None else 0
        error = record.error
        if record.end_time is None and error is None:
            error = "request did not complete"
        return ApiMetrics(
            endpoint=record.endpoint,
            method=record.method,  # type: ignore[arg-type]
            start_time=record.start_time,
            end_time=end_time,
            duration=duration_ms(record.start_time, end_time),
            status_code=status_code,
            success=is_success_status(record.status_code),
            rate_limit_remaining=record.rate_limit_remaining,
            rate_limit_reset=record.rate_limit_reset,
            secondary_rate_limit=record.secondary_rate_limit,
            auth_method=record.auth_method,  # type: ignore[arg-type]
            response_size=record.response_size,
            error=self.scrub(error),
        )
