"""실패 메시지 분류기.

우선순위가 고정된 패턴 테이블을 위에서부터 평가하고 처음 일치한 그룹을 반환한다.
일치하는 그룹이 없으면 unknown/unclassified-error로 분류한다 (예외 아님).
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from ci_analytics.models import FailureCategory


@dataclass(frozen=True)
class FailurePattern:
    name: str
    category: FailureCategory
    type: str
    patterns: tuple[re.Pattern[str], ...]

    def matches(self, message: str) -> bool:
        return any(p.search(message) for p in self.patterns)


@dataclass(frozen=True)
class FailureClassification:
    category: FailureCategory
    type: str
    pattern_name: str | None = None


UNCLASSIFIED = FailureClassification(category="unknown", type="unclassified-error")


def _compile(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


FAILURE_PATTERNS: tuple[FailurePattern, ...] = (
    FailurePattern(
        "DOCKER_PERMISSION",
        "docker-issues",
        "permission-denied",
        _compile(
            r"permission denied.*docker",
            r"docker.*permission",
            r"cannot access docker",
            r"docker daemon.*permission",
        ),
    ),
    FailurePattern(
        "DOCKER_USER_MISMATCH",
        "docker-issues",
        "user-mismatch",
        _compile(
            r"chown.*operation not permitted",
            r"user.*does not exist",
            r"uid.*not found",
            r"operation not permitted.*chown",
        ),
    ),
    FailurePattern(
        "TOKEN_AUTH",
        "authentication",
        "token-auth-failed",
        _compile(
            r"bad credentials",
            r"authentication.*failed",
            r"invalid.*token",
            r"unauthorized.*401",
        ),
    ),
    FailurePattern(
        "TOKEN_PERMISSION",
        "permissions",
        "insufficient-permissions",
        _compile(
            r"forbidden.*403",
            r"insufficient.*permission",
            r"access.*denied",
            r"not.*authorized",
        ),
    ),
    FailurePattern(
        "CACHE_CORRUPTION",
        "cache-corruption",
        "invalid-cache-data",
        _compile(
            r"cache.*corrupt",
            r"invalid.*cache",
            r"cache.*version.*mismatch",
            r"failed.*parse.*cache",
        ),
    ),
    FailurePattern(
        "NETWORK_TIMEOUT",
        "network-issues",
        "request-timeout",
        _compile(
            r"timeout",
            r"connection.*timed out",
            r"request.*timeout",
            r"network.*timeout",
        ),
    ),
    FailurePattern(
        "NETWORK_CONNECTION",
        "network-issues",
        "connection-failed",
        _compile(
            r"connection.*refused",
            r"network.*unreachable",
            r"dns.*resolution.*failed",
            r"could not resolve",
        ),
    ),
    FailurePattern(
        "API_RATE_LIMIT",
        "api-limits",
        "rate-limit-exceeded",
        _compile(
            r"rate.*limit.*exceeded",
            r"api.*rate.*limit",
            r"secondary.*rate.*limit",
            r"too.*many.*requests",
        ),
    ),
    FailurePattern(
        "TOOL_INSTALL_FAILURE",
        "docker-issues",
        "tool-installation-failed",
        _compile(
            r"failed.*install.*tool",
            r"tool.*installation.*error",
            r"cannot.*install",
            r"installation.*failed",
        ),
    ),
    FailurePattern(
        "CONFIG_VALIDATION",
        "configuration-error",
        "invalid-configuration",
        _compile(
            r"invalid.*config",
            r"configuration.*error",
            r"config.*validation.*failed",
            r"malformed.*config",
        ),
    ),
)


def classify_failure(
    message: str,
    patterns: tuple[FailurePattern, ...] = FAILURE_PATTERNS,
) -> FailureClassification:
    for group in patterns:
        if group.matches(message):
            return FailureClassification(group.category, group.type, group.name)
    return UNCLASSIFIED
