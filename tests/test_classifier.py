"""실패 분류기 테스트."""

from __future__ import annotations

import pytest
from ci_analytics.classifier import (
    FAILURE_PATTERNS,
    UNCLASSIFIED,
    classify_failure,
)
from ci_analytics.models import FAILURE_CATEGORIES


class TestClassifyFailure:
    @pytest.mark.parametrize(
        ("message", "category", "failure_type"),
        [
            ("permission denied accessing docker daemon", "docker-issues", "permission-denied"),
            ("chown: /tmp/x: Operation not permitted", "docker-issues", "user-mismatch"),
            ("HttpError: Bad credentials", "authentication", "token-auth-failed"),
            ("Resource forbidden (403)", "permissions", "insufficient-permissions"),
            ("cache data corrupted on restore", "cache-corruption", "invalid-cache-data"),
            ("ETIMEDOUT: connection timed out", "network-issues", "request-timeout"),
            ("Request timeout after 30s", "network-issues", "request-timeout"),
            ("connect ECONNREFUSED: connection refused", "network-issues", "connection-failed"),
            ("getaddrinfo: could not resolve host", "network-issues", "connection-failed"),
            ("API rate limit exceeded for installation", "api-limits", "rate-limit-exceeded"),
            ("429 Too Many Requests", "api-limits", "rate-limit-exceeded"),
            ("Failed to install tool node", "docker-issues", "tool-installation-failed"),
            ("malformed config in renovate.json", "configuration-error", "invalid-configuration"),
        ],
    )
    def test_known_patterns(self, message: str, category: str, failure_type: str) -> None:
        result = classify_failure(message)
        assert (result.category, result.type) == (category, failure_type)

    def test_case_insensitive(self) -> None:
        result = classify_failure("PERMISSION DENIED while talking to DOCKER")
        assert result.category == "docker-issues"

    def test_priority_first_match_wins(self) -> None:
        # docker 권한 패턴이 timeout보다 먼저 평가된다
        result = classify_failure("permission denied for docker socket (timeout)")
        assert result.type == "permission-denied"
        # 인증 실패가 권한 부족보다 먼저 평가된다
        result = classify_failure("bad credentials; access denied")
        assert result.category == "authentication"

    def test_unknown_fallback(self) -> None:
        result = classify_failure("something unexpected happened")
        assert result == UNCLASSIFIED
        assert (result.category, result.type) == ("unknown", "unclassified-error")

    def test_empty_message(self) -> None:
        assert classify_failure("") == UNCLASSIFIED

    def test_table_categories_are_valid(self) -> None:
        assert len(FAILURE_PATTERNS) == 10
        for group in FAILURE_PATTERNS:
            assert group.category in FAILURE_CATEGORIES
            assert group.patterns
