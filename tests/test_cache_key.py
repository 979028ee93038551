"""캐시 키 생성/파싱 테스트."""

from __future__ import annotations

from datetime import UTC, datetime

from ci_analytics.cache_key import (
    CacheKey,
    create_aggregated_cache_key,
    create_config_cache_key,
    create_events_cache_key,
    generate_key,
    parse_key,
    repository_key_prefix,
    today_bucket,
)


class TestGenerateKey:
    def test_format(self) -> None:
        key = CacheKey(
            prefix="ci-analytics",
            repository="pseudolab/infra",
            type="events",
            version="1.0",
            timestamp="2024-01-15",
        )
        assert generate_key(key) == "ci-analytics-pseudolab-infra-events-1.0-2024-01-15"

    def test_deterministic(self) -> None:
        key = CacheKey(prefix="p", repository="a/b", type="aggregated")
        assert generate_key(key) == generate_key(CacheKey(prefix="p", repository="a/b", type="aggregated"))

    def test_repository_changes_key(self) -> None:
        first = generate_key(CacheKey(prefix="p", repository="a/b", type="events"))
        second = generate_key(CacheKey(prefix="p", repository="a/c", type="events"))
        assert first != second

    def test_each_field_changes_key(self) -> None:
        base = CacheKey(prefix="p", repository="a/b", type="events", version="1.0", timestamp="2024-01-01")
        variants = [
            base.model_copy(update={"prefix": "q"}),
            base.model_copy(update={"type": "config"}),
            base.model_copy(update={"version": "2.0"}),
            base.model_copy(update={"timestamp": "2024-01-02"}),
        ]
        keys = {generate_key(base)} | {generate_key(v) for v in variants}
        assert len(keys) == 5

    def test_empty_fields_omitted(self) -> None:
        key = CacheKey(prefix="", repository="", type="config", version="", timestamp=None)
        assert generate_key(key) == "config"

    def test_no_timestamp(self) -> None:
        assert create_config_cache_key("p", "a/b") == "p-a-b-config-1.0"


class TestParseKey:
    def test_roundtrip_with_date(self) -> None:
        key = create_events_cache_key("ci-analytics", "org/my-repo", "2024-01-15")
        parsed = parse_key(key, "ci-analytics")
        assert parsed is not None
        assert parsed.repository == "org-my-repo"
        assert parsed.type == "events"
        assert parsed.version == "1.0"
        assert parsed.timestamp == "2024-01-15"

    def test_without_date(self) -> None:
        parsed = parse_key(create_aggregated_cache_key("p", "a/b"), "p")
        assert parsed is not None
        assert parsed.type == "aggregated" and parsed.timestamp is None

    def test_rejects_foreign_keys(self) -> None:
        assert parse_key("other-a-b-events-1.0", "p") is None
        assert parse_key("p-a-b-unknown-1.0", "p") is None


class TestHelpers:
    def test_repository_prefix(self) -> None:
        prefix = repository_key_prefix("p", "a/b")
        assert prefix == "p-a-b-"
        assert create_events_cache_key("p", "a/b", "2024-01-15").startswith(prefix)

    def test_today_bucket(self) -> None:
        assert today_bucket(datetime(2024, 3, 9, 23, 59, tzinfo=UTC)) == "2024-03-09"
