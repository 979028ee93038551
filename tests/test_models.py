"""데이터 모델 테스트."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from ci_analytics.models import (
    FAILURE_CATEGORIES,
    AggregatedAnalytics,
    AnalyticsEvent,
    CacheMetrics,
    MetricsBundle,
    empty_failure_counts,
    is_supported_schema_version,
)
from pydantic import ValidationError

T0 = datetime(2024, 1, 15, 10, 0, 0, tzinfo=UTC)


class TestRecords:
    def test_camel_case_serialization(self, make_event) -> None:
        record = make_event(cache_hits=[True]).to_record()
        assert record["schemaVersion"] == "1.0.0"
        assert record["repository"]["fullName"] == "pseudolab/test-repo"
        assert record["cache"][0]["startTime"] == "2024-01-15T10:00:00Z"
        assert "error" not in record["cache"][0]

    def test_parse_from_camel_case(self, make_event) -> None:
        event = make_event()
        assert AnalyticsEvent.model_validate(event.to_record()) == event

    def test_frozen(self, make_event) -> None:
        event = make_event()
        with pytest.raises(ValidationError):
            event.id = "changed"  # type: ignore[misc]

    def test_negative_duration_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CacheMetrics(operation="save", key="k", start_time=T0, end_time=T0, duration=-1, success=True)

    def test_unknown_operation_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CacheMetrics(operation="upload", key="k", start_time=T0, end_time=T0, duration=0, success=True)


class TestAggregated:
    def test_missing_categories_filled(self, make_aggregate) -> None:
        aggregate = make_aggregate(failures_by_category={"permissions": 2})
        assert set(aggregate.failures_by_category) == set(FAILURE_CATEGORIES)
        assert aggregate.failures_by_category["permissions"] == 2
        assert aggregate.failures_by_category["timeout"] == 0

    def test_unknown_category_rejected(self, make_aggregate) -> None:
        with pytest.raises(ValidationError):
            make_aggregate(failures_by_category={"cosmic-rays": 1})

    @pytest.mark.parametrize("field", ["cache_hit_rate", "action_success_rate"])
    def test_rate_bounds(self, make_aggregate, field: str) -> None:
        with pytest.raises(ValidationError):
            make_aggregate(**{field: 100.5})

    def test_record_roundtrip_keeps_schema_version(self, make_aggregate) -> None:
        record = make_aggregate().to_record()
        assert record["schemaVersion"] == "1.0.0"
        assert record["failuresByCategory"]["unknown"] == 0
        assert AggregatedAnalytics.model_validate(record).event_count == 5


class TestHelpers:
    def test_empty_failure_counts(self) -> None:
        counts = empty_failure_counts()
        assert len(counts) == 9
        assert all(v == 0 for v in counts.values())

    def test_schema_version_support(self) -> None:
        assert is_supported_schema_version("1.0.0")
        assert not is_supported_schema_version("2.0.0")

    def test_bundle_defaults(self) -> None:
        bundle = MetricsBundle()
        assert bundle.total() == 0
        assert bundle.to_record() == {"cache": [], "docker": [], "api": [], "failures": []}
