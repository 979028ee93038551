"""CLI 명령 테스트."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any
from unittest.mock import patch

import orjson
import pytest
import yaml
from ci_analytics.cache_store import encode_payload
from ci_analytics.cli import main
from click.testing import CliRunner

REPO = "pseudolab/test-repo"
PREFIX = "ci-analytics-pseudolab-test-repo"


def _write_config(tmp_path: Path, **overrides: Any) -> Path:
    """임시 config.yaml 생성 (R2 접속 정보 포함)."""
    config_data: dict[str, Any] = {
        "enabled": True,
        "log_level": "warn",
        "storage": {
            "bucket_name": "ci-analytics",
            "account_id": "test-account-id",
            "api_token": "secret-token-value",
        },
    }
    config_data.update(overrides)
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.dump(config_data), encoding="utf-8")
    return config_path


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    yield
    logging.getLogger("ci_analytics").handlers.clear()


class TestConfigCommand:
    def test_summary_hides_token(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(main, ["config", "--config", str(_write_config(tmp_path))])

        assert result.exit_code == 0
        data = orjson.loads(result.output)
        assert data["enabled"] is True
        assert data["storage"]["token_configured"] is True
        assert "secret-token-value" not in result.output

    def test_invalid_config(self, tmp_path: Path) -> None:
        path = _write_config(tmp_path, sample_rate=2.0)

        result = CliRunner().invoke(main, ["config", "--config", str(path)])

        assert result.exit_code == 1
        assert "sample_rate" in result.output


class TestAggregateCommand:
    def test_aggregate_and_store(self, tmp_path: Path, remote, make_event) -> None:
        remote.objects[f"{PREFIX}-events-1.0-2024-01-15"] = encode_payload(
            [make_event(cache_hits=[True, False]).to_record()], 1024 * 1024
        )

        with patch("ci_analytics.cli.R2RemoteCache", return_value=remote):
            result = CliRunner().invoke(
                main,
                ["aggregate", "--repository", REPO, "--date", "2024-01-15", "--config", str(_write_config(tmp_path))],
            )

        assert result.exit_code == 0, result.output
        assert '"cacheHitRate": 50.0' in result.output
        assert f"Stored: {PREFIX}-aggregated-1.0-2024-01-15" in result.output
        assert f"{PREFIX}-aggregated-1.0-2024-01-15" in remote.objects

    def test_missing_dates_reported(self, tmp_path: Path, remote) -> None:
        with patch("ci_analytics.cli.R2RemoteCache", return_value=remote):
            result = CliRunner().invoke(
                main,
                [
                    "aggregate", "--repository", REPO,
                    "--start-date", "2024-01-14", "--end-date", "2024-01-15",
                    "--no-persist", "--config", str(_write_config(tmp_path)),
                ],
            )

        assert result.exit_code == 0, result.output
        assert "No events for: 2024-01-14, 2024-01-15" in result.output
        assert remote.save_calls == []

    def test_date_options_conflict(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(
            main,
            ["aggregate", "--repository", REPO, "--date", "2024-01-15", "--start-date", "2024-01-14"],
        )
        assert result.exit_code != 0

    def test_storage_not_configured(self, tmp_path: Path) -> None:
        path = _write_config(tmp_path, storage={"bucket_name": ""})

        result = CliRunner().invoke(main, ["aggregate", "--repository", REPO, "--date", "2024-01-15", "--config", str(path)])

        assert result.exit_code == 1
        assert "CI_ANALYTICS_R2_BUCKET" in result.output


class TestMergeCommand:
    def test_merge_summary(self, tmp_path: Path, remote, make_aggregate) -> None:
        for repo, count in (("a-one", 5), ("b-two", 3)):
            remote.objects[f"ci-analytics-{repo}-aggregated-1.0-2024-01-15"] = encode_payload(
                make_aggregate(event_count=count).to_record(), 1024 * 1024
            )

        with patch("ci_analytics.cli.R2RemoteCache", return_value=remote):
            result = CliRunner().invoke(
                main,
                [
                    "merge", "--repository", "a/one", "--repository", "b/two",
                    "--date", "2024-01-15", "--format", "summary",
                    "--config", str(_write_config(tmp_path)),
                ],
            )

        assert result.exit_code == 0, result.output
        assert "Events: 8 / Repositories: 2" in result.output

    def test_nothing_to_merge(self, tmp_path: Path, remote) -> None:
        with patch("ci_analytics.cli.R2RemoteCache", return_value=remote):
            result = CliRunner().invoke(
                main,
                ["merge", "--repository", "a/one", "--date", "2024-01-15", "--config", str(_write_config(tmp_path))],
            )

        assert result.exit_code == 1
        assert "No aggregates found" in result.output


class TestExportCommand:
    def test_export_csv_to_file(self, tmp_path: Path, make_event) -> None:
        input_path = tmp_path / "events.json"
        input_path.write_bytes(orjson.dumps([make_event(event_id="e1").to_record()]))
        output_path = tmp_path / "out" / "events.csv"

        result = CliRunner().invoke(
            main,
            ["export", "--input", str(input_path), "--format", "csv", "--output", str(output_path)],
        )

        assert result.exit_code == 0, result.output
        assert output_path.exists()
        assert "e1," in output_path.read_text(encoding="utf-8")

    def test_export_date_filter(self, tmp_path: Path, make_event) -> None:
        input_path = tmp_path / "events.json"
        input_path.write_bytes(orjson.dumps([make_event(event_id="e1").to_record()]))

        result = CliRunner().invoke(
            main,
            ["export", "--input", str(input_path), "--format", "summary", "--start-date", "2024-01-16"],
        )

        assert result.exit_code == 0
        assert "No events" in result.output


class TestManagementCommands:
    def _seed(self, remote, make_event) -> None:
        for day in ("2024-01-01", "2024-01-15"):
            remote.objects[f"{PREFIX}-events-1.0-{day}"] = encode_payload([make_event().to_record()], 1024 * 1024)
            remote.modified[f"{PREFIX}-events-1.0-{day}"] = f"{day}T00:00:00Z"

    def test_list_keys(self, tmp_path: Path, remote, make_event) -> None:
        self._seed(remote, make_event)

        with patch("ci_analytics.cli.R2RemoteCache", return_value=remote):
            result = CliRunner().invoke(
                main, ["list-keys", "--repository", REPO, "--config", str(_write_config(tmp_path))]
            )

        assert result.exit_code == 0
        assert f"{PREFIX}-events-1.0-2024-01-01" in result.output
        assert f"{PREFIX}-events-1.0-2024-01-15" in result.output

    def test_stats(self, tmp_path: Path, remote, make_event) -> None:
        self._seed(remote, make_event)

        with patch("ci_analytics.cli.R2RemoteCache", return_value=remote):
            result = CliRunner().invoke(main, ["stats", "--config", str(_write_config(tmp_path))])

        assert result.exit_code == 0
        assert '"entry_count": 2' in result.output
        assert f'"newest_entry": "{PREFIX}-events-1.0-2024-01-15"' in result.output

    def test_clear_requires_confirmation(self, tmp_path: Path, remote, make_event) -> None:
        self._seed(remote, make_event)

        with patch("ci_analytics.cli.R2RemoteCache", return_value=remote):
            aborted = CliRunner().invoke(
                main, ["clear", "--repository", REPO, "--config", str(_write_config(tmp_path))], input="n\n"
            )
            confirmed = CliRunner().invoke(
                main, ["clear", "--repository", REPO, "--yes", "--config", str(_write_config(tmp_path))]
            )

        assert aborted.exit_code == 1
        assert confirmed.exit_code == 0
        assert "Deleted 2 keys" in confirmed.output
        assert remote.objects == {}

    def test_prune(self, tmp_path: Path, remote, make_event) -> None:
        self._seed(remote, make_event)

        with patch("ci_analytics.cli.R2RemoteCache", return_value=remote):
            result = CliRunner().invoke(
                main,
                ["prune", "--repository", REPO, "--today", "2024-01-15", "--config", str(_write_config(tmp_path))],
            )

        assert result.exit_code == 0
        assert "Pruned 1 keys (retention: 7 days)" in result.output
        assert f"{PREFIX}-events-1.0-2024-01-15" in remote.objects
