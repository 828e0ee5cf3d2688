from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
import typer
from typer.testing import CliRunner

from cli.app import app
from cli.config import DEFAULT_BASE_URL, load_config


class StubClient:
    def __init__(self, config) -> None:
        self.config = config
        self.registered: List[tuple[str, Dict[str, Any]]] = []
        self.uploaded: List[tuple[str, Path]] = []
        self.estimate_calls: List[Dict[str, Any]] = []
        self.recalculate_calls: List[Dict[str, Any]] = []
        self.summary: Dict[str, Any] = {"processed": 3, "updated": 3, "failed": 0}
        self.consumption: Dict[str, Any] = {
            "daily_consumption_percent": 3.0,
            "daily_consumption_volume": 300.0,
            "days_remaining": 20.7,
            "estimated_empty_date": "2024-03-28",
            "trend": "increasing",
            "confidence": "high",
            "sample_count": 7,
            "fit_quality": 1.0,
            "channel": "percent",
            "strategy": "regression",
        }
        self.closed = False

    def register_asset(self, asset_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.registered.append((asset_id, payload))
        return {"asset_id": asset_id, **payload}

    def get_asset(self, asset_id: str) -> Dict[str, Any]:
        if asset_id == "missing":
            raise typer.BadParameter(f"Asset {asset_id} was not found.")
        return {
            "asset_id": asset_id,
            "name": "Depot",
            "capacity": 10000,
            "current_level_percent": 62,
            "days_remaining": 20.7,
            "consumption_trend": "increasing",
            "consumption_confidence": "high",
            "consumption_computed_at": "2024-03-08T00:00:00Z",
        }

    def upload_readings(self, asset_id: str, path: Path) -> Dict[str, Any]:
        self.uploaded.append((asset_id, path))
        return {
            "asset_id": asset_id,
            "accepted": 6,
            "errors": [{"row_number": 4, "reason": "invalid timestamp"}],
        }

    def estimate(
        self,
        asset_id: str,
        days: Optional[int] = None,
        strategy: Optional[str] = None,
        persist: bool = True,
    ) -> Dict[str, Any]:
        self.estimate_calls.append(
            {"asset_id": asset_id, "days": days, "strategy": strategy, "persist": persist}
        )
        return self.consumption

    def refills(self, asset_id: str, days=None, threshold=None) -> List[Dict[str, Any]]:
        return [
            {
                "timestamp": "2024-03-04T12:00:00Z",
                "level_before": 70.0,
                "level_after": 90.0,
                "increase": 20.0,
                "channel": "percent",
            }
        ]

    def recalculate(self, days=None, strategy=None) -> Dict[str, Any]:
        self.recalculate_calls.append({"days": days, "strategy": strategy})
        return self.summary

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def stub(monkeypatch) -> StubClient:
    client = StubClient(config=None)

    def factory(config):
        client.config = config
        return client

    monkeypatch.setattr("cli.app.ApiClient", factory)
    return client


def test_register_sends_only_given_fields(stub: StubClient, runner: CliRunner) -> None:
    result = runner.invoke(
        app, ["register", "tank-1", "--name", "Depot", "--capacity", "10000", "--refill-threshold", "15"]
    )

    assert result.exit_code == 0
    assert stub.registered == [
        (
            "tank-1",
            {"is_disabled": False, "name": "Depot", "capacity": 10000.0, "refill_threshold_percent": 15.0},
        )
    ]
    assert "Asset tank-1" in result.stdout
    assert "Not calculated yet." in result.stdout
    assert stub.closed is True


def test_upload_reports_skipped_rows(stub: StubClient, runner: CliRunner, tmp_path) -> None:
    csv_path = tmp_path / "readings.csv"
    csv_path.write_text("timestamp,level_percent\n2024-03-01T12:00:00Z,80\n")

    result = runner.invoke(app, ["upload", "tank-1", str(csv_path)])

    assert result.exit_code == 0
    assert stub.uploaded == [("tank-1", csv_path)]
    assert "Accepted 6 readings for tank-1." in result.stdout
    assert "row 4: invalid timestamp" in result.stdout


def test_estimate_passes_options(stub: StubClient, runner: CliRunner) -> None:
    result = runner.invoke(
        app, ["estimate", "tank-1", "--days", "14", "--strategy", "summation", "--dry-run"]
    )

    assert result.exit_code == 0
    assert stub.estimate_calls == [
        {"asset_id": "tank-1", "days": 14, "strategy": "summation", "persist": False}
    ]
    assert "days_remaining: 20.7" in result.stdout
    assert "confidence: high" in result.stdout


def test_estimate_defaults_persist(stub: StubClient, runner: CliRunner) -> None:
    result = runner.invoke(app, ["estimate", "tank-1"])

    assert result.exit_code == 0
    assert stub.estimate_calls[0]["persist"] is True
    assert stub.estimate_calls[0]["strategy"] is None


def test_show_renders_last_consumption(stub: StubClient, runner: CliRunner) -> None:
    result = runner.invoke(app, ["show", "tank-1"])

    assert result.exit_code == 0
    assert "computed_at: 2024-03-08T00:00:00Z" in result.stdout
    assert "capacity: 10000" in result.stdout


def test_show_unknown_asset_fails(stub: StubClient, runner: CliRunner) -> None:
    result = runner.invoke(app, ["show", "missing"])

    assert result.exit_code != 0


def test_refills_lists_events(stub: StubClient, runner: CliRunner) -> None:
    result = runner.invoke(app, ["refills", "tank-1"])

    assert result.exit_code == 0
    assert "70.0 -> 90.0 (+20.0 percent)" in result.stdout


def test_recalculate_exit_code_reflects_failures(stub: StubClient, runner: CliRunner) -> None:
    ok = runner.invoke(app, ["recalculate", "--days", "7"])
    assert ok.exit_code == 0
    assert "updated: 3" in ok.stdout
    assert stub.recalculate_calls == [{"days": 7, "strategy": None}]

    stub.summary = {"processed": 3, "updated": 2, "failed": 1}
    failed = runner.invoke(app, ["recalculate"])
    assert failed.exit_code == 1
    assert "failed: 1" in failed.stdout


def test_base_url_option_overrides_environment(stub: StubClient, runner: CliRunner, monkeypatch) -> None:
    monkeypatch.setenv("API_BASE_URL", "http://env-host:9000")

    result = runner.invoke(app, ["--base-url", "http://cli-host:8080/", "show", "tank-1"])

    assert result.exit_code == 0
    assert stub.config.base_url == "http://cli-host:8080"


def test_load_config_reads_environment(monkeypatch) -> None:
    monkeypatch.setenv("API_BASE_URL", "http://env-host:9000")
    monkeypatch.setenv("CLI_HTTP_TIMEOUT", "not-a-number")

    config = load_config()

    assert config.base_url == "http://env-host:9000"
    assert config.timeout == 30.0
    assert config.http_timeout().connect == 5.0
    assert config.http_timeout().read == 30.0

    monkeypatch.delenv("API_BASE_URL")
    assert load_config().base_url == DEFAULT_BASE_URL
