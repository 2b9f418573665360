"""Tests for the command-line interface."""

import json

import pytest
from click.testing import CliRunner

from msrp_harness.cli import cli


@pytest.fixture(autouse=True)
def no_logging_setup(monkeypatch):
    """Keep CLI runs from reconfiguring global logging."""
    monkeypatch.setattr("msrp_harness.cli.setup_logging", lambda *args, **kwargs: None)


class TestCli:
    """Test cases for the msrp-harness CLI."""

    def test_list_scenarios(self):
        result = CliRunner().invoke(cli, ["scenarios"])

        assert result.exit_code == 0
        assert "negotiation:" in result.output
        assert "load:" in result.output

    def test_unknown_scenario(self, tmp_path):
        result = CliRunner().invoke(cli, ["run", "--scenario", "nope", "--output", str(tmp_path)])

        assert result.exit_code == 1
        assert "Scenario 'nope' not found" in result.output

    @pytest.mark.e2e
    def test_run_negotiation(self, tmp_path):
        result = CliRunner().invoke(cli, ["run", "--scenario", "negotiation", "--output", str(tmp_path)])

        assert result.exit_code == 0, result.output
        assert "Scenario completed successfully!" in result.output

        report = json.loads((tmp_path / "harness_report.json").read_text())
        assert report["status"] == "success"
        assert report["scenario"] == "negotiation"
        assert len(report["run_id"]) == 12
        assert report["metrics"]["counters"]["events.published[role=active,type=ready]"] == 1
        assert set(report["histories"]) == {"active", "passive"}
        assert "a=setup:passive" in report["result"]["answer"]
        assert (tmp_path / "logs" / "harness_logs.json").exists()

    @pytest.mark.e2e
    def test_run_failure_writes_report(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MSRP_HARNESS_ENDPOINT_COMMAND", '["/nonexistent/msrp-endpoint"]')

        result = CliRunner().invoke(cli, ["run", "--scenario", "negotiation", "--output", str(tmp_path)])

        assert result.exit_code == 1
        assert "Scenario failed!" in result.output
        report = json.loads((tmp_path / "harness_report.json").read_text())
        assert report["status"] == "failed"
        assert "could not be started" in report["error"]
