"""Tests for harness settings."""

import sys

from msrp_harness.settings import HarnessSettings, default_endpoint_command


def test_defaults(monkeypatch):
    for name in ("MSRP_HARNESS_SPAWN_TIMEOUT_SECONDS", "MSRP_HARNESS_RESERVE_PORTS"):
        monkeypatch.delenv(name, raising=False)
    settings = HarnessSettings()

    assert settings.endpoint_command == default_endpoint_command()
    assert settings.endpoint_command[0] == sys.executable
    assert settings.config_env_var == "MSRP_CONFIG"
    assert settings.spawn_timeout_seconds == 10.0
    assert settings.reserve_ports is False


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("MSRP_HARNESS_SPAWN_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("MSRP_HARNESS_RESERVE_PORTS", "true")
    monkeypatch.setenv("MSRP_HARNESS_ENDPOINT_COMMAND", '["node", "msrp-endpoint.js"]')

    settings = HarnessSettings()

    assert settings.spawn_timeout_seconds == 2.5
    assert settings.reserve_ports is True
    assert settings.endpoint_command == ["node", "msrp-endpoint.js"]
