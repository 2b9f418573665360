"""Pytest configuration and shared fixtures."""

from typing import AsyncGenerator

import pytest

from msrp_harness.correlator import EventCorrelator
from msrp_harness.log_collector import LogCollector
from msrp_harness.observability import MetricsCollector
from msrp_harness.settings import HarnessSettings
from msrp_harness.supervisor import EndpointSupervisor


@pytest.fixture
def settings() -> HarnessSettings:
    """Harness settings with short timeouts for fast, deterministic tests."""
    return HarnessSettings(
        spawn_timeout_seconds=10.0,
        wait_timeout_seconds=5.0,
        kill_grace_seconds=1.0,
        cleanup_timeout_seconds=5.0,
        settle_seconds=0.05,
    )


@pytest.fixture
def metrics() -> MetricsCollector:
    """A private metrics collector so counts don't leak between tests."""
    return MetricsCollector()


@pytest.fixture
def correlator(metrics) -> EventCorrelator:
    return EventCorrelator(default_timeout=0.5, metrics=metrics)


@pytest.fixture
def log_collector() -> LogCollector:
    return LogCollector()


@pytest.fixture
async def harness(settings, metrics, log_collector) -> AsyncGenerator[EndpointSupervisor, None]:
    """Supervisor running the bundled reference endpoint; always cleaned up."""
    supervisor = EndpointSupervisor(settings=settings, metrics=metrics, log_collector=log_collector)
    yield supervisor
    await supervisor.cleanup_all()
