"""Multi-process test harness for MSRP endpoints."""

from .correlator import EventCorrelator
from .errors import (
    EndpointAlreadyRunning,
    HarnessError,
    PortExhaustion,
    ScenarioFailure,
    SpawnFailure,
    SpawnTimeout,
    UnknownEndpoint,
    WaitTimeout,
)
from .log_collector import LogCollector
from .models import Event, LaunchConfig
from .ports import PortReservation
from .scenarios import MsrpScenarios, ScenarioManager
from .settings import HarnessSettings, get_settings
from .supervisor import EndpointRecord, EndpointSupervisor

__all__ = [
    "EventCorrelator",
    "EndpointAlreadyRunning",
    "HarnessError",
    "PortExhaustion",
    "ScenarioFailure",
    "SpawnFailure",
    "SpawnTimeout",
    "UnknownEndpoint",
    "WaitTimeout",
    "LogCollector",
    "Event",
    "LaunchConfig",
    "PortReservation",
    "MsrpScenarios",
    "ScenarioManager",
    "HarnessSettings",
    "get_settings",
    "EndpointRecord",
    "EndpointSupervisor",
]
