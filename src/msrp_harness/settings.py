"""Harness settings and configuration."""

import sys
from typing import List

from pydantic import Field, ConfigDict
from pydantic_settings import BaseSettings


def default_endpoint_command() -> List[str]:
    """Command that runs the bundled reference endpoint with this interpreter."""
    return [sys.executable, "-m", "msrp_harness.endpoint"]


class HarnessSettings(BaseSettings):
    """Harness settings with environment variable support."""

    # Endpoint process settings
    endpoint_command: List[str] = Field(default_factory=default_endpoint_command,
                                        description="Command used to launch an endpoint process")
    endpoint_host: str = Field(default="127.0.0.1", description="Host endpoints listen on")
    config_env_var: str = Field(default="MSRP_CONFIG", description="Environment variable carrying the launch config")

    # Timeouts
    spawn_timeout_seconds: float = Field(default=10.0, description="Time allowed for an endpoint to report ready")
    wait_timeout_seconds: float = Field(default=10.0, description="Default timeout for event waits")
    kill_grace_seconds: float = Field(default=2.0, description="Grace period between interrupt and kill")
    cleanup_timeout_seconds: float = Field(default=5.0, description="Bound on waiting for exits during cleanup")
    settle_seconds: float = Field(default=0.2, description="Pause after negotiation before sending messages")

    # Port reservation settings
    reserve_ports: bool = Field(default=False, description="Hand endpoints reserved ports instead of port 0")
    port_attempts: int = Field(default=50, description="Allocation attempts before giving up")
    base_port: int = Field(default=20000, description="Lowest port considered for reservation")
    max_port: int = Field(default=65535, description="Highest port considered for reservation")

    # Observability settings
    log_level: str = Field(default="INFO", description="Logging level")

    model_config = ConfigDict(
        env_prefix="MSRP_HARNESS_",
        case_sensitive=False,
    )


def get_settings() -> HarnessSettings:
    """Get harness settings instance."""
    return HarnessSettings()
