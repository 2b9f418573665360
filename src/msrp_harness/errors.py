"""Error types raised by the harness."""

from typing import Optional


class HarnessError(Exception):
    """Base class for harness errors."""


class SpawnFailure(HarnessError):
    """Endpoint process could not be started or exited before it was ready."""

    def __init__(self, role: str, message: str, returncode: Optional[int] = None, stderr: str = ""):
        self.role = role
        self.returncode = returncode
        self.stderr = stderr
        detail = f"{role} process {message}"
        if stderr:
            detail += f". stderr: {stderr.strip()}"
        super().__init__(detail)


class SpawnTimeout(HarnessError):
    """Endpoint process did not report readiness in time."""

    def __init__(self, role: str, timeout: float):
        self.role = role
        self.timeout = timeout
        super().__init__(f"{role} process failed to start within timeout ({timeout}s)")


class UnknownEndpoint(HarnessError):
    """Operation referenced a role with no live process."""

    def __init__(self, role: str):
        self.role = role
        super().__init__(f"No process found for endpoint: {role}")


class EndpointAlreadyRunning(HarnessError):
    """A live process is already registered under this role."""

    def __init__(self, role: str):
        self.role = role
        super().__init__(f"Endpoint already running: {role}")


class WaitTimeout(HarnessError):
    """Awaited event type never arrived."""

    def __init__(self, role: str, event_type: str, timeout: float):
        self.role = role
        self.event_type = event_type
        self.timeout = timeout
        super().__init__(f"Timeout waiting for {event_type} from {role} after {timeout}s")


class PortExhaustion(HarnessError):
    """No free port was found within the attempt budget."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Unable to allocate available port after {attempts} attempts")


class ScenarioFailure(HarnessError):
    """A scenario observed events that contradict what it requested."""
