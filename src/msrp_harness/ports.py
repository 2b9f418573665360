"""Port reservation for endpoint processes."""

import random
import socket
from typing import List, Optional, Set

from msrp_harness.errors import PortExhaustion
from msrp_harness.observability import get_logger


def is_port_free(port: int, host: str = "127.0.0.1") -> bool:
    """Check whether ``port`` can currently be bound on ``host``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


class PortReservation:
    """Hands out unused TCP ports and remembers them until released.

    Nothing is kept bound; the reservation set only stops this instance from
    issuing the same number twice before the endpoint actually binds it.
    """

    def __init__(self,
                 base_port: int = 20000,
                 max_port: int = 65535,
                 max_attempts: int = 50,
                 host: str = "127.0.0.1",
                 rng: Optional[random.Random] = None) -> None:
        self._allocated: Set[int] = set()
        self._base_port = base_port
        self._max_port = max_port
        self._max_attempts = max_attempts
        self._host = host
        self._rng = rng or random.Random()
        self.logger = get_logger("msrp_harness.ports")

    def allocate(self) -> int:
        """Reserve and return a free port, or raise PortExhaustion."""
        for attempt in range(self._max_attempts):
            # Random starting point to avoid conflicts with concurrent runs
            start = self._base_port + self._rng.randrange(1000) + attempt * 100
            port = self._find_free_port(start)
            if port is None:
                self.logger.debug("Port allocation attempt failed", attempt=attempt, start_port=start)
                continue
            self._allocated.add(port)
            self.logger.debug("Allocated port", port=port)
            return port
        raise PortExhaustion(self._max_attempts)

    def allocate_range(self, count: int = 2) -> List[int]:
        return [self.allocate() for _ in range(count)]

    def release(self, port: int) -> None:
        self._allocated.discard(port)

    def release_all(self) -> None:
        self._allocated.clear()

    def is_allocated(self, port: int) -> bool:
        return port in self._allocated

    def allocated_ports(self) -> List[int]:
        return sorted(self._allocated)

    def _find_free_port(self, start: int) -> Optional[int]:
        for port in range(start, self._max_port + 1):
            if port in self._allocated:
                continue
            if is_port_free(port, self._host):
                return port
        return None
