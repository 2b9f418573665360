"""Event correlation between endpoint output and waiting callers.

Every role has an append-only history. Waiting callers are matched against
that history first and, failing that, queued as single-fire waiters keyed by
``(role, event_type)``.

Claim rules:
- An event is handed to at most one ``wait_for`` call.
- A ``wait_for`` call gets the oldest unclaimed matching event already in the
  history; if there is none it gets the next matching publish.
- Queued waiters on the same key are served in the order they started waiting.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional, Set, Tuple

from msrp_harness.errors import UnknownEndpoint, WaitTimeout
from msrp_harness.models import Event
from msrp_harness.observability import MetricsCollector, get_logger, get_metrics_collector

Predicate = Callable[[Event], bool]


@dataclass(eq=False)
class _Waiter:
    event_type: str
    predicate: Optional[Predicate]
    future: asyncio.Future

    def accepts(self, event: Event) -> bool:
        return self.predicate is None or bool(self.predicate(event))


class EventCorrelator:
    """Fans out published events to history and pending waiters."""

    def __init__(self, default_timeout: float = 10.0, metrics: Optional[MetricsCollector] = None) -> None:
        self._histories: Dict[str, List[Event]] = {}
        self._claimed: Dict[str, Set[int]] = {}
        self._waiters: Dict[Tuple[str, str], Deque[_Waiter]] = {}
        self._default_timeout = default_timeout
        self._metrics = metrics or get_metrics_collector()
        self.logger = get_logger("msrp_harness.correlator")

    def register(self, role: str) -> None:
        """Open an empty history for ``role``."""
        self._histories[role] = []
        self._claimed[role] = set()

    def unregister(self, role: str) -> None:
        """Drop ``role``'s history and fail its pending waiters."""
        self._histories.pop(role, None)
        self._claimed.pop(role, None)
        for key in [k for k in self._waiters if k[0] == role]:
            for waiter in self._waiters.pop(key):
                if not waiter.future.done():
                    waiter.future.set_exception(UnknownEndpoint(role))

    def is_registered(self, role: str) -> bool:
        return role in self._histories

    def roles(self) -> List[str]:
        return list(self._histories)

    def publish(self, role: str, event: Event) -> Optional[Event]:
        """Record ``event`` for ``role`` and wake the first waiter that accepts it.

        Returns the stamped event, or None when the role is not registered.
        """
        history = self._histories.get(role)
        if history is None:
            self.logger.warning("Dropping event for unregistered endpoint", role=role, event_type=event.type)
            return None

        stamped = event.stamped(role, len(history))
        history.append(stamped)
        self._metrics.increment_counter("events.published", tags={"role": role, "type": stamped.type})

        key = (role, stamped.type)
        queue = self._waiters.get(key)
        if queue:
            for waiter in list(queue):
                if waiter.future.done():
                    queue.remove(waiter)
                    continue
                try:
                    accepted = waiter.accepts(stamped)
                except Exception as exc:
                    queue.remove(waiter)
                    waiter.future.set_exception(exc)
                    continue
                if accepted:
                    queue.remove(waiter)
                    waiter.future.set_result(stamped)
                    self._claimed[role].add(stamped.sequence)
                    break
            if not queue:
                self._waiters.pop(key, None)
        return stamped

    async def wait_for(self,
                       role: str,
                       event_type: str,
                       timeout: Optional[float] = None,
                       where: Optional[Predicate] = None) -> Event:
        """Wait for the next unclaimed ``event_type`` event from ``role``.

        ``where`` narrows the match further (e.g. on ``sessionId``). Raises
        UnknownEndpoint for unregistered roles and WaitTimeout on expiry.
        """
        if role not in self._histories:
            raise UnknownEndpoint(role)
        timeout = self._default_timeout if timeout is None else timeout

        existing = self._claim_from_history(role, event_type, where)
        if existing is not None:
            return existing

        key = (role, event_type)
        waiter = _Waiter(event_type, where, asyncio.get_running_loop().create_future())
        self._waiters.setdefault(key, deque()).append(waiter)
        try:
            return await asyncio.wait_for(waiter.future, timeout=timeout)
        except asyncio.TimeoutError:
            # Delivered in the same loop iteration the timeout fired
            if waiter.future.done() and not waiter.future.cancelled():
                return waiter.future.result()
            self._metrics.increment_counter("waits.timed_out", tags={"role": role, "type": event_type})
            self.logger.warning("Timed out waiting for event", role=role, event_type=event_type, timeout=timeout)
            raise WaitTimeout(role, event_type, timeout) from None
        finally:
            self._discard_waiter(key, waiter)

    def get_messages(self, role: str, event_type: Optional[str] = None) -> List[Event]:
        """Snapshot of ``role``'s history, optionally filtered by type."""
        history = self._histories.get(role)
        if history is None:
            return []
        if event_type is None:
            return list(history)
        return [event for event in history if event.type == event_type]

    def pending_waiters(self, role: Optional[str] = None) -> int:
        return sum(
            1
            for (waiter_role, _), queue in self._waiters.items()
            if role is None or waiter_role == role
            for waiter in queue
            if not waiter.future.done()
        )

    def reset(self) -> None:
        for role in list(self._histories):
            self.unregister(role)

    def _claim_from_history(self, role: str, event_type: str, where: Optional[Predicate]) -> Optional[Event]:
        claimed = self._claimed[role]
        for event in self._histories[role]:
            if event.type != event_type or event.sequence in claimed:
                continue
            if where is not None and not where(event):
                continue
            claimed.add(event.sequence)
            return event
        return None

    def _discard_waiter(self, key: Tuple[str, str], waiter: _Waiter) -> None:
        queue = self._waiters.get(key)
        if queue is None:
            return
        try:
            queue.remove(waiter)
        except ValueError:
            pass
        if not queue:
            self._waiters.pop(key, None)
