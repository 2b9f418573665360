"""Endpoint process supervision.

One subprocess per named role. Launch configuration goes out through the
environment, commands go out as JSON lines on stdin, and stdout is framed into
events that are published through the correlator.
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set

from pydantic import ValidationError

from msrp_harness.correlator import EventCorrelator, Predicate
from msrp_harness.errors import EndpointAlreadyRunning, SpawnFailure, SpawnTimeout, UnknownEndpoint
from msrp_harness.framing import LineBuffer, encode_command, parse_event_line
from msrp_harness.log_collector import LogCollector
from msrp_harness.models import Event, LaunchConfig
from msrp_harness.observability import MetricsCollector, get_logger, get_metrics_collector, time_operation
from msrp_harness.ports import PortReservation
from msrp_harness.settings import HarnessSettings, get_settings

READ_CHUNK_SIZE = 4096

_STDERR_LEVELS = {
    "[ERROR]": "error",
    "[WARN]": "warning",
    "[INFO]": "info",
    "[DEBUG]": "debug",
}


def _stderr_level(line: str) -> str:
    for prefix, level in _STDERR_LEVELS.items():
        if line.startswith(prefix):
            return level
    return "info"


@dataclass
class EndpointRecord:
    """A live endpoint process registered under ``role``."""

    role: str
    process: asyncio.subprocess.Process
    scenario: str
    launch_config: LaunchConfig
    port: Optional[int] = None
    ready: bool = False
    reserved_port: Optional[int] = None
    stderr_lines: List[str] = field(default_factory=list)
    ready_future: Optional[asyncio.Future] = field(default=None, repr=False)
    readers: List[asyncio.Task] = field(default_factory=list, repr=False)
    watcher: Optional[asyncio.Task] = field(default=None, repr=False)
    reaper: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    @property
    def stderr_text(self) -> str:
        return "\n".join(self.stderr_lines)


class EndpointSupervisor:
    """Spawns, drives and tears down endpoint processes.

    All state lives on this instance and is only touched from the event loop
    that runs it; several supervisors can coexist in one test run.
    """

    def __init__(self,
                 settings: Optional[HarnessSettings] = None,
                 ports: Optional[PortReservation] = None,
                 correlator: Optional[EventCorrelator] = None,
                 log_collector: Optional[LogCollector] = None,
                 metrics: Optional[MetricsCollector] = None,
                 command: Optional[List[str]] = None) -> None:
        self.settings = settings or get_settings()
        self.metrics = metrics or get_metrics_collector()
        self.ports = ports or PortReservation(
            base_port=self.settings.base_port,
            max_port=self.settings.max_port,
            max_attempts=self.settings.port_attempts,
            host=self.settings.endpoint_host,
        )
        self.correlator = correlator or EventCorrelator(
            default_timeout=self.settings.wait_timeout_seconds,
            metrics=self.metrics,
        )
        self.log_collector = log_collector or LogCollector()
        self.command = list(command or self.settings.endpoint_command)
        self._records: Dict[str, EndpointRecord] = {}
        self._reapers: Dict[asyncio.Task, EndpointRecord] = {}
        self._spawning: Set[str] = set()
        self.logger = get_logger("msrp_harness.supervisor")

    async def __aenter__(self) -> "EndpointSupervisor":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.cleanup_all()

    async def spawn_endpoint(self,
                             role: str,
                             config: Optional[Mapping[str, Any]] = None,
                             scenario: str = "basic",
                             *,
                             reserve_port: Optional[bool] = None) -> EndpointRecord:
        """Start an endpoint process and wait until it reports ready.

        Raises EndpointAlreadyRunning if ``role`` is live, SpawnFailure if the
        process cannot start or exits early, SpawnTimeout if it never reports
        ready.
        """
        # Claim the role before the first await
        if role in self._records or role in self._spawning:
            raise EndpointAlreadyRunning(role)
        self._spawning.add(role)
        try:
            return await self._spawn(role, config, scenario, reserve_port)
        finally:
            self._spawning.discard(role)

    async def _spawn(self,
                     role: str,
                     config: Optional[Mapping[str, Any]],
                     scenario: str,
                     reserve_port: Optional[bool]) -> EndpointRecord:
        overrides = dict(config or {})
        reserved_port = None
        if reserve_port is None:
            reserve_port = self.settings.reserve_ports
        if reserve_port and not overrides.get("port"):
            reserved_port = self.ports.allocate()
            overrides["port"] = reserved_port

        try:
            launch_config = LaunchConfig.for_role(role, scenario, host=self.settings.endpoint_host,
                                                  overrides=overrides)
        except ValidationError as exc:
            if reserved_port is not None:
                self.ports.release(reserved_port)
            self.logger.error("Invalid launch config", role=role, error=str(exc))
            raise SpawnFailure(role, f"invalid launch config: {exc}") from exc

        env = os.environ.copy()
        env[self.settings.config_env_var] = launch_config.to_env_value()

        # Windows-specific subprocess handling
        extra: Dict[str, Any] = {}
        if sys.platform == "win32":
            extra["creationflags"] = 0x00000200  # CREATE_NEW_PROCESS_GROUP

        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                **extra,
            )
        except OSError as exc:
            if reserved_port is not None:
                self.ports.release(reserved_port)
            self.logger.error("Failed to spawn endpoint", role=role, command=self.command, error=str(exc))
            raise SpawnFailure(role, f"could not be started: {exc}") from exc

        record = EndpointRecord(
            role=role,
            process=process,
            scenario=scenario,
            launch_config=launch_config,
            reserved_port=reserved_port,
            ready_future=asyncio.get_running_loop().create_future(),
        )
        self._records[role] = record
        self.correlator.register(role)
        record.readers = [
            asyncio.create_task(self._pump_stdout(record)),
            asyncio.create_task(self._pump_stderr(record)),
        ]
        record.watcher = asyncio.create_task(self._watch_exit(record))
        self.logger.info("Spawned endpoint", role=role, pid=process.pid, scenario=scenario)

        timeout = self.settings.spawn_timeout_seconds
        try:
            with time_operation("endpoint.spawn", {"role": role}, self.metrics):
                await asyncio.wait_for(asyncio.shield(record.ready_future), timeout=timeout)
        except asyncio.TimeoutError:
            self.logger.error("Endpoint did not become ready", role=role, pid=process.pid, timeout=timeout)
            record.ready_future.cancel()
            await self._discard(record)
            raise SpawnTimeout(role, timeout) from None
        except SpawnFailure as exc:
            self.logger.error("Endpoint exited before ready", role=role, pid=process.pid,
                              returncode=exc.returncode)
            await self._discard(record)
            raise
        except asyncio.CancelledError:
            record.ready_future.cancel()
            if self._records.get(role) is record:
                self._remove(record)
            self._start_reaper(record)
            raise

        self.logger.info("Endpoint ready", role=role, pid=process.pid, port=record.port)
        return record

    def send_command(self, role: str, command: str, data: Optional[Mapping[str, Any]] = None, **fields: Any) -> None:
        """Write one command line to ``role``'s stdin without waiting for effects."""
        record = self._records.get(role)
        if record is None or record.process.returncode is not None:
            raise UnknownEndpoint(role)
        stdin = record.process.stdin
        if stdin is None or stdin.is_closing():
            raise UnknownEndpoint(role)
        payload = {**(data or {}), **fields}
        stdin.write(encode_command(command, **payload))
        self.logger.debug("Sent command", role=role, command=command)

    async def kill_process(self, role: str, *, wait: bool = False) -> Optional[int]:
        """Stop ``role``'s process: interrupt, then kill after the grace period.

        The record is removed before the process is confirmed gone. With
        ``wait`` the call returns the exit code once the process has exited.
        """
        record = self._records.get(role)
        if record is None:
            self.logger.debug("Kill requested for unknown endpoint", role=role)
            return None
        self._remove(record)
        reaper = self._start_reaper(record)
        if wait:
            return await asyncio.shield(reaper)
        return None

    async def cleanup_all(self) -> None:
        """Terminate every process, wait for the exits, release every port."""
        for role in list(self._records):
            try:
                await self.kill_process(role)
            except Exception:
                self.logger.exception("Failed to stop endpoint", role=role)

        pending = set(self._reapers)
        if pending:
            _, stragglers = await asyncio.wait(pending, timeout=self.settings.cleanup_timeout_seconds)
            for task in stragglers:
                record = self._reapers.get(task)
                if record is None:
                    continue
                self.logger.warning("Force killing endpoint", role=record.role, pid=record.pid)
                try:
                    record.process.kill()
                except ProcessLookupError:
                    pass
            if stragglers:
                _, stuck = await asyncio.wait(stragglers, timeout=self.settings.kill_grace_seconds)
                for task in stuck:
                    record = self._reapers.get(task)
                    self.logger.error("Endpoint did not exit", role=record.role if record else None)
                    task.cancel()
                await asyncio.gather(*stuck, return_exceptions=True)

        self.ports.release_all()
        self.correlator.reset()
        self._records.clear()
        self.logger.info("Cleanup complete")

    def is_ready(self, role: str) -> bool:
        record = self._records.get(role)
        return bool(record and record.ready)

    def get_port(self, role: str) -> Optional[int]:
        record = self._records.get(role)
        return record.port if record else None

    def get_record(self, role: str) -> Optional[EndpointRecord]:
        return self._records.get(role)

    def roles(self) -> List[str]:
        return list(self._records)

    def get_messages(self, role: str, event_type: Optional[str] = None) -> List[Event]:
        return self.correlator.get_messages(role, event_type)

    async def wait_for(self,
                       role: str,
                       event_type: str,
                       timeout: Optional[float] = None,
                       where: Optional[Predicate] = None) -> Event:
        return await self.correlator.wait_for(role, event_type, timeout=timeout, where=where)

    def _remove(self, record: EndpointRecord) -> None:
        self._records.pop(record.role, None)
        self.correlator.unregister(record.role)
        if record.reserved_port is not None:
            self.ports.release(record.reserved_port)
        if record.ready_future is not None and not record.ready_future.done():
            record.ready_future.set_exception(
                SpawnFailure(record.role, "was terminated before it became ready", stderr=record.stderr_text)
            )

    async def _discard(self, record: EndpointRecord) -> None:
        if self._records.get(record.role) is record:
            self._remove(record)
        await asyncio.shield(self._start_reaper(record))

    def _start_reaper(self, record: EndpointRecord) -> asyncio.Task:
        """Terminate ``record``'s process in a task; one reaper per record."""
        if record.reaper is not None and not record.reaper.cancelled():
            return record.reaper
        task = asyncio.create_task(self._terminate(record))
        record.reaper = task
        self._reapers[task] = record
        task.add_done_callback(lambda t: self._reapers.pop(t, None))
        return task

    async def _terminate(self, record: EndpointRecord) -> Optional[int]:
        process = record.process
        try:
            if process.returncode is None:
                try:
                    if sys.platform == "win32":
                        process.terminate()
                    else:
                        process.send_signal(signal.SIGINT)
                except ProcessLookupError:
                    pass
                try:
                    await asyncio.wait_for(process.wait(), timeout=self.settings.kill_grace_seconds)
                except asyncio.TimeoutError:
                    self.logger.warning("Endpoint ignored interrupt, killing", role=record.role, pid=record.pid)
                    self.metrics.increment_counter("endpoint.forced_kill", tags={"role": record.role})
                    try:
                        process.kill()
                    except ProcessLookupError:
                        pass
                    await process.wait()
            if record.watcher is not None:
                await record.watcher
        except asyncio.CancelledError:
            raise
        except Exception:
            self.logger.exception("Error while terminating endpoint", role=record.role, pid=record.pid)
        finally:
            if process.stdin is not None and not process.stdin.is_closing():
                process.stdin.close()
        self.logger.info("Endpoint terminated", role=record.role, pid=record.pid, returncode=process.returncode)
        return process.returncode

    async def _pump_stdout(self, record: EndpointRecord) -> None:
        buffer = LineBuffer()
        stream = record.process.stdout
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            for line in buffer.feed(chunk):
                self._handle_line(record, line)
        for line in buffer.flush():
            self._handle_line(record, line)

    async def _pump_stderr(self, record: EndpointRecord) -> None:
        buffer = LineBuffer()
        stream = record.process.stderr
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            for line in buffer.feed(chunk):
                self._handle_stderr(record, line)
        for line in buffer.flush():
            self._handle_stderr(record, line)

    async def _watch_exit(self, record: EndpointRecord) -> None:
        returncode = await record.process.wait()
        # Let the readers drain so the captured stderr is complete
        try:
            results = await asyncio.wait_for(
                asyncio.gather(*record.readers, return_exceptions=True),
                timeout=self.settings.kill_grace_seconds,
            )
        except asyncio.TimeoutError:
            self.logger.warning("Output streams still open after exit", role=record.role, pid=record.pid)
        else:
            for result in results:
                if isinstance(result, Exception):
                    self.logger.error("Output reader failed", role=record.role, exc_info=result)

        if record.ready_future is not None and not record.ready_future.done():
            record.ready_future.set_exception(
                SpawnFailure(record.role, f"exited with code {returncode}", returncode, record.stderr_text)
            )
        elif self._records.get(record.role) is record:
            self.logger.warning("Endpoint exited while registered", role=record.role, pid=record.pid,
                                returncode=returncode)
        else:
            self.logger.debug("Endpoint exited", role=record.role, pid=record.pid, returncode=returncode)

    def _handle_line(self, record: EndpointRecord, line: str) -> None:
        event = parse_event_line(line)
        if event is None:
            # Non-JSON output, treat as log
            self.logger.info("Endpoint output", role=record.role, line=line)
            self.log_collector.add_log(record.role, "info", line, source="stdout")
            return
        if self._records.get(record.role) is not record:
            self.logger.debug("Ignoring event from retired endpoint", role=record.role, event_type=event.type)
            return

        self.correlator.publish(record.role, event)
        self._log_event(record, event)

        if event.type == "ready" and not record.ready:
            record.ready = True
            record.port = event.get("port")
            if record.ready_future is not None and not record.ready_future.done():
                record.ready_future.set_result(record)

    def _handle_stderr(self, record: EndpointRecord, line: str) -> None:
        record.stderr_lines.append(line)
        self.log_collector.add_log(record.role, _stderr_level(line), line, source="stderr")
        self.logger.debug("Endpoint stderr", role=record.role, line=line)

    def _log_event(self, record: EndpointRecord, event: Event) -> None:
        if event.type == "error":
            self.logger.warning("Endpoint reported error", role=record.role, error=event.get("error"))
        elif event.type == "ready":
            self.logger.debug("Endpoint announced ready", role=record.role, port=event.get("port"))
        else:
            self.logger.info("Endpoint event", role=record.role, event_type=event.type,
                             session_id=event.get("sessionId"))
