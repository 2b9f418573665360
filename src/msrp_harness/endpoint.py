"""Reference endpoint process.

Runs as an independent subprocess driven by the harness: it reads its launch
configuration from the environment, listens on a TCP port, accepts JSON
commands on stdin and reports JSON events on stdout. Diagnostics go to stderr.

Scenarios:
- basic: normal operation
- unresponsive: never reports ready
- crash: fails before reporting ready
- noisy: mixes plain text and split writes into stdout
"""

import asyncio
import json
import os
import signal
import sys
import threading
import time
import traceback
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

import click
from pydantic import ValidationError

from msrp_harness.models import LaunchConfig
from msrp_harness.sdp import SdpError, SessionDescription, answer_setup, new_sid

CONNECT_TIMEOUT_SECONDS = 2.0
STDIN_LIMIT = 1024 * 1024


class CommandError(Exception):
    """A command could not be carried out; reported as an ``error`` event."""


@dataclass
class EndpointSession:
    session_id: str
    sid: str = field(default_factory=new_sid)
    local: Optional[SessionDescription] = None
    remote: Optional[SessionDescription] = None
    peer_writer: Optional[asyncio.StreamWriter] = field(default=None, repr=False)
    connected: bool = False


class EndpointProcess:
    """Command loop and MSRP-ish transport for one endpoint."""

    def __init__(self, launch: LaunchConfig, out=None, err=None):
        self.launch = launch
        self.role = launch.type
        self.scenario = launch.scenario
        self.options = launch.config
        self.sessions: Dict[str, EndpointSession] = {}
        self.server: Optional[asyncio.AbstractServer] = None
        self.port: Optional[int] = None
        self._out = out or sys.stdout
        self._err = err or sys.stderr
        self._commands: Optional[asyncio.Queue] = None
        self._stopping: Optional[asyncio.Event] = None
        self._stdin_task: Optional[asyncio.Task] = None
        self._incoming: Set[asyncio.StreamWriter] = set()

    def emit(self, event_type: str, **data: Any) -> None:
        message = {"type": event_type, "timestamp": int(time.time() * 1000), **data}
        self._out.write(json.dumps(message) + "\n")
        self._out.flush()

    def log(self, level: str, message: str) -> None:
        self._err.write(f"[{level}] {message}\n")
        self._err.flush()

    async def run(self) -> int:
        loop = asyncio.get_running_loop()
        self._commands = asyncio.Queue()
        self._stopping = asyncio.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._stopping.set)
            except (NotImplementedError, RuntimeError):
                pass

        if self.scenario == "crash":
            self.log("ERROR", "Simulated startup failure")
            return 1

        await self.start_server()
        if self.scenario == "noisy":
            await self._announce_noisily()
            await asyncio.sleep(0.05)
            self._out.write("noisy endpoint still starting\n")
            self._out.flush()
        elif self.scenario != "unresponsive":
            self.emit("ready", port=self.port, endpointType=self.role, scenario=self.scenario)

        await self._start_stdin_reader(loop)
        try:
            await self._command_loop()
        finally:
            if self._stdin_task is not None:
                self._stdin_task.cancel()
        await self.shutdown()
        return 0

    async def start_server(self) -> None:
        self.server = await asyncio.start_server(self._handle_peer, self.options.host, self.options.port)
        self.port = self.server.sockets[0].getsockname()[1]
        self.log("INFO", f"Listening on {self.options.host}:{self.port}")

    async def shutdown(self) -> None:
        self.log("INFO", "Shutting down endpoint process...")
        for session in self.sessions.values():
            if session.peer_writer is not None:
                session.peer_writer.close()
        self.sessions.clear()
        for writer in list(self._incoming):
            writer.close()
        if self.server is not None:
            self.server.close()
            await self.server.wait_closed()
            self.log("INFO", "Server stopped")
        self.emit("shutdown_complete")

    async def handle_line(self, line: str) -> None:
        try:
            command = json.loads(line)
        except ValueError as exc:
            self.emit("error", error=f"Invalid command: {exc}")
            return
        if not isinstance(command, dict) or not isinstance(command.get("command"), str):
            self.emit("error", error="Invalid command: missing command field")
            return
        await self.handle_command(command)

    async def handle_command(self, command: Dict[str, Any]) -> None:
        name = command["command"]
        handlers = {
            "create_session": lambda: self.create_session(command.get("sessionId")),
            "generate_sdp": lambda: self.generate_sdp(command.get("sessionId")),
            "set_remote_sdp": lambda: self.set_remote_sdp(command.get("sessionId"), command.get("sdp")),
            "send_message": lambda: self.send_message(command.get("sessionId"), command.get("content"),
                                                      command.get("contentType") or "text/plain"),
            "connect_to": lambda: self.connect_to(command.get("host"), command.get("port")),
            "get_status": self.get_status,
        }
        handler = handlers.get(name)
        if handler is None:
            self.emit("error", error=f"Unknown command: {name}")
            return
        try:
            await handler()
        except (CommandError, SdpError) as exc:
            self.emit("error", error=str(exc), command=name)
        except Exception as exc:
            self.emit("error", error=str(exc), command=name, stack=traceback.format_exc())

    async def create_session(self, session_id: Optional[str] = None) -> None:
        session_id = session_id or f"session_{int(time.time() * 1000)}"
        session = EndpointSession(session_id=session_id)
        self.sessions[session_id] = session
        self.emit("session_created", sessionId=session_id, msrpSessionId=session.sid)

    async def generate_sdp(self, session_id: Optional[str]) -> None:
        session = self._session(session_id)
        setup = answer_setup(session.remote, self.options.setup)
        host = self.options.host
        session.local = SessionDescription(
            address=host,
            port=self.port,
            setup=setup,
            path=f"msrp://{host}:{self.port}/{session.sid};tcp",
            session_name=self.options.session_name,
            accept_types=self.options.accept_types.split(),
        )
        self.emit("sdp_generated", sessionId=session_id, sdp=session.local.to_text())

    async def set_remote_sdp(self, session_id: Optional[str], sdp: Optional[str]) -> None:
        session = self._session(session_id)
        if not sdp:
            raise CommandError("Set remote SDP failed: empty description")
        try:
            session.remote = SessionDescription.parse(sdp)
        except SdpError as exc:
            raise CommandError(f"Set remote SDP failed: {exc}") from exc
        self.emit("remote_sdp_set", sessionId=session_id)

    async def send_message(self, session_id: Optional[str], content: Any, content_type: str) -> None:
        session = self._session(session_id)
        if session.remote is None:
            raise CommandError(f"No remote description for session: {session_id}")
        if not session.remote.accepts(content_type):
            raise CommandError(f"Remote endpoint does not accept {content_type}")

        writer = await self._peer_writer(session)
        message = {
            "toPath": session.remote.path,
            "content": content,
            "contentType": content_type,
            "messageId": uuid.uuid4().hex,
        }
        writer.write((json.dumps(message) + "\n").encode("utf-8"))
        try:
            await writer.drain()
        except ConnectionError as exc:
            session.peer_writer = None
            raise CommandError(f"Failed to send message: {exc}") from exc
        self.emit("message_sent", sessionId=session_id, content=content, contentType=content_type)

    async def connect_to(self, host: Optional[str], port: Optional[int]) -> None:
        self.emit("connecting_to", host=host, port=port)

    async def get_status(self) -> None:
        self.emit(
            "status",
            endpointType=self.role,
            port=self.port,
            sessions=list(self.sessions),
            serverListening=bool(self.server is not None and self.server.is_serving()),
        )

    def _session(self, session_id: Optional[str]) -> EndpointSession:
        session = self.sessions.get(session_id) if session_id else None
        if session is None:
            raise CommandError(f"Session not found: {session_id}")
        return session

    async def _peer_writer(self, session: EndpointSession) -> asyncio.StreamWriter:
        if session.peer_writer is not None and not session.peer_writer.is_closing():
            return session.peer_writer
        remote = session.remote
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(remote.address, remote.port),
                timeout=CONNECT_TIMEOUT_SECONDS,
            )
        except (OSError, asyncio.TimeoutError) as exc:
            raise CommandError(f"Failed to send message: cannot reach {remote.address}:{remote.port} ({exc})") from exc
        session.peer_writer = writer
        if not session.connected:
            session.connected = True
            self.emit("connection_established", sessionId=session.session_id)
        return writer

    async def _handle_peer(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._incoming.add(writer)
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                try:
                    message = json.loads(line)
                except ValueError:
                    self.log("WARN", f"Discarding malformed peer data: {line[:80]!r}")
                    continue
                session = self._session_for_path(message.get("toPath"))
                if session is None:
                    self.log("WARN", f"No session for path {message.get('toPath')}")
                    continue
                if not session.connected:
                    session.connected = True
                    self.emit("connection_established", sessionId=session.session_id)
                self.emit(
                    "message_received",
                    sessionId=session.session_id,
                    content=message.get("content"),
                    contentType=message.get("contentType"),
                    messageId=message.get("messageId"),
                )
        except ConnectionError as exc:
            self.log("WARN", f"Peer connection error: {exc}")
        finally:
            self._incoming.discard(writer)
            writer.close()

    def _session_for_path(self, path: Optional[str]) -> Optional[EndpointSession]:
        for session in self.sessions.values():
            if session.local is not None and session.local.path == path:
                return session
        return None

    async def _announce_noisily(self) -> None:
        self._out.write("endpoint booting (plain text, not an event)\n")
        self._out.write("[1, 2, 3]\n")
        line = json.dumps({
            "type": "ready",
            "timestamp": int(time.time() * 1000),
            "port": self.port,
            "endpointType": self.role,
            "scenario": self.scenario,
        })
        half = len(line) // 2
        self._out.write(line[:half])
        self._out.flush()
        await asyncio.sleep(0.05)
        self._out.write(line[half:] + "\n")
        self._out.flush()

    async def _start_stdin_reader(self, loop: asyncio.AbstractEventLoop) -> None:
        if sys.platform != "win32":
            reader = asyncio.StreamReader(limit=STDIN_LIMIT)
            await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
            self._stdin_task = asyncio.create_task(self._feed_commands(reader))
            return

        # Proactor pipes can't wrap an inherited stdin handle
        def read_blocking() -> None:
            try:
                for raw in sys.stdin:
                    loop.call_soon_threadsafe(self._commands.put_nowait, raw)
                loop.call_soon_threadsafe(self._commands.put_nowait, None)
            except RuntimeError:
                # Loop already closed during shutdown
                return

        threading.Thread(target=read_blocking, name="stdin-reader", daemon=True).start()

    async def _feed_commands(self, reader: asyncio.StreamReader) -> None:
        while True:
            line = await reader.readline()
            if not line:
                break
            self._commands.put_nowait(line.decode("utf-8", errors="replace"))
        self._commands.put_nowait(None)

    async def _command_loop(self) -> None:
        stop = asyncio.create_task(self._stopping.wait())
        try:
            while True:
                get = asyncio.create_task(self._commands.get())
                done, _ = await asyncio.wait({get, stop}, return_when=asyncio.FIRST_COMPLETED)
                if get not in done:
                    get.cancel()
                    return
                raw = get.result()
                if raw is None:
                    return
                if raw.strip():
                    await self.handle_line(raw.strip())
        finally:
            stop.cancel()


def load_launch_config(env_var: str = "MSRP_CONFIG") -> LaunchConfig:
    value = os.environ.get(env_var)
    if not value:
        raise ValueError(f"{env_var} environment variable not set")
    return LaunchConfig.model_validate_json(value)


@click.command()
@click.option('--config-env', default='MSRP_CONFIG', help='Environment variable holding the launch config')
def main(config_env: str):
    """Run one reference endpoint, driven over stdin/stdout."""
    try:
        launch = load_launch_config(config_env)
    except (ValueError, ValidationError) as exc:
        print(json.dumps({"type": "error", "timestamp": int(time.time() * 1000), "error": str(exc)}), flush=True)
        sys.exit(1)

    endpoint = EndpointProcess(launch)
    try:
        code = asyncio.run(endpoint.run())
    except Exception as exc:
        endpoint.emit("error", error=str(exc), stack=traceback.format_exc())
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
