"""Line framing and event parsing for endpoint output streams."""

import json
from typing import List, Optional

from msrp_harness.models import Event


DEFAULT_MAX_LINE_LENGTH = 1024 * 1024


class LineBuffer:
    """Splits a byte stream into text lines.

    Chunks may end mid-line (or mid-character); the unterminated tail is held
    until the next ``feed`` or returned by ``flush`` at end of stream. A tail
    that grows past ``max_line_length`` bytes without a newline is cut and
    returned in pieces of at most that size.
    """

    def __init__(self, encoding: str = "utf-8", max_line_length: int = DEFAULT_MAX_LINE_LENGTH):
        self._encoding = encoding
        self._max_line_length = max_line_length
        self._pending = bytearray()

    def feed(self, chunk: bytes) -> List[str]:
        """Add a chunk and return every line it completed (blank lines dropped)."""
        lines = []
        start = 0
        end = chunk.find(b"\n")
        while end != -1:
            self._pending += chunk[start:end]
            lines.append(self._take(len(self._pending)))
            start = end + 1
            end = chunk.find(b"\n", start)
        self._pending += chunk[start:]
        while len(self._pending) > self._max_line_length:
            lines.append(self._take(self._max_line_length))
        return [line for line in lines if line]

    def flush(self) -> List[str]:
        """Return the unterminated tail, if any, and reset."""
        line = self._take(len(self._pending))
        return [line] if line else []

    @property
    def pending(self) -> bytes:
        return bytes(self._pending)

    def _take(self, size: int) -> str:
        raw = bytes(self._pending[:size])
        del self._pending[:size]
        return self._decode(raw)

    def _decode(self, raw: bytes) -> str:
        return raw.decode(self._encoding, errors="replace").rstrip("\r").strip()


def parse_event_line(line: str) -> Optional[Event]:
    """Parse one output line into an Event.

    Returns None for anything that is not a JSON object with a string ``type``;
    the caller treats those lines as diagnostic output.
    """
    try:
        data = json.loads(line)
    except ValueError:
        return None
    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        return None
    return Event.from_dict(data)


def encode_command(command: str, **fields) -> bytes:
    """Serialize a command as one JSON line."""
    message = {"command": command, **fields}
    return (json.dumps(message) + "\n").encode("utf-8")
