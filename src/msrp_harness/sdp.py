"""Minimal MSRP session descriptions for the reference endpoint."""

from __future__ import annotations

import secrets
import string
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

LINE_END = "\r\n"
NTP_UNIX_OFFSET = 2208988800
_SID_ALPHABET = string.ascii_lowercase + string.digits


class SdpError(ValueError):
    """Raised for descriptions that can't be parsed or negotiated."""


def new_sid() -> str:
    """Random ten-character session id for MSRP URIs."""
    return "".join(secrets.choice(_SID_ALPHABET) for _ in range(10))


def ntp_now() -> int:
    return int(time.time()) + NTP_UNIX_OFFSET


@dataclass
class SessionDescription:
    """The fields of an MSRP SDP body the endpoints care about."""

    address: str
    port: int
    setup: str
    path: str
    session_name: str = "-"
    accept_types: List[str] = field(default_factory=lambda: ["text/plain"])
    origin_id: int = field(default_factory=ntp_now)

    def to_text(self) -> str:
        lines = [
            "v=0",
            f"o=- {self.origin_id} {self.origin_id} IN IP4 {self.address}",
            f"s={self.session_name}",
            f"c=IN IP4 {self.address}",
            "t=0 0",
            f"m=message {self.port} TCP/MSRP *",
            f"a=accept-types:{' '.join(self.accept_types)}",
            f"a=setup:{self.setup}",
            f"a=path:{self.path}",
        ]
        return LINE_END.join(lines) + LINE_END

    @classmethod
    def parse(cls, text: str) -> "SessionDescription":
        values: Dict[str, str] = {}
        attributes: Dict[str, str] = {}
        for raw in text.splitlines():
            line = raw.strip()
            if len(line) < 2 or line[1] != "=":
                continue
            key, value = line[0], line[2:]
            if key == "a":
                name, _, attr_value = value.partition(":")
                attributes[name] = attr_value
            else:
                values.setdefault(key, value)

        media = values.get("m", "").split()
        if len(media) < 2 or media[0] != "message":
            raise SdpError("Missing m=message line")
        try:
            port = int(media[1])
        except ValueError:
            raise SdpError(f"Invalid media port: {media[1]}") from None

        connection = values.get("c", "").split()
        if len(connection) != 3:
            raise SdpError("Missing or malformed c= line")

        origin = values.get("o", "").split()
        origin_id = int(origin[1]) if len(origin) > 1 and origin[1].isdigit() else 0

        return cls(
            address=connection[2],
            port=port,
            setup=attributes.get("setup", ""),
            path=attributes.get("path", ""),
            session_name=values.get("s", "-"),
            accept_types=attributes.get("accept-types", "").split() or ["*"],
            origin_id=origin_id,
        )

    def accepts(self, content_type: str) -> bool:
        wildcard = content_type.split("/", 1)[0] + "/*"
        return any(t in (content_type, wildcard, "*") for t in self.accept_types)


def answer_setup(remote: Optional[SessionDescription], configured: str) -> str:
    """Pick the local a=setup value given the remote description, if any."""
    if remote is None:
        return "passive" if configured == "passive" else "active"
    if not remote.setup or remote.setup in ("active", "actpass"):
        return "passive"
    if remote.setup == "passive":
        return "active"
    raise SdpError("Invalid remote a=setup value")
