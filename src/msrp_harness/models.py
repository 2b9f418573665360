"""Event values and launch configuration models."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


@dataclass(frozen=True)
class Event:
    """One event emitted by an endpoint process.

    ``payload`` holds every wire field except ``type``. ``role`` and
    ``sequence`` are stamped by the harness when the event is published and
    never come from the wire.
    """

    type: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    role: Optional[str] = None
    sequence: int = -1

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Event":
        fields = {k: v for k, v in data.items() if k != "type"}
        return cls(type=str(data["type"]), payload=fields)

    def stamped(self, role: str, sequence: int) -> "Event":
        return dataclasses.replace(self, role=role, sequence=sequence)

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)

    def __getitem__(self, key: str) -> Any:
        if key == "type":
            return self.type
        return self.payload[key]

    def __contains__(self, key: object) -> bool:
        return key == "type" or key in self.payload

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, **self.payload}


class EndpointOptions(BaseModel):
    """Options handed to the endpoint's MSRP stack.

    Unknown keys are kept and forwarded untouched.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    host: str = "127.0.0.1"
    port: int = 0
    setup: str = "active"
    session_name: str = "msrp session"
    accept_types: str = "text/plain"
    trace_msrp: bool = False


class LaunchConfig(BaseModel):
    """Payload delivered to an endpoint process through its environment."""

    type: str
    scenario: str = "basic"
    config: EndpointOptions = EndpointOptions()

    @classmethod
    def for_role(cls, role: str, scenario: str = "basic", host: str = "127.0.0.1",
                 overrides: Optional[Mapping[str, Any]] = None) -> "LaunchConfig":
        options: Dict[str, Any] = {
            "host": host,
            "port": 0,
            "setup": role,
            "sessionName": f"{role} session",
            "acceptTypes": "text/plain",
            "traceMsrp": False,
        }
        options.update({to_camel(k): v for k, v in (overrides or {}).items()})
        return cls(type=role, scenario=scenario, config=EndpointOptions.model_validate(options))

    def to_env_value(self) -> str:
        return self.model_dump_json(by_alias=True)
