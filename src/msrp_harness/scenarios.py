"""Multi-step MSRP scenarios built on the endpoint supervisor."""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from msrp_harness.correlator import Predicate
from msrp_harness.errors import ScenarioFailure
from msrp_harness.models import Event
from msrp_harness.observability import get_logger
from msrp_harness.supervisor import EndpointRecord, EndpointSupervisor

ACTIVE = "active"
PASSIVE = "passive"


def session_id_for(role: str, index: Optional[int] = None) -> str:
    """Conventional session id: ``{role}_session`` or ``{role}_session_{index}``."""
    if index is None:
        return f"{role}_session"
    return f"{role}_session_{index}"


def for_session(session_id: str) -> Predicate:
    return lambda event: event.get("sessionId") == session_id


@dataclass
class NegotiationResult:
    active_session_id: str
    passive_session_id: str
    offer: str
    answer: str


@dataclass
class SessionSetup:
    passive: EndpointRecord
    active: EndpointRecord
    negotiation: NegotiationResult

    @property
    def ports(self) -> Tuple[Optional[int], Optional[int]]:
        return (self.passive.port, self.active.port)


@dataclass
class ExchangeStep:
    sender: str
    receiver: str
    content: str
    content_type: str = "text/plain"


@dataclass
class ExchangeResult:
    step: ExchangeStep
    sent: Event


@dataclass
class LifecycleResult:
    first_ports: Tuple[Optional[int], Optional[int]]
    second_ports: Tuple[Optional[int], Optional[int]]

    @property
    def ports_changed(self) -> bool:
        return not set(self.first_ports) & set(self.second_ports)


@dataclass
class LoadResult:
    session_count: int
    session_pairs: List[Tuple[str, str]] = field(default_factory=list)
    negotiations: List[NegotiationResult] = field(default_factory=list)


DEFAULT_EXCHANGE: Sequence[ExchangeStep] = (
    ExchangeStep(ACTIVE, PASSIVE, "Hello from active!"),
    ExchangeStep(PASSIVE, ACTIVE, "Hello from passive!"),
    ExchangeStep(ACTIVE, PASSIVE, "How are you?"),
    ExchangeStep(PASSIVE, ACTIVE, "I am fine, thanks!"),
)


def content_type_samples() -> List[Tuple[str, str]]:
    return [
        ("text/plain", "Plain text message"),
        ("application/json", json.dumps({"message": "JSON message", "timestamp": int(time.time() * 1000)})),
        ("text/html", "<p>HTML message</p>"),
    ]


class MsrpScenarios:
    """High-level test patterns for an active/passive endpoint pair."""

    def __init__(self, harness: Optional[EndpointSupervisor] = None) -> None:
        self.harness = harness or EndpointSupervisor()
        self.logger = get_logger("msrp_harness.scenarios")

    @property
    def settle_seconds(self) -> float:
        return self.harness.settings.settle_seconds

    async def perform_sdp_negotiation(self,
                                      active_session_id: str = "active_session",
                                      passive_session_id: str = "passive_session",
                                      timeout: Optional[float] = None) -> NegotiationResult:
        """Offer from active, answer from passive. Any timeout aborts the negotiation."""
        h = self.harness

        h.send_command(ACTIVE, "generate_sdp", sessionId=active_session_id)
        offer = await h.wait_for(ACTIVE, "sdp_generated", timeout, where=for_session(active_session_id))

        h.send_command(PASSIVE, "set_remote_sdp", sessionId=passive_session_id, sdp=offer["sdp"])
        await h.wait_for(PASSIVE, "remote_sdp_set", timeout, where=for_session(passive_session_id))

        h.send_command(PASSIVE, "generate_sdp", sessionId=passive_session_id)
        answer = await h.wait_for(PASSIVE, "sdp_generated", timeout, where=for_session(passive_session_id))

        h.send_command(ACTIVE, "set_remote_sdp", sessionId=active_session_id, sdp=answer["sdp"])
        await h.wait_for(ACTIVE, "remote_sdp_set", timeout, where=for_session(active_session_id))

        self.logger.info("Negotiated session", active_session=active_session_id, passive_session=passive_session_id)
        return NegotiationResult(
            active_session_id=active_session_id,
            passive_session_id=passive_session_id,
            offer=offer["sdp"],
            answer=answer["sdp"],
        )

    async def setup_communication_session(self,
                                          config: Optional[Mapping[str, Any]] = None,
                                          settle: Optional[float] = None) -> SessionSetup:
        """Spawn both endpoints, create one session on each and negotiate it."""
        h = self.harness
        overrides = dict(config or {})
        passive = await h.spawn_endpoint(PASSIVE, {**overrides, "setup": "passive"})
        active = await h.spawn_endpoint(ACTIVE, {**overrides, "setup": "active"})

        passive_session = session_id_for(PASSIVE)
        active_session = session_id_for(ACTIVE)
        h.send_command(PASSIVE, "create_session", sessionId=passive_session)
        h.send_command(ACTIVE, "create_session", sessionId=active_session)
        await h.wait_for(PASSIVE, "session_created", where=for_session(passive_session))
        await h.wait_for(ACTIVE, "session_created", where=for_session(active_session))

        negotiation = await self.perform_sdp_negotiation(active_session, passive_session)

        # Give the transports a moment before messages flow
        await asyncio.sleep(self.settle_seconds if settle is None else settle)
        return SessionSetup(passive=passive, active=active, negotiation=negotiation)

    async def send_and_confirm(self, sender: str, content: str, content_type: str = "text/plain",
                               session_id: Optional[str] = None) -> Event:
        """Send one message and check the endpoint reports exactly what was asked."""
        session_id = session_id or session_id_for(sender)
        fields: Dict[str, Any] = {"sessionId": session_id, "content": content}
        if content_type != "text/plain":
            fields["contentType"] = content_type
        self.harness.send_command(sender, "send_message", fields)
        sent = await self.harness.wait_for(sender, "message_sent", where=for_session(session_id))

        if sent.get("content") != content:
            raise ScenarioFailure(
                f"{sender} reported sending {sent.get('content')!r}, expected {content!r}"
            )
        if not str(sent.get("sessionId", "")).startswith(f"{sender}_"):
            raise ScenarioFailure(f"{sender} reported session {sent.get('sessionId')!r}")
        if sent.get("contentType", "text/plain") != content_type:
            raise ScenarioFailure(
                f"{sender} reported content type {sent.get('contentType')!r}, expected {content_type!r}"
            )
        return sent

    async def exchange_messages(self,
                                script: Sequence[ExchangeStep] = DEFAULT_EXCHANGE,
                                setup: bool = True) -> List[ExchangeResult]:
        """Run an ordered send script, alternating senders."""
        if setup:
            await self.setup_communication_session()
        results = []
        for step in script:
            sent = await self.send_and_confirm(step.sender, step.content, step.content_type)
            results.append(ExchangeResult(step=step, sent=sent))
        return results

    async def exchange_content_types(self,
                                     samples: Optional[List[Tuple[str, str]]] = None) -> List[ExchangeResult]:
        """Send one message per content type from active to passive."""
        samples = samples or content_type_samples()
        accept_types = " ".join(content_type for content_type, _ in samples)
        await self.setup_communication_session({"acceptTypes": accept_types})
        results = []
        for content_type, content in samples:
            step = ExchangeStep(ACTIVE, PASSIVE, content, content_type)
            sent = await self.send_and_confirm(ACTIVE, content, content_type)
            results.append(ExchangeResult(step=step, sent=sent))
        return results

    async def session_lifecycle(self) -> LifecycleResult:
        """Set up, tear everything down, set up again."""
        first = await self.setup_communication_session()
        await self.send_and_confirm(ACTIVE, "Message in session 1")
        first_ports = first.ports

        await self.harness.cleanup_all()

        second = await self.setup_communication_session()
        await self.send_and_confirm(ACTIVE, "Message in session 2")
        result = LifecycleResult(first_ports=first_ports, second_ports=second.ports)
        if not result.ports_changed:
            self.logger.warning("Endpoints reused ports after teardown",
                                first_ports=first_ports, second_ports=second.ports)
        return result

    async def load_test(self, session_count: int = 5) -> LoadResult:
        """Create ``session_count`` sessions per endpoint and negotiate each pair."""
        h = self.harness
        await h.spawn_endpoint(PASSIVE, {"setup": "passive"})
        await h.spawn_endpoint(ACTIVE, {"setup": "active"})

        pairs = [(session_id_for(ACTIVE, i), session_id_for(PASSIVE, i)) for i in range(session_count)]
        for active_session, passive_session in pairs:
            h.send_command(PASSIVE, "create_session", sessionId=passive_session)
            h.send_command(ACTIVE, "create_session", sessionId=active_session)

        for role, expected in ((PASSIVE, [p for _, p in pairs]), (ACTIVE, [a for a, _ in pairs])):
            created = await asyncio.gather(*(h.wait_for(role, "session_created") for _ in expected))
            created_ids = sorted(event.get("sessionId") for event in created)
            if created_ids != sorted(expected):
                raise ScenarioFailure(f"{role} created {created_ids}, expected {sorted(expected)}")

        result = LoadResult(session_count=session_count, session_pairs=pairs)
        for active_session, passive_session in pairs:
            result.negotiations.append(await self.perform_sdp_negotiation(active_session, passive_session))
        return result

    async def cleanup(self) -> None:
        await self.harness.cleanup_all()

    def get_test_harness(self) -> EndpointSupervisor:
        return self.harness


ScenarioRunner = Callable[[MsrpScenarios, int], Awaitable[Dict[str, Any]]]


@dataclass
class HarnessScenario:
    """A named, runnable scenario."""
    name: str
    description: str
    runner: ScenarioRunner
    timeout: Optional[float] = None


async def _run_negotiation(composer: MsrpScenarios, sessions: int) -> Dict[str, Any]:
    setup = await composer.setup_communication_session()
    return {"ports": list(setup.ports), "offer": setup.negotiation.offer, "answer": setup.negotiation.answer}


async def _run_bidirectional(composer: MsrpScenarios, sessions: int) -> Dict[str, Any]:
    results = await composer.exchange_messages()
    return {"messages": [{"from": r.step.sender, "content": r.sent.get("content")} for r in results]}


async def _run_content_types(composer: MsrpScenarios, sessions: int) -> Dict[str, Any]:
    results = await composer.exchange_content_types()
    return {"content_types": [r.sent.get("contentType") for r in results]}


async def _run_lifecycle(composer: MsrpScenarios, sessions: int) -> Dict[str, Any]:
    result = await composer.session_lifecycle()
    return {
        "first_ports": list(result.first_ports),
        "second_ports": list(result.second_ports),
        "ports_changed": result.ports_changed,
    }


async def _run_load(composer: MsrpScenarios, sessions: int) -> Dict[str, Any]:
    result = await composer.load_test(sessions)
    return {"session_count": result.session_count, "negotiated": len(result.negotiations)}


class ScenarioManager:
    """Manages available harness scenarios."""

    def __init__(self):
        """Initialize scenario manager with predefined scenarios."""
        self.scenarios = self._create_predefined_scenarios()

    def _create_predefined_scenarios(self) -> Dict[str, HarnessScenario]:
        """Create predefined scenarios."""
        scenarios = [
            HarnessScenario("negotiation", "Spawn both endpoints and negotiate one session", _run_negotiation),
            HarnessScenario("bidirectional", "Negotiate, then exchange alternating messages", _run_bidirectional),
            HarnessScenario("content-types", "Send plain text, JSON and HTML bodies", _run_content_types),
            HarnessScenario("lifecycle", "Tear down and set up again on fresh ports", _run_lifecycle),
            HarnessScenario("load", "Create and negotiate many sessions per endpoint", _run_load, timeout=60.0),
        ]
        return {scenario.name: scenario for scenario in scenarios}

    def get_scenario(self, name: str) -> HarnessScenario:
        """Get a scenario by name."""
        if name not in self.scenarios:
            raise ValueError(f"Scenario '{name}' not found")
        return self.scenarios[name]

    def list_scenarios(self) -> List[str]:
        """List all available scenario names."""
        return list(self.scenarios.keys())

    def add_scenario(self, scenario: HarnessScenario) -> None:
        """Add a custom scenario."""
        self.scenarios[scenario.name] = scenario
