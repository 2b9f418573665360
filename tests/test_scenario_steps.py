"""Tests for scenario composition with a mocked supervisor."""

from unittest.mock import AsyncMock, Mock

import pytest

from msrp_harness.errors import ScenarioFailure, WaitTimeout
from msrp_harness.models import Event
from msrp_harness.scenarios import (
    HarnessScenario,
    LifecycleResult,
    MsrpScenarios,
    ScenarioManager,
    content_type_samples,
    for_session,
    session_id_for,
)


def _mock_harness(*events):
    harness = Mock()
    harness.settings.settle_seconds = 0
    harness.wait_for = AsyncMock(side_effect=list(events))
    harness.cleanup_all = AsyncMock()
    return harness


class TestHelpers:
    """Small helpers used by the scenarios."""

    def test_session_ids(self):
        assert session_id_for("active") == "active_session"
        assert session_id_for("passive", 3) == "passive_session_3"

    def test_for_session(self):
        matches = for_session("s1")
        assert matches(Event("session_created", {"sessionId": "s1"}))
        assert not matches(Event("session_created", {"sessionId": "s2"}))

    def test_ports_changed(self):
        assert LifecycleResult((1, 2), (3, 4)).ports_changed
        assert not LifecycleResult((1, 2), (2, 5)).ports_changed

    def test_content_type_samples(self):
        assert [t for t, _ in content_type_samples()] == ["text/plain", "application/json", "text/html"]


class TestNegotiation:
    """SDP offer/answer sequencing."""

    @pytest.mark.asyncio
    async def test_commands_in_order(self):
        harness = _mock_harness(
            Event("sdp_generated", {"sessionId": "a", "sdp": "OFFER"}),
            Event("remote_sdp_set", {"sessionId": "p"}),
            Event("sdp_generated", {"sessionId": "p", "sdp": "ANSWER"}),
            Event("remote_sdp_set", {"sessionId": "a"}),
        )
        composer = MsrpScenarios(harness)

        result = await composer.perform_sdp_negotiation("a", "p")

        assert (result.offer, result.answer) == ("OFFER", "ANSWER")
        sent = [(c.args[0], c.args[1], c.kwargs) for c in harness.send_command.call_args_list]
        assert sent == [
            ("active", "generate_sdp", {"sessionId": "a"}),
            ("passive", "set_remote_sdp", {"sessionId": "p", "sdp": "OFFER"}),
            ("passive", "generate_sdp", {"sessionId": "p"}),
            ("active", "set_remote_sdp", {"sessionId": "a", "sdp": "ANSWER"}),
        ]

    @pytest.mark.asyncio
    async def test_timeout_aborts(self):
        harness = _mock_harness(WaitTimeout("active", "sdp_generated", 1.0))
        composer = MsrpScenarios(harness)

        with pytest.raises(WaitTimeout):
            await composer.perform_sdp_negotiation()
        assert harness.send_command.call_count == 1


class TestSendAndConfirm:
    """Checking what an endpoint reports after a send."""

    @pytest.mark.asyncio
    async def test_confirmed(self):
        harness = _mock_harness(Event("message_sent", {"sessionId": "active_session", "content": "hi"}))
        composer = MsrpScenarios(harness)

        sent = await composer.send_and_confirm("active", "hi")

        assert sent["content"] == "hi"
        harness.send_command.assert_called_once_with(
            "active", "send_message", {"sessionId": "active_session", "content": "hi"}
        )

    @pytest.mark.asyncio
    async def test_content_mismatch(self):
        harness = _mock_harness(Event("message_sent", {"sessionId": "active_session", "content": "other"}))

        with pytest.raises(ScenarioFailure, match="expected 'hi'"):
            await MsrpScenarios(harness).send_and_confirm("active", "hi")

    @pytest.mark.asyncio
    async def test_session_mismatch(self):
        harness = _mock_harness(Event("message_sent", {"sessionId": "passive_session", "content": "hi"}))

        with pytest.raises(ScenarioFailure):
            await MsrpScenarios(harness).send_and_confirm("active", "hi", session_id="passive_session")

    @pytest.mark.asyncio
    async def test_content_type_mismatch(self):
        harness = _mock_harness(Event("message_sent", {
            "sessionId": "active_session", "content": "<p>x</p>", "contentType": "text/plain",
        }))

        with pytest.raises(ScenarioFailure, match="content type"):
            await MsrpScenarios(harness).send_and_confirm("active", "<p>x</p>", "text/html")

    @pytest.mark.asyncio
    async def test_cleanup_delegates(self):
        harness = _mock_harness()
        await MsrpScenarios(harness).cleanup()
        harness.cleanup_all.assert_awaited_once()


class TestScenarioManager:
    """Test cases for ScenarioManager."""

    def test_predefined(self):
        manager = ScenarioManager()
        assert manager.list_scenarios() == ["negotiation", "bidirectional", "content-types", "lifecycle", "load"]
        assert manager.get_scenario("load").timeout == 60.0

    def test_unknown(self):
        with pytest.raises(ValueError, match="not found"):
            ScenarioManager().get_scenario("missing")

    def test_add_scenario(self):
        manager = ScenarioManager()
        custom = HarnessScenario("custom", "A custom scenario", AsyncMock(return_value={}))

        manager.add_scenario(custom)

        assert manager.get_scenario("custom") is custom


def test_composer_exposes_its_harness():
    harness = _mock_harness()
    assert MsrpScenarios(harness).get_test_harness() is harness
