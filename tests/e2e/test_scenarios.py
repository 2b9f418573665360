"""Scenario tests against real endpoint subprocesses."""

import json

import pytest

from msrp_harness.scenarios import ExchangeStep, MsrpScenarios

pytestmark = pytest.mark.e2e


@pytest.fixture
def composer(harness):
    return MsrpScenarios(harness)


class TestScenarios:
    """Multi-step scenarios with an active/passive pair."""

    @pytest.mark.asyncio
    async def test_sdp_negotiation(self, composer, harness):
        setup = await composer.setup_communication_session()

        assert harness.is_ready("active") and harness.is_ready("passive")
        assert "a=setup:active" in setup.negotiation.offer
        assert "a=setup:passive" in setup.negotiation.answer
        assert f"m=message {setup.active.port} TCP/MSRP *" in setup.negotiation.offer
        assert f"m=message {setup.passive.port} TCP/MSRP *" in setup.negotiation.answer
        assert len(harness.get_messages("active", "remote_sdp_set")) == 1
        assert len(harness.get_messages("passive", "remote_sdp_set")) == 1
        assert len(harness.get_messages("active", "sdp_generated")) == 1
        assert len(harness.get_messages("passive", "sdp_generated")) == 1
        assert harness.get_messages("active", "sdp_generated")[0]["sdp"] == setup.negotiation.offer
        assert harness.get_messages("passive", "sdp_generated")[0]["sdp"] == setup.negotiation.answer

    @pytest.mark.asyncio
    async def test_bidirectional_exchange(self, composer, harness):
        results = await composer.exchange_messages()

        assert [r.sent["content"] for r in results] == [
            "Hello from active!",
            "Hello from passive!",
            "How are you?",
            "I am fine, thanks!",
        ]
        received_by_passive = [
            (await harness.wait_for("passive", "message_received"))["content"] for _ in range(2)
        ]
        received_by_active = [
            (await harness.wait_for("active", "message_received"))["content"] for _ in range(2)
        ]
        assert received_by_passive == ["Hello from active!", "How are you?"]
        assert received_by_active == ["Hello from passive!", "I am fine, thanks!"]

    @pytest.mark.asyncio
    async def test_custom_script(self, composer, harness):
        script = [ExchangeStep("passive", "active", "ping"), ExchangeStep("active", "passive", "pong")]

        results = await composer.exchange_messages(script)

        assert [r.sent["sessionId"] for r in results] == ["passive_session", "active_session"]

    @pytest.mark.asyncio
    async def test_content_types(self, composer, harness):
        results = await composer.exchange_content_types()

        assert [r.sent["contentType"] for r in results] == ["text/plain", "application/json", "text/html"]
        received = [await harness.wait_for("passive", "message_received") for _ in results]
        assert [e["contentType"] for e in received] == ["text/plain", "application/json", "text/html"]
        assert json.loads(received[1]["content"])["message"] == "JSON message"

    @pytest.mark.asyncio
    async def test_session_lifecycle(self, composer, harness):
        result = await composer.session_lifecycle()

        assert None not in result.first_ports
        assert None not in result.second_ports
        assert result.ports_changed
        assert len(harness.get_messages("active", "ready")) == 1

    @pytest.mark.asyncio
    @pytest.mark.slow
    async def test_load(self, composer, harness):
        result = await composer.load_test(5)

        assert result.session_count == 5
        assert len(result.negotiations) == 5
        assert len(harness.get_messages("active", "session_created")) == 5
        assert len(harness.get_messages("passive", "sdp_generated")) == 5
