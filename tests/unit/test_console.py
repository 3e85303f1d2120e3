"""Unit tests for the operator console's bridge bookkeeping."""
import pytest

from app.db.models import CallStatus
from app.services.call_session.console import CallConsole
from app.services.call_session.session import CallState
from app.services.telephony.base import ProviderCallStatus


@pytest.fixture
def polling_console(store, notification_hub, make_controller, conversation_service):
    return CallConsole(
        store,
        notification_hub,
        lambda: make_controller(poll_interval_seconds=0.01),
        conversation_service=conversation_service,
    )


class TestCallConsole:
    """Test that torn-down sessions leave no bridge behind."""

    @pytest.mark.asyncio
    async def test_operator_terminate_drops_bridge(self, polling_console, conversation_service):
        session = await polling_console.start_call("+12025550123")
        await polling_console.attach_agent(session.call_id, "agent_abc")
        assert session.call_id in polling_console.bridges

        assert await polling_console.terminate_current()

        assert session.call_id not in polling_console.bridges
        assert conversation_service.channels[0].closed

    @pytest.mark.asyncio
    async def test_provider_hangup_drops_bridge(
        self, polling_console, conversation_service, telephony, store, wait_until
    ):
        session = await polling_console.start_call("+12025550123")
        await polling_console.attach_agent(session.call_id, "agent_abc")

        telephony.status = ProviderCallStatus.COMPLETED
        await wait_until(lambda: session.call_id not in polling_console.bridges)

        assert polling_console.controller.state == CallState.ENDED
        assert conversation_service.channels[0].closed
        call = await store.get_call(session.call_id)
        assert call.status == CallStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_new_call_after_teardown_starts_clean(self, polling_console, telephony):
        first = await polling_console.start_call("+12025550123")
        await polling_console.attach_agent(first.call_id, "agent_abc")
        await polling_console.terminate_current()

        second = await polling_console.start_call("+12025550124")

        assert second.call_id != first.call_id
        assert polling_console.bridges == {}
        await polling_console.shutdown()
