"""Unit tests for the provider status monitor."""
import pytest

from app.core.exceptions import ProviderStatusUnknown
from app.db.models import CallStatus
from app.services.call_session.monitor import StatusMonitor
from app.services.telephony.base import ProviderCallStatus, to_call_status


class TestStatusMapping:
    """Test the provider status vocabulary."""

    def test_terminal_statuses(self):
        terminal = {s for s in ProviderCallStatus if s.is_terminal}
        assert terminal == {
            ProviderCallStatus.COMPLETED,
            ProviderCallStatus.BUSY,
            ProviderCallStatus.FAILED,
            ProviderCallStatus.NO_ANSWER,
            ProviderCallStatus.CANCELED,
        }

    def test_parse_rejects_unknown_status(self):
        with pytest.raises(ProviderStatusUnknown):
            ProviderCallStatus.parse("on-hold")

    def test_parse_is_case_insensitive(self):
        assert ProviderCallStatus.parse("In-Progress") == ProviderCallStatus.IN_PROGRESS

    def test_persisted_status_mapping(self):
        assert to_call_status(ProviderCallStatus.COMPLETED) == CallStatus.COMPLETED
        assert to_call_status(ProviderCallStatus.BUSY) == CallStatus.ABANDONED
        assert to_call_status(ProviderCallStatus.RINGING) == CallStatus.ACTIVE
        assert to_call_status(ProviderCallStatus.QUEUED) == CallStatus.QUEUED


class TestStatusMonitor:
    """Test polling behaviour."""

    @pytest.fixture
    async def call(self, store):
        return await store.create_call("+12025550123", provider_call_id="CA100")

    @pytest.fixture
    def terminal_events(self):
        return []

    @pytest.fixture
    def monitor(self, telephony, store, terminal_events):
        async def on_terminal(status):
            terminal_events.append(status)

        return StatusMonitor(telephony, store, on_terminal, interval_seconds=0.01)

    @pytest.mark.asyncio
    async def test_ongoing_status_keeps_polling(self, monitor, call, telephony, terminal_events):
        monitor.start("CA100", call.id)

        assert await monitor.tick() is False
        assert monitor.last_status == ProviderCallStatus.IN_PROGRESS
        assert terminal_events == []

        await monitor.stop()
        assert not monitor.running

    @pytest.mark.asyncio
    async def test_unknown_status_is_rechecked(self, monitor, call, telephony, terminal_events, store):
        monitor.provider_call_id, monitor.session_id = "CA100", call.id
        telephony.status = ProviderStatusUnknown("Unknown provider call status: 'on-hold'")

        assert await monitor.tick() is False

        telephony.status = ProviderCallStatus.COMPLETED
        assert await monitor.tick() is True
        assert terminal_events == [ProviderCallStatus.COMPLETED]

    @pytest.mark.asyncio
    async def test_query_error_is_rechecked(self, monitor, call, telephony, terminal_events):
        monitor.provider_call_id, monitor.session_id = "CA100", call.id
        telephony.status = ConnectionResetError("connection reset by peer")

        assert await monitor.tick() is False
        assert terminal_events == []

    @pytest.mark.asyncio
    async def test_terminal_status_persists_and_stops(
        self, monitor, call, telephony, terminal_events, store, wait_until
    ):
        telephony.status = ProviderCallStatus.BUSY
        monitor.start("CA100", call.id)

        await wait_until(lambda: not monitor.running)

        assert terminal_events == [ProviderCallStatus.BUSY]
        updated = await store.get_call(call.id)
        assert updated.status == CallStatus.ABANDONED
        assert updated.end_time is not None

    @pytest.mark.asyncio
    async def test_only_one_monitor_task(self, monitor, call):
        monitor.start("CA100", call.id)

        with pytest.raises(RuntimeError):
            monitor.start("CA100", call.id)

        await monitor.stop()
