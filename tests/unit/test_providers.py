"""Unit tests for the Twilio and ElevenLabs clients."""
import json
import time
from unittest.mock import AsyncMock, Mock
import httpx
import pytest
from twilio.base.exceptions import TwilioRestException
from websockets.exceptions import ConnectionClosed

from app.core.exceptions import (
    ChannelClosed,
    ConversationServiceError,
    ProviderDialFailure,
    ProviderStatusUnknown,
)
from app.services.agent.elevenlabs import (
    Conversation,
    ConversationChannel,
    ElevenLabsConversationService,
)
from app.services.agent.messages import ToolResult
from app.services.agent.tools import DEFAULT_TOOLS
from app.services.telephony.base import ProviderCallStatus
from app.services.telephony.twilio_provider import TwilioTelephonyProvider


@pytest.fixture
def twilio_client():
    client = Mock()
    client.calls.create_async = AsyncMock(return_value=Mock(sid="CA123"))
    client.calls.return_value.fetch_async = AsyncMock(return_value=Mock(status="in-progress"))
    client.calls.return_value.update_async = AsyncMock()
    return client


@pytest.fixture
def provider(twilio_client):
    return TwilioTelephonyProvider(
        client=twilio_client,
        from_number="+15005550006",
        base_url="https://example.test/",
        dedup_window_seconds=30,
    )


class TestTwilioTelephonyProvider:
    """Test dialing, status and hangup against a mocked REST client."""

    @pytest.mark.asyncio
    async def test_dial(self, provider, twilio_client):
        result = await provider.dial("+12025550123", agent_hint="7")

        assert result.provider_call_id == "CA123"
        assert not result.deduplicated
        kwargs = twilio_client.calls.create_async.call_args.kwargs
        assert kwargs["to"] == "+12025550123"
        assert kwargs["from_"] == "+15005550006"
        assert kwargs["url"] == "https://example.test/webhooks/voice/outbound?agent_id=7"
        assert kwargs["status_callback"] == "https://example.test/webhooks/voice/status"

    @pytest.mark.asyncio
    async def test_duplicate_dial_suppressed(self, provider, twilio_client):
        await provider.dial("+12025550123")
        again = await provider.dial("+12025550123")

        assert again.provider_call_id == "CA123"
        assert again.deduplicated
        assert twilio_client.calls.create_async.await_count == 1

    @pytest.mark.asyncio
    async def test_duplicate_allowed_without_prevention(self, provider, twilio_client):
        await provider.dial("+12025550123", prevent_duplicate=False)
        await provider.dial("+12025550123", prevent_duplicate=False)

        assert twilio_client.calls.create_async.await_count == 2

    @pytest.mark.asyncio
    async def test_dial_rejected(self, provider, twilio_client):
        twilio_client.calls.create_async.side_effect = TwilioRestException(
            400, "/Calls", msg="The 'To' number is not a valid phone number.", code=21211
        )

        with pytest.raises(ProviderDialFailure):
            await provider.dial("+12025550123")

    @pytest.mark.asyncio
    async def test_query_status(self, provider, twilio_client):
        assert await provider.query_status("CA123") == ProviderCallStatus.IN_PROGRESS
        twilio_client.calls.assert_called_with("CA123")

    @pytest.mark.asyncio
    async def test_query_unknown_status(self, provider, twilio_client):
        twilio_client.calls.return_value.fetch_async.return_value = Mock(status="on-hold")

        with pytest.raises(ProviderStatusUnknown):
            await provider.query_status("CA123")

    @pytest.mark.asyncio
    async def test_hangup(self, provider, twilio_client):
        await provider.hangup("CA123")

        twilio_client.calls.return_value.update_async.assert_awaited_once_with(status="completed")

    @pytest.mark.asyncio
    async def test_hangup_allows_redial(self, provider, twilio_client):
        twilio_client.calls.create_async.side_effect = [Mock(sid="CA1"), Mock(sid="CA2")]

        first = await provider.dial("+12025550123")
        await provider.hangup(first.provider_call_id)
        second = await provider.dial("+12025550123")

        assert second.provider_call_id == "CA2"
        assert not second.deduplicated

    @pytest.mark.asyncio
    async def test_terminal_status_allows_redial(self, provider, twilio_client):
        twilio_client.calls.create_async.side_effect = [Mock(sid="CA1"), Mock(sid="CA2")]
        twilio_client.calls.return_value.fetch_async.return_value = Mock(status="busy")

        first = await provider.dial("+12025550123")
        assert await provider.query_status(first.provider_call_id) == ProviderCallStatus.BUSY
        second = await provider.dial("+12025550123")

        assert second.provider_call_id == "CA2"

    @pytest.mark.asyncio
    async def test_expired_dials_are_pruned(self, provider, twilio_client):
        await provider.dial("+12025550123")
        key = ("+12025550123", "")
        sid, _ = provider._recent_dials[key]
        provider._recent_dials[key] = (sid, time.monotonic() - 60)

        await provider.dial("+12025550199")

        assert list(provider._recent_dials) == [("+12025550199", "")]


class FakeWebSocket:
    def __init__(self, frames=None, fail_send=False):
        self.sent = []
        self.frames = list(frames or [])
        self.fail_send = fail_send
        self.closed = False

    async def send(self, data):
        if self.fail_send:
            raise ConnectionClosed(None, None)
        self.sent.append(json.loads(data))

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            yield frame

    async def close(self):
        self.closed = True


def conversation():
    return Conversation(conversation_id="local-1", agent_id="agent_abc", signed_url="wss://example.test")


class TestConversationChannel:
    """Test the channel's wire frames."""

    @pytest.mark.asyncio
    async def test_tool_result_frame(self):
        ws = FakeWebSocket()
        channel = ConversationChannel(ws, conversation())

        await channel.send_tool_result("tool-1", ToolResult(success=False, error="Unknown tool: x"))

        assert ws.sent == [
            {
                "type": "client_tool_result",
                "tool_call_id": "tool-1",
                "result": json.dumps({"success": False, "error": "Unknown tool: x"}),
                "is_error": True,
            }
        ]

    @pytest.mark.asyncio
    async def test_initiation_drops_empty_values(self):
        ws = FakeWebSocket()
        channel = ConversationChannel(ws, conversation())

        await channel.send_initiation({"call_id": 5, "counterpart_name": None})

        assert ws.sent[0]["dynamic_variables"] == {"call_id": "5"}

    @pytest.mark.asyncio
    async def test_peer_close_raises_channel_closed(self):
        channel = ConversationChannel(FakeWebSocket(fail_send=True), conversation())

        with pytest.raises(ChannelClosed):
            await channel.send_text("hello")

        assert not channel.is_open

    @pytest.mark.asyncio
    async def test_frames_then_closed(self):
        ws = FakeWebSocket(frames=['{"type": "ping"}'])
        channel = ConversationChannel(ws, conversation())

        frames = [frame async for frame in channel.frames()]

        assert frames == ['{"type": "ping"}']
        assert not channel.is_open
        with pytest.raises(ChannelClosed):
            await channel.send_pong(1)


class TestElevenLabsConversationService:
    """Test REST calls against a mock transport."""

    def make_service(self, handler, api_key="xi-test"):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return ElevenLabsConversationService(
            api_key=api_key, api_url="https://api.example.test", http_client=client
        )

    @pytest.mark.asyncio
    async def test_start_conversation(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"signed_url": "wss://example.test/convai?token=abc"})

        service = self.make_service(handler)
        result = await service.start_conversation("agent_abc", {"call_id": 1})

        assert result.signed_url == "wss://example.test/convai?token=abc"
        assert result.conversation_id.startswith("local-")
        assert requests[0].url.params["agent_id"] == "agent_abc"
        assert requests[0].headers["xi-api-key"] == "xi-test"
        await service.aclose()

    @pytest.mark.asyncio
    async def test_register_tools(self):
        bodies = []

        def handler(request):
            bodies.append((request.method, request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={})

        service = self.make_service(handler)
        await service.register_tools("agent_abc", DEFAULT_TOOLS)

        method, path, body = bodies[0]
        assert (method, path) == ("PATCH", "/v1/convai/agents/agent_abc")
        tools = body["conversation_config"]["agent"]["prompt"]["tools"]
        assert [t["name"] for t in tools] == ["query_store", "create_new_agent"]
        await service.aclose()

    @pytest.mark.asyncio
    async def test_http_error(self):
        service = self.make_service(lambda request: httpx.Response(401, json={"detail": "bad key"}))

        with pytest.raises(ConversationServiceError):
            await service.start_conversation("agent_abc", {})
        await service.aclose()

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        service = self.make_service(lambda request: httpx.Response(200, json={}), api_key="")
        service.api_key = ""

        with pytest.raises(ConversationServiceError):
            await service.register_tools("agent_abc", DEFAULT_TOOLS)
        await service.aclose()
