"""ElevenLabs Conversational AI client.

REST calls go through httpx; the duplex conversation channel is a websocket.
"""
import base64
import json
import logging
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional
import httpx
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException
from pydantic import BaseModel

from app.core.config import settings
from app.core.exceptions import ChannelClosed, ConversationServiceError
from app.services.agent.messages import ToolResult
from app.services.agent.tools import AgentTool

logger = logging.getLogger(__name__)


class Conversation(BaseModel):
    """A conversation context opened for one agent."""

    conversation_id: str
    agent_id: str
    signed_url: str
    metadata: Dict[str, Any] = {}


class ConversationChannel:
    """Duplex websocket to a running conversation."""

    def __init__(self, websocket, conversation: Conversation):
        self._ws = websocket
        self.conversation = conversation
        self._closed = False

    @property
    def is_open(self) -> bool:
        return not self._closed

    async def _send(self, payload: Dict[str, Any]) -> None:
        if self._closed:
            raise ChannelClosed("Conversation channel is closed")
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as e:
            self._closed = True
            raise ChannelClosed(f"Conversation channel closed by peer: {e}") from e

    async def send_initiation(self, dynamic_variables: Dict[str, Any]) -> None:
        await self._send(
            {
                "type": "conversation_initiation_client_data",
                "dynamic_variables": {k: str(v) for k, v in dynamic_variables.items() if v is not None},
            }
        )

    async def send_text(self, text: str) -> None:
        await self._send({"type": "user_message", "text": text})

    async def send_audio(self, audio: bytes) -> None:
        await self._send({"user_audio_chunk": base64.b64encode(audio).decode("utf-8")})

    async def send_contextual_update(self, text: str) -> None:
        await self._send({"type": "contextual_update", "text": text})

    async def send_tool_result(self, tool_call_id: str, result: ToolResult) -> None:
        await self._send(
            {
                "type": "client_tool_result",
                "tool_call_id": tool_call_id,
                "result": json.dumps(result.to_payload(), default=str),
                "is_error": not result.success,
            }
        )

    async def send_pong(self, event_id: Optional[int]) -> None:
        await self._send({"type": "pong", "event_id": event_id})

    async def frames(self) -> AsyncIterator[str]:
        """Yield raw inbound frames until the channel closes."""
        try:
            async for frame in self._ws:
                yield frame
        except ConnectionClosed as e:
            logger.info(f"[ELEVENLABS] Channel closed by peer: {e}")
        finally:
            self._closed = True

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._ws.close()
        except WebSocketException as e:
            logger.debug(f"[ELEVENLABS] Error closing channel: {e}")


class ElevenLabsConversationService:
    """Conversational-AI service backed by ElevenLabs."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key or settings.elevenlabs_api_key
        self.api_url = (api_url or settings.elevenlabs_api_url).rstrip("/")
        self.http_client = http_client or httpx.AsyncClient(timeout=10.0)

    @property
    def _headers(self) -> Dict[str, str]:
        return {"xi-api-key": self.api_key, "Accept": "application/json"}

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        if not self.api_key:
            raise ConversationServiceError("ElevenLabs API key not configured")
        try:
            response = await self.http_client.request(
                method, f"{self.api_url}{path}", headers=self._headers, **kwargs
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"[ELEVENLABS] {method} {path} failed: {e.response.status_code} - {e.response.text}"
            )
            raise ConversationServiceError(
                f"ElevenLabs returned {e.response.status_code} for {path}"
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"[ELEVENLABS] {method} {path} failed: {type(e).__name__}: {e}")
            raise ConversationServiceError(f"Could not reach ElevenLabs: {e}") from e
        return response.json() if response.content else {}

    async def register_tools(self, agent_id: str, tools: List[AgentTool]) -> None:
        """Declare client tools on the agent's configuration."""
        tool_specs = [
            {
                "type": "client",
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters,
                "expects_response": True,
            }
            for tool in tools
        ]
        await self._request(
            "PATCH",
            f"/v1/convai/agents/{agent_id}",
            json={"conversation_config": {"agent": {"prompt": {"tools": tool_specs}}}},
        )
        logger.info(f"[ELEVENLABS] Registered tools {[t.name for t in tools]} on agent {agent_id}")

    async def start_conversation(self, agent_id: str, metadata: Dict[str, Any]) -> Conversation:
        """
        Open a conversation context for `agent_id`.

        The service assigns the final conversation id once the channel opens;
        until then a local id is used.
        """
        data = await self._request(
            "GET",
            "/v1/convai/conversation/get_signed_url",
            params={"agent_id": agent_id},
        )
        signed_url = data.get("signed_url")
        if not signed_url:
            raise ConversationServiceError("No signed_url in ElevenLabs response")
        return Conversation(
            conversation_id=f"local-{uuid.uuid4().hex}",
            agent_id=agent_id,
            signed_url=signed_url,
            metadata=metadata,
        )

    async def open_channel(self, conversation: Conversation) -> ConversationChannel:
        """Connect the duplex channel and send the conversation metadata."""
        try:
            websocket = await websockets.connect(
                conversation.signed_url,
                max_size=16 * 1024 * 1024,
                ping_interval=20,
                ping_timeout=20,
                close_timeout=5,
            )
        except (OSError, WebSocketException) as e:
            raise ConversationServiceError(f"Could not open conversation channel: {e}") from e

        channel = ConversationChannel(websocket, conversation)
        await channel.send_initiation(conversation.metadata)
        logger.info(f"[ELEVENLABS] Channel open for agent {conversation.agent_id}")
        return channel

    async def aclose(self) -> None:
        await self.http_client.aclose()
