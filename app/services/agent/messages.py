"""Duplex channel messages and the effects they produce.

Inbound frames are decoded once into one of the message variants below.
`plan_effects` maps each variant to a list of effect descriptions, which the
bridge then applies.
"""
import base64
import json
import logging
from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel

logger = logging.getLogger(__name__)


# Inbound variants

class AgentResponse(BaseModel):
    text: str


class Audio(BaseModel):
    data: bytes
    event_id: Optional[int] = None


class ToolCall(BaseModel):
    name: str
    arguments: Dict[str, Any] = {}
    tool_call_id: str


class ConversationStarted(BaseModel):
    conversation_id: str


class Ping(BaseModel):
    event_id: Optional[int] = None


class Ignored(BaseModel):
    message_type: str


InboundMessage = Union[AgentResponse, Audio, ToolCall, ConversationStarted, Ping, Ignored]


# Effects

class AppendTranscript(BaseModel):
    text: str
    source: str


class SendToolResult(BaseModel):
    """Run the tool call and send its result back keyed by the tool call id."""

    call: ToolCall


class ForwardAudio(BaseModel):
    data: bytes


class SendPong(BaseModel):
    event_id: Optional[int] = None


class SetConversationId(BaseModel):
    conversation_id: str


Effect = Union[AppendTranscript, SendToolResult, ForwardAudio, SendPong, SetConversationId]


class ToolResult(BaseModel):
    """Structured result returned to the AI service for every tool call."""

    success: bool
    data: Any = None
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        return {"success": False, "error": self.error}


def decode_message(raw: Union[str, bytes, Dict[str, Any]]) -> InboundMessage:
    """Decode one inbound frame. Malformed frames decode to `Ignored`."""
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("[AGENT CHANNEL] Invalid JSON frame")
            return Ignored(message_type="invalid_json")
    else:
        data = raw
    if not isinstance(data, dict):
        return Ignored(message_type="invalid_frame")

    msg_type = data.get("type", "")
    try:
        if msg_type == "agent_response":
            event = data.get("agent_response_event") or {}
            return AgentResponse(text=event.get("agent_response") or event.get("text") or "")

        if msg_type == "audio":
            event = data.get("audio_event") or {}
            return Audio(
                data=base64.b64decode(event.get("audio_base_64", ""), validate=True),
                event_id=event.get("event_id"),
            )

        if msg_type == "client_tool_call":
            event = data.get("client_tool_call") or {}
            return ToolCall(
                name=event.get("tool_name", ""),
                arguments=event.get("parameters") or {},
                tool_call_id=str(event.get("tool_call_id", "")),
            )

        if msg_type == "conversation_initiation_metadata":
            event = data.get("conversation_initiation_metadata_event") or {}
            return ConversationStarted(conversation_id=event.get("conversation_id", ""))

        if msg_type == "ping":
            event = data.get("ping_event") or {}
            return Ping(event_id=event.get("event_id"))
    except (ValueError, TypeError) as e:
        logger.warning(f"[AGENT CHANNEL] Malformed '{msg_type}' frame: {e}")
        return Ignored(message_type=msg_type or "malformed")

    return Ignored(message_type=msg_type or "unknown")


def plan_effects(message: InboundMessage) -> List[Effect]:
    """Describe what the bridge must do for one inbound message."""
    if isinstance(message, AgentResponse):
        if not message.text.strip():
            return []
        return [AppendTranscript(text=message.text, source="ai")]
    if isinstance(message, ToolCall):
        return [SendToolResult(call=message)]
    if isinstance(message, Audio):
        return [ForwardAudio(data=message.data)] if message.data else []
    if isinstance(message, ConversationStarted):
        return [SetConversationId(conversation_id=message.conversation_id)] if message.conversation_id else []
    if isinstance(message, Ping):
        return [SendPong(event_id=message.event_id)]
    return []
