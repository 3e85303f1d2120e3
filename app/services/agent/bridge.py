"""Bridge between a call and a conversational-AI agent."""
import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from app.core.exceptions import ChannelClosed, PersistenceFailure
from app.db.models import CallStatus, TranscriptSource
from app.services.agent.elevenlabs import Conversation, ConversationChannel
from app.services.agent.messages import (
    AppendTranscript,
    Effect,
    ForwardAudio,
    InboundMessage,
    SendPong,
    SendToolResult,
    SetConversationId,
    decode_message,
    plan_effects,
)
from app.services.agent.tools import DEFAULT_TOOLS, AgentTool, ToolExecutor
from app.services.persistence.store import CallStore

logger = logging.getLogger(__name__)

MessageCallback = Callable[[InboundMessage], Any]
AudioSink = Callable[[bytes], Any]


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value


class AgentConversationBridge:
    """
    Owns the duplex channel to one AI agent for one call.

    Inbound frames are decoded, turned into effects by `plan_effects` and
    applied here. A failing message or tool call is logged and the channel
    keeps running.
    """

    def __init__(
        self,
        service,
        store: CallStore,
        call_id: int,
        tool_executor: Optional[ToolExecutor] = None,
        audio_sink: Optional[AudioSink] = None,
        registered_tools: Optional[Set[Tuple[str, Tuple[str, ...]]]] = None,
    ):
        self.service = service
        self.store = store
        self.call_id = call_id
        self.tool_executor = tool_executor or ToolExecutor(store)
        self.audio_sink = audio_sink
        # Shared across bridges so registration happens once per agent and tool set
        self.registered_tools = registered_tools if registered_tools is not None else set()
        self.agent_id: Optional[str] = None
        self.conversation: Optional[Conversation] = None
        self.conversation_id: Optional[str] = None
        self.channel: Optional[ConversationChannel] = None
        self.receive_task: Optional[asyncio.Task] = None
        self._on_message: Optional[MessageCallback] = None
        self._closed = False

    @property
    def is_open(self) -> bool:
        return not self._closed and self.channel is not None and self.channel.is_open

    async def register_tools(self, agent_id: str, tools: Optional[List[AgentTool]] = None) -> bool:
        """Declare tools on the agent. Returns False when already registered."""
        tools = tools if tools is not None else DEFAULT_TOOLS
        key = (agent_id, tuple(sorted(tool.name for tool in tools)))
        if key in self.registered_tools:
            logger.debug(f"[AGENT BRIDGE] Tools already registered for agent {agent_id}")
            return False
        await self.service.register_tools(agent_id, tools)
        self.registered_tools.add(key)
        return True

    async def start_conversation(self, agent_id: str, metadata: Dict[str, Any]) -> str:
        self.agent_id = agent_id
        self.conversation = await self.service.start_conversation(agent_id, metadata)
        self.conversation_id = self.conversation.conversation_id
        logger.info(
            f"[AGENT BRIDGE] Conversation started - call_id: {self.call_id}, "
            f"agent: {agent_id}, conversation: {self.conversation_id}"
        )
        return self.conversation_id

    async def open_channel(
        self, agent_id: str, on_message: Optional[MessageCallback] = None
    ) -> ConversationChannel:
        """Open the duplex channel and start receiving."""
        if self._closed:
            raise ChannelClosed("Bridge is closed", call_id=self.call_id)
        if self.is_open:
            return self.channel
        if self.conversation is None or self.agent_id != agent_id:
            await self.start_conversation(agent_id, {"call_id": self.call_id})

        self.channel = await self.service.open_channel(self.conversation)
        self._on_message = on_message
        self.receive_task = asyncio.create_task(
            self._receive_loop(), name=f"agent-bridge-{self.call_id}"
        )
        logger.info(f"[AGENT BRIDGE] Channel open - call_id: {self.call_id}, agent: {agent_id}")
        return self.channel

    async def _receive_loop(self) -> None:
        async for frame in self.channel.frames():
            await self.handle_frame(frame)
        logger.info(f"[AGENT BRIDGE] Channel ended - call_id: {self.call_id}")

    async def handle_frame(self, frame: Any) -> List[Effect]:
        """Decode one inbound frame and apply its effects. Never raises."""
        message = decode_message(frame)
        if self._on_message is not None:
            try:
                await _maybe_await(self._on_message(message))
            except Exception as e:
                logger.error(
                    f"[AGENT BRIDGE] on_message callback failed: {type(e).__name__}: {str(e)}",
                    exc_info=True,
                )

        effects = plan_effects(message)
        for effect in effects:
            try:
                await self._apply(effect)
            except Exception as e:
                logger.error(
                    f"[AGENT BRIDGE] Failed to apply {type(effect).__name__} - call_id: {self.call_id}, "
                    f"Error: {type(e).__name__}: {str(e)}",
                    exc_info=True,
                )
        return effects

    async def _apply(self, effect: Effect) -> None:
        if isinstance(effect, AppendTranscript):
            await self.store.append_transcript_entry(self.call_id, effect.text, effect.source)
        elif isinstance(effect, SendToolResult):
            result = await self.tool_executor.execute(effect.call)
            await self.channel.send_tool_result(effect.call.tool_call_id, result)
        elif isinstance(effect, ForwardAudio):
            if self.audio_sink is not None:
                await _maybe_await(self.audio_sink(effect.data))
        elif isinstance(effect, SendPong):
            await self.channel.send_pong(effect.event_id)
        elif isinstance(effect, SetConversationId):
            self.conversation_id = effect.conversation_id
            logger.info(
                f"[AGENT BRIDGE] Conversation id assigned - call_id: {self.call_id}, "
                f"conversation: {effect.conversation_id}"
            )

    def _require_open(self) -> ConversationChannel:
        if not self.is_open:
            raise ChannelClosed("Agent channel is not open", call_id=self.call_id)
        return self.channel

    async def send_text(self, text: str) -> None:
        """Send operator text and record it as a human transcript entry."""
        channel = self._require_open()
        await channel.send_text(text)
        await self.store.append_transcript_entry(self.call_id, text, TranscriptSource.HUMAN)

    async def send_audio(self, audio: bytes) -> None:
        await self._require_open().send_audio(audio)

    async def send_contextual_update(self, text: str) -> None:
        await self._require_open().send_contextual_update(text)

    async def close(self, mark_ended: bool = True) -> None:
        """Close the channel, stop receiving and mark the call completed. Idempotent."""
        if self._closed:
            return
        self._closed = True

        if self.channel is not None:
            await self.channel.close()

        task, self.receive_task = self.receive_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if not mark_ended:
            logger.info(f"[AGENT BRIDGE] Closed - call_id: {self.call_id}")
            return
        try:
            await self.store.mark_call_ended(self.call_id, CallStatus.COMPLETED)
        except PersistenceFailure as e:
            logger.error(
                f"[AGENT BRIDGE] Could not mark call ended - call_id: {self.call_id}, Error: {e.message}"
            )
        logger.info(f"[AGENT BRIDGE] Closed - call_id: {self.call_id}")
