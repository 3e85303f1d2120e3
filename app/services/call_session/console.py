"""Operator console: the current outbound call and attached agent bridges."""
import logging
from typing import Any, Callable, Dict, Optional, Set, Tuple

from app.core.exceptions import ChannelClosed, ConversationServiceError, InvalidCallState
from app.services.agent.bridge import AgentConversationBridge
from app.services.call_session.controller import CallSessionController
from app.services.call_session.session import ActiveCall, CallState
from app.services.notifications import NotificationHub
from app.services.persistence.store import CallStore

logger = logging.getLogger(__name__)


class CallConsole:
    """
    Holds at most one live call controller plus the agent bridges opened
    for calls, addressed by call id.
    """

    def __init__(
        self,
        store: CallStore,
        notifications: NotificationHub,
        controller_factory: Callable[[], CallSessionController],
        conversation_service=None,
    ):
        self.store = store
        self.notifications = notifications
        self.controller_factory = controller_factory
        self.conversation_service = conversation_service
        self.controller: Optional[CallSessionController] = None
        self.bridges: Dict[int, AgentConversationBridge] = {}
        self._registered_tools: Set[Tuple[str, Tuple[str, ...]]] = set()

    def status(self) -> Dict[str, Any]:
        if self.controller is None:
            return {"state": CallState.IDLE.value, "call_id": None, "provider_call_id": None}
        session = self.controller.session
        return {
            "state": self.controller.state.value,
            "call_id": self.controller.call_id,
            "provider_call_id": session.provider_call_id if session else None,
        }

    async def start_call(
        self, number: str, agent_hint: Optional[str] = None, transcribe: bool = False
    ) -> ActiveCall:
        if self.controller is None or self.controller.state == CallState.ENDED:
            self.controller = self.controller_factory()
            self.controller.on_session_ended = self._forget_bridge
        return await self.controller.initiate(number, agent_hint=agent_hint, transcribe=transcribe)

    async def terminate_current(self) -> bool:
        if self.controller is None:
            return False
        return await self.controller.terminate()

    async def _forget_bridge(self, call_id: int) -> None:
        """Drop the bridge of a call whose session was torn down."""
        bridge = self.bridges.pop(call_id, None)
        if bridge is not None and bridge.is_open:
            await bridge.close()

    async def attach_agent(self, call_id: int, agent_id: str) -> AgentConversationBridge:
        """Register tools, start a conversation and open the channel for `call_id`."""
        bridge = self.bridges.get(call_id)
        if bridge is not None and bridge.is_open:
            return bridge
        if self.conversation_service is None:
            raise ConversationServiceError("Conversational AI is not configured", call_id=call_id)

        call = await self.store.get_call(call_id)
        if call is None:
            raise InvalidCallState(f"Call {call_id} not found", call_id=call_id)

        bridge = AgentConversationBridge(
            self.conversation_service,
            self.store,
            call_id,
            registered_tools=self._registered_tools,
        )
        try:
            await bridge.register_tools(agent_id)
            await bridge.start_conversation(
                agent_id,
                {
                    "call_id": call_id,
                    "counterpart_number": call.counterpart_number,
                    "source": call.direction,
                },
            )
            await bridge.open_channel(agent_id)
            await bridge.send_contextual_update(
                f"You are assisting on a {call.direction} call with {call.counterpart_number}."
            )
        except (ConversationServiceError, ChannelClosed) as e:
            logger.error(f"[CONSOLE] Could not attach agent {agent_id} to call {call_id}: {e.message}")
            self.notifications.notify("Agent unavailable", e.message, variant="destructive", call_id=call_id)
            await bridge.close(mark_ended=False)
            raise

        self.bridges[call_id] = bridge
        if self.controller is not None and self.controller.session is not None:
            if self.controller.session.call_id == call_id:
                self.controller.session.bridge = bridge
        return bridge

    async def send_agent_message(self, call_id: int, text: str) -> None:
        bridge = self.bridges.get(call_id)
        if bridge is None:
            raise ChannelClosed(f"No agent attached to call {call_id}", call_id=call_id)
        await bridge.send_text(text)

    async def detach_agent(self, call_id: int) -> bool:
        bridge = self.bridges.pop(call_id, None)
        if bridge is None:
            return False
        await bridge.close()
        return True

    async def shutdown(self) -> None:
        if self.controller is not None:
            await self.controller.terminate()
        for call_id in list(self.bridges):
            await self.detach_agent(call_id)
