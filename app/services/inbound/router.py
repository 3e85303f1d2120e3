"""Inbound call routing."""
import logging
from typing import Any, Dict, Optional, Tuple
from pydantic import BaseModel

from app.core.config import settings
from app.core.exceptions import PersistenceFailure, WebhookMalformedPayload
from app.db.models import Agent, Call, CallDirection, CallStatus, TranscriptSource
from app.services.notifications import NotificationHub
from app.services.persistence.store import CallStore
from app.services.telephony.base import ProviderCallStatus, to_call_status
from app.services.telephony.twiml import (
    CallDirective,
    ConnectAgent,
    Hangup,
    Say,
    agent_client_name,
)

logger = logging.getLogger(__name__)


def _first(payload: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return str(value)
    return None


class InboundCallEvent(BaseModel):
    """One provider delivery for an inbound call."""

    provider_call_id: str
    from_number: str = ""
    to_number: str = ""
    status: str = ProviderCallStatus.RINGING.value

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "InboundCallEvent":
        """Build from a form or JSON webhook body (Twilio or camelCase keys)."""
        provider_call_id = _first(payload, "CallSid", "callSid", "call_sid")
        if not provider_call_id:
            raise WebhookMalformedPayload("Webhook payload has no call id")
        return cls(
            provider_call_id=provider_call_id,
            from_number=_first(payload, "From", "from", "Caller") or "",
            to_number=_first(payload, "To", "to", "Called") or "",
            status=_first(payload, "CallStatus", "callStatus", "status") or ProviderCallStatus.RINGING.value,
        )


def apology_directive() -> CallDirective:
    """Minimal directive used whenever routing fails."""
    return CallDirective(verbs=[Say(text=settings.apology_message, language=settings.call_language), Hangup()])


class InboundCallRouter:
    """
    Routes one inbound delivery to an AI agent.

    Stateless: repeated deliveries for the same provider call id update the
    existing call record instead of creating a new one.
    """

    def __init__(self, store: CallStore, notifications: NotificationHub):
        self.store = store
        self.notifications = notifications

    async def route(self, event: InboundCallEvent) -> CallDirective:
        try:
            return await self._route(event)
        except Exception as e:
            logger.error(
                f"[INBOUND CALL] Routing failed - CallSid: {event.provider_call_id}, "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            return apology_directive()

    async def _route(self, event: InboundCallEvent) -> CallDirective:
        provider_status = ProviderCallStatus.parse(event.status)
        ongoing = not provider_status.is_terminal
        logger.info(
            f"[INBOUND CALL] CallSid: {event.provider_call_id}, From: {event.from_number}, "
            f"Status: {provider_status.value}"
        )

        call = await self.store.get_call_by_provider_id(event.provider_call_id)
        if call is None:
            agent = await self.store.find_available_ai_agent() if ongoing else None
            agent_id = agent.id if agent else None
            call, created = await self._create_session(event, provider_status, agent)
            if created:
                self.notifications.broadcast_new_call(
                    call.id, event.provider_call_id, event.from_number, agent_id
                )
                return self._directive(agent_id if ongoing else None)
            # A concurrent delivery created the session first
            logger.info(f"[INBOUND CALL] Lost create race for CallSid: {event.provider_call_id}")

        agent_id = call.ai_agent_id
        if agent_id is None and ongoing:
            agent = await self.store.find_available_ai_agent()
            if agent is not None:
                agent_id = agent.id
                await self.store.assign_agents(call.id, ai_agent_id=agent_id)
        status = self._session_status(provider_status, agent_id)
        await self.store.update_call_status(call.id, status)
        logger.info(
            f"[INBOUND CALL] Updated existing call_id: {call.id} -> {status} (agent: {agent_id})"
        )
        return self._directive(agent_id if ongoing else None)

    def _session_status(self, provider_status: ProviderCallStatus, agent_id: Optional[int]) -> str:
        # The directive hangs up when nobody can take the call
        if not provider_status.is_terminal and agent_id is None:
            return CallStatus.ABANDONED
        return to_call_status(provider_status)

    async def _create_session(
        self, event: InboundCallEvent, provider_status: ProviderCallStatus, agent: Optional[Agent]
    ) -> Tuple[Call, bool]:
        counterpart_name = await self._lookup_contact_name(event.from_number)
        status = self._session_status(provider_status, agent.id if agent else None)
        call, created = await self.store.get_or_create_call(
            event.from_number,
            direction=CallDirection.INBOUND,
            provider_call_id=event.provider_call_id,
            status=status,
            counterpart_name=counterpart_name,
            ai_agent_id=agent.id if agent else None,
        )
        if not created:
            return call, False
        await self.store.append_transcript_entry(
            call.id, settings.ai_greeting_message, TranscriptSource.AI
        )
        logger.info(
            f"[INBOUND CALL] Created call_id: {call.id} ({status}), "
            f"agent: {agent.id if agent else None}, contact: {counterpart_name}"
        )
        return call, True

    async def _lookup_contact_name(self, phone: str) -> Optional[str]:
        if not phone:
            return None
        try:
            contact = await self.store.find_contact_by_phone(phone)
        except PersistenceFailure as e:
            logger.warning(f"[INBOUND CALL] Contact lookup failed for {phone}: {e.message}")
            return None
        return contact.name if contact else None

    def _directive(self, agent_id: Optional[int]) -> CallDirective:
        language = settings.call_language
        verbs = [Say(text=settings.greeting_message, language=language)]
        if agent_id is not None:
            verbs.append(Say(text=settings.connecting_message, language=language))
            verbs.append(
                ConnectAgent(
                    client=agent_client_name(agent_id),
                    timeout=settings.agent_dial_timeout_seconds,
                )
            )
        else:
            verbs.append(Say(text=settings.unavailable_message, language=language))
        verbs.append(Say(text=settings.farewell_message, language=language))
        verbs.append(Hangup())
        return CallDirective(verbs=verbs)
