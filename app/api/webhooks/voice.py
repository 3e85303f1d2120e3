"""Twilio voice webhook endpoints."""
import json
import logging
from typing import Any, Dict, Optional
from fastapi import APIRouter, Request, Depends, Query
from fastapi.responses import Response

from app.core.config import settings
from app.core.dependencies import get_inbound_router, get_store
from app.core.exceptions import (
    PersistenceFailure,
    ProviderStatusUnknown,
    WebhookMalformedPayload,
)
from app.db.models import CallStatus
from app.services.inbound.router import InboundCallEvent, InboundCallRouter, apology_directive
from app.services.persistence.store import CallStore
from app.services.telephony.base import ProviderCallStatus, to_call_status
from app.services.telephony.twiml import (
    CallDirective,
    ConnectAgent,
    Say,
    agent_client_name,
    empty_twiml,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def twiml_response(twiml: str) -> Response:
    return Response(content=twiml, media_type="application/xml")


async def read_payload(request: Request) -> Dict[str, Any]:
    """
    Read a webhook body as a dict.

    Twilio posts form-encoded bodies; other callers may post JSON.
    """
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            payload = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise WebhookMalformedPayload(f"Invalid JSON body: {e}") from e
        if not isinstance(payload, dict):
            raise WebhookMalformedPayload("JSON body must be an object")
        return payload
    form = await request.form()
    return dict(form)


@router.post("/voice/incoming")
async def handle_incoming_call(
    request: Request,
    inbound_router: InboundCallRouter = Depends(get_inbound_router),
):
    """
    Handle incoming call from Twilio.

    Always answers with TwiML; routing failures get a short apology and a hangup.
    """
    client_host = request.client.host if request.client else "unknown"
    try:
        payload = await read_payload(request)
        event = InboundCallEvent.from_payload(payload)
    except WebhookMalformedPayload as e:
        logger.warning(f"[INCOMING CALL] Malformed webhook from {client_host}: {e.message}")
        return twiml_response(apology_directive().to_twiml())

    logger.info(
        f"[INCOMING CALL] Received incoming call webhook - CallSid: {event.provider_call_id}, "
        f"From: {event.from_number}, Client: {client_host}"
    )
    directive = await inbound_router.route(event)
    twiml = directive.to_twiml()
    logger.info(
        f"[INCOMING CALL] Responding - CallSid: {event.provider_call_id}, "
        f"connects_agent: {directive.connects_agent}, TwiML length: {len(twiml)} bytes"
    )
    return twiml_response(twiml)


@router.post("/voice/status")
async def handle_call_status(
    request: Request,
    store: CallStore = Depends(get_store),
):
    """
    Handle call status updates from Twilio.

    Always acknowledged so Twilio does not retry.
    """
    try:
        payload = await read_payload(request)
    except WebhookMalformedPayload as e:
        logger.warning(f"[CALL STATUS] Malformed status callback: {e.message}")
        return twiml_response(empty_twiml())

    call_sid = payload.get("CallSid")
    raw_status = payload.get("CallStatus")
    logger.info(f"[CALL STATUS] Received status update - CallSid: {call_sid}, CallStatus: {raw_status}")
    if not call_sid:
        return twiml_response(empty_twiml())

    try:
        status = ProviderCallStatus.parse(raw_status)
        call = await store.get_call_by_provider_id(call_sid)
        if call is None:
            logger.warning(f"[CALL STATUS] No call recorded for CallSid: {call_sid}")
            return twiml_response(empty_twiml())

        if status.is_terminal:
            await store.update_call_status(
                call.id, to_call_status(status), duration=_parse_duration(payload.get("CallDuration"))
            )
            logger.info(f"[CALL STATUS] call_id: {call.id} ended ({status.value})")
        elif status == ProviderCallStatus.IN_PROGRESS and call.status not in CallStatus.TERMINAL:
            await store.update_call_status(call.id, CallStatus.ACTIVE)
        else:
            logger.debug(f"[CALL STATUS] No action needed - CallSid: {call_sid}, CallStatus: {status.value}")
    except (ProviderStatusUnknown, PersistenceFailure) as e:
        logger.error(
            f"[CALL STATUS] Error handling call status update - CallSid: {call_sid}, "
            f"CallStatus: {raw_status}, Error: {e.message}"
        )

    return twiml_response(empty_twiml())


def _parse_duration(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@router.post("/voice/outbound")
async def handle_outbound_answer(agent_id: Optional[str] = Query(None)):
    """TwiML fetched by Twilio when an outbound leg is answered."""
    client = agent_client_name(agent_id) if agent_id else settings.operator_client_name
    directive = CallDirective(
        verbs=[
            Say(text=settings.connecting_message, language=settings.call_language),
            ConnectAgent(client=client, timeout=settings.agent_dial_timeout_seconds),
        ]
    )
    return twiml_response(directive.to_twiml())
