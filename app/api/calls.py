"""Console call API endpoints."""
import logging
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.core.dependencies import get_console, get_store
from app.core.exceptions import (
    ChannelClosed,
    ConversationServiceError,
    InvalidCallState,
    MediaBusy,
    PermissionDenied,
    PersistenceFailure,
    ProviderDialFailure,
)
from app.db.models import CallStatus
from app.services.call_session.console import CallConsole
from app.services.persistence.store import CallStore

router = APIRouter()
logger = logging.getLogger(__name__)

PHONE_NUMBER_PATTERN = r"^\+\d{8,15}$"


class StartCallRequest(BaseModel):
    """Outbound call request."""
    phone_number: str = Field(..., pattern=PHONE_NUMBER_PATTERN)
    agent_id: Optional[str] = None
    transcribe: bool = False


class AttachAgentRequest(BaseModel):
    agent_id: str = Field(..., min_length=1)


class AgentMessageRequest(BaseModel):
    text: str = Field(..., min_length=1)


class TranscriptEntryResponse(BaseModel):
    """Transcript entry response model."""
    id: int
    text: str
    source: str
    timestamp: datetime

    class Config:
        from_attributes = True


class CallResponse(BaseModel):
    """Call response model."""
    id: int
    provider_call_id: str | None = None
    direction: str
    counterpart_number: str
    counterpart_name: str | None = None
    status: str
    start_time: datetime
    end_time: datetime | None = None
    duration: int | None = None
    ai_agent_id: int | None = None
    human_agent_id: int | None = None

    class Config:
        from_attributes = True


class CallDetailResponse(CallResponse):
    """Call with its ordered transcript."""
    transcript: List[TranscriptEntryResponse] = []


class ConsoleStateResponse(BaseModel):
    state: str
    call_id: int | None = None
    provider_call_id: str | None = None


@router.post("/api/calls", response_model=ConsoleStateResponse)
async def start_call(
    request: StartCallRequest,
    console: CallConsole = Depends(get_console),
):
    """Place an outbound call from the console."""
    logger.info(f"[CALLS API] Start call requested - To: {request.phone_number}, agent: {request.agent_id}")
    try:
        await console.start_call(
            request.phone_number, agent_hint=request.agent_id, transcribe=request.transcribe
        )
    except InvalidCallState as e:
        raise HTTPException(status_code=409, detail=e.message)
    except (PermissionDenied, MediaBusy) as e:
        raise HTTPException(status_code=403, detail=e.message)
    except ProviderDialFailure as e:
        raise HTTPException(status_code=502, detail=e.message)
    except PersistenceFailure as e:
        raise HTTPException(status_code=500, detail=e.message)
    return console.status()


@router.post("/api/calls/current/terminate", response_model=ConsoleStateResponse)
async def terminate_current_call(console: CallConsole = Depends(get_console)):
    """Hang up the console's current call."""
    terminated = await console.terminate_current()
    if not terminated:
        raise HTTPException(status_code=409, detail="No call in progress")
    return console.status()


@router.get("/api/calls/current", response_model=ConsoleStateResponse)
async def get_current_call(console: CallConsole = Depends(get_console)):
    return console.status()


@router.get("/api/calls/active", response_model=List[CallResponse])
async def list_active_calls(
    limit: int = 100,
    store: CallStore = Depends(get_store),
):
    """Calls that are active or queued, newest first."""
    try:
        return await store.list_calls([CallStatus.ACTIVE, CallStatus.QUEUED], limit=limit)
    except PersistenceFailure as e:
        raise HTTPException(status_code=500, detail=e.message)


@router.get("/api/calls/{call_id}", response_model=CallDetailResponse)
async def get_call(call_id: int, store: CallStore = Depends(get_store)):
    """Get one call with its transcript."""
    call = await store.get_call(call_id, with_transcript=True)
    if call is None:
        raise HTTPException(status_code=404, detail="Call not found")
    return call


@router.post("/api/calls/{call_id}/agent")
async def attach_agent(
    call_id: int,
    request: AttachAgentRequest,
    console: CallConsole = Depends(get_console),
):
    """Attach an AI agent conversation to a call."""
    try:
        bridge = await console.attach_agent(call_id, request.agent_id)
    except InvalidCallState as e:
        raise HTTPException(status_code=404, detail=e.message)
    except (ConversationServiceError, ChannelClosed) as e:
        raise HTTPException(status_code=502, detail=e.message)
    return {
        "call_id": call_id,
        "agent_id": request.agent_id,
        "conversation_id": bridge.conversation_id,
        "open": bridge.is_open,
    }


@router.post("/api/calls/{call_id}/agent/messages")
async def send_agent_message(
    call_id: int,
    request: AgentMessageRequest,
    console: CallConsole = Depends(get_console),
):
    """Send operator text to the call's AI agent."""
    try:
        await console.send_agent_message(call_id, request.text)
    except ChannelClosed as e:
        raise HTTPException(status_code=409, detail=e.message)
    except PersistenceFailure as e:
        raise HTTPException(status_code=500, detail=e.message)
    return {"status": "sent"}


@router.delete("/api/calls/{call_id}/agent")
async def detach_agent(call_id: int, console: CallConsole = Depends(get_console)):
    """Close the call's AI agent conversation."""
    if not await console.detach_agent(call_id):
        raise HTTPException(status_code=404, detail="No agent attached to this call")
    return {"status": "closed"}
