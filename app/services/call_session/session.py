"""Per-call session object."""
from datetime import datetime
from enum import Enum
from typing import Optional

from app.services.call_session.monitor import StatusMonitor
from app.services.media.manager import MicrophoneSession
from app.services.transcription.pipeline import TranscriptionPipeline


class CallState(str, Enum):
    """Controller states."""

    IDLE = "idle"
    REQUESTING_PERMISSIONS = "requesting_permissions"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ENDED = "ended"


class ActiveCall:
    """Everything owned by one connected call. Created and torn down by the controller."""

    def __init__(
        self,
        call_id: int,
        provider_call_id: str,
        counterpart_number: str,
        microphone: MicrophoneSession,
        agent_hint: Optional[str] = None,
    ):
        self.call_id = call_id  # Database ID
        self.provider_call_id = provider_call_id
        self.counterpart_number = counterpart_number
        self.microphone = microphone
        self.agent_hint = agent_hint
        self.started_at = datetime.utcnow()
        self.monitor: Optional[StatusMonitor] = None
        self.pipeline: Optional[TranscriptionPipeline] = None
        self.bridge = None
        self.ending = False
