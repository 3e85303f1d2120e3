"""Error taxonomy for the call core."""
from typing import Optional


class CallCenterError(Exception):
    """Base class for all call-core errors."""

    def __init__(self, message: str, call_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.call_id = call_id


class PermissionDenied(CallCenterError):
    """Microphone access was refused."""


class MediaBusy(CallCenterError):
    """A microphone session is already held by another call."""


class InvalidCallState(CallCenterError):
    """An operation was requested in a state that does not allow it."""


class ProviderDialFailure(CallCenterError):
    """The telephony provider rejected or failed the dial request."""


class ProviderStatusUnknown(CallCenterError):
    """The provider's call status could not be determined."""


class TranscriptionWindowFailure(CallCenterError):
    """One transcription window could not be transcribed. Non-fatal."""


class ToolExecutionFailure(CallCenterError):
    """An agent tool call failed. Reported back to the AI service."""


class ChannelClosed(CallCenterError):
    """The duplex channel to the conversational-AI service is not open."""


class ConversationServiceError(CallCenterError):
    """The conversational-AI service returned an error."""


class PersistenceFailure(CallCenterError):
    """A store operation failed."""


class WebhookMalformedPayload(CallCenterError):
    """A provider webhook body is missing required fields."""
