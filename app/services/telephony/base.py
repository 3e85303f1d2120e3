"""Telephony provider interface."""
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional
from pydantic import BaseModel

from app.core.exceptions import ProviderStatusUnknown
from app.db.models import CallStatus


class ProviderCallStatus(str, Enum):
    """Call statuses reported by the telephony provider."""

    QUEUED = "queued"
    INITIATED = "initiated"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BUSY = "busy"
    FAILED = "failed"
    NO_ANSWER = "no-answer"
    CANCELED = "canceled"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PROVIDER_STATUSES

    @classmethod
    def parse(cls, value: Optional[str]) -> "ProviderCallStatus":
        """Parse a provider status string, raising ProviderStatusUnknown on anything else."""
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            raise ProviderStatusUnknown(f"Unknown provider call status: {value!r}")


TERMINAL_PROVIDER_STATUSES = frozenset(
    {
        ProviderCallStatus.COMPLETED,
        ProviderCallStatus.BUSY,
        ProviderCallStatus.FAILED,
        ProviderCallStatus.NO_ANSWER,
        ProviderCallStatus.CANCELED,
    }
)

_STATUS_MAP = {
    ProviderCallStatus.QUEUED: CallStatus.QUEUED,
    ProviderCallStatus.INITIATED: CallStatus.ACTIVE,
    ProviderCallStatus.RINGING: CallStatus.ACTIVE,
    ProviderCallStatus.IN_PROGRESS: CallStatus.ACTIVE,
    ProviderCallStatus.COMPLETED: CallStatus.COMPLETED,
    ProviderCallStatus.BUSY: CallStatus.ABANDONED,
    ProviderCallStatus.FAILED: CallStatus.ABANDONED,
    ProviderCallStatus.NO_ANSWER: CallStatus.ABANDONED,
    ProviderCallStatus.CANCELED: CallStatus.ABANDONED,
}


def to_call_status(status: ProviderCallStatus) -> str:
    """Map a provider status onto the persisted call status."""
    return _STATUS_MAP[status]


class DialResult(BaseModel):
    """Provider acceptance of a dial request."""

    provider_call_id: str
    deduplicated: bool = False


class TelephonyProvider(ABC):
    """Abstract telephony provider."""

    @abstractmethod
    async def dial(
        self, number: str, agent_hint: Optional[str] = None, prevent_duplicate: bool = True
    ) -> DialResult:
        """Place an outbound call. Raises ProviderDialFailure."""
        pass

    @abstractmethod
    async def query_status(self, provider_call_id: str) -> ProviderCallStatus:
        """Get the current status of a call. Raises ProviderStatusUnknown."""
        pass

    @abstractmethod
    async def hangup(self, provider_call_id: str) -> None:
        """End a call."""
        pass
