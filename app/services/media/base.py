"""Audio device interface."""
from abc import ABC, abstractmethod
from pydantic import BaseModel


class AudioConstraints(BaseModel):
    """Capture options requested from the device."""

    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True
    sample_rate: int = 16000
    channels: int = 1


class AudioStream(ABC):
    """An open capture stream of 16-bit PCM audio."""

    @abstractmethod
    async def read(self, seconds: float) -> bytes:
        """Return the audio captured over the next `seconds`."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop all tracks of the stream."""
        pass


class AudioProcessingContext(ABC):
    """Processing resources bound to an open stream."""

    @abstractmethod
    async def close(self) -> None:
        """Release processing resources."""
        pass


class AudioDevice(ABC):
    """A capture device that can be opened for one call at a time."""

    @abstractmethod
    async def open(self, constraints: AudioConstraints) -> AudioStream:
        """Open a capture stream. Raises PermissionDenied if access is refused."""
        pass

    @abstractmethod
    async def create_context(self, stream: AudioStream) -> AudioProcessingContext:
        """Create the processing context for an open stream."""
        pass
