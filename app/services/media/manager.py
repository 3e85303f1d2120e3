"""Microphone permission and media manager."""
import logging
from typing import Optional

from app.core.exceptions import MediaBusy, PermissionDenied
from app.services.media.base import (
    AudioConstraints,
    AudioDevice,
    AudioProcessingContext,
    AudioStream,
)

logger = logging.getLogger(__name__)


class MicrophoneSession:
    """A stream handle plus its audio-processing context."""

    def __init__(self, stream: AudioStream, context: AudioProcessingContext):
        self.stream = stream
        self.context = context
        self.released = False


class MediaManager:
    """Acquires and releases the microphone for one call at a time."""

    def __init__(self, device: AudioDevice, constraints: Optional[AudioConstraints] = None):
        self.device = device
        self.constraints = constraints or AudioConstraints()
        self._session: Optional[MicrophoneSession] = None

    @property
    def session(self) -> Optional[MicrophoneSession]:
        return self._session

    async def acquire(self) -> MicrophoneSession:
        """
        Request microphone access with echo cancellation, noise suppression
        and auto gain enabled.

        Raises:
            PermissionDenied: access was refused; nothing was opened.
            MediaBusy: a session is already held.
        """
        if self._session is not None:
            raise MediaBusy("Microphone is already in use by another call")

        logger.info(
            f"[MEDIA] Requesting microphone - echo_cancellation={self.constraints.echo_cancellation}, "
            f"noise_suppression={self.constraints.noise_suppression}, "
            f"auto_gain_control={self.constraints.auto_gain_control}"
        )
        try:
            stream = await self.device.open(self.constraints)
        except PermissionDenied:
            logger.warning("[MEDIA] Microphone permission denied")
            raise

        try:
            context = await self.device.create_context(stream)
        except Exception:
            stream.stop()
            raise

        self._session = MicrophoneSession(stream, context)
        logger.info("[MEDIA] Microphone acquired")
        return self._session

    async def release(self) -> None:
        """Stop all tracks and close the processing context. Idempotent."""
        session = self._session
        if session is None or session.released:
            return
        session.released = True
        self._session = None

        try:
            session.stream.stop()
        except Exception as e:
            logger.error(f"[MEDIA] Error stopping stream: {type(e).__name__}: {e}")
        try:
            await session.context.close()
        except Exception as e:
            logger.error(f"[MEDIA] Error closing audio context: {type(e).__name__}: {e}")
        logger.info("[MEDIA] Microphone released")
