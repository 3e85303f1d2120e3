"""Speech-to-text service."""
import io
import logging
import wave
from typing import Optional
from openai import AsyncOpenAI, OpenAIError

from app.core.config import settings
from app.core.exceptions import TranscriptionWindowFailure

logger = logging.getLogger(__name__)


def pcm_to_wav(pcm: bytes, sample_rate: int, channels: int = 1, sample_width: int = 2) -> bytes:
    """Wrap raw 16-bit PCM in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(sample_width)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


class SpeechToTextService:
    """Service for converting speech to text."""

    def __init__(self, client: Optional[AsyncOpenAI] = None, sample_rate: Optional[int] = None):
        self.client = client or AsyncOpenAI(api_key=settings.openai_api_key)
        self.sample_rate = sample_rate or settings.audio_sample_rate

    async def submit(self, audio_data: bytes, call_id: Optional[int] = None) -> str:
        """
        Transcribe one window of raw PCM audio using OpenAI Whisper.

        Args:
            audio_data: 16-bit mono PCM bytes
            call_id: Call the audio belongs to (for logging)

        Returns:
            Transcribed text (may be empty for silence)

        Raises:
            TranscriptionWindowFailure: the service could not transcribe the window
        """
        wav_bytes = pcm_to_wav(audio_data, self.sample_rate)
        try:
            transcript = await self.client.audio.transcriptions.create(
                model=settings.transcription_model,
                file=("audio.wav", wav_bytes, "audio/wav"),
            )
        except OpenAIError as e:
            raise TranscriptionWindowFailure(
                f"Transcription failed: {str(e)}", call_id=call_id
            ) from e
        logger.debug(f"[STT] Window transcribed - call_id: {call_id}, chars: {len(transcript.text)}")
        return transcript.text
