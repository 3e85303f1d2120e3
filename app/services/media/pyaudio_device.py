"""PortAudio capture device (optional `audio` extra)."""
import asyncio
import logging

from app.core.exceptions import PermissionDenied
from app.services.media.base import (
    AudioConstraints,
    AudioDevice,
    AudioProcessingContext,
    AudioStream,
)

logger = logging.getLogger(__name__)

FRAMES_PER_BUFFER = 1024
BYTES_PER_SAMPLE = 2  # paInt16


class PyAudioStream(AudioStream):
    """Callback-mode input stream feeding an asyncio queue."""

    def __init__(self, audio, constraints: AudioConstraints, loop: asyncio.AbstractEventLoop):
        import pyaudio

        self.constraints = constraints
        self._queue: asyncio.Queue = asyncio.Queue()
        self._pending = b""
        self._loop = loop
        self._stream = audio.open(
            format=pyaudio.paInt16,
            channels=constraints.channels,
            rate=constraints.sample_rate,
            input=True,
            frames_per_buffer=FRAMES_PER_BUFFER,
            stream_callback=self._on_audio,
        )
        self._continue = pyaudio.paContinue

    def _on_audio(self, in_data, frame_count, time_info, status):
        # Runs on PortAudio's callback thread
        self._loop.call_soon_threadsafe(self._queue.put_nowait, in_data)
        return (None, self._continue)

    async def read(self, seconds: float) -> bytes:
        wanted = int(
            seconds * self.constraints.sample_rate * self.constraints.channels * BYTES_PER_SAMPLE
        )
        data = self._pending
        while len(data) < wanted:
            data += await self._queue.get()
        self._pending = data[wanted:]
        return data[:wanted]

    def stop(self) -> None:
        if self._stream.is_active():
            self._stream.stop_stream()
        self._stream.close()


class PyAudioContext(AudioProcessingContext):
    """Owns the PortAudio instance for one stream."""

    def __init__(self, audio):
        self._audio = audio

    async def close(self) -> None:
        self._audio.terminate()


class PyAudioDevice(AudioDevice):
    """Default input device via PortAudio."""

    def __init__(self):
        self._audio = None

    async def open(self, constraints: AudioConstraints) -> AudioStream:
        import pyaudio

        # PortAudio has no echo cancellation, noise suppression or AGC; the
        # constraints are honoured by the OS audio stack when it provides them.
        self._audio = pyaudio.PyAudio()
        try:
            return PyAudioStream(self._audio, constraints, asyncio.get_running_loop())
        except OSError as e:
            self._audio.terminate()
            self._audio = None
            raise PermissionDenied(f"Microphone access denied: {e}") from e

    async def create_context(self, stream: AudioStream) -> AudioProcessingContext:
        audio, self._audio = self._audio, None
        return PyAudioContext(audio)
