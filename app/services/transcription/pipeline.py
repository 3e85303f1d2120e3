"""Live transcription pipeline for one call."""
import asyncio
import logging
from datetime import datetime
from typing import List, Optional, Protocol

from app.core.config import settings
from app.core.exceptions import PersistenceFailure, TranscriptionWindowFailure
from app.db.models import TranscriptEntry, TranscriptSource
from app.services.media.base import AudioStream
from app.services.persistence.store import CallStore

logger = logging.getLogger(__name__)


class Transcriber(Protocol):
    async def submit(self, audio_data: bytes, call_id: Optional[int] = None) -> str:
        ...


class TranscriptionPipeline:
    """
    Captures audio in fixed windows and periodically transcribes the buffer.

    Transcription is best-effort: a window that fails is dropped and the
    pipeline moves on to the next one.
    """

    def __init__(
        self,
        call_id: int,
        transcriber: Transcriber,
        store: CallStore,
        capture_window_seconds: Optional[float] = None,
        flush_interval_seconds: Optional[float] = None,
    ):
        self.call_id = call_id
        self.transcriber = transcriber
        self.store = store
        self.capture_window_seconds = capture_window_seconds or settings.capture_window_seconds
        self.flush_interval_seconds = (
            flush_interval_seconds or settings.transcription_flush_interval_seconds
        )
        self.entries: List[TranscriptEntry] = []
        self.failed_windows = 0
        self._buffer: List[bytes] = []
        self._flush_lock = asyncio.Lock()
        self._capture_task: Optional[asyncio.Task] = None
        self._flush_task: Optional[asyncio.Task] = None
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._capture_task is not None and not self._stopped

    @property
    def buffered_bytes(self) -> int:
        return sum(len(chunk) for chunk in self._buffer)

    def start(self, stream: AudioStream) -> None:
        """Begin capturing from `stream` and flushing on a fixed cadence."""
        if self._capture_task is not None:
            return
        logger.info(
            f"[TRANSCRIPTION] Starting - call_id: {self.call_id}, "
            f"window: {self.capture_window_seconds}s, flush: {self.flush_interval_seconds}s"
        )
        self._capture_task = asyncio.create_task(
            self._capture_loop(stream), name=f"transcription-capture-{self.call_id}"
        )
        self._flush_task = asyncio.create_task(
            self._flush_loop(), name=f"transcription-flush-{self.call_id}"
        )

    async def _capture_loop(self, stream: AudioStream) -> None:
        while True:
            chunk = await stream.read(self.capture_window_seconds)
            if chunk:
                self._buffer.append(chunk)

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval_seconds)
            try:
                # Shielded so cancelling the loop never abandons a window mid-submit
                await asyncio.shield(self.flush())
            except Exception as e:
                logger.error(
                    f"[TRANSCRIPTION] Flush error - call_id: {self.call_id}, "
                    f"Error: {type(e).__name__}: {str(e)}",
                    exc_info=True,
                )

    async def flush(self) -> Optional[TranscriptEntry]:
        """Transcribe buffered audio and append the result to the transcript."""
        async with self._flush_lock:
            if not self._buffer:
                return None
            audio = b"".join(self._buffer)
            self._buffer.clear()

            try:
                text = await self.transcriber.submit(audio, self.call_id)
            except TranscriptionWindowFailure as e:
                self.failed_windows += 1
                logger.warning(
                    f"[TRANSCRIPTION] Window dropped - call_id: {self.call_id}, "
                    f"bytes: {len(audio)}, Error: {e.message}"
                )
                return None

            text = (text or "").strip()
            if not text:
                return None

            try:
                entry = await self.store.append_transcript_entry(
                    self.call_id, text, TranscriptSource.HUMAN, timestamp=datetime.utcnow()
                )
            except PersistenceFailure as e:
                self.failed_windows += 1
                logger.error(
                    f"[TRANSCRIPTION] Could not persist entry - call_id: {self.call_id}, Error: {e.message}"
                )
                return None

            self.entries.append(entry)
            logger.debug(f"[TRANSCRIPTION] Entry appended - call_id: {self.call_id}, id: {entry.id}")
            return entry

    async def stop(self) -> None:
        """Stop capturing, cancel the periodic flush and flush what is left. Idempotent."""
        if self._stopped:
            return
        self._stopped = True

        for task in (self._capture_task, self._flush_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(
                    f"[TRANSCRIPTION] {task.get_name()} had failed - call_id: {self.call_id}, "
                    f"Error: {type(e).__name__}: {str(e)}"
                )

        await self.flush()
        logger.info(
            f"[TRANSCRIPTION] Stopped - call_id: {self.call_id}, entries: {len(self.entries)}, "
            f"dropped windows: {self.failed_windows}"
        )
