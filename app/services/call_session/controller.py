"""Outbound call session controller."""
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Tuple

from app.core.config import settings
from app.core.exceptions import (
    InvalidCallState,
    MediaBusy,
    PermissionDenied,
    PersistenceFailure,
    ProviderDialFailure,
)
from app.db.models import CallDirection, CallStatus, TranscriptSource
from app.services.call_session.monitor import StatusMonitor
from app.services.call_session.session import ActiveCall, CallState
from app.services.media.manager import MediaManager
from app.services.notifications import NotificationHub
from app.services.persistence.store import CallStore
from app.services.telephony.base import ProviderCallStatus, TelephonyProvider
from app.services.transcription.pipeline import Transcriber, TranscriptionPipeline

logger = logging.getLogger(__name__)


class CallSessionController:
    """
    Drives one outbound call through
    idle -> requesting_permissions -> connecting -> connected -> ended.

    The controller owns the call's session object (microphone, status monitor,
    transcription pipeline and agent bridge) and tears all of it down when the
    call ends, whether the operator hung up or the provider reported a
    terminal status.
    """

    def __init__(
        self,
        media: MediaManager,
        telephony: TelephonyProvider,
        store: CallStore,
        notifications: NotificationHub,
        transcriber: Optional[Transcriber] = None,
        poll_interval_seconds: Optional[float] = None,
        flush_interval_seconds: Optional[float] = None,
        capture_window_seconds: Optional[float] = None,
    ):
        self.media = media
        self.telephony = telephony
        self.store = store
        self.notifications = notifications
        self.transcriber = transcriber
        self.poll_interval_seconds = poll_interval_seconds or settings.status_poll_interval_seconds
        self.flush_interval_seconds = flush_interval_seconds
        self.capture_window_seconds = capture_window_seconds
        self.state = CallState.IDLE
        self.transitions: List[Tuple[CallState, CallState]] = []
        self.session: Optional[ActiveCall] = None
        self.last_call_id: Optional[int] = None
        self._abort_requested = False
        # Awaited with the call id after a session is torn down
        self.on_session_ended: Optional[Callable[[int], Awaitable[None]]] = None

    @property
    def call_id(self) -> Optional[int]:
        return self.session.call_id if self.session else self.last_call_id

    def _transition(self, new_state: CallState) -> None:
        old_state = self.state
        self.state = new_state
        self.transitions.append((old_state, new_state))
        logger.info(f"[CONTROLLER] {old_state.value} -> {new_state.value} (call_id: {self.call_id})")

    def _fail(self, title: str, error: Exception) -> None:
        """Abort back to idle and tell the operator once."""
        if self.state != CallState.IDLE:
            self._transition(CallState.IDLE)
        self._abort_requested = False
        self.notifications.notify(title, str(error), variant="destructive", call_id=self.call_id)

    async def initiate(
        self, number: str, agent_hint: Optional[str] = None, transcribe: bool = False
    ) -> ActiveCall:
        """
        Place an outbound call to `number`.

        Raises:
            InvalidCallState: a call is already in progress, or the operator
                terminated during setup (the leg was hung up and closed).
            PermissionDenied, MediaBusy: the microphone could not be acquired; no dial.
            ProviderDialFailure: the provider rejected the call or returned one that
                already ended; no live call record exists.
            PersistenceFailure: the call record could not be written; the leg was hung up.

        Any other error from the device or the provider propagates after the
        controller has released media and returned to idle.
        """
        if self.state != CallState.IDLE:
            error = InvalidCallState(f"Cannot start a call while {self.state.value}", call_id=self.call_id)
            logger.warning(f"[CONTROLLER] Duplicate call attempt rejected: {error.message}")
            self.notifications.notify("Call already in progress", error.message, variant="destructive")
            raise error

        self._transition(CallState.REQUESTING_PERMISSIONS)
        try:
            microphone = await self.media.acquire()
        except (PermissionDenied, MediaBusy) as e:
            self._fail("Microphone unavailable", e)
            raise
        except Exception as e:
            logger.error(
                f"[CONTROLLER] Microphone could not be opened: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            await self._release_media()
            self._fail("Microphone unavailable", e)
            raise

        if self._abort_requested:
            await self._abort()

        self._transition(CallState.CONNECTING)
        try:
            result = await self.telephony.dial(number, agent_hint, prevent_duplicate=True)
        except ProviderDialFailure as e:
            await self._release_media()
            self._fail("Call failed", e)
            raise
        except Exception as e:
            logger.error(
                f"[CONTROLLER] Dial raised unexpectedly - To: {number}, Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            await self._release_media()
            self._fail("Call failed", e)
            raise

        provider_call_id = result.provider_call_id
        if result.deduplicated:
            logger.info(f"[CONTROLLER] Dial deduplicated by provider - CallSid: {provider_call_id}")
        if self._abort_requested:
            await self._abort(provider_call_id)

        try:
            call, created = await self.store.get_or_create_call(
                number,
                direction=CallDirection.OUTBOUND,
                provider_call_id=provider_call_id,
                status=CallStatus.ACTIVE,
            )
        except PersistenceFailure as e:
            logger.error(f"[CONTROLLER] Could not record call - CallSid: {provider_call_id}")
            await self._hangup(provider_call_id)
            await self._release_media()
            self._fail("Call could not be recorded", e)
            raise

        if not created and call.status in CallStatus.TERMINAL:
            # The provider handed back a call that has already ended
            error = ProviderDialFailure(
                f"Provider returned call {provider_call_id}, which has already ended",
                call_id=call.id,
            )
            logger.error(f"[CONTROLLER] {error.message}")
            await self._release_media()
            self._fail("Call failed", error)
            raise error

        try:
            await self.store.append_transcript_entry(
                call.id,
                f"Outbound call to {number} started",
                TranscriptSource.SYSTEM,
                timestamp=datetime.utcnow(),
            )
        except PersistenceFailure as e:
            await self._hangup(provider_call_id)
            await self._mark_ended(call.id, CallStatus.ABANDONED)
            await self._release_media()
            self._fail("Call could not be recorded", e)
            raise

        if self._abort_requested:
            await self._abort(provider_call_id, call.id)

        session = ActiveCall(call.id, provider_call_id, number, microphone, agent_hint=agent_hint)
        self.session = session
        self.last_call_id = call.id
        self._transition(CallState.CONNECTED)

        session.monitor = StatusMonitor(
            self.telephony,
            self.store,
            self._on_terminal_status,
            interval_seconds=self.poll_interval_seconds,
        )
        session.monitor.start(provider_call_id, call.id)

        if transcribe and self.transcriber is not None:
            session.pipeline = TranscriptionPipeline(
                call.id,
                self.transcriber,
                self.store,
                capture_window_seconds=self.capture_window_seconds,
                flush_interval_seconds=self.flush_interval_seconds,
            )
            session.pipeline.start(microphone.stream)

        self.notifications.notify("Call connected", f"Calling {number}", call_id=call.id)
        return session

    async def _abort(self, provider_call_id: Optional[str] = None, call_id: Optional[int] = None) -> None:
        """Operator terminated while the call was still being set up."""
        logger.info(f"[CONTROLLER] Aborting call setup during {self.state.value} (call_id: {call_id})")
        if provider_call_id:
            await self._hangup(provider_call_id)
        if call_id is not None:
            self.last_call_id = call_id
            await self._mark_ended(call_id, CallStatus.COMPLETED)
        await self._release_media()
        self._abort_requested = False
        self._transition(CallState.ENDED)
        error = InvalidCallState("Call was terminated during setup", call_id=call_id)
        self.notifications.notify("Call cancelled", error.message, call_id=call_id)
        raise error

    async def terminate(self) -> bool:
        """
        Hang up the current call and tear down its session.

        Returns False when there was nothing to terminate; a second call is a no-op.
        """
        if self.state in (CallState.REQUESTING_PERMISSIONS, CallState.CONNECTING):
            self._abort_requested = True
            return True

        session = self.session
        if session is None or session.ending:
            logger.info(f"[CONTROLLER] Terminate ignored in state {self.state.value}")
            return False
        session.ending = True

        logger.info(f"[CONTROLLER] Terminating call_id: {session.call_id}")
        if session.provider_call_id:
            await self._hangup(session.provider_call_id)

        try:
            await self.store.mark_call_ended(session.call_id, CallStatus.COMPLETED)
        except PersistenceFailure as e:
            self.notifications.notify(
                "Call status not saved", e.message, variant="destructive", call_id=session.call_id
            )
            await self._teardown(session)
            return True

        await self._teardown(session)
        self.notifications.notify("Call ended", call_id=session.call_id)
        return True

    async def _on_terminal_status(self, status: ProviderCallStatus) -> None:
        session = self.session
        if session is None or session.ending:
            return
        session.ending = True
        logger.info(f"[CONTROLLER] Provider ended call_id: {session.call_id} ({status.value})")
        await self._teardown(session)
        self.notifications.notify("Call ended", f"Call {status.value}", call_id=session.call_id)

    async def _teardown(self, session: ActiveCall) -> None:
        """monitor -> pipeline -> bridge -> media. Every step runs."""
        steps = []
        if session.monitor is not None:
            steps.append(("status monitor", session.monitor.stop))
        if session.pipeline is not None:
            steps.append(("transcription pipeline", session.pipeline.stop))
        if session.bridge is not None:
            steps.append(("agent bridge", session.bridge.close))
        steps.append(("media", self.media.release))

        for name, step in steps:
            try:
                await step()
            except Exception as e:
                logger.error(
                    f"[CONTROLLER] Teardown of {name} failed - call_id: {session.call_id}, "
                    f"Error: {type(e).__name__}: {str(e)}",
                    exc_info=True,
                )

        self.session = None
        self._transition(CallState.ENDED)

        if self.on_session_ended is not None:
            try:
                await self.on_session_ended(session.call_id)
            except Exception as e:
                logger.error(
                    f"[CONTROLLER] Session-ended callback failed - call_id: {session.call_id}, "
                    f"Error: {type(e).__name__}: {str(e)}",
                    exc_info=True,
                )

    async def _hangup(self, provider_call_id: str) -> None:
        try:
            await self.telephony.hangup(provider_call_id)
        except Exception as e:
            logger.error(
                f"[CONTROLLER] Hangup failed - CallSid: {provider_call_id}, "
                f"Error: {type(e).__name__}: {str(e)}"
            )

    async def _mark_ended(self, call_id: int, status: str) -> None:
        try:
            await self.store.mark_call_ended(call_id, status)
        except PersistenceFailure as e:
            logger.error(f"[CONTROLLER] Could not close call_id: {call_id}, Error: {e.message}")

    async def _release_media(self) -> None:
        try:
            await self.media.release()
        except Exception as e:
            logger.error(f"[CONTROLLER] Media release failed: {type(e).__name__}: {str(e)}")
