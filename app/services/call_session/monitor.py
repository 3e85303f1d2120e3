"""Provider call-status monitor."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from app.core.config import settings
from app.core.exceptions import PersistenceFailure, ProviderStatusUnknown
from app.services.persistence.store import CallStore
from app.services.telephony.base import ProviderCallStatus, TelephonyProvider, to_call_status

logger = logging.getLogger(__name__)

TerminalCallback = Callable[[ProviderCallStatus], Awaitable[None]]


class StatusMonitor:
    """
    Polls the provider for one call's status on a fixed interval.

    When the provider reports a terminal status the monitor persists it,
    invokes `on_terminal` and stops itself.
    """

    def __init__(
        self,
        telephony: TelephonyProvider,
        store: CallStore,
        on_terminal: TerminalCallback,
        interval_seconds: Optional[float] = None,
    ):
        self.telephony = telephony
        self.store = store
        self.on_terminal = on_terminal
        self.interval_seconds = interval_seconds or settings.status_poll_interval_seconds
        self.provider_call_id: Optional[str] = None
        self.session_id: Optional[int] = None
        self.last_status: Optional[ProviderCallStatus] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, provider_call_id: str, session_id: int) -> None:
        if self.running:
            raise RuntimeError(f"Status monitor already running for call {self.session_id}")
        self.provider_call_id = provider_call_id
        self.session_id = session_id
        logger.info(
            f"[STATUS MONITOR] Starting - CallSid: {provider_call_id}, call_id: {session_id}, "
            f"interval: {self.interval_seconds}s"
        )
        self._task = asyncio.create_task(self._run(), name=f"status-monitor-{session_id}")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            if await self.tick():
                return

    async def tick(self) -> bool:
        """Poll once. Returns True when the call reached a terminal status."""
        try:
            status = await self.telephony.query_status(self.provider_call_id)
        except ProviderStatusUnknown as e:
            logger.warning(
                f"[STATUS MONITOR] Status unknown, will re-check - CallSid: {self.provider_call_id}, "
                f"Error: {e.message}"
            )
            return False
        except Exception as e:
            logger.error(
                f"[STATUS MONITOR] Error polling status - CallSid: {self.provider_call_id}, "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            return False

        if status != self.last_status:
            logger.info(f"[STATUS MONITOR] CallSid: {self.provider_call_id} is {status.value}")
        self.last_status = status
        if not status.is_terminal:
            return False

        try:
            await self.store.mark_call_ended(self.session_id, to_call_status(status))
        except PersistenceFailure as e:
            logger.error(
                f"[STATUS MONITOR] Could not persist terminal status - call_id: {self.session_id}, "
                f"Error: {e.message}"
            )

        await self.on_terminal(status)
        return True

    async def stop(self) -> None:
        """Cancel polling. Safe to call from inside the terminal callback."""
        task, self._task = self._task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info(f"[STATUS MONITOR] Stopped - CallSid: {self.provider_call_id}")
