"""Twilio telephony provider."""
import logging
import time
from typing import Dict, Optional, Tuple
from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.http.async_http_client import AsyncTwilioHttpClient
from twilio.rest import Client

from app.core.config import settings
from app.core.exceptions import ProviderDialFailure, ProviderStatusUnknown
from app.services.telephony.base import DialResult, ProviderCallStatus, TelephonyProvider

logger = logging.getLogger(__name__)


class TwilioTelephonyProvider(TelephonyProvider):
    """Places, inspects and ends calls through the Twilio REST API."""

    def __init__(
        self,
        client: Optional[Client] = None,
        from_number: Optional[str] = None,
        base_url: Optional[str] = None,
        dedup_window_seconds: Optional[float] = None,
    ):
        self.client = client or Client(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            http_client=AsyncTwilioHttpClient(),
        )
        self.from_number = from_number or settings.twilio_phone_number
        self.base_url = (base_url or settings.base_url or "").rstrip("/")
        self.dedup_window_seconds = (
            settings.dial_dedup_window_seconds
            if dedup_window_seconds is None
            else dedup_window_seconds
        )
        # (number, agent_hint) -> (provider call id, monotonic time of dial)
        self._recent_dials: Dict[Tuple[str, str], Tuple[str, float]] = {}

    def _prune_recent_dials(self) -> None:
        now = time.monotonic()
        expired = [
            key for key, (_, dialed_at) in self._recent_dials.items()
            if now - dialed_at > self.dedup_window_seconds
        ]
        for key in expired:
            del self._recent_dials[key]

    def _forget_dial(self, provider_call_id: str) -> None:
        """An ended call no longer suppresses a redial."""
        for key, (sid, _) in list(self._recent_dials.items()):
            if sid == provider_call_id:
                del self._recent_dials[key]

    async def dial(
        self, number: str, agent_hint: Optional[str] = None, prevent_duplicate: bool = True
    ) -> DialResult:
        """
        Place an outbound call.

        With `prevent_duplicate`, a repeat of the same (number, agent) request
        inside the dedup window returns the earlier call instead of dialing
        again, as long as that call has not been hung up or seen ending.
        """
        self._prune_recent_dials()
        key = (number, agent_hint or "")
        if prevent_duplicate and key in self._recent_dials:
            existing, _ = self._recent_dials[key]
            logger.warning(
                f"[TWILIO] Duplicate dial suppressed - To: {number}, CallSid: {existing}"
            )
            return DialResult(provider_call_id=existing, deduplicated=True)

        agent_param = f"?agent_id={agent_hint}" if agent_hint else ""
        logger.info(f"[TWILIO] Dialing {number} from {self.from_number}")
        try:
            call = await self.client.calls.create_async(
                to=number,
                from_=self.from_number,
                url=f"{self.base_url}/webhooks/voice/outbound{agent_param}",
                status_callback=f"{self.base_url}/webhooks/voice/status",
                status_callback_event=["initiated", "ringing", "answered", "completed"],
            )
        except TwilioRestException as e:
            logger.error(f"[TWILIO] Dial rejected - To: {number}, Code: {e.code}, Error: {e.msg}")
            raise ProviderDialFailure(f"Twilio rejected the call: {e.msg}") from e
        except (TwilioException, OSError) as e:
            logger.error(f"[TWILIO] Dial failed - To: {number}, Error: {type(e).__name__}: {e}")
            raise ProviderDialFailure(f"Could not reach Twilio: {e}") from e

        if prevent_duplicate:
            self._recent_dials[key] = (call.sid, time.monotonic())
        logger.info(f"[TWILIO] Call accepted - To: {number}, CallSid: {call.sid}")
        return DialResult(provider_call_id=call.sid)

    async def query_status(self, provider_call_id: str) -> ProviderCallStatus:
        try:
            call = await self.client.calls(provider_call_id).fetch_async()
        except (TwilioException, OSError) as e:
            raise ProviderStatusUnknown(f"Could not fetch call {provider_call_id}: {e}") from e
        status = ProviderCallStatus.parse(call.status)
        if status.is_terminal:
            self._forget_dial(provider_call_id)
        return status

    async def hangup(self, provider_call_id: str) -> None:
        logger.info(f"[TWILIO] Hanging up CallSid: {provider_call_id}")
        self._forget_dial(provider_call_id)
        await self.client.calls(provider_call_id).update_async(status="completed")

    async def aclose(self) -> None:
        """Close the async HTTP session."""
        http_client = self.client.http_client
        if isinstance(http_client, AsyncTwilioHttpClient):
            await http_client.close()
