"""In-process notification hub.

User notifications (one per failed or completed user action) and broadcasts
such as "new-call" are fanned out to every subscribed console.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

SUBSCRIBER_QUEUE_SIZE = 100


class NotificationHub:
    """Publish/subscribe fan-out over asyncio queues."""

    def __init__(self, history_size: int = 50):
        self._subscribers: Set[asyncio.Queue] = set()
        self.history_size = history_size
        self.history: List[Dict[str, Any]] = []

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    def publish(self, event: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Send an event to every subscriber. Slow subscribers drop the event."""
        message = {
            "event": event,
            "payload": payload,
            "timestamp": datetime.utcnow().isoformat(),
        }
        self.history.append(message)
        del self.history[: -self.history_size]
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning(f"[NOTIFY] Subscriber queue full, dropping '{event}'")
        return message

    def notify(
        self, title: str, description: str = "", variant: str = "default", call_id: Optional[int] = None
    ) -> Dict[str, Any]:
        """User-facing notification. `variant` is "default" or "destructive"."""
        log = logger.warning if variant == "destructive" else logger.info
        log(f"[NOTIFY] {title}: {description}")
        return self.publish(
            "notification",
            {"title": title, "description": description, "variant": variant, "call_id": call_id},
        )

    def broadcast_new_call(
        self,
        call_id: Optional[int],
        provider_call_id: str,
        caller_number: str,
        agent_id: Optional[int],
    ) -> Dict[str, Any]:
        return self.publish(
            "new-call",
            {
                "callId": call_id,
                "callSid": provider_call_id,
                "callerNumber": caller_number,
                "agentId": agent_id,
            },
        )
