"""
Notification events emitted by the pipeline.

Delivery (push, retries, device tokens) belongs to the dispatcher behind
this interface; the core only hands over the event.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from pingchat.core import metrics
from pingchat.core.logging import get_logger
from pingchat.core.timeutil import utcnow

logger = get_logger(__name__)

PING_CREATED = "ping_created"
PING_ACCEPTED = "ping_accepted"
PING_DECLINED = "ping_declined"
MESSAGE_SENT = "message_sent"


@dataclass(frozen=True)
class NotificationEvent:
    kind: str
    listing_id: Optional[str]
    actor: str
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)


class NotificationDispatcher:
    """Receives notification-worthy events. Subclasses deliver them."""

    async def emit(self, event: NotificationEvent) -> None:
        raise NotImplementedError


class LoggingDispatcher(NotificationDispatcher):
    """Logs each event and counts it for /metrics."""

    async def emit(self, event: NotificationEvent) -> None:
        metrics.record_event(event.kind)
        logger.info(
            f"Notification event: {event.kind}",
            extra={"extra_data": {
                "event": event.kind,
                "listing_id": event.listing_id,
                "actor": event.actor,
                **event.payload,
            }}
        )


async def dispatch(dispatcher: NotificationDispatcher, event: NotificationEvent) -> None:
    """Emit without letting a dispatcher failure undo the business operation."""
    try:
        await dispatcher.emit(event)
    except Exception:
        logger.warning(
            "Notification dispatch failed",
            exc_info=True,
            extra={"extra_data": {"event": event.kind, "listing_id": event.listing_id}}
        )
