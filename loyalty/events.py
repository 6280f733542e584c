import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field

from .models import BookingStatus, WithdrawalStatus

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    BOOKING_CREATED = "booking.created"
    BOOKING_STATUS_CHANGED = "booking.status_changed"
    WITHDRAWAL_CREATED = "withdrawal.created"
    WITHDRAWAL_STATUS_CHANGED = "withdrawal.status_changed"


class LoyaltyEvent(BaseModel):
    type: EventType
    record_id: UUID
    partner_id: UUID
    status: Union[BookingStatus, WithdrawalStatus]
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


EventHandler = Callable[[LoyaltyEvent], None]


def log_event(event: LoyaltyEvent) -> None:
    logger.info(
        "%s: record=%s partner=%s status=%s",
        event.type.value, event.record_id, event.partner_id, event.status.value,
    )


class EventBus:
    """Best-effort fan-out to notification and realtime collaborators.

    Handlers run in subscription order. A handler that raises is logged and
    skipped; publishing never fails the operation that produced the event.
    """

    def __init__(self, handlers: Optional[list[EventHandler]] = None):
        self.handlers: list[EventHandler] = list(handlers) if handlers is not None else [log_event]

    def subscribe(self, handler: EventHandler) -> None:
        self.handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self.handlers:
            self.handlers.remove(handler)

    def publish(self, event: LoyaltyEvent) -> list[dict]:
        results = []
        for handler in self.handlers:
            name = getattr(handler, "__name__", type(handler).__name__)
            try:
                handler(event)
                results.append({"handler": name, "success": True})
            except Exception as e:
                logger.exception("Event handler %s failed for %s", name, event.type.value)
                results.append({"handler": name, "success": False, "error": str(e)})
        return results
