"""
Payroll Engine - Notification Service

Domain events leave the payroll core through an outbox: services publish
events while they work and dispatch them to a notification sink only after
the owning transaction has committed. CeleryNotificationSink hands events
to a Celery worker, which writes them to its notification log.
"""

import asyncio
import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from payroll_engine.services.interfaces import DomainEvent, NotificationSink

logger = logging.getLogger(__name__)


def to_jsonable(value: Any) -> Any:
    """Convert payload values into JSON-serialisable primitives."""
    if isinstance(value, dict):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


class LoggingNotificationSink:
    """Notification sink that only logs events."""

    def notify(self, event: str, payload: Dict[str, Any]) -> None:
        logger.info(f"Notification {event}: {payload}")


class CeleryNotificationSink:
    """Fire-and-forget delivery through the Celery notification task."""

    def notify(self, event: str, payload: Dict[str, Any]) -> None:
        from payroll_engine.tasks.celery_tasks import deliver_payroll_notification_task

        deliver_payroll_notification_task.delay(event, to_jsonable(payload))


class EventOutbox:
    """
    In-process outbound channel for domain events.

    publish() never blocks; dispatch_pending() drains the queue into the sink
    and is called once the transaction that produced the events committed.
    """

    def __init__(self, sink: Optional[NotificationSink] = None):
        self.sink = sink or LoggingNotificationSink()
        self._queue: "asyncio.Queue[DomainEvent]" = asyncio.Queue()

    def publish(self, event: str, payload: Dict[str, Any]) -> DomainEvent:
        domain_event = DomainEvent(name=event, payload=to_jsonable(payload))
        self._queue.put_nowait(domain_event)
        return domain_event

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def discard_pending(self) -> int:
        """Drop queued events whose transaction did not commit."""
        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            dropped += 1
        return dropped

    async def dispatch_pending(self) -> List[DomainEvent]:
        """Deliver queued events; delivery failures are logged, not raised."""
        delivered: List[DomainEvent] = []
        while not self._queue.empty():
            domain_event = self._queue.get_nowait()
            try:
                self.sink.notify(domain_event.name, domain_event.payload)
                delivered.append(domain_event)
            except Exception as e:
                logger.error(f"Failed to dispatch {domain_event.name}: {e}")
        return delivered
