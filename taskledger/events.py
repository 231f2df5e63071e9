"""Fire-and-forget lifecycle events for external collaborators."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List

from .models.task import utcnow

logger = logging.getLogger(__name__)

TASK_EVALUATED = "task.evaluated"
TASK_PAID = "task.paid"
TASK_COMPLETED = "task.completed"
TASK_CANCELLED = "task.cancelled"
TASK_REJECTED = "task.rejected"
PAYMENT_CAPTURED = "payment.captured"
PAYOUT_ISSUED = "payout.issued"
PAYMENT_REFUNDED = "payment.refunded"


@dataclass
class LifecycleEvent:
    """Something that happened, already committed."""

    name: str
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)


Handler = Callable[[LifecycleEvent], None]


class EventDispatcher:
    """Delivers committed events to subscribers.

    A failing handler is logged and skipped; it never reaches the caller
    whose transition produced the event.
    """

    def __init__(self):
        self._handlers: List[Handler] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: Handler) -> None:
        with self._lock:
            self._handlers.append(handler)

    def unsubscribe(self, handler: Handler) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def publish(self, event: LifecycleEvent) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler %r failed on %s", handler, event.name)
