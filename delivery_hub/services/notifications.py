"""
Lifecycle Events and Notification Dispatch
==========================================

Every successful mutation of an order ends by emitting a LifecycleEvent. Two
consumers see it:

1. The tracking channel, which pushes it to the order's live subscribers.
2. The notification provider (push/SMS/email), which is out of scope here and
   defaults to a logging stand-in, the same mock mode the SMS and email
   services fall back to when no credentials are configured.

Delivery to the provider happens on a small thread pool. The coordinator only
submits the event and returns, so a slow or failing provider never delays or
fails an order mutation. Provider errors are logged and dropped.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Protocol, Set

from ..config import NOTIFICATION_WORKERS
from ..models import utc_now


logger = logging.getLogger(__name__)


# Event types
ORDER_CREATED = "order.created"
ORDER_STATUS_CHANGED = "order.status_changed"
ORDER_ASSIGNED = "order.assigned"
ORDER_PAYMENT_UPDATED = "order.payment_updated"
LOCATION_UPDATED = "tracking.location_updated"


@dataclass(frozen=True)
class LifecycleEvent:
    type: str
    order_id: int
    order_number: str
    status: str
    customer_id: str
    restaurant_id: int
    delivery_agent_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "order_id": self.order_id,
            "order_number": self.order_number,
            "status": self.status,
            "customer_id": self.customer_id,
            "restaurant_id": self.restaurant_id,
            "delivery_agent_id": self.delivery_agent_id,
            "data": dict(self.data),
            "occurred_at": self.occurred_at.isoformat(),
        }


class NotificationProvider(Protocol):
    def send(self, event: LifecycleEvent) -> None:
        ...


class LoggingNotifier:
    """Mock provider: logs what would have been sent."""

    def send(self, event: LifecycleEvent) -> None:
        logger.info(
            "[MOCK NOTIFICATION] %s order=%s status=%s customer=%s agent=%s",
            event.type,
            event.order_number,
            event.status,
            event.customer_id,
            event.delivery_agent_id,
        )


class NotificationDispatcher:
    """Fire-and-forget delivery of lifecycle events to a provider."""

    def __init__(
        self,
        provider: Optional[NotificationProvider] = None,
        max_workers: int = NOTIFICATION_WORKERS,
    ):
        self.provider = provider or LoggingNotifier()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="notify"
        )
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def emit(self, event: LifecycleEvent) -> None:
        future = self._executor.submit(self.provider.send, event)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._on_done)

    def _on_done(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        exc = future.exception()
        if exc is not None:
            logger.error("Notification delivery failed: %s", exc)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for events submitted so far. Used at shutdown and in tests."""
        with self._lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
