"""
Tracking Channel: Live Location and Fan-out
===========================================

Each order has one TrackingRecord row holding the fixed anchors (restaurant
and customer coordinates) and the latest agent fix with its derived
distance-remaining. Intermediate pings are not stored; each update overwrites
the previous one.

Live observers (customer, restaurant, agent screens) subscribe per order and
receive every status change and location update for that order.

Thread Safety:
--------------
Requests run on worker threads. The registry of orders is guarded by one
short-lived lock; each order's subscriber set has its own lock, so
subscribing to or publishing for one order never contends with another.
Publishing copies the subscriber list under the order lock and then delivers
outside it. Delivery is a non-blocking put into the subscriber's bounded
queue: a full queue drops the event for that subscriber only. A subscriber
that is closed, or that has dropped SUBSCRIBER_MAX_DROPS events in a row, is
evicted, so broadcasts never target stale connections.
"""

import logging
import queue
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import SUBSCRIBER_MAX_DROPS, SUBSCRIBER_QUEUE_SIZE
from ..errors import ForbiddenError, NotFoundError
from ..models import Order, TrackingRecord
from ..repositories import TrackingRepository
from ..state_machine import TrackingPhase
from .geo import haversine_km


logger = logging.getLogger(__name__)


class Subscription:
    """One observer's bounded inbox for an order's events."""

    def __init__(
        self,
        order_id: int,
        subscriber_id: str,
        max_pending: int = SUBSCRIBER_QUEUE_SIZE,
        max_drops: int = SUBSCRIBER_MAX_DROPS,
    ):
        self.order_id = order_id
        self.subscriber_id = subscriber_id
        self.max_drops = max_drops
        self.dropped = 0
        self._queue: "queue.Queue[Dict[str, Any]]" = queue.Queue(maxsize=max_pending)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        self._closed.set()

    def deliver(self, event: Dict[str, Any]) -> bool:
        """Queue an event without blocking. Returns False once the subscriber should be evicted."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self.dropped += 1
            if self.dropped >= self.max_drops:
                logger.info(
                    "Evicting slow subscriber %s on order %s after %d dropped events",
                    self.subscriber_id, self.order_id, self.dropped,
                )
                self.close()
                return False
            return True
        self.dropped = 0
        return True

    def get(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Next event, or None if nothing arrives within timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None


class _OrderSubscribers:
    def __init__(self):
        self.lock = threading.Lock()
        self.members: Dict[str, Subscription] = {}


class TrackingChannel:
    """Per-order subscriber registry with non-blocking broadcast."""

    def __init__(self, max_pending: int = SUBSCRIBER_QUEUE_SIZE, max_drops: int = SUBSCRIBER_MAX_DROPS):
        self.max_pending = max_pending
        self.max_drops = max_drops
        self._orders: Dict[int, _OrderSubscribers] = {}
        self._registry_lock = threading.Lock()

    def _group(self, order_id: int) -> Optional[_OrderSubscribers]:
        with self._registry_lock:
            return self._orders.get(order_id)

    def subscribe(self, order_id: int, subscriber_id: str) -> Subscription:
        """Register an observer. A second subscribe with the same id replaces the first."""
        subscription = Subscription(order_id, subscriber_id, self.max_pending, self.max_drops)
        # Lock order is always registry -> group
        with self._registry_lock:
            group = self._orders.get(order_id)
            if group is None:
                group = _OrderSubscribers()
                self._orders[order_id] = group
            with group.lock:
                previous = group.members.get(subscriber_id)
                group.members[subscriber_id] = subscription
        if previous is not None:
            previous.close()
        logger.debug("Subscriber %s joined order %s", subscriber_id, order_id)
        return subscription

    def unsubscribe(self, order_id: int, subscriber_id: str, subscription: Optional[Subscription] = None) -> bool:
        """
        Remove an observer.

        When ``subscription`` is given, only that exact subscription is removed,
        so a stale connection closing cannot evict its replacement.
        """
        group = self._group(order_id)
        if group is None:
            return False
        with group.lock:
            current = group.members.get(subscriber_id)
            if current is None or (subscription is not None and current is not subscription):
                return False
            del group.members[subscriber_id]
            empty = not group.members
        current.close()
        if empty:
            self._discard_if_empty(order_id, group)
        logger.debug("Subscriber %s left order %s", subscriber_id, order_id)
        return True

    def _discard_if_empty(self, order_id: int, group: _OrderSubscribers) -> None:
        with self._registry_lock:
            with group.lock:
                if not group.members and self._orders.get(order_id) is group:
                    del self._orders[order_id]

    def subscribers(self, order_id: int) -> List[str]:
        group = self._group(order_id)
        if group is None:
            return []
        with group.lock:
            return sorted(group.members)

    def publish(self, order_id: int, event: Dict[str, Any]) -> int:
        """Deliver event to every live subscriber of the order. Returns the number reached."""
        group = self._group(order_id)
        if group is None:
            return 0
        with group.lock:
            targets = list(group.members.values())

        delivered = 0
        stale = []
        for subscription in targets:
            if subscription.deliver(event):
                delivered += 1
            else:
                stale.append(subscription)

        for subscription in stale:
            self.unsubscribe(order_id, subscription.subscriber_id, subscription)
        return delivered


class TrackingService:
    """Durable tracking record operations for one request's session."""

    def __init__(self, db: Session):
        self.db = db
        self.repo = TrackingRepository(db)

    def create_for_order(
        self,
        order: Order,
        restaurant_latitude: float,
        restaurant_longitude: float,
        customer_latitude: float,
        customer_longitude: float,
        now: datetime,
    ) -> TrackingRecord:
        """Seed the record with both anchors. Distance starts as the anchor-to-anchor distance."""
        record = TrackingRecord(
            order_id=order.id,
            restaurant_latitude=restaurant_latitude,
            restaurant_longitude=restaurant_longitude,
            customer_latitude=customer_latitude,
            customer_longitude=customer_longitude,
            distance_remaining=haversine_km(
                restaurant_latitude, restaurant_longitude,
                customer_latitude, customer_longitude,
            ),
            phase=TrackingPhase.AWAITING_AGENT,
            updated_at=now,
        )
        return self.repo.add(record)

    def snapshot(self, order_id: int) -> TrackingRecord:
        record = self.repo.get_for_order(order_id)
        if record is None:
            raise NotFoundError("Tracking not found for order %s" % order_id)
        return record

    def update_agent_location(
        self, order: Order, agent_id: str, latitude: float, longitude: float, now: datetime
    ) -> float:
        """
        Store the agent's latest fix and return the new distance remaining (km).

        Raises:
            ForbiddenError: If agent_id is not the order's assigned agent.
            NotFoundError: If the order has no tracking record.
        """
        if order.delivery_agent_id is None or order.delivery_agent_id != agent_id:
            raise ForbiddenError("Only the assigned delivery agent can report location")

        record = self.snapshot(order.id)
        distance = haversine_km(
            latitude, longitude, record.customer_latitude, record.customer_longitude
        )
        self.repo.update_location(order.id, latitude, longitude, distance, now)
        return distance

    def set_phase(self, order_id: int, phase: TrackingPhase, now: datetime) -> None:
        self.repo.set_phase(order_id, phase, now)
