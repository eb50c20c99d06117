"""
Lifecycle Coordinator
=====================

The only entry point the HTTP layer calls. It composes the order store, the
dispatch pool, the tracking service and channel, the pricing/ETA estimator and
the notification dispatcher.

Every mutation follows the same shape:

1. Validate (raises a DeliveryError, nothing written).
2. Write through the repositories inside the request's session.
3. Commit once. Any exception before or during the commit rolls the whole
   session back and is re-raised.
4. After the commit, publish a LifecycleEvent to the order's live
   subscribers and hand it to the notification dispatcher. Neither can fail
   or delay the mutation.

ETA Policy:
-----------
One policy is used at creation and on every refresh:

- distance: the tracking record's distance_remaining, else the distance
  between the anchors, else DEFAULT_DISTANCE_KM
- prep: the longest frozen prep time among the lines, counted only while the
  food is still at the restaurant (before picked_up)
- eta = now + prep + distance / AVERAGE_SPEED_KMPH, rounded up to the minute

Refreshes happen on entry to confirmed, preparing and picked_up. If the
estimator raises EstimationFailure the transition still commits with the
previous estimate, and a warning is logged.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..config import (
    DEFAULT_CUSTOMER_LATITUDE,
    DEFAULT_CUSTOMER_LONGITUDE,
    DEFAULT_DISTANCE_KM,
    DEFAULT_PREP_MINUTES,
    DEFAULT_RESTAURANT_LATITUDE,
    DEFAULT_RESTAURANT_LONGITUDE,
    DELIVERY_SPEED_KMPH,
    TAX_RATE,
)
from ..errors import (
    AddressNotFoundError,
    AddressNotOwnedError,
    EmptyCartError,
    EstimationFailure,
    ForbiddenError,
    InvalidCartError,
    InvalidTransitionError,
    LocationUnavailableError,
    NotFoundError,
    RestaurantNotFoundError,
)
from ..models import Order, TrackingRecord, utc_now
from ..repositories import OrderRepository
from ..state_machine import (
    ETA_REFRESH_STATUSES,
    IN_TRANSIT_STATUSES,
    PHASE_ON_ENTRY,
    ActorRole,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    TrackingPhase,
    is_terminal,
)
from .collaborators import (
    CartProvider,
    CatalogProvider,
    DirectoryProvider,
    PaymentRecorder,
)
from .dispatch import DispatchPool
from .geo import haversine_km
from .notifications import (
    LOCATION_UPDATED,
    ORDER_ASSIGNED,
    ORDER_CREATED,
    ORDER_PAYMENT_UPDATED,
    ORDER_STATUS_CHANGED,
    LifecycleEvent,
    NotificationDispatcher,
)
from .orders import OrderStore, is_party
from .pricing import EtaEstimator, arrival_minutes, max_prep_minutes, quote_order
from .tracking import TrackingChannel, TrackingService


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArrivalEstimate:
    order_id: int
    distance_km: float
    estimated_minutes: int
    estimated_arrival: datetime


@dataclass(frozen=True)
class DeliveryStatus:
    order: Order
    tracking: Optional[TrackingRecord]


class LifecycleCoordinator:
    """Orchestrates order creation, transitions, dispatch and tracking for one session."""

    def __init__(
        self,
        db: Session,
        channel: TrackingChannel,
        notifier: NotificationDispatcher,
        estimator: Optional[EtaEstimator] = None,
        clock: Optional[Callable[[], datetime]] = None,
        tax_rate: Decimal = TAX_RATE,
    ):
        self.db = db
        self.channel = channel
        self.notifier = notifier
        self.clock = clock or utc_now
        self.estimator = estimator or EtaEstimator(clock=self.clock)
        self.tax_rate = tax_rate

        self.orders = OrderStore(db)
        self.order_repo = OrderRepository(db)
        self.pool = DispatchPool(db)
        self.tracking = TrackingService(db)
        self.carts = CartProvider(db)
        self.catalog = CatalogProvider(db)
        self.directory = DirectoryProvider(db)
        self.payments = PaymentRecorder(db)

    # =========================================================================
    # Order creation
    # =========================================================================

    def create_order(
        self,
        customer_id: str,
        restaurant_id: int,
        delivery_address_id: int,
        special_instructions: Optional[str] = None,
        payment_method: PaymentMethod = PaymentMethod.CARD,
    ) -> Order:
        """
        Turn the customer's cart into a pending order.

        The order, its line items, its tracking record and the cart clearing
        commit together or not at all.

        Raises:
            EmptyCartError: The cart has no lines.
            AddressNotFoundError / AddressNotOwnedError: Bad delivery address.
            RestaurantNotFoundError: Unknown restaurant.
            InvalidCartError: A line is unknown, unavailable or from another restaurant.
        """
        cart = self.carts.get_cart(customer_id)
        if cart.is_empty:
            raise EmptyCartError("Cart is empty")

        address = self.directory.get_address(delivery_address_id)
        if address is None:
            raise AddressNotFoundError("Delivery address %s not found" % delivery_address_id)
        if address.user_id != customer_id:
            raise AddressNotOwnedError("Invalid delivery address")

        restaurant = self.directory.get_restaurant(restaurant_id)
        if restaurant is None:
            raise RestaurantNotFoundError("Restaurant %s not found" % restaurant_id)

        snapshots = []
        for line in cart.lines:
            snapshot = self.catalog.snapshot(line.menu_item_id)
            if snapshot is None:
                raise InvalidCartError("Menu item %s no longer exists" % line.menu_item_id)
            if snapshot.restaurant_id != restaurant.id:
                raise InvalidCartError(
                    "Menu item %s is not offered by restaurant %s" % (snapshot.menu_item_id, restaurant.id)
                )
            if not snapshot.is_available:
                raise InvalidCartError("Menu item %s is not available" % snapshot.menu_item_id)
            snapshots.append(snapshot)

        quote = quote_order(
            [(snap.unit_price, line.quantity) for line, snap in zip(cart.lines, snapshots)],
            delivery_fee=restaurant.delivery_fee,
            tax_rate=self.tax_rate,
        )

        restaurant_lat = _coalesce(restaurant.latitude, DEFAULT_RESTAURANT_LATITUDE)
        restaurant_lon = _coalesce(restaurant.longitude, DEFAULT_RESTAURANT_LONGITUDE)
        customer_lat = _coalesce(address.latitude, DEFAULT_CUSTOMER_LATITUDE)
        customer_lon = _coalesce(address.longitude, DEFAULT_CUSTOMER_LONGITUDE)

        prep = max_prep_minutes(snap.preparation_time for snap in snapshots)
        distance = haversine_km(restaurant_lat, restaurant_lon, customer_lat, customer_lon)
        eta = self._estimate_or_none(prep, distance, context="new order")

        try:
            order = self.orders.build(
                customer_id=customer_id,
                restaurant=restaurant,
                delivery_address_id=address.id,
                lines=cart.lines,
                snapshots=snapshots,
                quote=quote,
                estimated_delivery_time=eta,
                special_instructions=special_instructions,
                payment_method=payment_method,
            )
            self.tracking.create_for_order(
                order, restaurant_lat, restaurant_lon, customer_lat, customer_lon, self.clock()
            )
            self.carts.clear(cart)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Order created: %s (id=%s) for customer %s, total %s",
            order.order_number, order.id, customer_id, quote.total,
        )
        created = self.orders.get_detailed(order.id)
        self._emit(ORDER_CREATED, created)
        return created

    # =========================================================================
    # Reads
    # =========================================================================

    def get_order(self, order_id: int, requester_id: str, role: ActorRole) -> Order:
        """Visible to the order's customer, its restaurant's owner and its assigned agent."""
        order = self.orders.get_detailed(order_id)
        if not is_party(order, order.restaurant, requester_id, role):
            raise ForbiddenError("Unauthorized")
        return order

    def list_orders_for_customer(
        self, customer_id: str, status: Optional[OrderStatus], page: int, limit: int
    ) -> Tuple[List[Order], int]:
        return self.order_repo.list_for_customer(customer_id, status, _offset(page, limit), limit)

    def list_orders_for_restaurant(
        self, owner_id: str, status: Optional[OrderStatus], page: int, limit: int
    ) -> Tuple[List[Order], int]:
        return self.order_repo.list_for_restaurant_owner(owner_id, status, _offset(page, limit), limit)

    def list_orders_for_agent(
        self, agent_id: str, status: Optional[OrderStatus], page: int, limit: int
    ) -> Tuple[List[Order], int]:
        return self.order_repo.list_for_agent(agent_id, status, _offset(page, limit), limit)

    def list_available_for_dispatch(self, page: int, limit: int) -> Tuple[List[Order], int]:
        return self.pool.list_available(_offset(page, limit), limit)

    def get_tracking(self, order_id: int, requester_id: str) -> TrackingRecord:
        order = self.orders.get(order_id)
        self._require_party(order, requester_id)
        return self.tracking.snapshot(order_id)

    def get_delivery_status(self, order_id: int, requester_id: str) -> DeliveryStatus:
        order = self.orders.get_detailed(order_id)
        self._require_party(order, requester_id)
        return DeliveryStatus(order=order, tracking=order.tracking)

    def estimate_arrival(self, order_id: int, requester_id: str) -> ArrivalEstimate:
        """Minutes until the agent reaches the customer, from the agent's last fix."""
        order = self.orders.get(order_id)
        self._require_party(order, requester_id)
        record = self.tracking.snapshot(order_id)
        if record.current_latitude is None or record.current_longitude is None:
            raise LocationUnavailableError("Location data unavailable")

        distance = haversine_km(
            record.current_latitude, record.current_longitude,
            record.customer_latitude, record.customer_longitude,
        )
        minutes = arrival_minutes(distance, DELIVERY_SPEED_KMPH)
        return ArrivalEstimate(
            order_id=order_id,
            distance_km=distance,
            estimated_minutes=minutes,
            estimated_arrival=self.clock() + timedelta(minutes=minutes),
        )

    # =========================================================================
    # Transitions
    # =========================================================================

    def transition(
        self, order_id: int, requester_id: str, role: ActorRole, target: OrderStatus
    ) -> Order:
        """
        Validate and apply a status change.

        Raises:
            NotFoundError, ForbiddenError, InvalidTransitionError
        """
        order = self.order_repo.get_with_items(order_id)
        if order is None:
            raise NotFoundError("Order %s not found" % order_id)
        restaurant = self.directory.get_restaurant(order.restaurant_id)

        self.orders.check_transition(order, restaurant, requester_id, role, target)

        now = self.clock()
        try:
            self.orders.apply_transition(order, target, now)
            phase = PHASE_ON_ENTRY.get(target)
            if phase is not None:
                self.tracking.set_phase(order.id, phase, now)
            if target in ETA_REFRESH_STATUSES:
                self._refresh_estimate(order, target)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        updated = self.orders.get_detailed(order_id)
        self._emit(ORDER_STATUS_CHANGED, updated, {"to": target.value})
        return updated

    def cancel(self, order_id: int, customer_id: str) -> Order:
        return self.transition(order_id, customer_id, ActorRole.CUSTOMER, OrderStatus.CANCELLED)

    def _refresh_estimate(self, order: Order, target: OrderStatus) -> None:
        record = self.tracking.repo.get_for_order(order.id)
        if record is not None and record.distance_remaining is not None:
            distance = record.distance_remaining
        elif record is not None:
            distance = haversine_km(
                record.restaurant_latitude, record.restaurant_longitude,
                record.customer_latitude, record.customer_longitude,
            )
        else:
            distance = DEFAULT_DISTANCE_KM

        if target in IN_TRANSIT_STATUSES:
            prep = 0
        else:
            prep = max_prep_minutes(item.preparation_time for item in order.items)

        eta = self._estimate_or_none(prep, distance, context="order %s" % order.order_number)
        if eta is not None:
            self.order_repo.set_estimated_delivery_time(order.id, eta)

    def _estimate_or_none(self, prep: float, distance: float, context: str) -> Optional[datetime]:
        try:
            return self.estimator.estimate_completion(prep, distance)
        except EstimationFailure as exc:
            logger.warning("ETA estimation failed for %s, keeping previous estimate: %s", context, exc)
            return None

    # =========================================================================
    # Dispatch
    # =========================================================================

    def claim(self, order_id: int, agent_id: str) -> Order:
        """
        Reserve an unassigned order for agent_id. Status is left unchanged.

        Raises:
            NotFoundError, AlreadyAssignedError, InvalidTransitionError
        """
        try:
            now = self.clock()
            self.pool.claim(order_id, agent_id, now)
            self.tracking.set_phase(order_id, TrackingPhase.AGENT_ASSIGNED, now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        claimed = self.orders.get_detailed(order_id)
        self._emit(ORDER_ASSIGNED, claimed)
        return claimed

    # =========================================================================
    # Tracking
    # =========================================================================

    def update_agent_location(
        self, order_id: int, agent_id: str, latitude: float, longitude: float
    ) -> TrackingRecord:
        """
        Store the assigned agent's position and push it to live subscribers.

        Raises:
            NotFoundError: Unknown order.
            ForbiddenError: agent_id is not the assigned agent.
            InvalidTransitionError: The order is already delivered or cancelled.
        """
        order = self.orders.get(order_id)
        if order.delivery_agent_id is None or order.delivery_agent_id != agent_id:
            raise ForbiddenError("Only the assigned delivery agent can report location")
        if is_terminal(order.status):
            raise InvalidTransitionError(
                "Order %s is %s; location updates are closed" % (order.order_number, order.status.value),
                current=order.status.value,
            )
        try:
            distance = self.tracking.update_agent_location(order, agent_id, latitude, longitude, self.clock())
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.debug("Order %s agent at (%s, %s), %.2f km remaining", order_id, latitude, longitude, distance)
        record = self.tracking.snapshot(order_id)
        self.channel.publish(
            order_id,
            {
                "type": LOCATION_UPDATED,
                "order_id": order_id,
                "latitude": latitude,
                "longitude": longitude,
                "distance_remaining": distance,
                "phase": record.phase.value,
                "updated_at": record.updated_at.isoformat(),
            },
        )
        return record

    # =========================================================================
    # Payments
    # =========================================================================

    def record_payment(
        self, order_id: int, succeeded: bool, reference: Optional[str] = None
    ) -> Order:
        """
        Store the gateway's result and update the order's payment status.

        The status write only applies while the payment is not yet completed,
        so concurrent callbacks complete an order at most once.

        Raises:
            NotFoundError: Unknown order.
            InvalidTransitionError: Payment already completed.
        """
        order = self.orders.get(order_id)
        order_number, total, method = order.order_number, order.total, order.payment_method
        status = PaymentStatus.COMPLETED if succeeded else PaymentStatus.FAILED
        try:
            if not self.order_repo.set_payment_status(order_id, status):
                raise InvalidTransitionError(
                    "Payment for order %s is already completed" % order_number,
                    current=PaymentStatus.COMPLETED.value,
                )
            self.payments.record(order_id, total, method, succeeded, reference)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        updated = self.orders.get_detailed(order_id)
        self._emit(ORDER_PAYMENT_UPDATED, updated, {"payment_status": status.value})
        return updated

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_party(self, order: Order, requester_id: str) -> None:
        restaurant = self.directory.get_restaurant(order.restaurant_id)
        if not is_party(order, restaurant, requester_id):
            raise ForbiddenError("Unauthorized")

    def _emit(self, event_type: str, order: Order, data: Optional[dict] = None) -> None:
        event = LifecycleEvent(
            type=event_type,
            order_id=order.id,
            order_number=order.order_number,
            status=order.status.value,
            customer_id=order.customer_id,
            restaurant_id=order.restaurant_id,
            delivery_agent_id=order.delivery_agent_id,
            data=data or {},
            occurred_at=self.clock(),
        )
        self.channel.publish(order.id, event.to_dict())
        self.notifier.emit(event)


def _offset(page: int, limit: int) -> int:
    return (max(page, 1) - 1) * limit


def _coalesce(value: Optional[float], default: float) -> float:
    return default if value is None else value
