"""
Order Store
===========

Builds order rows from a cart and decides whether a requested status change is
allowed. The store never commits: the lifecycle coordinator groups its writes
with the tracking record and cart clearing into one transaction.

Transition checks, in order:
1. The requester must be a party to the order in the role they claim
   (the customer who placed it, the owner of its restaurant, or its assigned
   agent). Otherwise ForbiddenError.
2. The target must be reachable from the current status
   (state_machine.TRANSITIONS). Otherwise InvalidTransitionError.
3. The reachable move must belong to the requester's role. Otherwise
   ForbiddenError.
4. Confirming an order of a pre-payment restaurant needs a completed payment.
   Otherwise PaymentPendingError.

The status write itself is a compare-and-set on the status the checks were
made against, so two concurrent transitions cannot both apply.
"""

import logging
import secrets
import time
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from ..errors import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PaymentPendingError,
)
from ..models import Order, OrderItem, OrderItemExclusion, Restaurant
from ..repositories import OrderRepository
from ..state_machine import (
    ActorRole,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    allowed_actor,
    is_terminal,
)
from .collaborators import CartLine, MenuItemSnapshot
from .pricing import PriceQuote, round_money


logger = logging.getLogger(__name__)


def generate_order_number() -> str:
    """Human-readable number: millisecond timestamp plus a random suffix."""
    return "ORD-%d-%s" % (int(time.time() * 1000), secrets.token_hex(3).upper())


def is_party(order: Order, restaurant: Optional[Restaurant], requester_id: str, role: Optional[ActorRole] = None) -> bool:
    """True if requester_id is the order's customer, restaurant owner or assigned agent.

    With a role, only the relation for that role is checked.
    """
    if role in (None, ActorRole.CUSTOMER) and order.customer_id == requester_id:
        return True
    if role in (None, ActorRole.DELIVERY_AGENT) and order.delivery_agent_id is not None \
            and order.delivery_agent_id == requester_id:
        return True
    if role in (None, ActorRole.RESTAURANT) and restaurant is not None \
            and restaurant.owner_id == requester_id:
        return True
    return False


class OrderStore:
    """Creation and transition rules for orders in one session."""

    def __init__(self, db: Session):
        self.db = db
        self.repo = OrderRepository(db)

    def get(self, order_id: int) -> Order:
        order = self.repo.get(order_id)
        if order is None:
            raise NotFoundError("Order %s not found" % order_id)
        return order

    def get_detailed(self, order_id: int) -> Order:
        order = self.repo.get_with_details(order_id)
        if order is None:
            raise NotFoundError("Order %s not found" % order_id)
        return order

    def build(
        self,
        customer_id: str,
        restaurant: Restaurant,
        delivery_address_id: int,
        lines: Sequence[CartLine],
        snapshots: Sequence[MenuItemSnapshot],
        quote: PriceQuote,
        estimated_delivery_time: Optional[datetime],
        special_instructions: Optional[str] = None,
        payment_method: PaymentMethod = PaymentMethod.CARD,
    ) -> Order:
        """Insert a pending order with frozen line items. Flushes, does not commit."""
        items: List[OrderItem] = []
        for position, (line, snapshot) in enumerate(zip(lines, snapshots)):
            items.append(
                OrderItem(
                    position=position,
                    menu_item_id=snapshot.menu_item_id,
                    menu_item_name=snapshot.name,
                    unit_price=round_money(snapshot.unit_price),
                    quantity=line.quantity,
                    line_total=round_money(snapshot.unit_price * line.quantity),
                    preparation_time=snapshot.preparation_time,
                    special_instructions=line.special_instructions,
                    exclusions=[
                        OrderItemExclusion(ingredient_id=exc.ingredient_id, ingredient_name=exc.name)
                        for exc in line.exclusions
                    ],
                )
            )

        order = Order(
            order_number=generate_order_number(),
            customer_id=customer_id,
            restaurant_id=restaurant.id,
            delivery_address_id=delivery_address_id,
            status=OrderStatus.PENDING,
            subtotal=quote.subtotal,
            tax=quote.tax,
            delivery_fee=quote.delivery_fee,
            total=quote.total,
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING,
            special_instructions=special_instructions,
            estimated_delivery_time=estimated_delivery_time,
            items=items,
        )
        return self.repo.add(order)

    def check_transition(
        self,
        order: Order,
        restaurant: Optional[Restaurant],
        requester_id: str,
        role: ActorRole,
        target: OrderStatus,
    ) -> None:
        """Raise if requester may not move order to target. See module docstring."""
        if not is_party(order, restaurant, requester_id, role):
            raise ForbiddenError(
                "User %s is not the %s for order %s" % (requester_id, role.value, order.order_number)
            )

        current = OrderStatus(order.status)
        actor = allowed_actor(current, target)
        if actor is None:
            raise InvalidTransitionError(
                "Cannot move order %s from %s to %s" % (order.order_number, current.value, target.value),
                current=current.value,
                target=target.value,
            )
        if actor != role:
            raise ForbiddenError(
                "Only the %s can move an order from %s to %s" % (actor.value, current.value, target.value)
            )

        if (
            target == OrderStatus.CONFIRMED
            and restaurant is not None
            and restaurant.requires_prepayment
            and order.payment_status != PaymentStatus.COMPLETED
        ):
            raise PaymentPendingError(
                "Order %s cannot be confirmed until payment completes" % order.order_number,
                current=current.value,
                target=target.value,
            )

    def apply_transition(self, order: Order, target: OrderStatus, now: datetime) -> None:
        """Compare-and-set the status. Raises InvalidTransitionError if it changed meanwhile."""
        expected = OrderStatus(order.status)
        completed_at = now if is_terminal(target) else None
        if not self.repo.compare_and_set_status(order.id, expected, target, completed_at):
            raise InvalidTransitionError(
                "Order %s changed status concurrently; %s no longer applies"
                % (order.order_number, target.value),
                current=expected.value,
                target=target.value,
            )
        logger.info("Order %s status %s -> %s", order.order_number, expected.value, target.value)
