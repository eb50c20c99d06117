"""
Order Lifecycle State Machine.

The order status is a closed enumeration and every legal move between two
statuses is listed in TRANSITIONS together with the single actor role allowed
to make it. Anything not listed is an invalid transition. The table is checked
for exhaustiveness when this module is imported, so adding a status without
deciding its outgoing moves fails fast.

    pending -> confirmed -> preparing -> ready -> picked_up -> delivered
       \\            \\
        -> cancelled  -> cancelled

Agent assignment is not a status change. An agent may claim an order while it
is preparing or ready; once assigned, only that agent may move it to
picked_up and then delivered.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional


class OrderStatus(str, Enum):
    """Status of an order. Single source of truth for where the order is."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    PICKED_UP = "picked_up"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class ActorRole(str, Enum):
    """Role of the user making a request."""
    CUSTOMER = "customer"
    RESTAURANT = "restaurant"
    DELIVERY_AGENT = "delivery_agent"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    CARD = "card"
    CASH = "cash"


class TrackingPhase(str, Enum):
    """Coarse phase shown next to the live map."""
    AWAITING_AGENT = "awaiting_agent"
    AGENT_ASSIGNED = "agent_assigned"
    EN_ROUTE = "restaurant_to_customer"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# current status -> {target status: role allowed to request it}
TRANSITIONS: Dict[OrderStatus, Dict[OrderStatus, ActorRole]] = {
    OrderStatus.PENDING: {
        OrderStatus.CONFIRMED: ActorRole.RESTAURANT,
        OrderStatus.CANCELLED: ActorRole.CUSTOMER,
    },
    OrderStatus.CONFIRMED: {
        OrderStatus.PREPARING: ActorRole.RESTAURANT,
        OrderStatus.CANCELLED: ActorRole.CUSTOMER,
    },
    OrderStatus.PREPARING: {
        OrderStatus.READY: ActorRole.RESTAURANT,
        OrderStatus.PICKED_UP: ActorRole.DELIVERY_AGENT,
    },
    OrderStatus.READY: {
        OrderStatus.PICKED_UP: ActorRole.DELIVERY_AGENT,
    },
    OrderStatus.PICKED_UP: {
        OrderStatus.DELIVERED: ActorRole.DELIVERY_AGENT,
    },
    OrderStatus.DELIVERED: {},
    OrderStatus.CANCELLED: {},
}

_unmapped = set(OrderStatus) - set(TRANSITIONS)
if _unmapped:
    raise RuntimeError(
        "Transition table has no entry for: %s" % ", ".join(sorted(s.value for s in _unmapped))
    )

# Statuses in which an unassigned order is visible to delivery agents
DISPATCHABLE_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.PREPARING, OrderStatus.READY}
)

TERMINAL_STATUSES: FrozenSet[OrderStatus] = frozenset(
    status for status, targets in TRANSITIONS.items() if not targets
)

# Entering these statuses refreshes the estimated completion time
ETA_REFRESH_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.PICKED_UP}
)

# Once the food has left the restaurant, preparation no longer counts toward the ETA
IN_TRANSIT_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.PICKED_UP, OrderStatus.DELIVERED}
)

PHASE_ON_ENTRY: Dict[OrderStatus, TrackingPhase] = {
    OrderStatus.PICKED_UP: TrackingPhase.EN_ROUTE,
    OrderStatus.DELIVERED: TrackingPhase.DELIVERED,
    OrderStatus.CANCELLED: TrackingPhase.CANCELLED,
}


def allowed_actor(current: OrderStatus, target: OrderStatus) -> Optional[ActorRole]:
    """Return the role allowed to move an order from current to target, or None."""
    return TRANSITIONS[current].get(target)


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES
