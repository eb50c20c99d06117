"""
Order Routes for Delivery Hub
=============================

Endpoints for the three actors of an order: the customer who places it, the
restaurant that prepares it and the delivery agent who carries it.

Endpoints:
----------
- POST /orders: Place an order from the customer's cart (customer)
- GET /orders: The customer's orders (customer)
- GET /orders/restaurant: Orders of restaurants the requester owns (restaurant)
- GET /orders/delivery-agent: Orders assigned to the requester (delivery_agent)
- GET /orders/available: The dispatch pool (delivery_agent)
- POST /orders/{id}/accept: Claim an order from the pool (delivery_agent)
- GET /orders/{id}: Order detail (any party to the order)
- PUT /orders/{id}/cancel: Cancel while pending or confirmed (customer)
- PUT /orders/{id}/status: Move the order along its lifecycle (any role)

Authentication:
---------------
The requester's id and role come from the gateway headers X-User-Id and
X-User-Role (see auth.py). Whether a requester may act on a given order is
decided by the coordinator, not here.

Pagination:
-----------
Listings take ``page`` (from 1) and ``limit`` and an optional ``status``
filter, and return ``pagination: {page, limit, total, pages}``. Orders are
sorted newest first.

Usage:
------
    # Restaurant confirms an order
    PUT /orders/42/status
    X-User-Id: owner-7
    X-User-Role: restaurant
    {"status": "confirmed"}
"""

import logging
import math
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from ..auth import Requester, get_requester, require_role
from ..config import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT
from ..dependencies import get_coordinator
from ..models import Order
from ..schemas.orders import (
    OrderCreate,
    OrderListResponse,
    OrderOut,
    OrderResponse,
    PaginationOut,
    StatusUpdateRequest,
)
from ..services.coordinator import LifecycleCoordinator
from ..state_machine import ActorRole, OrderStatus


logger = logging.getLogger(__name__)

# Router definition
orders_router = APIRouter(prefix="/orders", tags=["Orders"])


def _listing(orders: List[Order], total: int, page: int, limit: int) -> OrderListResponse:
    return OrderListResponse(
        orders=[OrderOut.model_validate(order) for order in orders],
        pagination=PaginationOut(
            page=page,
            limit=limit,
            total=total,
            pages=math.ceil(total / limit) if total else 0,
        ),
    )


# =============================================================================
# Placing and Listing Orders
# =============================================================================

@orders_router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
def create_order(
    payload: OrderCreate,
    requester: Requester = Depends(require_role(ActorRole.CUSTOMER)),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
) -> OrderResponse:
    """
    Place an order from the customer's current cart.

    The cart is cleared in the same transaction that creates the order.
    """
    order = coordinator.create_order(
        customer_id=requester.user_id,
        restaurant_id=payload.restaurant_id,
        delivery_address_id=payload.delivery_address_id,
        special_instructions=payload.special_instructions,
        payment_method=payload.payment_method,
    )
    return OrderResponse(order=OrderOut.model_validate(order))


@orders_router.get("", response_model=OrderListResponse)
def list_customer_orders(
    requester: Requester = Depends(require_role(ActorRole.CUSTOMER)),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
    status: Optional[OrderStatus] = Query(None, description="Filter by status"),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
) -> OrderListResponse:
    orders, total = coordinator.list_orders_for_customer(requester.user_id, status, page, limit)
    return _listing(orders, total, page, limit)


@orders_router.get("/restaurant", response_model=OrderListResponse)
def list_restaurant_orders(
    requester: Requester = Depends(require_role(ActorRole.RESTAURANT)),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
    status: Optional[OrderStatus] = Query(None, description="Filter by status"),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
) -> OrderListResponse:
    """Orders placed with any restaurant the requester owns."""
    orders, total = coordinator.list_orders_for_restaurant(requester.user_id, status, page, limit)
    return _listing(orders, total, page, limit)


@orders_router.get("/delivery-agent", response_model=OrderListResponse)
def list_agent_orders(
    requester: Requester = Depends(require_role(ActorRole.DELIVERY_AGENT)),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
    status: Optional[OrderStatus] = Query(None, description="Filter by status"),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
) -> OrderListResponse:
    orders, total = coordinator.list_orders_for_agent(requester.user_id, status, page, limit)
    return _listing(orders, total, page, limit)


@orders_router.get("/available", response_model=OrderListResponse)
def list_available_orders(
    _agent: Requester = Depends(require_role(ActorRole.DELIVERY_AGENT)),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
) -> OrderListResponse:
    """
    Orders waiting for an agent: preparing or ready, unassigned, newest first.
    """
    orders, total = coordinator.list_available_for_dispatch(page, limit)
    return _listing(orders, total, page, limit)


# =============================================================================
# Single Order
# =============================================================================

@orders_router.post("/{order_id}/accept", response_model=OrderResponse)
def accept_order(
    order_id: int,
    requester: Requester = Depends(require_role(ActorRole.DELIVERY_AGENT)),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
) -> OrderResponse:
    """
    Claim an order for delivery.

    When several agents accept the same order at once, exactly one gets it;
    the others receive 409 already_assigned.
    """
    order = coordinator.claim(order_id, requester.user_id)
    return OrderResponse(order=OrderOut.model_validate(order))


@orders_router.get("/{order_id}", response_model=OrderResponse)
def get_order(
    order_id: int,
    requester: Requester = Depends(get_requester),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
) -> OrderResponse:
    order = coordinator.get_order(order_id, requester.user_id, requester.role)
    return OrderResponse(order=OrderOut.model_validate(order))


@orders_router.put("/{order_id}/cancel", response_model=OrderResponse)
def cancel_order(
    order_id: int,
    requester: Requester = Depends(require_role(ActorRole.CUSTOMER)),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
) -> OrderResponse:
    """Cancel an order that is still pending or confirmed."""
    order = coordinator.cancel(order_id, requester.user_id)
    return OrderResponse(order=OrderOut.model_validate(order))


@orders_router.put("/{order_id}/status", response_model=OrderResponse)
def update_order_status(
    order_id: int,
    payload: StatusUpdateRequest,
    requester: Requester = Depends(get_requester),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
) -> OrderResponse:
    """
    Request a status change.

    Answers 403 if the requester is not the party allowed to make this move,
    409 if the move is not reachable from the current status.
    """
    order = coordinator.transition(order_id, requester.user_id, requester.role, payload.status)
    return OrderResponse(order=OrderOut.model_validate(order))
