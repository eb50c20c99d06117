"""
Order Schemas for Delivery Hub
==============================

Pydantic models for the order endpoints: creating an order from the cart,
changing its status, and the shapes returned by the detail and listing
endpoints.

Endpoint Coverage:
------------------
- POST /orders: OrderCreate -> OrderResponse
- GET /orders, /orders/restaurant, /orders/delivery-agent, /orders/available:
  OrderListResponse
- GET /orders/{id}, POST /orders/{id}/accept, PUT /orders/{id}/cancel,
  PUT /orders/{id}/status: OrderResponse

Money:
------
Amounts are stored as Numeric(10, 2) and returned as decimal strings with two
decimals. Totals are frozen at creation; nothing here recomputes them.

Usage:
------
    order = coordinator.get_order(order_id, requester.user_id, requester.role)
    return OrderResponse(order=OrderOut.model_validate(order))
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..state_machine import OrderStatus, PaymentMethod, PaymentStatus, TrackingPhase


# =============================================================================
# Requests
# =============================================================================

class OrderCreate(BaseModel):
    """Request body for POST /orders. Lines come from the customer's cart."""

    restaurant_id: int
    delivery_address_id: int
    special_instructions: Optional[str] = Field(None, max_length=500)
    payment_method: PaymentMethod = PaymentMethod.CARD


class StatusUpdateRequest(BaseModel):
    status: OrderStatus


# =============================================================================
# Responses
# =============================================================================

class OrderItemExclusionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ingredient_id: int
    ingredient_name: Optional[str] = None


class OrderItemOut(BaseModel):
    """
    One frozen order line.

    Attributes:
        menu_item_name: Name at the time of ordering
        unit_price: Price at the time of ordering
        line_total: unit_price * quantity
        preparation_time: Minutes, as the catalog stated at ordering
        exclusions: Ingredients the customer asked to leave out
    """
    model_config = ConfigDict(from_attributes=True)

    id: int
    menu_item_id: Optional[int] = None
    menu_item_name: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal
    preparation_time: Optional[int] = None
    special_instructions: Optional[str] = None
    exclusions: List[OrderItemExclusionOut] = []


class RestaurantSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    phone: Optional[str] = None
    address: Optional[str] = None


class OrderTrackingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    phase: TrackingPhase
    current_latitude: Optional[float] = None
    current_longitude: Optional[float] = None
    distance_remaining: Optional[float] = None
    updated_at: Optional[datetime] = None


class OrderOut(BaseModel):
    """
    Full order view returned to the customer, the restaurant and the agent.

    Attributes:
        order_number: Human-readable number shown to all parties
        status: Current lifecycle status
        delivery_agent_id: Assigned agent, null until claimed
        subtotal / tax / delivery_fee / total: Frozen money breakdown
        estimated_delivery_time: Latest ETA, may be null if estimation failed
        completed_at: Set once, on delivered or cancelled
    """
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    customer_id: str
    restaurant_id: int
    delivery_address_id: int
    delivery_agent_id: Optional[str] = None
    status: OrderStatus
    subtotal: Decimal
    tax: Decimal
    delivery_fee: Decimal
    total: Decimal
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    special_instructions: Optional[str] = None
    created_at: datetime
    estimated_delivery_time: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    items: List[OrderItemOut] = []
    restaurant: Optional[RestaurantSummaryOut] = None
    tracking: Optional[OrderTrackingOut] = None


class PaginationOut(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class OrderResponse(BaseModel):
    success: bool = True
    order: OrderOut


class OrderListResponse(BaseModel):
    success: bool = True
    orders: List[OrderOut]
    pagination: PaginationOut
