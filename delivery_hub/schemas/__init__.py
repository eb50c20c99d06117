"""
Schemas Package for Delivery Hub
================================

Pydantic models used for request validation and response serialization,
kept apart from the routes so services and tests can import them without
pulling in FastAPI routers.

Schema Organization:
--------------------
- **orders.py**: Order creation, status changes, order views and listings
- **tracking.py**: Agent location updates, tracking snapshots, ETAs
- **payments.py**: Payment gateway callback

Naming Conventions:
-------------------
- *Out: Response models built from ORM rows (``from_attributes=True``)
- *Create / *Request: Request bodies
- *Response: Envelopes returned by endpoints, always with ``success: true``
  (errors use ``{"success": false, "error": ..., "message": ...}``)
"""

from .orders import (
    OrderCreate,
    StatusUpdateRequest,
    OrderItemExclusionOut,
    OrderItemOut,
    RestaurantSummaryOut,
    OrderTrackingOut,
    OrderOut,
    PaginationOut,
    OrderResponse,
    OrderListResponse,
)

from .tracking import (
    LocationUpdateRequest,
    TrackingOut,
    TrackingResponse,
    DeliveryStatusOut,
    DeliveryStatusResponse,
    ArrivalEstimateOut,
    ArrivalEstimateResponse,
)

from .payments import (
    PaymentCallbackRequest,
    PaymentCallbackResponse,
)

__all__ = [
    "OrderCreate",
    "StatusUpdateRequest",
    "OrderItemExclusionOut",
    "OrderItemOut",
    "RestaurantSummaryOut",
    "OrderTrackingOut",
    "OrderOut",
    "PaginationOut",
    "OrderResponse",
    "OrderListResponse",
    "LocationUpdateRequest",
    "TrackingOut",
    "TrackingResponse",
    "DeliveryStatusOut",
    "DeliveryStatusResponse",
    "ArrivalEstimateOut",
    "ArrivalEstimateResponse",
    "PaymentCallbackRequest",
    "PaymentCallbackResponse",
]
