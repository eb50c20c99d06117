"""
Routes Package for Delivery Hub
===============================

API route definitions organized by domain. Each module defines a FastAPI
APIRouter with related endpoints grouped together.

Architecture Overview:
----------------------
- orders.py: Placing, listing, claiming and transitioning orders
- tracking.py: Agent location, tracking snapshots, ETAs and the live stream
- payments.py: Payment gateway callback

Router Registration:
--------------------
All routers are registered in main.create_app() under two prefixes:
1. /api/v1/* - Versioned API (recommended)
2. /* - Root paths for backward compatibility

Route Dependencies:
-------------------
Common dependencies are injected via FastAPI's Depends():
- get_coordinator: LifecycleCoordinator bound to the request's DB session
- get_requester / require_role(): Requester identity from gateway headers
- verify_payment_secret: Shared-secret check for the payment gateway
- limiter.limit(): Rate limiting of location reports

Error Handling:
---------------
Services raise DeliveryError subclasses; one exception handler in main.py
renders them as {"success": false, "error": code, "message": text}:
- 400: empty_cart, invalid_cart, location_unavailable
- 401: missing identity headers or payment secret
- 403: forbidden, address_not_owned
- 404: not_found, restaurant_not_found, address_not_found
- 409: invalid_transition, payment_pending, already_assigned
- 429: Too many requests (rate limited)
"""

from .orders import orders_router
from .tracking import tracking_router, limiter
from .payments import payments_router

__all__ = [
    "orders_router",
    "tracking_router",
    "payments_router",
    "limiter",
]
