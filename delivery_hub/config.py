"""
Configuration Module for Delivery Hub
=====================================

This module centralizes the configuration settings, environment variables and
constants used by the order lifecycle and dispatch service. Every value is read
once at import time and exposed as a typed module-level constant.

Configuration Categories:
-------------------------
- **Pricing**: Tax rate applied to order subtotals and the currency quantum
  used for rounding money amounts.

- **ETA Estimation**: Average courier speed, default preparation time and the
  fallback distance used when neither live tracking nor anchor coordinates are
  available.

- **Anchor Fallbacks**: Coordinates used when a restaurant or delivery address
  was stored without a geocoded position.

- **Tracking Fan-out**: Per-subscriber queue size and the number of dropped
  events after which a subscriber is considered disconnected.

- **Rate Limiting**: Throttle for the high-frequency agent location endpoint.

- **CORS Settings**: Allowed origins for browser clients.

- **Payment Callback**: Shared secret the payment gateway presents when it
  reports the outcome of a payment.

Environment Variables:
----------------------
- TAX_RATE: Fraction of the subtotal charged as tax (default: "0.05")
- AVERAGE_SPEED_KMPH: Courier speed used for order ETAs (default: "30")
- DELIVERY_SPEED_KMPH: Courier speed used for arrival estimates (default: "15")
- DEFAULT_PREP_MINUTES: Prep time for items without one (default: "15")
- DEFAULT_DISTANCE_KM: Distance used when nothing better is known (default: "5")
- SUBSCRIBER_QUEUE_SIZE: Pending events per live subscriber (default: 100)
- SUBSCRIBER_MAX_DROPS: Dropped events before eviction (default: 50)
- NOTIFICATION_WORKERS: Threads delivering notifications (default: 4)
- RATE_LIMIT_LOCATION: Location update rate limit (default: "120 per minute")
- RATE_LIMIT_ENABLED: Enable/disable rate limiting (default: "true")
- CORS_ORIGINS: Comma-separated allowed origins (default: "*")
- PAYMENT_WEBHOOK_SECRET: Secret required on payment callbacks (default: "")

Usage:
------
    from delivery_hub.config import TAX_RATE, AVERAGE_SPEED_KMPH
"""

import os
from decimal import Decimal
from typing import List


# =============================================================================
# Pricing Configuration
# =============================================================================
# Money is handled as Decimal end to end. Amounts are rounded half-up to the
# currency quantum once, when an order is created.

TAX_RATE: Decimal = Decimal(os.getenv("TAX_RATE", "0.05"))
CURRENCY_QUANTUM: Decimal = Decimal("0.01")


# =============================================================================
# ETA Configuration
# =============================================================================

# Speed used for the order-level completion estimate
AVERAGE_SPEED_KMPH: float = float(os.getenv("AVERAGE_SPEED_KMPH", "30"))

# Speed used by the arrival estimate computed from the agent's live position
DELIVERY_SPEED_KMPH: float = float(os.getenv("DELIVERY_SPEED_KMPH", "15"))

DEFAULT_PREP_MINUTES: int = int(os.getenv("DEFAULT_PREP_MINUTES", "15"))
DEFAULT_DISTANCE_KM: float = float(os.getenv("DEFAULT_DISTANCE_KM", "5"))


# =============================================================================
# Anchor Fallbacks
# =============================================================================
# Used only when a restaurant or address row has no coordinates.

DEFAULT_RESTAURANT_LATITUDE: float = 37.78825
DEFAULT_RESTAURANT_LONGITUDE: float = -122.4324
DEFAULT_CUSTOMER_LATITUDE: float = 37.79825
DEFAULT_CUSTOMER_LONGITUDE: float = -122.4224


# =============================================================================
# Tracking Fan-out Configuration
# =============================================================================

SUBSCRIBER_QUEUE_SIZE: int = int(os.getenv("SUBSCRIBER_QUEUE_SIZE", "100"))
SUBSCRIBER_MAX_DROPS: int = int(os.getenv("SUBSCRIBER_MAX_DROPS", "50"))

# Seconds a live stream waits for an event before sending a keep-alive
SUBSCRIBER_POLL_SECONDS: float = float(os.getenv("SUBSCRIBER_POLL_SECONDS", "1.0"))


# =============================================================================
# Notification Configuration
# =============================================================================

NOTIFICATION_WORKERS: int = int(os.getenv("NOTIFICATION_WORKERS", "4"))


# =============================================================================
# Rate Limiting Configuration
# =============================================================================
# Agents report their position every few seconds. The limit protects the
# tracking table from misbehaving clients.

RATE_LIMIT_LOCATION: str = os.getenv("RATE_LIMIT_LOCATION", "120 per minute")
RATE_LIMIT_ENABLED: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"


def get_rate_limit_location() -> str:
    """Return the current location update rate limit."""
    return RATE_LIMIT_LOCATION


# =============================================================================
# Pagination
# =============================================================================

DEFAULT_PAGE_LIMIT: int = 10
MAX_PAGE_LIMIT: int = 100


# =============================================================================
# CORS Configuration
# =============================================================================

_cors_origins_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS: List[str] = [
    origin.strip()
    for origin in _cors_origins_env.split(",")
    if origin.strip()
] or ["*"]


# =============================================================================
# Payment Callback Configuration
# =============================================================================
# The payment gateway reports results to /payments/{order_id}/callback and must
# present this secret in the X-Payment-Secret header.

PAYMENT_WEBHOOK_SECRET: str = os.getenv("PAYMENT_WEBHOOK_SECRET", "")
