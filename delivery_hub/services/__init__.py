"""
Services Package for Delivery Hub
=================================

Business logic of the order lifecycle, kept apart from the HTTP layer. Every
service receives the request's database session; none of them commits except
the lifecycle coordinator, which owns the transaction boundary.

Available Services:
-------------------
- **geo**: Great-circle distance between two coordinates
- **pricing**: Money quote and the ETA estimator
- **collaborators**: Cart, catalog, directory and payment providers
- **orders**: Order construction and transition rules (Order Store)
- **dispatch**: Unassigned order listing and atomic claims (Dispatch Pool)
- **tracking**: Tracking records and the live subscriber channel
- **notifications**: Lifecycle events and fire-and-forget notification
- **coordinator**: The LifecycleCoordinator composing all of the above

Usage:
------
    from delivery_hub.services.coordinator import LifecycleCoordinator

    coordinator = LifecycleCoordinator(db, channel, notifier)
    order = coordinator.create_order(customer_id, restaurant_id, address_id)
"""

from . import geo
from . import pricing
from . import collaborators
from . import orders
from . import dispatch
from . import tracking
from . import notifications
from . import coordinator

__all__ = [
    "geo",
    "pricing",
    "collaborators",
    "orders",
    "dispatch",
    "tracking",
    "notifications",
    "coordinator",
]
