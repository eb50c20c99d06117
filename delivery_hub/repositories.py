"""
Repositories for orders and tracking records.

Every read the services need is a named method here with its joins spelled
out; nothing relies on lazy relationship loading to fetch related rows.
Writes that can race are conditional UPDATE statements whose WHERE clause
carries the precondition, so the database decides the winner:

    claim:                  ... WHERE delivery_agent_id IS NULL AND status IN (...)
    compare_and_set_status: ... WHERE status = :expected

Both return True only when exactly one row changed. Commits are left to the
caller so a service can group several writes in one transaction.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.orm import Query, Session, joinedload, selectinload

from .models import Order, OrderItem, Restaurant, TrackingRecord
from .state_machine import DISPATCHABLE_STATUSES, OrderStatus, PaymentStatus, TrackingPhase


logger = logging.getLogger(__name__)


class OrderRepository:
    """Named queries and conditional writes over the orders table."""

    def __init__(self, db: Session):
        self.db = db

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def add(self, order: Order) -> Order:
        self.db.add(order)
        self.db.flush()  # populate order.id and item ids
        return order

    def claim(self, order_id: int, agent_id: str, assigned_at: datetime) -> bool:
        """Assign agent_id if the order is still unassigned and dispatchable."""
        changed = (
            self.db.query(Order)
            .filter(
                Order.id == order_id,
                Order.delivery_agent_id.is_(None),
                Order.status.in_(DISPATCHABLE_STATUSES),
            )
            .update(
                {Order.delivery_agent_id: agent_id, Order.assigned_at: assigned_at},
                synchronize_session=False,
            )
        )
        return changed == 1

    def compare_and_set_status(
        self,
        order_id: int,
        expected: OrderStatus,
        target: OrderStatus,
        completed_at: Optional[datetime] = None,
    ) -> bool:
        """Move the order to target only if its status is still expected."""
        values = {Order.status: target}
        if completed_at is not None:
            values[Order.completed_at] = completed_at
        changed = (
            self.db.query(Order)
            .filter(Order.id == order_id, Order.status == expected)
            .update(values, synchronize_session=False)
        )
        return changed == 1

    def set_estimated_delivery_time(self, order_id: int, eta: datetime) -> None:
        (
            self.db.query(Order)
            .filter(Order.id == order_id)
            .update({Order.estimated_delivery_time: eta}, synchronize_session=False)
        )

    def set_payment_status(self, order_id: int, status: PaymentStatus) -> bool:
        """Record a payment outcome unless the order's payment already completed."""
        changed = (
            self.db.query(Order)
            .filter(Order.id == order_id, Order.payment_status != PaymentStatus.COMPLETED)
            .update({Order.payment_status: status}, synchronize_session=False)
        )
        return changed == 1

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, order_id: int) -> Optional[Order]:
        """Order row only."""
        return self.db.query(Order).filter(Order.id == order_id).first()

    def get_with_details(self, order_id: int) -> Optional[Order]:
        """Order with items, exclusions, restaurant and tracking loaded."""
        return (
            self._detailed(self.db.query(Order))
            .filter(Order.id == order_id)
            .first()
        )

    def get_with_items(self, order_id: int) -> Optional[Order]:
        """Order with its line items loaded (used for ETA refresh)."""
        return (
            self.db.query(Order)
            .options(selectinload(Order.items))
            .filter(Order.id == order_id)
            .first()
        )

    def list_for_customer(
        self, customer_id: str, status: Optional[OrderStatus], offset: int, limit: int
    ) -> Tuple[List[Order], int]:
        query = self.db.query(Order).filter(Order.customer_id == customer_id)
        return self._page(query, status, offset, limit)

    def list_for_restaurant_owner(
        self, owner_id: str, status: Optional[OrderStatus], offset: int, limit: int
    ) -> Tuple[List[Order], int]:
        owned = self.db.query(Restaurant.id).filter(Restaurant.owner_id == owner_id)
        query = self.db.query(Order).filter(Order.restaurant_id.in_(owned.scalar_subquery()))
        return self._page(query, status, offset, limit)

    def list_for_agent(
        self, agent_id: str, status: Optional[OrderStatus], offset: int, limit: int
    ) -> Tuple[List[Order], int]:
        query = self.db.query(Order).filter(Order.delivery_agent_id == agent_id)
        return self._page(query, status, offset, limit)

    def list_available(self, offset: int, limit: int) -> Tuple[List[Order], int]:
        """The dispatch pool: dispatchable and unassigned, newest first."""
        query = self.db.query(Order).filter(
            Order.status.in_(DISPATCHABLE_STATUSES),
            Order.delivery_agent_id.is_(None),
        )
        return self._page(query, None, offset, limit)

    def _page(
        self, query: Query, status: Optional[OrderStatus], offset: int, limit: int
    ) -> Tuple[List[Order], int]:
        if status is not None:
            query = query.filter(Order.status == status)

        total = query.count()
        orders = (
            self._detailed(query)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return orders, total

    @staticmethod
    def _detailed(query: Query) -> Query:
        return query.options(
            selectinload(Order.items).selectinload(OrderItem.exclusions),
            joinedload(Order.restaurant),
            joinedload(Order.tracking),
        )


class TrackingRepository:
    """Reads and writes for the one-per-order tracking records."""

    def __init__(self, db: Session):
        self.db = db

    def add(self, record: TrackingRecord) -> TrackingRecord:
        self.db.add(record)
        self.db.flush()
        return record

    def get_for_order(self, order_id: int) -> Optional[TrackingRecord]:
        return (
            self.db.query(TrackingRecord)
            .filter(TrackingRecord.order_id == order_id)
            .first()
        )

    def update_location(
        self,
        order_id: int,
        latitude: float,
        longitude: float,
        distance_remaining: float,
        updated_at: datetime,
    ) -> bool:
        """Overwrite the latest agent fix. Earlier fixes are not kept."""
        changed = (
            self.db.query(TrackingRecord)
            .filter(TrackingRecord.order_id == order_id)
            .update(
                {
                    TrackingRecord.current_latitude: latitude,
                    TrackingRecord.current_longitude: longitude,
                    TrackingRecord.distance_remaining: distance_remaining,
                    TrackingRecord.updated_at: updated_at,
                },
                synchronize_session=False,
            )
        )
        return changed == 1

    def set_phase(self, order_id: int, phase: TrackingPhase, updated_at: datetime) -> None:
        (
            self.db.query(TrackingRecord)
            .filter(TrackingRecord.order_id == order_id)
            .update(
                {TrackingRecord.phase: phase, TrackingRecord.updated_at: updated_at},
                synchronize_session=False,
            )
        )
