"""
Dispatch Pool
=============

The pool is not stored anywhere. An order is in it while its status is
preparing or ready and no agent is assigned, so it changes only as a side
effect of order writes.

Claim Resolution:
-----------------
Several agents polling the pool will race for the same order. The claim is a
single conditional UPDATE:

    UPDATE orders SET delivery_agent_id = :agent, assigned_at = :now
     WHERE id = :id AND delivery_agent_id IS NULL AND status IN ('preparing', 'ready')

The database applies it to at most one claimant; every other claimant sees
zero rows changed and gets AlreadyAssignedError. There is no read before the
write, so there is no window in which two agents can both observe an
unassigned order and both succeed. Claiming leaves the status untouched; the
agent moves the order to picked_up once the food is in hand.

Lost races are expected and frequent, so they are logged at DEBUG only.
"""

import logging
from datetime import datetime
from typing import List, Tuple

from sqlalchemy.orm import Session

from ..errors import AlreadyAssignedError, InvalidTransitionError, NotFoundError
from ..models import Order
from ..repositories import OrderRepository


logger = logging.getLogger(__name__)


class DispatchPool:
    def __init__(self, db: Session):
        self.db = db
        self.repo = OrderRepository(db)

    def list_available(self, offset: int, limit: int) -> Tuple[List[Order], int]:
        """Unassigned preparing/ready orders, newest first, with the total count."""
        return self.repo.list_available(offset, limit)

    def claim(self, order_id: int, agent_id: str, now: datetime) -> None:
        """
        Assign agent_id to the order, or raise.

        On success the assignment is pending in the session; the caller
        commits it. On failure nothing has been written.

        Raises:
            NotFoundError: Unknown order.
            AlreadyAssignedError: Another agent holds the order.
            InvalidTransitionError: The order is not in a dispatchable status.
        """
        if self.repo.claim(order_id, agent_id, now):
            logger.info("Order %s claimed by agent %s", order_id, agent_id)
            return

        self.db.rollback()
        order = self.repo.get(order_id)
        if order is None:
            raise NotFoundError("Order %s not found" % order_id)
        if order.delivery_agent_id is not None:
            logger.debug("Agent %s lost claim on order %s", agent_id, order_id)
            raise AlreadyAssignedError(
                "Order %s is already assigned to another agent" % order.order_number
            )
        raise InvalidTransitionError(
            "Order %s is %s and not open for dispatch" % (order.order_number, order.status.value),
            current=order.status.value,
        )
