"""
Payment Callback Route
======================

The payment gateway reports the outcome of a charge here. The request must
carry the shared secret in X-Payment-Secret (see auth.verify_payment_secret).

A completed payment is what lets the restaurant confirm an order when it
requires pre-payment; it does not confirm the order by itself.

Endpoints:
----------
- POST /payments/{order_id}/callback
"""

import logging

from fastapi import APIRouter, Depends

from ..auth import verify_payment_secret
from ..dependencies import get_coordinator
from ..schemas.payments import PaymentCallbackRequest, PaymentCallbackResponse
from ..services.coordinator import LifecycleCoordinator


logger = logging.getLogger(__name__)

# Router definition
payments_router = APIRouter(prefix="/payments", tags=["Payments"])


@payments_router.post("/{order_id}/callback", response_model=PaymentCallbackResponse)
def payment_callback(
    order_id: int,
    payload: PaymentCallbackRequest,
    _gateway: None = Depends(verify_payment_secret),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
) -> PaymentCallbackResponse:
    order = coordinator.record_payment(order_id, payload.succeeded, payload.reference)
    return PaymentCallbackResponse(order_id=order.id, payment_status=order.payment_status)
