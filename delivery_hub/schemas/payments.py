"""
Payment callback schemas.

The payment gateway is a black box: it reports whether the charge for an
order succeeded, with its own reference for the transaction.
"""

from typing import Optional

from pydantic import BaseModel, Field

from ..state_machine import PaymentStatus


class PaymentCallbackRequest(BaseModel):
    succeeded: bool
    reference: Optional[str] = Field(None, max_length=128)


class PaymentCallbackResponse(BaseModel):
    success: bool = True
    order_id: int
    payment_status: PaymentStatus
