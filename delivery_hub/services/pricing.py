"""
Pricing and ETA estimation.

Pure helpers used when an order is created and whenever its estimated
completion time is refreshed. Nothing here touches the database.

Money:
------
All amounts are Decimal. subtotal, tax and delivery fee are each rounded
half-up to two decimal places, and total is their exact sum, so
``total == subtotal + tax + delivery_fee`` always holds.

ETA:
----
    eta = now + prep_minutes + distance_km / speed_kmph * 60

rounded up to the next whole minute. The clock is injected so tests can pin
"now".
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Iterable, Optional, Tuple, Union

from ..config import (
    AVERAGE_SPEED_KMPH,
    CURRENCY_QUANTUM,
    DEFAULT_PREP_MINUTES,
    TAX_RATE,
)
from ..errors import EstimationFailure
from ..models import utc_now

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """Convert to Decimal without inheriting binary float noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def round_money(amount: Number) -> Decimal:
    """Round half-up to 2 decimal places for currency."""
    return to_decimal(amount).quantize(CURRENCY_QUANTUM, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PriceQuote:
    """Money fields of an order, computed once at creation."""

    subtotal: Decimal
    tax: Decimal
    delivery_fee: Decimal
    total: Decimal


def quote_order(
    lines: Iterable[Tuple[Number, int]],
    delivery_fee: Number,
    tax_rate: Number = TAX_RATE,
) -> PriceQuote:
    """
    Price a list of (unit price, quantity) pairs.

    Args:
        lines: Frozen unit price and quantity for each line item
        delivery_fee: Restaurant delivery fee
        tax_rate: Fraction of the subtotal charged as tax

    Returns:
        PriceQuote with subtotal, tax, delivery_fee and total

    Raises:
        ValueError: On a negative price or fee, or a quantity below 1
    """
    raw_subtotal = Decimal("0")
    for unit_price, quantity in lines:
        price = to_decimal(unit_price)
        if price < 0:
            raise ValueError("Unit price cannot be negative: %s" % price)
        if not isinstance(quantity, int) or quantity < 1:
            raise ValueError("Quantity must be an integer >= 1, got %r" % (quantity,))
        raw_subtotal += price * quantity

    fee = round_money(delivery_fee or 0)
    if fee < 0:
        raise ValueError("Delivery fee cannot be negative: %s" % fee)

    subtotal = round_money(raw_subtotal)
    tax = round_money(subtotal * to_decimal(tax_rate))

    return PriceQuote(
        subtotal=subtotal,
        tax=tax,
        delivery_fee=fee,
        total=subtotal + tax + fee,
    )


def max_prep_minutes(
    prep_times: Iterable[Optional[int]],
    default: int = DEFAULT_PREP_MINUTES,
) -> int:
    """Longest preparation time among the lines. Lines without one count as ``default``."""
    longest = None
    for prep in prep_times:
        minutes = default if prep is None else prep
        longest = minutes if longest is None else max(longest, minutes)
    return default if longest is None else longest


def ceil_to_minute(moment: datetime) -> datetime:
    """Round a timestamp up to the next whole minute (unchanged if already whole)."""
    floored = moment.replace(second=0, microsecond=0)
    if floored == moment:
        return moment
    return floored + timedelta(minutes=1)


def travel_minutes(distance_km: float, speed_kmph: float) -> float:
    return distance_km / speed_kmph * 60


def arrival_minutes(distance_km: float, speed_kmph: float) -> int:
    """Whole minutes, rounded up, to cover distance_km at speed_kmph."""
    return math.ceil(travel_minutes(distance_km, speed_kmph))


class EtaEstimator:
    """
    Distance/speed heuristic for the estimated completion time.

    Swap in another object with the same ``estimate_completion`` signature
    for a routing-backed estimate.
    """

    def __init__(
        self,
        speed_kmph: float = AVERAGE_SPEED_KMPH,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.speed_kmph = speed_kmph
        self.clock = clock

    def estimate_completion(self, prep_minutes: float, distance_km: float) -> datetime:
        """
        Return now + prep_minutes + travel time, rounded up to the minute.

        Raises:
            EstimationFailure: If any input is negative, NaN or infinite, or
                               the configured speed is not positive.
        """
        for label, value in (("prep_minutes", prep_minutes), ("distance_km", distance_km)):
            if value is None or not math.isfinite(value) or value < 0:
                raise EstimationFailure("Invalid %s: %r" % (label, value))
        if not self.speed_kmph or self.speed_kmph <= 0:
            raise EstimationFailure("Average speed must be positive, got %r" % (self.speed_kmph,))

        total_minutes = prep_minutes + travel_minutes(distance_km, self.speed_kmph)
        return ceil_to_minute(self.clock() + timedelta(minutes=total_minutes))
