"""
Tests for money quotes, ETA estimation and distance.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from delivery_hub.errors import EstimationFailure
from delivery_hub.services.geo import haversine_km
from delivery_hub.services.pricing import (
    EtaEstimator,
    arrival_minutes,
    ceil_to_minute,
    max_prep_minutes,
    quote_order,
    round_money,
)

NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class TestQuoteOrder:
    def test_two_lines_with_tax_and_fee(self):
        quote = quote_order([(100, 1), (50, 2)], delivery_fee=20, tax_rate=Decimal("0.05"))

        assert quote.subtotal == Decimal("200.00")
        assert quote.tax == Decimal("10.00")
        assert quote.delivery_fee == Decimal("20.00")
        assert quote.total == Decimal("230.00")

    def test_total_is_exact_sum_of_parts(self):
        quote = quote_order(
            [(Decimal("12.99"), 3), (Decimal("4.35"), 1), ("0.99", 7)],
            delivery_fee="3.49",
            tax_rate="0.0875",
        )
        assert quote.total == quote.subtotal + quote.tax + quote.delivery_fee

    def test_tax_rounds_half_up(self):
        # 0.10 * 0.05 = 0.005 exactly; half-even would give 0.00
        quote = quote_order([("0.10", 1)], delivery_fee=0, tax_rate="0.05")
        assert quote.tax == Decimal("0.01")

    def test_round_money_half_up(self):
        assert round_money("2.675") == Decimal("2.68")
        assert round_money("2.665") == Decimal("2.67")
        assert round_money("2.664") == Decimal("2.66")

    def test_float_prices_do_not_leak_binary_noise(self):
        quote = quote_order([(0.1, 3)], delivery_fee=0.2, tax_rate=0)
        assert quote.subtotal == Decimal("0.30")
        assert quote.total == Decimal("0.50")

    def test_missing_delivery_fee_counts_as_zero(self):
        quote = quote_order([(10, 1)], delivery_fee=None, tax_rate=0)
        assert quote.delivery_fee == Decimal("0.00")
        assert quote.total == Decimal("10.00")

    @pytest.mark.parametrize("lines", [[(-1, 1)], [(10, 0)], [(10, 1.5)]])
    def test_invalid_lines_rejected(self, lines):
        with pytest.raises(ValueError):
            quote_order(lines, delivery_fee=0)

    def test_negative_fee_rejected(self):
        with pytest.raises(ValueError):
            quote_order([(10, 1)], delivery_fee=-2)


class TestPrepMinutes:
    def test_longest_prep_time_wins(self):
        assert max_prep_minutes([20, 10, 5]) == 20

    def test_unknown_prep_time_uses_default(self):
        assert max_prep_minutes([None, 5], default=15) == 15
        assert max_prep_minutes([None, 25], default=15) == 25

    def test_no_lines_uses_default(self):
        assert max_prep_minutes([], default=15) == 15


class TestEtaEstimator:
    def test_ceil_to_minute(self):
        assert ceil_to_minute(NOW) == NOW
        assert ceil_to_minute(NOW + timedelta(seconds=1)) == NOW + timedelta(minutes=1)
        assert ceil_to_minute(NOW + timedelta(seconds=59, microseconds=999)) == NOW + timedelta(minutes=1)

    def test_prep_plus_travel(self):
        estimator = EtaEstimator(speed_kmph=30, clock=lambda: NOW)
        # 15 min prep + 5 km at 30 km/h (10 min)
        assert estimator.estimate_completion(15, 5) == NOW + timedelta(minutes=25)

    def test_rounds_up_to_next_minute(self):
        estimator = EtaEstimator(speed_kmph=30, clock=lambda: NOW)
        # 5.1 km at 30 km/h = 10.2 min
        assert estimator.estimate_completion(15, 5.1) == NOW + timedelta(minutes=26)

    def test_zero_distance_is_prep_only(self):
        estimator = EtaEstimator(speed_kmph=30, clock=lambda: NOW)
        assert estimator.estimate_completion(20, 0) == NOW + timedelta(minutes=20)

    @pytest.mark.parametrize("prep,distance", [(-1, 5), (15, -0.5), (15, float("nan")), (float("inf"), 1), (None, 1)])
    def test_invalid_inputs_raise_estimation_failure(self, prep, distance):
        estimator = EtaEstimator(speed_kmph=30, clock=lambda: NOW)
        with pytest.raises(EstimationFailure):
            estimator.estimate_completion(prep, distance)

    def test_non_positive_speed_raises_estimation_failure(self):
        estimator = EtaEstimator(speed_kmph=0, clock=lambda: NOW)
        with pytest.raises(EstimationFailure):
            estimator.estimate_completion(15, 5)

    def test_arrival_minutes_round_up(self):
        assert arrival_minutes(7.5, 15) == 30
        assert arrival_minutes(5.01, 15) == 21
        assert arrival_minutes(0, 15) == 0


class TestHaversine:
    def test_same_point_is_zero(self):
        assert haversine_km(40.7, -74.0, 40.7, -74.0) == 0

    def test_one_degree_of_latitude(self):
        assert haversine_km(0, 0, 1, 0) == pytest.approx(111.19, abs=0.01)

    def test_symmetric(self):
        there = haversine_km(40.7128, -74.0060, 40.7580, -73.9855)
        back = haversine_km(40.7580, -73.9855, 40.7128, -74.0060)
        assert there == pytest.approx(back)
        assert there == pytest.approx(5.32, abs=0.05)
