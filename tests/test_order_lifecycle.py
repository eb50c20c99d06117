"""
Tests for order creation, transitions, estimates and visibility through the
lifecycle coordinator.
"""
import logging
from datetime import timedelta
from decimal import Decimal

import pytest

from delivery_hub.errors import (
    AddressNotFoundError,
    AddressNotOwnedError,
    EmptyCartError,
    EstimationFailure,
    ForbiddenError,
    InvalidCartError,
    InvalidTransitionError,
    NotFoundError,
    RestaurantNotFoundError,
)
from delivery_hub.models import CartItem, MenuItem, Order, OrderItem, Payment, TrackingRecord
from delivery_hub.services.coordinator import LifecycleCoordinator
from delivery_hub.services.notifications import ORDER_CREATED, ORDER_STATUS_CHANGED
from delivery_hub.services.tracking import TrackingService
from delivery_hub.state_machine import ActorRole, OrderStatus, PaymentStatus, TrackingPhase

from conftest import (
    AGENT_ID,
    CUSTOMER_ID,
    FIXED_NOW,
    OTHER_AGENT_ID,
    OTHER_CUSTOMER_ID,
    OWNER_ID,
    advance,
    refill_cart,
)


def naive(moment):
    """SQLite hands back naive datetimes; compare in naive UTC."""
    return moment.replace(tzinfo=None) if moment.tzinfo else moment


class MutableClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class TestCreateOrder:
    def test_money_is_derived_from_frozen_prices(self, placed_order):
        assert placed_order.status == OrderStatus.PENDING
        assert placed_order.subtotal == Decimal("200.00")
        assert placed_order.tax == Decimal("10.00")
        assert placed_order.delivery_fee == Decimal("20.00")
        assert placed_order.total == Decimal("230.00")
        assert placed_order.total == placed_order.subtotal + placed_order.tax + placed_order.delivery_fee

    def test_line_items_are_snapshots(self, placed_order):
        items = placed_order.items
        assert [item.menu_item_name for item in items] == ["Burger", "Fries"]
        assert [item.quantity for item in items] == [1, 2]
        assert items[0].unit_price == Decimal("100.00")
        assert items[1].line_total == Decimal("100.00")
        assert items[0].preparation_time == 20
        assert items[0].special_instructions == "well done"
        assert [exc.ingredient_name for exc in items[0].exclusions] == ["Onion"]
        assert items[1].exclusions == []

    def test_order_fields(self, placed_order):
        assert placed_order.order_number.startswith("ORD-")
        assert placed_order.customer_id == CUSTOMER_ID
        assert placed_order.delivery_agent_id is None
        assert placed_order.payment_status == PaymentStatus.PENDING
        assert placed_order.special_instructions == "Ring the bell"
        assert placed_order.completed_at is None

    def test_tracking_record_seeded_with_anchors(self, placed_order):
        tracking = placed_order.tracking
        assert tracking is not None
        assert tracking.phase == TrackingPhase.AWAITING_AGENT
        assert tracking.current_latitude is None
        assert tracking.distance_remaining == pytest.approx(5.32, abs=0.05)

    def test_initial_estimate_is_prep_plus_travel(self, placed_order):
        # 20 min prep (Burger) + ~5.32 km at 30 km/h (~10.6 min), rounded up
        expected = FIXED_NOW + timedelta(minutes=31)
        assert naive(placed_order.estimated_delivery_time) == naive(expected)

    def test_cart_is_cleared(self, placed_order, db_session, seeded):
        assert db_session.query(CartItem).filter(CartItem.cart_id == seeded["cart_id"]).count() == 0

    def test_order_numbers_are_unique(self, coordinator, db_session, seeded, placed_order):
        refill_cart(db_session, seeded["fries_id"])
        second = coordinator.create_order(CUSTOMER_ID, seeded["restaurant_id"], seeded["address_id"])
        assert second.order_number != placed_order.order_number

    def test_created_event_is_emitted(self, placed_order, notifier, recorder):
        notifier.flush(timeout=5)
        assert recorder.types() == [ORDER_CREATED]
        assert recorder.events[0].order_id == placed_order.id

    def test_empty_cart(self, coordinator, placed_order, seeded):
        with pytest.raises(EmptyCartError):
            coordinator.create_order(CUSTOMER_ID, seeded["restaurant_id"], seeded["address_id"])

    def test_customer_without_cart(self, coordinator, seeded):
        with pytest.raises(EmptyCartError):
            coordinator.create_order("nobody", seeded["restaurant_id"], seeded["address_id"])

    def test_address_of_another_customer(self, coordinator, seeded):
        with pytest.raises(AddressNotOwnedError):
            coordinator.create_order(CUSTOMER_ID, seeded["restaurant_id"], seeded["other_address_id"])

    def test_unknown_address(self, coordinator, seeded):
        with pytest.raises(AddressNotFoundError):
            coordinator.create_order(CUSTOMER_ID, seeded["restaurant_id"], 9999)

    def test_unknown_restaurant(self, coordinator, seeded):
        with pytest.raises(RestaurantNotFoundError):
            coordinator.create_order(CUSTOMER_ID, 9999, seeded["address_id"])

    def test_item_from_another_restaurant(self, coordinator, db_session, seeded):
        refill_cart(db_session, seeded["ramen_id"])

        with pytest.raises(InvalidCartError):
            coordinator.create_order(CUSTOMER_ID, seeded["restaurant_id"], seeded["address_id"])

        assert db_session.query(Order).count() == 0
        assert db_session.query(CartItem).filter(CartItem.cart_id == seeded["cart_id"]).count() == 3

    def test_unavailable_item(self, coordinator, db_session, seeded):
        db_session.query(MenuItem).filter(MenuItem.id == seeded["fries_id"]).update(
            {MenuItem.is_available: False}, synchronize_session=False
        )
        db_session.commit()

        with pytest.raises(InvalidCartError):
            coordinator.create_order(CUSTOMER_ID, seeded["restaurant_id"], seeded["address_id"])


class TestCreateOrderAtomicity:
    def test_tracking_failure_leaves_no_order_and_keeps_cart(self, coordinator, db_session, seeded, monkeypatch):
        def explode(self, *args, **kwargs):
            raise RuntimeError("tracking store unavailable")

        monkeypatch.setattr(TrackingService, "create_for_order", explode)

        with pytest.raises(RuntimeError):
            coordinator.create_order(CUSTOMER_ID, seeded["restaurant_id"], seeded["address_id"])

        assert db_session.query(Order).count() == 0
        assert db_session.query(OrderItem).count() == 0
        assert db_session.query(TrackingRecord).count() == 0
        assert db_session.query(CartItem).filter(CartItem.cart_id == seeded["cart_id"]).count() == 2

    def test_no_event_for_failed_creation(self, coordinator, seeded, notifier, recorder, monkeypatch):
        def explode(self, *args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(TrackingService, "create_for_order", explode)

        with pytest.raises(RuntimeError):
            coordinator.create_order(CUSTOMER_ID, seeded["restaurant_id"], seeded["address_id"])

        notifier.flush(timeout=5)
        assert recorder.events == []

    def test_estimation_failure_does_not_block_creation(self, coordinator, seeded, monkeypatch, caplog):
        def fail(prep, distance):
            raise EstimationFailure("no estimate")

        monkeypatch.setattr(coordinator.estimator, "estimate_completion", fail)

        with caplog.at_level(logging.WARNING, logger="delivery_hub"):
            order = coordinator.create_order(CUSTOMER_ID, seeded["restaurant_id"], seeded["address_id"])

        assert order.status == OrderStatus.PENDING
        assert order.estimated_delivery_time is None
        assert any("ETA estimation failed" in r.getMessage() for r in caplog.records)


class TestFrozenMoney:
    def test_catalog_edit_does_not_change_order(self, coordinator, db_session, seeded, placed_order):
        db_session.query(MenuItem).filter(MenuItem.id == seeded["burger_id"]).update(
            {MenuItem.price: Decimal("999.00"), MenuItem.name: "Deluxe Burger"},
            synchronize_session=False,
        )
        db_session.commit()

        order = coordinator.get_order(placed_order.id, CUSTOMER_ID, ActorRole.CUSTOMER)

        assert order.total == Decimal("230.00")
        assert order.items[0].unit_price == Decimal("100.00")
        assert order.items[0].menu_item_name == "Burger"

    def test_totals_unchanged_through_lifecycle(self, coordinator, placed_order):
        advance(coordinator, placed_order.id, OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY)
        coordinator.claim(placed_order.id, AGENT_ID)
        order = advance(coordinator, placed_order.id, OrderStatus.PICKED_UP, OrderStatus.DELIVERED)

        assert (order.subtotal, order.tax, order.delivery_fee, order.total) == (
            Decimal("200.00"), Decimal("10.00"), Decimal("20.00"), Decimal("230.00"),
        )


class TestCancellation:
    def test_cancel_then_confirm_is_invalid(self, coordinator, placed_order):
        cancelled = coordinator.cancel(placed_order.id, CUSTOMER_ID)
        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.completed_at is not None
        assert cancelled.tracking.phase == TrackingPhase.CANCELLED

        with pytest.raises(InvalidTransitionError):
            coordinator.transition(placed_order.id, OWNER_ID, ActorRole.RESTAURANT, OrderStatus.CONFIRMED)

    def test_cancel_after_confirm(self, coordinator, placed_order):
        advance(coordinator, placed_order.id, OrderStatus.CONFIRMED)
        assert coordinator.cancel(placed_order.id, CUSTOMER_ID).status == OrderStatus.CANCELLED

    def test_cannot_cancel_once_preparing(self, coordinator, placed_order):
        advance(coordinator, placed_order.id, OrderStatus.CONFIRMED, OrderStatus.PREPARING)
        with pytest.raises(InvalidTransitionError):
            coordinator.cancel(placed_order.id, CUSTOMER_ID)

    def test_completed_at_is_not_overwritten(self, coordinator, placed_order):
        first = coordinator.cancel(placed_order.id, CUSTOMER_ID).completed_at
        with pytest.raises(InvalidTransitionError):
            coordinator.cancel(placed_order.id, CUSTOMER_ID)
        order = coordinator.get_order(placed_order.id, CUSTOMER_ID, ActorRole.CUSTOMER)
        assert order.completed_at == first

    def test_unknown_order(self, coordinator, seeded):
        with pytest.raises(NotFoundError):
            coordinator.cancel(9999, CUSTOMER_ID)


class TestEstimateRefresh:
    @pytest.fixture
    def clock(self):
        return MutableClock(FIXED_NOW)

    @pytest.fixture
    def timed(self, db_session, channel, notifier, clock):
        return LifecycleCoordinator(db_session, channel, notifier, clock=clock)

    @pytest.fixture
    def order(self, timed, seeded):
        return timed.create_order(CUSTOMER_ID, seeded["restaurant_id"], seeded["address_id"])

    def test_confirm_recomputes_from_now(self, timed, clock, order):
        clock.now = FIXED_NOW + timedelta(hours=1)
        confirmed = advance(timed, order.id, OrderStatus.CONFIRMED)
        assert naive(confirmed.estimated_delivery_time) == naive(clock.now + timedelta(minutes=31))

    def test_ready_keeps_previous_estimate(self, timed, clock, order):
        advance(timed, order.id, OrderStatus.CONFIRMED, OrderStatus.PREPARING)
        before = timed.get_order(order.id, CUSTOMER_ID, ActorRole.CUSTOMER).estimated_delivery_time

        clock.now = FIXED_NOW + timedelta(hours=2)
        ready = advance(timed, order.id, OrderStatus.READY)

        assert ready.estimated_delivery_time == before

    def test_picked_up_counts_travel_only(self, timed, clock, order):
        advance(timed, order.id, OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY)
        timed.claim(order.id, AGENT_ID)

        clock.now = FIXED_NOW + timedelta(minutes=40)
        picked = advance(timed, order.id, OrderStatus.PICKED_UP)

        # ~5.32 km at 30 km/h is ~10.6 minutes, no prep time any more
        assert naive(picked.estimated_delivery_time) == naive(clock.now + timedelta(minutes=11))
        assert picked.tracking.phase == TrackingPhase.EN_ROUTE

    def test_picked_up_uses_live_distance(self, timed, clock, order):
        advance(timed, order.id, OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY)
        timed.claim(order.id, AGENT_ID)
        # Agent reports from the customer's doorstep
        timed.update_agent_location(order.id, AGENT_ID, 40.7580, -73.9855)

        picked = advance(timed, order.id, OrderStatus.PICKED_UP)

        assert naive(picked.estimated_delivery_time) == naive(clock.now)

    def test_estimation_failure_keeps_previous_estimate(self, timed, order, monkeypatch, caplog):
        previous = order.estimated_delivery_time

        def fail(prep, distance):
            raise EstimationFailure("routing down")

        monkeypatch.setattr(timed.estimator, "estimate_completion", fail)

        with caplog.at_level(logging.WARNING, logger="delivery_hub"):
            confirmed = advance(timed, order.id, OrderStatus.CONFIRMED)

        assert confirmed.status == OrderStatus.CONFIRMED
        assert confirmed.estimated_delivery_time == previous
        assert any("ETA estimation failed" in r.getMessage() for r in caplog.records)


class TestVisibility:
    def test_parties_can_read(self, coordinator, placed_order):
        assert coordinator.get_order(placed_order.id, CUSTOMER_ID, ActorRole.CUSTOMER).id == placed_order.id
        assert coordinator.get_order(placed_order.id, OWNER_ID, ActorRole.RESTAURANT).id == placed_order.id

    @pytest.mark.parametrize("requester,role", [
        (OTHER_CUSTOMER_ID, ActorRole.CUSTOMER),
        ("owner-2", ActorRole.RESTAURANT),
        (AGENT_ID, ActorRole.DELIVERY_AGENT),
    ])
    def test_outsiders_cannot_read(self, coordinator, placed_order, requester, role):
        with pytest.raises(ForbiddenError):
            coordinator.get_order(placed_order.id, requester, role)

    def test_assigned_agent_can_read(self, coordinator, placed_order):
        advance(coordinator, placed_order.id, OrderStatus.CONFIRMED, OrderStatus.PREPARING)
        coordinator.claim(placed_order.id, AGENT_ID)

        assert coordinator.get_order(placed_order.id, AGENT_ID, ActorRole.DELIVERY_AGENT).delivery_agent_id == AGENT_ID
        with pytest.raises(ForbiddenError):
            coordinator.get_order(placed_order.id, OTHER_AGENT_ID, ActorRole.DELIVERY_AGENT)

    def test_missing_order(self, coordinator, seeded):
        with pytest.raises(NotFoundError):
            coordinator.get_order(9999, CUSTOMER_ID, ActorRole.CUSTOMER)


class TestListings:
    @pytest.fixture
    def three_orders(self, coordinator, db_session, seeded, placed_order):
        orders = [placed_order]
        for _ in range(2):
            refill_cart(db_session, seeded["fries_id"])
            orders.append(coordinator.create_order(CUSTOMER_ID, seeded["restaurant_id"], seeded["address_id"]))
        advance(coordinator, orders[0].id, OrderStatus.CANCELLED)
        return orders

    def test_customer_listing_newest_first(self, coordinator, three_orders):
        orders, total = coordinator.list_orders_for_customer(CUSTOMER_ID, None, page=1, limit=10)
        assert total == 3
        assert [o.id for o in orders] == [o.id for o in reversed(three_orders)]

    def test_status_filter(self, coordinator, three_orders):
        orders, total = coordinator.list_orders_for_customer(CUSTOMER_ID, OrderStatus.CANCELLED, page=1, limit=10)
        assert total == 1
        assert orders[0].id == three_orders[0].id

    def test_pagination(self, coordinator, three_orders):
        first, total = coordinator.list_orders_for_customer(CUSTOMER_ID, None, page=1, limit=2)
        second, _ = coordinator.list_orders_for_customer(CUSTOMER_ID, None, page=2, limit=2)
        assert total == 3
        assert len(first) == 2
        assert len(second) == 1
        assert {o.id for o in first} | {o.id for o in second} == {o.id for o in three_orders}

    def test_restaurant_listing(self, coordinator, three_orders):
        orders, total = coordinator.list_orders_for_restaurant(OWNER_ID, None, page=1, limit=10)
        assert total == 3
        _, other_total = coordinator.list_orders_for_restaurant("owner-2", None, page=1, limit=10)
        assert other_total == 0

    def test_agent_listing(self, coordinator, three_orders):
        advance(coordinator, three_orders[1].id, OrderStatus.CONFIRMED, OrderStatus.PREPARING)
        coordinator.claim(three_orders[1].id, AGENT_ID)

        orders, total = coordinator.list_orders_for_agent(AGENT_ID, None, page=1, limit=10)
        assert total == 1
        assert orders[0].id == three_orders[1].id


class TestEvents:
    def test_transition_notifies_and_publishes(self, coordinator, channel, placed_order, notifier, recorder):
        subscription = channel.subscribe(placed_order.id, "customer-screen")

        advance(coordinator, placed_order.id, OrderStatus.CONFIRMED)

        event = subscription.get(timeout=1)
        assert event["type"] == ORDER_STATUS_CHANGED
        assert event["status"] == "confirmed"
        notifier.flush(timeout=5)
        assert recorder.types() == [ORDER_CREATED, ORDER_STATUS_CHANGED]

    def test_failed_transition_emits_nothing(self, coordinator, channel, placed_order, notifier, recorder):
        subscription = channel.subscribe(placed_order.id, "customer-screen")

        with pytest.raises(InvalidTransitionError):
            coordinator.transition(placed_order.id, OWNER_ID, ActorRole.RESTAURANT, OrderStatus.READY)

        assert subscription.get(timeout=0.05) is None
        notifier.flush(timeout=5)
        assert recorder.types() == [ORDER_CREATED]

    def test_failing_provider_does_not_fail_transition(self, db_session, channel, seeded):
        from delivery_hub.services.notifications import NotificationDispatcher

        class BrokenProvider:
            def send(self, event):
                raise ConnectionError("push service down")

        dispatcher = NotificationDispatcher(provider=BrokenProvider(), max_workers=1)
        try:
            coordinator = LifecycleCoordinator(db_session, channel, dispatcher, clock=lambda: FIXED_NOW)
            order = coordinator.create_order(CUSTOMER_ID, seeded["restaurant_id"], seeded["address_id"])
            confirmed = advance(coordinator, order.id, OrderStatus.CONFIRMED)
            dispatcher.flush(timeout=5)
        finally:
            dispatcher.shutdown()

        assert confirmed.status == OrderStatus.CONFIRMED


class TestPayments:
    def test_completed_payment(self, coordinator, db_session, placed_order):
        order = coordinator.record_payment(placed_order.id, True, "ch_A")

        assert order.payment_status == PaymentStatus.COMPLETED
        payment = db_session.query(Payment).one()
        assert payment.amount == Decimal("230.00")
        assert payment.reference == "ch_A"

    def test_retry_after_failure(self, coordinator, db_session, placed_order):
        coordinator.record_payment(placed_order.id, False, "ch_A")
        order = coordinator.record_payment(placed_order.id, True, "ch_B")

        assert order.payment_status == PaymentStatus.COMPLETED
        assert db_session.query(Payment).count() == 2

    def test_callback_after_completion_is_rejected(self, coordinator, db_session, placed_order):
        coordinator.record_payment(placed_order.id, True, "ch_A")

        with pytest.raises(InvalidTransitionError):
            coordinator.record_payment(placed_order.id, False, "ch_B")

        assert db_session.query(Payment).count() == 1

    def test_interleaved_callbacks_complete_once(
        self, coordinator, db_session, channel, notifier, placed_order, monkeypatch
    ):
        rival = LifecycleCoordinator(db_session, channel, notifier, clock=lambda: FIXED_NOW)
        read_order = coordinator.orders.get

        def read_then_rival_completes(order_id):
            order = read_order(order_id)
            rival.record_payment(order_id, True, "ch_B")
            return order

        monkeypatch.setattr(coordinator.orders, "get", read_then_rival_completes)

        with pytest.raises(InvalidTransitionError):
            coordinator.record_payment(placed_order.id, True, "ch_A")

        rows = db_session.query(Payment.reference, Payment.status).all()
        assert rows == [("ch_B", PaymentStatus.COMPLETED)]

    def test_unknown_order(self, coordinator, seeded):
        with pytest.raises(NotFoundError):
            coordinator.record_payment(9999, True)
