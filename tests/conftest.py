import os

# db.py requires DATABASE_URL at import time; tests swap in their own engines.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import math
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import delivery_hub.config as config_mod
import delivery_hub.db as db
from delivery_hub.main import create_app
from delivery_hub.models import (
    Address,
    Base,
    Cart,
    CartItem,
    CartItemExclusion,
    Ingredient,
    MenuItem,
    Restaurant,
)
from delivery_hub.services.coordinator import LifecycleCoordinator
from delivery_hub.services.notifications import NotificationDispatcher
from delivery_hub.services.tracking import TrackingChannel
from delivery_hub.state_machine import ActorRole, OrderStatus

CUSTOMER_ID = "cust-1"
OTHER_CUSTOMER_ID = "cust-2"
OWNER_ID = "owner-1"
AGENT_ID = "agent-1"
OTHER_AGENT_ID = "agent-2"

RESTAURANT_LAT, RESTAURANT_LON = 40.7128, -74.0060
CUSTOMER_LAT, CUSTOMER_LON = 40.7580, -73.9855

FIXED_NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

TEST_PAYMENT_SECRET = "test-payment-secret"


def km_north_of(latitude: float, km: float) -> float:
    """Latitude that lies ``km`` kilometres due north of ``latitude``."""
    return latitude + math.degrees(km / 6371.0)


class RecordingNotifier:
    """Notification provider that keeps what it was sent."""

    def __init__(self):
        self.events = []

    def send(self, event):
        self.events.append(event)

    def types(self):
        return [event.type for event in self.events]


def seed_catalog(session):
    """
    One restaurant with two dishes, a customer address and a cart.

    Cart: 1 x Burger (100.00, no onion) + 2 x Fries (50.00), delivery fee 20.00.
    """
    restaurant = Restaurant(
        owner_id=OWNER_ID,
        name="Harbor Grill",
        phone="555-0100",
        address="1 Harbor St",
        latitude=RESTAURANT_LAT,
        longitude=RESTAURANT_LON,
        delivery_fee=Decimal("20.00"),
        requires_prepayment=False,
    )
    other_restaurant = Restaurant(
        owner_id="owner-2",
        name="Noodle Bar",
        latitude=40.73,
        longitude=-73.99,
        delivery_fee=Decimal("5.00"),
    )
    session.add_all([restaurant, other_restaurant])
    session.flush()

    burger = MenuItem(
        restaurant_id=restaurant.id, name="Burger", price=Decimal("100.00"),
        preparation_time=20, is_available=True,
    )
    fries = MenuItem(
        restaurant_id=restaurant.id, name="Fries", price=Decimal("50.00"),
        preparation_time=10, is_available=True,
    )
    ramen = MenuItem(
        restaurant_id=other_restaurant.id, name="Ramen", price=Decimal("12.00"),
        preparation_time=15, is_available=True,
    )
    onion = Ingredient(name="Onion")
    session.add_all([burger, fries, ramen, onion])
    session.flush()

    address = Address(
        user_id=CUSTOMER_ID, street="200 Park Ave", city="New York",
        postal_code="10166", latitude=CUSTOMER_LAT, longitude=CUSTOMER_LON,
    )
    other_address = Address(
        user_id=OTHER_CUSTOMER_ID, street="9 Elm St", city="New York",
        latitude=40.70, longitude=-74.01,
    )
    session.add_all([address, other_address])
    session.flush()

    cart = Cart(user_id=CUSTOMER_ID)
    session.add(cart)
    session.flush()
    burger_line = CartItem(
        cart_id=cart.id, menu_item_id=burger.id, quantity=1, special_instructions="well done",
    )
    fries_line = CartItem(cart_id=cart.id, menu_item_id=fries.id, quantity=2)
    session.add_all([burger_line, fries_line])
    session.flush()
    session.add(CartItemExclusion(cart_item_id=burger_line.id, ingredient_id=onion.id))
    session.commit()

    return {
        "restaurant_id": restaurant.id,
        "other_restaurant_id": other_restaurant.id,
        "address_id": address.id,
        "other_address_id": other_address.id,
        "burger_id": burger.id,
        "fries_id": fries.id,
        "ramen_id": ramen.id,
        "onion_id": onion.id,
        "cart_id": cart.id,
    }


def refill_cart(session, menu_item_id, quantity=1, user_id=CUSTOMER_ID):
    cart = session.query(Cart).filter(Cart.user_id == user_id).first()
    if cart is None:
        cart = Cart(user_id=user_id)
        session.add(cart)
        session.flush()
    session.add(CartItem(cart_id=cart.id, menu_item_id=menu_item_id, quantity=quantity))
    session.commit()


def advance(coordinator, order_id, *targets):
    """Drive an order through ``targets`` as whichever party owns each move."""
    actors = {
        OrderStatus.CONFIRMED: (OWNER_ID, ActorRole.RESTAURANT),
        OrderStatus.PREPARING: (OWNER_ID, ActorRole.RESTAURANT),
        OrderStatus.READY: (OWNER_ID, ActorRole.RESTAURANT),
        OrderStatus.PICKED_UP: (AGENT_ID, ActorRole.DELIVERY_AGENT),
        OrderStatus.DELIVERED: (AGENT_ID, ActorRole.DELIVERY_AGENT),
        OrderStatus.CANCELLED: (CUSTOMER_ID, ActorRole.CUSTOMER),
    }
    order = None
    for target in targets:
        requester_id, role = actors[target]
        order = coordinator.transition(order_id, requester_id, role, target)
    return order


@pytest.fixture
def session_factory():
    """In-memory SQLite shared across connections via StaticPool."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield TestingSessionLocal
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seeded(db_session):
    return seed_catalog(db_session)


@pytest.fixture
def recorder():
    return RecordingNotifier()


@pytest.fixture
def notifier(recorder):
    dispatcher = NotificationDispatcher(provider=recorder, max_workers=1)
    yield dispatcher
    dispatcher.shutdown()


@pytest.fixture
def channel():
    return TrackingChannel()


@pytest.fixture
def coordinator(db_session, channel, notifier):
    return LifecycleCoordinator(db_session, channel, notifier, clock=lambda: FIXED_NOW)


@pytest.fixture
def placed_order(coordinator, seeded):
    """A pending order placed from the seeded cart."""
    return coordinator.create_order(
        customer_id=CUSTOMER_ID,
        restaurant_id=seeded["restaurant_id"],
        delivery_address_id=seeded["address_id"],
        special_instructions="Ring the bell",
    )


@pytest.fixture
def client(session_factory, seeded, channel, notifier, monkeypatch):
    """FastAPI TestClient bound to the in-memory database.

    Seeds the catalog first so the cart is ready for POST /orders.
    """
    monkeypatch.setattr(config_mod, "PAYMENT_WEBHOOK_SECRET", TEST_PAYMENT_SECRET)

    app = create_app(tracking_channel=channel, notifier=notifier)

    def override_get_db():
        db_sess = session_factory()
        try:
            yield db_sess
        finally:
            db_sess.close()

    app.dependency_overrides[db.get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def headers(user_id, role):
    """Gateway identity headers."""
    return {"X-User-Id": user_id, "X-User-Role": role.value if hasattr(role, "value") else role}


@pytest.fixture
def customer_headers():
    return headers(CUSTOMER_ID, ActorRole.CUSTOMER)


@pytest.fixture
def owner_headers():
    return headers(OWNER_ID, ActorRole.RESTAURANT)


@pytest.fixture
def agent_headers():
    return headers(AGENT_ID, ActorRole.DELIVERY_AGENT)
