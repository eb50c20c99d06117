from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from .state_machine import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    TrackingPhase,
)

Base = declarative_base()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _enum_column(enum_cls, **kwargs):
    """Store the enum's value (e.g. "picked_up"), not its member name."""
    return Column(
        Enum(
            enum_cls,
            native_enum=False,
            length=32,
            values_callable=lambda members: [m.value for m in members],
            validate_strings=True,
        ),
        **kwargs,
    )


Money = Numeric(10, 2, asdecimal=True)


# --- Collaborator records (restaurants, addresses, catalog, carts) ---

class Restaurant(Base):
    __tablename__ = "restaurants"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(String, nullable=False, index=True)  # user id of the restaurant account
    name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    address = Column(String, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    delivery_fee = Column(Money, nullable=False, default=0)
    # When set, a restaurant cannot confirm an order until payment completes
    requires_prepayment = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    menu_items = relationship("MenuItem", back_populates="restaurant")


class Address(Base):
    __tablename__ = "addresses"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    street = Column(String, nullable=True)
    city = Column(String, nullable=True)
    postal_code = Column(String, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)


class MenuItem(Base):
    __tablename__ = "menu_items"

    id = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    price = Column(Money, nullable=False)
    preparation_time = Column(Integer, nullable=True)  # minutes
    is_available = Column(Boolean, nullable=False, default=True)

    restaurant = relationship("Restaurant", back_populates="menu_items")


class Ingredient(Base):
    __tablename__ = "ingredients"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)


class Cart(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, unique=True, nullable=False, index=True)

    items = relationship("CartItem", back_populates="cart", cascade="all, delete-orphan", order_by="CartItem.id")


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    menu_item_id = Column(Integer, ForeignKey("menu_items.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    special_instructions = Column(Text, nullable=True)

    cart = relationship("Cart", back_populates="items")
    menu_item = relationship("MenuItem")
    exclusions = relationship("CartItemExclusion", back_populates="cart_item", cascade="all, delete-orphan")


class CartItemExclusion(Base):
    """An ingredient the customer asked to leave out of a cart line."""
    __tablename__ = "cart_item_exclusions"

    id = Column(Integer, primary_key=True, index=True)
    cart_item_id = Column(Integer, ForeignKey("cart_items.id", ondelete="CASCADE"), nullable=False, index=True)
    ingredient_id = Column(Integer, ForeignKey("ingredients.id"), nullable=False)

    cart_item = relationship("CartItem", back_populates="exclusions")
    ingredient = relationship("Ingredient")


# --- Orders ---

class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String, unique=True, nullable=False)
    customer_id = Column(String, nullable=False, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    delivery_address_id = Column(Integer, ForeignKey("addresses.id"), nullable=False)
    delivery_agent_id = Column(String, nullable=True, index=True)

    status = _enum_column(OrderStatus, nullable=False, default=OrderStatus.PENDING, index=True)

    # Frozen at creation; never recomputed
    subtotal = Column(Money, nullable=False)
    tax = Column(Money, nullable=False)
    delivery_fee = Column(Money, nullable=False)
    total = Column(Money, nullable=False)

    payment_method = _enum_column(PaymentMethod, nullable=False, default=PaymentMethod.CARD)
    payment_status = _enum_column(PaymentStatus, nullable=False, default=PaymentStatus.PENDING)
    special_instructions = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False, index=True)
    estimated_delivery_time = Column(DateTime(timezone=True), nullable=True)
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    # Set once when the order reaches delivered or cancelled
    completed_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.position")
    tracking = relationship("TrackingRecord", back_populates="order", uselist=False, cascade="all, delete-orphan")
    restaurant = relationship("Restaurant")
    delivery_address = relationship("Address")

    # The dispatch pool query filters on status + agent and sorts by date
    __table_args__ = (
        Index("ix_orders_dispatch_pool", "status", "delivery_agent_id", "created_at"),
    )


class OrderItem(Base):
    """A line item with the menu item's name, price and prep time frozen at order time."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    menu_item_id = Column(Integer, nullable=True)  # reference only, no live join for pricing

    menu_item_name = Column(String, nullable=False)
    unit_price = Column(Money, nullable=False)
    quantity = Column(Integer, nullable=False)
    line_total = Column(Money, nullable=False)
    preparation_time = Column(Integer, nullable=True)
    special_instructions = Column(Text, nullable=True)

    order = relationship("Order", back_populates="items")
    exclusions = relationship("OrderItemExclusion", back_populates="order_item", cascade="all, delete-orphan")


class OrderItemExclusion(Base):
    __tablename__ = "order_item_exclusions"

    id = Column(Integer, primary_key=True, index=True)
    order_item_id = Column(Integer, ForeignKey("order_items.id", ondelete="CASCADE"), nullable=False, index=True)
    ingredient_id = Column(Integer, nullable=False)
    ingredient_name = Column(String, nullable=True)

    order_item = relationship("OrderItem", back_populates="exclusions")

    __table_args__ = (
        UniqueConstraint("order_item_id", "ingredient_id", name="uix_order_item_exclusion"),
    )


class TrackingRecord(Base):
    """Live position state for one order. Only the latest agent fix is kept."""
    __tablename__ = "tracking_records"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), unique=True, nullable=False)

    restaurant_latitude = Column(Float, nullable=False)
    restaurant_longitude = Column(Float, nullable=False)
    customer_latitude = Column(Float, nullable=False)
    customer_longitude = Column(Float, nullable=False)

    current_latitude = Column(Float, nullable=True)
    current_longitude = Column(Float, nullable=True)
    distance_remaining = Column(Float, nullable=True)  # km
    phase = _enum_column(TrackingPhase, nullable=False, default=TrackingPhase.AWAITING_AGENT)
    updated_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    order = relationship("Order", back_populates="tracking")


class Payment(Base):
    """Outcome reported by the payment gateway for an order."""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    amount = Column(Money, nullable=False)
    payment_method = _enum_column(PaymentMethod, nullable=False)
    status = _enum_column(PaymentStatus, nullable=False)
    reference = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
