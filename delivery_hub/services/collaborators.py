"""
Collaborator Interfaces for Order Creation and Payment
======================================================

The lifecycle coordinator does not own carts, the menu catalog, customer
addresses or payments. It reaches them through the small providers below,
which read the collaborator tables in the caller's session so that order
creation and cart clearing commit (or roll back) together.

Providers:
----------
- CartProvider: current cart lines for a customer, and clearing them
- CatalogProvider: frozen snapshot of a menu item (name, price, prep time)
- DirectoryProvider: restaurants and delivery addresses
- PaymentRecorder: records the gateway's outcome for an order
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session, selectinload

from ..models import (
    Address,
    Cart,
    CartItem,
    CartItemExclusion,
    MenuItem,
    Payment,
    Restaurant,
)
from ..state_machine import PaymentMethod, PaymentStatus


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MenuItemSnapshot:
    """Catalog values copied onto an order line. Later catalog edits do not reach it."""

    menu_item_id: int
    restaurant_id: int
    name: str
    unit_price: Decimal
    preparation_time: Optional[int]
    is_available: bool = True


@dataclass(frozen=True)
class ExcludedIngredient:
    ingredient_id: int
    name: Optional[str]


@dataclass
class CartLine:
    menu_item_id: int
    quantity: int
    special_instructions: Optional[str] = None
    exclusions: List[ExcludedIngredient] = field(default_factory=list)


@dataclass
class CartSnapshot:
    cart_id: Optional[int]
    customer_id: str
    lines: List[CartLine] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.lines


class CartProvider:
    """Reads and clears the customer's cart."""

    def __init__(self, db: Session):
        self.db = db

    def get_cart(self, customer_id: str) -> CartSnapshot:
        cart = (
            self.db.query(Cart)
            .options(
                selectinload(Cart.items)
                .selectinload(CartItem.exclusions)
                .selectinload(CartItemExclusion.ingredient)
            )
            .filter(Cart.user_id == customer_id)
            .first()
        )
        if cart is None:
            return CartSnapshot(cart_id=None, customer_id=customer_id)

        lines = [
            CartLine(
                menu_item_id=item.menu_item_id,
                quantity=item.quantity,
                special_instructions=item.special_instructions,
                exclusions=[
                    ExcludedIngredient(
                        ingredient_id=exc.ingredient_id,
                        name=exc.ingredient.name if exc.ingredient else None,
                    )
                    for exc in item.exclusions
                ],
            )
            for item in cart.items
        ]
        return CartSnapshot(cart_id=cart.id, customer_id=customer_id, lines=lines)

    def clear(self, cart: CartSnapshot) -> None:
        """Delete the cart's lines. Runs inside the caller's transaction."""
        if cart.cart_id is None:
            return
        item_ids = self.db.query(CartItem.id).filter(CartItem.cart_id == cart.cart_id)
        (
            self.db.query(CartItemExclusion)
            .filter(CartItemExclusion.cart_item_id.in_(item_ids.scalar_subquery()))
            .delete(synchronize_session=False)
        )
        (
            self.db.query(CartItem)
            .filter(CartItem.cart_id == cart.cart_id)
            .delete(synchronize_session=False)
        )


class CatalogProvider:
    """Read-only access to menu items, used only while an order is being created."""

    def __init__(self, db: Session):
        self.db = db

    def snapshot(self, menu_item_id: int) -> Optional[MenuItemSnapshot]:
        item = self.db.query(MenuItem).filter(MenuItem.id == menu_item_id).first()
        if item is None:
            return None
        return MenuItemSnapshot(
            menu_item_id=item.id,
            restaurant_id=item.restaurant_id,
            name=item.name,
            unit_price=item.price,
            preparation_time=item.preparation_time,
            is_available=bool(item.is_available),
        )


class DirectoryProvider:
    """Restaurants and delivery addresses."""

    def __init__(self, db: Session):
        self.db = db

    def get_restaurant(self, restaurant_id: int) -> Optional[Restaurant]:
        return self.db.query(Restaurant).filter(Restaurant.id == restaurant_id).first()

    def get_address(self, address_id: int) -> Optional[Address]:
        return self.db.query(Address).filter(Address.id == address_id).first()


class PaymentRecorder:
    """Stores a payment outcome reported by the gateway."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        order_id: int,
        amount: Decimal,
        method: PaymentMethod,
        succeeded: bool,
        reference: Optional[str] = None,
    ) -> Payment:
        status = PaymentStatus.COMPLETED if succeeded else PaymentStatus.FAILED
        payment = Payment(
            order_id=order_id,
            amount=amount,
            payment_method=method,
            status=status,
            reference=reference,
        )
        self.db.add(payment)
        self.db.flush()
        logger.info("Payment %s recorded for order %s: %s", payment.id, order_id, status.value)
        return payment
