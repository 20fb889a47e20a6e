# Overview: Service-layer operations for carts; session-scoped line items and totals.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

from ..models import Product
from ..validation import ValidationError
from .errors import OutOfStock, ProductNotFound, StockLimitExceeded


@dataclass
class CartItem:
    """One product in the cart. unit_price_cents is the price seen when it was added."""
    product_id: int
    name: str
    sku: str
    unit_price_cents: int
    quantity: int
    available: int

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "sku": self.sku,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "available": self.available,
            "line_total_cents": self.line_total_cents,
        }


@dataclass(frozen=True)
class QuantityUpdate:
    """Result of Cart.set_quantity. clamped=True means the quantity was lowered to what is available."""
    product_id: int
    quantity: int
    removed: bool = False
    clamped: bool = False
    message: str | None = None


def default_tax_rate_bps() -> int:
    return int(current_app.config.get("TAX_RATE_BPS", 500))


def compute_tax_cents(subtotal_cents: int, tax_rate_bps: int) -> int:
    """Tax in cents, rounded half-up from basis points."""
    tax = (Decimal(subtotal_cents) * Decimal(tax_rate_bps) / Decimal(10_000))
    return int(tax.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class Cart:
    """
    Session-scoped cart.

    One entry per product, in the order products were first added. Totals are
    derived on every read and never stored. The cart never touches the
    ledger: stock limits here are advisory, checkout re-validates.
    """

    def __init__(self, tax_rate_bps: int | None = None):
        if tax_rate_bps is None:
            tax_rate_bps = default_tax_rate_bps()
        if tax_rate_bps < 0:
            raise ValidationError("tax_rate_bps must be >= 0")
        self.tax_rate_bps = tax_rate_bps
        self._items: dict[int, CartItem] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(list(self._items.values()))

    @property
    def items(self) -> list[CartItem]:
        return list(self._items.values())

    def is_empty(self) -> bool:
        return not self._items

    def get(self, product_id: int) -> CartItem | None:
        return self._items.get(product_id)

    def add(
        self,
        product: Product,
        quantity: int = 1,
        available: int | None = None,
        *,
        enforce_stock: bool = True,
    ) -> CartItem:
        """
        Add quantity of product; a repeated add increments the existing entry.

        available defaults to product.stock (all locations). With
        enforce_stock=False the quantity is taken as requested and available
        is only recorded; checkout does the stock check.
        """
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise ValidationError("quantity must be a positive integer")
        if available is None:
            available = product.stock

        if enforce_stock and available <= 0:
            raise OutOfStock(
                f"{product.name} is out of stock",
                details={"product_id": product.id, "available": 0},
            )

        existing = self._items.get(product.id)
        new_quantity = quantity + (existing.quantity if existing else 0)
        if enforce_stock and new_quantity > available:
            raise StockLimitExceeded(
                f"Only {available} units of {product.name} available",
                details={
                    "product_id": product.id,
                    "available": available,
                    "requested_quantity": new_quantity,
                },
            )

        if existing is not None:
            existing.quantity = new_quantity
            existing.available = available
            return existing

        item = CartItem(
            product_id=product.id,
            name=product.name,
            sku=product.sku,
            unit_price_cents=product.price_cents,
            quantity=quantity,
            available=available,
        )
        self._items[product.id] = item
        return item

    def set_quantity(self, product_id: int, quantity: int) -> QuantityUpdate:
        item = self._items.get(product_id)
        if item is None:
            raise ProductNotFound(
                f"Product {product_id} is not in the cart",
                details={"product_id": product_id},
            )
        if not isinstance(quantity, int) or isinstance(quantity, bool):
            raise ValidationError("quantity must be an integer")

        if quantity <= 0:
            del self._items[product_id]
            return QuantityUpdate(product_id=product_id, quantity=0, removed=True)

        if quantity > item.available:
            item.quantity = item.available
            return QuantityUpdate(
                product_id=product_id,
                quantity=item.available,
                clamped=True,
                message=f"Only {item.available} units available",
            )

        item.quantity = quantity
        return QuantityUpdate(product_id=product_id, quantity=quantity)

    def remove(self, product_id: int) -> None:
        self._items.pop(product_id, None)

    def clear(self) -> None:
        self._items.clear()

    @property
    def subtotal_cents(self) -> int:
        return sum(item.line_total_cents for item in self._items.values())

    @property
    def tax_cents(self) -> int:
        return compute_tax_cents(self.subtotal_cents, self.tax_rate_bps)

    @property
    def total_cents(self) -> int:
        return self.subtotal_cents + self.tax_cents

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self._items.values())

    def to_dict(self) -> dict:
        return {
            "items": [item.to_dict() for item in self._items.values()],
            "item_count": self.item_count,
            "tax_rate_bps": self.tax_rate_bps,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
        }


def build_cart(
    items: list[dict],
    location_id: int | None = None,
    tax_rate_bps: int | None = None,
    *,
    validate_stock: bool = True,
) -> Cart:
    """
    Build a Cart from [{"product_id", "quantity"}] with availability taken
    from ledger stock at the location.

    Entries for the same product are merged through Cart.add, so the merged
    quantity is checked against stock as a whole. validate_stock=False skips
    that check and leaves it to checkout, which reports every short product.
    """
    from . import inventory_service, products_service

    cart = Cart(tax_rate_bps=tax_rate_bps)
    for entry in items:
        product = products_service.get_product(entry["product_id"])
        available = inventory_service.get_quantity(product.id, location_id)
        cart.add(product, entry.get("quantity", 1), available=available, enforce_stock=validate_stock)
    return cart
