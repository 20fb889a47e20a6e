# backend/retail_ledger/services/products_service.py
"""
Catalog service: products and inventory locations.

Only what the ledger needs: create, look up, change status. Stock is never
written here; opening stock goes through inventory_service.restock so it
lands in the ledger like any other stock change.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, InventoryLocation, PRODUCT_STATUSES
from ..validation import ConflictError, ValidationError, MAX_PRICE_CENTS
from .errors import ProductNotFound, LocationNotFound
from .concurrency import lock_for_update, run_with_retry

PRODUCT_MUTABLE_FIELDS = {"name", "description", "category", "price_cents", "status"}


def get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise ProductNotFound(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def list_products(status: str | None = None, category: str | None = None) -> list[Product]:
    query = db.session.query(Product)
    if status is not None:
        query = query.filter(Product.status == status)
    if category is not None:
        query = query.filter(Product.category == category)
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def _validate_product_fields(fields: dict) -> None:
    if "price_cents" in fields:
        price = fields["price_cents"]
        if not isinstance(price, int) or isinstance(price, bool):
            raise ValidationError("price_cents must be an integer")
        if price < 0:
            raise ValidationError("price_cents must be >= 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"price_cents cannot exceed {MAX_PRICE_CENTS}")
    if "status" in fields and fields["status"] not in PRODUCT_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(PRODUCT_STATUSES)}")


def create_product(
    *,
    sku: str,
    name: str,
    price_cents: int,
    category: str | None = None,
    description: str | None = None,
    status: str = "Active",
    initial_stock: int = 0,
    location_id: int | None = None,
    low_stock_threshold: int | None = None,
    actor_id: str | None = None,
) -> Product:
    """
    Create a product and its stock record at the location.

    initial_stock > 0 is booked as an "Opening balance" restock entry in the
    same transaction, so the ledger invariant holds from the first row.
    """
    from . import inventory_service

    _validate_product_fields({"price_cents": price_cents, "status": status})
    if initial_stock < 0:
        raise ValidationError("initial_stock must be >= 0")

    def _op():
        product = Product(
            sku=sku.strip(),
            name=name.strip(),
            price_cents=price_cents,
            category=category,
            description=description,
            status=status,
        )
        db.session.add(product)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError(f"SKU {sku!r} already exists")

        record = inventory_service.ensure_record(product.id, location_id)
        if low_stock_threshold is not None:
            record.low_stock_threshold = low_stock_threshold

        if initial_stock > 0:
            inventory_service.restock(
                product_id=product.id,
                quantity=initial_stock,
                location_id=record.location_id,
                note="Opening balance",
                actor_id=actor_id,
                commit=False,
            )

        db.session.commit()
        current_app.logger.info("Created product %s (%s) with opening stock %d", product.id, product.sku, initial_stock)
        return product

    return run_with_retry(_op)


def update_product(product_id: int, patch: dict) -> Product:
    fields = {k: v for k, v in patch.items() if k in PRODUCT_MUTABLE_FIELDS}
    _validate_product_fields(fields)

    def _op():
        product = get_product(product_id)
        for k, v in fields.items():
            setattr(product, k, v)
        db.session.commit()
        return product

    return run_with_retry(_op)


def set_product_status(product_id: int, status: str) -> Product:
    return update_product(product_id, {"status": status})


def get_location(location_id: int) -> InventoryLocation:
    location = db.session.query(InventoryLocation).filter_by(id=location_id).first()
    if location is None:
        raise LocationNotFound(f"Location {location_id} not found", details={"location_id": location_id})
    return location


def get_default_location() -> InventoryLocation:
    """
    Return the default location, creating it on first use.

    Flushes but does not commit; callers commit with their own unit of work.
    """
    location = db.session.query(InventoryLocation).filter_by(is_default=True).first()
    if location is not None:
        return location

    name = current_app.config.get("DEFAULT_LOCATION_NAME", "Main Warehouse")
    location = db.session.query(InventoryLocation).filter_by(name=name).first()
    if location is None:
        location = InventoryLocation(name=name, is_default=True)
        db.session.add(location)
    else:
        location.is_default = True
    db.session.flush()
    return location


def resolve_location(location_id: int | None = None) -> InventoryLocation:
    if location_id is None:
        return get_default_location()
    return get_location(location_id)


def create_location(*, name: str, address: str | None = None, is_default: bool = False) -> InventoryLocation:
    def _op():
        if is_default:
            db.session.query(InventoryLocation).filter_by(is_default=True).update({"is_default": False})
        location = InventoryLocation(name=name.strip(), address=address, is_default=is_default)
        db.session.add(location)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError(f"Location {name!r} already exists")
        db.session.commit()
        return location

    return run_with_retry(_op)


def list_locations() -> list[InventoryLocation]:
    return db.session.query(InventoryLocation).order_by(InventoryLocation.id.asc()).all()
