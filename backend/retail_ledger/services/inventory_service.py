# Overview: Service-layer operations for the inventory ledger; stock records and append-only entries.

# backend/retail_ledger/services/inventory_service.py

from __future__ import annotations

from flask import current_app
from sqlalchemy import func, update

from ..extensions import db
from ..models import InventoryRecord, InventoryTransaction, LEDGER_TYPES
from retail_ledger.time_utils import utcnow
from .concurrency import begin_write_lock, lock_for_update, run_with_retry
from .errors import ConcurrentModification, InsufficientStock, LedgerError, ProductUnavailable
from .identity_service import resolve_actor_id
from .products_service import get_product, resolve_location
from ..validation import ValidationError
"""
Retail Ledger Inventory Invariants (authoritative)

Inventory model:
- InventoryRecord holds the current quantity per (product, location).
- InventoryTransaction is the append-only ledger of every change to it.
- quantity == SUM(quantity_delta) for the same (product, location), always.
  Both rows are written in the same unit of work; nothing else writes
  InventoryRecord.quantity.

Business invariants:
- On-hand quantity may never go negative. A change that would make it
  negative fails; it is never clamped.
- sale: negative delta, carries the order reference.
- restock: positive delta (receiving, cancelled orders returned).
- adjustment: manual correction, non-zero delta of either sign.

Concurrency:
- The record row is read with FOR UPDATE (writers on SQLite take the write
  lock first, see concurrency.begin_write_lock).
- The quantity UPDATE is a compare-and-swap on the value that was read.
  Losing the swap is ConcurrentModification; it is retried once with a fresh
  read and then surfaced as InsufficientStock.

Idempotency:
- A write with an idempotency_key that already exists returns the existing
  entry and applies nothing.
"""

LEDGER_SALE, LEDGER_RESTOCK, LEDGER_ADJUSTMENT = LEDGER_TYPES

# One retry after a lost compare-and-swap
CAS_ATTEMPTS = 2


def default_low_stock_threshold() -> int:
    return int(current_app.config.get("LOW_STOCK_THRESHOLD", 10))


def _find_record(product_id: int, location_id: int, *, lock: bool = False) -> InventoryRecord | None:
    query = db.session.query(InventoryRecord).filter_by(product_id=product_id, location_id=location_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def ensure_record(product_id: int, location_id: int | None = None, *, lock: bool = False) -> InventoryRecord:
    """
    Return the stock record for (product, location), creating a zero record
    if there is none. Flushes, never commits.
    """
    location = resolve_location(location_id)
    record = _find_record(product_id, location.id, lock=lock)
    if record is None:
        record = InventoryRecord(product_id=product_id, location_id=location.id, quantity=0)
        db.session.add(record)
        db.session.flush()
    return record


def get_quantity(product_id: int, location_id: int | None = None) -> int:
    """Current stock at the location (default location when None). Never negative."""
    location = resolve_location(location_id)
    qty = (
        db.session.query(InventoryRecord.quantity)
        .filter_by(product_id=product_id, location_id=location.id)
        .scalar()
    )
    return int(qty or 0)


def get_inventory_snapshot(product_id: int, location_id: int | None = None) -> InventoryRecord:
    """
    The stock record for (product, location).

    Read-only: when no record exists yet an unsaved zero-quantity record is
    returned instead of writing one.
    """
    get_product(product_id)
    location = resolve_location(location_id)
    record = _find_record(product_id, location.id)
    if record is None:
        record = InventoryRecord(product_id=product_id, location_id=location.id, quantity=0)
    return record


def _existing_for_key(idempotency_key: str | None, *, product_id: int, quantity_delta: int, tx_type: str):
    if not idempotency_key:
        return None
    existing = db.session.query(InventoryTransaction).filter_by(idempotency_key=idempotency_key).first()
    if existing is None:
        return None
    if (
        existing.product_id != product_id
        or existing.quantity_delta != quantity_delta
        or existing.type != tx_type
    ):
        raise ValidationError(
            f"idempotency_key {idempotency_key!r} already used for a different inventory transaction"
        )
    return existing


def _apply_delta(
    *,
    record: InventoryRecord,
    quantity_delta: int,
    tx_type: str,
    order_id: int | None,
    actor_id: str | None,
    note: str | None,
    idempotency_key: str | None,
) -> InventoryTransaction:
    """
    Core ledger write without retry or commit.

    Compare-and-swap the record quantity, then append the entry. Callers
    decide when the unit of work commits.
    """
    now = utcnow()
    last_conflict = None
    current = None

    for attempt in range(CAS_ATTEMPTS):
        current = (
            db.session.query(InventoryRecord.quantity)
            .filter(InventoryRecord.id == record.id)
            .scalar()
        )
        current = int(current or 0)
        new_quantity = current + quantity_delta
        if new_quantity < 0:
            raise InsufficientStock(
                "Insufficient stock",
                details={"items": [{
                    "product_id": record.product_id,
                    "location_id": record.location_id,
                    "requested_quantity": -quantity_delta,
                    "on_hand": current,
                }]},
            )

        values = {"quantity": new_quantity, "updated_at": now}
        if tx_type == LEDGER_RESTOCK:
            values["last_restocked_at"] = now

        result = db.session.execute(
            update(InventoryRecord)
            .where(InventoryRecord.id == record.id, InventoryRecord.quantity == current)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            break

        last_conflict = ConcurrentModification(
            "Stock record changed while it was being updated",
            details={"product_id": record.product_id, "location_id": record.location_id, "attempt": attempt + 1},
        )
        current_app.logger.warning(
            "Lost stock update race on product %s location %s (attempt %d)",
            record.product_id, record.location_id, attempt + 1,
        )
    else:
        raise InsufficientStock(
            "Stock changed concurrently; not enough left to complete the request",
            details={"items": [{
                "product_id": record.product_id,
                "location_id": record.location_id,
                "requested_quantity": -quantity_delta,
                "on_hand": current,
            }], "reason": last_conflict.code},
        ) from last_conflict

    # Keep the identity-mapped record in step with the row we just wrote
    db.session.expire(record)

    tx = InventoryTransaction(
        product_id=record.product_id,
        location_id=record.location_id,
        type=tx_type,
        quantity_delta=quantity_delta,
        quantity_after=new_quantity,
        order_id=order_id,
        actor_id=actor_id,
        idempotency_key=idempotency_key,
        note=note,
        occurred_at=now,
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def _post_ledger_change(
    *,
    product_id: int,
    quantity_delta: int,
    tx_type: str,
    location_id: int | None,
    order_id: int | None,
    actor_id: str | None,
    note: str | None,
    idempotency_key: str | None,
    commit: bool,
    require_active: bool = False,
) -> InventoryTransaction:
    def _op():
        if commit:
            begin_write_lock()
        existing = _existing_for_key(
            idempotency_key, product_id=product_id, quantity_delta=quantity_delta, tx_type=tx_type
        )
        if existing is not None:
            if commit:
                db.session.commit()
            return existing

        product = get_product(product_id)
        if require_active and not product.is_active:
            raise ProductUnavailable(
                f"Product {product_id} is {product.status}",
                details={"product_id": product_id, "status": product.status},
            )

        record = ensure_record(product.id, location_id, lock=True)
        tx = _apply_delta(
            record=record,
            quantity_delta=quantity_delta,
            tx_type=tx_type,
            order_id=order_id,
            actor_id=resolve_actor_id(actor_id),
            note=note,
            idempotency_key=idempotency_key,
        )
        if commit:
            db.session.commit()
        return tx

    if not commit:
        return _op()

    try:
        return run_with_retry(_op)
    except (LedgerError, ValidationError):
        db.session.rollback()
        raise


def decrement(
    *,
    product_id: int,
    quantity: int,
    location_id: int | None = None,
    note: str | None = None,
    order_id: int | None = None,
    idempotency_key: str | None = None,
    actor_id: str | None = None,
    commit: bool = True,
) -> InventoryTransaction:
    """
    Take stock out for a sale.

    Raises InsufficientStock if quantity exceeds stock on hand. With
    commit=False the change joins the caller's unit of work (checkout).
    """
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")
    return _post_ledger_change(
        product_id=product_id,
        quantity_delta=-quantity,
        tx_type=LEDGER_SALE,
        location_id=location_id,
        order_id=order_id,
        actor_id=actor_id,
        note=note,
        idempotency_key=idempotency_key,
        commit=commit,
        require_active=True,
    )


def restock(
    *,
    product_id: int,
    quantity: int,
    location_id: int | None = None,
    note: str | None = None,
    order_id: int | None = None,
    idempotency_key: str | None = None,
    actor_id: str | None = None,
    commit: bool = True,
) -> InventoryTransaction:
    """Put stock back or receive new stock (positive delta)."""
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")
    return _post_ledger_change(
        product_id=product_id,
        quantity_delta=quantity,
        tx_type=LEDGER_RESTOCK,
        location_id=location_id,
        order_id=order_id,
        actor_id=actor_id,
        note=note,
        idempotency_key=idempotency_key,
        commit=commit,
    )


def adjust(
    *,
    product_id: int,
    quantity_delta: int,
    location_id: int | None = None,
    note: str | None = None,
    idempotency_key: str | None = None,
    actor_id: str | None = None,
    commit: bool = True,
) -> InventoryTransaction:
    """
    Manual correction (shrink, damage, count corrections).

    May not drive stock negative, same as a sale.
    """
    if not isinstance(quantity_delta, int) or isinstance(quantity_delta, bool) or quantity_delta == 0:
        raise ValidationError("quantity_delta must be a non-zero integer")
    return _post_ledger_change(
        product_id=product_id,
        quantity_delta=quantity_delta,
        tx_type=LEDGER_ADJUSTMENT,
        location_id=location_id,
        order_id=None,
        actor_id=actor_id,
        note=note,
        idempotency_key=idempotency_key,
        commit=commit,
    )


def is_low_stock(product_id: int, location_id: int | None = None) -> bool:
    record = get_inventory_snapshot(product_id, location_id)
    threshold = record.low_stock_threshold
    if threshold is None:
        threshold = default_low_stock_threshold()
    return (record.quantity or 0) <= threshold


def list_low_stock(location_id: int | None = None) -> list[InventoryRecord]:
    """
    Records at or below their threshold (record override, else config default).

    A finite snapshot ordered by quantity, lowest first.
    """
    threshold = func.coalesce(InventoryRecord.low_stock_threshold, default_low_stock_threshold())
    query = db.session.query(InventoryRecord).filter(InventoryRecord.quantity <= threshold)
    if location_id is not None:
        query = query.filter(InventoryRecord.location_id == location_id)
    return query.order_by(
        InventoryRecord.quantity.asc(),
        InventoryRecord.product_id.asc(),
        InventoryRecord.location_id.asc(),
    ).all()


def set_low_stock_threshold(product_id: int, threshold: int | None, location_id: int | None = None) -> InventoryRecord:
    """Override the threshold for one record; None restores the config default."""
    if threshold is not None and (not isinstance(threshold, int) or isinstance(threshold, bool) or threshold < 0):
        raise ValidationError("threshold must be a non-negative integer")

    def _op():
        get_product(product_id)
        record = ensure_record(product_id, location_id)
        record.low_stock_threshold = threshold
        db.session.commit()
        return record

    return run_with_retry(_op)


def list_inventory_transactions(
    *,
    product_id: int | None = None,
    location_id: int | None = None,
    order_id: int | None = None,
    limit: int = 200,
) -> list[InventoryTransaction]:
    query = db.session.query(InventoryTransaction)
    if product_id is not None:
        query = query.filter(InventoryTransaction.product_id == product_id)
    if location_id is not None:
        query = query.filter(InventoryTransaction.location_id == location_id)
    if order_id is not None:
        query = query.filter(InventoryTransaction.order_id == order_id)
    return query.order_by(
        InventoryTransaction.occurred_at.desc(),
        InventoryTransaction.id.desc(),
    ).limit(limit).all()


def ledger_sum(product_id: int, location_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(InventoryTransaction.quantity_delta), 0))
        .filter(
            InventoryTransaction.product_id == product_id,
            InventoryTransaction.location_id == location_id,
        )
        .scalar()
    )
    return int(total or 0)


def verify_ledger(product_id: int, location_id: int | None = None) -> dict:
    """Compare the stored quantity with the sum of ledger deltas."""
    record = get_inventory_snapshot(product_id, location_id)
    quantity = int(record.quantity or 0)
    total = ledger_sum(product_id, record.location_id)
    return {
        "product_id": product_id,
        "location_id": record.location_id,
        "quantity": quantity,
        "ledger_sum": total,
        "consistent": quantity == total,
    }


def reconcile_ledger() -> list[dict]:
    """
    Every (product, location) whose quantity does not match its ledger.

    Empty list means the whole inventory is consistent. Ledger rows without
    a record count too (their record quantity is taken as 0).
    """
    sums = dict(
        ((row.product_id, row.location_id), int(row.total or 0))
        for row in db.session.query(
            InventoryTransaction.product_id,
            InventoryTransaction.location_id,
            func.sum(InventoryTransaction.quantity_delta).label("total"),
        ).group_by(InventoryTransaction.product_id, InventoryTransaction.location_id)
    )
    quantities = {
        (r.product_id, r.location_id): int(r.quantity or 0)
        for r in db.session.query(InventoryRecord).all()
    }

    drift = []
    for key in sorted(set(sums) | set(quantities)):
        quantity = quantities.get(key, 0)
        total = sums.get(key, 0)
        if quantity != total:
            drift.append({
                "product_id": key[0],
                "location_id": key[1],
                "quantity": quantity,
                "ledger_sum": total,
            })
    return drift
