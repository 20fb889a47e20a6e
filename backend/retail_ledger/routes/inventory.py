# backend/retail_ledger/routes/inventory.py
"""
Inventory ledger routes.

Stock only changes through ledger entries: restock (positive) and adjust
(either sign, never below zero). Sales are booked by checkout, never here.

Every write accepts an optional idempotency_key; replaying the same key
returns the original entry instead of applying it twice.
"""
from flask import Blueprint, request, current_app

from ..services import inventory_service
from ..services.errors import LedgerError
from ..validation import (
    ValidationError,
    coerce_int,
    parse_optional_int,
    parse_quantity,
)
from ..decorators import with_actor


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

NOTE_MAX_LENGTH = 255


def _location_arg():
    return parse_optional_int(request.args.get("location_id"), "location_id")


def _note(payload: dict):
    note = payload.get("note")
    if note is None:
        return None
    note = str(note).strip()
    if len(note) > NOTE_MAX_LENGTH:
        raise ValidationError(f"note exceeds max length {NOTE_MAX_LENGTH}")
    return note or None


def _record_response(product_id: int, location_id):
    record = inventory_service.get_inventory_snapshot(product_id, location_id)
    return record.to_dict(default_threshold=inventory_service.default_low_stock_threshold())


@inventory_bp.get("/<int:product_id>")
def get_inventory(product_id: int):
    """Current stock record for a product (default location unless location_id is given)."""
    try:
        return {"inventory": _record_response(product_id, _location_arg())}
    except ValidationError as e:
        return {"error": str(e)}, 400
    except LedgerError as e:
        return e.to_dict(), e.status_code


@inventory_bp.get("/low-stock")
def low_stock():
    try:
        records = inventory_service.list_low_stock(location_id=_location_arg())
    except ValidationError as e:
        return {"error": str(e)}, 400

    default_threshold = inventory_service.default_low_stock_threshold()
    items = []
    for record in records:
        data = record.to_dict(default_threshold=default_threshold)
        data["product_name"] = record.product.name
        data["sku"] = record.product.sku
        items.append(data)
    return {"items": items, "count": len(items)}


@inventory_bp.post("/restock")
@with_actor
def restock_route():
    """
    Receive stock.

    Body: product_id, quantity (> 0); location_id, note, idempotency_key optional.
    """
    payload = request.get_json(silent=True) or {}

    try:
        if "product_id" not in payload:
            raise ValidationError("product_id is required")
        product_id = coerce_int(payload["product_id"], "product_id")
        quantity = parse_quantity(payload.get("quantity"), "quantity")
        location_id = parse_optional_int(payload.get("location_id"), "location_id")

        tx = inventory_service.restock(
            product_id=product_id,
            quantity=quantity,
            location_id=location_id,
            note=_note(payload),
            idempotency_key=payload.get("idempotency_key") or None,
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to restock inventory")
        return {"error": "Internal server error"}, 500

    return {"transaction": tx.to_dict(), "inventory": _record_response(product_id, tx.location_id)}, 201


@inventory_bp.post("/adjust")
@with_actor
def adjust_route():
    """
    Manual correction (counts, damage, shrink).

    Body: product_id, quantity_delta (non-zero); location_id, note, idempotency_key optional.
    A negative delta larger than stock on hand is rejected with 409.
    """
    payload = request.get_json(silent=True) or {}

    try:
        if "product_id" not in payload:
            raise ValidationError("product_id is required")
        if "quantity_delta" not in payload:
            raise ValidationError("quantity_delta is required")
        product_id = coerce_int(payload["product_id"], "product_id")
        quantity_delta = coerce_int(payload["quantity_delta"], "quantity_delta")
        location_id = parse_optional_int(payload.get("location_id"), "location_id")

        tx = inventory_service.adjust(
            product_id=product_id,
            quantity_delta=quantity_delta,
            location_id=location_id,
            note=_note(payload),
            idempotency_key=payload.get("idempotency_key") or None,
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust inventory")
        return {"error": "Internal server error"}, 500

    return {"transaction": tx.to_dict(), "inventory": _record_response(product_id, tx.location_id)}, 201


@inventory_bp.put("/<int:product_id>/threshold")
@with_actor
def set_threshold(product_id: int):
    """Body: {"threshold": int | null, "location_id": optional}. null restores the default."""
    payload = request.get_json(silent=True) or {}
    if "threshold" not in payload:
        return {"error": "threshold is required"}, 400

    try:
        threshold = parse_optional_int(payload.get("threshold"), "threshold")
        location_id = parse_optional_int(payload.get("location_id"), "location_id")
        record = inventory_service.set_low_stock_threshold(product_id, threshold, location_id)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to set low stock threshold")
        return {"error": "Internal server error"}, 500

    return {"inventory": record.to_dict(default_threshold=inventory_service.default_low_stock_threshold())}


@inventory_bp.get("/<int:product_id>/transactions")
def list_transactions(product_id: int):
    """Ledger entries for a product, newest first. Query: location_id, limit (max 500)."""
    try:
        limit = parse_optional_int(request.args.get("limit"), "limit") or 200
        limit = max(1, min(limit, 500))
        entries = inventory_service.list_inventory_transactions(
            product_id=product_id,
            location_id=_location_arg(),
            limit=limit,
        )
    except ValidationError as e:
        return {"error": str(e)}, 400

    return {"items": [tx.to_dict() for tx in entries], "count": len(entries)}


@inventory_bp.get("/<int:product_id>/verify")
def verify(product_id: int):
    try:
        result = inventory_service.verify_ledger(product_id, _location_arg())
    except ValidationError as e:
        return {"error": str(e)}, 400
    except LedgerError as e:
        return e.to_dict(), e.status_code
    return result
