# backend/retail_ledger/routes/orders.py
"""
Order lifecycle routes.

Transitions are validated by the order state machine; anything it does not
allow comes back as 409 with the allowed targets in details and the order
unchanged.
"""
from flask import Blueprint, request, current_app

from ..services import order_service
from ..services.errors import LedgerError
from ..validation import ValidationError, parse_optional_int
from ..decorators import with_actor

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _text(payload: dict, field: str):
    value = payload.get(field)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@orders_bp.get("")
def list_orders():
    """Query params: status (optional), limit (default 100, max 500)."""
    try:
        limit = parse_optional_int(request.args.get("limit"), "limit") or 100
        limit = max(1, min(limit, 500))
        orders = order_service.list_orders(status=request.args.get("status"), limit=limit)
    except ValidationError as e:
        return {"error": str(e)}, 400

    return {"items": [o.to_dict() for o in orders], "count": len(orders)}


@orders_bp.get("/deliveries")
def list_deliveries():
    """Orders in fulfilment plus a count per delivery sub-status."""
    orders = order_service.list_active_deliveries()
    return {
        "items": [o.to_dict() for o in orders],
        "stats": order_service.delivery_stats(),
    }


@orders_bp.get("/<int:order_id>")
def get_order(order_id: int):
    try:
        order = order_service.get_order(order_id)
    except LedgerError as e:
        return e.to_dict(), e.status_code
    return {"order": order.to_dict(include_lines=True)}


@orders_bp.get("/<int:order_id>/history")
def get_history(order_id: int):
    try:
        history = order_service.list_status_history(order_id)
    except LedgerError as e:
        return e.to_dict(), e.status_code
    return {"items": [h.to_dict() for h in history]}


@orders_bp.post("/<int:order_id>/transition")
@with_actor
def transition(order_id: int):
    """
    Body: {"status": target, "notes", "carrier", "tracking_number"} (only status required).
    """
    payload = request.get_json(silent=True) or {}
    target = payload.get("status") if isinstance(payload, dict) else None
    if not target:
        return {"error": "status is required"}, 400

    try:
        order = order_service.transition_order(
            order_id,
            target,
            notes=_text(payload, "notes"),
            carrier=_text(payload, "carrier"),
            tracking_number=_text(payload, "tracking_number"),
        )
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to transition order")
        return {"error": "Internal server error"}, 500

    return {"order": order.to_dict(include_lines=True)}


@orders_bp.post("/<int:order_id>/delivery")
@with_actor
def update_delivery(order_id: int):
    """
    Body: {"delivery_status": "Out for Delivery" | "Delivered" | "Failed Delivery", "notes", "carrier"}.
    """
    payload = request.get_json(silent=True) or {}
    delivery_status = payload.get("delivery_status") if isinstance(payload, dict) else None
    if not delivery_status:
        return {"error": "delivery_status is required"}, 400

    try:
        order = order_service.update_delivery_status(
            order_id,
            delivery_status,
            notes=_text(payload, "notes"),
            carrier=_text(payload, "carrier"),
        )
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update delivery status")
        return {"error": "Internal server error"}, 500

    return {"order": order.to_dict(include_lines=True)}
