# Overview: Flask API routes for checkout; builds the cart from the request and places orders.

# backend/retail_ledger/routes/checkout.py
"""
Checkout routes.

The cart lives on the client; each request carries it as a list of
{"product_id", "quantity"} items and the server rebuilds it against current
ledger stock.

POST /api/checkout is idempotent per key: send the same Idempotency-Key
header (or idempotency_key body field) when retrying and the original order
comes back with 200 instead of a second order with 201.
"""
from flask import Blueprint, request, current_app

from ..services import cart_service, checkout_service
from ..services.errors import LedgerError
from ..validation import ValidationError, parse_bool, parse_cart_items, parse_optional_int
from ..decorators import with_actor

checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")

IDEMPOTENCY_HEADER = "Idempotency-Key"
MAX_IDEMPOTENCY_KEY_LENGTH = 128


def _idempotency_key(payload: dict):
    key = request.headers.get(IDEMPOTENCY_HEADER) or payload.get("idempotency_key")
    if key is None:
        return None
    key = str(key).strip()
    if not key:
        return None
    if len(key) > MAX_IDEMPOTENCY_KEY_LENGTH:
        raise ValidationError(f"idempotency key exceeds max length {MAX_IDEMPOTENCY_KEY_LENGTH}")
    return key


def _build_cart(payload: dict):
    items = parse_cart_items(payload.get("items"))
    location_id = parse_optional_int(payload.get("location_id"), "location_id")
    # Stock is checked by checkout so every short product is reported together
    return cart_service.build_cart(items, location_id=location_id, validate_stock=False), location_id


@checkout_bp.post("/quote")
def quote_route():
    """Cart totals (subtotal, tax, total) without placing anything."""
    payload = request.get_json(silent=True) or {}
    try:
        cart, _ = _build_cart(payload)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to quote cart")
        return {"error": "Internal server error"}, 500

    return {"quote": checkout_service.quote(cart)}


@checkout_bp.post("")
@with_actor
def checkout_route():
    """
    Place an order.

    Body:
    - items: [{"product_id", "quantity"}] (required)
    - payment_method: str (required)
    - customer: {name, email, phone, address, id} (optional)
    - immediate: bool, point-of-sale sale (optional, default false)
    - location_id: int (optional)
    - idempotency_key: str (optional, header takes precedence)
    """
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return {"error": "Invalid JSON payload"}, 400

    try:
        key = _idempotency_key(payload)
        if key:
            existing = checkout_service.find_order_by_idempotency_key(key)
            if existing is not None:
                return {"order": existing.to_dict(include_lines=True), "replayed": True}, 200

        cart, location_id = _build_cart(payload)
        order = checkout_service.checkout(
            cart,
            payload.get("payment_method"),
            payload.get("customer"),
            idempotency_key=key,
            immediate=parse_bool(payload.get("immediate"), "immediate"),
            location_id=location_id,
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to place order")
        return {"error": "Internal server error"}, 500

    return {"order": order.to_dict(include_lines=True), "replayed": False}, 201
