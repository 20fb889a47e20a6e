# Overview: Flask API routes for products and locations; parses input and returns JSON responses.

# backend/retail_ledger/routes/products.py
"""
Product catalog and stock location routes.

Stock is never set here directly; initial_stock on create is booked as an
opening-balance ledger entry by the service.
"""
from flask import Blueprint, request, current_app

from ..models import Product, InventoryLocation, PRODUCT_STATUSES
from ..services import products_service
from ..services.errors import LedgerError
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    parse_optional_int,
    parse_quantity,
    ValidationError,
    ConflictError,
)
from ..decorators import with_actor

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"sku", "name", "description", "category", "price_cents", "status"},
    required_on_create={"sku", "name", "price_cents"},
)

LOCATION_POLICY = ModelValidationPolicy(
    writable_fields={"name", "address", "is_default"},
    required_on_create={"name"},
)

# Create-only fields handled by the service rather than the Product columns
PRODUCT_CREATE_EXTRAS = ("initial_stock", "location_id", "low_stock_threshold")

products_bp = Blueprint("products", __name__, url_prefix="/api")


@products_bp.post("/products")
@with_actor
def create_product():
    """
    Create a product.

    Body: sku, name, price_cents (required); description, category, status;
    initial_stock, location_id, low_stock_threshold (optional).
    """
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return {"error": "Invalid JSON payload"}, 400

    extras = {k: payload.pop(k) for k in PRODUCT_CREATE_EXTRAS if k in payload}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        initial_stock = parse_quantity(extras.get("initial_stock", 0), "initial_stock", allow_zero=True)
        location_id = parse_optional_int(extras.get("location_id"), "location_id")
        threshold = parse_optional_int(extras.get("low_stock_threshold"), "low_stock_threshold")
        if threshold is not None and threshold < 0:
            raise ValidationError("low_stock_threshold must be >= 0")

        product = products_service.create_product(
            **patch,
            initial_stock=initial_stock,
            location_id=location_id,
            low_stock_threshold=threshold,
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return {"error": "Internal server error"}, 500

    return {"product": product.to_dict()}, 201


@products_bp.get("/products")
def list_products():
    """
    List products.

    Query params:
    - status: Active | Inactive | Draft (optional)
    - category: str (optional)
    """
    status = request.args.get("status")
    if status is not None and status not in PRODUCT_STATUSES:
        return {"error": f"status must be one of: {', '.join(PRODUCT_STATUSES)}"}, 400

    products = products_service.list_products(status=status, category=request.args.get("category"))
    return {"items": [p.to_dict() for p in products], "count": len(products)}


@products_bp.get("/products/<int:product_id>")
def get_product(product_id: int):
    try:
        product = products_service.get_product(product_id)
    except LedgerError as e:
        return e.to_dict(), e.status_code
    return {"product": product.to_dict()}


@products_bp.patch("/products/<int:product_id>/status")
@with_actor
def set_product_status(product_id: int):
    """Body: {"status": "Active" | "Inactive" | "Draft"}"""
    payload = request.get_json(silent=True) or {}
    status = payload.get("status") if isinstance(payload, dict) else None
    if not status:
        return {"error": "status is required"}, 400

    try:
        product = products_service.set_product_status(product_id, status)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update product status")
        return {"error": "Internal server error"}, 500

    return {"product": product.to_dict()}


@products_bp.post("/locations")
@with_actor
def create_location():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=InventoryLocation, payload=payload, policy=LOCATION_POLICY, partial=False)
        location = products_service.create_location(**patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to create location")
        return {"error": "Internal server error"}, 500

    return {"location": location.to_dict()}, 201


@products_bp.get("/locations")
def list_locations():
    locations = products_service.list_locations()
    return {"items": [loc.to_dict() for loc in locations]}
