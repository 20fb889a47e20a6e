# Overview: Domain error taxonomy shared by the ledger, cart, order and checkout services.

from __future__ import annotations


class LedgerError(Exception):
    """
    Base class for domain errors raised by the service layer.

    These are business outcomes the caller is expected to show to a user,
    not technical faults. Routes map them to `status_code`.
    """
    status_code = 400
    code = "ledger_error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class InsufficientStock(LedgerError):
    """Requested quantity exceeds stock on hand. details["items"] lists each offender."""
    status_code = 409
    code = "insufficient_stock"


class OutOfStock(LedgerError):
    status_code = 409
    code = "out_of_stock"


class StockLimitExceeded(LedgerError):
    """Cart would exceed available stock. details["available"] says how much there is."""
    status_code = 409
    code = "stock_limit_exceeded"


class InvalidTransition(LedgerError):
    status_code = 409
    code = "invalid_transition"


class OrderNotFound(LedgerError):
    status_code = 404
    code = "order_not_found"


class ProductNotFound(LedgerError):
    status_code = 404
    code = "product_not_found"


class LocationNotFound(LedgerError):
    status_code = 404
    code = "location_not_found"


class ProductUnavailable(LedgerError):
    """Product exists but is not Active, so it cannot be sold."""
    status_code = 409
    code = "product_unavailable"


class EmptyCart(LedgerError):
    status_code = 400
    code = "empty_cart"


class ConcurrentModification(LedgerError):
    """Lost a compare-and-swap race on a stock record."""
    status_code = 409
    code = "concurrent_modification"


class PersistenceFailure(LedgerError):
    """Underlying store error. details say whether partial state could have leaked."""
    status_code = 500
    code = "persistence_failure"


class CheckoutFailed(PersistenceFailure):
    code = "checkout_failed"
