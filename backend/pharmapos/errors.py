"""
Domain error taxonomy.

Every error carries a human-readable message plus a ``details`` dict that
routes return verbatim, and the HTTP status the API answers with.
"""
from __future__ import annotations


class PosError(Exception):
    """Base class for expected, caller-correctable failures."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class ValidationError(PosError, ValueError):
    """400-level input problem."""


class NotFoundError(PosError, LookupError):
    """Unknown product, unit, sale, prescription or credit record."""
    status_code = 404


class EmptyCartError(ValidationError):
    def __init__(self, message: str = "Cart is empty"):
        super().__init__(message)


class MissingCustomerForCreditError(ValidationError):
    def __init__(self, message: str = "Customer name and phone are required for credit sales"):
        super().__init__(message)


class InsufficientStockError(PosError):
    """Requested base quantity exceeds what the ledger holds."""
    status_code = 409

    def __init__(
        self,
        product_id: int,
        available: int,
        requested: int | None = None,
        message: str | None = None,
    ):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        details = {"product_id": product_id, "available": available}
        if requested is not None:
            details["requested"] = requested
        super().__init__(message or f"Insufficient stock for product {product_id}", details)


class ConcurrentStockConflict(PosError):
    """Lost a race for stock while committing."""
    status_code = 409

    def __init__(self, message: str = "Stock changed while committing; retry checkout", details: dict | None = None):
        super().__init__(message, details)


class CreditError(PosError):
    """Raised for credit settlement errors."""
