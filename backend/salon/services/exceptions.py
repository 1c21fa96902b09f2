"""
Errors raised by the sale transaction services.

Each one aborts the enclosing transaction (run_in_transaction rolls back
before re-raising) and carries a machine-readable code plus details for
the transport layer.
"""


class SaleError(Exception):
    """Raised for sale operation errors."""
    code = "SALE_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class NotFoundError(SaleError):
    """Customer, service, product, staff member or sale does not exist."""
    code = "NOT_FOUND"


class InactiveError(SaleError):
    """A soft-deleted catalog entry or customer was referenced."""
    code = "INACTIVE"


class OutOfStockError(SaleError):
    """Requested product quantity exceeds stock on hand."""
    code = "OUT_OF_STOCK"


class PaymentMismatchError(SaleError):
    """Payment rows do not add up to the sale's final amount."""
    code = "PAYMENT_MISMATCH"


class SaleValidationError(SaleError):
    """Malformed sale payload (no customer, nothing sold, bad quantity...)."""
    code = "VALIDATION_ERROR"
