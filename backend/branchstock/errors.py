# Overview: Typed error taxonomy shared by services and routes.

"""
Errors raised by the stock, order, request and pricing services.

Every error carries a human-readable message, an optional ``details`` dict and
the HTTP status the route layer should answer with. Routes never build their own
status codes for business failures; they call ``to_dict()`` and use
``status_code``.
"""
from __future__ import annotations


class BranchStockError(Exception):
    """Base class for business failures surfaced to callers."""

    status_code = 400
    default_message = "Request could not be processed"

    def __init__(self, message: str | None = None, details: dict | None = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        payload = {"error": self.message, "type": self.__class__.__name__}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(BranchStockError):
    """Malformed or missing input, invalid enum value."""

    status_code = 400
    default_message = "Validation error"


class NotFoundError(BranchStockError):
    status_code = 404
    default_message = "Resource not found"


class UnauthorizedError(BranchStockError):
    status_code = 401
    default_message = "Authentication required"


class ForbiddenError(BranchStockError):
    """Role or branch-ownership mismatch."""

    status_code = 403
    default_message = "Permission denied"


class StateConflictError(BranchStockError):
    """Operation attempted from a status that does not permit it."""

    status_code = 409
    default_message = "Operation not allowed in the current state"


class ConflictError(BranchStockError):
    """Uniqueness violation (e.g., duplicate SKU)."""

    status_code = 409
    default_message = "Conflict"


class WriteConflictError(BranchStockError):
    """Concurrent modification still detected after bounded retries."""

    status_code = 409
    default_message = "Concurrent modification detected, please retry"


class StockEntryNotFoundError(BranchStockError):
    """A branch has no stock ledger entry for a product an operation must touch."""

    status_code = 400
    default_message = "Stock entry not found"

    def __init__(self, branch_id: int, product_id: int):
        super().__init__(
            f"Stock entry not found for product {product_id} in branch {branch_id}",
            details={"branch_id": branch_id, "product_id": product_id},
        )
        self.branch_id = branch_id
        self.product_id = product_id


class InsufficientStockError(BranchStockError):
    status_code = 409
    default_message = "Insufficient stock"

    def __init__(self, available: int, requested: int, product_id: int | None = None, message: str | None = None):
        details = {"available": available, "requested": requested}
        if product_id is not None:
            details["product_id"] = product_id
        super().__init__(
            message or f"Insufficient stock. Available: {available}, requested: {requested}",
            details=details,
        )
        self.available = available
        self.requested = requested
        self.product_id = product_id


class InsufficientCentralStockError(InsufficientStockError):
    default_message = "Insufficient central stock"

    def __init__(self, available: int, requested: int, product_id: int | None = None, message: str | None = None):
        super().__init__(
            available,
            requested,
            product_id=product_id,
            message=message or f"Insufficient central stock. Available: {available}, requested: {requested}",
        )
