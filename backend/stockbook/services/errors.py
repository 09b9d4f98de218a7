"""
Typed failures raised by the inventory ledger services.

Business-rule failures are raised before or inside the unit of work, which
rolls back everything; routes render them with to_dict() and status_code.
"""
from __future__ import annotations


class InventoryError(Exception):
    """Base class for inventory/ledger failures."""
    status_code = 400
    error = "Inventory error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.message, **self.details}


class NotFoundError(InventoryError):
    """Referenced item, company, batch or location does not exist."""
    status_code = 404
    error = "Not found"

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found", {})
        self.error = f"{entity} not found"


class InsufficientStockError(InventoryError):
    error = "Insufficient stock"

    def __init__(self, message: str, *, available: int, requested: int):
        super().__init__(message, {"available": available, "requested": requested})
        self.available = available
        self.requested = requested


class InsufficientFundsError(InventoryError):
    error = "Insufficient funds"

    def __init__(self, message: str, *, required: int, available: int, currency: str):
        super().__init__(
            message,
            {"required": required, "available": available, "currency": currency},
        )
        self.required = required
        self.available = available
        self.currency = currency


class PersistenceError(InventoryError):
    """The transaction could not commit. Nothing was applied; safe to retry."""
    status_code = 500
    error = "Persistence failure"


class BatchOperationError(InventoryError):
    """Batch request that conflicts with the item's tracking mode or ownership."""
    error = "Invalid batch operation"
