"""
Error taxonomy for the inventory core.

Core services raise these types and never HTTPException; the API layer maps
them to responses through the handlers registered in ``meditrack.main``.
Every class carries a machine-readable ``code`` and the HTTP status the API
answers with.
"""

from typing import Any, Dict, Optional

from sqlalchemy.exc import DBAPIError, OperationalError


class InventoryError(Exception):
    code: str = "INVENTORY_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(InventoryError):
    """Malformed input or a cross-entity mismatch (batch not belonging to item)."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(InventoryError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str = "Resource", resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} {resource_id} not found"
        super().__init__(message, {"resource": resource, "id": resource_id})
        self.resource = resource
        self.resource_id = resource_id


class ConflictError(InventoryError):
    code = "CONFLICT"
    status_code = 409


class InsufficientStockError(InventoryError):
    """Outbound delta exceeds the quantity available. Never transient."""

    code = "INSUFFICIENT_STOCK"
    status_code = 409

    def __init__(self, available: int, requested: int, batch_id: Optional[int] = None):
        where = f"batch {batch_id}" if batch_id is not None else "item"
        super().__init__(
            f"Insufficient stock in {where}: available {available}, requested {requested}",
            {"available": available, "requested": requested, "batch_id": batch_id},
        )
        self.available = available
        self.requested = requested
        self.batch_id = batch_id


class TransientStorageError(InventoryError):
    """Lock contention or connection loss; the caller may retry the whole operation."""

    code = "TRANSIENT_STORAGE_ERROR"
    status_code = 503


class ImmutableRecordError(InventoryError):
    code = "IMMUTABLE_RECORD"
    status_code = 500


def is_transient(exc: Exception) -> bool:
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return False
