"""Error taxonomy shared by the production, inventory and insight services.

Every error carries a stable ``code`` and a JSON-friendly ``detail()`` so the HTTP
layer can tell "insufficient raw material" apart from "missing recipe configuration".
"""
from __future__ import annotations

from typing import Any


class ProductionError(ValueError):
    code = "production_error"
    status_code = 400

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def detail(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.context}


class ConfigurationError(ProductionError):
    """A referenced process, product or organization does not exist."""
    code = "configuration_error"
    status_code = 422


class InsufficientStockError(ProductionError):
    code = "insufficient_stock"
    status_code = 409

    def __init__(self, *, product_id: str, product_name: str, available: int, required: int) -> None:
        super().__init__(
            f'Insufficient stock of "{product_name}": available {available}, required {required}',
            product_id=product_id,
            product_name=product_name,
            available=available,
            required=required,
        )
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.required = required


class AlreadyCompletedError(ProductionError):
    code = "already_completed"
    status_code = 409

    def __init__(self, batch_id: str) -> None:
        super().__init__(f"Batch {batch_id} is already completed", batch_id=batch_id)
        self.batch_id = batch_id


class BatchNotFoundError(ProductionError):
    code = "batch_not_found"
    status_code = 404

    def __init__(self, batch_id: str) -> None:
        super().__init__(f"Batch {batch_id} not found", batch_id=batch_id)
        self.batch_id = batch_id


class InvalidRequestError(ProductionError):
    code = "invalid_request"


class TransientStoreError(ProductionError):
    """Database or network failure; safe to retry."""
    code = "transient_store_error"
    status_code = 503
