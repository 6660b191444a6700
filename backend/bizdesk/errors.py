# Overview: Typed failures raised by services and rendered by the API error handler.

"""
Error taxonomy shared by every service.

Each error carries the HTTP status the API layer maps it to, a short
machine-readable code, and an optional details dict for the client.

- ValidationError: malformed or missing input. Nothing was written.
- NotFoundError: referenced product/sale is absent or owned by someone else.
- InsufficientStockError: requested quantity exceeds what is on hand.
- ConflictError: concurrent modification or uniqueness clash. Safe to retry.
- InternalError: storage/transport failure. The unit of work was rolled back.
"""

from __future__ import annotations


class BizdeskError(Exception):
    """Base class for failures a client can be told about."""
    status_code = 500
    code = "internal"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(BizdeskError, ValueError):
    """400-level input problem."""
    status_code = 400
    code = "validation_error"


class NotFoundError(BizdeskError):
    status_code = 404
    code = "not_found"


class InsufficientStockError(BizdeskError):
    """Requested quantity exceeds the product's on-hand quantity."""
    status_code = 400
    code = "insufficient_stock"

    def __init__(self, *, product_id: int, product_name: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "available": available,
                "requested": requested,
            },
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class ConflictError(BizdeskError, ValueError):
    """409-level conflict (concurrent modification, duplicate product code)."""
    status_code = 409
    code = "conflict"


class InternalError(BizdeskError):
    status_code = 500
    code = "internal"
