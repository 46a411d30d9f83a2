# Overview: Typed errors raised by the stock ledger and sale engine.

"""
Error taxonomy (authoritative)

- Business-rule violations (ValidationError, InsufficientStockError,
  InvalidStateError, NotFoundError, ConflictError, UsageLimitError) are
  expected outcomes. They propagate to the caller untouched.
- Store/transaction failures are wrapped as InternalError. The wrapped cause
  is kept for logging and is never rendered to clients.
"""

from __future__ import annotations


class RetailError(Exception):
    """Base class for all errors surfaced by the service layer."""

    http_status = 400
    code = "BAD_REQUEST"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(RetailError):
    """Malformed or out-of-range input (e.g. zero quantity)."""

    http_status = 400
    code = "VALIDATION_ERROR"


class InsufficientStockError(RetailError):
    """Requested quantity exceeds available stock."""

    http_status = 400
    code = "INSUFFICIENT_STOCK"

    def __init__(self, requested: int, available: int, product: str | None = None):
        label = f" for product {product}" if product else ""
        super().__init__(
            f"Insufficient stock{label}",
            details={"requested": requested, "available": available},
        )
        self.requested = requested
        self.available = available
        self.product = product


class InvalidStateError(RetailError):
    """Operation is illegal for the current Sale/Stock state."""

    http_status = 409
    code = "INVALID_STATE"


class NotFoundError(RetailError):
    http_status = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, details: dict | None = None):
        super().__init__(f"{resource} not found", details)
        self.resource = resource


class ConflictError(RetailError):
    """Duplicate SKU / sale number."""

    http_status = 409
    code = "CONFLICT"


class UsageLimitError(RetailError):
    """Subscription plan limits deny the operation."""

    http_status = 403
    code = "USAGE_LIMIT_EXCEEDED"


class InternalError(RetailError):
    """Store or transaction failure; wraps the underlying cause."""

    http_status = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause

    def to_dict(self) -> dict:
        return {"error": "Internal server error", "code": self.code, "details": {}}
