"""
Error taxonomy for the order pipeline.

Services raise these; the application exception handler renders them as
``{"error": message, "kind": kind, ...details}`` with the class status code.
"""
from typing import Any, Optional


class CommerceError(Exception):
    """Base class for every domain failure surfaced to a caller."""

    kind: str = "internal"
    status_code: int = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "kind": self.kind, **self.details}


class InvalidInputError(CommerceError):
    """Malformed or missing input. Never retried."""
    kind = "invalid_input"
    status_code = 400


class NotFoundError(CommerceError):
    """Referenced record missing or owned by another organization."""
    kind = "not_found"
    status_code = 404


class PermissionDeniedError(CommerceError):
    """Affiliate level too low for the requested product."""
    kind = "permission_denied"
    status_code = 403


class InsufficientBalanceError(CommerceError):
    kind = "insufficient_balance"
    status_code = 400

    def __init__(self, required, available, message: str = "Insufficient points balance"):
        super().__init__(message, {"required": str(required), "available": str(available)})
        self.required = required
        self.available = available


class OutOfStockError(CommerceError):
    kind = "out_of_stock"
    status_code = 409

    def __init__(self, failures: list[dict[str, Any]], message: str = "Insufficient stock"):
        super().__init__(message, {"products": failures})
        self.failures = failures


class ConflictError(CommerceError):
    kind = "conflict"
    status_code = 409


class InternalError(CommerceError):
    kind = "internal"
    status_code = 500


class PaymentGatewayError(CommerceError):
    kind = "payment_gateway"
    status_code = 502
