# Overview: Service-layer error taxonomy shared by services, routes and the CLI.

"""
Every business failure raised by the service layer is a ServiceError.

Each error carries:
- code: stable machine-readable identifier (never changes between releases)
- status_code: the HTTP status the API layer answers with
- details: structured context for the caller (e.g. requested vs available stock)

Routes never surface raw SQLAlchemy errors; services.concurrency converts them
to PersistenceError / ConflictError after rolling back.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for typed business failures."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }


class ValidationError(ServiceError):
    """400-level input problem."""

    code = "VALIDATION_ERROR"
    status_code = 400


class UnauthorizedError(ServiceError):
    code = "UNAUTHORIZED"
    status_code = 401


class ForbiddenError(ServiceError):
    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(ServiceError):
    code = "NOT_FOUND"
    status_code = 404


class ConflictError(ServiceError):
    """409-level conflict (overlapping booking, duplicate SKU, stale write)."""

    code = "CONFLICT"
    status_code = 409


class InsufficientStockError(ConflictError):
    """Availability check failed; details carry requested vs available."""

    code = "INSUFFICIENT_STOCK"

    def __init__(self, message: str, *, product_id: str, requested: int, available: int):
        super().__init__(
            message,
            details={
                "product_id": product_id,
                "requested": requested,
                "available": available,
            },
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class BusinessRuleViolationError(ServiceError):
    """Invalid state transition or broken domain invariant."""

    code = "BUSINESS_RULE_VIOLATION"
    status_code = 422


class PersistenceError(ServiceError):
    """The database rejected or failed the unit of work."""

    code = "PERSISTENCE_ERROR"
    status_code = 503
