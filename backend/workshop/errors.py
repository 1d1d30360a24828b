# Overview: Exception taxonomy shared by services, the CLI and the HTTP error handlers.

from __future__ import annotations


class WorkshopError(Exception):
    """Base class for expected, user-facing failures."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(WorkshopError, ValueError):
    """400-level input problem."""

    status_code = 400


class PermissionDeniedError(WorkshopError):
    """403-level: the actor's role does not allow the operation."""

    status_code = 403


class NotFoundError(WorkshopError, LookupError):
    """404-level: a referenced entity does not exist."""

    status_code = 404


class ConflictError(WorkshopError):
    """409-level business rule conflict (e.g., duplicate invoice, re-refund)."""

    status_code = 409


class InsufficientStockError(ConflictError):
    """
    Raised when a debit exceeds the quantity on hand.

    Carries the available quantity so callers can show it.
    """

    def __init__(self, *, item_id: int, item_name: str, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for {item_name}. Available: {available}",
            details={
                "item_id": item_id,
                "item_name": item_name,
                "requested": requested,
                "available": available,
            },
        )
        self.item_id = item_id
        self.requested = requested
        self.available = available
