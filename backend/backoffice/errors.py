# Overview: Typed error taxonomy shared by services and routes.

"""
Engine errors.

Every failure a caller can act on is one of these classes. Routes turn them
into JSON bodies ``{"error", "code", "details"}`` with ``status_code``.
Anything else escaping a service is a bug and is reported as a 500.
"""

from __future__ import annotations

from typing import Any


class EngineError(Exception):
    """Base class for all domain failures."""

    status_code = 400
    code = "ENGINE_ERROR"
    retryable = False

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        if self.retryable:
            body["retryable"] = True
        return body


class ValidationError(EngineError):
    """Malformed input, raised before any write."""

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: str | None = None, details: dict | None = None):
        details = dict(details or {})
        if field:
            details["field"] = field
        super().__init__(message, details=details)
        self.field = field


class Forbidden(EngineError):
    status_code = 403
    code = "FORBIDDEN"


class NotFound(EngineError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, entity: str, identifier: Any = None):
        details = {"entity": entity}
        if identifier is not None:
            details["id"] = identifier
        super().__init__(f"{entity} not found", details=details)
        self.entity = entity


class InsufficientStock(EngineError):
    """
    A debit would take a stock record below zero.

    ``items`` lists every offending (variant, branch) pair so a sale with
    several short lines reports them all at once.
    """

    status_code = 409
    code = "INSUFFICIENT_STOCK"

    def __init__(self, items: list[dict]):
        first = items[0]
        if len(items) == 1:
            message = (
                f"Insufficient stock for {first.get('product_name') or 'variant ' + str(first['variant_id'])}. "
                f"Available: {first['available']}, requested: {first['requested']}"
            )
        else:
            message = f"Insufficient stock for {len(items)} items"
        super().__init__(message, details={"items": items})
        self.items = items

    @classmethod
    def single(cls, variant_id: int, branch_id: int, available: int, requested: int, product_name: str | None = None):
        return cls([{
            "variant_id": variant_id,
            "branch_id": branch_id,
            "available": available,
            "requested": requested,
            "product_name": product_name,
        }])


class ExceedsReturnable(EngineError):
    status_code = 409
    code = "EXCEEDS_RETURNABLE"

    def __init__(self, transaction_item_id: int, returnable: int, requested: int):
        super().__init__(
            f"Return quantity {requested} exceeds returnable quantity {returnable}",
            details={
                "transaction_item_id": transaction_item_id,
                "returnable": returnable,
                "requested": requested,
            },
        )


class ReturnWindowExpired(EngineError):
    status_code = 422
    code = "RETURN_WINDOW_EXPIRED"

    def __init__(self, deadline_days: int, days_since_sale: int):
        super().__init__(
            f"Return window of {deadline_days} days has passed ({days_since_sale} days since sale)",
            details={"deadline_days": deadline_days, "days_since_sale": days_since_sale},
        )


class AlreadyProcessed(EngineError):
    status_code = 409
    code = "ALREADY_PROCESSED"

    def __init__(self, entity: str, status: str):
        super().__init__(f"{entity} already processed (status {status})", details={"status": status})


class AlreadyCancelled(EngineError):
    status_code = 409
    code = "ALREADY_CANCELLED"

    def __init__(self, entity: str):
        super().__init__(f"{entity} already cancelled")


class Conflict(EngineError):
    """Concurrent modification that survived every retry; safe to resubmit."""

    status_code = 409
    code = "CONFLICT"
    retryable = True
