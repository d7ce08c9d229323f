# Overview: Error taxonomy shared by the settlement services and the API layer.

from __future__ import annotations


class SettlementError(Exception):
    """Base for every user-facing failure. Raised before or instead of any write."""

    code = "error"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(SettlementError):
    """400-level input problem, reported per field."""

    code = "validation_error"

    def __init__(self, message: str, fields: dict | None = None, details: dict | None = None):
        super().__init__(message, details)
        self.fields = fields or {}

    def to_dict(self) -> dict:
        payload = super().to_dict()
        if self.fields:
            payload["fields"] = self.fields
        return payload


class InvalidQuantity(SettlementError):
    code = "invalid_quantity"


class EmptyCart(SettlementError):
    code = "empty_cart"

    def __init__(self, message: str = "Cart is empty"):
        super().__init__(message)


class NotFound(SettlementError):
    code = "not_found"
    status_code = 404


class InsufficientStock(SettlementError):
    code = "insufficient_stock"
    status_code = 409

    def __init__(self, product_id: int, requested: int, available: int, name: str | None = None):
        label = name or f"product {product_id}"
        super().__init__(
            f"Not enough stock for {label}. Available: {available}",
            details={"product_id": product_id, "requested_quantity": requested, "available": available},
        )
        self.product_id = product_id


class AlreadyCancelled(SettlementError):
    code = "already_cancelled"
    status_code = 409


class InvalidTransition(SettlementError):
    """Sale status change that the lifecycle does not allow."""

    code = "invalid_transition"
    status_code = 409


class ConflictError(SettlementError):
    """409-level uniqueness conflict (e.g., duplicate barcode)."""

    code = "conflict"
    status_code = 409
