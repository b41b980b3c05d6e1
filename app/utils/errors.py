"""Standardized error payloads and the domain error taxonomy."""
from __future__ import annotations

from typing import Any


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return payload


class DomainError(Exception):
    """Base class for errors raised by the reconciliation services.

    Subclasses carry a stable ``code`` and the HTTP status the API layer
    renders them with.
    """

    code = "DOMAIN_ERROR"
    status_code = 400
    default_message = "Request could not be processed."

    def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        return error_response(self.code, self.message, self.details or None)


class InvalidLineItem(DomainError):
    code = "INVALID_LINE_ITEM"
    status_code = 400
    default_message = "One or more line items cannot be purchased."


class GatewayUnavailable(DomainError):
    code = "GATEWAY_UNAVAILABLE"
    status_code = 500
    default_message = "Checkout failed, please retry."


class InvalidSignature(DomainError):
    code = "INVALID_SIGNATURE"
    status_code = 400
    default_message = "Webhook signature verification failed."


class UnknownOrderReference(DomainError):
    code = "UNKNOWN_ORDER_REFERENCE"
    status_code = 404
    default_message = "No order matches the referenced checkout."


class IllegalTransition(DomainError):
    code = "ILLEGAL_TRANSITION"
    status_code = 409
    default_message = "Order status transition is not allowed."


class AmountMismatch(DomainError):
    code = "AMOUNT_MISMATCH"
    status_code = 409
    default_message = "Settled amount does not match the order total."


class InvalidGuestIdentity(DomainError):
    code = "INVALID_GUEST_IDENTITY"
    status_code = 400
    default_message = "Invalid guest identity."


class MigrationVerificationFailed(DomainError):
    code = "MIGRATION_VERIFICATION_FAILED"
    status_code = 500
    default_message = "Guest data migration could not be verified."


class StoreUnavailable(DomainError):
    code = "STORE_UNAVAILABLE"
    status_code = 503
    default_message = "Persistence layer unavailable, please retry."


class StoreWriteFailed(StoreUnavailable):
    """Store failure on a buyer-facing write (checkout, guest migration).

    Same code as ``StoreUnavailable`` but rendered as 500; only the webhook
    relies on 503 to trigger a gateway redelivery.
    """

    status_code = 500
    default_message = "Request failed, please retry."


class WebhookInProgress(DomainError):
    code = "WEBHOOK_IN_PROGRESS"
    status_code = 409
    default_message = "Event is being processed by another worker, retry later."


class GatewayNotConfigured(DomainError):
    code = "STRIPE_NOT_CONFIGURED"
    status_code = 503
    default_message = "Payment gateway is not configured."


class Unauthenticated(DomainError):
    code = "UNAUTHENTICATED"
    status_code = 401
    default_message = "Authentication required."


class Forbidden(DomainError):
    code = "FORBIDDEN"
    status_code = 403
    default_message = "Not allowed."


class OrderNotFound(DomainError):
    code = "ORDER_NOT_FOUND"
    status_code = 404
    default_message = "Order not found."


# Errors that describe bad data in a verified gateway event. They are recorded
# on the ledger and acknowledged so the gateway stops redelivering.
WEBHOOK_ANOMALIES: tuple[type[DomainError], ...] = (
    UnknownOrderReference,
    IllegalTransition,
    AmountMismatch,
)


__all__ = [
    "error_response",
    "DomainError",
    "InvalidLineItem",
    "GatewayUnavailable",
    "InvalidSignature",
    "UnknownOrderReference",
    "IllegalTransition",
    "AmountMismatch",
    "InvalidGuestIdentity",
    "MigrationVerificationFailed",
    "StoreUnavailable",
    "StoreWriteFailed",
    "WebhookInProgress",
    "GatewayNotConfigured",
    "Unauthenticated",
    "Forbidden",
    "OrderNotFound",
    "WEBHOOK_ANOMALIES",
]
