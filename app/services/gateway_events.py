"""Map verified Stripe event payloads onto the closed set of events we act on."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Union

from app.utils.time import from_unix

COMPLETED_TYPES = {"checkout.session.completed", "checkout.session.async_payment_succeeded"}
FAILED_TYPES = {"checkout.session.async_payment_failed"}
EXPIRED_TYPES = {"checkout.session.expired"}


@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    event_type: str
    session_id: str
    amount_total: int | None
    currency: str | None
    payment_ref: str | None
    customer_email: str | None
    shipping: dict[str, Any] = field(default_factory=dict)
    paid_at: datetime | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PaymentFailed:
    event_id: str
    event_type: str
    session_id: str
    payment_ref: str | None = None


@dataclass(frozen=True)
class CheckoutExpired:
    event_id: str
    event_type: str
    session_id: str


@dataclass(frozen=True)
class Unhandled:
    event_id: str
    event_type: str
    reason: str = "unsupported_type"


GatewayEvent = Union[CheckoutCompleted, PaymentFailed, CheckoutExpired, Unhandled]


def _as_ref(value: Any) -> str | None:
    # Expanded objects carry their id; plain references are strings.
    if isinstance(value, Mapping):
        return value.get("id")
    return value or None


def extract_shipping(session: Mapping[str, Any]) -> dict[str, Any]:
    """Flatten the collected shipping and contact details of a session.

    Newer API versions nest ``shipping_details`` under
    ``collected_information``; both shapes are accepted.
    """

    collected = session.get("collected_information") or {}
    details = session.get("shipping_details") or collected.get("shipping_details") or {}
    customer = session.get("customer_details") or {}
    address = details.get("address") or customer.get("address") or {}

    lines = [address.get("line1"), address.get("line2")]
    street = " ".join(part for part in lines if part) or None

    return {
        "name": details.get("name") or customer.get("name"),
        "postal_code": address.get("postal_code"),
        "prefecture": address.get("state"),
        "city": address.get("city"),
        "address": street,
        "phone": customer.get("phone"),
    }


def parse_event(event: Mapping[str, Any]) -> GatewayEvent:
    """Return the typed variant for a verified event dict.

    Callers have already checked that ``id`` and ``type`` are present.
    """

    event_id = event["id"]
    event_type = event["type"]
    obj = (event.get("data") or {}).get("object") or {}
    session_id = obj.get("id")

    if event_type in COMPLETED_TYPES:
        if not session_id:
            return Unhandled(event_id, event_type, reason="missing_session")
        if obj.get("payment_status") != "paid":
            # Delayed payment methods complete the session before funds settle.
            return Unhandled(event_id, event_type, reason="not_paid")
        customer = obj.get("customer_details") or {}
        created = event.get("created")
        return CheckoutCompleted(
            event_id=event_id,
            event_type=event_type,
            session_id=session_id,
            amount_total=obj.get("amount_total"),
            currency=obj.get("currency"),
            payment_ref=_as_ref(obj.get("payment_intent")),
            customer_email=customer.get("email") or obj.get("customer_email"),
            shipping=extract_shipping(obj),
            paid_at=from_unix(created) if created else None,
            metadata=dict(obj.get("metadata") or {}),
        )

    if event_type in FAILED_TYPES:
        if not session_id:
            return Unhandled(event_id, event_type, reason="missing_session")
        return PaymentFailed(
            event_id=event_id,
            event_type=event_type,
            session_id=session_id,
            payment_ref=_as_ref(obj.get("payment_intent")),
        )

    if event_type in EXPIRED_TYPES:
        if not session_id:
            return Unhandled(event_id, event_type, reason="missing_session")
        return CheckoutExpired(event_id=event_id, event_type=event_type, session_id=session_id)

    return Unhandled(event_id, event_type)


__all__ = [
    "CheckoutCompleted",
    "CheckoutExpired",
    "GatewayEvent",
    "PaymentFailed",
    "Unhandled",
    "extract_shipping",
    "parse_event",
]
