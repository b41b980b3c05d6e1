"""Stripe SDK wrapper for hosted checkout and webhook verification."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Mapping, Sequence

import stripe

from app.config import Settings, get_settings


class StripeClient:
    """Wrapper around the Stripe Python SDK to isolate gateway concerns."""

    def __init__(self, settings: Settings) -> None:
        """Initialise the client and set the API key when one is configured."""

        self.settings = settings
        self._ensure_enabled()
        self._secret_key = settings.STRIPE_SECRET_KEY
        self._webhook_secret = settings.STRIPE_WEBHOOK_SECRET
        self._tolerance = settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS

        if self._secret_key:
            stripe.api_key = self._secret_key

    @classmethod
    def from_env(cls) -> "StripeClient":
        """Instantiate a client using the cached application settings."""

        return cls(get_settings())

    def _ensure_enabled(self) -> None:
        if not self.settings.STRIPE_ENABLED:
            raise RuntimeError("Stripe integration is disabled; enable STRIPE_ENABLED to proceed.")

    def _ensure_api_key(self) -> None:
        if not self._secret_key:
            raise RuntimeError("Stripe secret key is missing; configure STRIPE_SECRET_KEY.")

    def create_checkout_session(
        self,
        *,
        line_items: Sequence[Mapping[str, Any]],
        metadata: Mapping[str, str],
        client_reference_id: str,
        expires_at: datetime,
        customer_email: str | None = None,
        idempotency_key: str | None = None,
    ) -> stripe.checkout.Session:
        """Create a hosted Checkout Session in payment mode.

        ``metadata`` is attached to both the session and its PaymentIntent so
        every webhook can be traced back to the checkout attempt.
        """

        self._ensure_api_key()
        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": list(line_items),
            "metadata": dict(metadata),
            "payment_intent_data": {"metadata": dict(metadata)},
            "client_reference_id": client_reference_id,
            "success_url": self.settings.CHECKOUT_SUCCESS_URL,
            "cancel_url": self.settings.CHECKOUT_CANCEL_URL,
            "expires_at": int(expires_at.timestamp()),
            "shipping_address_collection": {
                "allowed_countries": list(self.settings.CHECKOUT_SHIPPING_COUNTRIES),
            },
            "phone_number_collection": {"enabled": True},
        }
        if customer_email:
            params["customer_email"] = customer_email
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        return stripe.checkout.Session.create(**params)

    def retrieve_checkout_session(self, session_id: str) -> dict[str, Any]:
        """Return the gateway-side payment status of a checkout session."""

        self._ensure_api_key()
        session = stripe.checkout.Session.retrieve(session_id)
        return {
            "id": session["id"],
            "status": session.get("status"),
            "payment_status": session.get("payment_status"),
            "amount_total": session.get("amount_total"),
            "currency": session.get("currency"),
        }

    def expire_checkout_session(self, session_id: str) -> None:
        """Expire an open session so the buyer can no longer pay it."""

        self._ensure_api_key()
        stripe.checkout.Session.expire(session_id)

    def verify_webhook_payload(self, payload: bytes, sig_header: str) -> dict[str, Any]:
        """Verify the ``Stripe-Signature`` header and return the decoded event.

        Raises ``stripe.SignatureVerificationError`` when the signature or its
        timestamp does not check out, ``ValueError`` on a malformed body.
        """

        if not self._webhook_secret:
            raise RuntimeError(
                "Stripe webhook secret is missing; configure STRIPE_WEBHOOK_SECRET for verification."
            )

        text = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else payload
        stripe.WebhookSignature.verify_header(text, sig_header, self._webhook_secret, self._tolerance)
        event = json.loads(text)
        if not isinstance(event, dict):
            raise ValueError("Webhook payload is not a JSON object.")
        return event


def build_line_item(*, name: str, unit_amount: int, quantity: int, currency: str,
                    description: str | None = None, image_url: str | None = None) -> dict[str, Any]:
    """Shape one catalog line as a Checkout ``line_items`` entry."""

    product_data: dict[str, Any] = {"name": name}
    if description:
        product_data["description"] = description
    if image_url:
        product_data["images"] = [image_url]
    return {
        "price_data": {
            "currency": currency,
            "product_data": product_data,
            "unit_amount": unit_amount,
        },
        "quantity": quantity,
    }
