"""Audit logging helper utilities."""
from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy.orm import Session

from app.models.audit import AuditLog
from app.utils.time import utcnow


SENSITIVE_KEYS = {
    "email",
    "customer_email",
    "phone",
    "name",
    "shipping_name",
    "address",
    "postal_code",
    "token",
}


def _mask_value(key: str, value: Any) -> Any:
    if value is None:
        return None

    if key in {"email", "customer_email"}:
        text = str(value)
        if "@" in text:
            _, domain = text.split("@", 1)
            return f"***@{domain}"
        return "***"

    if key == "phone":
        digits = "".join(ch for ch in str(value) if ch.isdigit())
        return f"***{digits[-2:]}" if digits else "***"

    if key == "postal_code":
        text = str(value)
        return f"{text[:3]}***" if len(text) > 3 else "***"

    if key == "token":
        text = str(value)
        return f"{text[:8]}***" if len(text) > 8 else "***"

    return "***"


def sanitize_payload_for_audit(data: Any) -> Any:
    """Return a copy of ``data`` with obvious PII fields masked."""

    if isinstance(data, Mapping):
        sanitized: dict[str, Any] = {}
        for key, value in data.items():
            if key in SENSITIVE_KEYS and not isinstance(value, (Mapping, list)):
                sanitized[key] = _mask_value(key, value)
            else:
                sanitized[key] = sanitize_payload_for_audit(value)
        return sanitized

    if isinstance(data, list):
        return [sanitize_payload_for_audit(item) for item in data]

    return data


def log_audit(
    db: Session,
    *,
    actor: str,
    action: str,
    entity: str,
    entity_id: int | None,
    data: dict | None = None,
) -> None:
    """Persist an audit entry in the shared AuditLog table."""

    db.add(
        AuditLog(
            actor=actor,
            action=action,
            entity=entity,
            entity_id=entity_id if entity_id is not None else 0,
            data_json=sanitize_payload_for_audit(data or {}),
            at=utcnow(),
        )
    )


def actor_for_identity(identity: Any, fallback: str = "system") -> str:
    """Return the canonical actor string for an authenticated identity."""

    identity_id = getattr(identity, "id", None)
    if identity_id is None:
        return fallback
    if getattr(identity, "vendor_id", None) is not None:
        return f"vendor:{identity.vendor_id}:identity:{identity_id}"
    return f"identity:{identity_id}"
