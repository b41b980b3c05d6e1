# app/security.py
"""Authentication dependencies: bearer sessions, vendor staff, internal callers."""
from __future__ import annotations

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from app.config import get_settings
from app.db import get_db
from app.models.identity import Identity
from app.services.identities import resolve_session
from app.utils.errors import Forbidden, Unauthenticated
from app.utils.tokens import constant_time_equals


def _extract_bearer(authorization: str | None = Header(default=None)) -> str | None:
    """Pull the token out of `Authorization: Bearer ...`."""
    if authorization and authorization.startswith("Bearer "):
        token = authorization.split(" ", 1)[1].strip()
        return token or None
    return None


def require_identity(
    db: Session = Depends(get_db),
    token: str | None = Depends(_extract_bearer),
) -> Identity:
    """Return the active identity behind the bearer session token."""
    if not token:
        raise Unauthenticated("Session token required.")
    return resolve_session(db, token)


def require_registered_identity(identity: Identity = Depends(require_identity)) -> Identity:
    if identity.is_guest:
        raise Unauthenticated(
            "A registered login is required.",
            details={"reason": "GUEST_SESSION"},
        )
    return identity


def require_vendor_staff(identity: Identity = Depends(require_identity)) -> Identity:
    if identity.vendor_id is None:
        raise Forbidden("Vendor staff access required.")
    return identity


def require_internal_key(x_internal_key: str | None = Header(default=None, alias="X-Internal-Key")) -> None:
    """Guard endpoints only the trusted auth collaborator may call."""
    expected = get_settings().INTERNAL_API_KEY
    if not expected:
        raise Forbidden("Internal API is disabled.")
    if not x_internal_key or not constant_time_equals(x_internal_key, expected):
        raise Unauthenticated("Invalid internal API key.")


__all__ = [
    "require_identity",
    "require_registered_identity",
    "require_vendor_staff",
    "require_internal_key",
]
