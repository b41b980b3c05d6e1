"""Identity and bearer-session services."""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Mapping

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.identity import AuthSession, Identity
from app.utils.audit import log_audit
from app.utils.errors import Unauthenticated
from app.utils.time import as_utc, utcnow
from app.utils.tokens import gen_token, hash_token

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("shipping_name", "postal_code", "prefecture", "city", "address", "phone")


def issue_session(db: Session, identity: Identity) -> str:
    """Create a bearer session for ``identity`` and return the raw token.

    The caller commits.
    """

    raw, prefix, token_hash = gen_token()
    ttl = timedelta(days=get_settings().SESSION_TTL_DAYS)
    db.add(
        AuthSession(
            identity_id=identity.id,
            prefix=prefix,
            token_hash=token_hash,
            expires_at=utcnow() + ttl,
        )
    )
    return raw


def create_guest_identity(db: Session) -> tuple[Identity, str]:
    """Create an unauthenticated shopper identity with its first session."""

    guest = Identity(is_guest=True, is_active=True)
    db.add(guest)
    db.flush()
    token = issue_session(db, guest)
    log_audit(db, actor="system", action="GUEST_CREATED", entity="Identity", entity_id=guest.id)
    db.commit()
    db.refresh(guest)
    logger.info("Guest identity created", extra={"identity_id": guest.id})
    return guest, token


def register_external_login(
    db: Session,
    *,
    provider: str,
    subject: str,
    email: str | None = None,
    display_name: str | None = None,
) -> tuple[Identity, str, bool]:
    """Upsert the registered identity for a verified external subject.

    Returns the identity, a fresh session token and whether it was created.
    """

    stmt = select(Identity).where(
        Identity.external_provider == provider,
        Identity.external_subject == subject,
    )
    identity = db.scalars(stmt).first()
    created = False
    if identity is None:
        identity = Identity(
            is_guest=False,
            is_active=True,
            external_provider=provider,
            external_subject=subject,
            email=email,
            display_name=display_name,
        )
        db.add(identity)
        try:
            db.flush()
            created = True
        except IntegrityError:
            # A concurrent first login for the same subject inserted it first.
            db.rollback()
            logger.info(
                "External login lost the insert race",
                extra={"provider": provider},
            )
            identity = db.scalars(stmt).one()
    if not created:
        if email and not identity.email:
            identity.email = email
        if display_name and not identity.display_name:
            identity.display_name = display_name

    if not identity.is_active:
        db.rollback()
        raise Unauthenticated("Identity is deactivated.")

    token = issue_session(db, identity)
    log_audit(
        db,
        actor=f"{provider}:login",
        action="IDENTITY_CREATED" if created else "IDENTITY_LOGIN",
        entity="Identity",
        entity_id=identity.id,
        data={"provider": provider},
    )
    db.commit()
    db.refresh(identity)
    return identity, token, created


def resolve_session(db: Session, raw_token: str) -> Identity:
    """Return the active identity behind a bearer token or raise ``Unauthenticated``."""

    stmt = select(AuthSession).where(AuthSession.token_hash == hash_token(raw_token))
    auth_session = db.scalars(stmt).first()
    now = utcnow()
    if auth_session is None or auth_session.revoked_at is not None:
        raise Unauthenticated("Invalid or revoked session.")
    if as_utc(auth_session.expires_at) <= now:
        raise Unauthenticated("Session expired.")

    identity = db.get(Identity, auth_session.identity_id, populate_existing=True)
    if identity is None or not identity.is_active:
        raise Unauthenticated(
            "Identity is no longer active.",
            details={"reason": "IDENTITY_INACTIVE"},
        )

    auth_session.last_used_at = now
    db.commit()
    return identity


def revoke_sessions(db: Session, identity_id: int) -> int:
    """Revoke every live session of ``identity_id``. The caller commits."""

    stmt = (
        update(AuthSession)
        .where(AuthSession.identity_id == identity_id, AuthSession.revoked_at.is_(None))
        .values(revoked_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount or 0


def backfill_shipping_profile(identity: Identity, shipping: Mapping[str, Any]) -> list[str]:
    """Copy non-empty shipping fields onto a registered identity's profile.

    Returns the names of the updated fields. Guests are left untouched.
    """

    if identity.is_guest:
        return []
    source = {
        "shipping_name": shipping.get("name"),
        "postal_code": shipping.get("postal_code"),
        "prefecture": shipping.get("prefecture"),
        "city": shipping.get("city"),
        "address": shipping.get("address"),
        "phone": shipping.get("phone"),
    }
    updated: list[str] = []
    for field in PROFILE_FIELDS:
        value = source[field]
        if value:
            setattr(identity, field, value)
            updated.append(field)
    return updated
