"""Move a guest shopper's orders and consultations to a registered identity."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.consultation import Consultation
from app.models.identity import Identity
from app.models.order import Order
from app.services.identities import revoke_sessions
from app.utils.audit import log_audit
from app.utils.errors import InvalidGuestIdentity, MigrationVerificationFailed, StoreWriteFailed
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MigrationResult:
    identity: Identity
    guest_identity_id: int
    orders_moved: int
    consultations_moved: int
    sessions_revoked: int
    order_count: int


def migrate_guest(db: Session, *, target: Identity, guest_identity_id: int) -> MigrationResult:
    """Re-parent everything owned by ``guest_identity_id`` onto ``target``.

    ``target`` must come from the authenticated session. The deactivation of
    the guest is a conditional update, so only one of several concurrent or
    retried calls can succeed; the others get ``InvalidGuestIdentity``.
    """

    if target.is_guest or not target.is_active:
        raise InvalidGuestIdentity(
            "Only an active registered identity can receive guest data.",
            details={"identity_id": target.id},
        )
    if guest_identity_id == target.id:
        raise InvalidGuestIdentity("Guest and target identity must differ.")

    now = utcnow()
    try:
        deactivated = db.execute(
            update(Identity)
            .where(
                Identity.id == guest_identity_id,
                Identity.is_guest.is_(True),
                Identity.is_active.is_(True),
            )
            .values(
                is_active=False,
                migrated_to_id=target.id,
                deactivated_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        if deactivated != 1:
            db.rollback()
            logger.info(
                "Guest migration rejected",
                extra={"guest_identity_id": guest_identity_id, "identity_id": target.id},
            )
            raise InvalidGuestIdentity(details={"guest_identity_id": guest_identity_id})

        orders_moved = db.execute(
            update(Order)
            .where(Order.buyer_id == guest_identity_id)
            .values(buyer_id=target.id, updated_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount or 0
        consultations_moved = db.execute(
            update(Consultation)
            .where(Consultation.identity_id == guest_identity_id)
            .values(identity_id=target.id, updated_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount or 0
        sessions_revoked = revoke_sessions(db, guest_identity_id)

        log_audit(
            db,
            actor=f"identity:{target.id}",
            action="GUEST_MIGRATED",
            entity="Identity",
            entity_id=guest_identity_id,
            data={
                "target_identity_id": target.id,
                "orders_moved": orders_moved,
                "consultations_moved": consultations_moved,
                "sessions_revoked": sessions_revoked,
            },
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            "Guest migration failed; nothing was moved",
            extra={"guest_identity_id": guest_identity_id, "identity_id": target.id},
        )
        raise StoreWriteFailed("Guest migration failed, please retry.") from exc

    logger.info(
        "Guest identity migrated",
        extra={
            "guest_identity_id": guest_identity_id,
            "identity_id": target.id,
            "orders_moved": orders_moved,
            "consultations_moved": consultations_moved,
        },
    )

    try:
        refreshed = db.get(Identity, target.id, populate_existing=True)
        order_count = db.scalar(
            select(func.count()).select_from(Order).where(Order.buyer_id == target.id)
        )
    except SQLAlchemyError as exc:
        logger.error(
            "Guest migration committed but verification read failed",
            exc_info=True,
            extra={"guest_identity_id": guest_identity_id, "identity_id": target.id},
        )
        raise MigrationVerificationFailed() from exc
    if refreshed is None:
        raise MigrationVerificationFailed(details={"identity_id": target.id})

    return MigrationResult(
        identity=refreshed,
        guest_identity_id=guest_identity_id,
        orders_moved=orders_moved,
        consultations_moved=consultations_moved,
        sessions_revoked=sessions_revoked,
        order_count=order_count or 0,
    )


__all__ = ["MigrationResult", "migrate_guest"]
