"""Identity endpoints: guest sessions, external logins, guest migration."""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.identity import Identity
from app.schemas.identity import (
    ExternalLoginCreate,
    ExternalLoginRead,
    MigrateGuestRead,
    MigrateGuestRequest,
    SessionTokenRead,
)
from app.security import require_identity, require_internal_key
from app.services import guest_migration
from app.services import identities as identity_service

router = APIRouter(tags=["auth"])


@router.post("/auth/guest", response_model=SessionTokenRead, status_code=status.HTTP_201_CREATED)
def create_guest(db: Session = Depends(get_db)) -> SessionTokenRead:
    guest, token = identity_service.create_guest_identity(db)
    return SessionTokenRead(identity_id=guest.id, token=token, is_guest=True)


@router.post(
    "/internal/auth/external-login",
    response_model=ExternalLoginRead,
    dependencies=[Depends(require_internal_key)],
)
def external_login(payload: ExternalLoginCreate, db: Session = Depends(get_db)) -> ExternalLoginRead:
    """Called by the auth front end once the provider has verified the subject."""

    identity, token, created = identity_service.register_external_login(
        db,
        provider=payload.provider,
        subject=payload.subject,
        email=payload.email,
        display_name=payload.display_name,
    )
    return ExternalLoginRead(identity_id=identity.id, token=token, is_guest=False, created=created)


@router.post("/auth/migrate-guest", response_model=MigrateGuestRead)
def migrate_guest(
    payload: MigrateGuestRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_identity),
) -> MigrateGuestRead:
    """Move the guest's orders to the identity of the calling session."""

    result = guest_migration.migrate_guest(
        db, target=identity, guest_identity_id=payload.guest_identity_id
    )
    return MigrateGuestRead(
        identity_id=result.identity.id,
        guest_identity_id=result.guest_identity_id,
        orders_moved=result.orders_moved,
        consultations_moved=result.consultations_moved,
        order_count=result.order_count,
    )
