"""Schemas for guest sessions, external logins and guest migration."""
from pydantic import Field

from app.schemas.base import ApiModel


class SessionTokenRead(ApiModel):
    identity_id: int
    token: str
    is_guest: bool


class ExternalLoginCreate(ApiModel):
    provider: str = Field(min_length=1, max_length=50)
    subject: str = Field(min_length=1, max_length=255)
    email: str | None = Field(default=None, max_length=255)
    display_name: str | None = Field(default=None, max_length=200)


class ExternalLoginRead(SessionTokenRead):
    created: bool


class MigrateGuestRequest(ApiModel):
    guest_identity_id: int


class MigrateGuestRead(ApiModel):
    identity_id: int
    guest_identity_id: int
    orders_moved: int
    consultations_moved: int
    order_count: int
