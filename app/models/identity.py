"""Identity and bearer-session models."""
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class Identity(Base):
    """A shopper or vendor-staff identity, possibly an unauthenticated guest."""

    __tablename__ = "identities"
    __table_args__ = (
        UniqueConstraint(
            "external_provider",
            "external_subject",
            name="uq_identities_external_subject",
        ),
        Index("ix_identities_migrated_to_id", "migrated_to_id"),
    )

    is_guest: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    migrated_to_id: Mapped[int | None] = mapped_column(ForeignKey("identities.id"), nullable=True)
    deactivated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    external_provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    external_subject: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Set for vendor staff; drives fulfillment permissions.
    vendor_id: Mapped[int | None] = mapped_column(ForeignKey("vendors.id"), nullable=True)

    # Shipping profile, backfilled from the first settled checkout.
    shipping_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    prefecture: Mapped[str | None] = mapped_column(String(100), nullable=True)
    city: Mapped[str | None] = mapped_column(String(200), nullable=True)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    sessions = relationship("AuthSession", back_populates="identity")


class AuthSession(Base):
    """A bearer token bound to one identity. Only the HMAC hash is stored."""

    __tablename__ = "auth_sessions"
    __table_args__ = (
        UniqueConstraint("token_hash", name="uq_auth_sessions_token_hash"),
        Index("ix_auth_sessions_identity_id", "identity_id"),
    )

    identity_id: Mapped[int] = mapped_column(ForeignKey("identities.id"), nullable=False)
    prefix: Mapped[str] = mapped_column(String(32), nullable=False)
    token_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    identity = relationship("Identity", back_populates="sessions")
