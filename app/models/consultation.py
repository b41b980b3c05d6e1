"""Consultation (questionnaire) model."""
from sqlalchemy import ForeignKey, Index, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Consultation(Base):
    """Questionnaire answers owned by an identity; may lead to an order."""

    __tablename__ = "consultations"
    __table_args__ = (Index("ix_consultations_identity_id", "identity_id"),)

    identity_id: Mapped[int] = mapped_column(ForeignKey("identities.id"), nullable=False)
    product_id: Mapped[int | None] = mapped_column(ForeignKey("products.id"), nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="submitted")
    answers_json: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
