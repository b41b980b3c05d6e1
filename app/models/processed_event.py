"""Idempotency ledger of gateway webhook events."""
import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum as SqlEnum, Index, Integer, JSON, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class ProcessingStatus(str, enum.Enum):
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


class ProcessedEvent(Base):
    """Represents an inbound gateway event and the outcome of applying it."""

    __tablename__ = "processed_events"
    __table_args__ = (
        UniqueConstraint("event_id", name="uq_processed_events_event_id"),
        Index("ix_processed_events_status", "processing_status"),
        Index("ix_processed_events_received_at", "received_at"),
    )

    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    processing_status: Mapped[ProcessingStatus] = mapped_column(
        SqlEnum(ProcessingStatus, name="processingstatus", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ProcessingStatus.PROCESSING,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    result_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
