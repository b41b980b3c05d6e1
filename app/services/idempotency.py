"""Idempotency gate over the processed-events ledger.

``claim`` is the only entry point that decides whether a gateway event may be
applied. New events are claimed by inserting a ``processing`` row, so the
unique constraint on ``event_id`` settles simultaneous deliveries. Failed
events (and processing claims whose worker died) are re-claimed with a
conditional update keyed on the ``attempts`` counter.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.processed_event import ProcessedEvent, ProcessingStatus
from app.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_LEASE_SECONDS = 120


class ClaimOutcome(str, enum.Enum):
    ALREADY_DONE = "already_done"
    CLAIMED = "claimed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Claim:
    outcome: ClaimOutcome
    event: ProcessedEvent | None = None

    @property
    def claimed(self) -> bool:
        return self.outcome is ClaimOutcome.CLAIMED


def get_event(db: Session, event_id: str) -> ProcessedEvent | None:
    """Return the ledger row for ``event_id`` bypassing the identity map."""

    stmt = (
        select(ProcessedEvent)
        .where(ProcessedEvent.event_id == event_id)
        .execution_options(populate_existing=True)
    )
    return db.scalars(stmt).first()


def _lease_expired(row: ProcessedEvent, now: datetime, lease_seconds: int) -> bool:
    started = as_utc(row.claimed_at or row.received_at)
    return started is None or started <= now - timedelta(seconds=lease_seconds)


def claim(
    db: Session,
    event_id: str,
    event_type: str,
    *,
    lease_seconds: int = DEFAULT_LEASE_SECONDS,
    now: datetime | None = None,
) -> Claim:
    """Try to take ownership of ``event_id`` for processing.

    Commits its own write so concurrent workers observe the claim.
    """

    now = now or utcnow()
    existing = get_event(db, event_id)

    if existing is None:
        row = ProcessedEvent(
            event_id=event_id,
            event_type=event_type,
            processing_status=ProcessingStatus.PROCESSING,
            attempts=1,
            received_at=now,
            claimed_at=now,
        )
        db.add(row)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info("Concurrent delivery lost the claim race", extra={"event_id": event_id})
            winner = get_event(db, event_id)
            if winner is not None and winner.processing_status == ProcessingStatus.SUCCESS:
                return Claim(ClaimOutcome.ALREADY_DONE, winner)
            return Claim(ClaimOutcome.REJECTED, winner)
        return Claim(ClaimOutcome.CLAIMED, row)

    if existing.processing_status == ProcessingStatus.SUCCESS:
        return Claim(ClaimOutcome.ALREADY_DONE, existing)

    if existing.processing_status == ProcessingStatus.PROCESSING and not _lease_expired(
        existing, now, lease_seconds
    ):
        return Claim(ClaimOutcome.REJECTED, existing)

    previous_status = existing.processing_status
    stmt = (
        update(ProcessedEvent)
        .where(
            ProcessedEvent.id == existing.id,
            ProcessedEvent.processing_status == previous_status,
            ProcessedEvent.attempts == existing.attempts,
        )
        .values(
            processing_status=ProcessingStatus.PROCESSING,
            attempts=ProcessedEvent.attempts + 1,
            claimed_at=now,
            completed_at=None,
            error_code=None,
            error_message=None,
        )
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    if result.rowcount != 1:
        db.rollback()
        return Claim(ClaimOutcome.REJECTED, existing)
    db.commit()
    logger.info(
        "Re-claimed gateway event",
        extra={"event_id": event_id, "previous_status": previous_status.value},
    )
    return Claim(ClaimOutcome.CLAIMED, get_event(db, event_id))


def mark_success(db: Session, event_id: str, snapshot: dict[str, Any], *, attempts: int) -> bool:
    """Flag attempt ``attempts`` of ``event_id`` as applied. The caller commits.

    Returns ``False`` when the claim was taken over by another worker after its
    lease ran out; the caller must then roll back its order changes.
    """

    stmt = (
        update(ProcessedEvent)
        .where(
            ProcessedEvent.event_id == event_id,
            ProcessedEvent.processing_status == ProcessingStatus.PROCESSING,
            ProcessedEvent.attempts == attempts,
        )
        .values(
            processing_status=ProcessingStatus.SUCCESS,
            result_snapshot=snapshot,
            error_code=None,
            error_message=None,
            completed_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1


def mark_failed(
    db: Session,
    event_id: str,
    *,
    attempts: int,
    error_code: str,
    error_message: str,
    snapshot: dict[str, Any] | None = None,
) -> bool:
    """Record a failed attempt and commit. ``failed`` rows stay reprocessable.

    Only the holder of attempt ``attempts`` may write, and a ``success`` row is
    never downgraded. Returns whether the row was updated.
    """

    stmt = (
        update(ProcessedEvent)
        .where(
            ProcessedEvent.event_id == event_id,
            ProcessedEvent.processing_status != ProcessingStatus.SUCCESS,
            ProcessedEvent.attempts == attempts,
        )
        .values(
            processing_status=ProcessingStatus.FAILED,
            error_code=error_code,
            error_message=error_message[:2000],
            result_snapshot=snapshot,
            completed_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    updated = db.execute(stmt).rowcount == 1
    db.commit()
    if not updated:
        logger.warning(
            "Failure not recorded; the claim moved on",
            extra={"event_id": event_id, "attempts": attempts, "error_code": error_code},
        )
    return updated


__all__ = [
    "Claim",
    "ClaimOutcome",
    "claim",
    "get_event",
    "mark_success",
    "mark_failed",
]
