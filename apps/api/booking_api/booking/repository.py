from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from booking_api.booking.models import BookingRequest


PENDING = "pending"
TERMINAL_STATUSES = frozenset({"approved", "booked", "rejected", "cancelled"})


@dataclass(frozen=True, slots=True)
class StatusSnapshot:
    record_id: str
    found: bool
    status: str | None = None
    processed_by: str | None = None
    processed_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.found and self.status == PENDING

    @property
    def is_terminal(self) -> bool:
        return self.found and self.status in TERMINAL_STATUSES


class BookingStatusOracle:
    """Read-only view of a booking request's lifecycle state.

    Selects columns rather than entities so the ORM identity map can never hand
    back a stale ``status`` loaded earlier in the same session.
    """

    def current_status(self, session: Session, record_id: str) -> StatusSnapshot:
        row = session.execute(
            select(
                BookingRequest.status,
                BookingRequest.processed_by,
                BookingRequest.processed_at,
            ).where(BookingRequest.id == record_id)
        ).one_or_none()
        if row is None:
            return StatusSnapshot(record_id=record_id, found=False)
        return StatusSnapshot(
            record_id=record_id,
            found=True,
            status=row.status,
            processed_by=row.processed_by,
            processed_at=row.processed_at,
        )


status_oracle = BookingStatusOracle()
