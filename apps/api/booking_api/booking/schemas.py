from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


BookingStatus = Literal["draft", "pending", "approved", "booked", "rejected", "cancelled"]
TransitionTarget = Literal["approved", "rejected"]

REJECTION_REASON_MAX_LENGTH = 2000


class BookingRequestRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    business_email: str
    status: BookingStatus
    event_id: str | None
    business_id: str | None
    processed_at: datetime | None
    processed_by: str | None
    rejection_reason: str | None


class RejectionSubmission(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(min_length=1)
    reason: str = Field(min_length=1, max_length=REJECTION_REASON_MAX_LENGTH)
