from booking_api.booking.api import router
from booking_api.booking.models import BookingEvent, BookingRequest, Business, Opportunity, Task
from booking_api.booking.redirects import RedirectResolver
from booking_api.booking.repository import BookingStatusOracle, StatusSnapshot, status_oracle
from booking_api.booking.service import (
    BookingTransitionService,
    TransitionOutcome,
    TransitionRejected,
    TransitionSucceeded,
    booking_transition_service,
)
from booking_api.booking.tokens import ActionClaims, ActionLinks, ActionTokenCodec

__all__ = [
    "router",
    "BookingEvent",
    "BookingRequest",
    "Business",
    "Opportunity",
    "Task",
    "RedirectResolver",
    "BookingStatusOracle",
    "StatusSnapshot",
    "status_oracle",
    "BookingTransitionService",
    "TransitionOutcome",
    "TransitionRejected",
    "TransitionSucceeded",
    "booking_transition_service",
    "ActionClaims",
    "ActionLinks",
    "ActionTokenCodec",
]
