from booking_api.models.audit import AuditLog
from booking_api.booking.models import (
	BookingEvent,
	BookingRequest,
	Business,
	Opportunity,
	Task,
)

__all__ = [
	"AuditLog",
	"BookingEvent",
	"BookingRequest",
	"Business",
	"Opportunity",
	"Task",
]
