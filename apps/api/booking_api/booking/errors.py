from __future__ import annotations

GENERIC_LINK_ERROR = "This link is invalid or has expired."
GENERIC_FAILURE = "We could not process your request. Please try the link again."


class BookingActionError(Exception):
    """Base error for the public approve/reject flow.

    ``code`` is stable and safe to log or count. ``public_message`` is the only
    text that may be shown to the anonymous caller.
    """

    code = "booking_action_error"
    public_message = GENERIC_FAILURE


class TokenError(BookingActionError):
    """Base for every action-token rejection. All share one public message."""

    code = "token_invalid"
    public_message = GENERIC_LINK_ERROR


class TokenMalformed(TokenError):
    code = "token_malformed"


class TokenSignatureInvalid(TokenError):
    code = "token_signature_invalid"


class TokenExpired(TokenError):
    code = "token_expired"


class TokenActionMismatch(TokenError):
    code = "token_action_mismatch"

    def __init__(self, expected: str, actual: str) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"token issued for '{actual}' used on '{expected}'")


class RecordNotFound(BookingActionError):
    code = "record_not_found"
    public_message = "Request not found"

    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(f"booking request '{record_id}' not found")


class RecordAlreadyProcessed(BookingActionError):
    """Not a failure: the request was already decided and the caller gets an informational page."""

    code = "record_already_processed"
    public_message = "This request has already been processed."

    def __init__(self, record_id: str, status: str, processed_by: str | None = None) -> None:
        self.record_id = record_id
        self.status = status
        self.processed_by = processed_by
        super().__init__(f"booking request '{record_id}' is already {status}")


class TransactionFailure(BookingActionError):
    """Infrastructure failure. The transaction was rolled back and the click is safe to retry."""

    code = "transaction_failure"
