from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, Form, Query, status
from fastapi.responses import RedirectResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_api.booking.errors import (
    BookingActionError,
    RecordAlreadyProcessed,
    RecordNotFound,
    TokenError,
    TransactionFailure,
)
from booking_api.booking.redirects import RedirectResolver
from booking_api.booking.repository import StatusSnapshot, status_oracle
from booking_api.booking.schemas import REJECTION_REASON_MAX_LENGTH, RejectionSubmission
from booking_api.booking.service import BookingTransitionService, TransitionRejected, booking_transition_service
from booking_api.booking.tokens import Action, ActionClaims, ActionTokenCodec
from booking_api.core.config import get_settings
from booking_api.core.database import get_db
from booking_api.metrics import observe_token_rejected


logger = logging.getLogger("booking_api.booking.actions")

router = APIRouter(prefix="/actions", tags=["booking-actions"])

MISSING_TOKEN_MESSAGE = "Missing token"
NOT_AWAITING_DECISION_MESSAGE = "This request is not awaiting a decision."
REASON_REQUIRED_MESSAGE = "Rejection reason is required"
REASON_TOO_LONG_MESSAGE = f"Rejection reason must be at most {REJECTION_REASON_MAX_LENGTH} characters"


@lru_cache
def _build_codec(secret: str, max_age_seconds: int) -> ActionTokenCodec:
    return ActionTokenCodec.from_secret(secret, max_age_seconds=max_age_seconds)


def get_token_codec() -> ActionTokenCodec:
    settings = get_settings()
    return _build_codec(settings.token_secret_key, settings.token_max_age_seconds)


def get_redirect_resolver() -> RedirectResolver:
    return RedirectResolver(get_settings().public_pages_base_url)


def get_transition_service() -> BookingTransitionService:
    return booking_transition_service


def _redirect(url: str, status_code: int = status.HTTP_302_FOUND) -> RedirectResponse:
    return RedirectResponse(url, status_code=status_code)


def _verify(codec: ActionTokenCodec, token: str, action: Action) -> ActionClaims:
    try:
        return codec.verify_for(token, action)
    except TokenError as exc:
        observe_token_rejected(action, exc.code)
        logger.warning("booking.action_token_rejected", extra={"action": action, "reason": exc.code})
        raise


def _current_status(db: Session, record_id: str) -> StatusSnapshot:
    try:
        return status_oracle.current_status(db, record_id)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("booking.status_read_failed", extra={"booking_request_id": record_id, "error": str(exc)})
        raise TransactionFailure(f"status read for '{record_id}' failed") from exc


def _ensure_pending(snapshot: StatusSnapshot) -> None:
    if not snapshot.found:
        raise RecordNotFound(snapshot.record_id)
    if not snapshot.is_pending:
        raise RecordAlreadyProcessed(snapshot.record_id, snapshot.status or "unknown", processed_by=snapshot.processed_by)


def _resolve_error(resolver: RedirectResolver, exc: BookingActionError, action: Action) -> str:
    if isinstance(exc, RecordAlreadyProcessed):
        logger.info(
            "booking.action_already_processed",
            extra={"booking_request_id": exc.record_id, "action": action, "status": exc.status},
        )
        if exc.status in {"approved", "booked"}:
            return resolver.already_processed("approved", exc.record_id, exc.processed_by)
        if exc.status == "rejected":
            return resolver.already_processed("rejected", exc.record_id, exc.processed_by)
        if exc.status == "cancelled":
            return resolver.cancelled(exc.record_id)
        return resolver.error(NOT_AWAITING_DECISION_MESSAGE)

    if isinstance(exc, RecordNotFound):
        logger.info("booking.action_record_missing", extra={"booking_request_id": exc.record_id, "action": action})
    return resolver.error(exc.public_message)


@router.get("/approve")
def approve(
    token: str | None = Query(default=None),
    db: Session = Depends(get_db),
    codec: ActionTokenCodec = Depends(get_token_codec),
    resolver: RedirectResolver = Depends(get_redirect_resolver),
    service: BookingTransitionService = Depends(get_transition_service),
) -> RedirectResponse:
    if not token:
        logger.warning("booking.action_token_missing", extra={"action": "approve"})
        return _redirect(resolver.error(MISSING_TOKEN_MESSAGE))

    try:
        claims = _verify(codec, token, "approve")
        _ensure_pending(_current_status(db, claims.record_id))
        outcome = service.transition(db, claims.record_id, "approved")
        if isinstance(outcome, TransitionRejected):
            # Lost a race with another click between the status read and the update.
            raise outcome.to_error()
    except BookingActionError as exc:
        return _redirect(_resolve_error(resolver, exc, "approve"))

    return _redirect(resolver.approved(outcome.record.id, outcome.record.processed_by))


@router.get("/reject")
def reject(
    token: str | None = Query(default=None),
    db: Session = Depends(get_db),
    codec: ActionTokenCodec = Depends(get_token_codec),
    resolver: RedirectResolver = Depends(get_redirect_resolver),
) -> RedirectResponse:
    if not token:
        logger.warning("booking.action_token_missing", extra={"action": "reject"})
        return _redirect(resolver.error(MISSING_TOKEN_MESSAGE))

    try:
        claims = _verify(codec, token, "reject")
        _ensure_pending(_current_status(db, claims.record_id))
    except BookingActionError as exc:
        return _redirect(_resolve_error(resolver, exc, "reject"))

    # A reason is required, so the same token is threaded through the form and re-verified on submit.
    return _redirect(resolver.rejection_form(token))


@router.post("/reject")
def submit_rejection(
    token: str = Form(default=""),
    reason: str = Form(default=""),
    db: Session = Depends(get_db),
    codec: ActionTokenCodec = Depends(get_token_codec),
    resolver: RedirectResolver = Depends(get_redirect_resolver),
    service: BookingTransitionService = Depends(get_transition_service),
) -> RedirectResponse:
    token = token.strip()
    if not token:
        logger.warning("booking.action_token_missing", extra={"action": "reject"})
        return _redirect(resolver.error(MISSING_TOKEN_MESSAGE), status.HTTP_303_SEE_OTHER)

    try:
        claims = _verify(codec, token, "reject")
        # A decided record never shows the form again, whatever the reason says.
        _ensure_pending(_current_status(db, claims.record_id))
    except BookingActionError as exc:
        return _redirect(_resolve_error(resolver, exc, "reject"), status.HTTP_303_SEE_OTHER)

    try:
        submission = RejectionSubmission(token=token, reason=reason)
    except ValidationError:
        message = REASON_TOO_LONG_MESSAGE if len(reason.strip()) > REJECTION_REASON_MAX_LENGTH else REASON_REQUIRED_MESSAGE
        return _redirect(resolver.rejection_form(token, error=message), status.HTTP_303_SEE_OTHER)

    try:
        outcome = service.transition(
            db,
            claims.record_id,
            "rejected",
            rejection_reason=submission.reason,
        )
        if isinstance(outcome, TransitionRejected):
            raise outcome.to_error()
    except BookingActionError as exc:
        return _redirect(_resolve_error(resolver, exc, "reject"), status.HTTP_303_SEE_OTHER)

    return _redirect(resolver.rejection_confirmed(outcome.record.id), status.HTTP_303_SEE_OTHER)
