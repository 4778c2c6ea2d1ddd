from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import ClassVar, Literal
from zoneinfo import ZoneInfo

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from sqlalchemy import and_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_api import events
from booking_api.booking.errors import RecordAlreadyProcessed, RecordNotFound, TransactionFailure
from booking_api.booking.models import BookingEvent, BookingRequest, Opportunity, Task
from booking_api.booking.repository import PENDING, BookingStatusOracle, StatusSnapshot
from booking_api.booking.schemas import BookingRequestRead, TransitionTarget
from booking_api.context import get_correlation_id
from booking_api.core.config import get_settings
from booking_api.metrics import observe_follow_up_created, observe_transition
from booking_api.models.audit import AuditLog


logger = logging.getLogger("booking_api.booking.transitions")
tracer = trace.get_tracer("booking_api.booking.transitions")

TRANSITION_EVENT_TYPES: dict[str, str] = {
    "approved": "booking_request.approved",
    "rejected": "booking_request.rejected",
}

EXTERNAL_ACTOR_ID = "external"
FOLLOW_UP_STAGE = "initiation"
FOLLOW_UP_TASK_CATEGORY = "todo"
FOLLOW_UP_TASK_TITLE = "Contact the business to arrange a new deal"
FOLLOW_UP_TASK_NOTE = "Automatic reminder created when the booking request was approved."


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class TransitionSucceeded:
    succeeded: ClassVar[bool] = True

    record: BookingRequestRead
    created_opportunity_id: str | None = None
    created_task_id: str | None = None


@dataclass(frozen=True, slots=True)
class TransitionRejected:
    succeeded: ClassVar[bool] = False

    reason: Literal["not_found", "already_processed"]
    snapshot: StatusSnapshot

    def to_error(self) -> RecordNotFound | RecordAlreadyProcessed:
        if self.reason == "not_found":
            return RecordNotFound(self.snapshot.record_id)
        return RecordAlreadyProcessed(
            self.snapshot.record_id,
            self.snapshot.status or "unknown",
            processed_by=self.snapshot.processed_by,
        )


TransitionOutcome = TransitionSucceeded | TransitionRejected


@dataclass(frozen=True, slots=True)
class _FollowUp:
    opportunity_id: str
    task_id: str


@dataclass(slots=True)
class BookingTransitionService:
    """Moves a booking request out of ``pending`` exactly once.

    The status flip is a single conditional ``UPDATE ... WHERE status = 'pending'``;
    the database linearises concurrent callers so only one sees a row count of 1.
    Only that caller creates the follow-up records, and it does so inside the same
    transaction, so the flip and its side effects commit or roll back together.
    """

    status_oracle: BookingStatusOracle = BookingStatusOracle()
    clock: Callable[[], datetime] = utcnow

    def transition(
        self,
        session: Session,
        record_id: str,
        target_status: TransitionTarget,
        *,
        actor: str | None = None,
        rejection_reason: str | None = None,
    ) -> TransitionOutcome:
        if target_status not in TRANSITION_EVENT_TYPES:
            raise ValueError(f"unsupported transition target: {target_status}")

        started = time.perf_counter()
        with tracer.start_as_current_span("booking.transition") as span:
            span.set_attribute("booking_request.id", record_id)
            span.set_attribute("booking_request.target_status", target_status)
            try:
                outcome = self._run(session, record_id, target_status, actor, rejection_reason)
            except SQLAlchemyError as exc:
                session.rollback()
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR))
                observe_transition(target_status, "failed", time.perf_counter() - started)
                logger.exception(
                    "booking.transition_failed",
                    extra={"booking_request_id": record_id, "target_status": target_status, "error": str(exc)},
                )
                raise TransactionFailure(f"transition of '{record_id}' to {target_status} failed") from exc

            span.set_attribute("booking_request.outcome", "applied" if outcome.succeeded else outcome.reason)

        duration = time.perf_counter() - started
        if isinstance(outcome, TransitionRejected):
            observe_transition(target_status, outcome.reason, duration)
            logger.info(
                "booking.transition_skipped",
                extra={
                    "booking_request_id": record_id,
                    "target_status": target_status,
                    "outcome": outcome.reason,
                    "status": outcome.snapshot.status,
                },
            )
            return outcome

        observe_transition(target_status, "applied", duration)
        if outcome.created_opportunity_id is not None:
            observe_follow_up_created()
        logger.info(
            "booking.transition_applied",
            extra={
                "booking_request_id": record_id,
                "target_status": target_status,
                "outcome": "applied",
                "created_opportunity_id": outcome.created_opportunity_id,
                "created_task_id": outcome.created_task_id,
            },
        )
        events.publish(
            {
                "event_type": TRANSITION_EVENT_TYPES[target_status],
                "booking_request_id": outcome.record.id,
                "status": outcome.record.status,
                "processed_by": outcome.record.processed_by,
                "processed_at": outcome.record.processed_at.isoformat() if outcome.record.processed_at else None,
                "rejection_reason": outcome.record.rejection_reason,
                "created_opportunity_id": outcome.created_opportunity_id,
                "created_task_id": outcome.created_task_id,
            }
        )
        return outcome

    def _run(
        self,
        session: Session,
        record_id: str,
        target_status: str,
        actor: str | None,
        rejection_reason: str | None,
    ) -> TransitionOutcome:
        now = self.clock()
        values: dict[str, object] = {
            "status": target_status,
            "processed_at": now,
            # No authenticated actor exists: default to the contact the link was mailed to.
            "processed_by": actor if actor else BookingRequest.business_email,
            "updated_at": now,
        }
        if target_status == "rejected":
            values["rejection_reason"] = rejection_reason

        result = session.execute(
            update(BookingRequest)
            .where(and_(BookingRequest.id == record_id, BookingRequest.status == PENDING))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            snapshot = self.status_oracle.current_status(session, record_id)
            session.rollback()
            reason: Literal["not_found", "already_processed"] = "not_found" if not snapshot.found else "already_processed"
            return TransitionRejected(reason=reason, snapshot=snapshot)

        record = session.scalars(
            select(BookingRequest)
            .where(BookingRequest.id == record_id)
            .execution_options(populate_existing=True)
        ).one()

        if record.event_id:
            session.execute(
                update(BookingEvent)
                .where(BookingEvent.id == record.event_id)
                .values(status=target_status, updated_at=now)
                .execution_options(synchronize_session=False)
            )

        follow_up = self._create_follow_up(session, record, now) if target_status == "approved" else None

        metadata: dict[str, object] = {"status_change": {"from": PENDING, "to": target_status}}
        if rejection_reason is not None:
            metadata["rejection_reason"] = rejection_reason
        if follow_up is not None:
            metadata["created_opportunity_id"] = follow_up.opportunity_id
            metadata["created_task_id"] = follow_up.task_id
        session.add(
            AuditLog(
                actor_id=EXTERNAL_ACTOR_ID,
                actor_name=record.processed_by,
                action=TRANSITION_EVENT_TYPES[target_status],
                entity_type="booking_request",
                entity_id=record.id,
                event_metadata=metadata,
                correlation_id=get_correlation_id(),
            )
        )

        read = BookingRequestRead.model_validate(record)
        session.commit()
        return TransitionSucceeded(
            record=read,
            created_opportunity_id=follow_up.opportunity_id if follow_up else None,
            created_task_id=follow_up.task_id if follow_up else None,
        )

    def _create_follow_up(self, session: Session, record: BookingRequest, now: datetime) -> _FollowUp | None:
        source = session.scalars(
            select(Opportunity)
            .where(and_(Opportunity.booking_request_id == record.id, Opportunity.has_request.is_(True)))
            .order_by(Opportunity.created_at.desc())
            .limit(1)
        ).first()
        if source is None:
            return None

        settings = get_settings()
        start_date = _local_date(now, settings.business_timezone)
        follow_up_date = start_date + timedelta(days=settings.follow_up_days)

        opportunity = Opportunity(
            business_id=source.business_id,
            stage=FOLLOW_UP_STAGE,
            start_date=start_date,
            close_date=None,
            next_activity_date=follow_up_date,
            last_activity_date=None,
            notes=None,
            user_id=source.user_id,
            responsible_id=source.responsible_id,
            has_request=False,
            booking_request_id=None,
        )
        session.add(opportunity)
        session.flush()

        task = Task(
            opportunity_id=opportunity.id,
            category=FOLLOW_UP_TASK_CATEGORY,
            title=FOLLOW_UP_TASK_TITLE,
            due_date=follow_up_date,
            completed=False,
            notes=FOLLOW_UP_TASK_NOTE,
        )
        session.add(task)
        session.flush()
        return _FollowUp(opportunity_id=opportunity.id, task_id=task.id)


def _local_date(moment: datetime, tz_name: str) -> date:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(ZoneInfo(tz_name)).date()


booking_transition_service = BookingTransitionService()
