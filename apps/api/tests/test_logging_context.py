from __future__ import annotations

import json
import logging
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from booking_api.booking.api import get_token_codec
from booking_api.booking.models import BookingRequest
from booking_api.booking.tokens import ActionTokenCodec
from booking_api.core.config import get_settings
from booking_api.core.database import Base, get_db
from booking_api.logging import JsonLogFormatter
from booking_api.middleware.rate_limit import reset_rate_limiter
from booking_api.main import app


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def codec() -> ActionTokenCodec:
    return ActionTokenCodec(secret=b"logging-secret")


@pytest.fixture()
def client(db_session: Session, codec: ActionTokenCodec) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_token_codec] = lambda: codec
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.get("/actions/approve", params={"token": "bogus"}, headers={"X-Correlation-Id": "abc-123"}, follow_redirects=False)
    assert response.status_code == 302

    records = [record for record in caplog.records if record.name == "booking_api.request" and record.getMessage() == "http.request"]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/actions/approve"
        and getattr(record, "status_code", None) == 302
        and getattr(record, "outcome", None) == "error"
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_rejected_token_is_logged_with_reason(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    client.get("/actions/reject", params={"token": "bogus"}, headers={"X-Correlation-Id": "tok-1"}, follow_redirects=False)

    records = [record for record in caplog.records if record.getMessage() == "booking.action_token_rejected"]
    assert records
    assert getattr(records[-1], "action", None) == "reject"
    assert getattr(records[-1], "reason", None) == "token_malformed"
    assert getattr(records[-1], "correlation_id", None) == "tok-1"


def test_transition_logs_carry_record_and_correlation_id(
    client: TestClient,
    db_session: Session,
    codec: ActionTokenCodec,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)
    db_session.add(BookingRequest(id="log-1", name="Log request", business_email="log@biz.example"))
    db_session.commit()

    client.get(
        "/actions/approve",
        params={"token": codec.issue("log-1", "approve")},
        headers={"X-Correlation-Id": "log-corr-1"},
        follow_redirects=False,
    )

    transition_records = [record for record in caplog.records if record.name == "booking_api.booking.transitions"]
    assert any(
        record.getMessage() == "booking.transition_applied"
        and getattr(record, "booking_request_id", None) == "log-1"
        and getattr(record, "target_status", None) == "approved"
        and getattr(record, "correlation_id", None) == "log-corr-1"
        for record in transition_records
    )


def test_json_formatter_emits_known_fields() -> None:
    record = logging.makeLogRecord(
        {
            "name": "booking_api.booking.transitions",
            "levelno": logging.INFO,
            "levelname": "INFO",
            "msg": "booking.transition_applied",
            "booking_request_id": "R1",
            "target_status": "approved",
            "correlation_id": "fmt-1",
        }
    )

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["msg"] == "booking.transition_applied"
    assert payload["correlation_id"] == "fmt-1"
    assert payload["fields"] == {"booking_request_id": "R1", "target_status": "approved"}


def test_request_log_names_the_page_a_redirect_lands_on(
    client: TestClient,
    db_session: Session,
    codec: ActionTokenCodec,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)
    db_session.add(BookingRequest(id="log-2", name="Outcome request", business_email="out@biz.example"))
    db_session.commit()

    client.get("/actions/approve", params={"token": codec.issue("log-2", "approve")}, follow_redirects=False)
    client.get("/actions/approve", params={"token": codec.issue("log-2", "approve")}, follow_redirects=False)
    client.get("/health")

    outcomes = [
        getattr(record, "outcome", None)
        for record in caplog.records
        if record.name == "booking_api.request" and record.getMessage() == "http.request"
    ]
    assert outcomes == ["approved", "already_processed", "none"]
