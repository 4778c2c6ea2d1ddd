from __future__ import annotations

import os
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("OTEL_ENABLED", "true")

from booking_api.booking.api import get_token_codec
from booking_api.booking.models import BookingRequest
from booking_api.booking.tokens import ActionTokenCodec
from booking_api.core.config import get_settings
from booking_api.core.database import Base, get_db
from booking_api.main import app
from booking_api.middleware.rate_limit import reset_rate_limiter
from booking_api.otel import setup_inmemory_otel


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
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel()
    exporter.clear()
    return exporter


@pytest.fixture()
def codec() -> ActionTokenCodec:
    return ActionTokenCodec(secret=b"otel-secret")


@pytest.fixture()
def client(db_session: Session, codec: ActionTokenCodec) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_token_codec] = lambda: codec
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_request_span_contains_correlation_id(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    response = client.get("/health", headers={"X-Correlation-Id": "otel-corr-1"})
    assert response.status_code == 200

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)


def test_transition_span_records_record_and_outcome(
    client: TestClient,
    db_session: Session,
    codec: ActionTokenCodec,
    span_exporter: InMemorySpanExporter,
) -> None:
    db_session.add(BookingRequest(id="otel-1", name="Span request", business_email="span@biz.example"))
    db_session.commit()

    first = client.get("/actions/approve", params={"token": codec.issue("otel-1", "approve")}, follow_redirects=False)
    assert first.status_code == 302

    transition_spans = [span for span in span_exporter.get_finished_spans() if span.name == "booking.transition"]
    assert transition_spans
    assert any(
        span.attributes.get("booking_request.id") == "otel-1"
        and span.attributes.get("booking_request.target_status") == "approved"
        and span.attributes.get("booking_request.outcome") == "applied"
        for span in transition_spans
    )


def test_action_request_span_names_action(
    client: TestClient,
    codec: ActionTokenCodec,
    span_exporter: InMemorySpanExporter,
) -> None:
    token = codec.issue("missing", "reject")
    client.get("/actions/reject", params={"token": token}, follow_redirects=False)

    spans = span_exporter.get_finished_spans()
    action_spans = [span for span in spans if span.attributes.get("booking.action") == "reject"]
    assert action_spans


def test_action_token_never_reaches_span_attributes(
    client: TestClient,
    db_session: Session,
    codec: ActionTokenCodec,
    span_exporter: InMemorySpanExporter,
) -> None:
    db_session.add(BookingRequest(id="otel-2", name="Leak check", business_email="leak@biz.example"))
    db_session.commit()
    token = codec.issue("otel-2", "approve")

    response = client.get("/actions/approve", params={"token": token}, follow_redirects=False)
    assert response.status_code == 302

    spans = span_exporter.get_finished_spans()
    assert spans
    for span in spans:
        for name, value in (span.attributes or {}).items():
            assert token not in str(value), name
    request_spans = [span for span in spans if span.attributes.get("booking.action") == "approve"]
    assert request_spans
    assert all("token=" not in str(span.attributes.get("http.url", "")) for span in request_spans)
