from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from booking_api.api.routes import router as api_router
from booking_api.core.config import get_settings
from booking_api.core.events import InternalEvent, event_bus
from booking_api.logging import configure_logging
from booking_api.middleware.correlation_id import CorrelationIdMiddleware
from booking_api.middleware.rate_limit import PublicActionRateLimitMiddleware
from booking_api.middleware.request_logging import RequestLoggingMiddleware
from booking_api.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("booking_api.lifecycle")

_booking_event_types = [
    "booking_request.approved",
    "booking_request.rejected",
]


def _on_booking_decision(event: InternalEvent) -> None:
    logger.info(
        "booking.decision_recorded",
        extra={
            "action": event.name,
            "booking_request_id": event.payload.get("booking_request_id"),
            "status": event.payload.get("status"),
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    for event_name in _booking_event_types:
        event_bus.subscribe(event_name, _on_booking_decision)
    yield
    for event_name in _booking_event_types:
        event_bus.unsubscribe(event_name, _on_booking_decision)


settings = get_settings()

app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
app.add_middleware(PublicActionRateLimitMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

if settings.otel_enabled:
    setup_otel(settings)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
