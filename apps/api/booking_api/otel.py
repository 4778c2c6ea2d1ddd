from __future__ import annotations

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from booking_api.core.config import Settings, get_settings


_exporters_attached = False
_provider: TracerProvider | None = None

_ACTION_PATH_PREFIX = "/actions/"


def _tracer_provider(settings: Settings) -> TracerProvider:
    global _provider

    if _provider is None:
        resource = Resource.create(
            {
                "service.name": settings.otel_service_name,
                "service.version": settings.app_version,
                "deployment.environment": settings.app_env,
            }
        )
        _provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(_provider)
    return _provider


def setup_otel(settings: Settings | None = None) -> TracerProvider | None:
    """Install the global tracer provider and its exporters once per process."""
    global _exporters_attached

    settings = settings or get_settings()
    if not settings.otel_enabled:
        return None

    provider = _tracer_provider(settings)
    if _exporters_attached:
        return provider

    if settings.otel_exporter_otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _exporters_attached = True
    return provider


def setup_inmemory_otel() -> InMemorySpanExporter:
    provider = _tracer_provider(get_settings())
    exporter = InMemorySpanExporter()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def get_fastapi_server_request_hook():
    def server_request_hook(span, scope: dict[str, Any]) -> None:  # type: ignore[no-untyped-def]
        if span is None or not span.is_recording():
            return
        headers = dict(scope.get("headers", []))
        correlation_raw = headers.get(b"x-correlation-id")
        if correlation_raw:
            span.set_attribute("correlation_id", correlation_raw.decode("utf-8"))
        path = scope.get("path", "")
        if isinstance(path, str) and path.startswith(_ACTION_PATH_PREFIX):
            span.set_attribute("booking.action", path[len(_ACTION_PATH_PREFIX) :].split("/", 1)[0])
            # The query string carries a bearer capability.
            span.set_attribute("http.target", path)
            _strip_query(span, scope.get("query_string", b""))

    return server_request_hook


def _strip_query(span, query_string: bytes | str) -> None:  # type: ignore[no-untyped-def]
    query = query_string.decode("latin-1") if isinstance(query_string, bytes) else query_string
    if not query:
        return
    attributes = dict(getattr(span, "attributes", None) or {})
    for name, value in attributes.items():
        if isinstance(value, str) and query in value:
            span.set_attribute(name, value.replace("?" + query, "").replace(query, ""))
