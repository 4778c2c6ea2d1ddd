from __future__ import annotations

import uuid

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from booking_api.context import (
    reset_client_address,
    reset_correlation_id,
    set_client_address,
    set_correlation_id,
)
from booking_api.core.config import get_settings


def resolve_client_address(request: Request) -> str:
    # Forwarding headers are client-controlled unless a proxy we run rewrites them.
    if get_settings().trust_forwarded_headers:
        forwarded_for = request.headers.get("x-forwarded-for", "")
        if forwarded_for:
            first_hop = forwarded_for.split(",")[0].strip()
            if first_hop:
                return first_hop
        real_ip = request.headers.get("x-real-ip", "").strip()
        if real_ip:
            return real_ip
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())
        client_address = resolve_client_address(request)
        request.state.correlation_id = correlation_id
        request.state.client_address = client_address
        correlation_token = set_correlation_id(correlation_id)
        address_token = set_client_address(client_address)
        span = trace.get_current_span()
        if span is not None and span.is_recording():
            span.set_attribute("correlation_id", correlation_id)
        try:
            response = await call_next(request)
        finally:
            reset_client_address(address_token)
            reset_correlation_id(correlation_token)

        response.headers["x-correlation-id"] = correlation_id
        return response
