from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from booking_api.booking.redirects import RedirectResolver
from booking_api.core.config import get_settings
from booking_api.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("booking_api.request")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One ``http.request`` line per request, tagged with the public page a redirect lands on."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        method = request.method
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            elapsed = time.perf_counter() - started
            path = resolve_http_path_label(request)
            observe_http_request(method=method, path=path, status=500, duration=elapsed)
            logger.error(
                "http.error",
                exc_info=True,
                extra={"method": method, "path": path, "status_code": 500, "duration_ms": round(elapsed * 1000, 2)},
            )
            raise

        elapsed = time.perf_counter() - started
        # Resolved after dispatch so the matched route template is available.
        path = resolve_http_path_label(request)
        outcome = RedirectResolver(get_settings().public_pages_base_url).outcome_of(response.headers.get("location"))
        observe_http_request(
            method=method,
            path=path,
            status=response.status_code,
            duration=elapsed,
            outcome=outcome,
        )
        log = logger.warning if outcome == "error" else logger.info
        log(
            "http.request",
            extra={
                "method": method,
                "path": path,
                "status_code": response.status_code,
                "outcome": outcome,
                "duration_ms": round(elapsed * 1000, 2),
            },
        )
        return response
