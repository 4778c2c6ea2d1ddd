from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status", "outcome"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

booking_action_tokens_rejected_total = Counter(
    "booking_action_tokens_rejected_total",
    "Action tokens rejected by reason",
    ["action", "reason"],
)

booking_transitions_total = Counter(
    "booking_transitions_total",
    "Booking request transition attempts by target status and outcome",
    ["target_status", "outcome"],
)

booking_transition_duration_seconds = Histogram(
    "booking_transition_duration_seconds",
    "Booking request transition duration in seconds",
    ["target_status"],
)

booking_follow_ups_created_total = Counter(
    "booking_follow_ups_created_total",
    "Follow-up opportunity/task pairs created on approval",
)

public_action_rate_limited_total = Counter(
    "public_action_rate_limited_total",
    "Public action clicks rejected by the rate limiter",
    ["route_group"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return path_format
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return route_path
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float, outcome: str = "none") -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str, outcome=outcome).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_token_rejected(action: str, reason: str) -> None:
    booking_action_tokens_rejected_total.labels(action=action, reason=reason).inc()


def observe_transition(target_status: str, outcome: str, duration: float) -> None:
    booking_transitions_total.labels(target_status=target_status, outcome=outcome).inc()
    booking_transition_duration_seconds.labels(target_status=target_status).observe(duration)


def observe_follow_up_created() -> None:
    booking_follow_ups_created_total.inc()


def observe_rate_limited(route_group: str) -> None:
    public_action_rate_limited_total.labels(route_group=route_group).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
