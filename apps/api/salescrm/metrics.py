from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

access_scope_resolutions_total = Counter(
    "access_scope_resolutions_total",
    "Access scope resolutions by actor role",
    ["role"],
)

access_scope_denials_total = Counter(
    "access_scope_denials_total",
    "Record accesses denied by the owner scope",
    ["resource", "action"],
)

payment_numbers_allocated_total = Counter(
    "payment_numbers_allocated_total",
    "Payment numbers handed out by the payment sequence",
)

payment_number_retries_total = Counter(
    "payment_number_retries_total",
    "Payment sequence allocations retried after a conflicting insert",
)

aggregation_duration_seconds = Histogram(
    "aggregation_duration_seconds",
    "Leaderboard and report computation time in seconds",
    ["report"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _normalize_route_template(route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_scope_resolution(role: str) -> None:
    access_scope_resolutions_total.labels(role=role).inc()


def observe_scope_denial(resource: str, action: str) -> None:
    access_scope_denials_total.labels(resource=resource, action=action).inc()


def observe_payment_number_allocated() -> None:
    payment_numbers_allocated_total.inc()


def observe_payment_number_retry() -> None:
    payment_number_retries_total.inc()


def observe_aggregation(report: str, duration: float) -> None:
    aggregation_duration_seconds.labels(report=report).observe(duration)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
