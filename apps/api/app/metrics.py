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

lot_tree_reassignments_total = Counter(
    "lot_tree_reassignments_total",
    "Tree reassignment attempts by outcome",
    ["outcome"],
)

lot_claim_conflicts_total = Counter(
    "lot_claim_conflicts_total",
    "Lot capacity claims retried after a concurrent write",
)

lot_planted_count_drift_total = Counter(
    "lot_planted_count_drift_total",
    "Lot planted_count values found out of step with live tree counts",
    ["operation"],
)

lot_operator_assignments_total = Counter(
    "lot_operator_assignments_total",
    "Operator assignments committed",
)

lot_notification_failures_total = Counter(
    "lot_notification_failures_total",
    "Operator assignment notifications that failed",
    ["backend"],
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


def observe_tree_reassignment(outcome: str) -> None:
    lot_tree_reassignments_total.labels(outcome=outcome).inc()


def observe_lot_claim_conflict() -> None:
    lot_claim_conflicts_total.inc()


def observe_planted_count_drift(operation: str, count: int = 1) -> None:
    if count > 0:
        lot_planted_count_drift_total.labels(operation=operation).inc(count)


def observe_operator_assignment() -> None:
    lot_operator_assignments_total.inc()


def observe_notification_failure(backend: str) -> None:
    lot_notification_failures_total.labels(backend=backend).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
