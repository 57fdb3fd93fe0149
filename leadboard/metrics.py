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

board_transitions_total = Counter(
    "board_transitions_total",
    "Board stage transitions by outcome",
    ["outcome"],
)

board_loads_total = Counter(
    "board_loads_total",
    "Board collection loads by outcome",
    ["outcome"],
)

board_load_duration_seconds = Histogram(
    "board_load_duration_seconds",
    "Board collection load duration in seconds",
)

leads_soft_deleted_total = Counter(
    "leads_soft_deleted_total",
    "Leads moved to the trash",
)

leads_restored_total = Counter(
    "leads_restored_total",
    "Leads restored from the trash",
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    return _UUID_RE.sub("{id}", path)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_transition(outcome: str) -> None:
    board_transitions_total.labels(outcome=outcome).inc()


def observe_board_load(outcome: str, duration: float) -> None:
    board_loads_total.labels(outcome=outcome).inc()
    if outcome == "ok":
        board_load_duration_seconds.observe(duration)


def observe_soft_deleted(count: int) -> None:
    if count > 0:
        leads_soft_deleted_total.inc(count)


def observe_restored() -> None:
    leads_restored_total.inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
