from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from leadboard.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("leadboard.request")

# Polled by load balancers and scrapers; logged at debug so board traffic stays readable.
QUIET_PATHS = frozenset({"/health", "/metrics"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            elapsed = time.perf_counter() - started
            path = resolve_http_path_label(request)
            observe_http_request(method=request.method, path=path, status=status_code, duration=elapsed)
            fields = {
                "method": request.method,
                "path": path,
                "status_code": status_code,
                "duration_ms": round(elapsed * 1000, 2),
                "user_id": getattr(request.state, "user_id", None),
            }
            if status_code >= 500:
                logger.error("http.request", extra=fields)
            elif path in QUIET_PATHS:
                logger.debug("http.request", extra=fields)
            else:
                logger.info("http.request", extra=fields)
