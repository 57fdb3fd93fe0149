from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from leadboard import events
from leadboard.api.routes import router as api_router
from leadboard.core.config import get_settings
from leadboard.core.events import InternalEvent, event_bus
from leadboard.logging import configure_logging
from leadboard.middleware.correlation_id import CorrelationIdMiddleware
from leadboard.middleware.request_logging import RequestLoggingMiddleware
from leadboard.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("leadboard.lifecycle")
_subscriptions_registered = False


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name, "event_payload": event.payload})


def _on_leads_changed(event: InternalEvent) -> None:
    payload = event.payload.get("payload") if isinstance(event.payload, dict) else None
    if not isinstance(payload, dict):
        return
    logger.debug(
        "leads_changed",
        extra={"event_name": event.name, "lead_count": len(payload.get("lead_ids", [])), "reason": payload.get("operation")},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not _subscriptions_registered:
        event_bus.subscribe("system.started", _on_system_started)
        event_bus.subscribe(events.LEADS_CHANGED, _on_leads_changed)
        _subscriptions_registered = True
    event_bus.publish("system.started", {"service": "api"})
    yield


app = FastAPI(title="Leadboard API", version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

settings = get_settings()
if settings.otel_enabled:
    setup_otel("leadboard-api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
