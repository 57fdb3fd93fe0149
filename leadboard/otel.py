"""Tracing setup for the API process.

There is one ``TracerProvider`` per process. Board and trash spans are tagged
with the acting user and the correlation id of the request that caused them.
"""

from __future__ import annotations

import os
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import Span

from leadboard.context import get_correlation_id
from leadboard.core.config import get_settings


CORRELATION_HEADER = b"x-correlation-id"

_provider: TracerProvider | None = None
_exporters_attached = False


def _provider_for(service_name: str) -> TracerProvider:
    global _provider

    if _provider is None:
        resource = Resource.create(
            {
                "service.name": service_name,
                "service.version": os.getenv("APP_VERSION", "0.1.0"),
                "deployment.environment": get_settings().app_env,
            }
        )
        _provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(_provider)
    return _provider


def setup_otel(service_name: str, enable: bool) -> TracerProvider | None:
    global _exporters_attached

    if not enable:
        return None

    provider = _provider_for(service_name)
    if _exporters_attached:
        return provider

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    if os.getenv("OTEL_CONSOLE_EXPORTER", "false").lower() == "true":
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _exporters_attached = True
    return provider


def setup_inmemory_otel(service_name: str = "leadboard-api") -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    _provider_for(service_name).add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def annotate_span(
    span: Span,
    user_id: str | None = None,
    correlation_id: str | None = None,
    **attributes: str | int,
) -> None:
    if not span.is_recording():
        return
    if user_id:
        span.set_attribute("user_id", user_id)
    correlation_id = correlation_id or get_correlation_id()
    if correlation_id:
        span.set_attribute("correlation_id", correlation_id)
    for key, value in attributes.items():
        span.set_attribute(key, value)


def get_fastapi_server_request_hook():
    def server_request_hook(span: Span | None, scope: dict[str, Any]) -> None:
        if span is None or not span.is_recording():
            return
        for name, value in scope.get("headers", []):
            if name == CORRELATION_HEADER:
                span.set_attribute("correlation_id", value.decode("latin-1"))
                return

    return server_request_hook
