"""
OpenTelemetry tracing setup for cas-gate.
"""

from typing import Optional
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor


def setup_tracing(
    app: Optional[FastAPI] = None,
    service_name: str = "cas-gate",
    enable_console: bool = False
) -> None:
    """
    Setup OpenTelemetry tracing.

    Args:
        app: FastAPI application to instrument
        service_name: Service name for traces
        enable_console: Enable console span exporter
    """
    tracer_provider = TracerProvider(
        resource=Resource.create({"service.name": service_name})
    )
    trace.set_tracer_provider(tracer_provider)

    if enable_console:
        tracer_provider.add_span_processor(
            BatchSpanProcessor(ConsoleSpanExporter())
        )

    # Outbound ticket validation calls and inbound requests
    if app is not None:
        FastAPIInstrumentor.instrument_app(app)
    HTTPXClientInstrumentor().instrument()


def get_tracer(name: str = "cas-gate"):
    """Get a tracer instance."""
    return trace.get_tracer(name)
