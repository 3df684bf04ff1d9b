"""OpenTelemetry setup helpers and the tracer used around collaborator calls."""

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter


# Resolves to a no-op tracer until `setup_tracing` registers a provider.
tracer = trace.get_tracer("cupfortune")


def current_trace_id() -> str:
    """Hex trace id of the active span, or "" outside a recorded span."""

    context = trace.get_current_span().get_span_context()
    if not context.is_valid:
        return ""
    return format(context.trace_id, "032x")


def setup_tracing(service_name: str, otlp_endpoint: str = "") -> None:
    """Create and register a tracer provider, exporting over OTLP HTTP when an endpoint is set.

    Without an endpoint spans are still created, which keeps trace ids in the
    logs for local runs.
    """

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    if otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
    trace.set_tracer_provider(provider)


def instrument_app(app: FastAPI) -> None:
    """Attach FastAPI auto-instrumentation for request spans; probes are not traced."""

    FastAPIInstrumentor.instrument_app(app, excluded_urls="health,metrics")
