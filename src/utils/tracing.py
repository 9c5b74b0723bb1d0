"""OpenTelemetry tracing setup (OTLP/HTTP export when enabled)."""

import logging

from src.config import (
    DEPLOYMENT_ENVIRONMENT,
    OTLP_ENDPOINT,
    SERVICE_NAME,
    TRACING_ENABLED,
)

logger = logging.getLogger(__name__)
_initialized = False
_tracer_provider = None


def _build_resource():
    """Build Resource with service identity."""
    from opentelemetry.sdk.resources import Resource

    return Resource.create(
        {
            "service.name": SERVICE_NAME,
            "service.version": "0.1.0",
            "deployment.environment": DEPLOYMENT_ENVIRONMENT,
        }
    )


def _build_pipeline():
    """Build a TracerProvider exporting spans in batches to the OTLP endpoint."""
    from opentelemetry import trace
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    endpoint = OTLP_ENDPOINT.rstrip("/")
    if not endpoint.endswith("/v1/traces"):
        endpoint = f"{endpoint}/v1/traces"

    provider = TracerProvider(resource=_build_resource())
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    logger.info("Tracing enabled, exporting to %s", endpoint)
    return provider


def init_tracing() -> None:
    """Initialize tracing once at startup. No-op unless TRACING_ENABLED is set."""
    global _initialized, _tracer_provider
    if _initialized or not TRACING_ENABLED:
        return

    _tracer_provider = _build_pipeline()
    _initialized = True


def get_tracer():
    """Return the OpenTelemetry tracer (no-op tracer until init_tracing has run)."""
    from opentelemetry import trace

    return trace.get_tracer("membership-sync", "0.1.0")


def shutdown_tracing() -> None:
    """Flush and shutdown the tracer provider so spans are exported before process exit."""
    from opentelemetry.sdk.trace import TracerProvider

    if isinstance(_tracer_provider, TracerProvider):
        _tracer_provider.force_flush(timeout_millis=5000)
        _tracer_provider.shutdown()
