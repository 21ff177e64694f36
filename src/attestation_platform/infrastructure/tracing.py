"""OpenTelemetry tracing for certificate submission, reconciliation and downloads.

Spans are exported over OTLP/gRPC when an endpoint is configured; otherwise
they are created but dropped. A failing block marks its span as errored.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Generator, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode

TRACER_NAME = "attestation_platform"

_tracer: trace.Tracer | None = None


def setup_tracing(
    service_name: str = TRACER_NAME,
    otlp_endpoint: str | None = None,
    service_version: str | None = None,
) -> trace.Tracer:
    """Install the global tracer provider and return the platform tracer."""
    global _tracer
    attributes = {"service.name": service_name}
    if service_version:
        attributes["service.version"] = service_version
    provider = TracerProvider(resource=Resource.create(attributes))

    if otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True)))

    trace.set_tracer_provider(provider)
    _tracer = provider.get_tracer(TRACER_NAME)
    return _tracer


def get_tracer() -> trace.Tracer:
    return _tracer or trace.get_tracer(TRACER_NAME)


@contextmanager
def trace_span(name: str, attributes: dict[str, Any] | None = None) -> Generator[trace.Span, None, None]:
    """Run a block inside a span.

    ``None`` attribute values are skipped. An exception escaping the block is
    recorded on the span, which is marked as errored, and re-raised.
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(name, record_exception=False, set_status_on_exception=False) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise


def current_trace_id() -> Optional[str]:
    """Hex trace id of the active span, or None outside a sampled span."""
    context = trace.get_current_span().get_span_context()
    if not context.is_valid:
        return None
    return format(context.trace_id, "032x")
