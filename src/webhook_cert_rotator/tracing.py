"""OpenTelemetry tracing for refresh and reconcile passes."""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Any, Iterator

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Tracer

logger = logging.getLogger(__name__)

SPAN_PREFIX = "cert_rotator"

_provider: TracerProvider | None = None
_tracer: Tracer | None = None


def initialize_tracing(service_name: str = "webhook-cert-rotator") -> None:
    """Initialize OpenTelemetry tracing.

    Environment Variables:
        OTEL_EXPORTER_OTLP_ENDPOINT: OTLP endpoint URL (default: http://localhost:4317)
        OTEL_SERVICE_NAME: Service name (default: webhook-cert-rotator)
        OTEL_TRACES_ENABLED: Enable/disable tracing (default: false)
    """
    global _provider, _tracer

    if os.getenv("OTEL_TRACES_ENABLED", "false").lower() != "true" or _tracer is not None:
        return

    try:
        service_name = os.getenv("OTEL_SERVICE_NAME", service_name)
        resource = Resource.create({
            "service.name": service_name,
            "service.version": os.getenv("OTEL_SERVICE_VERSION", "unknown"),
        })

        provider = TracerProvider(resource=resource)
        endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        trace.set_tracer_provider(provider)

        _provider = provider
        _tracer = provider.get_tracer(service_name)
    except Exception as e:
        # Tracing initialization failures should not break the rotator
        logger.warning(f"Failed to initialize tracing: {e}")


def shutdown_tracing() -> None:
    """Flush pending spans; batched spans are lost on exit otherwise."""
    global _provider, _tracer

    provider, _provider, _tracer = _provider, None, None
    if provider is None:
        return
    try:
        provider.shutdown()
    except Exception as e:
        logger.warning(f"Failed to flush traces: {e}")


@contextmanager
def trace_span(operation: str, namespace: str, name: str, **attributes: Any) -> Iterator[Span | None]:
    """Span around one operation on the certificate secret.

    The span is named ``cert_rotator.<operation>`` and carries the secret's
    namespace and name. Exceptions are recorded and re-raised.
    """
    if _tracer is None:
        yield None
        return

    span_attributes = {"k8s.namespace.name": namespace, "k8s.secret.name": name, **attributes}
    with _tracer.start_as_current_span(f"{SPAN_PREFIX}.{operation}", attributes=span_attributes) as span:
        try:
            yield span
        except Exception as e:
            if span.is_recording():
                span.record_exception(e)
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
            raise
