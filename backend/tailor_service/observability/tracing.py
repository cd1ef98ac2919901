"""
Centralized Tracing Utility

OpenTelemetry-based spans for admission checks and pipeline phases.
Configured from environment variables; any configuration failure disables
tracing without affecting the application.
"""

import os
import logging
from typing import Optional
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.trace import Status, StatusCode, Tracer

logger = logging.getLogger(__name__)

_tracer_provider: Optional[TracerProvider] = None
_tracing_configured = False


def configure_tracing():
    """
    Configure OpenTelemetry tracing.

    Environment Variables:
    - TRACING_ENABLED: Enable/disable tracing (default: false)
    - TRACING_EXPORTER: console | none (default: console)
    - TRACING_SERVICE_NAME: Service name (default: resume-tailor-service)
    """
    global _tracer_provider, _tracing_configured

    if _tracing_configured:
        return

    try:
        if os.getenv("TRACING_ENABLED", "false").lower() != "true":
            logger.info("Tracing is disabled via TRACING_ENABLED")
            _tracing_configured = True
            return

        service_name = os.getenv("TRACING_SERVICE_NAME", "resume-tailor-service")
        exporter_type = os.getenv("TRACING_EXPORTER", "console").lower()

        _tracer_provider = TracerProvider(resource=Resource(attributes={SERVICE_NAME: service_name}))

        if exporter_type == "console":
            _tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
            logger.info("Console tracing configured")
        elif exporter_type == "none":
            logger.info("Tracing exporter set to 'none' - no spans will be exported")
        else:
            logger.warning(f"Unknown exporter type: {exporter_type}. Tracing disabled.")
            _tracer_provider = None

        if _tracer_provider:
            trace.set_tracer_provider(_tracer_provider)

        _tracing_configured = True
        logger.info(f"Tracing configured (service: {service_name})")

    except Exception as e:
        logger.error(f"Failed to configure tracing: {e}. Tracing will be disabled.")
        _tracer_provider = None
        _tracing_configured = True


def is_tracing_enabled() -> bool:
    return _tracer_provider is not None


def get_tracer(service_name: str) -> Tracer:
    """
    Get a tracer for the given component (a no-op tracer if tracing is off).
    """
    if not _tracing_configured:
        configure_tracing()

    return trace.get_tracer(service_name)


@contextmanager
def trace_span(tracer: Tracer, span_name: str, attributes: Optional[dict] = None):
    """
    Context manager for a traced span. Yields None when tracing is disabled.

    Example:
        with trace_span(tracer, "pipeline.generate", {"model": key}) as span:
            ...
    """
    if not is_tracing_enabled():
        yield None
        return

    with tracer.start_as_current_span(span_name) as span:
        add_span_attributes(span, attributes or {})
        try:
            yield span
        except Exception as e:
            set_span_error(span, e)
            raise


def set_span_error(span, error: BaseException):
    """Mark a span as errored with exception details."""
    if span and is_tracing_enabled():
        try:
            span.set_status(Status(StatusCode.ERROR, str(error)))
            span.record_exception(error)
        except Exception as e:
            logger.error(f"Error setting span error: {e}")


def add_span_attributes(span, attributes: dict):
    """Add attributes to a span safely."""
    if span and is_tracing_enabled():
        try:
            for key, value in attributes.items():
                span.set_attribute(key, value)
        except Exception as e:
            logger.error(f"Error adding span attributes: {e}")
