"""
Observability: tracing, telemetry events.
"""

from .tracing import get_tracer, configure_tracing, is_tracing_enabled
from .telemetry import TelemetryEventType, emit_telemetry_event, get_telemetry_client

__all__ = [
    "get_tracer",
    "configure_tracing",
    "is_tracing_enabled",
    "TelemetryEventType",
    "emit_telemetry_event",
    "get_telemetry_client",
]
