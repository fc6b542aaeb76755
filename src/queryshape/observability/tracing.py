"""
Detects whether OpenTelemetry can be used.

The ``telemetry`` extra is optional; the import is attempted once here and
every tracer factory consults ``OTEL_AVAILABLE`` through ``should_trace``.
"""

from __future__ import annotations

try:
    from opentelemetry import trace  # noqa: F401

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False


def should_trace(enable_tracing: bool) -> bool:
    """
    Return True when a component asked for tracing and OpenTelemetry is installed.

    Args:
        enable_tracing: The component's (or ShapingConfig's) tracing flag
    """
    return enable_tracing and OTEL_AVAILABLE


__all__ = [
    "OTEL_AVAILABLE",
    "should_trace",
]
