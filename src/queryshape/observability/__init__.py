"""
Observability utilities for queryshape.

Provides the composition-based tracer used by every engine component and
the standard span attribute names.

Note:
    OpenTelemetry is an optional dependency. All utilities in this module
    gracefully handle the case where OpenTelemetry is not installed.
"""

from queryshape.observability.attributes import (
    ATTR_CACHE_HIT,
    ATTR_DB_SYSTEM,
    ATTR_FILTER_COUNT,
    ATTR_FILTER_TYPE,
    ATTR_GENERATED,
    ATTR_ITEMS_PER_PAGE,
    ATTR_PAGE,
    ATTR_RESULT_COUNT,
    ATTR_SORT_COUNT,
    ATTR_SORT_KEY,
    ATTR_SOURCE_TYPE,
    ATTR_TARGET_TYPE,
)
from queryshape.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)
from queryshape.observability.tracing import OTEL_AVAILABLE, should_trace

__all__ = [
    # Tracing
    "OTEL_AVAILABLE",
    "should_trace",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    # Attributes
    "ATTR_SOURCE_TYPE",
    "ATTR_TARGET_TYPE",
    "ATTR_FILTER_TYPE",
    "ATTR_SORT_KEY",
    "ATTR_SORT_COUNT",
    "ATTR_CACHE_HIT",
    "ATTR_GENERATED",
    "ATTR_FILTER_COUNT",
    "ATTR_PAGE",
    "ATTR_ITEMS_PER_PAGE",
    "ATTR_RESULT_COUNT",
    "ATTR_DB_SYSTEM",
]
