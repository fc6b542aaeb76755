"""
Standard span attributes for queryshape.

Attribute constants used across the engine so that spans from the
selector, specifier, sorter and pipeline components share one vocabulary.

Example:
    >>> from queryshape.observability.attributes import ATTR_SOURCE_TYPE, ATTR_TARGET_TYPE
    >>>
    >>> with tracer.span(
    ...     "queryshape.selector.create",
    ...     {ATTR_SOURCE_TYPE: "Order", ATTR_TARGET_TYPE: "OrderDto"},
    ... ):
    ...     pass
"""

# =============================================================================
# Model Attributes
# =============================================================================

ATTR_SOURCE_TYPE = "queryshape.source.type"
"""Name of the source (entity) model type."""

ATTR_TARGET_TYPE = "queryshape.target.type"
"""Name of the target (projection/DTO) model type."""

ATTR_FILTER_TYPE = "queryshape.filter.type"
"""Name of the filter object type."""

# =============================================================================
# Generation Attributes
# =============================================================================

ATTR_SORT_KEY = "queryshape.sort.key"
"""Requested sort key name."""

ATTR_SORT_COUNT = "queryshape.sort.count"
"""Number of sortings applied to a query (integer)."""

ATTR_CACHE_HIT = "queryshape.cache.hit"
"""Whether a registry lookup was served from the cache (boolean)."""

ATTR_GENERATED = "queryshape.generated"
"""Whether an entry was produced by a generator rather than registered (boolean)."""

# =============================================================================
# Pipeline Attributes
# =============================================================================

ATTR_FILTER_COUNT = "queryshape.query.filter_count"
"""Number of filter objects applied to a query (integer)."""

ATTR_PAGE = "queryshape.query.page"
"""Requested page number (integer)."""

ATTR_ITEMS_PER_PAGE = "queryshape.query.items_per_page"
"""Requested page size (integer)."""

ATTR_RESULT_COUNT = "queryshape.query.result_count"
"""Number of items returned (integer)."""

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (OTEL semantic convention)."""

__all__ = [
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
