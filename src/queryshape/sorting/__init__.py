"""
Ordering: sort requests, key-selector generation and handler lookup.
"""

from queryshape.sorting.generator import OrderByBuilder, OrderByGenerator, OrderByHandler
from queryshape.sorting.provider import OrderByProvider, Sorter
from queryshape.sorting.sorting import SortDirection, Sorting

__all__ = [
    "OrderByBuilder",
    "OrderByGenerator",
    "OrderByHandler",
    "OrderByProvider",
    "Sorter",
    "SortDirection",
    "Sorting",
]
