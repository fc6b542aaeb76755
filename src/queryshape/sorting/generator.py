"""
Order-by handlers and key-selector generation.
"""

from __future__ import annotations

import logging
from typing import TypeVar

from queryshape.expressions import Lambda, Parameter
from queryshape.queryable import Queryable
from queryshape.resolver import PropertyResolver

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OrderByBuilder:
    """
    Accumulates orderings onto a queryable.

    The first ordering added is the primary order; later ones are "then"
    orders that break ties of the earlier ones.

    Example:
        >>> builder = OrderByBuilder(query)
        >>> builder.add(name_key)
        >>> builder.add(id_key, descending=True)
        >>> ordered = builder.query
    """

    def __init__(self, query: Queryable[T]) -> None:
        self._query = query
        self._count = 0

    @property
    def query(self) -> Queryable[T]:
        return self._query

    @property
    def count(self) -> int:
        """Number of orderings added."""
        return self._count

    def add(self, key_selector: Lambda, descending: bool = False) -> OrderByBuilder:
        if self._count == 0:
            self._query = self._query.order_by(key_selector, descending)
        else:
            self._query = self._query.then_by(key_selector, descending)
        self._count += 1
        return self


class OrderByHandler:
    """
    Applies one sort key to an OrderByBuilder.

    Args:
        model_type: The ordered model type
        key: Sort key name the handler is registered under
        key_selector: Lambda selecting the sort value from a model instance
        generated: True if synthesized rather than registered
    """

    def __init__(
        self,
        model_type: type,
        key: str,
        key_selector: Lambda,
        generated: bool = False,
    ) -> None:
        self.model_type = model_type
        self.key = key
        self.key_selector = key_selector
        self.generated = generated

    def handle(self, builder: OrderByBuilder, descending: bool = False) -> None:
        builder.add(self.key_selector, descending)

    def __repr__(self) -> str:
        return f"OrderByHandler({self.model_type.__name__}.{self.key}: {self.key_selector})"


class OrderByGenerator:
    """
    Synthesizes key selectors from sort key names.

    Keys resolve like projection members: exact name, dotted path, or a
    flattened underscore name (``customer_name``).
    """

    def __init__(self, resolver: PropertyResolver) -> None:
        self._resolver = resolver

    def generate(self, model_type: type, order_by: str) -> Lambda | None:
        """
        Generate the key selector for a sort key.

        Returns:
            ``entity => entity.<path>``, or None if the key matches no member
        """
        path = self._resolver.select_property(model_type, order_by)
        if path is None:
            return None
        if path.leaf.is_collection:
            logger.debug(
                "Sort key %s on %s is a collection",
                order_by,
                model_type.__name__,
                extra={"model_type": model_type.__name__, "sort_key": order_by},
            )
            return None
        parameter = Parameter("entity", model_type)
        return Lambda(parameter, path.access(parameter))

    def handler(self, model_type: type, order_by: str) -> OrderByHandler | None:
        key_selector = self.generate(model_type, order_by)
        if key_selector is None:
            return None
        return OrderByHandler(model_type, order_by, key_selector, generated=True)


__all__ = ["OrderByBuilder", "OrderByHandler", "OrderByGenerator"]
