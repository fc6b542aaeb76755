"""
Order-by handler lookup and the Sorter applying sortings to a query.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TypeVar

from queryshape.cache import RegistryMap
from queryshape.exceptions import OrderByNotSupportedError
from queryshape.expressions import Lambda
from queryshape.observability import (
    ATTR_CACHE_HIT,
    ATTR_SORT_COUNT,
    ATTR_SORT_KEY,
    ATTR_SOURCE_TYPE,
    NullTracer,
    Tracer,
)
from queryshape.queryable import Queryable
from queryshape.sorting.generator import OrderByBuilder, OrderByGenerator, OrderByHandler
from queryshape.sorting.sorting import Sorting

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OrderByProvider:
    """
    Resolves order-by handlers by (model type, sort key).

    Registered handlers win; otherwise a handler is generated from the
    model's members on first use and cached.

    Args:
        generator: Key-selector generator
        handlers: Shared handler registry (created when omitted)
        default_order_by: Sort key of the default handler
        tracer: Optional tracer

    Example:
        >>> provider.get_handler(Customer, "name")
        OrderByHandler(Customer.name: entity => entity.name)
        >>> provider.get_default_handler(Customer).key
        'id'
    """

    def __init__(
        self,
        generator: OrderByGenerator,
        handlers: RegistryMap[tuple[type, str], OrderByHandler] | None = None,
        default_order_by: str = "id",
        tracer: Tracer | None = None,
    ) -> None:
        self._generator = generator
        self._handlers = handlers if handlers is not None else RegistryMap("order by")
        self._default_order_by = default_order_by
        self._tracer = tracer or NullTracer()

    @property
    def handlers(self) -> RegistryMap[tuple[type, str], OrderByHandler]:
        return self._handlers

    @property
    def default_order_by(self) -> str:
        return self._default_order_by

    def add(
        self, model_type: type, order_by: str, handler: OrderByHandler | Lambda
    ) -> OrderByHandler:
        """
        Register a hand-written handler (or key selector) for a sort key.

        Raises:
            DuplicateRegistrationError: If the key already has a handler
            RegistrationClosedError: If the registry is sealed
        """
        if isinstance(handler, Lambda):
            handler = OrderByHandler(model_type, order_by, handler)
        self._handlers.add((model_type, order_by), handler)
        return handler

    def get_handler(self, model_type: type, order_by: str) -> OrderByHandler:
        """
        Get the handler for a sort key.

        Raises:
            OrderByNotSupportedError: If the key is neither registered nor
                resolvable to a member of the model
        """
        key = (model_type, order_by)
        cached = self._handlers.get(key)
        with self._tracer.span(
            "queryshape.orderby.get",
            {
                ATTR_SOURCE_TYPE: model_type.__name__,
                ATTR_SORT_KEY: order_by,
                ATTR_CACHE_HIT: cached is not None,
            },
        ):
            if cached is not None:
                return cached
            handler = self._handlers.get_or_add(
                key, lambda: self._generator.handler(model_type, order_by)
            )
            if handler is None:
                raise OrderByNotSupportedError(order_by, model_type)
            return handler

    def get_default_handler(self, model_type: type) -> OrderByHandler:
        """Get the handler of the default (identity) sort key."""
        return self.get_handler(model_type, self._default_order_by)


class Sorter:
    """
    Applies sortings to a queryable.

    Args:
        provider: Handler provider
        tracer: Optional tracer
    """

    def __init__(self, provider: OrderByProvider, tracer: Tracer | None = None) -> None:
        self._provider = provider
        self._tracer = tracer or NullTracer()

    @property
    def provider(self) -> OrderByProvider:
        return self._provider

    def order_by(
        self, query: Queryable[T], model_type: type, sortings: Iterable[Sorting]
    ) -> Queryable[T]:
        """
        Apply sortings in order: the first is primary, the rest break ties.

        Every handler is resolved before the query is touched, so an
        unsupported key raises without producing a partially ordered query.

        Raises:
            OrderByNotSupportedError: If any sort key is unsupported
        """
        sortings = list(sortings)
        handlers = [
            (self._provider.get_handler(model_type, sorting.order_by), sorting.descending)
            for sorting in sortings
        ]
        with self._tracer.span(
            "queryshape.sorter.order_by",
            {ATTR_SOURCE_TYPE: model_type.__name__, ATTR_SORT_COUNT: len(handlers)},
        ):
            builder = OrderByBuilder(query)
            for handler, descending in handlers:
                handler.handle(builder, descending)
            return builder.query

    def default_order_by(self, query: Queryable[T], model_type: type) -> Queryable[T]:
        """Order by the default (identity) key, ascending."""
        builder = OrderByBuilder(query)
        self._provider.get_default_handler(model_type).handle(builder)
        return builder.query


__all__ = ["OrderByProvider", "Sorter"]
