"""
Selector factory: registered or generated projections, memoized per type pair.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from functools import cached_property
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from queryshape.cache import RegistryMap
from queryshape.exceptions import SelectorNotFoundError
from queryshape.expressions import Lambda, compile_lambda
from queryshape.observability import (
    ATTR_CACHE_HIT,
    ATTR_GENERATED,
    ATTR_SOURCE_TYPE,
    ATTR_TARGET_TYPE,
    NullTracer,
    Tracer,
)
from queryshape.selectors.generator import SelectorExpressionGenerator

if TYPE_CHECKING:
    from queryshape.queryable import Queryable

logger = logging.getLogger(__name__)

TSource = TypeVar("TSource")
TTarget = TypeVar("TTarget")


class Selector(Generic[TSource, TTarget]):
    """
    A projection from a source model to a target model.

    Attributes:
        source_type: Source (entity) type
        target_type: Target (DTO) type
        expression: The projection lambda
        generated: True if produced by the generator rather than registered

    Example:
        >>> selector = factory.create(Order, OrderDto)
        >>> selector(order)
        OrderDto(id=1, total=9.5)
        >>> dtos = selector.select(query).to_list()
    """

    def __init__(
        self,
        source_type: type[TSource],
        target_type: type[TTarget],
        expression: Lambda,
        generated: bool = False,
    ) -> None:
        self.source_type = source_type
        self.target_type = target_type
        self.expression = expression
        self.generated = generated

    @cached_property
    def function(self) -> Callable[[TSource], TTarget]:
        """The projection compiled into a Python callable."""
        return compile_lambda(self.expression)

    def __call__(self, entity: TSource) -> TTarget:
        return self.function(entity)

    def select(self, query: Queryable[TSource]) -> Queryable[TTarget]:
        """Apply the projection to a queryable."""
        return query.select(self.expression)

    def __repr__(self) -> str:
        return (
            f"Selector({self.source_type.__name__} -> {self.target_type.__name__}: "
            f"{self.expression})"
        )


class SelectorFactory:
    """
    Resolves selectors for type pairs.

    Registered selectors always win. Otherwise a projection is generated on
    first request and cached for the lifetime of the factory.

    Args:
        generator: Projection generator
        selectors: Shared selector registry (created when omitted)
        tracer: Optional tracer
    """

    def __init__(
        self,
        generator: SelectorExpressionGenerator,
        selectors: RegistryMap[tuple[type, type], Selector[Any, Any]] | None = None,
        tracer: Tracer | None = None,
    ) -> None:
        self._generator = generator
        self._selectors = selectors if selectors is not None else RegistryMap("selector")
        self._tracer = tracer or NullTracer()

    @property
    def selectors(self) -> RegistryMap[tuple[type, type], Selector[Any, Any]]:
        return self._selectors

    def add(
        self,
        source_type: type[TSource],
        target_type: type[TTarget],
        selector: Selector[TSource, TTarget] | Lambda,
    ) -> Selector[TSource, TTarget]:
        """
        Register a hand-written selector.

        Raises:
            DuplicateRegistrationError: If the pair already has a selector
            RegistrationClosedError: If the registry is sealed
        """
        if isinstance(selector, Lambda):
            selector = Selector(source_type, target_type, selector)
        self._selectors.add((source_type, target_type), selector)
        return selector

    def find(
        self, source_type: type[TSource], target_type: type[TTarget]
    ) -> Selector[TSource, TTarget] | None:
        """Get a registered or generated selector, or None when unresolvable."""
        key = (source_type, target_type)
        cached = self._selectors.get(key)
        with self._tracer.span(
            "queryshape.selector.create",
            {
                ATTR_SOURCE_TYPE: source_type.__name__,
                ATTR_TARGET_TYPE: target_type.__name__,
                ATTR_CACHE_HIT: cached is not None,
            },
        ):
            if cached is not None:
                return cached
            return self._selectors.get_or_add(
                key, lambda: self._generate(source_type, target_type)
            )

    def create(
        self, source_type: type[TSource], target_type: type[TTarget]
    ) -> Selector[TSource, TTarget]:
        """
        Get the selector for a type pair.

        Raises:
            SelectorNotFoundError: If no selector is registered and none can
                be generated
        """
        selector = self.find(source_type, target_type)
        if selector is None:
            logger.warning(
                "No selector for %s to %s",
                source_type.__name__,
                target_type.__name__,
                extra={"source_type": source_type.__name__, "target_type": target_type.__name__},
            )
            raise SelectorNotFoundError(source_type, target_type)
        return selector

    def _generate(
        self, source_type: type[TSource], target_type: type[TTarget]
    ) -> Selector[TSource, TTarget] | None:
        with self._tracer.span(
            "queryshape.selector.generate",
            {
                ATTR_SOURCE_TYPE: source_type.__name__,
                ATTR_TARGET_TYPE: target_type.__name__,
                ATTR_GENERATED: True,
            },
        ):
            expression = self._generator.generate(source_type, target_type)
        if expression is None:
            return None
        logger.debug(
            "Generated selector %s",
            expression,
            extra={"source_type": source_type.__name__, "target_type": target_type.__name__},
        )
        return Selector(source_type, target_type, expression, generated=True)


__all__ = ["Selector", "SelectorFactory"]
