"""
QueryShaper: the composition root of the query-shaping engine.

Owns the descriptor registry, the conversion strategies, the three
registries (selectors, specifiers, order-by handlers) and the generators
that fill them. Create one per application and share it; it has no
global state.

Example:
    >>> shaper = QueryShaper()
    >>> shaper.add_order_by(Customer, "display", customer_display_key)
    >>> shaper.seal()
    >>>
    >>> dto = shaper.get_selector(Customer, CustomerDto)(customer)
    >>> page = (
    ...     shaper.search(InMemoryQueryable(customers, Customer))
    ...     .filter_by(CustomerFilter(name="ali"))
    ...     .order_by("name")
    ...     .select(CustomerDto)
    ...     .to_list()
    ... )
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, TypeVar

from queryshape.cache import RegistryMap
from queryshape.config import ShapingConfig
from queryshape.descriptors import DescriptorRegistry, is_class
from queryshape.expressions import Lambda
from queryshape.filters.criterion import SpecifierOptions
from queryshape.filters.factory import Specifier, SpecifierFactory
from queryshape.filters.generator import SpecifierFunctionGenerator
from queryshape.observability import Tracer, create_tracer
from queryshape.pipeline import AllEntitiesPipeline, Search, SearchPipeline, select_by_id
from queryshape.queryable import Queryable
from queryshape.resolver import PropertyResolver
from queryshape.selectors.converters import ConversionStrategySet
from queryshape.selectors.factory import Selector, SelectorFactory
from queryshape.selectors.generator import SelectorExpressionGenerator
from queryshape.sorting.generator import OrderByGenerator, OrderByHandler
from queryshape.sorting.provider import OrderByProvider, Sorter

logger = logging.getLogger(__name__)

TSource = TypeVar("TSource")
TTarget = TypeVar("TTarget")


class QueryShaper:
    """
    Projection, filter and ordering generation behind one object.

    Hand-written registrations always take priority over generation and
    must be made before the registries are sealed.

    Args:
        config: Engine configuration (defaults to ShapingConfig())
        strategies: Conversion strategies (defaults to the standard set
            for ``config.enum_conversion``)
        tracer: Optional tracer (defaults to one built from
            ``config.enable_tracing``)
    """

    def __init__(
        self,
        config: ShapingConfig | None = None,
        strategies: ConversionStrategySet | None = None,
        tracer: Tracer | None = None,
    ) -> None:
        self._config = config or ShapingConfig()
        self._tracer = tracer or create_tracer(__name__, self._config.enable_tracing)

        self._descriptors = DescriptorRegistry()
        self._resolver = PropertyResolver(self._descriptors, flatten=self._config.flatten_paths)
        self._strategies = strategies or ConversionStrategySet.default(
            self._config.enum_conversion
        )

        self._selectors: SelectorFactory = SelectorFactory(
            SelectorExpressionGenerator(self._resolver, self._strategies),
            RegistryMap("selector"),
            self._tracer,
        )
        self._specifiers = SpecifierFactory(
            SpecifierFunctionGenerator(self._resolver),
            RegistryMap("specifier"),
            self._tracer,
        )
        self._order_by = OrderByProvider(
            OrderByGenerator(self._resolver),
            RegistryMap("order by"),
            self._config.default_order_by,
            self._tracer,
        )
        self._sorter = Sorter(self._order_by, self._tracer)

        logger.debug(
            "QueryShaper created with strategies %s",
            ", ".join(self._strategies.names),
            extra={"enum_conversion": self._config.enum_conversion},
        )

    # =========================================================================
    # Components
    # =========================================================================

    @property
    def config(self) -> ShapingConfig:
        return self._config

    @property
    def descriptors(self) -> DescriptorRegistry:
        return self._descriptors

    @property
    def resolver(self) -> PropertyResolver:
        return self._resolver

    @property
    def strategies(self) -> ConversionStrategySet:
        return self._strategies

    @property
    def selectors(self) -> SelectorFactory:
        return self._selectors

    @property
    def specifiers(self) -> SpecifierFactory:
        return self._specifiers

    @property
    def order_by_provider(self) -> OrderByProvider:
        return self._order_by

    @property
    def sorter(self) -> Sorter:
        return self._sorter

    # =========================================================================
    # Generation
    # =========================================================================

    def generate_projection(self, source_type: type, target_type: type) -> Lambda | None:
        """The projection lambda for a type pair, or None when it cannot be resolved."""
        selector = self._selectors.find(source_type, target_type)
        return selector.expression if selector is not None else None

    def get_selector(
        self, source_type: type[TSource], target_type: type[TTarget]
    ) -> Selector[TSource, TTarget]:
        """
        Get the registered or generated selector for a type pair.

        Raises:
            SelectorNotFoundError: If the pair cannot be projected
        """
        return self._selectors.create(source_type, target_type)

    def get_specifier(self, model_type: type, filter_type: type) -> Specifier:
        """
        Get the registered or generated specifier for a (model, filter) pair.

        Raises:
            SpecifierNotConfiguredError: If the pair is not configured
        """
        return self._specifiers.get_specifier(model_type, filter_type)

    def get_order_handler(self, model_type: type, order_by: str) -> OrderByHandler:
        """
        Get the registered or generated handler for a sort key.

        Raises:
            OrderByNotSupportedError: If the key is unsupported
        """
        return self._order_by.get_handler(model_type, order_by)

    # =========================================================================
    # Registration
    # =========================================================================

    def add_selector(
        self,
        source_type: type[TSource],
        target_type: type[TTarget],
        selector: Selector[TSource, TTarget] | Lambda,
    ) -> Selector[TSource, TTarget]:
        """Register a hand-written projection."""
        return self._selectors.add(source_type, target_type, selector)

    def add_specifier(
        self,
        model_type: type,
        filter_type: type,
        specifier: Specifier | Callable[[Queryable[Any], Any], Queryable[Any]],
    ) -> Specifier:
        """Register a hand-written specifier (object or function)."""
        return self._specifiers.add(model_type, filter_type, specifier)

    def add_order_by(
        self, model_type: type, order_by: str, handler: OrderByHandler | Lambda
    ) -> OrderByHandler:
        """Register a hand-written order-by handler or key selector."""
        return self._order_by.add(model_type, order_by, handler)

    def configure_filter(self, model_type: type, filter_type: type) -> SpecifierOptions:
        """Per-field configuration for a (model, filter) pair's generated specifier."""
        return self._specifiers.configure(model_type, filter_type)

    def seal(self) -> None:
        """Reject further hand-written registrations in every registry."""
        self._selectors.selectors.seal()
        self._specifiers.specifiers.seal()
        self._order_by.handlers.seal()

    # =========================================================================
    # Pipelines
    # =========================================================================

    def pipeline(
        self, query: Queryable[TSource], model_type: type | None = None
    ) -> SearchPipeline[TSource]:
        """A search pipeline over a queryable."""
        return self._make_pipeline(SearchPipeline, query, model_type)

    def all_entities(
        self, query: Queryable[TSource], model_type: type | None = None
    ) -> AllEntitiesPipeline[TSource]:
        """A pipeline returning every matching item, without paging."""
        return self._make_pipeline(AllEntitiesPipeline, query, model_type)

    def search(self, query: Queryable[TSource], model_type: type | None = None) -> Search[TSource]:
        """A fluent search over a queryable."""
        return Search(
            self.all_entities(query, model_type),
            items_per_page=self._config.items_per_page,
            use_count=self._config.use_count,
        )

    def find_by_id(
        self,
        query: Queryable[TSource],
        id_value: Any,
        target_type: type | None = None,
        model_type: type | None = None,
    ) -> Any | None:
        """Find one entity, or its projection into ``target_type``, by identity."""
        model = self._model_type(query, model_type)
        selector = self.get_selector(model, target_type) if target_type is not None else None
        return select_by_id(query, model, id_value, selector, self._config.id_member)

    def _make_pipeline(
        self, pipeline_type: type[Any], query: Queryable[Any], model_type: type | None
    ) -> Any:
        return pipeline_type(
            query,
            self._model_type(query, model_type),
            self._specifiers,
            self._sorter,
            self._selectors,
            self._tracer,
        )

    @staticmethod
    def _model_type(query: Queryable[Any], model_type: type | None) -> type:
        if model_type is not None:
            return model_type
        element_type = query.element_type
        if not is_class(element_type):
            raise ValueError(
                "Cannot infer the model type of the queryable; pass model_type explicitly."
            )
        return element_type


__all__ = ["QueryShaper"]
