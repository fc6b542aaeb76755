"""
Search pipeline: filters, ordering, paging and projection in one request.

A search moves through fixed stages, never backwards, and the stages a
query went through are recorded on its ShapedQuery:

    UNSHAPED -> FILTERED -> ORDERED -> PROJECTED -> READY

Filters are applied first, then the requested sortings (or the default
identity ordering when paging without sortings, so pages are stable),
then paging, then the projection. The result is a page of items plus
the counts needed to navigate the other pages.

Example:
    >>> criteria = SearchCriteria(page=2, filters=[OrderFilter(status=Status.OPEN)])
    >>> page = shaper.pipeline(query).execute(criteria, shaper.get_selector(Order, OrderDto))
    >>> page.count, page.pages, len(page.items)
    (42, 5, 10)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from queryshape.expressions import Compare, Constant, Lambda, Member, Parameter
from queryshape.filters.factory import SpecifierFactory
from queryshape.observability import (
    ATTR_FILTER_COUNT,
    ATTR_ITEMS_PER_PAGE,
    ATTR_PAGE,
    ATTR_RESULT_COUNT,
    ATTR_SORT_COUNT,
    ATTR_SOURCE_TYPE,
    NullTracer,
    Tracer,
)
from queryshape.queryable import Queryable
from queryshape.selectors.factory import Selector, SelectorFactory
from queryshape.sorting.provider import Sorter
from queryshape.sorting.sorting import SortDirection, Sorting

if TYPE_CHECKING:
    from queryshape.stores.sqlalchemy import AsyncSQLAlchemyQueryable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ShapingStage(IntEnum):
    """Stages of a shaped query, in order."""

    UNSHAPED = 0
    FILTERED = 1
    ORDERED = 2
    PROJECTED = 3
    READY = 4


class SearchCriteria(BaseModel):
    """
    A search request.

    Attributes:
        page: Page number, 1-based; values below 1 mean the first page
        items_per_page: Page size; 0 disables paging
        last_count: Total count from a previous page, reused when > 0
        use_count: Whether to compute the total count
        filters: Filter objects applied to the queried model
        sortings: Sortings, first is primary (strings are parsed)
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    page: int = 0
    items_per_page: int = Field(default=10, ge=0)
    last_count: int = Field(default=0, ge=0)
    use_count: bool = True
    filters: list[Any] = Field(default_factory=list)
    sortings: list[Sorting] = Field(default_factory=list)

    @field_validator("sortings", mode="before")
    @classmethod
    def _parse_sortings(cls, value: Any) -> Any:
        if isinstance(value, (str, Sorting)):
            value = [value]
        parsed: list[Any] = []
        for item in value or ():
            if isinstance(item, str):
                sorting = Sorting.parse(item)
                if sorting is None:
                    raise ValueError(f"Invalid sorting: {item!r}")
                parsed.append(sorting)
            else:
                parsed.append(item)
        return parsed

    @property
    def paginate(self) -> bool:
        return self.items_per_page > 0

    @property
    def page_number(self) -> int:
        return self.page if self.page > 0 else 1

    @property
    def skip(self) -> int:
        return self.items_per_page * (self.page_number - 1) if self.paginate else 0


class ResultList(BaseModel, Generic[T]):
    """
    One page of search results.

    Attributes:
        page: Page number returned
        count: Total matching items (0 when counting is disabled)
        items_per_page: Page size used
        pages: Number of pages for ``count`` items
        sortings: Sortings applied
        projections: Named aggregate values computed alongside the page
        items: The page's items
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    page: int = 1
    count: int = 0
    items_per_page: int = 0
    pages: int = 0
    sortings: list[Sorting] = Field(default_factory=list)
    projections: dict[str, Any] = Field(default_factory=dict)
    items: list[T] = Field(default_factory=list)

    def get_projection(self, name: str, default: Any = None) -> Any:
        return self.projections.get(name, default)

    @property
    def has_next_page(self) -> bool:
        return self.page < self.pages


def count_pages(count: int, items_per_page: int) -> int:
    """Pages needed for ``count`` items, 0 when there is nothing to page."""
    if count <= 0 or items_per_page < 1:
        return 0
    return -(-count // items_per_page)


@dataclass(frozen=True)
class ShapedQuery(Generic[T]):
    """
    A queryable together with the stages it has been through.

    Attributes:
        query: The queryable at the current stage
        stages: Every stage reached so far, oldest first
    """

    query: Queryable[T]
    stages: tuple[ShapingStage, ...] = (ShapingStage.UNSHAPED,)

    @property
    def stage(self) -> ShapingStage:
        return self.stages[-1]

    def advance(self, query: Queryable[Any], stage: ShapingStage) -> ShapedQuery[Any]:
        """
        Move to a later stage.

        Raises:
            ValueError: If ``stage`` is not after the current stage
        """
        if stage <= self.stage:
            raise ValueError(
                f"Cannot move a query from stage {self.stage.name} to {stage.name}; "
                "stages only advance."
            )
        return ShapedQuery(query, (*self.stages, stage))


class SearchPipeline(Generic[T]):
    """
    Runs search criteria against a queryable of one model type.

    Args:
        query: Base queryable over the model
        model_type: The queried model type
        specifiers: Filter specifier factory
        sorter: Sorter for sortings and default ordering
        selectors: Selector factory, for projecting by target type
        tracer: Optional tracer
    """

    def __init__(
        self,
        query: Queryable[T],
        model_type: type[T],
        specifiers: SpecifierFactory,
        sorter: Sorter,
        selectors: SelectorFactory | None = None,
        tracer: Tracer | None = None,
    ) -> None:
        self._query = query
        self._model_type = model_type
        self._specifiers = specifiers
        self._sorter = sorter
        self._selectors = selectors
        self._tracer = tracer or NullTracer()

    @property
    def model_type(self) -> type[T]:
        return self._model_type

    def prepare(self, criteria: SearchCriteria) -> Queryable[T]:
        """Apply filters and ordering (no paging, no projection)."""
        return self._prepare(criteria).query

    def shape(
        self, criteria: SearchCriteria, selector: Selector[T, Any] | type | None = None
    ) -> ShapedQuery[Any]:
        """
        Build the complete query for one page, without executing it.

        Paging takes one item more than the page size so the caller can
        tell whether a next page exists.
        """
        return self._page(self._prepare(criteria), criteria, selector)

    def execute(
        self, criteria: SearchCriteria, selector: Selector[T, Any] | type | None = None
    ) -> ResultList[Any]:
        """
        Execute a search and return one page.

        Args:
            criteria: The search request
            selector: Projection (a Selector or a target type), or None for entities

        Raises:
            SpecifierNotConfiguredError: If a filter has no specifier
            OrderByNotSupportedError: If a sort key is unsupported
            SelectorNotFoundError: If a target type has no projection
        """
        with self._tracer.span("queryshape.pipeline.execute", self._span_attributes(criteria)):
            ordered = self._prepare(criteria)
            items = self._page(ordered, criteria, selector).query.to_list()
            has_next, items = self._split(criteria, items)
            if criteria.last_count > 0:
                count = criteria.last_count
            elif not criteria.use_count:
                count = 0
            elif has_next:
                count = ordered.query.count()
            else:
                count = criteria.skip + len(items)
            return self._result(criteria, items, count)

    async def execute_async(
        self, criteria: SearchCriteria, selector: Selector[T, Any] | type | None = None
    ) -> ResultList[Any]:
        """Execute a search on an async queryable (see AsyncSQLAlchemyQueryable)."""
        with self._tracer.span("queryshape.pipeline.execute", self._span_attributes(criteria)):
            ordered = self._prepare(criteria)
            sorted_query: AsyncSQLAlchemyQueryable[Any] = ordered.query  # type: ignore[assignment]
            shaped: AsyncSQLAlchemyQueryable[Any] = self._page(  # type: ignore[assignment]
                ordered, criteria, selector
            ).query
            items = await shaped.to_list()
            has_next, items = self._split(criteria, items)
            if criteria.last_count > 0:
                count = criteria.last_count
            elif not criteria.use_count:
                count = 0
            elif has_next:
                count = await sorted_query.count()
            else:
                count = criteria.skip + len(items)
            return self._result(criteria, items, count)

    def _prepare(self, criteria: SearchCriteria) -> ShapedQuery[T]:
        shaped: ShapedQuery[T] = ShapedQuery(self._query)
        query = self._query
        for filter_value in criteria.filters:
            query = self._specifiers.specify(query, self._model_type, filter_value)
        shaped = self._advance(shaped, query, ShapingStage.FILTERED)

        if criteria.sortings:
            query = self._sorter.order_by(query, self._model_type, criteria.sortings)
        elif criteria.paginate:
            query = self._sorter.default_order_by(query, self._model_type)
        return self._advance(shaped, query, ShapingStage.ORDERED)

    def _page(
        self,
        ordered: ShapedQuery[Any],
        criteria: SearchCriteria,
        selector: Selector[T, Any] | type | None,
    ) -> ShapedQuery[Any]:
        shaped = ordered
        query = ordered.query
        if criteria.paginate:
            query = query.skip(criteria.skip).take(criteria.items_per_page + 1)
        resolved = self._resolve_selector(selector)
        if resolved is not None:
            query = resolved.select(query)
            shaped = self._advance(shaped, query, ShapingStage.PROJECTED)
        return self._advance(shaped, query, ShapingStage.READY)

    @staticmethod
    def _split(criteria: SearchCriteria, items: list[Any]) -> tuple[bool, list[Any]]:
        has_next = criteria.paginate and len(items) > criteria.items_per_page
        if has_next:
            items = items[: criteria.items_per_page]
        return has_next, items

    def _result(self, criteria: SearchCriteria, items: list[Any], count: int) -> ResultList[Any]:
        result: ResultList[Any] = ResultList(
            page=criteria.page_number,
            count=count,
            items_per_page=criteria.items_per_page,
            pages=count_pages(count, criteria.items_per_page),
            sortings=list(criteria.sortings),
            items=items,
        )
        logger.debug(
            "Search on %s returned %d item(s) of %d",
            self._model_type.__name__,
            len(items),
            count,
            extra={"model_type": self._model_type.__name__, "page": result.page},
        )
        return result

    def _resolve_selector(
        self, selector: Selector[T, Any] | type | None
    ) -> Selector[T, Any] | None:
        if selector is None or isinstance(selector, Selector):
            return selector
        if self._selectors is None:
            raise ValueError("A SelectorFactory is required to project by target type")
        return self._selectors.create(self._model_type, selector)

    def _advance(
        self, shaped: ShapedQuery[Any], query: Queryable[Any], stage: ShapingStage
    ) -> ShapedQuery[Any]:
        advanced = shaped.advance(query, stage)
        logger.debug(
            "Query on %s reached stage %s",
            self._model_type.__name__,
            stage.name,
            extra={"model_type": self._model_type.__name__, "stage": stage.name},
        )
        return advanced

    def _span_attributes(self, criteria: SearchCriteria) -> dict[str, Any]:
        return {
            ATTR_SOURCE_TYPE: self._model_type.__name__,
            ATTR_FILTER_COUNT: len(criteria.filters),
            ATTR_SORT_COUNT: len(criteria.sortings),
            ATTR_PAGE: criteria.page_number,
            ATTR_ITEMS_PER_PAGE: criteria.items_per_page,
        }


class AllEntitiesPipeline(SearchPipeline[T]):
    """Runs filters and sortings without paging or counting."""

    def execute_all(
        self, criteria: SearchCriteria, selector: Selector[T, Any] | type | None = None
    ) -> list[Any]:
        """
        Return every matching item.

        The default ordering is not applied; items come back in the
        store's order unless sortings are given.
        """
        unpaged = criteria.model_copy(update={"items_per_page": 0})
        with self._tracer.span("queryshape.pipeline.all", self._span_attributes(unpaged)) as span:
            items = self._page(self._prepare(unpaged), unpaged, selector).query.to_list()
            if span is not None:
                span.set_attribute(ATTR_RESULT_COUNT, len(items))
            return items

    async def execute_all_async(
        self, criteria: SearchCriteria, selector: Selector[T, Any] | type | None = None
    ) -> list[Any]:
        unpaged = criteria.model_copy(update={"items_per_page": 0})
        query: AsyncSQLAlchemyQueryable[Any] = self._page(  # type: ignore[assignment]
            self._prepare(unpaged), unpaged, selector
        ).query
        return await query.to_list()


class Search(Generic[T]):
    """
    Fluent search builder over a pipeline.

    Example:
        >>> page = (
        ...     shaper.search(query)
        ...     .filter_by(OrderFilter(status=Status.OPEN))
        ...     .order_by("placed_on desc")
        ...     .select(OrderDto)
        ...     .with_page(2)
        ...     .to_list()
        ... )
    """

    def __init__(
        self,
        pipeline: AllEntitiesPipeline[T],
        items_per_page: int = 10,
        use_count: bool = True,
    ) -> None:
        self._pipeline = pipeline
        self._criteria = SearchCriteria(items_per_page=items_per_page, use_count=use_count)
        self._selector: Selector[T, Any] | type | None = None

    @property
    def criteria(self) -> SearchCriteria:
        return self._criteria

    def filter_by(self, filter_value: Any) -> Search[T]:
        self._criteria.filters.append(filter_value)
        return self

    def order_by(
        self, sorting: Sorting | str, direction: SortDirection | str | None = None
    ) -> Search[T]:
        if isinstance(sorting, str):
            if direction is not None:
                sorting = Sorting(order_by=sorting, direction=direction)  # type: ignore[arg-type]
            else:
                parsed = Sorting.parse(sorting)
                if parsed is None:
                    raise ValueError(f"Invalid sorting: {sorting!r}")
                sorting = parsed
        self._criteria.sortings.append(sorting)
        return self

    def select(self, selector: Selector[T, Any] | type) -> Search[T]:
        self._selector = selector
        return self

    def with_page(self, page: int) -> Search[T]:
        self._criteria.page = page
        return self

    def with_items_per_page(self, items_per_page: int) -> Search[T]:
        if items_per_page < 0:
            raise ValueError(f"items_per_page must be >= 0, got {items_per_page}.")
        self._criteria.items_per_page = items_per_page
        return self

    def with_last_count(self, last_count: int) -> Search[T]:
        self._criteria.last_count = last_count
        return self

    def with_count(self, use_count: bool = True) -> Search[T]:
        self._criteria.use_count = use_count
        return self

    def to_list(self) -> ResultList[Any]:
        return self._pipeline.execute(self._criteria, self._selector)

    async def to_list_async(self) -> ResultList[Any]:
        return await self._pipeline.execute_async(self._criteria, self._selector)

    def all(self) -> list[Any]:
        """Every matching item, without paging."""
        return self._pipeline.execute_all(self._criteria, self._selector)


def id_predicate(model_type: type, id_value: Any, id_member: str = "id") -> Lambda:
    """``entity => entity.<id_member> == id_value``."""
    parameter = Parameter("entity", model_type)
    return Lambda(parameter, Compare("eq", Member(parameter, id_member), Constant(id_value)))


def filter_by_id(
    query: Queryable[T], model_type: type[T], id_value: Any, id_member: str = "id"
) -> Queryable[T]:
    """Restrict a queryable to the entity with the given identity."""
    return query.where(id_predicate(model_type, id_value, id_member))


def select_by_id(
    query: Queryable[T],
    model_type: type[T],
    id_value: Any,
    selector: Selector[T, Any] | None = None,
    id_member: str = "id",
) -> Any | None:
    """
    Find one entity (or its projection) by identity.

    Returns:
        The entity or projected item, None if no entity has that identity
    """
    filtered: Queryable[Any] = filter_by_id(query, model_type, id_value, id_member)
    if selector is not None:
        filtered = selector.select(filtered)
    return filtered.first()


__all__ = [
    "ShapingStage",
    "SearchCriteria",
    "ResultList",
    "ShapedQuery",
    "SearchPipeline",
    "AllEntitiesPipeline",
    "Search",
    "count_pages",
    "id_predicate",
    "filter_by_id",
    "select_by_id",
]
