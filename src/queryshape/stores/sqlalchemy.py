"""
SQLAlchemy ORM store driver.

Translates predicate and key-selector expressions into SQLAlchemy column
expressions on a ``select()`` of a mapped class, and runs the statement
through a Session (SQLAlchemyQueryable) or an AsyncSession
(AsyncSQLAlchemyQueryable). SQL text generation is left to SQLAlchemy.

Translation rules:
    - member paths become column attributes; a path through a
      relationship becomes ``relationship.has(...)`` (scalar) or
      ``relationship.any(...)`` (collection)
    - comparisons become column comparisons (``== None`` becomes ``IS NULL``);
      ``!= value`` and negated tests also match NULL members, as in memory
    - string matches become ``contains``/``startswith``/``endswith``
    - membership becomes ``IN``
    - key selectors must be a column of the queried class or of a model
      reached through scalar relationships, which are outer joined

Projections are applied to the loaded entities in Python, after the
statement has run. A projection reading only plain columns of the queried
class loads just those columns (``load_only``). With an AsyncSession,
relationships read by a projection must be eager loaded through the base
statement (``select(Order).options(selectinload(Order.lines))``).

Example:
    >>> with Session(engine) as session:
    ...     query = SQLAlchemyQueryable(session, Order)
    ...     result = shaper.pipeline(query).execute(criteria, shaper.get_selector(Order, OrderDto))
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy import ColumnElement, Select, false, func, not_, or_, select
from sqlalchemy.orm import ColumnProperty, RelationshipProperty, Session, aliased, load_only

from queryshape.exceptions import QueryShapeError, UnsupportedExpressionError
from queryshape.expressions import (
    Compare,
    Conditional,
    Constant,
    Construct,
    Convert,
    DefaultValue,
    Expression,
    ExpressionVisitor,
    HasValue,
    Lambda,
    MapEach,
    Member,
    Membership,
    Not,
    Parameter,
    StringMatch,
    compile_lambda,
)
from queryshape.observability import ATTR_DB_SYSTEM, ATTR_SOURCE_TYPE, NullTracer, Tracer

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

T = TypeVar("T")

DRIVER = "SQLAlchemy"

_FLIPPED = {"eq": "eq", "ne": "ne", "gt": "lt", "gte": "lte", "lt": "gt", "lte": "gte"}


@dataclass(frozen=True)
class _Leaf:
    """
    A single-member predicate before it is placed under its relationship hops.

    Attributes:
        path: Member path of the tested member
        build: Builds the column test from the leaf column
        null_result: Value of the predicate when the member (or a hop) is None
        null_safe: True when ``build`` already gives a definite result for NULL
    """

    path: tuple[str, ...]
    build: Callable[[Any], ColumnElement[bool]]
    null_result: bool
    null_safe: bool = False


class ClauseTranslator(ExpressionVisitor):
    """
    Translates a predicate lambda into a SQLAlchemy boolean clause.

    Clauses follow the in-memory semantics rather than SQL three-valued
    logic: a member that is None (or unreachable through a missing
    relationship) satisfies ``!= value`` and the negation of any test it
    fails, so both stores return the same rows.

    Args:
        model_class: The mapped class the lambda's parameter ranges over
    """

    def __init__(self, model_class: type) -> None:
        self._model_class = model_class

    def translate(self, predicate: Lambda) -> ColumnElement[bool]:
        return self.visit(predicate.body)  # type: ignore[no-any-return]

    def generic_visit(self, node: Expression) -> Any:
        raise UnsupportedExpressionError(node, DRIVER)

    def visit_compare(self, node: Compare) -> ColumnElement[bool]:
        return self._apply(self._compare_leaf(node), node, negated=False)

    def visit_string_match(self, node: StringMatch) -> ColumnElement[bool]:
        return self._apply(self._string_match_leaf(node), node, negated=False)

    def visit_membership(self, node: Membership) -> ColumnElement[bool]:
        return self._apply(self._membership_leaf(node), node, negated=False)

    def visit_has_value(self, node: HasValue) -> ColumnElement[bool]:
        return self._apply(self._has_value_leaf(node), node, negated=False)

    def visit_not(self, node: Not) -> ColumnElement[bool]:
        operand = node.operand
        leaf: _Leaf | None = None
        if isinstance(operand, Compare):
            leaf = self._compare_leaf(operand)
        elif isinstance(operand, StringMatch):
            leaf = self._string_match_leaf(operand)
        elif isinstance(operand, Membership):
            leaf = self._membership_leaf(operand)
        elif isinstance(operand, HasValue):
            leaf = self._has_value_leaf(operand)
        # negation is pushed down to the column except across collections
        if leaf is None or self._crosses_collection(leaf.path):
            return not_(self.visit(operand))
        return self._apply(leaf, operand, negated=True)

    def _compare_leaf(self, node: Compare) -> _Leaf:
        operator = node.operator
        member, value = node.left, node.right
        if not isinstance(member, Member):
            member, value = value, member
            operator = _FLIPPED[operator]  # type: ignore[assignment]
        path = self._path(member, node)
        constant = self._constant(value, node)

        if constant is None:
            if operator == "eq":
                return _Leaf(path, lambda column: column.is_(None), True, null_safe=True)
            if operator == "ne":
                return _Leaf(path, lambda column: column.is_not(None), False, null_safe=True)
            # ordering against None is never true
            return _Leaf(path, lambda column: false(), False, null_safe=True)

        def compare(column: Any) -> ColumnElement[bool]:
            if operator == "eq":
                return column == constant  # type: ignore[no-any-return]
            if operator == "ne":
                return column != constant  # type: ignore[no-any-return]
            if operator == "gt":
                return column > constant  # type: ignore[no-any-return]
            if operator == "gte":
                return column >= constant  # type: ignore[no-any-return]
            if operator == "lt":
                return column < constant  # type: ignore[no-any-return]
            return column <= constant  # type: ignore[no-any-return]

        return _Leaf(path, compare, null_result=operator == "ne")

    def _string_match_leaf(self, node: StringMatch) -> _Leaf:
        path = self._path(node.target, node)
        argument = self._constant(node.argument, node)
        if argument is None:
            return _Leaf(path, lambda column: false(), False, null_safe=True)
        method = {"contains": "contains", "starts_with": "startswith", "ends_with": "endswith"}[
            node.method
        ]
        return _Leaf(path, lambda column: getattr(column, method)(argument), False)

    def _membership_leaf(self, node: Membership) -> _Leaf:
        path = self._path(node.item, node)
        values = list(self._constant(node.collection, node) or ())
        present = [value for value in values if value is not None]
        return _Leaf(path, lambda column: column.in_(present), None in values)

    def _has_value_leaf(self, node: HasValue) -> _Leaf:
        path = self._path(node.operand, node)
        return _Leaf(path, lambda column: column.is_not(None), False, null_safe=True)

    def _apply(self, leaf: _Leaf, node: Expression, negated: bool) -> ColumnElement[bool]:
        matches_null = leaf.null_result != negated

        def build(column: Any) -> ColumnElement[bool]:
            clause = leaf.build(column)
            if negated:
                clause = not_(clause)
            if matches_null and not leaf.null_safe:
                return or_(clause, column.is_(None))
            return clause

        return self._clause(self._model_class, leaf.path, build, node, matches_null)

    def _crosses_collection(self, path: tuple[str, ...]) -> bool:
        model_class = self._model_class
        for name in path[:-1]:
            prop = getattr(getattr(model_class, name, None), "property", None)
            if not isinstance(prop, RelationshipProperty):
                return False
            if prop.uselist:
                return True
            model_class = prop.mapper.class_
        return False

    def _path(self, expression: Expression, node: Expression) -> tuple[str, ...]:
        path = expression.path if isinstance(expression, Member) else None
        if not path:
            raise UnsupportedExpressionError(node, DRIVER)
        return path

    def _constant(self, expression: Expression, node: Expression) -> Any:
        if not isinstance(expression, Constant):
            raise UnsupportedExpressionError(node, DRIVER)
        return expression.value

    def _clause(
        self,
        model_class: type,
        path: tuple[str, ...],
        build: Callable[[Any], ColumnElement[bool]],
        node: Expression,
        matches_null: bool = False,
    ) -> ColumnElement[bool]:
        attribute = getattr(model_class, path[0], None)
        if attribute is None:
            raise UnsupportedExpressionError(node, DRIVER)
        if len(path) == 1:
            return build(attribute)

        prop = getattr(attribute, "property", None)
        if not isinstance(prop, RelationshipProperty):
            raise UnsupportedExpressionError(node, DRIVER)
        inner = self._clause(prop.mapper.class_, path[1:], build, node, matches_null)
        if prop.uselist:
            return attribute.any(inner)  # type: ignore[no-any-return]
        if matches_null:
            return or_(attribute.has(inner), not_(attribute.has()))
        return attribute.has(inner)  # type: ignore[no-any-return]


@dataclass(frozen=True)
class OrderKey:
    """
    A column to order by.

    Attributes:
        column: Column attribute, on an alias when reached through hops
        joins: Relationship attributes to outer join, in path order
    """

    column: Any
    joins: tuple[Any, ...] = ()

    def apply(self, statement: Select[Any], descending: bool) -> tuple[Select[Any], Any]:
        """Add the joins to ``statement`` and return it with the ordering term."""
        for join in self.joins:
            statement = statement.outerjoin(join)
        return statement, self.column.desc() if descending else self.column.asc()


def order_key(model_class: type, key_selector: Lambda) -> OrderKey:
    """
    The column a key selector orders by.

    Every hop before the last must be a scalar relationship; each is joined
    through its own alias so two keys through the same relationship never
    collide.

    Raises:
        UnsupportedExpressionError: If the key is not a column of ``model_class``
            or of a model reached through scalar relationships
    """
    body = key_selector.body
    path = body.path if isinstance(body, Member) else None
    if not path:
        raise UnsupportedExpressionError(key_selector, DRIVER)

    entity: Any = model_class
    joins: list[Any] = []
    for name in path[:-1]:
        attribute = getattr(entity, name, None)
        prop = getattr(attribute, "property", None)
        if not isinstance(prop, RelationshipProperty) or prop.uselist:
            raise UnsupportedExpressionError(key_selector, DRIVER)
        target = aliased(prop.mapper.class_)
        joins.append(attribute.of_type(target))
        entity = target

    column = getattr(entity, path[-1], None)
    if column is None or not isinstance(getattr(column, "property", None), ColumnProperty):
        raise UnsupportedExpressionError(key_selector, DRIVER)
    return OrderKey(column, tuple(joins))


class _MemberCollector(ExpressionVisitor):
    """Member paths a projection reads from its parameter; ``()`` for the whole entity."""

    def __init__(self, parameter: Parameter) -> None:
        self._parameter = parameter
        self.paths: set[tuple[str, ...]] = set()

    def visit_parameter(self, node: Parameter) -> None:
        if node == self._parameter:
            self.paths.add(())

    def visit_member(self, node: Member) -> None:
        path = node.path
        if path is None:
            self.visit(node.target)
            return
        root = node.target
        while isinstance(root, Member):
            root = root.target
        if root == self._parameter:
            self.paths.add(path)

    def visit_constant(self, node: Constant) -> None:
        pass

    def visit_default_value(self, node: DefaultValue) -> None:
        pass

    def visit_has_value(self, node: HasValue) -> None:
        self.visit(node.operand)

    def visit_conditional(self, node: Conditional) -> None:
        self.visit(node.test)
        self.visit(node.if_true)
        self.visit(node.if_false)

    def visit_convert(self, node: Convert) -> None:
        self.visit(node.operand)

    def visit_construct(self, node: Construct) -> None:
        for binding in node.bindings:
            self.visit(binding.expression)

    def visit_lambda(self, node: Lambda) -> None:
        self.visit(node.body)

    def visit_map_each(self, node: MapEach) -> None:
        self.visit(node.source)
        self.visit(node.selector)

    def visit_compare(self, node: Compare) -> None:
        self.visit(node.left)
        self.visit(node.right)

    def visit_not(self, node: Not) -> None:
        self.visit(node.operand)

    def visit_string_match(self, node: StringMatch) -> None:
        self.visit(node.target)
        self.visit(node.argument)

    def visit_membership(self, node: Membership) -> None:
        self.visit(node.collection)
        self.visit(node.item)


def projected_columns(model_class: type, projection: Lambda) -> list[Any] | None:
    """
    The column attributes a projection reads, or None if it needs whole entities.

    Only projections reading plain columns of ``model_class`` directly are
    narrowed; any relationship hop or use of the entity itself loads it fully.
    """
    collector = _MemberCollector(projection.parameter)
    collector.visit(projection.body)
    columns = []
    for path in sorted(collector.paths):
        if len(path) != 1:
            return None
        column = getattr(model_class, path[0], None)
        if not isinstance(getattr(column, "property", None), ColumnProperty):
            return None
        columns.append(column)
    return columns or None


class _StatementQueryable(Generic[T]):
    """Statement composition shared by the sync and async queryables."""

    def __init__(
        self,
        session: Any,
        model_class: type,
        statement: Select[Any] | None = None,
        offset: int = 0,
        limit: int | None = None,
        ordered: bool = False,
        projection: Lambda | None = None,
        tracer: Tracer | None = None,
    ) -> None:
        self._session = session
        self._model_class = model_class
        self._statement = statement if statement is not None else select(model_class)
        self._offset = offset
        self._limit = limit
        self._ordered = ordered
        self._projection = projection
        self._tracer = tracer or NullTracer()

    @property
    def model_class(self) -> type:
        return self._model_class

    @property
    def element_type(self) -> Any:
        if self._projection is not None:
            return self._projection.type
        return self._model_class

    @property
    def is_ordered(self) -> bool:
        return self._ordered

    @property
    def statement(self) -> Select[Any]:
        """The composed statement, with paging applied."""
        statement = self._statement
        if self._offset:
            statement = statement.offset(self._offset)
        if self._limit is not None:
            statement = statement.limit(self._limit)
        return statement

    @property
    def load_statement(self) -> Select[Any]:
        """The statement to_list() runs: the paged statement, narrowed to the projected columns."""
        statement = self.statement
        if self._projection is None:
            return statement
        columns = projected_columns(self._model_class, self._projection)
        if columns is None:
            return statement
        return statement.options(load_only(*columns))

    def _copy(self, **changes: Any) -> Any:
        values: dict[str, Any] = {
            "statement": self._statement,
            "offset": self._offset,
            "limit": self._limit,
            "ordered": self._ordered,
            "projection": self._projection,
            "tracer": self._tracer,
        }
        values.update(changes)
        return type(self)(self._session, self._model_class, **values)

    def _require_unprojected(self, operation: str) -> None:
        if self._projection is not None:
            raise QueryShapeError(f"{operation}() cannot follow select() on a SQLAlchemy query")

    def where(self, predicate: Lambda) -> Any:
        self._require_unprojected("where")
        clause = ClauseTranslator(self._model_class).translate(predicate)
        return self._copy(statement=self._statement.where(clause))

    def order_by(self, key_selector: Lambda, descending: bool = False) -> Any:
        self._require_unprojected("order_by")
        key = order_key(self._model_class, key_selector)
        statement, ordering = key.apply(self._statement.order_by(None), descending)
        return self._copy(statement=statement.order_by(ordering), ordered=True)

    def then_by(self, key_selector: Lambda, descending: bool = False) -> Any:
        if not self._ordered:
            raise QueryShapeError("then_by() requires a preceding order_by()")
        key = order_key(self._model_class, key_selector)
        statement, ordering = key.apply(self._statement, descending)
        return self._copy(statement=statement.order_by(ordering))

    def select(self, selector: Lambda) -> Any:
        self._require_unprojected("select")
        return self._copy(projection=selector)

    def skip(self, count: int) -> Any:
        count = max(count, 0)
        limit = None if self._limit is None else max(self._limit - count, 0)
        return self._copy(offset=self._offset + count, limit=limit)

    def take(self, count: int) -> Any:
        count = max(count, 0)
        limit = count if self._limit is None else min(self._limit, count)
        return self._copy(limit=limit)

    def _count_statement(self) -> Select[Any]:
        return select(func.count()).select_from(self.statement.order_by(None).subquery())

    def _project(self, entities: list[Any]) -> list[Any]:
        if self._projection is None:
            return entities
        function = compile_lambda(self._projection)
        return [function(entity) for entity in entities]

    def _span_attributes(self) -> dict[str, Any]:
        return {ATTR_SOURCE_TYPE: self._model_class.__name__, ATTR_DB_SYSTEM: self._dialect()}

    def _dialect(self) -> str:
        bind = getattr(self._session, "bind", None)
        dialect = getattr(bind, "dialect", None)
        return getattr(dialect, "name", "unknown")


class SQLAlchemyQueryable(_StatementQueryable[T]):
    """
    Queryable over a mapped class, executed through a Session.

    Args:
        session: SQLAlchemy Session
        model_class: Mapped class to query
        tracer: Optional tracer
    """

    def __init__(
        self,
        session: Session,
        model_class: type[T],
        statement: Select[Any] | None = None,
        offset: int = 0,
        limit: int | None = None,
        ordered: bool = False,
        projection: Lambda | None = None,
        tracer: Tracer | None = None,
    ) -> None:
        super().__init__(
            session, model_class, statement, offset, limit, ordered, projection, tracer
        )

    def to_list(self) -> list[T]:
        with self._tracer.span("queryshape.sqlalchemy.to_list", self._span_attributes()):
            entities = list(self._session.scalars(self.load_statement).all())
        logger.debug(
            "Loaded %d %s row(s)",
            len(entities),
            self._model_class.__name__,
            extra={"model_type": self._model_class.__name__},
        )
        return self._project(entities)

    def count(self) -> int:
        with self._tracer.span("queryshape.sqlalchemy.count", self._span_attributes()):
            return int(self._session.scalar(self._count_statement()) or 0)

    def first(self) -> T | None:
        results = self.take(1).to_list()
        return results[0] if results else None


class AsyncSQLAlchemyQueryable(_StatementQueryable[T]):
    """
    Queryable over a mapped class, executed through an AsyncSession.

    Composition is identical to SQLAlchemyQueryable; ``to_list``, ``count``
    and ``first`` are coroutines.

    Example:
        >>> async with AsyncSession(engine) as session:
        ...     query = AsyncSQLAlchemyQueryable(session, Order)
        ...     result = await shaper.pipeline(query).execute_async(criteria)
    """

    def __init__(
        self,
        session: AsyncSession,
        model_class: type[T],
        statement: Select[Any] | None = None,
        offset: int = 0,
        limit: int | None = None,
        ordered: bool = False,
        projection: Lambda | None = None,
        tracer: Tracer | None = None,
    ) -> None:
        super().__init__(
            session, model_class, statement, offset, limit, ordered, projection, tracer
        )

    async def to_list(self) -> list[T]:
        with self._tracer.span("queryshape.sqlalchemy.to_list", self._span_attributes()):
            result = await self._session.scalars(self.load_statement)
            entities = list(result.all())
        return self._project(entities)

    async def count(self) -> int:
        with self._tracer.span("queryshape.sqlalchemy.count", self._span_attributes()):
            return int(await self._session.scalar(self._count_statement()) or 0)

    async def first(self) -> T | None:
        results = await self.take(1).to_list()
        return results[0] if results else None


__all__ = [
    "ClauseTranslator",
    "SQLAlchemyQueryable",
    "AsyncSQLAlchemyQueryable",
    "OrderKey",
    "order_key",
    "projected_columns",
]
