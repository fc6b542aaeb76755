"""
Tests for the SQLAlchemy store driver on SQLite.

Tests for:
- Predicate translation (columns, relationships, IN, NULL)
- Ordering translation and its limits
- Paging and counting through the search pipeline
- Projection of loaded entities
"""

import pytest
from sqlalchemy import select

from queryshape import (
    InMemoryQueryable,
    QueryShaper,
    QueryShapeError,
    SearchCriteria,
    ShapingConfig,
    SpecifierNotConfiguredError,
    UnsupportedExpressionError,
)
from queryshape.expressions import (
    Compare,
    Constant,
    HasValue,
    Lambda,
    Member,
    Membership,
    Not,
    Parameter,
    StringMatch,
)
from queryshape.observability import ATTR_DB_SYSTEM, MockTracer
from queryshape.stores.sqlalchemy import (
    ClauseTranslator,
    SQLAlchemyQueryable,
    order_key,
    projected_columns,
)
from tests.fixtures.models import OrderStatus, OrderStatusDto
from tests.fixtures.orm import (
    CustomerCityFilter,
    CustomerRecord,
    CustomerRecordDto,
    CustomerRecordFilter,
    OrderRecord,
    OrderRecordDto,
    OrderRecordFilter,
)


@pytest.fixture
def shaper(shaper):
    """The shared shaper with min_discount bound to ``discount >= value``."""
    shaper.configure_filter(OrderRecord, OrderRecordFilter).for_field("min_discount").target(
        "discount"
    ).operator("gte")
    return shaper


@pytest.fixture
def customers(sqlite_session):
    return SQLAlchemyQueryable(sqlite_session, CustomerRecord)


@pytest.fixture
def orders(sqlite_session):
    return SQLAlchemyQueryable(sqlite_session, OrderRecord)


def ids(items):
    return [item.id for item in items]


def search(shaper, query, **criteria):
    return shaper.pipeline(query).execute(SearchCriteria(**criteria))


class TestFilters:
    """Tests for generated specifiers run as SQL."""

    def test_like(self, shaper, customers) -> None:
        """String fields match by substring."""
        result = search(shaper, customers, filters=[CustomerRecordFilter(name="li")])
        assert ids(result.items) == [1]

    def test_false_bool(self, shaper, customers) -> None:
        """vip=False is applied."""
        result = search(shaper, customers, filters=[CustomerRecordFilter(vip=False)])
        assert ids(result.items) == [2, 3]

    def test_in(self, shaper, customers) -> None:
        """A list field becomes IN."""
        result = search(shaper, customers, filters=[CustomerRecordFilter(id=[1, 3, 9])])
        assert ids(result.items) == [1, 3]

    def test_enum_equality(self, shaper, orders) -> None:
        """Enum columns compare by member."""
        result = search(shaper, orders, filters=[OrderRecordFilter(status=OrderStatus.PAID)])
        assert ids(result.items) == [10, 13]

    def test_flattened_relationship(self, shaper, orders) -> None:
        """``customer_name`` filters through the customer relationship."""
        result = search(shaper, orders, filters=[OrderRecordFilter(customer_name="Ali")])
        assert ids(result.items) == [10, 11]

    def test_unconfigured_field_fails(self, sqlite_session) -> None:
        """Without configuration min_discount matches no member."""
        shaper = QueryShaper(ShapingConfig(enable_tracing=False))
        query = SQLAlchemyQueryable(sqlite_session, OrderRecord)
        with pytest.raises(SpecifierNotConfiguredError):
            search(shaper, query, filters=[OrderRecordFilter(status=OrderStatus.PAID)])

    def test_configured_target_and_operator(self, shaper, orders) -> None:
        """configure_filter() binds min_discount to ``discount >= value``."""
        result = search(shaper, orders, filters=[OrderRecordFilter(min_discount=5)])
        assert ids(result.items) == [10, 12]

    def test_combined_filters(self, shaper, orders) -> None:
        """Several fields combine with AND."""
        criteria = OrderRecordFilter(status=OrderStatus.PAID, min_discount=1)
        assert ids(search(shaper, orders, filters=[criteria]).items) == [10]


class TestClauseTranslator:
    """Tests for hand-built predicates."""

    def test_null_comparison(self, orders) -> None:
        """``== None`` is translated to IS NULL."""
        entity = Parameter("entity", OrderRecord)
        predicate = Lambda(entity, Compare("eq", Member(entity, "discount"), Constant(None)))
        query = orders.where(predicate)
        assert ids(query.to_list()) == [11]

    def test_has_value(self, orders) -> None:
        """HasValue becomes IS NOT NULL."""
        entity = Parameter("entity", OrderRecord)
        query = orders.where(Lambda(entity, HasValue(Member(entity, "discount"))))
        assert ids(query.to_list()) == [10, 12, 13]

    def test_constant_on_the_left(self, orders) -> None:
        """Comparisons with the member on the right are flipped."""
        entity = Parameter("entity", OrderRecord)
        query = orders.where(Lambda(entity, Compare("lt", Constant(5), Member(entity, "discount"))))
        assert ids(query.to_list()) == [12]

    def test_collection_relationship(self, customers) -> None:
        """A path through a one-to-many relationship uses ANY."""
        entity = Parameter("entity", CustomerRecord)
        predicate = Lambda(
            entity,
            StringMatch("starts_with", Member(Member(entity, "orders"), "number"), Constant("B")),
        )
        assert ids(customers.where(predicate).to_list()) == [2]

    def test_unknown_member(self) -> None:
        """A member that is not mapped cannot be translated."""
        entity = Parameter("entity", CustomerRecord)
        predicate = Lambda(entity, Compare("eq", Member(entity, "email"), Constant("x")))
        with pytest.raises(UnsupportedExpressionError) as exc_info:
            ClauseTranslator(CustomerRecord).translate(predicate)
        assert exc_info.value.driver == "SQLAlchemy"

    def test_member_against_member(self) -> None:
        """Comparisons need a constant side."""
        entity = Parameter("entity", OrderRecord)
        predicate = Lambda(
            entity, Compare("eq", Member(entity, "id"), Member(entity, "customer_id"))
        )
        with pytest.raises(UnsupportedExpressionError):
            ClauseTranslator(OrderRecord).translate(predicate)


def _city(entity):
    return Member(entity, "city")


def _customer_city(entity):
    return Member(Member(entity, "customer"), "city")


class TestNullSemantics:
    """SQL results agree with the in-memory queryable for NULL members."""

    @pytest.mark.parametrize(
        "build,expected",
        [
            (lambda e: Compare("ne", _city(e), Constant("Lisbon")), [2, 3]),
            (lambda e: Not(StringMatch("contains", _city(e), Constant("Lis"))), [2, 3]),
            (lambda e: Not(Compare("ne", _city(e), Constant("Lisbon"))), [1]),
            (lambda e: Not(Compare("eq", _city(e), Constant(None))), [1, 3]),
            (lambda e: Not(Compare("gt", Member(e, "id"), Constant(None))), [1, 2, 3]),
            (lambda e: Membership(Constant([None, "Porto"]), _city(e)), [2, 3]),
            (lambda e: Not(Membership(Constant(["Porto"]), _city(e))), [1, 2]),
        ],
    )
    def test_customer_predicates(self, customers, build, expected) -> None:
        """Negations and ``!=`` match customers whose city is NULL."""
        entity = Parameter("entity", CustomerRecord)
        predicate = Lambda(entity, build(entity))
        assert ids(customers.where(predicate).to_list()) == expected
        loaded = InMemoryQueryable(customers.to_list(), CustomerRecord)
        assert ids(loaded.where(predicate).to_list()) == expected

    @pytest.mark.parametrize(
        "build,expected",
        [
            (lambda e: Compare("ne", _customer_city(e), Constant("Lisbon")), [12, 13]),
            (
                lambda e: Not(StringMatch("starts_with", _customer_city(e), Constant("Lis"))),
                [12, 13],
            ),
        ],
    )
    def test_relationship_predicates(self, orders, build, expected) -> None:
        """The NULL rule also holds for members reached through a relationship."""
        entity = Parameter("entity", OrderRecord)
        predicate = Lambda(entity, build(entity))
        assert ids(orders.where(predicate).to_list()) == expected
        loaded = InMemoryQueryable(orders.to_list(), OrderRecord)
        assert ids(loaded.where(predicate).to_list()) == expected

    def test_negated_filter_keeps_null_city(self, shaper, customers) -> None:
        """A negated criterion on a nullable column keeps rows where it is NULL."""
        result = search(shaper, customers, filters=[CustomerCityFilter(city="Lis")])
        assert ids(result.items) == [2, 3]


class TestOrdering:
    """Tests for ordering translation."""

    def test_sortings(self, shaper, customers) -> None:
        """Sortings translate to ORDER BY."""
        result = search(shaper, customers, sortings=["name desc"])
        assert ids(result.items) == [3, 2, 1]

    def test_then_by(self, shaper, customers) -> None:
        """Later sortings break ties."""
        result = search(shaper, customers, sortings=["vip", "id desc"])
        assert ids(result.items) == [3, 2, 1]

    def test_relationship_key_is_joined(self, shaper, orders) -> None:
        """A key through a scalar relationship orders by the joined column."""
        result = search(shaper, orders, sortings=["customer_name desc", "id desc"])
        assert ids(result.items) == [13, 12, 11, 10]
        assert result.count == 4

    def test_column_key_breaks_relationship_ties(self, shaper, orders) -> None:
        """A column key after a joined key orders rows of the same customer."""
        result = search(shaper, orders, sortings=["customer_name", "number desc"])
        assert ids(result.items) == [11, 10, 12, 13]

    def test_order_key(self) -> None:
        """order_key() returns the mapped column and the joins it needs."""
        entity = Parameter("entity", CustomerRecord)
        key = order_key(CustomerRecord, Lambda(entity, Member(entity, "name")))
        assert key.column is CustomerRecord.name
        assert key.joins == ()
        order = Parameter("entity", OrderRecord)
        joined = order_key(OrderRecord, Lambda(order, Member(Member(order, "customer"), "name")))
        assert len(joined.joins) == 1
        assert joined.column.key == "name"

    @pytest.mark.parametrize(
        "path",
        [("orders",), ("orders", "number"), ("customer",), ("missing",)],
    )
    def test_order_key_rejects(self, path) -> None:
        """Relationships, collection hops and unknown names cannot be ordered by."""
        entity = Parameter("entity", CustomerRecord if path[0] == "orders" else OrderRecord)
        body = entity
        for name in path:
            body = Member(body, name)
        with pytest.raises(UnsupportedExpressionError):
            order_key(entity.parameter_type, Lambda(entity, body))

    def test_then_by_requires_order_by(self, customers) -> None:
        """then_by() needs a preceding ordering."""
        entity = Parameter("entity", CustomerRecord)
        with pytest.raises(QueryShapeError):
            customers.then_by(Lambda(entity, Member(entity, "id")))


class TestPaging:
    """Tests for paging and counting."""

    def test_first_page_counts(self, shaper, orders) -> None:
        """A full page with more rows behind it runs a COUNT query."""
        result = search(shaper, orders, items_per_page=3)
        assert ids(result.items) == [10, 11, 12]
        assert result.count == 4
        assert result.pages == 2

    def test_last_page(self, shaper, orders) -> None:
        """The last page derives the count from the rows returned."""
        result = search(shaper, orders, items_per_page=3, page=2)
        assert ids(result.items) == [13]
        assert result.count == 4

    def test_count_with_filter(self, shaper, orders) -> None:
        """count() applies the filters but not paging."""
        query = shaper.pipeline(orders).prepare(
            SearchCriteria(filters=[OrderRecordFilter(status=OrderStatus.PAID)])
        )
        assert query.count() == 2
        assert query.take(1).count() == 1

    def test_skip_take_compose(self, orders) -> None:
        """Nested skip/take narrow the window."""
        entity = Parameter("entity", OrderRecord)
        ordered = orders.order_by(Lambda(entity, Member(entity, "id")))
        assert ids(ordered.skip(1).take(2).to_list()) == [11, 12]
        assert ids(ordered.take(3).skip(1).to_list()) == [11, 12]
        assert ordered.skip(1).first().id == 11


class TestProjection:
    """Tests for projections over loaded entities."""

    def test_order_projection(self, shaper, orders) -> None:
        """Relationships, enums and nullable columns are projected."""
        result = shaper.pipeline(orders).execute(SearchCriteria(), OrderRecordDto)
        assert result.items[1] == OrderRecordDto(
            id=11,
            number="A-11",
            status=OrderStatusDto.PENDING,
            customer_name="Alice",
            discount=0,
        )

    def test_find_by_id(self, shaper, customers) -> None:
        """find_by_id() projects one row."""
        assert shaper.find_by_id(customers, 3, CustomerRecordDto) == CustomerRecordDto(
            id=3, name="Carol", city="Porto"
        )
        assert shaper.find_by_id(customers, 99) is None

    def test_element_type(self, shaper, customers) -> None:
        """select() changes the element type."""
        selector = shaper.get_selector(CustomerRecord, CustomerRecordDto)
        assert selector.select(customers).element_type is CustomerRecordDto

    def test_flat_projection_loads_its_columns(self, shaper, customers) -> None:
        """Only the columns a flat projection reads are selected."""
        selector = shaper.get_selector(CustomerRecord, CustomerRecordDto)
        columns = projected_columns(CustomerRecord, selector.expression)
        assert [column.key for column in columns] == ["city", "id", "name"]
        sql = str(selector.select(customers).load_statement)
        assert "customers.name" in sql
        assert "customers.vip" not in sql

    def test_relationship_projection_loads_entities(self, shaper, orders) -> None:
        """A projection reading through a relationship loads whole entities."""
        selector = shaper.get_selector(OrderRecord, OrderRecordDto)
        assert projected_columns(OrderRecord, selector.expression) is None
        query = selector.select(orders)
        assert str(query.load_statement) == str(query.statement)

    def test_where_after_select(self, shaper, customers) -> None:
        """Predicates cannot follow a projection."""
        selector = shaper.get_selector(CustomerRecord, CustomerRecordDto)
        entity = Parameter("entity", CustomerRecord)
        with pytest.raises(QueryShapeError, match="cannot follow select"):
            selector.select(customers).where(
                Lambda(entity, Compare("eq", Member(entity, "id"), Constant(1)))
            )


def test_base_statement_is_respected(sqlite_session, shaper) -> None:
    """A custom base statement is composed on."""
    statement = select(CustomerRecord).where(CustomerRecord.city.is_not(None))
    query = SQLAlchemyQueryable(sqlite_session, CustomerRecord, statement)
    assert ids(search(shaper, query).items) == [1, 3]


def test_spans(sqlite_session) -> None:
    """Executions record spans tagged with the database system."""
    tracer = MockTracer()
    query = SQLAlchemyQueryable(sqlite_session, CustomerRecord, tracer=tracer)
    query.to_list()
    query.count()
    assert tracer.span_names == ["queryshape.sqlalchemy.to_list", "queryshape.sqlalchemy.count"]
    assert tracer.spans[0][1][ATTR_DB_SYSTEM] == "sqlite"
