"""
Unit tests for SpecifierFunctionGenerator and GeneratedSpecifier.

Tests for:
- Field-to-member binding (same name, flattened, explicit target)
- Operator translation and negation
- Skipping empty and ignored fields
- Failed generation and ill-formed criteria
"""

from datetime import date

import pytest

from queryshape import CriterionOperator, InvalidCriterionError
from queryshape.descriptors import analyze_annotation
from queryshape.expressions import (
    Compare,
    Constant,
    Member,
    Membership,
    Not,
    Parameter,
    StringMatch,
    render,
)
from queryshape.filters import FilterModel, SpecifierFunctionGenerator, SpecifierOptions
from queryshape.filters.generator import compatible, operator_expression
from tests.fixtures.models import (
    Customer,
    CustomerBadInFilter,
    CustomerFilter,
    CustomerIdsFilter,
    CustomerIgnoredFilter,
    CustomerNicknameFilter,
    Order,
    OrderFilter,
    OrderStatus,
)


@pytest.fixture
def generator(resolver):
    return SpecifierFunctionGenerator(resolver)


def ids(query):
    return [item.id for item in query.to_list()]


class TestOrderFilter:
    """Tests for a filter using every kind of criterion."""

    @pytest.fixture
    def specifier(self, generator):
        specifier = generator.generate(Order, OrderFilter)
        assert specifier is not None
        return specifier

    def test_resolutions_follow_field_order(self, specifier):
        """One resolution per filter field, in declaration order."""
        assert [r.field.name for r in specifier.resolutions] == [
            "status",
            "customer",
            "min_discount",
            "number",
            "placed_after",
        ]

    def test_empty_filter_keeps_everything(self, specifier, order_query):
        """A filter with no values adds no predicates."""
        assert specifier.predicates(OrderFilter()) == []
        assert ids(specifier.specify(order_query, OrderFilter())) == [100, 101, 102, 103]

    def test_auto_equal(self, specifier, order_query):
        """An enum field compares by equality."""
        query = specifier.specify(order_query, OrderFilter(status=OrderStatus.PAID))
        assert ids(query) == [100, 103]

    def test_starts_with_on_target_path(self, specifier, order_query):
        """``customer`` tests the prefix of ``customer.name``."""
        assert ids(specifier.specify(order_query, OrderFilter(customer="Al"))) == [100, 102]

    def test_gte_skips_null_members(self, specifier, order_query):
        """Ordering comparisons are false against a None member."""
        assert ids(specifier.specify(order_query, OrderFilter(min_discount=5))) == [100, 102]

    def test_zero_is_a_value_for_nullable_fields(self, specifier, order_query):
        """min_discount=0 is applied, not skipped."""
        query = specifier.specify(order_query, OrderFilter(min_discount=0))
        assert ids(query) == [100, 102, 103]

    def test_negated_equality(self, specifier, order_query):
        """A negated ``eq`` becomes ``!=``."""
        query = specifier.specify(order_query, OrderFilter(number="A-100"))
        assert ids(query) == [101, 102, 103]
        (predicate,) = specifier.predicates(OrderFilter(number="A-100"))
        assert render(predicate) == "entity => entity.number != 'A-100'"

    def test_greater_than_from_field_metadata(self, specifier, order_query):
        """criterion_field() metadata is applied."""
        query = specifier.specify(order_query, OrderFilter(placed_after=date(2024, 1, 31)))
        assert ids(query) == [101, 102]

    def test_predicates_are_combined(self, specifier, order_query):
        """Several non-empty fields combine with AND."""
        query = specifier.specify(
            order_query, OrderFilter(status=OrderStatus.PAID, customer="C")
        )
        assert ids(query) == [103]

    def test_predicate_rendering(self, specifier):
        """Generated predicates render as readable expressions."""
        predicates = specifier.predicates(OrderFilter(customer="Al", min_discount=3))
        assert [render(p) for p in predicates] == [
            "entity => entity.customer.name.startswith('Al')",
            "entity => entity.discount >= 3",
        ]


class TestCustomerFilters:
    """Tests for AUTO operators and collection fields."""

    def test_auto_like_is_substring(self, generator, customer_query):
        """A string field matches by substring."""
        specifier = generator.generate(Customer, CustomerFilter)
        assert ids(specifier.specify(customer_query, CustomerFilter(name="li"))) == [3, 5]

    def test_false_is_applied_for_nullable_bool(self, generator, customer_query):
        """vip=False filters instead of being treated as empty."""
        specifier = generator.generate(Customer, CustomerFilter)
        assert ids(specifier.specify(customer_query, CustomerFilter(vip=False))) == [1, 5, 4]

    def test_blank_string_is_skipped(self, generator, customer_query):
        """A blank string is an empty value."""
        specifier = generator.generate(Customer, CustomerFilter)
        assert specifier.predicates(CustomerFilter(name="  ")) == []

    def test_collection_field_is_in(self, generator, customer_query):
        """A list field becomes a membership test."""
        specifier = generator.generate(Customer, CustomerIdsFilter)
        assert ids(specifier.specify(customer_query, CustomerIdsFilter(id=[1, 2, 9]))) == [1, 2]

    def test_empty_collection_is_skipped(self, generator, customer_query):
        """An empty list adds no predicate."""
        specifier = generator.generate(Customer, CustomerIdsFilter)
        assert len(specifier.specify(customer_query, CustomerIdsFilter(id=[])).to_list()) == 5

    def test_ignored_field_has_no_resolution(self, generator):
        """Fields marked ignore=True are never bound."""
        specifier = generator.generate(Customer, CustomerIgnoredFilter)
        assert [r.field.name for r in specifier.resolutions] == ["name"]
        assert specifier.predicates(CustomerIgnoredFilter(internal="x")) == []

    def test_ignore_if_empty_false(self, generator, customer_query):
        """With ignore_if_empty off, an empty value is still compared."""
        options = SpecifierOptions(Customer, CustomerFilter)
        options.for_field("vip").ignore_if_empty(False)
        specifier = generator.generate(Customer, CustomerFilter, options)
        (predicate,) = specifier.predicates(CustomerFilter())
        assert render(predicate) == "entity => entity.vip == None"
        assert ids(specifier.specify(customer_query, CustomerFilter())) == []

    def test_options_override_operator(self, generator, customer_query):
        """Per-pair options replace the discovered operator."""
        options = SpecifierOptions(Customer, CustomerFilter)
        options.for_field("name").operator("ends_with")
        specifier = generator.generate(Customer, CustomerFilter, options)
        assert ids(specifier.specify(customer_query, CustomerFilter(name="ol"))) == [2]


class TestFailedGeneration:
    """Tests for filters that cannot be bound."""

    def test_unmatched_field(self, generator):
        """A field with no model member fails the whole specifier."""
        assert generator.generate(Customer, CustomerNicknameFilter) is None

    def test_incompatible_same_name_member(self, generator):
        """A same-name member of another type is not a match."""

        class NameAsNumberFilter(FilterModel):
            name: int | None = None

        assert generator.generate(Customer, NameAsNumberFilter) is None

    def test_unknown_target_path(self, generator):
        """An explicit target that does not resolve fails generation."""
        options = SpecifierOptions(Customer, CustomerFilter)
        options.for_field("name").target("address.zip")
        assert generator.generate(Customer, CustomerFilter, options) is None

    def test_in_on_single_value_field(self, generator):
        """``in`` on a non-collection field is an ill-formed criterion."""
        with pytest.raises(InvalidCriterionError) as exc_info:
            generator.generate(Customer, CustomerBadInFilter)
        assert exc_info.value.field_name == "id"
        assert exc_info.value.filter_type is CustomerBadInFilter


class TestOperatorExpression:
    """Tests for operator_expression()."""

    @pytest.fixture
    def member(self):
        return Member(Parameter("entity", Order), "number")

    @pytest.mark.parametrize(
        "operator,expected",
        [
            (CriterionOperator.GREATER_THAN, "gt"),
            (CriterionOperator.GREATER_THAN_OR_EQUAL, "gte"),
            (CriterionOperator.LESS_THAN, "lt"),
            (CriterionOperator.LESS_THAN_OR_EQUAL, "lte"),
        ],
    )
    def test_comparisons(self, member, operator, expected):
        """Ordering operators become Compare nodes."""
        assert operator_expression(operator, member, Constant(1), False) == Compare(
            expected, member, Constant(1)
        )

    def test_negated_comparison_is_wrapped(self, member):
        """Negated operators other than ``eq`` are wrapped in Not."""
        expression = operator_expression(
            CriterionOperator.LESS_THAN, member, Constant(1), True
        )
        assert expression == Not(Compare("lt", member, Constant(1)))

    def test_string_methods(self, member):
        """String operators become StringMatch nodes; LIKE is a substring test."""
        like = operator_expression(CriterionOperator.LIKE, member, Constant("A"), False)
        assert like == StringMatch("contains", member, Constant("A"))
        ends = operator_expression(CriterionOperator.ENDS_WITH, member, Constant("0"), False)
        assert ends == StringMatch("ends_with", member, Constant("0"))

    def test_in(self, member):
        """IN tests the member against the filter's values."""
        values = Constant(["A-100"])
        assert operator_expression(CriterionOperator.IN, member, values, False) == Membership(
            values, member
        )

    def test_auto_has_no_comparison(self, member):
        """AUTO must be resolved before building the expression."""
        with pytest.raises(ValueError, match="has no comparison"):
            operator_expression(CriterionOperator.AUTO, member, Constant(1), False)


class TestCompatible:
    """Tests for compatible()."""

    def test_nullability_is_ignored(self):
        """An optional field matches a required member of the same type."""
        assert compatible(analyze_annotation("id", int | None), analyze_annotation("id", int))

    def test_collection_field_matches_element(self):
        """A list[int] field matches an int member."""
        assert compatible(analyze_annotation("id", list[int]), analyze_annotation("id", int))

    def test_collection_member_never_matches(self):
        """Collection members cannot be constrained by name."""
        assert not compatible(
            analyze_annotation("tags", list[str]), analyze_annotation("tags", list[str])
        )

    def test_different_types(self):
        """Unrelated types are incompatible."""
        assert not compatible(analyze_annotation("id", str), analyze_annotation("id", int))


def test_repr(generator):
    """The repr names both types and the bound fields."""
    specifier = generator.generate(Customer, CustomerFilter)
    assert repr(specifier) == "GeneratedSpecifier(Customer, CustomerFilter: name, vip)"
