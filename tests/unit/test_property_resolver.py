"""
Unit tests for PropertyResolver and assignability.

Tests for:
- Exact, dotted and flattened name resolution
- is_assignable rules (types, nullability, containers)
- match_properties over whole type pairs
"""

from typing import Any

from pydantic import BaseModel

from queryshape import DescriptorRegistry, PropertyResolver
from queryshape.descriptors import analyze_annotation
from queryshape.expressions import Parameter
from queryshape.resolver import PropertyPath, is_assignable
from tests.fixtures.models import (
    Address,
    Category,
    Customer,
    CustomerSummary,
    CustomerToken,
    Order,
    OrderDto,
    OrderSummary,
    OrderWithEmail,
)


def path(root, *members):
    return PropertyPath(root, tuple(members))


class TestSelectProperty:
    """Tests for select_property()."""

    def test_exact_name(self, resolver):
        """An exact member name resolves to a one-member path."""
        found = resolver.select_property(Order, "number")
        assert found is not None
        assert found.name == "number"
        assert found.leaf.type is str

    def test_unknown_name(self, resolver):
        """An unknown name resolves to None."""
        assert resolver.select_property(Order, "total") is None

    def test_empty_name(self, resolver):
        """An empty name resolves to None."""
        assert resolver.select_property(Order, "") is None

    def test_dotted_path(self, resolver):
        """Dotted paths descend through nested models."""
        found = resolver.select_property(Order, "customer.address.city")
        assert found is not None
        assert [m.name for m in found.members] == ["customer", "address", "city"]
        assert found.any_nullable is True
        assert found.nullable is False

    def test_dotted_path_through_scalar_fails(self, resolver):
        """A dotted path cannot descend into a scalar member."""
        assert resolver.select_property(Order, "number.length") is None

    def test_dotted_path_through_collection_fails(self, resolver):
        """A dotted path cannot descend into a collection."""
        assert resolver.select_property(Order, "lines.product") is None

    def test_flattened_name(self, resolver):
        """``customer_name`` resolves to ``customer.name``."""
        found = resolver.select_property(Order, "customer_name")
        assert found is not None
        assert str(found) == "customer.name"

    def test_deep_flattened_name(self, resolver):
        """Flattening recurses through several nested models."""
        found = resolver.select_property(Order, "customer_address_city")
        assert found is not None
        assert found.name == "customer.address.city"

    def test_flattening_can_be_disabled(self):
        """With flatten=False only exact names and dotted paths resolve."""
        resolver = PropertyResolver(DescriptorRegistry(), flatten=False)
        assert resolver.select_property(Order, "customer_name") is None
        assert resolver.select_property(Order, "customer.name") is not None

    def test_self_referencing_type_terminates(self, resolver):
        """Flattening over a self-referencing type terminates."""
        assert resolver.select_property(Category, "parent_parent_missing") is None
        found = resolver.select_property(Category, "parent_name")
        assert found is not None
        assert found.name == "parent.name"

    def test_access_builds_member_chain(self, resolver):
        """PropertyPath.access() builds the member chain on a root expression."""
        found = resolver.select_property(Order, "customer.name")
        root = Parameter("entity", Order)
        assert str(found.access(root)) == "entity.customer.name"


class TestIsAssignable:
    """Tests for is_assignable()."""

    def test_same_type(self, descriptors):
        """Identical leaf types are assignable."""
        source = path(Order, analyze_annotation("id", int))
        assert is_assignable(source, analyze_annotation("id", int)) is True

    def test_different_type(self):
        """Different leaf types are not assignable."""
        source = path(Order, analyze_annotation("id", int))
        assert is_assignable(source, analyze_annotation("id", str)) is False

    def test_nullable_into_non_nullable(self):
        """A nullable source cannot be assigned to a non-nullable target."""
        source = path(Order, analyze_annotation("discount", int | None))
        assert is_assignable(source, analyze_annotation("discount", int)) is False
        assert is_assignable(source, analyze_annotation("discount", int | None)) is True

    def test_nullable_intermediate_hop(self):
        """Any nullable hop makes the whole path nullable."""
        source = path(
            Customer,
            analyze_annotation("address", Address | None),
            analyze_annotation("city", str),
        )
        assert is_assignable(source, analyze_annotation("city", str)) is False
        assert is_assignable(source, analyze_annotation("city", str | None)) is True

    def test_any_target_accepts_everything(self):
        """A target typed Any accepts any source."""
        source = path(Order, analyze_annotation("discount", int | None))
        assert is_assignable(source, analyze_annotation("discount", Any)) is True

    def test_subclass_is_assignable(self):
        """A subclass value is assignable to a base-typed target."""
        source = path(Order, analyze_annotation("flag", bool))
        assert is_assignable(source, analyze_annotation("flag", int)) is True

    def test_collections_need_matching_shape(self):
        """Collections must share container kind and element type."""
        source = path(Order, analyze_annotation("tags", list[str]))
        assert is_assignable(source, analyze_annotation("tags", list[str])) is True
        assert is_assignable(source, analyze_annotation("tags", set[str])) is False
        assert is_assignable(source, analyze_annotation("tags", list[int])) is False

    def test_sequence_target_accepts_any_container(self):
        """A Sequence target accepts any container of the element type."""
        from collections.abc import Sequence

        source = path(Order, analyze_annotation("tags", tuple[str, ...]))
        assert is_assignable(source, analyze_annotation("tags", Sequence[str])) is True

    def test_collection_and_single_value(self):
        """A collection is never assignable to a single value, or vice versa."""
        source = path(Order, analyze_annotation("tags", list[str]))
        assert is_assignable(source, analyze_annotation("tags", str)) is False
        single = path(Order, analyze_annotation("tag", str))
        assert is_assignable(single, analyze_annotation("tag", list[str])) is False


class TestMatchProperties:
    """Tests for match_properties()."""

    def test_all_matched(self, resolver):
        """Every OrderSummary member matches a path on Order."""
        matches = resolver.match_properties(Order, OrderSummary)
        assert matches is not None
        assert matches.all_matched
        assert [(m.target.name, str(m.source)) for m in matches] == [
            ("id", "id"),
            ("number", "number"),
            ("customer_name", "customer.name"),
        ]
        assert all(m.assignable for m in matches)

    def test_unmatched_member_reported(self, resolver):
        """Unmatched target members are listed."""
        matches = resolver.match_properties(Order, OrderWithEmail)
        assert matches is not None
        assert matches.all_matched is False
        assert matches.unmatched == ["email"]

    def test_conversion_required(self, resolver):
        """Mismatched but matched members require conversion."""
        matches = {m.target.name: m for m in resolver.match_properties(Order, OrderDto)}
        assert matches["id"].assignable
        assert matches["customer"].requires_conversion
        assert matches["status"].requires_conversion
        assert matches["lines"].requires_conversion
        assert matches["discount"].requires_conversion

    def test_nullable_flattened_path(self, resolver):
        """A nullable flattened path into a nullable target is assignable."""
        matches = {m.target.name: m for m in resolver.match_properties(Customer, CustomerSummary)}
        assert matches["address_city"].assignable

    def test_unconstructible_target(self, resolver):
        """A target that cannot be built from members has no match set."""
        assert resolver.match_properties(Customer, CustomerToken) is None

    def test_case_sensitive(self, resolver):
        """Name matching is case-sensitive."""

        class Upper(BaseModel):
            ID: int

        matches = resolver.match_properties(Customer, Upper)
        assert matches.unmatched == ["ID"]
