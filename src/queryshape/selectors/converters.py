"""
Conversion strategies for projection generation.

When a target member matches a source path but the values are not directly
assignable, the generator asks an ordered set of strategies whether they
can bridge the difference. The first strategy that returns a converter
wins; a strategy that cannot help returns None and never raises.

Default priority:
    1. nullable: ``Optional[T]`` source into a non-optional ``T`` target
    2. enum: positional cast between two structurally compatible enums
    3. nested: recursive projection of a nested model
    4. enumerable: per-element projection of a collection of models

Example:
    >>> strategies = ConversionStrategySet.default()
    >>> strategies.names
    ('nullable', 'enum', 'nested', 'enumerable')
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from queryshape.config import EnumConversionPolicy
from queryshape.descriptors import ConstructMode, ContainerKind, is_class, zero_value
from queryshape.expressions import (
    Binding,
    Conditional,
    Constant,
    Construct,
    Convert,
    DefaultValue,
    Expression,
    HasValue,
    Lambda,
    MapEach,
    Parameter,
)
from queryshape.resolver import PropertyMatch

logger = logging.getLogger(__name__)

#: Numeric widenings accepted by the nullable strategy (source -> targets).
NUMERIC_WIDENING: dict[type, tuple[type, ...]] = {
    int: (float, Decimal),
    float: (Decimal,),
}


@runtime_checkable
class SelectorPropertyConverter(Protocol):
    """Produces the value expression for one target member."""

    def expression(self, match: PropertyMatch, parameter: Expression) -> Expression:
        """
        Build the value expression.

        Args:
            match: The resolved property match
            parameter: Root expression the source path is read from

        Returns:
            Expression producing the target member's value
        """
        ...


class SelectResolver(Protocol):
    """Recursive resolution entry point handed to strategies."""

    def get_resolutions(self, source_type: type, target_type: type) -> Resolution | None: ...


@runtime_checkable
class SelectorPropertyResolver(Protocol):
    """A conversion strategy."""

    name: str

    def can_convert(
        self, match: PropertyMatch, resolver: SelectResolver
    ) -> SelectorPropertyConverter | None:
        """Return a converter for the match, or None if this strategy does not apply."""
        ...


@dataclass(frozen=True)
class SelectResolution:
    """A property match paired with the converter producing its value."""

    match: PropertyMatch
    converter: SelectorPropertyConverter

    def binding(self, parameter: Expression) -> Binding:
        return Binding(self.match.target.name, self.converter.expression(self.match, parameter))


@dataclass(frozen=True)
class Resolution:
    """
    Complete resolution of a (source, target) pair.

    Attributes:
        source_type: Source model type
        target_type: Target model type
        resolutions: One resolution per target member, in declaration order
        construct: How the target is built
    """

    source_type: type
    target_type: type
    resolutions: tuple[SelectResolution, ...]
    construct: ConstructMode

    def construct_expression(self, parameter: Expression) -> Construct:
        """Build the target construction expression rooted at ``parameter``."""
        return Construct(
            self.target_type,
            tuple(resolution.binding(parameter) for resolution in self.resolutions),
            self.construct,
        )


class MemberConverter:
    """Identity: read the source path as is."""

    def expression(self, match: PropertyMatch, parameter: Expression) -> Expression:
        assert match.source is not None
        return match.source.access(parameter)


class NullableConverter:
    """``value if value is not None else default(T)``, with optional widening."""

    def __init__(self, widen_to: type | None = None) -> None:
        self._widen_to = widen_to

    def expression(self, match: PropertyMatch, parameter: Expression) -> Expression:
        assert match.source is not None
        access = match.source.access(parameter)
        value: Expression = access
        if self._widen_to is not None:
            value = Convert(access, self._widen_to)
        return Conditional(HasValue(access), value, DefaultValue(match.target.type))


class NullableResolver:
    """Strategy for nullable sources feeding non-nullable targets."""

    name = "nullable"

    def can_convert(
        self, match: PropertyMatch, resolver: SelectResolver
    ) -> SelectorPropertyConverter | None:
        source = match.source
        target = match.target
        if source is None or not source.any_nullable or target.nullable:
            return None
        if source.leaf.is_collection or target.is_collection:
            return None
        # without a zero value the missing case would build an invalid target
        if zero_value(target.type) is None:
            return None
        if source.leaf.type == target.type:
            return NullableConverter()
        if target.type in NUMERIC_WIDENING.get(source.leaf.type, ()):
            return NullableConverter(widen_to=target.type)
        return None


class EnumConverter:
    """Cast a source enum member into the target enum member at the same position."""

    def expression(self, match: PropertyMatch, parameter: Expression) -> Expression:
        assert match.source is not None
        return Convert(match.source.access(parameter), match.target.type)


def enum_value_type(enum_type: type[Enum]) -> type | None:
    """
    The underlying value type of an enum.

    Returns None for empty enums and enums mixing value types.
    """
    value_types = {type(member.value) for member in enum_type}
    if len(value_types) != 1:
        return None
    return value_types.pop()


class EnumResolver:
    """
    Strategy bridging two distinct enum types.

    Members are matched by declaration position, so enums whose values
    differ still convert.

    Args:
        policy: "structural" requires the same underlying value type and the
            same number of members; "names" also requires identical member
            names; "disabled" never converts
    """

    name = "enum"

    def __init__(self, policy: EnumConversionPolicy = "structural") -> None:
        self._policy = policy

    @property
    def policy(self) -> EnumConversionPolicy:
        return self._policy

    def can_convert(
        self, match: PropertyMatch, resolver: SelectResolver
    ) -> SelectorPropertyConverter | None:
        if self._policy == "disabled" or match.source is None:
            return None
        source = match.source.leaf.type
        target = match.target.type
        if not (_is_enum(source) and _is_enum(target)) or source is target:
            return None
        if match.source.any_nullable and not match.target.nullable:
            return None
        value_type = enum_value_type(source)
        if value_type is None or value_type is not enum_value_type(target):
            return None
        if len(source) != len(target):
            return None
        if self._policy == "names" and [m.name for m in source] != [m.name for m in target]:
            return None
        return EnumConverter()


def _is_enum(tp: Any) -> bool:
    return is_class(tp) and issubclass(tp, Enum)


class SubSelectConverter:
    """Construct the nested target from the nested source."""

    def __init__(self, resolution: Resolution, nullable: bool) -> None:
        self._resolution = resolution
        self._nullable = nullable

    def expression(self, match: PropertyMatch, parameter: Expression) -> Expression:
        assert match.source is not None
        access = match.source.access(parameter)
        construct = self._resolution.construct_expression(access)
        if not self._nullable:
            return construct
        return Conditional(HasValue(access), construct, Constant(None))


class SubSelectResolver:
    """Strategy for nested model members (``order.customer -> dto.customer``)."""

    name = "nested"

    def can_convert(
        self, match: PropertyMatch, resolver: SelectResolver
    ) -> SelectorPropertyConverter | None:
        source = match.source
        target = match.target
        if source is None or source.leaf.is_collection or target.is_collection:
            return None
        if not is_class(source.leaf.type) or not is_class(target.type):
            return None
        if source.any_nullable and not target.nullable:
            return None
        resolution = resolver.get_resolutions(source.leaf.type, target.type)
        if resolution is None:
            return None
        return SubSelectConverter(resolution, nullable=source.any_nullable)


class EnumerableConverter:
    """Map every element of the source collection into the target container."""

    def __init__(self, element_resolution: Resolution | None, element_type: Any) -> None:
        self._element_resolution = element_resolution
        self._element_type = element_type

    def expression(self, match: PropertyMatch, parameter: Expression) -> Expression:
        assert match.source is not None
        item = Parameter("item", self._element_type)
        body: Expression = item
        if self._element_resolution is not None:
            body = self._element_resolution.construct_expression(item)
        container = match.target.container
        if container is ContainerKind.SEQUENCE:
            container = ContainerKind.LIST
        return MapEach(
            match.source.access(parameter),
            Lambda(item, body),
            container,
            nullable=match.target.nullable,
        )


class EnumerableResolver:
    """
    Strategy for collections.

    Collections of models are projected element by element. Collections of
    identical scalar elements in a different container shape are copied
    into the target container.
    """

    name = "enumerable"

    def can_convert(
        self, match: PropertyMatch, resolver: SelectResolver
    ) -> SelectorPropertyConverter | None:
        source = match.source
        target = match.target
        if source is None or not source.leaf.is_collection or not target.is_collection:
            return None
        source_element = source.leaf.element_type
        target_element = target.element_type
        if source_element == target_element:
            return EnumerableConverter(None, source_element)
        if not is_class(source_element) or not is_class(target_element):
            return None
        resolution = resolver.get_resolutions(source_element, target_element)
        if resolution is None:
            return None
        return EnumerableConverter(resolution, source_element)


class ConversionStrategySet:
    """
    Ordered collection of conversion strategies.

    Args:
        strategies: Strategies in priority order

    Raises:
        ValueError: If two strategies share a name

    Example:
        >>> strategies = ConversionStrategySet.default(enum_policy="names")
        >>> custom = strategies.with_strategy(MoneyResolver(), before="nested")
    """

    DEFAULT_ORDER: tuple[str, ...] = ("nullable", "enum", "nested", "enumerable")

    def __init__(self, strategies: Iterable[SelectorPropertyResolver]) -> None:
        self._strategies = tuple(strategies)
        names = [strategy.name for strategy in self._strategies]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate conversion strategy name(s): {', '.join(duplicates)}")

    @classmethod
    def default(cls, enum_policy: EnumConversionPolicy = "structural") -> ConversionStrategySet:
        """The default strategy set in its documented priority order."""
        return cls(
            [
                NullableResolver(),
                EnumResolver(enum_policy),
                SubSelectResolver(),
                EnumerableResolver(),
            ]
        )

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(strategy.name for strategy in self._strategies)

    def with_strategy(
        self, strategy: SelectorPropertyResolver, before: str | None = None
    ) -> ConversionStrategySet:
        """
        Return a new set with an extra strategy.

        Args:
            strategy: Strategy to add
            before: Name of the strategy to insert in front of; appended when None

        Raises:
            KeyError: If ``before`` names no strategy in the set
        """
        strategies = list(self._strategies)
        if before is None:
            strategies.append(strategy)
        else:
            if before not in self.names:
                raise KeyError(
                    f"Unknown conversion strategy '{before}'. Available: {', '.join(self.names)}"
                )
            strategies.insert(self.names.index(before), strategy)
        return ConversionStrategySet(strategies)

    def find(
        self, match: PropertyMatch, resolver: SelectResolver
    ) -> tuple[SelectorPropertyResolver, SelectorPropertyConverter] | None:
        """First strategy (and its converter) accepting the match, or None."""
        for strategy in self._strategies:
            converter = strategy.can_convert(match, resolver)
            if converter is not None:
                return strategy, converter
        return None

    def __iter__(self) -> Iterator[SelectorPropertyResolver]:
        return iter(self._strategies)

    def __len__(self) -> int:
        return len(self._strategies)


__all__ = [
    "NUMERIC_WIDENING",
    "SelectorPropertyConverter",
    "SelectorPropertyResolver",
    "SelectResolver",
    "SelectResolution",
    "Resolution",
    "MemberConverter",
    "NullableConverter",
    "NullableResolver",
    "EnumConverter",
    "EnumResolver",
    "SubSelectConverter",
    "SubSelectResolver",
    "EnumerableConverter",
    "EnumerableResolver",
    "ConversionStrategySet",
    "enum_value_type",
]
