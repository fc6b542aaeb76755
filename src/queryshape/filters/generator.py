"""
Specifier generation from declarative filter criteria.

For each filter field the generator finds the model member it constrains
(explicit target path, then same-name or flattened match with a type
compatibility check), and prepares a predicate template. Applying the
generated specifier binds the filter's current values into those
templates and composes one ``where`` per non-empty field.

If any non-ignored field cannot be bound to a model member the whole
generation fails and no specifier is produced.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from queryshape.descriptors import DescriptorRegistry, MemberDescriptor, is_class
from queryshape.exceptions import InvalidCriterionError
from queryshape.expressions import (
    Compare,
    Constant,
    Expression,
    Lambda,
    Membership,
    Not,
    Parameter,
    StringMatch,
)
from queryshape.filters.criterion import (
    Criterion,
    CriterionOperator,
    SpecifierOptions,
    field_criteria,
    is_empty,
)
from queryshape.queryable import Queryable
from queryshape.resolver import PropertyPath, PropertyResolver

logger = logging.getLogger(__name__)

T = TypeVar("T")

PredicateFactory = Callable[[Any], Lambda]

_COMPARISONS: dict[CriterionOperator, str] = {
    CriterionOperator.EQUAL: "eq",
    CriterionOperator.GREATER_THAN: "gt",
    CriterionOperator.GREATER_THAN_OR_EQUAL: "gte",
    CriterionOperator.LESS_THAN: "lt",
    CriterionOperator.LESS_THAN_OR_EQUAL: "lte",
}

_STRING_METHODS: dict[CriterionOperator, str] = {
    CriterionOperator.LIKE: "contains",
    CriterionOperator.CONTAINS: "contains",
    CriterionOperator.STARTS_WITH: "starts_with",
    CriterionOperator.ENDS_WITH: "ends_with",
}


@dataclass(frozen=True)
class CriterionResolution:
    """
    A filter field bound to the model member it constrains.

    Attributes:
        field: The filter field
        criterion: Effective criterion (declared metadata plus options)
        operator: Effective operator, AUTO already discovered
        target: Model member path, None when a predicate factory is used
        predicate_factory: Hand-written predicate builder, if configured
    """

    field: MemberDescriptor
    criterion: Criterion
    operator: CriterionOperator
    target: PropertyPath | None = None
    predicate_factory: PredicateFactory | None = None


class GeneratedSpecifier:
    """
    Specifier produced from filter criteria.

    Args:
        model_type: Queried model type
        filter_type: Filter type
        resolutions: One resolution per active filter field
    """

    def __init__(
        self,
        model_type: type,
        filter_type: type,
        resolutions: tuple[CriterionResolution, ...],
    ) -> None:
        self.model_type = model_type
        self.filter_type = filter_type
        self.resolutions = resolutions
        self._parameter = Parameter("entity", model_type)

    def predicates(self, filter_value: Any) -> list[Lambda]:
        """
        The predicates a filter object produces, in field order.

        Fields whose value is empty (and configured to be skipped when
        empty) produce no predicate.
        """
        predicates: list[Lambda] = []
        for resolution in self.resolutions:
            value = getattr(filter_value, resolution.field.name, None)
            if resolution.criterion.ignore_if_empty and is_empty(value, resolution.field):
                continue
            predicates.append(self._predicate(resolution, value))
        return predicates

    def specify(self, query: Queryable[T], filter_value: Any) -> Queryable[T]:
        """Compose the filter's predicates onto a queryable."""
        for predicate in self.predicates(filter_value):
            query = query.where(predicate)
        return query

    def _predicate(self, resolution: CriterionResolution, value: Any) -> Lambda:
        if resolution.predicate_factory is not None:
            predicate = resolution.predicate_factory(value)
            if not isinstance(predicate, Lambda):
                raise InvalidCriterionError(
                    self.filter_type,
                    resolution.field.name,
                    f"predicate factory returned {type(predicate).__name__}, expected Lambda",
                )
            return predicate

        assert resolution.target is not None
        access = resolution.target.access(self._parameter)
        body = operator_expression(
            resolution.operator, access, Constant(value), resolution.criterion.negate
        )
        return Lambda(self._parameter, body)

    def __repr__(self) -> str:
        fields = ", ".join(r.field.name for r in self.resolutions)
        return (
            f"GeneratedSpecifier({self.model_type.__name__}, "
            f"{self.filter_type.__name__}: {fields})"
        )


def operator_expression(
    operator: CriterionOperator, member: Expression, value: Constant, negate: bool
) -> Expression:
    """
    Build the comparison of a model member against a filter value.

    Negated equality becomes ``!=``; every other negated comparison is
    wrapped in ``not``.
    """
    body: Expression
    if operator is CriterionOperator.EQUAL:
        return Compare("ne" if negate else "eq", member, value)
    if operator in _COMPARISONS:
        body = Compare(_COMPARISONS[operator], member, value)  # type: ignore[arg-type]
    elif operator in _STRING_METHODS:
        body = StringMatch(_STRING_METHODS[operator], member, value)  # type: ignore[arg-type]
    elif operator is CriterionOperator.IN:
        body = Membership(value, member)
    else:
        raise ValueError(f"Operator {operator.value} has no comparison")
    return Not(body) if negate else body


class SpecifierFunctionGenerator:
    """
    Generates specifiers for filter types.

    Args:
        resolver: Property resolver for model paths
    """

    def __init__(self, resolver: PropertyResolver) -> None:
        self._resolver = resolver

    @property
    def descriptors(self) -> DescriptorRegistry:
        return self._resolver.descriptors

    def generate(
        self,
        model_type: type,
        filter_type: type,
        options: SpecifierOptions | None = None,
    ) -> GeneratedSpecifier | None:
        """
        Generate a specifier for a (model, filter) pair.

        Args:
            model_type: Queried model type
            filter_type: Filter type
            options: Per-pair field configuration

        Returns:
            The specifier, or None when some field has no model member

        Raises:
            InvalidCriterionError: If a criterion is ill-formed (``in`` on a
                non-collection field)
        """
        declared = field_criteria(filter_type)
        fields = self.descriptors.describe(filter_type).members
        resolutions: list[CriterionResolution] = []

        for field in fields:
            criterion = declared.get(field.name)
            factory: PredicateFactory | None = None
            if options is not None and (field_options := options.get(field.name)) is not None:
                criterion = field_options.merged(criterion)
                factory = field_options.predicate_factory
            criterion = criterion or Criterion()

            if criterion.ignore:
                continue

            operator = criterion.resolve_operator(field)
            if factory is not None:
                resolutions.append(CriterionResolution(field, criterion, operator, None, factory))
                continue

            target = self._target(model_type, field, criterion)
            if target is None:
                logger.debug(
                    "Filter field %s.%s has no member on %s",
                    filter_type.__name__,
                    field.name,
                    model_type.__name__,
                    extra={"model_type": model_type.__name__, "filter_type": filter_type.__name__},
                )
                return None

            if operator is CriterionOperator.IN and not field.is_collection:
                raise InvalidCriterionError(
                    filter_type,
                    field.name,
                    "the 'in' operator requires a collection-typed filter field",
                )
            resolutions.append(CriterionResolution(field, criterion, operator, target))

        return GeneratedSpecifier(model_type, filter_type, tuple(resolutions))

    def _target(
        self, model_type: type, field: MemberDescriptor, criterion: Criterion
    ) -> PropertyPath | None:
        if criterion.target:
            return self._resolver.select_property(model_type, criterion.target)
        path = self._resolver.select_property(model_type, field.name)
        if path is None or not compatible(field, path.leaf):
            return None
        return path


def compatible(field: MemberDescriptor, member: MemberDescriptor) -> bool:
    """
    Whether a filter field can constrain a model member of the same name.

    Nullability on either side is ignored; a collection-of-T field is
    compatible with a T member.
    """
    if member.is_collection:
        return False
    if field.is_collection:
        return _same_type(field.element_type, member.type)
    return _same_type(field.type, member.type)


def _same_type(left: Any, right: Any) -> bool:
    if left == right or left is Any or right is Any:
        return True
    return is_class(left) and is_class(right) and issubclass(left, right)


__all__ = [
    "CriterionResolution",
    "GeneratedSpecifier",
    "PredicateFactory",
    "SpecifierFunctionGenerator",
    "compatible",
    "operator_expression",
]
