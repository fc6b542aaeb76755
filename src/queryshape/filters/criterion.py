"""
Declarative filter criteria.

A filter object is a plain record of optional values ("orders with status
X placed after date Y"). Declaring the filter as a FilterModel opts it in to
specifier generation; each field becomes one predicate on the queried
model. A field's predicate is configured with Criterion metadata:

    >>> class OrderFilter(FilterModel):
    ...     status: OrderStatus | None = None
    ...     customer: Annotated[str | None, Criterion(target="customer.name")] = None
    ...     min_total: Annotated[float | None, Criterion("gte", target="total")] = None
    ...     id: list[int] | None = None
    ...     internal_note: Annotated[str | None, Criterion(ignore=True)] = None
"""

from __future__ import annotations

import typing
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from queryshape.descriptors import MemberDescriptor, zero_value


class CriterionOperator(str, Enum):
    """
    Comparison applied between a model member and a filter value.

    AUTO picks LIKE for strings, IN for collections and EQUAL otherwise.
    LIKE is a substring match.
    """

    AUTO = "auto"
    EQUAL = "eq"
    GREATER_THAN = "gt"
    GREATER_THAN_OR_EQUAL = "gte"
    LESS_THAN = "lt"
    LESS_THAN_OR_EQUAL = "lte"
    IN = "in"
    LIKE = "like"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"


@dataclass(frozen=True)
class Criterion:
    """
    Per-field filter configuration.

    Attributes:
        operator: Comparison operator (a CriterionOperator or its value)
        negate: Negate the comparison (``eq`` becomes ``ne``)
        target: Dotted or flattened member path on the model; defaults to
            the filter field's own name
        ignore: Never generate a predicate for this field
        ignore_if_empty: Skip the predicate when the filter value is empty

    Example:
        >>> Criterion("starts_with", target="customer.name")
        >>> Criterion(CriterionOperator.EQUAL, negate=True)
    """

    operator: CriterionOperator | str = CriterionOperator.AUTO
    negate: bool = False
    target: str | None = None
    ignore: bool = False
    ignore_if_empty: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.operator, CriterionOperator):
            try:
                object.__setattr__(self, "operator", CriterionOperator(self.operator))
            except ValueError:
                available = ", ".join(op.value for op in CriterionOperator)
                raise ValueError(
                    f"Unknown criterion operator '{self.operator}'. Available: {available}"
                ) from None

    def resolve_operator(self, field: MemberDescriptor) -> CriterionOperator:
        """The effective operator for a filter field (AUTO discovered from its type)."""
        operator = CriterionOperator(self.operator)
        if operator is not CriterionOperator.AUTO:
            return operator
        if field.is_collection:
            return CriterionOperator.IN
        if isinstance(field.type, type) and issubclass(field.type, str) and not issubclass(
            field.type, Enum
        ):
            return CriterionOperator.LIKE
        return CriterionOperator.EQUAL


def criterion_field(default: Any = None, **criterion: Any) -> Any:
    """
    A pydantic Field carrying Criterion metadata.

    Example:
        >>> class OrderFilter(FilterModel):
        ...     placed_after: date | None = criterion_field(None, operator="gte", target="placed_on")
    """
    return Field(default, json_schema_extra={"criterion": Criterion(**criterion)})


class FilterModel(BaseModel):
    """
    Base class for filters that opt in to specifier generation.

    Example:
        >>> class CustomerFilter(FilterModel):
        ...     name: str | None = None
        ...     active: bool | None = None
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


def field_criteria(filter_type: type) -> dict[str, Criterion]:
    """
    Criterion metadata declared on a filter type, by field name.

    Reads ``Annotated[..., Criterion(...)]`` metadata from pydantic models,
    dataclasses and annotated classes, and ``criterion_field`` metadata from
    pydantic fields. Fields without metadata are absent.
    """
    criteria: dict[str, Criterion] = {}
    if isinstance(filter_type, type) and issubclass(filter_type, BaseModel):
        for name, info in filter_type.model_fields.items():
            for item in info.metadata:
                if isinstance(item, Criterion):
                    criteria[name] = item
            extra = info.json_schema_extra
            if isinstance(extra, dict) and isinstance(extra.get("criterion"), Criterion):
                criteria[name] = extra["criterion"]  # type: ignore[assignment]
        return criteria

    hints = typing.get_type_hints(filter_type, include_extras=True)
    for name, annotation in hints.items():
        if typing.get_origin(annotation) is typing.Annotated:
            for item in annotation.__metadata__:
                if isinstance(item, Criterion):
                    criteria[name] = item
    return criteria


def is_empty(value: Any, field: MemberDescriptor) -> bool:
    """
    Whether a filter value counts as "not supplied".

    None, blank strings and empty collections are always empty. Other
    nullable fields are empty only when None. Non-nullable fields are also
    empty at non-positive numbers, the minimum datetime or date, and their
    type's zero value.
    """
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if field.is_collection or isinstance(value, (list, tuple, set, frozenset)):
        return len(value) == 0
    if field.nullable:
        return False
    if isinstance(value, bool):
        return value is False
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, Enum):
        return value <= 0
    if isinstance(value, datetime):
        return value.replace(tzinfo=None) == datetime.min
    if isinstance(value, date):
        return value == date.min
    return bool(value == zero_value(type(value)))


@dataclass
class FieldOptions:
    """Fluent per-field configuration collected by SpecifierOptions."""

    name: str
    criterion: Criterion | None = None
    predicate_factory: typing.Callable[[Any], Any] | None = None
    _overrides: dict[str, Any] = field(default_factory=dict)

    def operator(self, operator: CriterionOperator | str) -> FieldOptions:
        self._overrides["operator"] = operator
        return self

    def target(self, path: str) -> FieldOptions:
        self._overrides["target"] = path
        return self

    def negate(self, negate: bool = True) -> FieldOptions:
        self._overrides["negate"] = negate
        return self

    def ignore(self, ignore: bool = True) -> FieldOptions:
        self._overrides["ignore"] = ignore
        return self

    def ignore_if_empty(self, ignore_if_empty: bool = True) -> FieldOptions:
        self._overrides["ignore_if_empty"] = ignore_if_empty
        return self

    def predicate(self, factory: typing.Callable[[Any], Any]) -> FieldOptions:
        """
        Build this field's predicate with a function of the filter value.

        The factory receives the filter value and must return a
        ``queryshape.expressions.Lambda`` over the model.
        """
        self.predicate_factory = factory
        return self

    def merged(self, declared: Criterion | None) -> Criterion | None:
        """The declared criterion with this field's overrides applied."""
        if not self._overrides and self.criterion is None:
            return declared
        base = self.criterion or declared or Criterion()
        values = {
            "operator": base.operator,
            "negate": base.negate,
            "target": base.target,
            "ignore": base.ignore,
            "ignore_if_empty": base.ignore_if_empty,
        }
        values.update(self._overrides)
        return Criterion(**values)


class SpecifierOptions:
    """
    Per (model, filter) configuration for specifier generation.

    Example:
        >>> options = shaper.configure_filter(Order, OrderFilter)
        >>> options.for_field("customer").target("customer.name").operator("starts_with")
        >>> options.for_field("overdue").predicate(
        ...     lambda value: Lambda(p, Compare("lt", Member(p, "due"), Constant(today)))
        ... )
    """

    def __init__(self, model_type: type, filter_type: type) -> None:
        self.model_type = model_type
        self.filter_type = filter_type
        self._fields: dict[str, FieldOptions] = {}

    def for_field(self, name: str, criterion: Criterion | None = None) -> FieldOptions:
        """Get (or start) the configuration of one filter field."""
        options = self._fields.get(name)
        if options is None:
            options = FieldOptions(name)
            self._fields[name] = options
        if criterion is not None:
            options.criterion = criterion
        return options

    def get(self, name: str) -> FieldOptions | None:
        return self._fields.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._fields

    def __len__(self) -> int:
        return len(self._fields)


__all__ = [
    "CriterionOperator",
    "Criterion",
    "FieldOptions",
    "FilterModel",
    "SpecifierOptions",
    "criterion_field",
    "field_criteria",
    "is_empty",
]
