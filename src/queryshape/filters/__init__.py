"""
Filter specifiers.

Turns filter objects into predicates composed onto a queryable, from
hand-registered specifiers or declarative per-field criteria.
"""

from queryshape.filters.criterion import (
    Criterion,
    CriterionOperator,
    FieldOptions,
    FilterModel,
    SpecifierOptions,
    criterion_field,
    is_empty,
)
from queryshape.filters.factory import FunctionSpecifier, Specifier, SpecifierFactory
from queryshape.filters.generator import (
    CriterionResolution,
    GeneratedSpecifier,
    SpecifierFunctionGenerator,
)

__all__ = [
    "Criterion",
    "CriterionOperator",
    "FieldOptions",
    "FilterModel",
    "SpecifierOptions",
    "criterion_field",
    "is_empty",
    "FunctionSpecifier",
    "Specifier",
    "SpecifierFactory",
    "CriterionResolution",
    "GeneratedSpecifier",
    "SpecifierFunctionGenerator",
]
