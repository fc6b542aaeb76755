"""
Projection (selector) generation.

Maps a source model onto a target model, bridging nullability, enum,
nested-object and collection differences through conversion strategies.
"""

from queryshape.selectors.converters import (
    ConversionStrategySet,
    EnumerableResolver,
    EnumResolver,
    MemberConverter,
    NullableResolver,
    Resolution,
    SelectorPropertyConverter,
    SelectorPropertyResolver,
    SelectResolution,
    SubSelectResolver,
)
from queryshape.selectors.factory import Selector, SelectorFactory
from queryshape.selectors.generator import SelectorExpressionGenerator

__all__ = [
    "ConversionStrategySet",
    "EnumerableResolver",
    "EnumResolver",
    "MemberConverter",
    "NullableResolver",
    "Resolution",
    "SelectorPropertyConverter",
    "SelectorPropertyResolver",
    "SelectResolution",
    "SubSelectResolver",
    "Selector",
    "SelectorFactory",
    "SelectorExpressionGenerator",
]
