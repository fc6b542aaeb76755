"""
Projection generator.

Synthesizes a ``source => Target(...)`` lambda for a pair of model types.
Generation is all-or-nothing: if any target member has no source match, or
a mismatched match has no strategy that can bridge it, no projection is
produced at all.
"""

from __future__ import annotations

import logging

from queryshape.descriptors import DescriptorRegistry
from queryshape.expressions import Lambda, Parameter
from queryshape.resolver import PropertyResolver
from queryshape.selectors.converters import (
    ConversionStrategySet,
    MemberConverter,
    Resolution,
    SelectResolution,
)

logger = logging.getLogger(__name__)

_IDENTITY = MemberConverter()


def _name(tp: object) -> str:
    return getattr(tp, "__name__", str(tp))


class SelectorExpressionGenerator:
    """
    Generates projection expressions between two model types.

    Args:
        resolver: Property resolver used to match members
        strategies: Conversion strategies, defaults to ConversionStrategySet.default()

    Example:
        >>> generator = SelectorExpressionGenerator(PropertyResolver(DescriptorRegistry()))
        >>> projection = generator.generate(Order, OrderDto)
        >>> str(projection)
        'entity => OrderDto(id=entity.id, total=entity.total)'
    """

    def __init__(
        self,
        resolver: PropertyResolver,
        strategies: ConversionStrategySet | None = None,
    ) -> None:
        self._resolver = resolver
        self._strategies = strategies or ConversionStrategySet.default()

    @property
    def strategies(self) -> ConversionStrategySet:
        return self._strategies

    @property
    def descriptors(self) -> DescriptorRegistry:
        return self._resolver.descriptors

    def generate(self, source_type: type, target_type: type) -> Lambda | None:
        """
        Generate the projection lambda for a type pair.

        Args:
            source_type: Source (entity) type
            target_type: Target (DTO) type

        Returns:
            The projection lambda, or None when the pair cannot be resolved
        """
        resolution = self.get_resolutions(source_type, target_type)
        if resolution is None:
            logger.debug(
                "No projection from %s to %s",
                _name(source_type),
                _name(target_type),
                extra={"source_type": _name(source_type), "target_type": _name(target_type)},
            )
            return None

        parameter = Parameter("entity", source_type)
        return Lambda(parameter, resolution.construct_expression(parameter))

    def get_resolutions(self, source_type: type, target_type: type) -> Resolution | None:
        """
        Resolve every target member of a type pair.

        Each call is one resolution pass with its own cycle guard.
        """
        return _ResolutionPass(self).get_resolutions(source_type, target_type)

    def _resolve(
        self, source_type: type, target_type: type, resolver: _ResolutionPass
    ) -> Resolution | None:
        descriptors = self._resolver.descriptors
        if not descriptors.is_model(source_type) or not descriptors.is_model(target_type):
            return None

        match_set = self._resolver.match_properties(source_type, target_type)
        if match_set is None:
            return None
        if not match_set.all_matched:
            logger.debug(
                "Unmatched member(s) %s on %s from %s",
                ", ".join(match_set.unmatched),
                _name(target_type),
                _name(source_type),
                extra={"source_type": _name(source_type), "target_type": _name(target_type)},
            )
            return None

        resolutions: list[SelectResolution] = []
        for match in match_set:
            if match.assignable:
                resolutions.append(SelectResolution(match, _IDENTITY))
                continue
            found = self._strategies.find(match, resolver)
            if found is None:
                logger.debug(
                    "No conversion for %s.%s from %s",
                    _name(target_type),
                    match.target.name,
                    match.source,
                    extra={"source_type": _name(source_type), "target_type": _name(target_type)},
                )
                return None
            strategy, converter = found
            logger.debug(
                "Member %s.%s converted by %s strategy",
                _name(target_type),
                match.target.name,
                strategy.name,
            )
            resolutions.append(SelectResolution(match, converter))

        assert match_set.target.construct is not None
        return Resolution(source_type, target_type, tuple(resolutions), match_set.target.construct)


class _ResolutionPass:
    """One resolution pass; tracks the (source, target) pairs being resolved."""

    def __init__(self, generator: SelectorExpressionGenerator) -> None:
        self._generator = generator
        self._active: set[tuple[type, type]] = set()

    def get_resolutions(self, source_type: type, target_type: type) -> Resolution | None:
        key = (source_type, target_type)
        if key in self._active:
            logger.debug(
                "Cycle detected resolving %s to %s",
                _name(source_type),
                _name(target_type),
            )
            return None

        self._active.add(key)
        try:
            return self._generator._resolve(source_type, target_type, self)
        finally:
            self._active.discard(key)


__all__ = ["SelectorExpressionGenerator"]
