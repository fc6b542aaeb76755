"""
Specifier lookup: registered specifiers first, declarative generation second.

Filters are never derived from structure alone. A (model, filter) pair
resolves only if a specifier was registered for it, the filter type is a
FilterModel, or per-pair options were configured. Anything else is a
configuration error raised at first use.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, Protocol, TypeVar, runtime_checkable

from queryshape.cache import RegistryMap
from queryshape.exceptions import SpecifierNotConfiguredError
from queryshape.filters.criterion import FilterModel, SpecifierOptions
from queryshape.filters.generator import SpecifierFunctionGenerator
from queryshape.observability import (
    ATTR_CACHE_HIT,
    ATTR_FILTER_TYPE,
    ATTR_SOURCE_TYPE,
    NullTracer,
    Tracer,
)
from queryshape.queryable import Queryable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@runtime_checkable
class Specifier(Protocol):
    """Composes the conditions of a filter object onto a queryable."""

    def specify(self, query: Queryable[Any], filter_value: Any) -> Queryable[Any]: ...


class FunctionSpecifier:
    """
    Adapts a plain function into a Specifier.

    Example:
        >>> def by_status(query, f):
        ...     return query.where(status_is(f.status))
        >>> shaper.add_specifier(Order, StatusFilter, by_status)
    """

    def __init__(self, function: Callable[[Queryable[Any], Any], Queryable[Any]]) -> None:
        self._function = function

    def specify(self, query: Queryable[Any], filter_value: Any) -> Queryable[Any]:
        return self._function(query, filter_value)

    def __repr__(self) -> str:
        return f"FunctionSpecifier({getattr(self._function, '__name__', self._function)!r})"


class SpecifierFactory:
    """
    Resolves specifiers for (model, filter) pairs.

    Args:
        generator: Declarative specifier generator
        specifiers: Shared specifier registry (created when omitted)
        tracer: Optional tracer
    """

    def __init__(
        self,
        generator: SpecifierFunctionGenerator,
        specifiers: RegistryMap[tuple[type, type], Specifier] | None = None,
        tracer: Tracer | None = None,
    ) -> None:
        self._generator = generator
        self._specifiers = specifiers if specifiers is not None else RegistryMap("specifier")
        self._options: dict[tuple[type, type], SpecifierOptions] = {}
        self._options_lock = threading.Lock()
        self._tracer = tracer or NullTracer()

    @property
    def specifiers(self) -> RegistryMap[tuple[type, type], Specifier]:
        return self._specifiers

    def add(
        self,
        model_type: type,
        filter_type: type,
        specifier: Specifier | Callable[[Queryable[Any], Any], Queryable[Any]],
    ) -> Specifier:
        """
        Register a hand-written specifier (an object or a function).

        Raises:
            DuplicateRegistrationError: If the pair already has a specifier
            RegistrationClosedError: If the registry is sealed
        """
        if not isinstance(specifier, Specifier):
            specifier = FunctionSpecifier(specifier)
        self._specifiers.add((model_type, filter_type), specifier)
        return specifier

    def configure(self, model_type: type, filter_type: type) -> SpecifierOptions:
        """
        Get the per-pair options used when generating the pair's specifier.

        Options must be configured before the pair is first used; a
        specifier already generated is not regenerated.
        """
        key = (model_type, filter_type)
        with self._options_lock:
            options = self._options.get(key)
            if options is None:
                options = SpecifierOptions(model_type, filter_type)
                self._options[key] = options
        if key in self._specifiers:
            logger.warning(
                "Options configured for %s/%s after its specifier was created",
                model_type.__name__,
                filter_type.__name__,
                extra={"model_type": model_type.__name__, "filter_type": filter_type.__name__},
            )
        return options

    def get_specifier(self, model_type: type, filter_type: type) -> Specifier:
        """
        Get the specifier for a (model, filter) pair.

        Raises:
            SpecifierNotConfiguredError: If nothing is registered and the
                filter is not declaratively configured, or generation failed
            InvalidCriterionError: If the declarative configuration is ill-formed
        """
        key = (model_type, filter_type)
        cached = self._specifiers.get(key)
        with self._tracer.span(
            "queryshape.specifier.get",
            {
                ATTR_SOURCE_TYPE: model_type.__name__,
                ATTR_FILTER_TYPE: filter_type.__name__,
                ATTR_CACHE_HIT: cached is not None,
            },
        ):
            if cached is not None:
                return cached

            options = self._options.get(key)
            declarative = isinstance(filter_type, type) and issubclass(filter_type, FilterModel)
            if not declarative and options is None:
                raise SpecifierNotConfiguredError(
                    model_type,
                    filter_type,
                    "register a specifier, subclass FilterModel or call configure_filter()",
                )

            specifier = self._specifiers.get_or_add(
                key, lambda: self._generator.generate(model_type, filter_type, options)
            )
            if specifier is None:
                raise SpecifierNotConfiguredError(
                    model_type,
                    filter_type,
                    "some filter fields do not match a member of the model",
                )
            return specifier

    def specify(self, query: Queryable[T], model_type: type, filter_value: Any) -> Queryable[T]:
        """Apply a filter object to a queryable."""
        specifier = self.get_specifier(model_type, type(filter_value))
        return specifier.specify(query, filter_value)


__all__ = ["Specifier", "FunctionSpecifier", "SpecifierFactory"]
