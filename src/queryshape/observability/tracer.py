"""
Tracers injected into the shaping components.

Factories, generators and pipelines never talk to OpenTelemetry directly;
they receive a ``Tracer`` and open spans through it. ``ShapingConfig``
decides which implementation the ``QueryShaper`` hands out.

Example:
    >>> from queryshape.observability import create_tracer
    >>>
    >>> tracer = create_tracer(__name__, enable_tracing=True)
    >>> with tracer.span("queryshape.selector.generate", {"queryshape.source.type": "Order"}):
    ...     pass
"""

from __future__ import annotations

import contextlib
from collections.abc import Generator
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from opentelemetry.trace import Span

from queryshape.observability.tracing import should_trace


@runtime_checkable
class Tracer(Protocol):
    """
    Anything that can open a named span with attributes.

    ``enabled`` lets callers skip computing attributes nobody will record.
    """

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]:
        """
        Open a span around a shaping operation.

        Args:
            name: Span name, ``queryshape.<component>.<operation>``
            attributes: Attributes keyed by the constants in
                ``queryshape.observability.attributes``

        Returns:
            Context manager yielding the span, or None when not recording
        """
        ...

    @property
    def enabled(self) -> bool:
        """Whether spans are recorded."""
        ...


class NullTracer:
    """Tracer used when tracing is off or OpenTelemetry is missing."""

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[None, None, None]:
        yield None

    @property
    def enabled(self) -> bool:
        return False


class OpenTelemetryTracer:
    """
    Opens spans on an OpenTelemetry tracer named after the calling module.

    Args:
        tracer_name: Instrumentation name, usually the module's ``__name__``

    Raises:
        ImportError: If the ``telemetry`` extra is not installed
    """

    def __init__(self, tracer_name: str) -> None:
        from opentelemetry import trace

        self._tracer = trace.get_tracer(tracer_name)

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]:
        return self._tracer.start_as_current_span(name, attributes=attributes or {})

    @property
    def enabled(self) -> bool:
        return True


class MockTracer:
    """
    Keeps every span it is asked to open, for assertions in tests.

    Example:
        >>> tracer = MockTracer()
        >>> with tracer.span("queryshape.orderby.get", {"queryshape.sort.key": "name"}):
        ...     pass
        >>> tracer.span_names
        ['queryshape.orderby.get']
    """

    def __init__(self) -> None:
        self.spans: list[tuple[str, dict[str, Any] | None]] = []

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[None, None, None]:
        self.spans.append((name, attributes))
        yield None

    @property
    def enabled(self) -> bool:
        return True

    @property
    def span_names(self) -> list[str]:
        """Names of the recorded spans, in opening order."""
        return [name for name, _ in self.spans]

    def clear(self) -> None:
        self.spans.clear()


def create_tracer(
    name: str,
    enable_tracing: bool = True,
) -> Tracer:
    """
    Pick the tracer implementation for a component.

    Args:
        name: Instrumentation name (typically __name__)
        enable_tracing: The component's tracing flag

    Returns:
        OpenTelemetryTracer when tracing is on and OpenTelemetry is
        importable, NullTracer otherwise
    """
    if should_trace(enable_tracing):
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
]
