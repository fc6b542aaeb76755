"""
Queryable sequences: the boundary between the engine and a store.

The engine never executes queries itself. It composes predicate, key
selector and projection expressions onto a Queryable, and the Queryable's
implementation decides how to run them: in memory (InMemoryQueryable) or
as a database query (``queryshape.stores.sqlalchemy``).

Queryables are immutable; every composition method returns a new one.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar, runtime_checkable

from queryshape.exceptions import QueryShapeError
from queryshape.expressions import Lambda, compile_lambda

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)


@runtime_checkable
class Queryable(Protocol[T_co]):
    """
    Protocol for lazily composed query sequences.

    Composition methods (``where``, ``order_by``, ``then_by``, ``select``,
    ``skip``, ``take``) return new queryables; ``to_list``, ``count`` and
    ``first`` execute.
    """

    @property
    def element_type(self) -> Any:
        """Type of the elements produced by this queryable."""
        ...

    @property
    def is_ordered(self) -> bool:
        """True once an ordering has been applied."""
        ...

    def where(self, predicate: Lambda) -> Queryable[T_co]: ...

    def order_by(self, key_selector: Lambda, descending: bool = False) -> Queryable[T_co]: ...

    def then_by(self, key_selector: Lambda, descending: bool = False) -> Queryable[T_co]: ...

    def select(self, selector: Lambda) -> Queryable[Any]: ...

    def skip(self, count: int) -> Queryable[T_co]: ...

    def take(self, count: int) -> Queryable[T_co]: ...

    def to_list(self) -> list[T_co]: ...

    def count(self) -> int: ...

    def first(self) -> T_co | None: ...


@dataclass(frozen=True)
class _Step:
    kind: str
    function: Callable[[Any], Any] | None = None
    keys: tuple[tuple[Callable[[Any], Any], bool], ...] = ()
    amount: int = 0


def _sort_key(value: Any) -> tuple[bool, Any]:
    # None sorts before every value
    return (value is not None, value)


class InMemoryQueryable(Generic[T]):
    """
    Queryable over an in-process sequence.

    Expressions are compiled into Python callables and applied when the
    queryable executes. Multi-key orderings are stable.

    Args:
        items: Source elements
        element_type: Type of the source elements

    Example:
        >>> query = InMemoryQueryable(orders, Order)
        >>> query.where(predicate).order_by(key).take(10).to_list()
    """

    def __init__(
        self,
        items: Iterable[T],
        element_type: Any = Any,
        _steps: tuple[_Step, ...] = (),
    ) -> None:
        self._items: Sequence[T] = items if isinstance(items, (list, tuple)) else list(items)
        self._element_type = element_type
        self._steps = _steps

    @property
    def element_type(self) -> Any:
        return self._element_type

    @property
    def is_ordered(self) -> bool:
        return any(step.kind == "order" for step in self._steps)

    def _with(self, step: _Step, element_type: Any | None = None) -> InMemoryQueryable[Any]:
        return InMemoryQueryable(
            self._items,
            self._element_type if element_type is None else element_type,
            (*self._steps, step),
        )

    def where(self, predicate: Lambda) -> InMemoryQueryable[T]:
        return self._with(_Step("where", compile_lambda(predicate)))

    def order_by(self, key_selector: Lambda, descending: bool = False) -> InMemoryQueryable[T]:
        return self._with(_Step("order", keys=((compile_lambda(key_selector), descending),)))

    def then_by(self, key_selector: Lambda, descending: bool = False) -> InMemoryQueryable[T]:
        if not self._steps or self._steps[-1].kind != "order":
            raise QueryShapeError("then_by() must directly follow order_by() or then_by()")
        last = self._steps[-1]
        step = _Step("order", keys=(*last.keys, (compile_lambda(key_selector), descending)))
        return InMemoryQueryable(self._items, self._element_type, (*self._steps[:-1], step))

    def select(self, selector: Lambda) -> InMemoryQueryable[Any]:
        return self._with(_Step("select", compile_lambda(selector)), selector.type)

    def skip(self, count: int) -> InMemoryQueryable[T]:
        return self._with(_Step("skip", amount=max(count, 0)))

    def take(self, count: int) -> InMemoryQueryable[T]:
        return self._with(_Step("take", amount=max(count, 0)))

    def to_list(self) -> list[T]:
        results: list[Any] = list(self._items)
        for step in self._steps:
            if step.kind == "where":
                assert step.function is not None
                results = [item for item in results if step.function(item)]
            elif step.kind == "order":
                # stable sorts applied from the last key to the first
                for key, descending in reversed(step.keys):
                    results.sort(key=lambda item, key=key: _sort_key(key(item)), reverse=descending)
            elif step.kind == "select":
                assert step.function is not None
                results = [step.function(item) for item in results]
            elif step.kind == "skip":
                results = results[step.amount :]
            elif step.kind == "take":
                results = results[: step.amount]
        return results

    def count(self) -> int:
        return len(self.to_list())

    def first(self) -> T | None:
        results = self.take(1).to_list()
        return results[0] if results else None

    def __iter__(self) -> Any:
        return iter(self.to_list())


__all__ = ["Queryable", "InMemoryQueryable"]
