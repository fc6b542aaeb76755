"""
Registry maps shared by the selector, specifier and order-by components.

Each map holds two kinds of entries under the same key space:

- hand-written registrations (``add``), which are rejected when the key is
  already taken or the map has been sealed
- generated entries (``get_or_add``), produced by a generator on first
  request and published with insert-if-absent

Once written, an entry is never replaced or invalidated.

Thread-Safety:
    Lookups are plain dict reads. ``get_or_add`` runs the factory outside
    the lock, so two threads racing on the same key may both generate an
    entry; only the first one published is kept and both callers receive
    that entry.

Example:
    >>> selectors = RegistryMap[tuple[type, type], Selector]("selector")
    >>> selectors.add((Order, OrderDto), hand_written)
    >>> selectors.get_or_add((Order, OrderSummary), lambda: generate(Order, OrderSummary))
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Hashable, Iterator
from typing import Generic, TypeVar

from queryshape.exceptions import DuplicateRegistrationError, RegistrationClosedError

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class RegistryMap(Generic[K, V]):
    """
    Write-once map with registration and on-demand generation.

    Args:
        kind: Human-readable entry kind used in errors and logs
            (e.g. "selector", "specifier", "order by")
    """

    def __init__(self, kind: str) -> None:
        self._kind = kind
        self._entries: dict[K, V] = {}
        self._lock = threading.Lock()
        self._sealed = False

    @property
    def kind(self) -> str:
        return self._kind

    @property
    def sealed(self) -> bool:
        return self._sealed

    def get(self, key: K) -> V | None:
        """Get the entry for a key, or None."""
        return self._entries.get(key)

    def add(self, key: K, value: V) -> None:
        """
        Register a hand-written entry.

        Args:
            key: Registry key
            value: Entry to register

        Raises:
            RegistrationClosedError: If the map has been sealed
            DuplicateRegistrationError: If the key already has an entry
        """
        key_tuple = key if isinstance(key, tuple) else (key,)
        with self._lock:
            if self._sealed:
                raise RegistrationClosedError(self._kind)
            if key in self._entries:
                raise DuplicateRegistrationError(self._kind, key_tuple)
            self._entries[key] = value

        logger.debug(
            "Registered %s for %s",
            self._kind,
            key,
            extra={"kind": self._kind},
        )

    def get_or_add(self, key: K, factory: Callable[[], V | None]) -> V | None:
        """
        Get the entry for a key, generating and publishing it on first use.

        Args:
            key: Registry key
            factory: Produces the entry, or None when it cannot be produced

        Returns:
            The published entry, or None if the factory produced nothing.
            Nothing is cached when the factory returns None.
        """
        existing = self._entries.get(key)
        if existing is not None:
            return existing

        value = factory()
        if value is None:
            return None

        with self._lock:
            published = self._entries.setdefault(key, value)

        if published is value:
            logger.debug(
                "Cached generated %s for %s",
                self._kind,
                key,
                extra={"kind": self._kind},
            )
        return published

    def seal(self) -> None:
        """Reject further hand-written registrations. Generation continues."""
        with self._lock:
            self._sealed = True

    def keys(self) -> list[K]:
        return list(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[K]:
        return iter(list(self._entries))


__all__ = ["RegistryMap"]
