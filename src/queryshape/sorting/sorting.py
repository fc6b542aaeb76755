"""
Sorting requests.

A Sorting names a sort key and a direction. Sortings arrive from callers
as text (``"name"``, ``"name desc"``, ``"name-asc"``) or JSON
(``{"orderBy": "name", "direction": "desc"}``).
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SortDirection(str, Enum):
    """Sort direction."""

    ASCENDING = "asc"
    DESCENDING = "desc"


_DIRECTION_ALIASES: dict[str, SortDirection] = {
    "asc": SortDirection.ASCENDING,
    "ascending": SortDirection.ASCENDING,
    "desc": SortDirection.DESCENDING,
    "descending": SortDirection.DESCENDING,
}

_SUFFIXES: tuple[tuple[str, SortDirection], ...] = (
    (" asc", SortDirection.ASCENDING),
    ("-asc", SortDirection.ASCENDING),
    (" desc", SortDirection.DESCENDING),
    ("-desc", SortDirection.DESCENDING),
)


class Sorting(BaseModel):
    """
    A requested ordering.

    Attributes:
        order_by: Sort key (member name or path of the queried model);
            serialized as ``orderBy``
        direction: Ascending (default) or descending

    Example:
        >>> Sorting.parse("name desc")
        Sorting(order_by='name', direction=<SortDirection.DESCENDING: 'desc'>)
        >>> Sorting.parse('{"orderBy": "total", "direction": "desc"}').order_by
        'total'
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    order_by: str = Field(alias="orderBy", min_length=1)
    direction: SortDirection = SortDirection.ASCENDING

    @field_validator("direction", mode="before")
    @classmethod
    def _parse_direction(cls, value: Any) -> Any:
        if isinstance(value, str):
            direction = _DIRECTION_ALIASES.get(value.strip().lower())
            if direction is None:
                raise ValueError(
                    f"Unknown sort direction '{value}'. Use 'asc' or 'desc'."
                )
            return direction
        if isinstance(value, int) and not isinstance(value, bool):
            # 0 = ascending, 1 = descending
            return SortDirection.DESCENDING if value else SortDirection.ASCENDING
        return value

    @property
    def descending(self) -> bool:
        return self.direction is SortDirection.DESCENDING

    @classmethod
    def asc(cls, order_by: str) -> Sorting:
        return cls(order_by=order_by)

    @classmethod
    def desc(cls, order_by: str) -> Sorting:
        return cls(order_by=order_by, direction=SortDirection.DESCENDING)

    @classmethod
    def parse(cls, text: str | None) -> Sorting | None:
        """
        Parse a sorting from text, returning None when it is not one.

        Accepted forms: ``"key"``, ``"key asc"``, ``"key desc"``,
        ``"key-asc"``, ``"key-desc"`` (suffix case-insensitive) and a JSON
        object with ``orderBy`` and optional ``direction``.
        """
        if text is None or not text.strip():
            return None
        text = text.strip()

        if text.startswith("{"):
            try:
                return cls.model_validate_json(text)
            except ValueError:
                return None

        lowered = text.lower()
        for suffix, direction in _SUFFIXES:
            if lowered.endswith(suffix):
                key = text[: -len(suffix)].strip()
                return cls(order_by=key, direction=direction) if key else None
        return cls(order_by=text)

    def __str__(self) -> str:
        return f"{self.order_by} {self.direction.value}"


__all__ = ["SortDirection", "Sorting"]
