"""
Configuration for the query-shaping engine.

This module provides:
- ShapingConfig: Settings passed to QueryShaper
- EnumConversionPolicy: Type alias for the enum bridging policy
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, get_args

# How enum members are bridged between two distinct enum types.
# "structural": same underlying value type and same member count
# "names": structural, and the member names must also be identical
# "disabled": never bridge distinct enum types
EnumConversionPolicy = Literal["structural", "names", "disabled"]


@dataclass(frozen=True)
class ShapingConfig:
    """
    Configuration for a QueryShaper.

    Attributes:
        enum_conversion: Policy for bridging distinct enum types
        flatten_paths: Resolve ``customer_name`` to ``customer.name`` when the
            source has no member of that exact name
        default_order_by: Sort key used when paging without explicit sortings
        id_member: Identity member used by ``select_by_id``/``filter_by_id``
        items_per_page: Default page size for search criteria
        use_count: Whether searches count the total matching rows by default
        enable_tracing: Create OpenTelemetry spans when available

    Example:
        >>> config = ShapingConfig(enum_conversion="names", items_per_page=25)
        >>> shaper = QueryShaper(config)
    """

    # Projection
    enum_conversion: EnumConversionPolicy = "structural"
    flatten_paths: bool = True

    # Ordering
    default_order_by: str = "id"
    id_member: str = "id"

    # Paging
    items_per_page: int = 10
    use_count: bool = True

    # Observability
    enable_tracing: bool = True

    def __post_init__(self) -> None:
        """Validate configuration values."""
        policies = get_args(EnumConversionPolicy)
        if self.enum_conversion not in policies:
            raise ValueError(
                f"enum_conversion must be one of {list(policies)}, "
                f"got {self.enum_conversion!r}."
            )

        if not self.default_order_by or not self.default_order_by.strip():
            raise ValueError(
                "default_order_by must be a non-empty member name. "
                "Use 'id' (default) or the name of the identity member."
            )

        if not self.id_member or not self.id_member.strip():
            raise ValueError("id_member must be a non-empty member name.")

        if self.items_per_page < 0:
            raise ValueError(
                f"items_per_page must be >= 0, got {self.items_per_page}. "
                "Use 0 to disable paging or a value like 10 (default)."
            )


__all__ = [
    "EnumConversionPolicy",
    "ShapingConfig",
]
