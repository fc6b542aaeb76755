"""Library exceptions for the queryshape package."""

from __future__ import annotations

from typing import Any


def _type_name(tp: Any) -> str:
    return getattr(tp, "__name__", repr(tp))


class QueryShapeError(Exception):
    """Base exception for queryshape library."""

    pass


class SelectorNotFoundError(QueryShapeError):
    """
    Raised when a projection is requested for a type pair that has no
    registered selector and cannot be generated.

    Attributes:
        source_type: The source (entity) type
        target_type: The target (DTO) type
    """

    def __init__(self, source_type: type, target_type: type) -> None:
        self.source_type = source_type
        self.target_type = target_type
        super().__init__(
            f"No selector found for {_type_name(source_type)} to {_type_name(target_type)}. "
            f"Register one with add_selector() or make every member of "
            f"{_type_name(target_type)} resolvable from {_type_name(source_type)}."
        )


class SpecifierNotConfiguredError(QueryShapeError):
    """
    Raised when a filter is applied for a (model, filter) pair that has no
    registered specifier and no declarative configuration to generate one.

    Attributes:
        model_type: The queried model type
        filter_type: The filter object type
        reason: Optional detail about why generation failed
    """

    def __init__(self, model_type: type, filter_type: type, reason: str | None = None) -> None:
        self.model_type = model_type
        self.filter_type = filter_type
        self.reason = reason
        detail = f" ({reason})" if reason else ""
        super().__init__(
            f"No specifier configured for model {_type_name(model_type)} "
            f"and filter {_type_name(filter_type)}{detail}."
        )


class OrderByNotSupportedError(QueryShapeError, ValueError):
    """
    Raised when a sort key cannot be resolved to a member of the model.

    Attributes:
        order_by: The requested sort key
        model_type: The model type being ordered
    """

    def __init__(self, order_by: str, model_type: type) -> None:
        self.order_by = order_by
        self.model_type = model_type
        super().__init__(
            f"The order by '{order_by}' is not supported for the type '{_type_name(model_type)}'."
        )


class DuplicateRegistrationError(QueryShapeError, ValueError):
    """
    Raised when a second entry is registered for a key that already has one.

    Attributes:
        kind: What was being registered (selector, specifier, order by)
        key: The registry key
    """

    def __init__(self, kind: str, key: tuple[Any, ...]) -> None:
        self.kind = kind
        self.key = key
        rendered = ", ".join(k if isinstance(k, str) else _type_name(k) for k in key)
        super().__init__(f"A {kind} for ({rendered}) is already registered.")


class RegistrationClosedError(QueryShapeError):
    """Raised when registering into a registry that has been sealed."""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        super().__init__(
            f"The {kind} registry is sealed; register hand-written entries "
            f"before the first query is shaped."
        )


class InvalidCriterionError(QueryShapeError):
    """
    Raised when a filter criterion is ill-formed.

    Attributes:
        filter_type: The filter type declaring the criterion
        field_name: The filter field
    """

    def __init__(self, filter_type: type, field_name: str, message: str) -> None:
        self.filter_type = filter_type
        self.field_name = field_name
        super().__init__(
            f"Invalid criterion for {_type_name(filter_type)}.{field_name}: {message}"
        )


class UnsupportedExpressionError(QueryShapeError):
    """Raised when a store driver cannot translate an expression node."""

    def __init__(self, node: Any, driver: str) -> None:
        self.node = node
        self.driver = driver
        super().__init__(f"{driver} cannot translate expression {node}")
