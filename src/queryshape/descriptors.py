"""
Type descriptors for source and target models.

The query-shaping engine never reflects over model classes ad hoc. Each
model type is described once into a TypeDescriptor (member names, declared
annotations, leaf types, nullability, container kinds, and how the type is
constructed) and every later stage consults that table.

Supported model kinds:
    - pydantic models (``model_fields``)
    - dataclasses (``dataclasses.fields`` + resolved type hints)
    - SQLAlchemy declarative classes (mapper columns and relationships)
    - plain annotated classes (resolved type hints across the MRO)

Example:
    >>> registry = DescriptorRegistry()
    >>> descriptor = registry.describe(OrderSummary)
    >>> descriptor.member("total").nullable
    False
"""

from __future__ import annotations

import collections.abc
import dataclasses
import inspect
import logging
import threading
import types
import typing
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Union, get_args, get_origin
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Mapped, Mapper

logger = logging.getLogger(__name__)

#: Leaf types that are values, never models to descend into.
SCALAR_TYPES: tuple[type, ...] = (
    str,
    int,
    float,
    bool,
    bytes,
    Decimal,
    datetime,
    date,
    time,
    timedelta,
    UUID,
)


class ContainerKind(Enum):
    """Collection shape of a member."""

    NONE = "none"
    LIST = "list"
    TUPLE = "tuple"
    SET = "set"
    FROZENSET = "frozenset"
    SEQUENCE = "sequence"


class ConstructMode(Enum):
    """
    How instances of a target type are built from member values.

    Values:
        KWARGS: ``Type(**values)`` (pydantic, dataclasses, mapped classes)
        SETATTR: ``Type()`` followed by attribute assignment
    """

    KWARGS = "kwargs"
    SETATTR = "setattr"


_CONTAINER_ORIGINS: dict[Any, ContainerKind] = {
    list: ContainerKind.LIST,
    tuple: ContainerKind.TUPLE,
    set: ContainerKind.SET,
    frozenset: ContainerKind.FROZENSET,
    collections.abc.Sequence: ContainerKind.SEQUENCE,
    collections.abc.MutableSequence: ContainerKind.SEQUENCE,
    collections.abc.Iterable: ContainerKind.SEQUENCE,
    collections.abc.Collection: ContainerKind.SEQUENCE,
    collections.abc.Set: ContainerKind.SET,
    collections.abc.MutableSet: ContainerKind.SET,
}


@dataclass(frozen=True)
class MemberDescriptor:
    """
    One public member of a model type.

    Attributes:
        name: Attribute name
        annotation: The declared annotation, as written
        type: Declared type with Optional and ``Mapped[...]`` removed
        nullable: Whether the member accepts None
        container: Collection shape (NONE for single values)
        element_type: Element type for collections, None otherwise
    """

    name: str
    annotation: Any
    type: Any
    nullable: bool = False
    container: ContainerKind = ContainerKind.NONE
    element_type: Any = None

    @property
    def is_collection(self) -> bool:
        return self.container is not ContainerKind.NONE


@dataclass(frozen=True)
class TypeDescriptor:
    """
    Precomputed description of a model type.

    Attributes:
        model_type: The described class
        members: Public members in declaration order
        construct: How to build an instance, or None when the type cannot be
            built from its member values
    """

    model_type: type
    members: tuple[MemberDescriptor, ...]
    construct: ConstructMode | None

    def member(self, name: str) -> MemberDescriptor | None:
        for member in self.members:
            if member.name == name:
                return member
        return None

    @property
    def names(self) -> list[str]:
        return [member.name for member in self.members]

    @property
    def is_model(self) -> bool:
        return bool(self.members)


def _strip_annotation(annotation: Any) -> Any:
    """Remove ``Annotated`` and ``Mapped`` wrappers."""
    while True:
        origin = get_origin(annotation)
        if origin is typing.Annotated:
            annotation = get_args(annotation)[0]
        elif origin is Mapped:
            annotation = get_args(annotation)[0]
        else:
            return annotation


def analyze_annotation(name: str, annotation: Any) -> MemberDescriptor:
    """
    Build a MemberDescriptor from a resolved annotation.

    Args:
        name: Member name
        annotation: Resolved type annotation

    Returns:
        Descriptor with nullability and container shape split out

    Example:
        >>> analyze_annotation("items", list[OrderLine] | None)
        MemberDescriptor(name='items', ..., nullable=True, container=<ContainerKind.LIST: 'list'>, ...)
    """
    declared = annotation
    annotation = _strip_annotation(annotation)
    nullable = False

    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = [arg for arg in get_args(annotation) if arg is not type(None)]
        nullable = len(args) != len(get_args(annotation))
        if len(args) == 1:
            annotation = _strip_annotation(args[0])
            origin = get_origin(annotation)
    elif annotation is None or annotation is type(None):
        return MemberDescriptor(name, declared, Any, nullable=True)

    container = _CONTAINER_ORIGINS.get(origin) or _CONTAINER_ORIGINS.get(annotation)
    if container is None:
        return MemberDescriptor(name, declared, annotation, nullable=nullable)

    args = get_args(annotation)
    element: Any = Any
    if container is ContainerKind.TUPLE:
        # only homogeneous tuples are collections: tuple[T, ...]
        if len(args) == 2 and args[1] is Ellipsis:
            element = args[0]
        elif args:
            return MemberDescriptor(name, declared, annotation, nullable=nullable)
    elif args:
        element = args[0]

    return MemberDescriptor(
        name,
        declared,
        annotation,
        nullable=nullable,
        container=container,
        element_type=_strip_annotation(element),
    )


#: Zero values of scalar types that cannot be built by calling the type.
ZERO_VALUES: dict[type, Any] = {
    datetime: datetime.min,
    date: date.min,
    time: time(),
    timedelta: timedelta(),
    UUID: UUID(int=0),
}


def is_class(tp: Any) -> bool:
    """True for concrete classes; ``typing.Any`` is a class on 3.11+ but not a model."""
    return tp is not Any and isinstance(tp, type)


def is_scalar_type(tp: Any) -> bool:
    """True for value types and enums; these are never descended into."""
    if not is_class(tp):
        return False
    return issubclass(tp, SCALAR_TYPES) or issubclass(tp, Enum)


def zero_value(tp: Any, container: ContainerKind = ContainerKind.NONE) -> Any:
    """
    The "default" value of a type, used when a nullable source has no value.

    Numbers give zero, strings and bytes give empty values, booleans give
    False, enums give their first member, dates and times give their
    minimum, UUIDs give the nil UUID, collections give an empty collection
    of the declared shape. Everything else gives None.
    """
    if container is not ContainerKind.NONE:
        return materialize(container, ())
    if not is_class(tp):
        return None
    if issubclass(tp, Enum):
        return next(iter(tp), None)
    for value_type, value in ZERO_VALUES.items():
        if issubclass(tp, value_type):
            return value
    if tp in (int, float, bool, str, bytes, Decimal) or issubclass(tp, (int, float, str)):
        try:
            return tp()
        except TypeError:
            return None
    return None


def materialize(container: ContainerKind, items: collections.abc.Iterable[Any]) -> Any:
    """Build a concrete collection of the given shape."""
    if container is ContainerKind.TUPLE:
        return tuple(items)
    if container is ContainerKind.SET:
        return set(items)
    if container is ContainerKind.FROZENSET:
        return frozenset(items)
    return list(items)


class DescriptorRegistry:
    """
    Cache of TypeDescriptors, one per model type.

    Descriptors are built on first request and never rebuilt; models are
    assumed static for the registry's lifetime.

    Thread-Safety:
        Lookups read a plain dict. Concurrent first requests for the same
        type may both build a descriptor; the first one published wins.

    Example:
        >>> registry = DescriptorRegistry()
        >>> registry.describe(Customer).names
        ['id', 'name', 'address']
    """

    def __init__(self) -> None:
        self._descriptors: dict[Any, TypeDescriptor] = {}
        self._lock = threading.Lock()

    def describe(self, model_type: Any) -> TypeDescriptor:
        """
        Get the descriptor for a type, building it on first use.

        Args:
            model_type: Any type; scalars and enums yield a member-less descriptor

        Returns:
            The cached TypeDescriptor
        """
        descriptor = self._descriptors.get(model_type)
        if descriptor is not None:
            return descriptor

        descriptor = self._build(model_type)
        with self._lock:
            descriptor = self._descriptors.setdefault(model_type, descriptor)
        logger.debug(
            "Described type %s with %d member(s)",
            getattr(model_type, "__name__", model_type),
            len(descriptor.members),
            extra={"model_type": getattr(model_type, "__name__", str(model_type))},
        )
        return descriptor

    def is_model(self, tp: Any) -> bool:
        """True if ``tp`` is a class with public members to match against."""
        if not is_class(tp) or is_scalar_type(tp):
            return False
        return self.describe(tp).is_model

    def __contains__(self, model_type: Any) -> bool:
        return model_type in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)

    def _build(self, model_type: Any) -> TypeDescriptor:
        if not is_class(model_type) or is_scalar_type(model_type):
            return TypeDescriptor(model_type, (), None)
        if issubclass(model_type, BaseModel):
            return self._describe_pydantic(model_type)
        if dataclasses.is_dataclass(model_type):
            return self._describe_dataclass(model_type)
        mapper = sa_inspect(model_type, raiseerr=False)
        if isinstance(mapper, Mapper):
            return self._describe_mapped(model_type, mapper)
        return self._describe_plain(model_type)

    def _describe_pydantic(self, model_type: type[BaseModel]) -> TypeDescriptor:
        members = tuple(
            analyze_annotation(name, field.annotation)
            for name, field in model_type.model_fields.items()
            if not name.startswith("_")
        )
        return TypeDescriptor(model_type, members, ConstructMode.KWARGS)

    def _describe_dataclass(self, model_type: type) -> TypeDescriptor:
        hints = typing.get_type_hints(model_type)
        members = tuple(
            analyze_annotation(field.name, hints.get(field.name, Any))
            for field in dataclasses.fields(model_type)
            if field.init and not field.name.startswith("_")
        )
        return TypeDescriptor(model_type, members, ConstructMode.KWARGS)

    def _describe_mapped(self, model_type: type, mapper: Mapper[Any]) -> TypeDescriptor:
        members: list[MemberDescriptor] = []
        for column_attr in mapper.column_attrs:
            if column_attr.key.startswith("_"):
                continue
            column = column_attr.columns[0]
            try:
                python_type = column.type.python_type
            except NotImplementedError:
                python_type = Any
            enum_class = getattr(column.type, "enum_class", None)
            if enum_class is not None:
                python_type = enum_class
            members.append(
                MemberDescriptor(
                    column_attr.key,
                    python_type,
                    python_type,
                    nullable=bool(column.nullable),
                )
            )
        for relationship in mapper.relationships:
            related = relationship.mapper.class_
            if relationship.uselist:
                collection = relationship.collection_class
                container = ContainerKind.SET if collection in (set,) else ContainerKind.LIST
                members.append(
                    MemberDescriptor(
                        relationship.key,
                        list[related],  # type: ignore[valid-type]
                        list[related],  # type: ignore[valid-type]
                        container=container,
                        element_type=related,
                    )
                )
            else:
                local = list(relationship.local_columns)
                nullable = not local or any(column.nullable for column in local)
                members.append(
                    MemberDescriptor(relationship.key, related, related, nullable=nullable)
                )
        return TypeDescriptor(model_type, tuple(members), ConstructMode.KWARGS)

    def _describe_plain(self, model_type: type) -> TypeDescriptor:
        try:
            hints = typing.get_type_hints(model_type)
        except (NameError, TypeError) as exc:
            logger.warning(
                "Could not resolve annotations of %s: %s",
                model_type.__name__,
                exc,
                extra={"model_type": model_type.__name__},
            )
            hints = {}

        members = tuple(
            analyze_annotation(name, annotation)
            for name, annotation in hints.items()
            if not name.startswith("_")
            and annotation is not ClassVar
            and get_origin(annotation) is not ClassVar
        )
        return TypeDescriptor(model_type, members, self._construct_mode(model_type, members))

    @staticmethod
    def _construct_mode(
        model_type: type, members: tuple[MemberDescriptor, ...]
    ) -> ConstructMode | None:
        try:
            signature = inspect.signature(model_type)
        except (TypeError, ValueError):
            return None

        names = {member.name for member in members}
        accepts_any_keyword = False
        keywords: set[str] = set()
        required: set[str] = set()
        for parameter in signature.parameters.values():
            if parameter.kind is inspect.Parameter.VAR_KEYWORD:
                accepts_any_keyword = True
            elif parameter.kind is inspect.Parameter.VAR_POSITIONAL:
                continue
            elif parameter.kind is inspect.Parameter.POSITIONAL_ONLY:
                if parameter.default is inspect.Parameter.empty:
                    return None
            else:
                keywords.add(parameter.name)
                if parameter.default is inspect.Parameter.empty:
                    required.add(parameter.name)

        explicit_init = model_type.__init__ is not object.__init__
        if explicit_init and required <= names and (accepts_any_keyword or names <= keywords):
            return ConstructMode.KWARGS
        if not required:
            return ConstructMode.SETATTR
        return None


__all__ = [
    "SCALAR_TYPES",
    "ZERO_VALUES",
    "ContainerKind",
    "ConstructMode",
    "MemberDescriptor",
    "TypeDescriptor",
    "DescriptorRegistry",
    "analyze_annotation",
    "is_class",
    "is_scalar_type",
    "materialize",
    "zero_value",
]
