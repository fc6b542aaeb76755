"""
Structural property resolver.

Matches the members of a target model to members (or member paths) of a
source model by name and classifies every match as directly assignable or
requiring conversion.

Name resolution, in order:
    1. exact member name (case-sensitive)
    2. dotted path (``"customer.name"``), when asked for one explicitly
    3. structural flattening: ``customer_name`` descends into the
       model-typed member ``customer`` and resolves ``name`` there, trying
       the longest prefix first

Example:
    >>> resolver = PropertyResolver(DescriptorRegistry())
    >>> matches = resolver.match_properties(Order, OrderSummary)
    >>> [(m.target.name, str(m.source)) for m in matches]
    [('id', 'id'), ('customer_name', 'customer.name')]
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from queryshape.descriptors import (
    ContainerKind,
    DescriptorRegistry,
    MemberDescriptor,
    TypeDescriptor,
    is_class,
)
from queryshape.expressions import Expression, Member

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PropertyPath:
    """
    Member chain from a root type to a leaf member.

    Attributes:
        root_type: Type the path starts from
        members: Members traversed, root first
    """

    root_type: type
    members: tuple[MemberDescriptor, ...]

    @property
    def leaf(self) -> MemberDescriptor:
        return self.members[-1]

    @property
    def name(self) -> str:
        return ".".join(member.name for member in self.members)

    @property
    def nullable(self) -> bool:
        """True if the leaf itself is declared nullable."""
        return self.leaf.nullable

    @property
    def any_nullable(self) -> bool:
        """True if any hop of the path may be None."""
        return any(member.nullable for member in self.members)

    def access(self, root: Expression) -> Expression:
        """Build the member access chain for this path on ``root``."""
        node = root
        for member in self.members:
            node = Member(node, member.name, member.annotation)
        return node

    def __str__(self) -> str:
        return self.name


def is_assignable(source: PropertyPath, target: MemberDescriptor) -> bool:
    """
    Whether the source path's value can be assigned to ``target`` unchanged.

    Requires an identical leaf type (or a subclass), identical container
    shape and element type, and that the target accepts None whenever any
    hop of the source path may be None. Targets annotated ``Any`` accept
    everything.
    """
    if target.type is Any:
        return True

    leaf = source.leaf
    if source.any_nullable and not target.nullable:
        return False

    if target.container is not ContainerKind.NONE or leaf.container is not ContainerKind.NONE:
        if leaf.container is ContainerKind.NONE or target.container is ContainerKind.NONE:
            return False
        sequence_target = target.container is ContainerKind.SEQUENCE
        if not sequence_target and leaf.container is not target.container:
            return False
        if target.element_type is Any:
            return True
        return _same_or_subclass(leaf.element_type, target.element_type)

    return _same_or_subclass(leaf.type, target.type)


def _same_or_subclass(source: Any, target: Any) -> bool:
    if source == target:
        return True
    if is_class(source) and is_class(target):
        return issubclass(source, target)
    return False


@dataclass(frozen=True)
class PropertyMatch:
    """
    A target member and the source path resolved for it.

    Attributes:
        target: The target member being populated
        source: Resolved source path, or None when nothing matched
    """

    target: MemberDescriptor
    source: PropertyPath | None

    @property
    def matched(self) -> bool:
        return self.source is not None

    @property
    def assignable(self) -> bool:
        return self.source is not None and is_assignable(self.source, self.target)

    @property
    def requires_conversion(self) -> bool:
        return self.source is not None and not is_assignable(self.source, self.target)


@dataclass(frozen=True)
class MatchSet:
    """All property matches for a (source, target) type pair."""

    source_type: type
    target_type: type
    target: TypeDescriptor
    matches: tuple[PropertyMatch, ...]

    @property
    def all_matched(self) -> bool:
        return all(match.matched for match in self.matches)

    @property
    def unmatched(self) -> list[str]:
        return [match.target.name for match in self.matches if not match.matched]

    def __iter__(self) -> Iterator[PropertyMatch]:
        return iter(self.matches)

    def __len__(self) -> int:
        return len(self.matches)


class PropertyResolver:
    """
    Resolves target members against source members by name.

    Args:
        descriptors: Shared descriptor registry
        flatten: Enable structural flattening of underscore names

    Example:
        >>> resolver = PropertyResolver(descriptors)
        >>> str(resolver.select_property(Order, "customer_name"))
        'customer.name'
    """

    def __init__(self, descriptors: DescriptorRegistry, flatten: bool = True) -> None:
        self._descriptors = descriptors
        self._flatten = flatten

    @property
    def descriptors(self) -> DescriptorRegistry:
        return self._descriptors

    def match_properties(self, source_type: type, target_type: type) -> MatchSet | None:
        """
        Match every public member of the target to a source path.

        Args:
            source_type: Source model type
            target_type: Target model type

        Returns:
            The match set, or None when the target type cannot be
            constructed from member values
        """
        target = self._descriptors.describe(target_type)
        if target.construct is None:
            logger.debug(
                "Target type %s cannot be constructed from member values",
                getattr(target_type, "__name__", target_type),
                extra={"target_type": getattr(target_type, "__name__", str(target_type))},
            )
            return None

        matches = tuple(
            PropertyMatch(member, self.select_property(source_type, member.name))
            for member in target.members
        )
        return MatchSet(source_type, target_type, target, matches)

    def select_property(self, root_type: type, name: str) -> PropertyPath | None:
        """
        Resolve a member name or path on a root type.

        Args:
            root_type: Type to resolve against
            name: Member name, dotted path, or flattened underscore name

        Returns:
            The resolved path, or None when nothing matches
        """
        if not name:
            return None
        if "." in name:
            members = self._select_dotted(root_type, name.split("."))
        else:
            members = self._select(root_type, name, frozenset())
        if members is None:
            return None
        return PropertyPath(root_type, members)

    def _select_dotted(
        self, root_type: type, names: list[str]
    ) -> tuple[MemberDescriptor, ...] | None:
        members: list[MemberDescriptor] = []
        current: Any = root_type
        for index, name in enumerate(names):
            member = self._descriptors.describe(current).member(name)
            if member is None:
                return None
            members.append(member)
            if index < len(names) - 1:
                if member.is_collection or not self._descriptors.is_model(member.type):
                    return None
                current = member.type
        return tuple(members)

    def _select(
        self, root_type: type, name: str, seen: frozenset[type]
    ) -> tuple[MemberDescriptor, ...] | None:
        descriptor = self._descriptors.describe(root_type)
        member = descriptor.member(name)
        if member is not None:
            return (member,)
        if not self._flatten or root_type in seen:
            return None

        parts = name.split("_")
        for split in range(len(parts) - 1, 0, -1):
            head = "_".join(parts[:split])
            tail = "_".join(parts[split:])
            if not head or not tail:
                continue
            head_member = descriptor.member(head)
            if head_member is None or head_member.is_collection:
                continue
            if not self._descriptors.is_model(head_member.type):
                continue
            rest = self._select(head_member.type, tail, seen | {root_type})
            if rest is not None:
                return (head_member, *rest)
        return None


__all__ = [
    "PropertyPath",
    "PropertyMatch",
    "MatchSet",
    "PropertyResolver",
    "is_assignable",
]
