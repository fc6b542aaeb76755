"""
Expression graph for projections, predicates and key selectors.

Everything the engine generates is an immutable tree of expression nodes
rather than an opaque Python function. A store driver can walk the tree
and translate it into a native query (see ``queryshape.stores``), while
in-memory sequences compile it into a plain callable.

Nodes are frozen dataclasses, so two graphs generated for the same type
pair compare equal.

Example:
    >>> entity = Parameter("entity", Order)
    >>> key = Lambda(entity, Member(entity, "total", float))
    >>> str(key)
    'entity => entity.total'
    >>> compile_lambda(key)(Order(total=9.5))
    9.5
"""

from __future__ import annotations

import operator
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Literal

from queryshape.descriptors import ConstructMode, ContainerKind, materialize, zero_value

CompareOperator = Literal["eq", "ne", "gt", "gte", "lt", "lte"]
StringMethod = Literal["contains", "starts_with", "ends_with"]


class Expression:
    """Base class of all expression nodes."""

    node_name: ClassVar[str] = "expression"

    @property
    def type(self) -> Any:
        """The static type this node evaluates to, when known."""
        return Any

    def accept(self, visitor: ExpressionVisitor) -> Any:
        return visitor.visit(self)

    def __str__(self) -> str:
        return render(self)


@dataclass(frozen=True, eq=True)
class Parameter(Expression):
    """A lambda parameter, bound to one element when the lambda is applied."""

    node_name: ClassVar[str] = "parameter"

    name: str
    parameter_type: Any = Any

    @property
    def type(self) -> Any:
        return self.parameter_type


@dataclass(frozen=True, eq=True)
class Member(Expression):
    """
    Attribute access on another expression.

    Evaluates to None when the target evaluates to None, so chained access
    through a nullable hop never raises.
    """

    node_name: ClassVar[str] = "member"

    target: Expression
    name: str
    member_type: Any = Any

    @property
    def type(self) -> Any:
        return self.member_type

    @property
    def path(self) -> tuple[str, ...] | None:
        """Member names from the root parameter, or None if not rooted at one."""
        names: list[str] = []
        node: Expression = self
        while isinstance(node, Member):
            names.append(node.name)
            node = node.target
        if not isinstance(node, Parameter):
            return None
        return tuple(reversed(names))


@dataclass(frozen=True, eq=True)
class Constant(Expression):
    """A literal value captured into the graph."""

    node_name: ClassVar[str] = "constant"

    value: Any
    value_type: Any = Any

    @property
    def type(self) -> Any:
        return self.value_type


@dataclass(frozen=True, eq=True)
class DefaultValue(Expression):
    """The zero value of a type (0, "", False, empty collection, None)."""

    node_name: ClassVar[str] = "default_value"

    value_type: Any
    container: ContainerKind = ContainerKind.NONE

    @property
    def type(self) -> Any:
        return self.value_type


@dataclass(frozen=True, eq=True)
class HasValue(Expression):
    """True when the operand is not None."""

    node_name: ClassVar[str] = "has_value"

    operand: Expression

    @property
    def type(self) -> Any:
        return bool


@dataclass(frozen=True, eq=True)
class Conditional(Expression):
    """``if_true if test else if_false``."""

    node_name: ClassVar[str] = "conditional"

    test: Expression
    if_true: Expression
    if_false: Expression

    @property
    def type(self) -> Any:
        return self.if_true.type


@dataclass(frozen=True, eq=True)
class Convert(Expression):
    """
    Convert a value into another type.

    An enum member converted into another enum type becomes the target
    member at the same ordinal position; other targets (numeric widening)
    call the target type on the value. None passes through unchanged.
    """

    node_name: ClassVar[str] = "convert"

    operand: Expression
    target_type: Any

    @property
    def type(self) -> Any:
        return self.target_type


@dataclass(frozen=True, eq=True)
class Binding:
    """Assignment of one target member inside a Construct node."""

    member: str
    expression: Expression


@dataclass(frozen=True, eq=True)
class Construct(Expression):
    """Build an instance of ``target_type`` from member bindings."""

    node_name: ClassVar[str] = "construct"

    target_type: Any
    bindings: tuple[Binding, ...]
    mode: ConstructMode = ConstructMode.KWARGS

    @property
    def type(self) -> Any:
        return self.target_type


@dataclass(frozen=True, eq=True)
class Lambda(Expression):
    """A single-parameter function: ``parameter => body``."""

    node_name: ClassVar[str] = "lambda"

    parameter: Parameter
    body: Expression

    @property
    def type(self) -> Any:
        return self.body.type


@dataclass(frozen=True, eq=True)
class MapEach(Expression):
    """
    Apply a selector to every element of a collection.

    The result is materialized into ``container``. A None source yields
    None when ``nullable`` is set and an empty collection otherwise.
    """

    node_name: ClassVar[str] = "map_each"

    source: Expression
    selector: Lambda
    container: ContainerKind = ContainerKind.LIST
    nullable: bool = False


@dataclass(frozen=True, eq=True)
class Compare(Expression):
    """Binary comparison."""

    node_name: ClassVar[str] = "compare"

    operator: CompareOperator
    left: Expression
    right: Expression

    @property
    def type(self) -> Any:
        return bool


@dataclass(frozen=True, eq=True)
class Not(Expression):
    """Logical negation."""

    node_name: ClassVar[str] = "not"

    operand: Expression

    @property
    def type(self) -> Any:
        return bool


@dataclass(frozen=True, eq=True)
class StringMatch(Expression):
    """Substring, prefix or suffix test of ``target`` against ``argument``."""

    node_name: ClassVar[str] = "string_match"

    method: StringMethod
    target: Expression
    argument: Expression

    @property
    def type(self) -> Any:
        return bool


@dataclass(frozen=True, eq=True)
class Membership(Expression):
    """True when ``item`` is one of the values of ``collection``."""

    node_name: ClassVar[str] = "membership"

    collection: Expression
    item: Expression

    @property
    def type(self) -> Any:
        return bool


def member_path(root: Expression, path: str | Sequence[str]) -> Expression:
    """
    Build a member access chain from a dotted path.

    Example:
        >>> str(member_path(Parameter("e"), "customer.name"))
        'e.customer.name'
    """
    names = path.split(".") if isinstance(path, str) else list(path)
    node = root
    for name in names:
        node = Member(node, name)
    return node


class ExpressionVisitor:
    """
    Base class for walking expression graphs.

    ``visit`` dispatches to ``visit_<node_name>``. Subclasses implement the
    methods for the nodes they support; ``generic_visit`` handles the rest.
    """

    def visit(self, node: Expression) -> Any:
        method = getattr(self, f"visit_{node.node_name}", None)
        if method is None:
            return self.generic_visit(node)
        return method(node)

    def generic_visit(self, node: Expression) -> Any:
        raise NotImplementedError(f"{type(self).__name__} does not handle {node.node_name} nodes")


# Each compiled node is a function of the environment: parameter -> bound value.
_Env = dict[Parameter, Any]
_Compiled = Callable[[_Env], Any]

_COMPARISONS: dict[str, Callable[[Any, Any], bool]] = {
    "eq": operator.eq,
    "ne": operator.ne,
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
}


class ExpressionCompiler(ExpressionVisitor):
    """
    Compile an expression graph into nested Python closures.

    Ordering comparisons against None evaluate to False, the way a SQL
    comparison against NULL does.
    """

    def visit_parameter(self, node: Parameter) -> _Compiled:
        def run(env: _Env) -> Any:
            return env[node]

        return run

    def visit_member(self, node: Member) -> _Compiled:
        target = self.visit(node.target)
        name = node.name

        def run(env: _Env) -> Any:
            value = target(env)
            if value is None:
                return None
            return getattr(value, name)

        return run

    def visit_constant(self, node: Constant) -> _Compiled:
        value = node.value
        return lambda env: value

    def visit_default_value(self, node: DefaultValue) -> _Compiled:
        value_type = node.value_type
        container = node.container
        return lambda env: zero_value(value_type, container)

    def visit_has_value(self, node: HasValue) -> _Compiled:
        operand = self.visit(node.operand)
        return lambda env: operand(env) is not None

    def visit_conditional(self, node: Conditional) -> _Compiled:
        test = self.visit(node.test)
        if_true = self.visit(node.if_true)
        if_false = self.visit(node.if_false)
        return lambda env: if_true(env) if test(env) else if_false(env)

    def visit_convert(self, node: Convert) -> _Compiled:
        operand = self.visit(node.operand)
        target_type = node.target_type
        if not (isinstance(target_type, type) and issubclass(target_type, Enum)):

            def widen(env: _Env) -> Any:
                value = operand(env)
                if value is None:
                    return None
                return target_type(value)

            return widen

        target_members = list(target_type)

        def cast(env: _Env) -> Any:
            value = operand(env)
            if value is None or isinstance(value, target_type):
                return value
            if isinstance(value, Enum):
                return target_members[list(type(value)).index(value)]
            return target_type(value)

        return cast

    def visit_construct(self, node: Construct) -> _Compiled:
        target_type = node.target_type
        bindings = [(binding.member, self.visit(binding.expression)) for binding in node.bindings]

        if node.mode is ConstructMode.SETATTR:

            def build_by_assignment(env: _Env) -> Any:
                instance = target_type()
                for name, compiled in bindings:
                    setattr(instance, name, compiled(env))
                return instance

            return build_by_assignment

        def build(env: _Env) -> Any:
            return target_type(**{name: compiled(env) for name, compiled in bindings})

        return build

    def visit_lambda(self, node: Lambda) -> _Compiled:
        # a nested lambda evaluates to a function closed over the outer environment
        parameter = node.parameter
        body = self.visit(node.body)
        return lambda env: lambda value: body({**env, parameter: value})

    def visit_map_each(self, node: MapEach) -> _Compiled:
        source = self.visit(node.source)
        parameter = node.selector.parameter
        body = self.visit(node.selector.body)
        container = node.container
        nullable = node.nullable

        def run(env: _Env) -> Any:
            items = source(env)
            if items is None:
                return None if nullable else materialize(container, ())
            return materialize(container, (body({**env, parameter: item}) for item in items))

        return run

    def visit_compare(self, node: Compare) -> _Compiled:
        left = self.visit(node.left)
        right = self.visit(node.right)
        compare = _COMPARISONS[node.operator]
        ordering = node.operator not in ("eq", "ne")

        def run(env: _Env) -> bool:
            lhs = left(env)
            rhs = right(env)
            if ordering and (lhs is None or rhs is None):
                return False
            return bool(compare(lhs, rhs))

        return run

    def visit_not(self, node: Not) -> _Compiled:
        operand = self.visit(node.operand)
        return lambda env: not operand(env)

    def visit_string_match(self, node: StringMatch) -> _Compiled:
        target = self.visit(node.target)
        argument = self.visit(node.argument)
        method = node.method

        def run(env: _Env) -> bool:
            text = target(env)
            needle = argument(env)
            if text is None or needle is None:
                return False
            if method == "starts_with":
                return str(text).startswith(str(needle))
            if method == "ends_with":
                return str(text).endswith(str(needle))
            return str(needle) in str(text)

        return run

    def visit_membership(self, node: Membership) -> _Compiled:
        collection = self.visit(node.collection)
        item = self.visit(node.item)

        def run(env: _Env) -> bool:
            values = collection(env)
            if values is None:
                return False
            return item(env) in values

        return run


def compile_lambda(expression: Lambda) -> Callable[[Any], Any]:
    """
    Compile a lambda into a one-argument Python callable.

    Args:
        expression: The lambda to compile

    Returns:
        Function applying the lambda body to its argument
    """
    compiled = ExpressionCompiler().visit(expression)
    return compiled({})  # type: ignore[no-any-return]


_SYMBOLS = {"eq": "==", "ne": "!=", "gt": ">", "gte": ">=", "lt": "<", "lte": "<="}


class ExpressionRenderer(ExpressionVisitor):
    """Render an expression graph as readable, Python-like text."""

    def visit_parameter(self, node: Parameter) -> str:
        return node.name

    def visit_member(self, node: Member) -> str:
        return f"{self.visit(node.target)}.{node.name}"

    def visit_constant(self, node: Constant) -> str:
        return repr(node.value)

    def visit_default_value(self, node: DefaultValue) -> str:
        return f"default({_type_label(node.value_type)})"

    def visit_has_value(self, node: HasValue) -> str:
        return f"{self.visit(node.operand)} is not None"

    def visit_conditional(self, node: Conditional) -> str:
        return (
            f"({self.visit(node.if_true)} if {self.visit(node.test)} "
            f"else {self.visit(node.if_false)})"
        )

    def visit_convert(self, node: Convert) -> str:
        return f"{_type_label(node.target_type)}({self.visit(node.operand)})"

    def visit_construct(self, node: Construct) -> str:
        bindings = ", ".join(
            f"{binding.member}={self.visit(binding.expression)}" for binding in node.bindings
        )
        return f"{_type_label(node.target_type)}({bindings})"

    def visit_lambda(self, node: Lambda) -> str:
        return f"{node.parameter.name} => {self.visit(node.body)}"

    def visit_map_each(self, node: MapEach) -> str:
        return (
            f"{node.container.value}({self.visit(node.selector.body)} "
            f"for {node.selector.parameter.name} in {self.visit(node.source)})"
        )

    def visit_compare(self, node: Compare) -> str:
        return f"{self.visit(node.left)} {_SYMBOLS[node.operator]} {self.visit(node.right)}"

    def visit_not(self, node: Not) -> str:
        return f"not ({self.visit(node.operand)})"

    def visit_string_match(self, node: StringMatch) -> str:
        if node.method == "contains":
            return f"{self.visit(node.argument)} in {self.visit(node.target)}"
        method = node.method.replace("_", "")
        return f"{self.visit(node.target)}.{method}({self.visit(node.argument)})"

    def visit_membership(self, node: Membership) -> str:
        return f"{self.visit(node.item)} in {self.visit(node.collection)}"


def _type_label(tp: Any) -> str:
    return getattr(tp, "__name__", str(tp))


def render(expression: Expression) -> str:
    """Readable text form of an expression, used in logs and errors."""
    return ExpressionRenderer().visit(expression)  # type: ignore[no-any-return]


__all__ = [
    "CompareOperator",
    "StringMethod",
    "Expression",
    "Parameter",
    "Member",
    "Constant",
    "DefaultValue",
    "HasValue",
    "Conditional",
    "Convert",
    "Binding",
    "Construct",
    "Lambda",
    "MapEach",
    "Compare",
    "Not",
    "StringMatch",
    "Membership",
    "ExpressionVisitor",
    "ExpressionCompiler",
    "ExpressionRenderer",
    "compile_lambda",
    "member_path",
    "render",
]
