"""
queryshape - Query-shaping engine for persistence layers.

This library provides:
- Projection generation between entity and DTO models, bridging nullable,
  enum, nested-object and collection differences
- Filter specifiers from registered functions or declarative criteria
- Order-by generation with primary and secondary ordering
- Write-once, thread-safe registries for all generated artifacts
- A search pipeline with paging and counting
- In-memory and SQLAlchemy queryables
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("queryshape")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from queryshape.cache import RegistryMap
from queryshape.config import EnumConversionPolicy, ShapingConfig
from queryshape.descriptors import (
    ConstructMode,
    ContainerKind,
    DescriptorRegistry,
    MemberDescriptor,
    TypeDescriptor,
)
from queryshape.engine import QueryShaper
from queryshape.exceptions import (
    DuplicateRegistrationError,
    InvalidCriterionError,
    OrderByNotSupportedError,
    QueryShapeError,
    RegistrationClosedError,
    SelectorNotFoundError,
    SpecifierNotConfiguredError,
    UnsupportedExpressionError,
)
from queryshape.expressions import (
    Compare,
    Constant,
    Expression,
    Lambda,
    Member,
    Parameter,
    compile_lambda,
    member_path,
)
from queryshape.filters import (
    Criterion,
    CriterionOperator,
    FilterModel,
    FunctionSpecifier,
    Specifier,
    SpecifierOptions,
    criterion_field,
)
from queryshape.pipeline import (
    AllEntitiesPipeline,
    ResultList,
    Search,
    SearchCriteria,
    SearchPipeline,
    ShapingStage,
    filter_by_id,
    select_by_id,
)
from queryshape.queryable import InMemoryQueryable, Queryable
from queryshape.resolver import PropertyMatch, PropertyPath, PropertyResolver
from queryshape.selectors import ConversionStrategySet, Selector
from queryshape.sorting import OrderByHandler, SortDirection, Sorting

__all__ = [
    "__version__",
    # Engine
    "QueryShaper",
    "ShapingConfig",
    "EnumConversionPolicy",
    # Descriptors
    "ConstructMode",
    "ContainerKind",
    "DescriptorRegistry",
    "MemberDescriptor",
    "TypeDescriptor",
    # Resolution
    "PropertyMatch",
    "PropertyPath",
    "PropertyResolver",
    "ConversionStrategySet",
    "Selector",
    # Expressions
    "Expression",
    "Parameter",
    "Member",
    "Constant",
    "Compare",
    "Lambda",
    "compile_lambda",
    "member_path",
    # Filters
    "Criterion",
    "CriterionOperator",
    "FilterModel",
    "FunctionSpecifier",
    "Specifier",
    "SpecifierOptions",
    "criterion_field",
    # Sorting
    "OrderByHandler",
    "SortDirection",
    "Sorting",
    # Pipeline
    "AllEntitiesPipeline",
    "ResultList",
    "Search",
    "SearchCriteria",
    "SearchPipeline",
    "ShapingStage",
    "filter_by_id",
    "select_by_id",
    # Queryables
    "InMemoryQueryable",
    "Queryable",
    "RegistryMap",
    # Exceptions
    "QueryShapeError",
    "SelectorNotFoundError",
    "SpecifierNotConfiguredError",
    "OrderByNotSupportedError",
    "DuplicateRegistrationError",
    "RegistrationClosedError",
    "InvalidCriterionError",
    "UnsupportedExpressionError",
]
