"""
Store drivers: queryables that execute shaped queries against a database.
"""

from queryshape.stores.sqlalchemy import (
    AsyncSQLAlchemyQueryable,
    ClauseTranslator,
    OrderKey,
    SQLAlchemyQueryable,
    order_key,
    projected_columns,
)

__all__ = [
    "AsyncSQLAlchemyQueryable",
    "ClauseTranslator",
    "OrderKey",
    "SQLAlchemyQueryable",
    "order_key",
    "projected_columns",
]
