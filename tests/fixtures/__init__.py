"""
Shared test fixtures for the queryshape library.

This package provides:
- Entities, DTOs, enums and filter models (tests.fixtures.models)
- SQLAlchemy declarative models and seed data (tests.fixtures.orm)
- Sample data factories (tests.fixtures.data)

Usage:
    from tests.fixtures.models import Order, OrderDto
    from tests.fixtures import make_orders
"""

from tests.fixtures.data import make_customers, make_orders

__all__ = ["make_customers", "make_orders"]
