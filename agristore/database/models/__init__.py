"""
Database models package initialization.

Models are imported here so they are registered with the Base metadata for
Alembic migrations and relationship resolution.
"""

from agristore.database.base import Base, BaseModel, TimestampMixin, UUIDMixin
from agristore.database.models.address import Address
from agristore.database.models.order import Order, OrderItem, OrderStatusHistory
from agristore.database.models.product import Product
from agristore.database.models.user import User, UserOrderHistory, UserRole

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "UUIDMixin",
    "Address",
    "Order",
    "OrderItem",
    "OrderStatusHistory",
    "Product",
    "User",
    "UserOrderHistory",
    "UserRole",
]
