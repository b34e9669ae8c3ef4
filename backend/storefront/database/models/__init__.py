"""
Database models package initialization.

Models are imported here so they are registered with the Base metadata for
Alembic and relationship resolution.
"""

from storefront.database.base import (
    Base,
    BaseModel,
    SoftDeleteMixin,
    SoftDeleteModel,
    TimestampMixin,
    UUIDMixin,
)
from storefront.database.models.order import Order, OrderItem, OrderStatusHistory
from storefront.database.models.product import Product
from storefront.database.models.promo_code import DiscountType, PromoCode
from storefront.database.models.user import User, UserRole

__all__ = [
    "Base",
    "BaseModel",
    "SoftDeleteModel",
    "TimestampMixin",
    "UUIDMixin",
    "SoftDeleteMixin",
    "User",
    "UserRole",
    "Product",
    "PromoCode",
    "DiscountType",
    "Order",
    "OrderItem",
    "OrderStatusHistory",
]
