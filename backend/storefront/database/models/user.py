"""
User model with role management.

Buyers and administrators are both users; tokens are issued elsewhere, this
service only needs the role and the account standing used to decide whether a
user may place or manage orders.
"""

import enum
from typing import Optional

from sqlalchemy import Boolean, Enum as SQLEnum, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import SoftDeleteModel


class UserRole(str, enum.Enum):
    """User role enumeration for role-based access control."""

    CUSTOMER = "customer"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

    @classmethod
    def from_string(cls, value: str) -> "UserRole":
        try:
            return cls[value.upper()]
        except KeyError:
            raise ValueError(f"Invalid role: {value}")

    def has_permission(self, required_role: "UserRole") -> bool:
        """
        Check if this role has permission for required role.

        Args:
            required_role: The role required for access

        Returns:
            True if this role has sufficient permissions
        """
        role_hierarchy = {
            UserRole.CUSTOMER: 0,
            UserRole.ADMIN: 1,
            UserRole.SUPER_ADMIN: 2,
        }
        return role_hierarchy[self] >= role_hierarchy[required_role]


class User(SoftDeleteModel):
    """
    Storefront account.

    Attributes:
        email: User email address (unique)
        first_name: User's first name
        last_name: User's last name
        role: User role for access control
        is_active: Account active status
        is_blocked: Set by administrators to stop a user from ordering
        deleted_at: Soft deletion timestamp
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="User email address (unique, case-insensitive)",
    )

    first_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="User's first name",
    )

    last_name: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="User's last name",
    )

    role: Mapped[UserRole] = mapped_column(
        SQLEnum(
            UserRole,
            name="user_role",
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=UserRole.CUSTOMER,
        comment="User role for access control",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Account active status",
    )

    is_blocked: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Blocked users cannot place orders",
    )

    __table_args__ = (
        Index("ix_users_role", "role"),
        {"comment": "Storefront user accounts"},
    )

    @property
    def is_admin(self) -> bool:
        return self.role.has_permission(UserRole.ADMIN)

    @property
    def can_place_orders(self) -> bool:
        """Active, not blocked and not soft-deleted."""
        return self.is_active and not self.is_blocked and not self.is_deleted
