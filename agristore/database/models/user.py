"""
User model with role management.

Accounts are owned by the account service; the order workflow reads the
role for authorization and appends to the user's order history.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from agristore.database.base import Base, BaseModel


class UserRole(str, enum.Enum):
    """User role enumeration for role-based access control."""

    CUSTOMER = "customer"
    ADMIN = "admin"


class User(BaseModel):
    """
    Storefront account.

    Attributes:
        id: Unique user identifier (UUID)
        email: User email address (unique)
        name: Display name
        mobile_number: Contact number (unique)
        role: Role used for admin-only order operations
        is_active: Account active status
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="User email address",
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Display name",
    )

    mobile_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
        comment="Contact mobile number",
    )

    role: Mapped[UserRole] = mapped_column(
        SQLEnum(
            UserRole,
            name="user_role",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
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

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class UserOrderHistory(Base):
    """
    Append-only link between a user and the orders they placed.

    One row is inserted in the same transaction that creates the order.
    """

    __tablename__ = "user_order_history"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        primary_key=True,
    )

    added_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("order_id", name="uq_user_order_history_order"),
        Index("ix_user_order_history_user_added", "user_id", "added_at"),
    )
