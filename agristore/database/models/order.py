"""
Order aggregate models.

This module defines the Order aggregate root with its line items and status
history. Line items snapshot product name, presentation and the discounted
unit price at the time of ordering, so catalog edits never alter a placed
order. ``total_amount`` is computed once at creation from the line totals.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agristore.database.base import BaseModel
from agristore.services.orders.enums import OrderStatus, PaymentMethod, PaymentStatus


def _enum_column(enum_cls: type, name: str) -> SQLEnum:
    return SQLEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
    )


class Order(BaseModel):
    """
    Customer order.

    Attributes:
        id: Internal storage identifier (UUID)
        order_number: External, human-readable identifier, also the gateway receipt
        user_id: Owning user, immutable
        shipping_address_id: Address the order ships to
        shipping_address: Snapshot of the address at creation time
        payment_method: COD or Razorpay
        payment_status: Current payment status
        order_status: Current fulfillment status, changed only by the state machine
        total_amount: Sum of line totals
        razorpay_order_id: Gateway order id (online payments)
        razorpay_payment_id: Gateway payment id once verified
        razorpay_signature: Verified gateway signature
        cancellation_reason: Reason recorded on cancellation
        rejection_reason: Reason recorded on rejection
        expected_delivery: Creation time plus the delivery lead time
        shipped_at, delivered_at, cancelled_at, rejected_at: Transition timestamps
    """

    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        comment="Human-readable order number",
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="User who placed the order",
    )

    shipping_address_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("addresses.id", ondelete="RESTRICT"),
        nullable=False,
        comment="Shipping address reference",
    )

    shipping_address: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=dict,
        comment="Shipping address snapshot",
    )

    payment_method: Mapped[PaymentMethod] = mapped_column(
        _enum_column(PaymentMethod, "payment_method"),
        nullable=False,
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum_column(PaymentStatus, "payment_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
    )

    order_status: Mapped[OrderStatus] = mapped_column(
        _enum_column(OrderStatus, "order_status"),
        nullable=False,
        default=OrderStatus.PROCESSING,
        index=True,
    )

    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        comment="Sum of line totals",
    )

    # Gateway correlation
    razorpay_order_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, index=True
    )
    razorpay_payment_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True
    )
    razorpay_signature: Mapped[Optional[str]] = mapped_column(
        String(128), nullable=True
    )

    # Reason codes
    cancellation_reason: Mapped[Optional[str]] = mapped_column(
        String(500), nullable=True
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(
        String(500), nullable=True
    )

    # Lifecycle timestamps
    expected_delivery: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    shipped_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rejected_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
        lazy="raise",
    )

    __table_args__ = (
        Index("ix_orders_user_created", "user_id", "created_at"),
        Index("ix_orders_status_created", "order_status", "created_at"),
        CheckConstraint(
            "total_amount >= 0",
            name="ck_orders_total_amount_non_negative",
        ),
        {"comment": "Customer orders with payment and fulfillment state"},
    )

    @property
    def is_terminal(self) -> bool:
        return self.order_status.is_terminal()

    def __repr__(self) -> str:
        return (
            f"<Order(id={self.id}, order_number={self.order_number}, "
            f"order_status={self.order_status.value}, "
            f"total_amount={self.total_amount})>"
        )


class OrderItem(BaseModel):
    """
    Order line item with product snapshots.

    Attributes:
        order_id: Owning order
        position: Zero-based position of the line in the order
        product_id: Product reference used for inventory restoration
        name: Product name at order time
        presentation: Presentation at order time
        quantity: Ordered units, at least 1
        price: Discounted unit price at order time
        total_price: ``price * quantity``
    """

    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    presentation: Mapped[str] = mapped_column(String(50), nullable=False)
    presentation_size: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Discounted unit price snapshot",
    )

    total_price: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
    )

    order: Mapped["Order"] = relationship(
        "Order",
        back_populates="items",
        lazy="raise",
    )

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        CheckConstraint("price >= 0", name="ck_order_items_price_non_negative"),
    )


class OrderStatusHistory(BaseModel):
    """
    Audit trail of order status changes.

    Rows are appended by the state machine in the same transaction as the
    change they describe.
    """

    __tablename__ = "order_status_history"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    from_status: Mapped[Optional[OrderStatus]] = mapped_column(
        _enum_column(OrderStatus, "order_status"),
        nullable=True,
    )

    to_status: Mapped[OrderStatus] = mapped_column(
        _enum_column(OrderStatus, "order_status"),
        nullable=False,
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum_column(PaymentStatus, "payment_status"),
        nullable=False,
    )

    changed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
    )

    reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
