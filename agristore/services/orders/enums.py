"""Order status, payment status and payment method enums.

This module defines the enums that drive the order lifecycle together with
the exhaustive order status transition table used by the state machine.
Enum values are the wire values exchanged with storefront clients.
"""

from enum import Enum
from typing import Dict, Set


class OrderStatus(str, Enum):
    """Order fulfillment status with state machine transitions.

    Valid transitions:
    - PROCESSING -> SHIPPED, REJECTED
    - SHIPPED -> DELIVERED, CANCELLED
    - DELIVERED -> (terminal state)
    - CANCELLED -> (terminal state)
    - REJECTED -> (terminal state)

    Customers may additionally cancel their own order while it is
    PROCESSING or SHIPPED, see ``CUSTOMER_CANCELLABLE_STATUSES``.
    """

    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    REJECTED = "Rejected"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Convert string to OrderStatus enum, ignoring case.

        Raises:
            ValueError: If value is not a valid status
        """
        for status in cls:
            if status.value.lower() == str(value).strip().lower():
                return status
        valid_values = ", ".join(s.value for s in cls)
        raise ValueError(
            f"Invalid order status: {value}. Valid values are: {valid_values}"
        )

    def is_terminal(self) -> bool:
        return not ORDER_STATUS_TRANSITIONS[self]

    def restores_inventory(self) -> bool:
        """Check if entering this status returns reserved stock.

        Returns:
            True for the failed outcomes, CANCELLED and REJECTED
        """
        return self in {OrderStatus.CANCELLED, OrderStatus.REJECTED}


class PaymentStatus(str, Enum):
    """Payment status of an order.

    PENDING is the initial state of cash-on-delivery orders and PROCESSING
    the initial state of gateway orders awaiting client confirmation.
    SUCCESS becomes REFUNDED when a paid order is cancelled or rejected.
    """

    PENDING = "Pending"
    PROCESSING = "Processing"
    FAILED = "Failed"
    SUCCESS = "Success"
    REFUNDED = "Refunded"


class PaymentMethod(str, Enum):
    """Supported payment methods."""

    COD = "COD"
    RAZORPAY = "Razorpay"

    @classmethod
    def from_string(cls, value: str) -> "PaymentMethod":
        """Convert string to PaymentMethod enum.

        Raises:
            ValueError: If value is not a supported payment method
        """
        try:
            return cls(value)
        except ValueError:
            valid_values = ", ".join(m.value for m in cls)
            raise ValueError(
                f"Invalid payment method: {value}. Valid values are: {valid_values}"
            )

    @property
    def initial_payment_status(self) -> PaymentStatus:
        if self is PaymentMethod.COD:
            return PaymentStatus.PENDING
        return PaymentStatus.PROCESSING


# State transition validation rules
ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PROCESSING: {
        OrderStatus.SHIPPED,
        OrderStatus.REJECTED,
    },
    OrderStatus.SHIPPED: {
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.DELIVERED: set(),  # Terminal
    OrderStatus.CANCELLED: set(),  # Terminal
    OrderStatus.REJECTED: set(),  # Terminal
}

CUSTOMER_CANCELLABLE_STATUSES: Set[OrderStatus] = {
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
}

DEFAULT_REASON = "No reason provided"


def validate_order_status_transition(
    current: OrderStatus,
    new: OrderStatus,
) -> bool:
    """Validate if order status transition is allowed.

    Args:
        current: Current order status
        new: Desired new status

    Returns:
        True if transition is valid
    """
    return new in ORDER_STATUS_TRANSITIONS.get(current, set())


def get_allowed_order_transitions(current: OrderStatus) -> Set[OrderStatus]:
    """Get all allowed transitions from current order status.

    Args:
        current: Current order status

    Returns:
        Set of allowed next statuses
    """
    return ORDER_STATUS_TRANSITIONS.get(current, set()).copy()
