"""Order state machine implementation with transition validation.

This module implements the OrderStateMachine class, the only code that
changes an order's ``order_status``. Each transition validates against the
transition table, applies the side effects of its target status and records
a status history row. Nothing here commits; callers run the state machine
inside a unit of work together with any inventory restoration.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Set
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from agristore.core.logging import get_logger
from agristore.database.models.order import Order, OrderStatusHistory
from agristore.services.orders.enums import (
    CUSTOMER_CANCELLABLE_STATUSES,
    DEFAULT_REASON,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    get_allowed_order_transitions,
    validate_order_status_transition,
)

logger = get_logger(__name__)


class StateTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(
        self,
        message: str,
        current_state: OrderStatus,
        target_state: OrderStatus,
        **context: Any,
    ):
        super().__init__(message)
        self.current_state = current_state
        self.target_state = target_state
        self.context = context


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStateMachine:
    """State machine for managing order lifecycle transitions.

    Handles order status transitions with validation and side effects, and
    the two status-adjacent events that are not transitions: recording the
    initial status of a new order and confirming an online payment.
    """

    def __init__(self, db_session: AsyncSession):
        """Initialize state machine with database session.

        Args:
            db_session: Session the status history rows are added to
        """
        self.db = db_session
        self._side_effects: Dict[
            OrderStatus, Callable[[Order, Optional[str]], None]
        ] = {
            OrderStatus.SHIPPED: self._effect_shipped,
            OrderStatus.DELIVERED: self._effect_delivered,
            OrderStatus.CANCELLED: self._effect_cancelled,
            OrderStatus.REJECTED: self._effect_rejected,
        }

    def validate_transition(self, order: Order, target_status: OrderStatus) -> None:
        """Validate that ``target_status`` is an allowed successor.

        Raises:
            StateTransitionError: If the transition table forbids it
        """
        current_status = order.order_status
        if not validate_order_status_transition(current_status, target_status):
            allowed = get_allowed_order_transitions(current_status)
            raise StateTransitionError(
                f"Cannot change order status from {current_status.value} "
                f"to {target_status.value}",
                current_state=current_status,
                target_state=target_status,
                allowed_transitions=sorted(s.value for s in allowed),
            )

    def apply_transition(
        self,
        order: Order,
        target_status: OrderStatus,
        reason: Optional[str] = None,
        user_id: Optional[UUID] = None,
    ) -> None:
        """Apply a table transition to the order with its side effects.

        Args:
            order: Order to transition, with its items loaded
            target_status: Target status
            reason: Reason stored for Cancelled and Rejected
            user_id: User initiating the transition

        Raises:
            StateTransitionError: If the transition is not allowed
        """
        self.validate_transition(order, target_status)
        self._transition(order, target_status, reason, user_id)

    def cancel(
        self,
        order: Order,
        reason: Optional[str] = None,
        user_id: Optional[UUID] = None,
    ) -> None:
        """Cancel an order on the customer's behalf.

        Customers may cancel while the order is Processing or Shipped, which
        is wider than the administrative transition table.

        Raises:
            StateTransitionError: If the order is past the cancellable states
        """
        if order.order_status not in CUSTOMER_CANCELLABLE_STATUSES:
            raise StateTransitionError(
                f"Order cannot be cancelled in {order.order_status.value} status",
                current_state=order.order_status,
                target_state=OrderStatus.CANCELLED,
                cancellable=sorted(s.value for s in CUSTOMER_CANCELLABLE_STATUSES),
            )
        self._transition(order, OrderStatus.CANCELLED, reason, user_id)

    def record_created(self, order: Order, user_id: Optional[UUID] = None) -> None:
        """Record the initial status of a newly created order."""
        self._record_status_change(order, None, order.order_status, user_id, None)

    def confirm_payment(
        self,
        order: Order,
        razorpay_payment_id: str,
        razorpay_signature: str,
    ) -> None:
        """Mark an online payment as collected.

        The order stays in Processing; only the payment status and the
        gateway references change.
        """
        order.payment_status = PaymentStatus.SUCCESS
        order.order_status = OrderStatus.PROCESSING
        order.razorpay_payment_id = razorpay_payment_id
        order.razorpay_signature = razorpay_signature
        self._record_status_change(
            order,
            OrderStatus.PROCESSING,
            OrderStatus.PROCESSING,
            order.user_id,
            "Payment verified",
        )

        logger.info(
            "Payment confirmed",
            order_id=str(order.id),
            razorpay_payment_id=razorpay_payment_id,
        )

    def _transition(
        self,
        order: Order,
        target_status: OrderStatus,
        reason: Optional[str],
        user_id: Optional[UUID],
    ) -> None:
        old_status = order.order_status
        order.order_status = target_status

        side_effect = self._side_effects.get(target_status)
        if side_effect is not None:
            side_effect(order, reason)

        self._record_status_change(order, old_status, target_status, user_id, reason)

        logger.info(
            "State transition applied",
            order_id=str(order.id),
            transition=f"{old_status.value}->{target_status.value}",
            payment_status=order.payment_status.value,
            user_id=str(user_id) if user_id else None,
        )

    def _record_status_change(
        self,
        order: Order,
        old_status: Optional[OrderStatus],
        new_status: OrderStatus,
        user_id: Optional[UUID],
        reason: Optional[str],
    ) -> None:
        self.db.add(
            OrderStatusHistory(
                order_id=order.id,
                from_status=old_status,
                to_status=new_status,
                payment_status=order.payment_status,
                changed_by=user_id,
                reason=reason,
            )
        )

    # Side Effects

    def _effect_shipped(self, order: Order, reason: Optional[str]) -> None:
        order.shipped_at = _utcnow()

    def _effect_delivered(self, order: Order, reason: Optional[str]) -> None:
        order.delivered_at = _utcnow()
        # Cash is collected by the courier
        if (
            order.payment_method == PaymentMethod.COD
            and order.payment_status != PaymentStatus.SUCCESS
        ):
            order.payment_status = PaymentStatus.SUCCESS

    def _effect_cancelled(self, order: Order, reason: Optional[str]) -> None:
        order.cancelled_at = _utcnow()
        order.cancellation_reason = reason or DEFAULT_REASON
        self._refund_if_paid(order)

    def _effect_rejected(self, order: Order, reason: Optional[str]) -> None:
        order.rejected_at = _utcnow()
        order.rejection_reason = reason or DEFAULT_REASON
        self._refund_if_paid(order)

    @staticmethod
    def _refund_if_paid(order: Order) -> None:
        if order.payment_status == PaymentStatus.SUCCESS:
            order.payment_status = PaymentStatus.REFUNDED

    def get_allowed_transitions(self, order: Order) -> Set[OrderStatus]:
        return get_allowed_order_transitions(order.order_status)
