"""
Order service orchestrating the order workflow.

This module implements the OrderService class for placing orders, verifying
online payments, moving orders through their lifecycle and reading them back.
Placement validates the request, prices lines from current catalog state,
opens a gateway order for online payments and then commits the order, the
user's order history entry and every stock reservation as one transaction.
Status changes and cancellations commit together with the stock they
return, and only if the stored status is still the one they were checked
against.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from agristore.core.config import Settings, get_settings
from agristore.core.logging import get_logger, log_performance
from agristore.database.models.order import Order, OrderItem
from agristore.database.models.user import User
from agristore.database.unit_of_work import UnitOfWork
from agristore.services.inventory.ledger import InventoryLedger
from agristore.services.orders.enums import (
    CUSTOMER_CANCELLABLE_STATUSES,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from agristore.services.orders.repository import OrderRepository
from agristore.services.orders.state_machine import (
    OrderStateMachine,
    StateTransitionError,
)
from agristore.services.payments.razorpay_client import (
    PaymentGatewayError,
    RazorpayClient,
)

logger = get_logger(__name__)

MINOR_UNITS = Decimal("100")


class OrderServiceError(Exception):
    """Base exception for order service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderValidationError(OrderServiceError):
    """Raised when order input is missing or malformed."""

    pass


class OrderNotFoundError(OrderServiceError):
    """Raised when an order does not exist or is not visible to the caller."""

    pass


class OrderAccessDeniedError(OrderServiceError):
    """Raised when a user reads an order that is neither theirs nor admin-visible."""

    pass


class OrderStateError(OrderServiceError):
    """Raised when the order's current state does not allow the operation."""

    pass


class PaymentVerificationError(OrderServiceError):
    """Raised when a gateway payment signature does not verify."""

    pass


@dataclass(frozen=True)
class _PricedLine:
    product_id: uuid.UUID
    name: str
    presentation: str
    presentation_size: Optional[str]
    quantity: int
    unit_price: Decimal

    @property
    def total(self) -> Decimal:
        return self.unit_price * self.quantity


def _coerce_uuid(value: Union[uuid.UUID, str], field: str, **context: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise OrderValidationError(f"Invalid {field}", **context) from e


def to_minor_units(amount: Decimal) -> int:
    """Convert an amount to the currency's minor unit, rounding half up."""
    return int((amount * MINOR_UNITS).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class OrderService:
    """
    Order workflow engine.

    Attributes:
        repository: Order data access
        state_machine: Owner of every order status change
        ledger: Product stock reservations and restorations
        unit_of_work: Transaction boundary for multi-step writes
        payment_gateway: Razorpay client, required for online payments
    """

    def __init__(
        self,
        session: AsyncSession,
        payment_gateway: Optional[RazorpayClient] = None,
        settings: Optional[Settings] = None,
    ):
        self.session = session
        self.repository = OrderRepository(session)
        self.state_machine = OrderStateMachine(session)
        self.ledger = InventoryLedger(session)
        self.unit_of_work = UnitOfWork(session)
        self.payment_gateway = payment_gateway
        self.settings = settings or get_settings()

    async def create_order(
        self,
        user_id: uuid.UUID,
        items: list[dict[str, Any]],
        shipping_address_id: Optional[Union[uuid.UUID, str]],
        payment_method: Optional[str],
    ) -> dict[str, Any]:
        """
        Place an order.

        Args:
            user_id: User placing the order
            items: Requested lines as ``{"product": <id>, "quantity": <int>}``
            shipping_address_id: One of the user's addresses
            payment_method: ``COD`` or ``Razorpay``

        Returns:
            Formatted order plus ``razorpay_order`` for online payments

        Raises:
            OrderValidationError: If the request is malformed or the address is not the user's
            InventoryError: If a product is unavailable or short of stock
            PaymentGatewayError: If the gateway order cannot be created
            TransactionError: If the database rejects the commit
        """
        logger.info(
            "Creating order",
            user_id=str(user_id),
            item_count=len(items or []),
            payment_method=payment_method,
        )

        requested = self._validate_items(items)
        method = self._validate_payment_method(payment_method)

        if not shipping_address_id:
            raise OrderValidationError("Shipping address is required")
        shipping_address_id = _coerce_uuid(shipping_address_id, "shipping address")
        address = await self.repository.get_user_address(shipping_address_id, user_id)
        if address is None:
            raise OrderValidationError(
                "Invalid shipping address",
                shipping_address_id=str(shipping_address_id),
            )

        lines = await self._price_lines(requested)
        total_amount = sum((line.total for line in lines), Decimal("0"))
        order_number = self._generate_order_number()

        razorpay_order: Optional[dict[str, Any]] = None
        if method is PaymentMethod.RAZORPAY:
            gateway = self._require_gateway()
            razorpay_order = await gateway.create_order(
                amount_minor_units=to_minor_units(total_amount),
                currency=self.settings.payment_currency,
                receipt=order_number,
            )

        now = datetime.now(timezone.utc)
        order = Order(
            id=uuid.uuid4(),
            order_number=order_number,
            user_id=user_id,
            shipping_address_id=address.id,
            shipping_address=address.snapshot(),
            payment_method=method,
            payment_status=method.initial_payment_status,
            order_status=OrderStatus.PROCESSING,
            total_amount=total_amount,
            razorpay_order_id=razorpay_order["id"] if razorpay_order else None,
            created_at=now,
            expected_delivery=now
            + timedelta(days=self.settings.order_delivery_lead_days),
            items=[
                OrderItem(
                    id=uuid.uuid4(),
                    position=position,
                    product_id=line.product_id,
                    name=line.name,
                    presentation=line.presentation,
                    presentation_size=line.presentation_size,
                    quantity=line.quantity,
                    price=line.unit_price,
                    total_price=line.total,
                )
                for position, line in enumerate(lines)
            ],
        )

        async def insert_order(session: AsyncSession) -> Order:
            return await self.repository.add(order)

        async def record_history(session: AsyncSession) -> None:
            await self.repository.append_user_history(user_id, order.id)
            self.state_machine.record_created(order, user_id)

        async def reserve_stock(session: AsyncSession) -> None:
            for line in lines:
                await self.ledger.reserve(line.product_id, line.quantity)

        await self.unit_of_work.run_atomically(
            [insert_order, record_history, reserve_stock],
            name="create_order",
        )

        logger.info(
            "Order created successfully",
            order_id=str(order.id),
            order_number=order_number,
            total_amount=str(total_amount),
            payment_method=method.value,
            razorpay_order_id=order.razorpay_order_id,
        )

        response = self._format_order_response(order)
        response["razorpay_order"] = razorpay_order
        return response

    async def verify_payment(
        self,
        razorpay_payment_id: Optional[str],
        razorpay_order_id: Optional[str],
        razorpay_signature: Optional[str],
        order_number: Optional[str],
    ) -> dict[str, Any]:
        """
        Confirm an online payment from the checkout widget's signature.

        Verifying the same payment again returns the order unchanged.

        Raises:
            OrderValidationError: If any argument is missing
            OrderNotFoundError: If no order has ``order_number``
            PaymentVerificationError: If the signature does not match
            OrderStateError: If the order cannot take an online payment
        """
        if not all((razorpay_payment_id, razorpay_order_id, razorpay_signature, order_number)):
            raise OrderValidationError("Missing payment verification fields")

        order = await self.repository.get_by_number(order_number)
        if order is None:
            raise OrderNotFoundError("Order not found", order_number=order_number)

        if order.payment_method is not PaymentMethod.RAZORPAY or not order.razorpay_order_id:
            raise OrderStateError(
                "Order is not an online payment order",
                order_number=order_number,
            )

        gateway = self._require_gateway()
        if razorpay_order_id != order.razorpay_order_id or not gateway.verify_signature(
            order.razorpay_order_id,
            razorpay_payment_id,
            razorpay_signature,
        ):
            logger.warning(
                "Payment signature mismatch",
                order_id=str(order.id),
                order_number=order_number,
                razorpay_order_id=razorpay_order_id,
            )
            raise PaymentVerificationError(
                "Payment verification failed",
                order_number=order_number,
            )

        if order.payment_status is PaymentStatus.SUCCESS:
            if order.razorpay_payment_id == razorpay_payment_id:
                logger.info(
                    "Payment already verified",
                    order_id=str(order.id),
                    razorpay_payment_id=razorpay_payment_id,
                )
                return self._format_order_response(order)
            raise OrderStateError(
                "Order is already paid",
                order_number=order_number,
            )

        if order.order_status is not OrderStatus.PROCESSING:
            raise OrderStateError(
                f"Cannot verify payment for a {order.order_status.value} order",
                order_number=order_number,
                order_status=order.order_status.value,
            )

        async def confirm(session: AsyncSession) -> None:
            self.state_machine.confirm_payment(
                order, razorpay_payment_id, razorpay_signature
            )

        await self.unit_of_work.run_atomically([confirm], name="verify_payment")
        return self._format_order_response(order)

    async def update_order_status(
        self,
        order_id: uuid.UUID,
        new_status: Union[OrderStatus, str],
        reason: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> dict[str, Any]:
        """
        Move an order along the administrative transition table.

        Cancelled and Rejected return every line's quantity to stock in the
        same transaction as the status change.

        Raises:
            OrderNotFoundError: If the order does not exist
            OrderStateError: If the target status is unknown or not allowed
        """
        order = await self.repository.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))

        try:
            target = (
                new_status
                if isinstance(new_status, OrderStatus)
                else OrderStatus.from_string(new_status)
            )
        except ValueError as e:
            raise OrderStateError(str(e), order_id=str(order_id)) from e

        try:
            self.state_machine.validate_transition(order, target)
        except StateTransitionError as e:
            logger.warning(
                "Invalid status transition",
                order_id=str(order_id),
                current_status=e.current_state.value,
                target_status=e.target_state.value,
            )
            raise OrderStateError(str(e), order_id=str(order_id), **e.context) from e

        async def transition(session: AsyncSession) -> None:
            self.state_machine.apply_transition(order, target, reason, user_id)

        operations = [self._claim_status(order, target), transition]
        if target.restores_inventory():
            operations.append(self._restore_stock(order))

        await self.unit_of_work.run_atomically(operations, name="update_order_status")
        return self._format_order_response(order)

    async def cancel_order(
        self,
        order_id: uuid.UUID,
        user_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Cancel one of the user's own orders and return its stock.

        Raises:
            OrderNotFoundError: If the order does not exist or is not the user's
            OrderStateError: If the order is no longer Processing or Shipped
        """
        order = await self.repository.get_by_id(order_id)
        if order is None or order.user_id != user_id:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))

        if order.order_status not in CUSTOMER_CANCELLABLE_STATUSES:
            raise OrderStateError(
                f"Order cannot be cancelled in {order.order_status.value} status",
                order_id=str(order_id),
                order_status=order.order_status.value,
            )

        async def cancel(session: AsyncSession) -> None:
            self.state_machine.cancel(order, reason, user_id)

        await self.unit_of_work.run_atomically(
            [
                self._claim_status(order, OrderStatus.CANCELLED),
                cancel,
                self._restore_stock(order),
            ],
            name="cancel_order",
        )
        return self._format_order_response(order)

    async def get_order(self, order_id: uuid.UUID, requester: User) -> dict[str, Any]:
        """
        Get an order visible to ``requester``.

        Raises:
            OrderNotFoundError: If the order does not exist
            OrderAccessDeniedError: If the requester is neither owner nor admin
        """
        order = await self.repository.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))

        if order.user_id != requester.id and not requester.is_admin:
            logger.warning(
                "Order access denied",
                order_id=str(order_id),
                user_id=str(requester.id),
            )
            raise OrderAccessDeniedError(
                "Not authorized to view this order",
                order_id=str(order_id),
            )

        return self._format_order_response(order)

    async def list_user_orders(
        self,
        user_id: uuid.UUID,
        skip: int = 0,
        limit: int = 20,
    ) -> dict[str, Any]:
        orders, total = await self.repository.list_orders(
            user_id=user_id, skip=skip, limit=limit
        )
        return {
            "orders": [self._format_order_response(order) for order in orders],
            "total": total,
            "skip": skip,
            "limit": limit,
        }

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> dict[str, Any]:
        """List every order, newest first. Callers must check admin rights."""
        orders, total = await self.repository.list_orders(
            status=status, skip=skip, limit=limit
        )
        return {
            "orders": [self._format_order_response(order) for order in orders],
            "total": total,
            "skip": skip,
            "limit": limit,
        }

    def _claim_status(self, order: Order, target: OrderStatus):
        expected = order.order_status

        async def claim_status(session: AsyncSession) -> None:
            if not await self.repository.claim_status(order.id, expected, target):
                raise OrderStateError(
                    "Order status was changed by another request",
                    order_id=str(order.id),
                    order_status=expected.value,
                )

        return claim_status

    def _restore_stock(self, order: Order):
        async def restore_stock(session: AsyncSession) -> None:
            for item in order.items:
                await self.ledger.restore(item.product_id, item.quantity)

        return restore_stock

    def _require_gateway(self) -> RazorpayClient:
        if self.payment_gateway is None:
            raise PaymentGatewayError(
                "Payment gateway is not configured",
                code="GATEWAY_NOT_CONFIGURED",
            )
        return self.payment_gateway

    def _validate_items(self, items: Optional[list[dict[str, Any]]]) -> list[tuple[uuid.UUID, int]]:
        """
        Normalize requested lines.

        Raises:
            OrderValidationError: If there are no items or a line is malformed
        """
        if not items:
            raise OrderValidationError("No order items", item_count=0)

        requested: list[tuple[uuid.UUID, int]] = []
        for position, item in enumerate(items):
            quantity = item.get("quantity")
            product_id = _coerce_uuid(item.get("product"), "product id", position=position)
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
                raise OrderValidationError(
                    "Item quantity must be a positive integer",
                    position=position,
                    product_id=str(product_id),
                )
            requested.append((product_id, quantity))

        return requested

    @staticmethod
    def _validate_payment_method(payment_method: Optional[str]) -> PaymentMethod:
        if not payment_method:
            raise OrderValidationError("Payment method is required")
        try:
            return PaymentMethod.from_string(payment_method)
        except ValueError as e:
            raise OrderValidationError(str(e), payment_method=payment_method) from e

    async def _price_lines(
        self,
        requested: list[tuple[uuid.UUID, int]],
    ) -> list[_PricedLine]:
        """
        Check availability and price every line from the catalog.

        Quantities of repeated products are checked against stock together.
        """
        totals: dict[uuid.UUID, int] = {}
        for product_id, quantity in requested:
            totals[product_id] = totals.get(product_id, 0) + quantity

        with log_performance(logger, "price_order_lines", line_count=len(requested)):
            products = {
                product_id: await self.ledger.check_availability(product_id, quantity)
                for product_id, quantity in totals.items()
            }

        return [
            _PricedLine(
                product_id=product_id,
                name=products[product_id].name,
                presentation=products[product_id].presentation,
                presentation_size=products[product_id].presentation_size,
                quantity=quantity,
                unit_price=products[product_id].discounted_price,
            )
            for product_id, quantity in requested
        ]

    def _generate_order_number(self) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        random_suffix = uuid.uuid4().hex[:6].upper()
        return f"ORD-{timestamp}-{random_suffix}"

    def _format_order_response(self, order: Order) -> dict[str, Any]:
        """
        Format order for response.

        Args:
            order: Order instance with items loaded

        Returns:
            Dictionary containing formatted order data
        """

        def iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": str(order.id),
            "order_number": order.order_number,
            "user_id": str(order.user_id),
            "items": [
                {
                    "product": str(item.product_id),
                    "name": item.name,
                    "presentation": item.presentation,
                    "presentation_size": item.presentation_size,
                    "quantity": item.quantity,
                    "price": float(item.price),
                    "total": float(item.total_price),
                }
                for item in order.items
            ],
            "shipping_address": order.shipping_address,
            "payment_method": order.payment_method.value,
            "payment_status": order.payment_status.value,
            "order_status": order.order_status.value,
            "total_amount": float(order.total_amount),
            "razorpay_order_id": order.razorpay_order_id,
            "razorpay_payment_id": order.razorpay_payment_id,
            "cancellation_reason": order.cancellation_reason,
            "rejection_reason": order.rejection_reason,
            "expected_delivery": iso(order.expected_delivery),
            "shipped_at": iso(order.shipped_at),
            "delivered_at": iso(order.delivered_at),
            "cancelled_at": iso(order.cancelled_at),
            "rejected_at": iso(order.rejected_at),
            "created_at": iso(order.created_at),
        }
