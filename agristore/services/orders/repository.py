"""
Order data access repository.

This module implements the OrderRepository class providing async methods for
loading orders with their line items, paginated listings and the writes the
order workflow performs inside a unit of work. The repository never commits;
transaction boundaries belong to the caller.
"""

import uuid
from typing import Any, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from agristore.core.logging import get_logger
from agristore.database.models.address import Address
from agristore.database.models.order import Order, OrderStatusHistory
from agristore.database.models.user import UserOrderHistory
from agristore.services.orders.enums import OrderStatus

logger = get_logger(__name__)


class OrderRepositoryError(Exception):
    """Base exception for order repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderPersistenceError(OrderRepositoryError):
    """Raised when an order write is rejected by the database."""

    pass


class OrderRepository:
    """
    Repository for order data access operations.

    Attributes:
        session: Async database session shared with the caller's unit of work
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, order_id: uuid.UUID) -> Optional[Order]:
        """
        Get order by ID with its line items.

        Args:
            order_id: Order identifier

        Returns:
            Order if found, None otherwise

        Raises:
            OrderRepositoryError: If query fails
        """
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .options(selectinload(Order.items))
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("Failed to fetch order", order_id=str(order_id), error=str(e))
            raise OrderRepositoryError(
                "Failed to fetch order", order_id=str(order_id)
            ) from e

        order = result.scalar_one_or_none()
        logger.debug("Order lookup", order_id=str(order_id), found=order is not None)
        return order

    async def get_by_number(self, order_number: str) -> Optional[Order]:
        """
        Get order by its external order number.

        Args:
            order_number: Human-readable order number

        Returns:
            Order if found, None otherwise

        Raises:
            OrderRepositoryError: If query fails
        """
        stmt = (
            select(Order)
            .where(Order.order_number == order_number)
            .options(selectinload(Order.items))
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(
                "Failed to fetch order by number",
                order_number=order_number,
                error=str(e),
            )
            raise OrderRepositoryError(
                "Failed to fetch order by number", order_number=order_number
            ) from e

        return result.scalar_one_or_none()

    async def list_orders(
        self,
        user_id: Optional[uuid.UUID] = None,
        status: Optional[OrderStatus] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[Sequence[Order], int]:
        """
        List orders newest first with pagination.

        Args:
            user_id: Restrict to one user's orders
            status: Optional status filter
            skip: Number of records to skip
            limit: Maximum number of records to return

        Returns:
            Tuple of (orders, total_count)

        Raises:
            OrderRepositoryError: If query fails
        """
        conditions = []
        if user_id is not None:
            conditions.append(Order.user_id == user_id)
        if status is not None:
            conditions.append(Order.order_status == status)

        stmt = (
            select(Order)
            .where(*conditions)
            .options(selectinload(Order.items))
            .order_by(Order.created_at.desc(), Order.order_number.desc())
            .offset(skip)
            .limit(limit)
        )
        count_stmt = select(func.count()).select_from(Order).where(*conditions)

        try:
            orders = (await self.session.execute(stmt)).scalars().all()
            total_count = (await self.session.execute(count_stmt)).scalar_one()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to list orders",
                user_id=str(user_id) if user_id else None,
                error=str(e),
            )
            raise OrderRepositoryError(
                "Failed to list orders",
                user_id=str(user_id) if user_id else None,
            ) from e

        logger.debug(
            "Orders listed",
            user_id=str(user_id) if user_id else None,
            count=len(orders),
            total=total_count,
        )
        return orders, total_count

    async def get_status_history(self, order_id: uuid.UUID) -> Sequence[OrderStatusHistory]:
        """Status history of an order, oldest first."""
        stmt = (
            select(OrderStatusHistory)
            .where(OrderStatusHistory.order_id == order_id)
            .order_by(OrderStatusHistory.created_at, OrderStatusHistory.id)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def get_user_address(
        self,
        address_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> Optional[Address]:
        """Resolve an address only if it belongs to ``user_id``."""
        stmt = select(Address).where(
            Address.id == address_id,
            Address.user_id == user_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def add(self, order: Order) -> Order:
        """
        Insert a new order with its items and flush it.

        The flush makes the order row visible to later statements of the
        same transaction that reference it.

        Raises:
            OrderPersistenceError: If the insert violates a constraint
        """
        self.session.add(order)
        try:
            await self.session.flush()
        except IntegrityError as e:
            logger.error(
                "Order insert rejected",
                order_number=order.order_number,
                error=str(e.orig),
            )
            raise OrderPersistenceError(
                "Order could not be saved",
                order_number=order.order_number,
            ) from e

        logger.debug(
            "Order inserted",
            order_id=str(order.id),
            order_number=order.order_number,
            item_count=len(order.items),
        )
        return order

    async def append_user_history(self, user_id: uuid.UUID, order_id: uuid.UUID) -> None:
        """Append the order to the user's order history."""
        self.session.add(UserOrderHistory(user_id=user_id, order_id=order_id))

    async def claim_status(
        self,
        order_id: uuid.UUID,
        expected: OrderStatus,
        target: OrderStatus,
    ) -> bool:
        """
        Move the stored status from ``expected`` to ``target`` in one statement.

        Returns False when another transaction changed the status first.
        The loaded ``Order`` is left as is; the caller applies the change
        to it afterwards.
        """
        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.order_status == expected)
            .values(order_status=target)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        claimed = result.rowcount == 1
        if not claimed:
            logger.warning(
                "Order status changed concurrently",
                order_id=str(order_id),
                expected_status=expected.value,
                target_status=target.value,
            )
        return claimed
