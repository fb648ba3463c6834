"""
Inventory ledger over product stock counters.

Reservations are expressed as a single conditional UPDATE so that two
concurrent orders can never both take the last units of a product. The
read-only ``check_availability`` exists to produce a user-facing message
early; the conditional UPDATE is what actually guards the counter.

The ledger never commits. Callers run it inside a unit of work together
with the order writes it belongs to.
"""

import uuid
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from agristore.core.logging import get_logger
from agristore.database.models.product import Product

logger = get_logger(__name__)


class InventoryError(Exception):
    """Base exception for inventory operations."""

    def __init__(self, message: str, code: str, **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


class InsufficientStockError(InventoryError):
    """Raised when the requested quantity exceeds the units in stock."""

    def __init__(
        self,
        product_id: uuid.UUID,
        product_name: str,
        requested: int,
        available: int,
    ):
        super().__init__(
            f"Insufficient stock for {product_name}. "
            f"Only {available} available",
            code="INSUFFICIENT_STOCK",
            product_id=str(product_id),
            requested=requested,
            available=available,
        )
        self.available = available


class ProductUnavailableError(InventoryError):
    """Raised when a product does not exist or is not active."""

    def __init__(self, product_id: uuid.UUID, product_name: Optional[str] = None):
        label = product_name or str(product_id)
        super().__init__(
            f"Product {label} is not available",
            code="PRODUCT_UNAVAILABLE",
            product_id=str(product_id),
        )


class InventoryLedger:
    """Reserve and restore product stock within the caller's transaction."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def check_availability(self, product_id: uuid.UUID, quantity: int) -> Product:
        """
        Resolve a product and check it can supply ``quantity`` units.

        Args:
            product_id: Product identifier
            quantity: Units requested

        Returns:
            The product row

        Raises:
            ProductUnavailableError: If the product is missing or inactive
            InsufficientStockError: If stock is below ``quantity``
        """
        product = await self.session.get(Product, product_id)
        if product is None or not product.is_active:
            raise ProductUnavailableError(
                product_id, product.name if product is not None else None
            )

        if product.quantity_in_stock < quantity:
            logger.info(
                "Insufficient stock",
                product_id=str(product_id),
                requested=quantity,
                available=product.quantity_in_stock,
            )
            raise InsufficientStockError(
                product_id, product.name, quantity, product.quantity_in_stock
            )

        return product

    async def reserve(self, product_id: uuid.UUID, quantity: int) -> int:
        """
        Decrement stock if and only if enough units remain.

        Args:
            product_id: Product identifier
            quantity: Units to take, at least 1

        Returns:
            Remaining stock after the decrement

        Raises:
            ValueError: If quantity is not positive
            ProductUnavailableError: If the product is missing or inactive
            InsufficientStockError: If a concurrent sale left too few units
        """
        if quantity <= 0:
            raise ValueError("Reservation quantity must be positive")

        stmt = (
            update(Product)
            .where(
                Product.id == product_id,
                Product.is_active.is_(True),
                Product.quantity_in_stock >= quantity,
            )
            .values(quantity_in_stock=Product.quantity_in_stock - quantity)
            .returning(Product.quantity_in_stock)
            .execution_options(synchronize_session=False)
        )
        remaining = (await self.session.execute(stmt)).scalar_one_or_none()

        if remaining is None:
            row = (
                await self.session.execute(
                    select(
                        Product.name,
                        Product.is_active,
                        Product.quantity_in_stock,
                    ).where(Product.id == product_id)
                )
            ).one_or_none()

            if row is None or not row.is_active:
                raise ProductUnavailableError(
                    product_id, row.name if row is not None else None
                )

            logger.warning(
                "Stock reservation lost to concurrent update",
                product_id=str(product_id),
                requested=quantity,
                available=row.quantity_in_stock,
            )
            raise InsufficientStockError(
                product_id, row.name, quantity, row.quantity_in_stock
            )

        logger.debug(
            "Stock reserved",
            product_id=str(product_id),
            quantity=quantity,
            remaining=remaining,
        )
        return remaining

    async def restore(self, product_id: uuid.UUID, quantity: int) -> Optional[int]:
        """
        Return previously reserved units to stock.

        Args:
            product_id: Product identifier
            quantity: Units to return

        Returns:
            Stock after the increment, or None if the product no longer exists
        """
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(quantity_in_stock=Product.quantity_in_stock + quantity)
            .returning(Product.quantity_in_stock)
            .execution_options(synchronize_session=False)
        )
        restored = (await self.session.execute(stmt)).scalar_one_or_none()

        if restored is None:
            logger.warning(
                "Stock restore skipped for missing product",
                product_id=str(product_id),
                quantity=quantity,
            )
        else:
            logger.debug(
                "Stock restored",
                product_id=str(product_id),
                quantity=quantity,
                stock=restored,
            )
        return restored
