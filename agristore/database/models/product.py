"""
Product catalog model.

Catalog CRUD is handled elsewhere. The order workflow reads price, discount
and availability, and treats ``quantity_in_stock`` as a ledger it may
decrement and increment through the inventory ledger service.
"""

from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from agristore.database.base import BaseModel

CENT = Decimal("0.01")


class Product(BaseModel):
    """
    Fertilizer product.

    Attributes:
        name: Product name
        category: Crop category the product targets
        presentation: Presentation form (e.g. "Powder Form")
        presentation_size: Pack size (e.g. "1kg")
        price: List price
        discount: Flat percentage discount, 0 to 100
        quantity_in_stock: Units available for sale, never negative
        is_active: Whether the product can be ordered
    """

    __tablename__ = "products"

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    category: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="wheat",
    )

    presentation: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="Powder Form",
    )

    presentation_size: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="100gm",
    )

    price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
    )

    discount: Mapped[Decimal] = mapped_column(
        Numeric(precision=5, scale=2),
        nullable=False,
        default=Decimal("0"),
    )

    quantity_in_stock: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    __table_args__ = (
        Index("ix_products_active_category", "is_active", "category"),
        CheckConstraint("price > 0", name="ck_products_price_positive"),
        CheckConstraint(
            "discount >= 0 AND discount <= 100",
            name="ck_products_discount_range",
        ),
        CheckConstraint(
            "quantity_in_stock >= 0",
            name="ck_products_stock_non_negative",
        ),
        {"comment": "Fertilizer catalog with stock levels"},
    )

    @property
    def discounted_price(self) -> Decimal:
        """
        Unit price after the flat percentage discount, rounded to cents.

        Returns:
            ``price * (1 - discount / 100)`` rounded half up
        """
        price = Decimal(str(self.price))
        discount = Decimal(str(self.discount or 0))
        unit = price * (Decimal("1") - discount / Decimal("100"))
        return unit.quantize(CENT, rounding=ROUND_HALF_UP)
