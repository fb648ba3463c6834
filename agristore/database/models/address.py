"""
Address book entry model.

Addresses are managed by the account service. Orders reference one by id
and keep a snapshot so later edits never change a placed order.
"""

import uuid
from typing import Any

from sqlalchemy import Boolean, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from agristore.database.base import BaseModel

SNAPSHOT_FIELDS = (
    "name",
    "mobile_number",
    "street",
    "city",
    "state",
    "pin_code",
    "country",
)


class Address(BaseModel):
    """Shipping address owned by a user."""

    __tablename__ = "addresses"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Owning user",
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    mobile_number: Mapped[str] = mapped_column(String(20), nullable=False)
    street: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[str] = mapped_column(String(100), nullable=False)
    pin_code: Mapped[str] = mapped_column(String(10), nullable=False)
    country: Mapped[str] = mapped_column(String(100), nullable=False, default="India")
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def snapshot(self) -> dict[str, Any]:
        """Return the address fields copied onto an order."""
        data = {field: getattr(self, field) for field in SNAPSHOT_FIELDS}
        data["id"] = str(self.id)
        return data
