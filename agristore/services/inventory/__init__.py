"""Stock ledger operations on the product catalog."""

from agristore.services.inventory.ledger import (
    InsufficientStockError,
    InventoryError,
    InventoryLedger,
    ProductUnavailableError,
)

__all__ = [
    "InsufficientStockError",
    "InventoryError",
    "InventoryLedger",
    "ProductUnavailableError",
]
