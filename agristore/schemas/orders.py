"""
Order Pydantic schemas for API request/response validation.

Field names follow the storefront client's camelCase wire format through
aliases; snake_case names are accepted too. Identifiers, payment methods
and item quantities are taken as sent so the order service can report
malformed values as regular validation failures.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class OrderItemRequest(BaseModel):
    """Requested order line."""

    model_config = ConfigDict(str_strip_whitespace=True)

    product: str = Field(..., description="Product ID")
    quantity: Any = Field(None, description="Quantity, a positive integer")


class OrderCreateRequest(BaseModel):
    """Request schema for creating a new order."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    items: list[OrderItemRequest] = Field(
        default_factory=list,
        max_length=50,
        description="Order items",
    )
    shipping_address: Optional[str] = Field(
        None,
        alias="shippingAddress",
        description="ID of one of the user's addresses",
    )
    payment_method: Optional[str] = Field(
        None,
        alias="paymentMethod",
        max_length=50,
        description="COD or Razorpay",
    )


class PaymentVerificationRequest(BaseModel):
    """Signature returned by the Razorpay checkout widget."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    razorpay_payment_id: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    order_id: Optional[str] = Field(
        None,
        alias="orderId",
        description="Order number",
    )


class OrderStatusUpdateRequest(BaseModel):
    """Request schema for administrative status changes."""

    status: Optional[str] = Field(None, description="Target order status")
    reason: Optional[str] = Field(None, max_length=500)


class OrderCancelRequest(BaseModel):
    """Request schema for self-service cancellation."""

    reason: Optional[str] = Field(None, max_length=500)


class _CamelResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderItemResponse(_CamelResponse):
    """Order line response."""

    product: str
    name: str
    presentation: str
    presentation_size: Optional[str] = None
    quantity: int
    price: float
    total: float


class OrderResponse(_CamelResponse):
    """Complete order response schema."""

    id: str
    order_number: str = Field(..., alias="orderId")
    user_id: str = Field(..., alias="user")
    items: list[OrderItemResponse]
    shipping_address: dict[str, Any]
    payment_method: str
    payment_status: str
    order_status: str
    total_amount: float
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    cancellation_reason: Optional[str] = None
    rejection_reason: Optional[str] = None
    expected_delivery: Optional[str] = None
    shipped_at: Optional[str] = None
    delivered_at: Optional[str] = None
    cancelled_at: Optional[str] = None
    rejected_at: Optional[str] = None
    created_at: Optional[str] = None


class OrderCreatedResponse(OrderResponse):
    """Created order with the gateway order the client opens checkout with."""

    razorpay_order: Optional[dict[str, Any]] = None


class PaymentVerificationResponse(_CamelResponse):
    message: str
    order: OrderResponse


class OrderListResponse(_CamelResponse):
    """Paginated order list."""

    orders: list[OrderResponse]
    total: int
    skip: int
    limit: int
