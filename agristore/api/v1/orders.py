"""
Order API endpoints.

This module implements the FastAPI router for order placement, Razorpay
payment verification, order lookup and the order lifecycle operations.
Service and gateway failures are translated to HTTP status codes here;
anything unexpected is logged and returned as a generic 500.
"""

from typing import NoReturn, Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from agristore.api.deps import (
    CurrentAdmin,
    CurrentUser,
    DatabaseSession,
    PaymentGateway,
)
from agristore.core.logging import get_logger
from agristore.database.unit_of_work import TransactionError
from agristore.schemas.orders import (
    OrderCancelRequest,
    OrderCreatedResponse,
    OrderCreateRequest,
    OrderListResponse,
    OrderResponse,
    OrderStatusUpdateRequest,
    PaymentVerificationRequest,
    PaymentVerificationResponse,
)
from agristore.services.inventory.ledger import InventoryError
from agristore.services.orders.enums import OrderStatus
from agristore.services.orders.repository import OrderRepositoryError
from agristore.services.orders.service import (
    OrderAccessDeniedError,
    OrderNotFoundError,
    OrderService,
    OrderServiceError,
    OrderStateError,
    OrderValidationError,
    PaymentVerificationError,
)
from agristore.services.payments.razorpay_client import PaymentGatewayError

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

HANDLED_ERRORS = (
    OrderServiceError,
    InventoryError,
    PaymentGatewayError,
    TransactionError,
    OrderRepositoryError,
)

FAILURE_DETAILS = {
    "create_order": "Failed to save order",
    "verify_payment": "Failed to verify payment",
    "list_my_orders": "Failed to fetch orders",
    "list_orders": "Failed to fetch orders",
    "get_order": "Failed to fetch order",
    "update_order_status": "Failed to update order status",
    "cancel_order": "Failed to cancel order",
}


def _raise_http_error(error: Exception, operation: str) -> NoReturn:
    """Translate a workflow error into an HTTPException."""
    if isinstance(
        error,
        (OrderValidationError, OrderStateError, PaymentVerificationError, InventoryError),
    ):
        status_code = status.HTTP_400_BAD_REQUEST
        detail = str(error)
    elif isinstance(error, OrderNotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
        detail = str(error)
    elif isinstance(error, OrderAccessDeniedError):
        status_code = status.HTTP_403_FORBIDDEN
        detail = str(error)
    elif isinstance(error, PaymentGatewayError):
        status_code = status.HTTP_502_BAD_GATEWAY
        detail = str(error)
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        detail = FAILURE_DETAILS.get(operation, "Order request failed")

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "Order request failed",
        operation=operation,
        status_code=status_code,
        error=str(error),
        error_type=type(error).__name__,
        context=getattr(error, "context", None),
    )
    raise HTTPException(status_code=status_code, detail=detail) from error


@router.post(
    "",
    response_model=OrderCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create new order",
)
async def create_order(
    request: OrderCreateRequest,
    current_user: CurrentUser,
    db: DatabaseSession,
    gateway: PaymentGateway,
) -> OrderCreatedResponse:
    """
    Place an order for the authenticated user.

    Raises:
        HTTPException: 400 on validation or stock failures, 502 if the
            payment gateway fails, 500 if the order cannot be saved
    """
    order_service = OrderService(db, gateway)
    try:
        order = await order_service.create_order(
            user_id=current_user.id,
            items=[item.model_dump() for item in request.items],
            shipping_address_id=request.shipping_address,
            payment_method=request.payment_method,
        )
    except HANDLED_ERRORS as e:
        _raise_http_error(e, "create_order")

    return OrderCreatedResponse(**order)


@router.post(
    "/verify-payment",
    response_model=PaymentVerificationResponse,
    summary="Verify Razorpay payment",
)
async def verify_payment(
    request: PaymentVerificationRequest,
    current_user: CurrentUser,
    db: DatabaseSession,
    gateway: PaymentGateway,
) -> PaymentVerificationResponse:
    """
    Confirm a payment with the signature returned by the checkout widget.

    Raises:
        HTTPException: 400 on missing fields or signature mismatch, 404 if
            the order is unknown
    """
    order_service = OrderService(db, gateway)
    try:
        order = await order_service.verify_payment(
            razorpay_payment_id=request.razorpay_payment_id,
            razorpay_order_id=request.razorpay_order_id,
            razorpay_signature=request.razorpay_signature,
            order_number=request.order_id,
        )
    except HANDLED_ERRORS as e:
        _raise_http_error(e, "verify_payment")

    logger.info(
        "Payment verified",
        order_number=order["order_number"],
        user_id=str(current_user.id),
    )
    return PaymentVerificationResponse(
        message="Payment verified successfully",
        order=OrderResponse(**order),
    )


@router.get(
    "/myorders",
    response_model=OrderListResponse,
    summary="List my orders",
)
async def list_my_orders(
    current_user: CurrentUser,
    db: DatabaseSession,
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(20, ge=1, le=100, description="Maximum number of records to return"),
) -> OrderListResponse:
    order_service = OrderService(db)
    try:
        result = await order_service.list_user_orders(
            user_id=current_user.id, skip=skip, limit=limit
        )
    except HANDLED_ERRORS as e:
        _raise_http_error(e, "list_my_orders")

    return OrderListResponse(**result)


@router.get(
    "",
    response_model=OrderListResponse,
    summary="List all orders",
)
async def list_orders(
    current_admin: CurrentAdmin,
    db: DatabaseSession,
    status_filter: Optional[OrderStatus] = Query(
        None, alias="status", description="Filter by order status"
    ),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
) -> OrderListResponse:
    """List every order, newest first. Admin only."""
    order_service = OrderService(db)
    try:
        result = await order_service.list_orders(
            status=status_filter, skip=skip, limit=limit
        )
    except HANDLED_ERRORS as e:
        _raise_http_error(e, "list_orders")

    return OrderListResponse(**result)


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order details",
)
async def get_order(
    order_id: UUID,
    current_user: CurrentUser,
    db: DatabaseSession,
) -> OrderResponse:
    """
    Get an order owned by the caller, or any order for admins.

    Raises:
        HTTPException: 404 if not found, 403 if neither owner nor admin
    """
    order_service = OrderService(db)
    try:
        order = await order_service.get_order(order_id, requester=current_user)
    except HANDLED_ERRORS as e:
        _raise_http_error(e, "get_order")

    return OrderResponse(**order)


@router.put(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Update order status",
)
async def update_order_status(
    order_id: UUID,
    request: OrderStatusUpdateRequest,
    current_admin: CurrentAdmin,
    db: DatabaseSession,
) -> OrderResponse:
    """
    Move an order to its next status. Admin only.

    Raises:
        HTTPException: 400 on an invalid transition, 404 if not found
    """
    if not request.status:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Status is required",
        )

    order_service = OrderService(db)
    try:
        order = await order_service.update_order_status(
            order_id=order_id,
            new_status=request.status,
            reason=request.reason,
            user_id=current_admin.id,
        )
    except HANDLED_ERRORS as e:
        _raise_http_error(e, "update_order_status")

    logger.info(
        "Order status updated",
        order_id=str(order_id),
        order_status=order["order_status"],
        admin_id=str(current_admin.id),
    )
    return OrderResponse(**order)


@router.put(
    "/{order_id}/cancel",
    response_model=OrderResponse,
    summary="Cancel order",
)
async def cancel_order(
    order_id: UUID,
    current_user: CurrentUser,
    db: DatabaseSession,
    request: Optional[OrderCancelRequest] = None,
) -> OrderResponse:
    """
    Cancel one of the caller's orders.

    Raises:
        HTTPException: 400 if the order can no longer be cancelled, 404 if
            it does not exist or belongs to someone else
    """
    order_service = OrderService(db)
    try:
        order = await order_service.cancel_order(
            order_id=order_id,
            user_id=current_user.id,
            reason=request.reason if request else None,
        )
    except HANDLED_ERRORS as e:
        _raise_http_error(e, "cancel_order")

    return OrderResponse(**order)
