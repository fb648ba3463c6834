"""
Integration tests for the order API endpoints.

Requests run through the real application with the database dependency
pointed at the per-test SQLite database and the payment gateway dependency
pointed at the mocked Razorpay client.
"""

from typing import AsyncGenerator
from uuid import uuid4

import pytest
from fastapi import status
from httpx import ASGITransport, AsyncClient

from agristore.database.connection import get_db
from agristore.database.unit_of_work import TransactionError
from agristore.main import app
from agristore.services.orders.repository import OrderRepositoryError
from agristore.services.orders.service import OrderService
from agristore.services.payments.razorpay_client import get_payment_gateway

ORDERS_URL = "/api/v1/orders"


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def gateway(razorpay_client):
    return razorpay_client


@pytest.fixture
async def client(session_factory, gateway) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the application with test dependencies."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as http_client:
        yield http_client

    app.dependency_overrides.clear()


@pytest.fixture
def customer_headers(seeded, auth_headers):
    return auth_headers(seeded.customer_id)


@pytest.fixture
def other_headers(seeded, auth_headers):
    return auth_headers(seeded.other_customer_id)


@pytest.fixture
def admin_headers(seeded, auth_headers):
    return auth_headers(seeded.admin_id)


def order_payload(seeded, method="COD", quantity=2, product_id=None):
    return {
        "items": [{"product": str(product_id or seeded.urea_id), "quantity": quantity}],
        "shippingAddress": str(seeded.address_id),
        "paymentMethod": method,
    }


async def create_order(client, seeded, headers, **kwargs) -> dict:
    response = await client.post(
        ORDERS_URL, json=order_payload(seeded, **kwargs), headers=headers
    )
    assert response.status_code == status.HTTP_201_CREATED, response.text
    return response.json()


# ============================================================================
# Authentication Tests
# ============================================================================


class TestAuthentication:
    """Test bearer token handling."""

    async def test_missing_token_rejected(self, client, seeded):
        response = await client.post(ORDERS_URL, json=order_payload(seeded))

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"] == "Not authorized, token failed"

    async def test_garbage_token_rejected(self, client, seeded):
        response = await client.get(
            f"{ORDERS_URL}/myorders", headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_token_for_unknown_user_rejected(self, client, seeded, auth_headers):
        response = await client.get(
            f"{ORDERS_URL}/myorders", headers=auth_headers(uuid4())
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_admin_routes_reject_customers(self, client, customer_headers):
        response = await client.get(ORDERS_URL, headers=customer_headers)

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["detail"] == "Not authorized as an admin"

    async def test_request_id_echoed(self, client, customer_headers):
        response = await client.get(
            f"{ORDERS_URL}/myorders",
            headers={**customer_headers, "X-Request-ID": "req-123"},
        )

        assert response.headers["X-Request-ID"] == "req-123"


# ============================================================================
# Order Creation Tests
# ============================================================================


class TestCreateOrderEndpoint:
    """Test POST /orders."""

    async def test_cod_order_created(self, client, seeded, customer_headers, stock_of):
        body = await create_order(client, seeded, customer_headers)

        assert body["orderId"].startswith("ORD-")
        assert body["user"] == str(seeded.customer_id)
        assert body["totalAmount"] == 180.0
        assert body["orderStatus"] == "Processing"
        assert body["paymentStatus"] == "Pending"
        assert body["paymentMethod"] == "COD"
        assert body["razorpayOrder"] is None
        assert body["shippingAddress"]["pin_code"] == "141001"
        assert body["items"] == [
            {
                "product": str(seeded.urea_id),
                "name": "Urea Plus",
                "presentation": "Granules",
                "presentationSize": "1kg",
                "quantity": 2,
                "price": 90.0,
                "total": 180.0,
            }
        ]
        assert await stock_of(seeded.urea_id) == 3

    async def test_razorpay_order_created(
        self, client, seeded, customer_headers, gateway_requests
    ):
        body = await create_order(client, seeded, customer_headers, method="Razorpay")

        assert body["paymentStatus"] == "Processing"
        assert body["razorpayOrder"]["amount"] == 18000
        assert body["razorpayOrder"]["receipt"] == body["orderId"]
        assert body["razorpayOrderId"] == body["razorpayOrder"]["id"]
        assert len(gateway_requests) == 1

    async def test_insufficient_stock(self, client, seeded, customer_headers, stock_of):
        response = await client.post(
            ORDERS_URL, json=order_payload(seeded, quantity=6), headers=customer_headers
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "Only 5 available" in response.json()["detail"]
        assert await stock_of(seeded.urea_id) == 5

    async def test_empty_items(self, client, seeded, customer_headers):
        payload = order_payload(seeded)
        payload["items"] = []

        response = await client.post(ORDERS_URL, json=payload, headers=customer_headers)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "No order items"

    @pytest.mark.parametrize("quantity", [True, "2", 2.0, 0, None])
    async def test_malformed_quantity_rejected(
        self, client, seeded, customer_headers, stock_of, quantity
    ):
        response = await client.post(
            ORDERS_URL,
            json=order_payload(seeded, quantity=quantity),
            headers=customer_headers,
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "Item quantity must be a positive integer"
        assert await stock_of(seeded.urea_id) == 5

    async def test_missing_quantity_rejected(
        self, client, seeded, customer_headers, stock_of
    ):
        payload = order_payload(seeded)
        del payload["items"][0]["quantity"]

        response = await client.post(ORDERS_URL, json=payload, headers=customer_headers)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert await stock_of(seeded.urea_id) == 5

    async def test_unknown_payment_method(self, client, seeded, customer_headers):
        response = await client.post(
            ORDERS_URL,
            json=order_payload(seeded, method="Barter"),
            headers=customer_headers,
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    async def test_inactive_product(self, client, seeded, customer_headers):
        response = await client.post(
            ORDERS_URL,
            json=order_payload(seeded, product_id=seeded.retired_id, quantity=1),
            headers=customer_headers,
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "not available" in response.json()["detail"]

    async def test_someone_elses_address(self, client, seeded, other_headers):
        response = await client.post(
            ORDERS_URL, json=order_payload(seeded), headers=other_headers
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    async def test_unexpected_failure_is_generic_500(
        self, client, seeded, customer_headers, monkeypatch
    ):
        async def broken(self, **kwargs):
            raise TransactionError("commit failed", transaction="create_order")

        monkeypatch.setattr(OrderService, "create_order", broken)

        response = await client.post(
            ORDERS_URL, json=order_payload(seeded), headers=customer_headers
        )

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["detail"] == "Failed to save order"


class TestGatewayFailure:
    """Test POST /orders when the gateway rejects the order."""

    @pytest.fixture
    def gateway(self, failing_razorpay_client):
        return failing_razorpay_client

    async def test_gateway_rejection_is_bad_gateway(
        self, client, seeded, customer_headers, stock_of
    ):
        response = await client.post(
            ORDERS_URL,
            json=order_payload(seeded, method="Razorpay"),
            headers=customer_headers,
        )

        assert response.status_code == status.HTTP_502_BAD_GATEWAY
        assert "Authentication failed" in response.json()["detail"]
        assert await stock_of(seeded.urea_id) == 5


class TestGatewayMissing:
    """Test POST /orders when no gateway client is configured."""

    @pytest.fixture
    def gateway(self):
        return None

    async def test_online_payment_unavailable(self, client, seeded, customer_headers):
        response = await client.post(
            ORDERS_URL,
            json=order_payload(seeded, method="Razorpay"),
            headers=customer_headers,
        )

        assert response.status_code == status.HTTP_502_BAD_GATEWAY

    async def test_cod_still_accepted(self, client, seeded, customer_headers):
        await create_order(client, seeded, customer_headers)


# ============================================================================
# Payment Verification Tests
# ============================================================================


class TestVerifyPaymentEndpoint:
    """Test POST /orders/verify-payment."""

    async def test_valid_signature(self, client, seeded, customer_headers, sign):
        order = await create_order(client, seeded, customer_headers, method="Razorpay")

        response = await client.post(
            f"{ORDERS_URL}/verify-payment",
            json={
                "razorpay_payment_id": "pay_abc",
                "razorpay_order_id": order["razorpayOrderId"],
                "razorpay_signature": sign(order["razorpayOrderId"], "pay_abc"),
                "orderId": order["orderId"],
            },
            headers=customer_headers,
        )

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["message"] == "Payment verified successfully"
        assert body["order"]["paymentStatus"] == "Success"
        assert body["order"]["razorpayPaymentId"] == "pay_abc"

    async def test_bad_signature(self, client, seeded, customer_headers):
        order = await create_order(client, seeded, customer_headers, method="Razorpay")

        response = await client.post(
            f"{ORDERS_URL}/verify-payment",
            json={
                "razorpay_payment_id": "pay_abc",
                "razorpay_order_id": order["razorpayOrderId"],
                "razorpay_signature": "0" * 64,
                "orderId": order["orderId"],
            },
            headers=customer_headers,
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "Payment verification failed"

    async def test_missing_fields(self, client, seeded, customer_headers):
        response = await client.post(
            f"{ORDERS_URL}/verify-payment",
            json={"razorpay_payment_id": "pay_abc"},
            headers=customer_headers,
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    async def test_unknown_order(self, client, seeded, customer_headers):
        response = await client.post(
            f"{ORDERS_URL}/verify-payment",
            json={
                "razorpay_payment_id": "pay_abc",
                "razorpay_order_id": "order_abc",
                "razorpay_signature": "sig",
                "orderId": "ORD-20240101000000-FFFFFF",
            },
            headers=customer_headers,
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND


# ============================================================================
# Read Endpoint Tests
# ============================================================================


class TestReadEndpoints:
    """Test the listing and detail endpoints."""

    async def test_my_orders(self, client, seeded, customer_headers, other_headers):
        order = await create_order(client, seeded, customer_headers)

        mine = await client.get(f"{ORDERS_URL}/myorders", headers=customer_headers)
        theirs = await client.get(f"{ORDERS_URL}/myorders", headers=other_headers)

        assert mine.status_code == status.HTTP_200_OK
        assert [o["id"] for o in mine.json()["orders"]] == [order["id"]]
        assert mine.json()["total"] == 1
        assert theirs.json()["orders"] == []

    async def test_admin_lists_all_with_filter(
        self, client, seeded, customer_headers, admin_headers
    ):
        order = await create_order(client, seeded, customer_headers)

        everything = await client.get(ORDERS_URL, headers=admin_headers)
        shipped = await client.get(
            ORDERS_URL, params={"status": "Shipped"}, headers=admin_headers
        )

        assert everything.status_code == status.HTTP_200_OK
        assert [o["id"] for o in everything.json()["orders"]] == [order["id"]]
        assert shipped.json()["total"] == 0

    async def test_get_order_visibility(
        self, client, seeded, customer_headers, other_headers, admin_headers
    ):
        order = await create_order(client, seeded, customer_headers)
        url = f"{ORDERS_URL}/{order['id']}"

        assert (await client.get(url, headers=customer_headers)).status_code == 200
        assert (await client.get(url, headers=admin_headers)).status_code == 200
        assert (await client.get(url, headers=other_headers)).status_code == 403

    async def test_get_unknown_order(self, client, customer_headers):
        response = await client.get(f"{ORDERS_URL}/{uuid4()}", headers=customer_headers)

        assert response.status_code == status.HTTP_404_NOT_FOUND

    async def test_get_malformed_id(self, client, customer_headers):
        response = await client.get(f"{ORDERS_URL}/not-a-uuid", headers=customer_headers)

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    @pytest.mark.parametrize(
        "method_name,path,detail",
        [
            ("list_user_orders", "/myorders", "Failed to fetch orders"),
            ("get_order", "/{order_id}", "Failed to fetch order"),
        ],
    )
    async def test_read_failure_detail(
        self, client, customer_headers, monkeypatch, method_name, path, detail
    ):
        async def broken(self, *args, **kwargs):
            raise OrderRepositoryError("Failed to list orders")

        monkeypatch.setattr(OrderService, method_name, broken)

        response = await client.get(
            ORDERS_URL + path.format(order_id=uuid4()), headers=customer_headers
        )

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["detail"] == detail


# ============================================================================
# Lifecycle Endpoint Tests
# ============================================================================


class TestLifecycleEndpoints:
    """Test status updates and cancellation."""

    async def test_admin_ships_order(self, client, seeded, customer_headers, admin_headers):
        order = await create_order(client, seeded, customer_headers)

        response = await client.put(
            f"{ORDERS_URL}/{order['id']}/status",
            json={"status": "Shipped"},
            headers=admin_headers,
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["orderStatus"] == "Shipped"
        assert response.json()["shippedAt"] is not None

    async def test_status_required(self, client, seeded, customer_headers, admin_headers):
        order = await create_order(client, seeded, customer_headers)

        response = await client.put(
            f"{ORDERS_URL}/{order['id']}/status", json={}, headers=admin_headers
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "Status is required"

    async def test_invalid_transition(self, client, seeded, customer_headers, admin_headers):
        order = await create_order(client, seeded, customer_headers)

        response = await client.put(
            f"{ORDERS_URL}/{order['id']}/status",
            json={"status": "Delivered"},
            headers=admin_headers,
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    async def test_customer_cannot_update_status(
        self, client, seeded, customer_headers
    ):
        order = await create_order(client, seeded, customer_headers)

        response = await client.put(
            f"{ORDERS_URL}/{order['id']}/status",
            json={"status": "Shipped"},
            headers=customer_headers,
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    async def test_rejection_restores_stock(
        self, client, seeded, customer_headers, admin_headers, stock_of
    ):
        order = await create_order(client, seeded, customer_headers)

        response = await client.put(
            f"{ORDERS_URL}/{order['id']}/status",
            json={"status": "Rejected", "reason": "Unserviceable pin code"},
            headers=admin_headers,
        )

        assert response.json()["rejectionReason"] == "Unserviceable pin code"
        assert await stock_of(seeded.urea_id) == 5

    async def test_owner_cancels_without_body(
        self, client, seeded, customer_headers, stock_of
    ):
        order = await create_order(client, seeded, customer_headers)

        response = await client.put(
            f"{ORDERS_URL}/{order['id']}/cancel", headers=customer_headers
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["orderStatus"] == "Cancelled"
        assert response.json()["cancellationReason"] == "No reason provided"
        assert await stock_of(seeded.urea_id) == 5

    async def test_owner_cancels_with_reason(self, client, seeded, customer_headers):
        order = await create_order(client, seeded, customer_headers)

        response = await client.put(
            f"{ORDERS_URL}/{order['id']}/cancel",
            json={"reason": "Found it cheaper"},
            headers=customer_headers,
        )

        assert response.json()["cancellationReason"] == "Found it cheaper"

    async def test_other_user_cannot_cancel(
        self, client, seeded, customer_headers, other_headers, stock_of
    ):
        order = await create_order(client, seeded, customer_headers)

        response = await client.put(
            f"{ORDERS_URL}/{order['id']}/cancel", headers=other_headers
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert await stock_of(seeded.urea_id) == 3

    async def test_cancelled_order_cannot_be_cancelled_again(
        self, client, seeded, customer_headers
    ):
        order = await create_order(client, seeded, customer_headers)
        url = f"{ORDERS_URL}/{order['id']}/cancel"
        await client.put(url, headers=customer_headers)

        response = await client.put(url, headers=customer_headers)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
