"""
Razorpay API client.

Wraps the two gateway calls the order workflow needs: creating a remote
order before checkout, and verifying the signature the checkout widget
returns after payment. Remote order creation is never retried; a failure
aborts order placement before anything is written.
"""

import hashlib
import hmac
from typing import Any, Optional

import httpx
from fastapi import Request

from agristore.core.config import get_settings
from agristore.core.logging import get_logger, log_performance

logger = get_logger(__name__)


class PaymentGatewayError(Exception):
    """Raised when the payment provider cannot be reached or rejects a call."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.context = context


def compute_signature(remote_order_id: str, remote_payment_id: str, secret: str) -> str:
    """HMAC-SHA256 hex digest of ``"<order_id>|<payment_id>"`` keyed by ``secret``."""
    message = f"{remote_order_id}|{remote_payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_signature(
    remote_order_id: str,
    remote_payment_id: str,
    client_signature: str,
    secret: str,
) -> bool:
    """
    Check a checkout signature against the expected HMAC.

    Args:
        remote_order_id: Gateway order id
        remote_payment_id: Gateway payment id
        client_signature: Signature returned to the client by the gateway
        secret: Shared key secret

    Returns:
        True if the signature matches exactly. Always False without a secret.
    """
    if not client_signature or not secret:
        return False
    expected = compute_signature(remote_order_id, remote_payment_id, secret)
    return hmac.compare_digest(expected, client_signature)


class RazorpayClient:
    """
    Async Razorpay client.

    One instance is created at application startup and shared by all
    requests; its connection pool is closed on shutdown.
    """

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            key_id: API key id (defaults to settings)
            key_secret: API key secret, also the signature secret (defaults to settings)
            base_url: API base URL (defaults to settings)
            timeout: Request timeout in seconds (defaults to settings)
            transport: Optional httpx transport, used by tests
        """
        settings = get_settings()
        self.key_id = key_id if key_id is not None else settings.razorpay_key_id
        self.key_secret = (
            key_secret if key_secret is not None else settings.razorpay_key_secret
        )
        self.base_url = (base_url or settings.razorpay_base_url).rstrip("/")
        self.timeout = timeout or settings.razorpay_timeout_seconds

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.key_id, self.key_secret),
            timeout=self.timeout,
            transport=transport,
        )

        logger.info(
            "Razorpay client initialized",
            base_url=self.base_url,
            timeout=self.timeout,
        )

    async def create_order(
        self,
        amount_minor_units: int,
        currency: str,
        receipt: str,
    ) -> dict[str, Any]:
        """
        Create a remote order for the checkout widget.

        Args:
            amount_minor_units: Amount in the currency's minor unit (paise for INR)
            currency: ISO currency code
            receipt: Merchant receipt id, the order number

        Returns:
            Remote order as returned by the gateway (``id``, ``amount``, ...)

        Raises:
            PaymentGatewayError: On any network or API failure
        """
        if amount_minor_units <= 0:
            raise PaymentGatewayError(
                "Order amount must be positive",
                code="INVALID_AMOUNT",
                amount=amount_minor_units,
            )

        payload = {
            "amount": amount_minor_units,
            "currency": currency,
            "receipt": receipt,
            "payment_capture": 1,
        }

        try:
            with log_performance(
                logger,
                "razorpay_create_order",
                receipt=receipt,
                amount=amount_minor_units,
            ):
                response = await self._client.post("/orders", json=payload)
                response.raise_for_status()
                remote_order = response.json()

        except httpx.HTTPStatusError as e:
            description = self._error_description(e.response)
            logger.error(
                "Razorpay rejected order creation",
                receipt=receipt,
                status_code=e.response.status_code,
                description=description,
            )
            raise PaymentGatewayError(
                description,
                code="GATEWAY_REJECTED",
                status_code=e.response.status_code,
                receipt=receipt,
            ) from e

        except httpx.RequestError as e:
            logger.error(
                "Razorpay request failed",
                receipt=receipt,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PaymentGatewayError(
                f"Payment gateway unreachable: {type(e).__name__}",
                code="GATEWAY_UNREACHABLE",
                receipt=receipt,
            ) from e

        except ValueError as e:
            logger.error("Razorpay returned invalid JSON", receipt=receipt)
            raise PaymentGatewayError(
                "Payment gateway returned an invalid response",
                code="INVALID_RESPONSE",
                receipt=receipt,
            ) from e

        if not isinstance(remote_order, dict) or "id" not in remote_order:
            raise PaymentGatewayError(
                "Payment gateway returned an invalid response",
                code="INVALID_RESPONSE",
                receipt=receipt,
            )

        logger.info(
            "Razorpay order created",
            razorpay_order_id=remote_order["id"],
            receipt=receipt,
            amount=amount_minor_units,
            currency=currency,
        )
        return remote_order

    def verify_signature(
        self,
        remote_order_id: str,
        remote_payment_id: str,
        client_signature: str,
    ) -> bool:
        """Verify a checkout signature with this client's key secret."""
        return verify_signature(
            remote_order_id,
            remote_payment_id,
            client_signature,
            self.key_secret,
        )

    @staticmethod
    def _error_description(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return f"Payment gateway error (HTTP {response.status_code})"
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("description"):
            return str(error["description"])
        return f"Payment gateway error (HTTP {response.status_code})"

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("Razorpay client closed")


def get_payment_gateway(request: Request) -> Optional[RazorpayClient]:
    """FastAPI dependency returning the client created in the app lifespan, if any."""
    return getattr(request.app.state, "payment_gateway", None)
