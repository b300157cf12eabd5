"""Payment gateway adapter (Cashfree-compatible PG API)."""
import base64
import hashlib
import hmac
import logging
import time
from typing import Any, Dict, List, Optional, Union

import httpx

from config import (
    GATEWAY_TIMEOUT_SECONDS,
    PAYMENT_GATEWAY_API_VERSION,
    PAYMENT_GATEWAY_APP_ID,
    PAYMENT_GATEWAY_SECRET_KEY,
    PAYMENT_GATEWAY_URL
)
from exceptions import GatewayError, WebhookSignatureError
from monitoring import gateway_duration_histogram

logger = logging.getLogger(__name__)

PAYMENT_SUCCESS = "SUCCESS"


def sign_webhook_payload(raw_body: Union[bytes, str], timestamp: str, secret: str) -> str:
    """Return ``base64(HMAC-SHA256(timestamp + body))`` keyed with ``secret``."""
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    digest = hmac.new(
        secret.encode("utf-8"),
        timestamp.encode("utf-8") + raw_body,
        hashlib.sha256
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_webhook_signature(
    raw_body: Union[bytes, str],
    timestamp: Optional[str],
    signature: Optional[str],
    secret: str
) -> bool:
    """
    Check a webhook signature against the expected HMAC.

    Any missing input fails verification. The comparison is constant time.
    """
    if not secret or not raw_body or not timestamp or not signature:
        return False
    expected = sign_webhook_payload(raw_body, timestamp, secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))


def require_webhook_signature(
    raw_body: Union[bytes, str],
    timestamp: Optional[str],
    signature: Optional[str],
    secret: str
) -> None:
    """
    Reject a webhook whose signature does not verify.

    Raises:
        WebhookSignatureError: If verification fails
    """
    if not verify_webhook_signature(raw_body, timestamp, signature, secret):
        raise WebhookSignatureError("Invalid signature")


def normalize_payment_method(payment_group: Optional[str]) -> str:
    """Map a gateway payment group onto the order's payment method."""
    if not payment_group:
        return "online"
    normalized = payment_group.lower()
    if "upi" in normalized:
        return "upi"
    if "card" in normalized or "credit" in normalized or "debit" in normalized:
        return "card"
    if "net" in normalized or "bank" in normalized:
        return "netbanking"
    if "wallet" in normalized:
        return "wallet"
    return "online"


class PaymentGatewayClient:
    """Client for the external payment gateway."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str = PAYMENT_GATEWAY_URL,
        app_id: str = PAYMENT_GATEWAY_APP_ID,
        secret_key: str = PAYMENT_GATEWAY_SECRET_KEY,
        api_version: str = PAYMENT_GATEWAY_API_VERSION,
        timeout: float = GATEWAY_TIMEOUT_SECONDS
    ):
        """
        Initialize payment gateway client.

        Args:
            http_client: Shared async HTTP client
            base_url: Gateway API root
            app_id: Merchant app id
            secret_key: Merchant secret, also used to sign webhooks
            api_version: Value for the ``x-api-version`` header
            timeout: Upper bound in seconds for every gateway call
        """
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.app_id = app_id
        self.secret_key = secret_key
        self.api_version = api_version
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        return {
            "x-client-id": self.app_id,
            "x-client-secret": self.secret_key,
            "x-api-version": self.api_version,
            "accept": "application/json"
        }

    async def _request(self, operation: str, method: str, path: str, **kwargs) -> Any:
        start_time = time.time()
        status = "success"
        status_code = None
        try:
            response = await self.http_client.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers(),
                timeout=self.timeout,
                **kwargs
            )
            status_code = response.status_code
            if response.status_code >= 400:
                status = "error"
                logger.error("Payment gateway returned error status", extra={
                    "operation": operation,
                    "status_code": response.status_code,
                    "body": response.text[:500]
                })
                raise GatewayError(
                    f"Payment gateway {operation} failed with status {response.status_code}"
                )
            return response.json()
        except httpx.HTTPError as e:
            status = "error"
            status_code = 0  # Connection failure or timeout
            logger.error("Payment gateway unreachable", extra={
                "operation": operation,
                "error": str(e)
            })
            raise GatewayError(f"Payment gateway {operation} failed: {e}") from e
        except ValueError as e:
            status = "error"
            logger.error("Payment gateway returned malformed JSON", extra={
                "operation": operation,
                "error": str(e)
            })
            raise GatewayError(f"Payment gateway {operation} returned an invalid response") from e
        finally:
            gateway_duration_histogram.record(
                time.time() - start_time,
                {
                    "operation": operation,
                    "status": status,
                    "status_code": str(status_code) if status_code else "0"
                }
            )

    async def create_session(
        self,
        amount: float,
        currency: str,
        order_id: str,
        customer: Dict[str, str],
        return_url: str,
        notify_url: str,
        note: Optional[str] = None
    ) -> Dict[str, str]:
        """
        Create a gateway order and payment session.

        Args:
            amount: Amount to charge
            currency: ISO currency code
            order_id: Our gateway order id
            customer: ``customer_id``, ``customer_name``, ``customer_email``,
                ``customer_phone``
            return_url: Where the gateway sends the shopper afterwards
            notify_url: Webhook endpoint

        Returns:
            ``{"order_id": ..., "payment_session_id": ...}``

        Raises:
            GatewayError: On network failure, timeout, or a non-2xx response
        """
        payload = {
            "order_amount": amount,
            "order_currency": currency,
            "order_id": order_id,
            "customer_details": customer,
            "order_meta": {
                "return_url": return_url,
                "notify_url": notify_url
            }
        }
        if note:
            payload["order_note"] = note

        data = await self._request("create_order", "POST", "/orders", json=payload)
        session_id = data.get("payment_session_id") if isinstance(data, dict) else None
        if not session_id:
            raise GatewayError("Payment gateway did not return a payment session")

        return {
            "order_id": data.get("order_id") or order_id,
            "payment_session_id": session_id
        }

    async def fetch_payment_status(self, order_id: str) -> List[Dict[str, Any]]:
        """
        Fetch payment attempts for an order, most recent first.

        Raises:
            GatewayError: On network failure, timeout, or a non-2xx response
        """
        data = await self._request("fetch_payments", "GET", f"/orders/{order_id}/payments")
        if isinstance(data, dict):
            data = data.get("data") or []
        payments = [payment for payment in data if isinstance(payment, dict)]
        return sorted(
            payments,
            key=lambda payment: payment.get("payment_time") or "",
            reverse=True
        )
