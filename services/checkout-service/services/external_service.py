"""Email and shipping provider clients."""
import html
import httpx
import logging
import time
from typing import Dict, Any, Optional

from config import (
    MAIL_API_KEY,
    MAIL_API_URL,
    MAIL_FROM,
    SHIPPING_API_TOKEN,
    SHIPPING_API_URL,
    SHIPPING_PICKUP_LOCATION,
    frontend_base_url
)
from monitoring import dispatch_counter

logger = logging.getLogger(__name__)


def _money(amount: float) -> str:
    return f"₹{amount:,.0f}" if float(amount).is_integer() else f"₹{amount:,.2f}"


def render_order_confirmation(order: Dict[str, Any]) -> str:
    rows = "".join(
        f"<tr><td>{html.escape(item.get('name') or '')}</td>"
        f"<td>{item['quantity']}</td><td>{_money(item['price'])}</td></tr>"
        for item in order["items"]
    )
    customer = order["customer_details"]
    shipping = "FREE" if not order["shipping"] else _money(order["shipping"])
    return (
        f"<h2>Order Confirmed</h2>"
        f"<p>Hi <strong>{html.escape(customer.get('name', ''))}</strong>, thanks for your order "
        f"#{order['id']}.</p>"
        f"<p>Payment reference: {html.escape(str(order.get('gateway_payment_id') or order['gateway_order_id']))}</p>"
        f"<table><tr><th>Item</th><th>Qty</th><th>Price</th></tr>{rows}</table>"
        f"<p>Subtotal: {_money(order['subtotal'])}<br>GST: {_money(order['tax'])}<br>"
        f"Shipping: {shipping}<br><strong>Total: {_money(order['total_amount'])}</strong></p>"
        f"<p><a href=\"{frontend_base_url()}/orders\">View your orders</a></p>"
    )


def render_shipping_update(order: Dict[str, Any]) -> str:
    customer = order["customer_details"]
    tracking = order.get("tracking_url")
    tracking_html = (
        f"<p><a href=\"{html.escape(tracking)}\">Track your package</a></p>" if tracking else ""
    )
    return (
        f"<h2>Your order has shipped</h2>"
        f"<p>Hi <strong>{html.escape(customer.get('name', ''))}</strong>, order #{order['id']} "
        f"is on its way.</p>{tracking_html}"
    )


class ExternalServiceClient:
    """Client for the email and shipping providers."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        mail_api_key: str = MAIL_API_KEY,
        shipping_api_token: str = SHIPPING_API_TOKEN
    ):
        """
        Initialize external service client.

        Args:
            http_client: Async HTTP client
            mail_api_key: Email provider API key; empty disables email
            shipping_api_token: Shipping provider token; empty disables shipments
        """
        self.http_client = http_client
        self.mail_api_key = mail_api_key
        self.shipping_api_token = shipping_api_token

    async def send_email(self, to: str, subject: str, body_html: str) -> Optional[Dict[str, Any]]:
        """
        Send a transactional email.

        Returns:
            Provider response, or None when email is not configured

        Raises:
            httpx.HTTPError: If the provider rejects the request or is unreachable
        """
        if not self.mail_api_key:
            logger.warning("Email transport not configured, skipping email", extra={
                "subject": subject
            })
            return None

        start_time = time.time()
        status = "success"
        try:
            response = await self.http_client.post(
                MAIL_API_URL,
                headers={"Authorization": f"Bearer {self.mail_api_key}"},
                json={
                    "from": MAIL_FROM,
                    "to": [to],
                    "subject": subject,
                    "html": body_html
                }
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError:
            status = "error"
            raise
        finally:
            dispatch_counter.add(1, {"job": "email", "status": status})
            logger.debug("Email provider call finished", extra={
                "status": status,
                "duration_ms": int((time.time() - start_time) * 1000)
            })

    async def send_order_confirmation(self, order: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self.send_email(
            order["customer_details"]["email"],
            f"Order Confirmed - XRoboFly #{order['id']}",
            render_order_confirmation(order)
        )

    async def send_shipping_update(self, order: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self.send_email(
            order["customer_details"]["email"],
            f"Your XRoboFly order #{order['id']} has shipped",
            render_shipping_update(order)
        )

    async def create_shipment(self, order: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Create a shipment with the shipping provider.

        Returns:
            Provider response, or None when shipping is not configured

        Raises:
            httpx.HTTPError: If the provider rejects the request or is unreachable
        """
        if not self.shipping_api_token:
            logger.warning("Shipping provider not configured, skipping shipment", extra={
                "order_id": order["id"]
            })
            return None

        address = order["shipping_address"]
        customer = order["customer_details"]
        payload = {
            "order_id": str(order["id"]),
            "order_date": (order.get("created_at") or "")[:10],
            "pickup_location": SHIPPING_PICKUP_LOCATION,
            "billing_customer_name": address.get("fullName") or customer.get("name"),
            "billing_address": address.get("addressLine1"),
            "billing_address_2": address.get("addressLine2") or "",
            "billing_city": address.get("city"),
            "billing_pincode": address.get("pincode"),
            "billing_state": address.get("state"),
            "billing_country": address.get("country", "India"),
            "billing_email": customer.get("email"),
            "billing_phone": address.get("phone") or customer.get("phone"),
            "shipping_is_billing": True,
            "order_items": [
                {
                    "name": item.get("name") or f"Product {item['product_id']}",
                    "sku": str(item["product_id"]),
                    "units": item["quantity"],
                    "selling_price": item["price"]
                }
                for item in order["items"]
            ],
            "payment_method": "Prepaid",
            "sub_total": order["total_amount"]
        }

        status = "success"
        try:
            response = await self.http_client.post(
                f"{SHIPPING_API_URL}/orders/create/adhoc",
                headers={"Authorization": f"Bearer {self.shipping_api_token}"},
                json=payload
            )
            response.raise_for_status()
            data = response.json()
            logger.info("Shipment created", extra={
                "order_id": order["id"],
                "shipment_id": data.get("shipment_id")
            })
            return data
        except httpx.HTTPError:
            status = "error"
            raise
        finally:
            dispatch_counter.add(1, {"job": "shipment", "status": status})
