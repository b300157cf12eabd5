"""Checkout and payment gateway API router."""
import json
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from auth import optional_user_id
from database import get_db
from dependencies import get_order_service, get_webhook_secret
from exceptions import CheckoutError, PaymentNotCompleted, WebhookSignatureError
from monitoring import webhook_events_counter, webhook_signature_failures_counter
from schemas import (
    CheckoutConfirmRequest,
    CheckoutConfirmResponse,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    WebhookAck
)
from services.order_service import OrderService
from services.payment_gateway import require_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payment"])


@router.post("/checkout-session", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    request: CheckoutSessionRequest,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(optional_user_id),
    order_service: OrderService = Depends(get_order_service)
):
    """Validate the cart and open a payment session. Guests are allowed."""
    try:
        result = await order_service.create_checkout_session(db, user_id, request)
    except CheckoutError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return {
        "success": True,
        "message": "Checkout session created",
        **result
    }


@router.post("/checkout-confirm", response_model=CheckoutConfirmResponse)
async def confirm_checkout(
    request: CheckoutConfirmRequest,
    db: Session = Depends(get_db),
    user_id: Optional[str] = Depends(optional_user_id),
    order_service: OrderService = Depends(get_order_service)
):
    """Verify payment with the gateway and create the order."""
    try:
        result = await order_service.confirm_checkout(
            db,
            request.orderId,
            requester_id=user_id,
            trigger="client"
        )
    except PaymentNotCompleted as e:
        raise HTTPException(
            status_code=e.status_code,
            detail={"message": e.message, "status": e.payment_status}
        )
    except CheckoutError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    message = "Payment verified and order created" if result["created"] else "Order already processed"
    return {"success": True, "message": message, "order": result["order"]}


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    order_service: OrderService = Depends(get_order_service),
    secret: str = Depends(get_webhook_secret),
    x_webhook_timestamp: Optional[str] = Header(None),
    x_webhook_signature: Optional[str] = Header(None)
):
    """
    Payment gateway webhook.

    Always acknowledged with 200 so the gateway does not retry, except when the
    signature is invalid (401). Processing failures are logged and counted.
    """
    raw_body = await request.body()

    if secret or x_webhook_timestamp or x_webhook_signature:
        try:
            require_webhook_signature(raw_body, x_webhook_timestamp, x_webhook_signature, secret)
        except WebhookSignatureError as e:
            webhook_signature_failures_counter.add(1)
            logger.warning("Webhook signature mismatch, rejecting request", extra={
                "has_timestamp": x_webhook_timestamp is not None,
                "has_signature": x_webhook_signature is not None
            })
            raise HTTPException(status_code=e.status_code, detail=e.message)
    else:
        logger.warning("Webhook secret not configured, accepting unsigned webhook")

    try:
        payload = json.loads(raw_body or b"{}")
    except ValueError:
        logger.warning("Webhook body is not valid JSON")
        return {"success": True, "message": "Webhook acknowledged"}

    logger.info("Webhook received", extra={
        "type": payload.get("type") if isinstance(payload, dict) else None
    })

    try:
        outcome = await order_service.handle_webhook(db, payload)
    except Exception as e:
        webhook_events_counter.add(1, {"type": "unknown", "outcome": "error"})
        logger.exception("Webhook processing failed", extra={"error": str(e)})
        db.rollback()
        return {"success": True, "message": "Webhook received"}

    return {"success": True, "message": f"Webhook processed: {outcome}"}
