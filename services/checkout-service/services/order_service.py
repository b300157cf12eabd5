"""Checkout and order materialization service."""
import logging
import secrets
import time
from typing import Any, Dict, List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from opentelemetry import trace

from config import BACKEND_URL, ORDER_CURRENCY, ORDER_ID_PREFIX, frontend_base_url
from exceptions import (
    AuthorizationError,
    GatewayError,
    InsufficientStock,
    InvalidStatusTransition,
    OrderNotFound,
    PaymentNotCompleted,
    ProductNotFound,
    SessionExpiredError,
    StockConflict
)
from models import ORDER_STATUSES, Order, OrderItem
from schemas import CheckoutSessionRequest, OrderResponse, Reservation, ReservationLine
from services.catalog_service import CatalogService
from services.inventory_ledger import InventoryLedger
from services.notification_service import NotificationDispatcher
from services.payment_gateway import PAYMENT_SUCCESS, PaymentGatewayClient, normalize_payment_method
from services.pricing import cart_subtotal, price_breakdown
from services.reservation_store import ReservationStore
from monitoring import (
    checkout_amount_histogram,
    checkout_session_counter,
    materialization_counter,
    order_status_transition_counter,
    reservation_miss_counter,
    stock_conflict_counter,
    webhook_events_counter
)

logger = logging.getLogger(__name__)

WEBHOOK_PAYMENT_SUCCESS = "PAYMENT_SUCCESS_WEBHOOK"
WEBHOOK_PAYMENT_FAILED = "PAYMENT_FAILED_WEBHOOK"
WEBHOOK_PAYMENT_DROPPED = "PAYMENT_USER_DROPPED_WEBHOOK"

ALLOWED_TRANSITIONS = {
    "pending": {"processing", "cancelled"},
    "processing": {"shipped", "cancelled"},
    "shipped": {"delivered", "cancelled"},
    "delivered": set(),
    "cancelled": set(),
}

_ORDER_ID_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def generate_gateway_order_id() -> str:
    suffix = "".join(secrets.choice(_ORDER_ID_ALPHABET) for _ in range(9))
    return f"{ORDER_ID_PREFIX}_{int(time.time() * 1000)}_{suffix}"


def serialize_order(order: Order) -> Dict[str, Any]:
    return OrderResponse.model_validate(order).model_dump(mode="json")


class OrderService:
    """
    Turns carts into paid orders.

    Opening a checkout prices the cart, opens a gateway session and stores a
    reservation. Confirmation (client call or webhook) re-verifies payment
    with the gateway and converts the reservation into exactly one order per
    gateway order id, decrementing stock through the inventory ledger.
    """

    def __init__(
        self,
        catalog: CatalogService,
        ledger: InventoryLedger,
        reservations: ReservationStore,
        gateway: PaymentGatewayClient,
        dispatcher: NotificationDispatcher
    ):
        """
        Initialize order service.

        Args:
            catalog: Product lookups
            ledger: Atomic stock decrements
            reservations: Pending checkout store
            gateway: Payment gateway client
            dispatcher: Post-order side effects
        """
        self.catalog = catalog
        self.ledger = ledger
        self.reservations = reservations
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.tracer = trace.get_tracer(__name__)

    async def create_checkout_session(
        self,
        db: Session,
        user_id: Optional[str],
        request: CheckoutSessionRequest
    ) -> Dict[str, Any]:
        """
        Validate the cart, open a gateway session and store a reservation.

        Args:
            db: Database session
            user_id: Authenticated user, None for guests
            request: Customer, address and cart lines

        Returns:
            Payment session id, gateway order id and amount to charge

        Raises:
            ProductNotFound: If a cart line references an unknown product
            InsufficientStock: If a line asks for more than is in stock
            GatewayError: If the gateway session cannot be opened; nothing is
                stored in that case
        """
        span = trace.get_current_span()
        span.set_attribute("checkout.line_count", len(request.products))

        lines: List[ReservationLine] = []
        for item in request.products:
            product = self.catalog.find_by_id(db, item.productId)
            if product is None:
                checkout_session_counter.add(1, {"status": "product_not_found"})
                raise ProductNotFound(
                    f"Product not found: {item.productId}. Please ensure you're using valid product IDs."
                )
            # Advisory only; the ledger makes the authoritative check at materialization.
            if product.stock < item.quantity:
                checkout_session_counter.add(1, {"status": "insufficient_stock"})
                raise InsufficientStock(
                    f"Insufficient stock for {product.name}. Available: {product.stock}"
                )
            lines.append(ReservationLine(
                productId=product.id,
                name=product.name,
                price=product.price,
                quantity=item.quantity,
                image=(product.images or [""])[0]
            ))

        # Release the connection before calling the gateway
        db.rollback()

        pricing = price_breakdown(cart_subtotal(lines))
        gateway_order_id = generate_gateway_order_id()
        customer = request.customerDetails

        try:
            session = await self.gateway.create_session(
                amount=pricing.totalAmount,
                currency=ORDER_CURRENCY,
                order_id=gateway_order_id,
                customer={
                    "customer_id": user_id or f"guest_{int(time.time() * 1000)}",
                    "customer_name": customer.name,
                    "customer_email": customer.email,
                    "customer_phone": customer.phone
                },
                return_url=f"{frontend_base_url()}/payment-success?order_id={{order_id}}",
                notify_url=f"{BACKEND_URL}/webhook",
                note=f"XRoboFly Order - {len(lines)} items"
            )
        except GatewayError:
            checkout_session_counter.add(1, {"status": "gateway_error"})
            logger.error("Could not open payment session", extra={
                "user_id": user_id,
                "gateway_order_id": gateway_order_id,
                "amount": pricing.totalAmount
            })
            raise

        gateway_order_id = session["order_id"]
        reservation = Reservation(
            userId=user_id,
            customerDetails=customer,
            shippingAddress=request.shippingAddress,
            products=lines,
            pricing=pricing,
            createdAt=int(time.time() * 1000)
        )
        await self.reservations.put(gateway_order_id, reservation)

        checkout_session_counter.add(1, {"status": "created"})
        checkout_amount_histogram.record(pricing.totalAmount, {"currency": ORDER_CURRENCY})
        logger.info("Checkout session created", extra={
            "user_id": user_id,
            "gateway_order_id": gateway_order_id,
            "amount": pricing.totalAmount,
            "item_count": len(lines)
        })

        return {
            "paymentSessionId": session["payment_session_id"],
            "orderId": gateway_order_id,
            "orderAmount": pricing.totalAmount
        }

    def _find_order(self, db: Session, gateway_order_id: str) -> Optional[Order]:
        with self.tracer.start_as_current_span("db.query.find_order_by_gateway_id") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "orders")
            db_span.set_attribute("gateway.order_id", gateway_order_id)

            order = db.query(Order).filter(Order.gateway_order_id == gateway_order_id).first()
            db_span.set_attribute("db.rows_returned", 1 if order else 0)
            return order

    def _discard_order(self, db: Session, order_id: int) -> None:
        """Delete an order whose stock could not be decremented."""
        with self.tracer.start_as_current_span("db.transaction.discard_order") as db_span:
            db_span.set_attribute("db.operation", "DELETE")
            db_span.set_attribute("db.table", "orders")
            db_span.set_attribute("order.id", order_id)

            db.rollback()
            order = db.get(Order, order_id)
            if order is not None:
                db.delete(order)
                db.commit()

    async def confirm_checkout(
        self,
        db: Session,
        gateway_order_id: str,
        requester_id: Optional[str] = None,
        trigger: str = "client",
        enforce_owner: bool = True
    ) -> Dict[str, Any]:
        """
        Materialize a paid reservation into an order, exactly once.

        Args:
            db: Database session
            gateway_order_id: Gateway order id, the idempotency key
            requester_id: User making a client-driven confirmation
            trigger: ``client`` or ``webhook``, for logs and metrics
            enforce_owner: Reject requesters other than the reserving user

        Returns:
            ``{"order": <serialized order>, "created": bool}``; ``created`` is
            False when the order already existed

        Raises:
            PaymentNotCompleted: Gateway does not report a successful payment
            SessionExpiredError: Reservation expired or already consumed
            AuthorizationError: Reservation belongs to another user
            StockConflict: Stock ran out; the order and reservation are removed
                and earlier decrements are reversed
            GatewayError: Payment status could not be fetched; nothing changed
            SQLAlchemyError: The stock update failed; the order is removed,
                earlier decrements are reversed and the reservation is kept
        """
        span = trace.get_current_span()
        span.set_attribute("gateway.order_id", gateway_order_id)
        span.set_attribute("checkout.trigger", trigger)

        existing = self._find_order(db, gateway_order_id)
        if existing is not None:
            materialization_counter.add(1, {"trigger": trigger, "status": "already_materialized"})
            return {"order": serialize_order(existing), "created": False}

        # Release the connection before calling the gateway
        db.rollback()

        payments = await self.gateway.fetch_payment_status(gateway_order_id)
        if not payments:
            materialization_counter.add(1, {"trigger": trigger, "status": "no_payment"})
            raise PaymentNotCompleted("No payment information found")
        latest_payment = payments[0]
        payment_status = latest_payment.get("payment_status")
        if payment_status != PAYMENT_SUCCESS:
            materialization_counter.add(1, {"trigger": trigger, "status": "unpaid"})
            raise PaymentNotCompleted("Payment not completed", payment_status=payment_status)

        reservation = await self.reservations.get(gateway_order_id)
        if reservation is None:
            reservation_miss_counter.add(1, {"trigger": trigger})
            materialization_counter.add(1, {"trigger": trigger, "status": "session_expired"})
            logger.warning("Paid order has no pending reservation", extra={
                "gateway_order_id": gateway_order_id,
                "trigger": trigger
            })
            raise SessionExpiredError()

        if enforce_owner and reservation.userId and requester_id != reservation.userId:
            materialization_counter.add(1, {"trigger": trigger, "status": "unauthorized"})
            logger.warning("Confirmation attempted by a different user", extra={
                "gateway_order_id": gateway_order_id,
                "requester_id": requester_id
            })
            raise AuthorizationError("Unauthorized")

        pricing = reservation.pricing
        shipping_address = reservation.shippingAddress.model_dump()
        payment_id = latest_payment.get("cf_payment_id")

        with self.tracer.start_as_current_span("db.transaction.create_order") as db_span:
            db_span.set_attribute("db.operation", "INSERT")
            db_span.set_attribute("db.table", "orders")
            db_span.set_attribute("order.total_amount", pricing.totalAmount)

            order = Order(
                user_id=reservation.userId,
                customer_details=reservation.customerDetails.model_dump(),
                shipping_address=shipping_address,
                billing_address=shipping_address,
                subtotal=pricing.subtotal,
                tax=pricing.tax,
                shipping=pricing.shipping,
                discount=pricing.discount,
                total_amount=pricing.totalAmount,
                payment_method=normalize_payment_method(latest_payment.get("payment_group")),
                order_status="pending",
                gateway_order_id=gateway_order_id,
                gateway_payment_id=str(payment_id) if payment_id is not None else None,
                items=[
                    OrderItem(
                        product_id=line.productId,
                        name=line.name,
                        quantity=line.quantity,
                        price=line.price,
                        image=line.image
                    )
                    for line in reservation.products
                ]
            )
            db.add(order)
            try:
                db.commit()
            except IntegrityError:
                # A concurrent confirmation won the unique gateway_order_id insert.
                # Its order is returned as is; if the winner later hits a stock
                # conflict that order is deleted and this response refers to an
                # order that no longer exists.
                db.rollback()
                winner = self._find_order(db, gateway_order_id)
                if winner is None:
                    raise
                materialization_counter.add(1, {"trigger": trigger, "status": "already_materialized"})
                logger.info("Order already materialized by a concurrent request", extra={
                    "gateway_order_id": gateway_order_id,
                    "trigger": trigger
                })
                return {"order": serialize_order(winner), "created": False}
            db_span.set_attribute("order.id", order.id)
        order_id = order.id

        try:
            self.ledger.apply(
                db,
                [(line.productId, line.quantity, line.name) for line in reservation.products]
            )
        except StockConflict as e:
            self._discard_order(db, order_id)
            await self.reservations.delete(gateway_order_id)
            stock_conflict_counter.add(1, {"trigger": trigger, "product_id": str(e.product_id)})
            materialization_counter.add(1, {"trigger": trigger, "status": "stock_conflict"})
            logger.error("Order rolled back after stock conflict", extra={
                "gateway_order_id": gateway_order_id,
                "payment_id": payment_id,
                "product_id": e.product_id,
                "trigger": trigger
            })
            raise
        except Exception as e:
            # The reservation is kept so a retry can materialize the order again
            self._discard_order(db, order_id)
            materialization_counter.add(1, {"trigger": trigger, "status": "ledger_error"})
            logger.error("Order rolled back after inventory failure", extra={
                "gateway_order_id": gateway_order_id,
                "payment_id": payment_id,
                "error": str(e),
                "trigger": trigger
            })
            raise

        await self.reservations.delete(gateway_order_id)
        snapshot = serialize_order(order)
        self.dispatcher.order_confirmed(snapshot)

        materialization_counter.add(1, {"trigger": trigger, "status": "created"})
        logger.info("Order created", extra={
            "order_id": snapshot["id"],
            "gateway_order_id": gateway_order_id,
            "payment_id": payment_id,
            "amount": pricing.totalAmount,
            "trigger": trigger
        })
        return {"order": snapshot, "created": True}

    async def handle_webhook(self, db: Session, payload: Dict[str, Any]) -> str:
        """
        Apply a verified gateway webhook.

        Returns:
            Outcome label: ``ignored``, ``materialized``,
            ``already_materialized``, ``not_materialized``, ``cancelled`` or
            ``no_action``

        Raises:
            GatewayError: If payment status could not be re-verified
        """
        event_type = payload.get("type") if isinstance(payload, dict) else None
        data = payload.get("data") if isinstance(payload, dict) else None
        order_data = data.get("order") if isinstance(data, dict) else None
        gateway_order_id = order_data.get("order_id") if isinstance(order_data, dict) else None

        if not gateway_order_id:
            logger.info("Webhook test or invalid payload", extra={"type": event_type})
            outcome = "ignored"
        elif event_type == WEBHOOK_PAYMENT_SUCCESS:
            outcome = await self._webhook_payment_success(db, str(gateway_order_id))
        elif event_type in (WEBHOOK_PAYMENT_FAILED, WEBHOOK_PAYMENT_DROPPED):
            outcome = self._webhook_payment_failed(db, str(gateway_order_id), event_type)
        else:
            logger.info("Unhandled webhook type", extra={
                "type": event_type,
                "gateway_order_id": gateway_order_id
            })
            outcome = "ignored"

        webhook_events_counter.add(1, {"type": str(event_type), "outcome": outcome})
        return outcome

    async def _webhook_payment_success(self, db: Session, gateway_order_id: str) -> str:
        try:
            result = await self.confirm_checkout(
                db,
                gateway_order_id,
                trigger="webhook",
                enforce_owner=False
            )
        except (PaymentNotCompleted, SessionExpiredError, StockConflict) as e:
            logger.warning("Payment success webhook did not materialize an order", extra={
                "gateway_order_id": gateway_order_id,
                "reason": type(e).__name__,
                "detail": str(e)
            })
            return "not_materialized"
        return "materialized" if result["created"] else "already_materialized"

    def _webhook_payment_failed(self, db: Session, gateway_order_id: str, event_type: str) -> str:
        order = self._find_order(db, gateway_order_id)
        if order is None or order.order_status != "pending":
            return "no_action"

        order.order_status = "cancelled"
        db.commit()
        order_status_transition_counter.add(1, {"from": "pending", "to": "cancelled", "source": "webhook"})
        logger.info("Order cancelled by payment webhook", extra={
            "order_id": order.id,
            "gateway_order_id": gateway_order_id,
            "type": event_type
        })
        return "cancelled"

    async def update_order_status(
        self,
        db: Session,
        order_id: int,
        new_status: str,
        tracking_url: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Move an order along its status graph.

        Shipping an order may attach a tracking URL and schedules a
        shipping-update email; email failure never undoes the transition.

        Raises:
            OrderNotFound: Unknown order id
            InvalidStatusTransition: Status unknown or not reachable
        """
        order = db.get(Order, order_id)
        if order is None:
            raise OrderNotFound(f"Order not found: {order_id}")
        if new_status not in ORDER_STATUSES:
            raise InvalidStatusTransition(f"Unknown order status: {new_status}")

        current = order.order_status
        if new_status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStatusTransition(f"Cannot move order from {current} to {new_status}")

        order.order_status = new_status
        if new_status == "shipped" and tracking_url:
            order.tracking_url = tracking_url
        db.commit()

        snapshot = serialize_order(order)
        order_status_transition_counter.add(1, {"from": current, "to": new_status, "source": "admin"})
        logger.info("Order status updated", extra={
            "order_id": order_id,
            "from_status": current,
            "to_status": new_status
        })

        if new_status == "shipped":
            self.dispatcher.order_shipped(snapshot)
        return snapshot

    def get_order(self, db: Session, order_id: int, user_id: str, admin: bool = False) -> Dict[str, Any]:
        order = db.get(Order, order_id)
        if order is None or (not admin and order.user_id != user_id):
            raise OrderNotFound(f"Order not found: {order_id}")
        return serialize_order(order)

    def get_user_orders(self, db: Session, user_id: str) -> List[Dict[str, Any]]:
        """
        Get all orders for a user, newest first.

        Args:
            db: Database session
            user_id: User identifier

        Returns:
            List of orders
        """
        with self.tracer.start_as_current_span("db.query.get_user_orders") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "orders")
            db_span.set_attribute("user.id", user_id)

            orders = (
                db.query(Order)
                .filter(Order.user_id == user_id)
                .order_by(Order.created_at.desc(), Order.id.desc())
                .all()
            )

            db_span.set_attribute("db.rows_returned", len(orders))

            return [serialize_order(order) for order in orders]
