"""Dependency injection for services."""
from typing import Any
from fastapi import Depends, Request

from config import PAYMENT_GATEWAY_SECRET_KEY
from services.catalog_service import CatalogService
from services.inventory_ledger import InventoryLedger
from services.notification_service import NotificationDispatcher
from services.order_service import OrderService
from services.payment_gateway import PaymentGatewayClient
from services.reservation_store import ReservationStore


def get_redis(request: Request) -> Any:
    """Get async Redis client from app state."""
    return request.app.state.redis_client


def get_http_client(request: Request) -> Any:
    """Get HTTP client from app state."""
    return request.app.state.http_client


def get_dispatcher(request: Request) -> NotificationDispatcher:
    """Get the process-wide notification dispatcher."""
    return request.app.state.dispatcher


def get_catalog_service() -> CatalogService:
    return CatalogService()


def get_reservation_store(redis_client: Any = Depends(get_redis)) -> ReservationStore:
    """Get pending reservation store."""
    return ReservationStore(redis_client)


def get_payment_gateway(http_client: Any = Depends(get_http_client)) -> PaymentGatewayClient:
    """Get payment gateway client."""
    return PaymentGatewayClient(http_client)


def get_webhook_secret() -> str:
    """Secret used to verify gateway webhook signatures."""
    return PAYMENT_GATEWAY_SECRET_KEY


def get_order_service(
    catalog: CatalogService = Depends(get_catalog_service),
    reservations: ReservationStore = Depends(get_reservation_store),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
) -> OrderService:
    """Get order service instance."""
    return OrderService(catalog, InventoryLedger(), reservations, gateway, dispatcher)
