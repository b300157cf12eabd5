"""Orders API router."""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from database import get_db
from schemas import OrderResponse, OrderStatusUpdateRequest, OrdersListResponse
from auth import get_user_id_from_token, is_admin, require_admin, verify_token
from dependencies import get_order_service
from exceptions import CheckoutError

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("", response_model=OrdersListResponse)
async def get_orders(
    db: Session = Depends(get_db),
    token: str = Depends(verify_token),
    order_service = Depends(get_order_service)
):
    """Get user's orders - requires authentication."""
    user_id = get_user_id_from_token(token)
    orders = order_service.get_user_orders(db, user_id)

    return {"orders": orders}


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    db: Session = Depends(get_db),
    token: str = Depends(verify_token),
    order_service = Depends(get_order_service)
):
    """Get one order - owner or admin only."""
    try:
        return order_service.get_order(
            db,
            order_id,
            get_user_id_from_token(token),
            admin=is_admin(token)
        )
    except CheckoutError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: int,
    request: OrderStatusUpdateRequest,
    db: Session = Depends(get_db),
    token: str = Depends(require_admin),
    order_service = Depends(get_order_service)
):
    """Change an order's status - admin only."""
    try:
        return await order_service.update_order_status(
            db,
            order_id,
            request.orderStatus,
            tracking_url=request.trackingUrl
        )
    except CheckoutError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
