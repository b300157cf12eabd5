"""Pydantic schemas for request/response validation."""
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional


class CustomerDetails(BaseModel):
    """Contact details collected at checkout."""
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    phone: str = Field(min_length=5)


class ShippingAddress(BaseModel):
    """Delivery address. Unknown fields are preserved for the shipping provider."""
    model_config = ConfigDict(extra="allow")

    fullName: Optional[str] = None
    addressLine1: str = Field(min_length=1)
    addressLine2: Optional[str] = None
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    pincode: str = Field(min_length=1)
    country: str = "India"
    phone: Optional[str] = None


class CartLine(BaseModel):
    """Client-supplied cart line, validated against the live catalog."""
    productId: str
    quantity: int = Field(ge=1)


class CheckoutSessionRequest(BaseModel):
    """Schema for opening a checkout session."""
    customerDetails: CustomerDetails
    shippingAddress: ShippingAddress
    products: List[CartLine] = Field(min_length=1)


class CheckoutSessionResponse(BaseModel):
    """Schema for checkout session response."""
    success: bool = True
    message: str = "Checkout session created"
    paymentSessionId: str
    orderId: str
    orderAmount: float


class CheckoutConfirmRequest(BaseModel):
    """Schema for client-driven payment confirmation."""
    orderId: str = Field(min_length=1)


class PriceBreakdown(BaseModel):
    """Price breakdown frozen at reservation time."""
    subtotal: float
    tax: float
    shipping: float
    discount: float = 0
    totalAmount: float


class ReservationLine(BaseModel):
    """Snapshot of a product line at reservation time."""
    productId: int
    name: str
    price: float
    quantity: int
    image: str = ""


class Reservation(BaseModel):
    """Checkout awaiting payment confirmation, stored with a TTL."""
    userId: Optional[str] = None
    customerDetails: CustomerDetails
    shippingAddress: ShippingAddress
    products: List[ReservationLine]
    pricing: PriceBreakdown
    createdAt: int


class OrderItemResponse(BaseModel):
    """Schema for order line in response."""
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    name: Optional[str] = None
    quantity: int
    price: float
    image: Optional[str] = None


class OrderResponse(BaseModel):
    """Schema for order response."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: Optional[str] = None
    items: List[OrderItemResponse]
    customer_details: Dict[str, Any]
    shipping_address: Dict[str, Any]
    billing_address: Dict[str, Any]
    subtotal: float
    tax: float
    shipping: float
    discount: float
    total_amount: float
    payment_method: Optional[str] = None
    order_status: str
    gateway_order_id: str
    gateway_payment_id: Optional[str] = None
    tracking_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CheckoutConfirmResponse(BaseModel):
    """Schema for confirmation response."""
    success: bool = True
    message: str
    order: OrderResponse


class OrdersListResponse(BaseModel):
    """Schema for orders list response."""
    orders: List[OrderResponse]


class OrderStatusUpdateRequest(BaseModel):
    """Admin status transition request."""
    orderStatus: str
    trackingUrl: Optional[str] = None


class WebhookAck(BaseModel):
    """Acknowledgement returned to the payment gateway."""
    success: bool = True
    message: str = "Webhook acknowledged"


class ProductResponse(BaseModel):
    """Schema for product response."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    price: float
    stock: int
    category: Optional[str] = None
    images: Optional[List[str]] = None
