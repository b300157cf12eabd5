"""Database models for the checkout service."""
from datetime import datetime
from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")


class Product(Base):
    """Catalog product. Prices are GST-inclusive."""
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, index=True)
    price = Column(Float, nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    category = Column(String)
    images = Column(JSON, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)


class Order(Base):
    """Durable record of a paid checkout."""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=True)
    customer_details = Column(JSON, nullable=False)
    shipping_address = Column(JSON, nullable=False)
    billing_address = Column(JSON, nullable=False)
    subtotal = Column(Float, nullable=False)
    tax = Column(Float, nullable=False)
    shipping = Column(Float, nullable=False)
    discount = Column(Float, nullable=False, default=0)
    total_amount = Column(Float, nullable=False)
    payment_method = Column(String, default="online")
    order_status = Column(String, nullable=False, default="pending", index=True)
    gateway_order_id = Column(String, nullable=False, unique=True, index=True)
    gateway_payment_id = Column(String)
    tracking_url = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class OrderItem(Base):
    """Line item copied from the reservation snapshot, not referenced."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False)
    name = Column(String)
    quantity = Column(Integer, nullable=False)
    price = Column(Float, nullable=False)
    image = Column(String, default="")

    order = relationship("Order", back_populates="items")
