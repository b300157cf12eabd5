"""Read access to the product catalog."""
import logging
from typing import List, Optional
from sqlalchemy.orm import Session
from opentelemetry import trace

from models import Product

logger = logging.getLogger(__name__)


class CatalogService:
    """Service for looking up catalog products."""

    def __init__(self):
        self.tracer = trace.get_tracer(__name__)

    def find_by_id(self, db: Session, product_ref) -> Optional[Product]:
        """
        Look up a product by reference.

        Args:
            db: Database session
            product_ref: Product identifier as sent by the client

        Returns:
            The product, or None if the reference is malformed or unknown
        """
        product_id = parse_product_ref(product_ref)
        if product_id is None:
            return None

        with self.tracer.start_as_current_span("db.query.get_product") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "products")
            db_span.set_attribute("product.id", product_id)

            product = db.get(Product, product_id)
            db_span.set_attribute("db.rows_returned", 1 if product else 0)
            return product

    def list_products(self, db: Session) -> List[Product]:
        with self.tracer.start_as_current_span("db.query.list_products") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "products")

            products = db.query(Product).order_by(Product.id).all()
            db_span.set_attribute("db.rows_returned", len(products))
            return products


def parse_product_ref(product_ref) -> Optional[int]:
    text = str(product_ref).strip()
    if not (text.isascii() and text.isdigit()):
        return None
    value = int(text)
    return value if value > 0 else None
