"""Inventory ledger: atomic conditional stock mutations."""
import logging
from typing import Iterable, List, Tuple
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from opentelemetry import trace

from exceptions import StockConflict
from models import Product

logger = logging.getLogger(__name__)


class InventoryLedger:
    """
    Applies stock decrements per product without read-then-write.

    Each decrement is a single ``UPDATE ... WHERE stock >= :quantity`` and is
    committed on its own. There is no lock across lines: a failure on a later
    line is undone by compensating increments for the lines already applied.
    """

    def __init__(self):
        self.tracer = trace.get_tracer(__name__)

    def reserve(self, db: Session, product_id: int, quantity: int) -> bool:
        """
        Decrement stock by ``quantity`` if at least that much remains.

        Returns:
            True if the decrement was applied, False if stock was insufficient
            or the product does not exist
        """
        with self.tracer.start_as_current_span("db.query.decrement_stock") as db_span:
            db_span.set_attribute("db.operation", "UPDATE")
            db_span.set_attribute("db.table", "products")
            db_span.set_attribute("product.id", product_id)
            db_span.set_attribute("quantity", quantity)

            result = db.execute(
                update(Product)
                .where(Product.id == product_id, Product.stock >= quantity)
                .values(stock=Product.stock - quantity)
                .execution_options(synchronize_session=False)
            )
            db.commit()

            applied = result.rowcount == 1
            db_span.set_attribute("db.rows_affected", result.rowcount)
            return applied

    def release(self, db: Session, product_id: int, quantity: int) -> None:
        """Compensating increment for a previously applied decrement."""
        with self.tracer.start_as_current_span("db.query.increment_stock") as db_span:
            db_span.set_attribute("db.operation", "UPDATE")
            db_span.set_attribute("db.table", "products")
            db_span.set_attribute("product.id", product_id)
            db_span.set_attribute("quantity", quantity)

            db.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(stock=Product.stock + quantity)
                .execution_options(synchronize_session=False)
            )
            db.commit()

    def apply(self, db: Session, lines: Iterable[Tuple[int, int, str]]) -> None:
        """
        Decrement stock for every ``(product_id, quantity, name)`` line.

        Any failure, a refused decrement or a database error, reverses the
        decrements already applied for earlier lines before re-raising.

        Raises:
            StockConflict: If any line cannot be satisfied
        """
        applied: List[Tuple[int, int]] = []
        try:
            for product_id, quantity, name in lines:
                if not self.reserve(db, product_id, quantity):
                    logger.warning("Stock decrement refused, compensating earlier lines", extra={
                        "product_id": product_id,
                        "quantity": quantity,
                        "compensated_lines": len(applied)
                    })
                    raise StockConflict(
                        f"Insufficient stock for {name}. Please update your cart and try again.",
                        product_id=product_id
                    )
                applied.append((product_id, quantity))
        except Exception:
            db.rollback()
            self._compensate(db, applied)
            raise

    def _compensate(self, db: Session, applied: List[Tuple[int, int]]) -> None:
        for product_id, quantity in reversed(applied):
            try:
                self.release(db, product_id, quantity)
            except SQLAlchemyError:
                # Keep reversing the remaining lines; this one needs manual repair
                db.rollback()
                logger.exception("Stock compensation failed", extra={
                    "product_id": product_id,
                    "quantity": quantity
                })
