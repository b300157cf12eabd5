"""Database connection and session management."""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from typing import Generator
import logging

from config import DATABASE_URL
from models import Base, Product

logger = logging.getLogger(__name__)

# Create engine with connection pool settings
engine = create_engine(
    DATABASE_URL,
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,  # Verify connections before use
    pool_recycle=3600,
    pool_timeout=30,
    echo_pool=False
)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database session.

    Yields:
        Database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Initialize database tables and seed a demo catalog."""
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        if db.query(Product).count() == 0:
            products = [
                Product(name="FPV Racing Drone Frame", price=1050, stock=40, category="Frames",
                        images=["/img/frame-5in.jpg"]),
                Product(name="2207 Brushless Motor", price=525, stock=200, category="Motors",
                        images=["/img/motor-2207.jpg"]),
                Product(name="4-in-1 ESC 45A", price=3150, stock=60, category="Electronics",
                        images=["/img/esc-45a.jpg"]),
                Product(name="F7 Flight Controller", price=4200, stock=50, category="Electronics",
                        images=["/img/fc-f7.jpg"]),
                Product(name="Digital FPV Goggles", price=52499, stock=10, category="Video",
                        images=["/img/goggles.jpg"]),
                Product(name="6S 1300mAh LiPo", price=2625, stock=120, category="Batteries",
                        images=["/img/lipo-6s.jpg"]),
            ]
            db.add_all(products)
            db.commit()
            logger.info("Seeded database with sample products")
    finally:
        db.close()
