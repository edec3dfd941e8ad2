"""Database connection and session management."""
from decimal import Decimal
from typing import Generator
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from storefront.config import DATABASE_URL
from storefront.models import Base, Category, Product

logger = logging.getLogger(__name__)

# Create engine with connection pool settings
engine = create_engine(
    DATABASE_URL,
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,  # Verify connections before use
    pool_recycle=3600,  # Recycle connections after 1 hour
    pool_timeout=30,  # Wait max 30 seconds for a connection
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
    """Initialize database tables and seed data."""
    Base.metadata.create_all(bind=engine)

    # Seed data if empty
    db = SessionLocal()
    try:
        if db.query(Product).count() == 0:
            electronics = Category(name={"en": "Electronics", "ar": "إلكترونيات"})
            furniture = Category(name={"en": "Furniture", "ar": "أثاث"})
            db.add_all([electronics, furniture])

            products = [
                Product(
                    category=electronics,
                    name={"en": "Laptop", "ar": "حاسوب محمول"},
                    description={"en": "14 inch business laptop"},
                    price=Decimal("999.99"),
                    quantity=50,
                ),
                Product(
                    category=electronics,
                    name={"en": "Smartphone", "ar": "هاتف ذكي"},
                    description={"en": "Unlocked smartphone"},
                    price=Decimal("599.99"),
                    discounted_price=Decimal("549.99"),
                    quantity=100,
                ),
                Product(
                    category=electronics,
                    name={"en": "Headphones", "ar": "سماعات"},
                    description={"en": "Noise cancelling headphones"},
                    price=Decimal("99.99"),
                    quantity=200,
                ),
                Product(
                    category=furniture,
                    name={"en": "Desk Chair", "ar": "كرسي مكتب"},
                    description={"en": "Ergonomic desk chair"},
                    price=Decimal("199.99"),
                    quantity=30,
                ),
            ]
            db.add_all(products)
            db.commit()
            logger.info("Seeded database with sample products", extra={"count": len(products)})
    finally:
        db.close()
