"""Product catalog service."""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session
from opentelemetry import trace

from storefront.errors import NotFound, ValidationError
from storefront.i18n import validate_translations
from storefront.models import Category, Product, ProductStatus

logger = logging.getLogger(__name__)


class CatalogService:
    """Minimal product store: reads for shoppers, writes for admins."""

    def __init__(self):
        self.tracer = trace.get_tracer(__name__)

    def get(self, db: Session, product_id: int) -> Product:
        product = db.get(Product, product_id)
        if product is None:
            raise NotFound("Product not found", field="product_id")
        return product

    def list_active(
        self,
        db: Session,
        skip: int = 0,
        limit: int = 100,
        category_id: Optional[int] = None
    ) -> List[Product]:
        """
        List active products.

        Args:
            db: Database session
            skip: Number of rows to skip
            limit: Maximum number of rows
            category_id: Only products of this category

        Returns:
            Active products ordered by id
        """
        with self.tracer.start_as_current_span("db.query.list_products") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "products")

            query = db.query(Product).filter(Product.status == ProductStatus.ACTIVE.value)
            if category_id is not None:
                db_span.set_attribute("category.id", category_id)
                query = query.filter(Product.category_id == category_id)

            products = (
                query.order_by(Product.id)
                .offset(skip)
                .limit(limit)
                .all()
            )

            db_span.set_attribute("db.rows_returned", len(products))
            return products

    def _validate_prices(self, price: Decimal, discounted_price: Optional[Decimal]) -> None:
        if price is None or price <= 0:
            raise ValidationError("Price must be greater than zero", field="price")
        if discounted_price is not None:
            if discounted_price <= 0:
                raise ValidationError("Discounted price must be greater than zero", field="discounted_price")
            if discounted_price >= price:
                raise ValidationError("Discounted price must be lower than the price", field="discounted_price")

    def create(self, db: Session, data: Dict[str, Any]) -> Product:
        """
        Create a product from validated request data.

        Raises:
            ValidationError: invalid translations, prices or quantity
        """
        name = validate_translations(data.get("name"), "name")
        description = validate_translations(data.get("description"), "description", required=False)
        price = data.get("price")
        discounted_price = data.get("discounted_price")
        self._validate_prices(price, discounted_price)

        quantity = data.get("quantity", 0)
        if quantity < 0:
            raise ValidationError("Quantity cannot be negative", field="quantity")

        category_id = data.get("category_id")
        if category_id is not None:
            self._require_category(db, category_id)

        product = Product(
            category_id=category_id,
            name=name,
            description=description,
            price=price,
            discounted_price=discounted_price,
            quantity=quantity,
            status=ProductStatus(data.get("status") or ProductStatus.ACTIVE.value).value,
            auto_deactivated=False
        )
        db.add(product)
        db.commit()
        db.refresh(product)

        logger.info("Created product", extra={
            "product_id": product.id,
            "price": str(product.price),
            "quantity": product.quantity
        })
        return product

    def update(self, db: Session, product_id: int, data: Dict[str, Any]) -> Product:
        """Apply a partial update. Only keys present in ``data`` change."""
        product = self.get(db, product_id)

        if "name" in data:
            product.name = validate_translations(data["name"], "name")
        if "description" in data:
            product.description = validate_translations(data["description"], "description", required=False)

        price = data.get("price", product.price)
        discounted_price = data.get("discounted_price", product.discounted_price)
        if "price" in data or "discounted_price" in data:
            self._validate_prices(price, discounted_price)
            product.price = price
            product.discounted_price = discounted_price

        if "quantity" in data:
            if data["quantity"] is None or data["quantity"] < 0:
                raise ValidationError("Quantity cannot be negative", field="quantity")
            product.quantity = data["quantity"]

        if "category_id" in data:
            if data["category_id"] is not None:
                self._require_category(db, data["category_id"])
            product.category_id = data["category_id"]

        if data.get("status") is not None:
            self._apply_status(product, ProductStatus(data["status"]))

        db.commit()
        db.refresh(product)

        logger.info("Updated product", extra={
            "product_id": product.id,
            "fields": sorted(data.keys())
        })
        return product

    def set_status(self, db: Session, product_id: int, status: ProductStatus) -> Product:
        product = self.get(db, product_id)
        self._apply_status(product, status)
        db.commit()
        db.refresh(product)
        return product

    def _apply_status(self, product: Product, status: ProductStatus) -> None:
        # An explicit admin decision overrides the ledger's zero-stock marker
        product.status = status.value
        product.auto_deactivated = False

    def _require_category(self, db: Session, category_id: int) -> Category:
        category = db.get(Category, category_id)
        if category is None:
            raise ValidationError("Category does not exist", field="category_id")
        return category

    def get_category(self, db: Session, category_id: int) -> Category:
        category = db.get(Category, category_id)
        if category is None:
            raise NotFound("Category not found", field="category_id")
        return category

    def list_categories(self, db: Session) -> List[Tuple[Category, int]]:
        """
        List active categories with their number of purchasable products.

        Only active, in-stock products are counted.

        Returns:
            (category, product count) pairs ordered by id
        """
        with self.tracer.start_as_current_span("db.query.list_categories") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "categories")

            available = (
                select(Product.category_id, func.count(Product.id).label("products_count"))
                .where(Product.status == ProductStatus.ACTIVE.value, Product.quantity > 0)
                .group_by(Product.category_id)
                .subquery()
            )
            rows = db.execute(
                select(Category, func.coalesce(available.c.products_count, 0))
                .outerjoin(available, available.c.category_id == Category.id)
                .where(Category.status == ProductStatus.ACTIVE.value)
                .order_by(Category.id)
            ).all()

            db_span.set_attribute("db.rows_returned", len(rows))
            return [(category, count) for category, count in rows]

    def create_category(self, db: Session, data: Dict[str, Any]) -> Category:
        """
        Create a category from validated request data.

        Raises:
            ValidationError: invalid translations
        """
        category = Category(
            name=validate_translations(data.get("name"), "name"),
            description=validate_translations(data.get("description"), "description", required=False),
            status=ProductStatus(data.get("status") or ProductStatus.ACTIVE.value).value
        )
        db.add(category)
        db.commit()
        db.refresh(category)

        logger.info("Created category", extra={"category_id": category.id})
        return category

    def count_available(self, db: Session, category_id: int) -> int:
        return db.scalar(
            select(func.count(Product.id)).where(
                Product.category_id == category_id,
                Product.status == ProductStatus.ACTIVE.value,
                Product.quantity > 0
            )
        ) or 0
