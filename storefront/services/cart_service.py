"""Cart management service."""
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List

from sqlalchemy.orm import Session, joinedload
from opentelemetry import trace

from storefront.errors import EmptyCart, InsufficientStock, NotFound, OutOfStock, ValidationError
from storefront.i18n import translate
from storefront.models import CartItem, Product, ProductStatus
from storefront.monitoring import cart_additions_counter

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass(frozen=True)
class DraftLine:
    """One priced cart line."""
    product_id: int
    name: str
    quantity: int
    unit_price: Decimal
    total: Decimal


@dataclass(frozen=True)
class OrderDraft:
    """Priced, stock-validated cart contents, ready to become an order."""
    user_id: str
    lines: List[DraftLine]
    total: Decimal


def effective_price(product: Product) -> Decimal:
    """Discounted price when present and lower than the base price."""
    if product.discounted_price is not None and product.discounted_price < product.price:
        return Decimal(product.discounted_price)
    return Decimal(product.price)


def line_total(unit_price: Decimal, quantity: int) -> Decimal:
    return (unit_price * quantity).quantize(CENT, rounding=ROUND_HALF_UP)


class CartService:
    """Service for managing shopping carts."""

    def __init__(self):
        self.tracer = trace.get_tracer(__name__)

    def _get_product(self, db: Session, product_id: int) -> Product:
        with self.tracer.start_as_current_span("db.query.get_product") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "products")
            db_span.set_attribute("product.id", product_id)

            product = db.get(Product, product_id)

            db_span.set_attribute("db.rows_returned", 1 if product else 0)
            if product is None:
                raise NotFound("Product not found", field="product_id")
            return product

    def _check_quantity(self, product: Product, quantity: int) -> None:
        name = translate(product.name, "en")
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", field="quantity")
        if product.status != ProductStatus.ACTIVE.value:
            raise OutOfStock(name)
        if quantity > product.quantity:
            raise InsufficientStock(name, "The requested quantity exceeds available stock")

    def get_cart_items(self, db: Session, user_id: str) -> List[CartItem]:
        """
        Get cart items for user, with their products loaded.

        Args:
            db: Database session
            user_id: User identifier

        Returns:
            Cart items ordered by product id
        """
        with self.tracer.start_as_current_span("db.query.get_cart_items") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "cart_items")
            db_span.set_attribute("user.id", user_id)

            cart_items = (
                db.query(CartItem)
                .options(joinedload(CartItem.product))
                .filter(CartItem.user_id == user_id)
                .order_by(CartItem.product_id)
                .all()
            )

            db_span.set_attribute("db.rows_returned", len(cart_items))

            return cart_items

    def add_to_cart(
        self,
        db: Session,
        user_id: str,
        product_id: int,
        quantity: int
    ) -> CartItem:
        """
        Add a product to the user's cart.

        Adding a product that is already in the cart merges into the existing
        line; stock is checked against the merged quantity.

        Args:
            db: Database session
            user_id: User identifier
            product_id: Product identifier
            quantity: Quantity to add

        Returns:
            The cart line

        Raises:
            NotFound: If the product does not exist
            OutOfStock: If the product is inactive
            InsufficientStock: If the merged quantity exceeds stock
        """
        span = trace.get_current_span()
        span.set_attribute("product.id", product_id)
        span.set_attribute("quantity", quantity)

        product = self._get_product(db, product_id)
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", field="quantity")

        cart_item = db.query(CartItem).filter(
            CartItem.user_id == user_id,
            CartItem.product_id == product_id
        ).first()

        merged_quantity = quantity + (cart_item.quantity if cart_item else 0)
        self._check_quantity(product, merged_quantity)

        with self.tracer.start_as_current_span("db.query.upsert_cart_item") as db_span:
            db_span.set_attribute("db.table", "cart_items")
            db_span.set_attribute("user.id", user_id)
            db_span.set_attribute("product.id", product_id)

            if cart_item:
                db_span.set_attribute("db.operation", "UPDATE")
                cart_item.quantity = merged_quantity
            else:
                db_span.set_attribute("db.operation", "INSERT")
                cart_item = CartItem(
                    user_id=user_id,
                    product_id=product_id,
                    quantity=quantity
                )
                db.add(cart_item)
            db.commit()
            db.refresh(cart_item)

            db_span.set_attribute("cart_item.id", cart_item.id)

        cart_additions_counter.add(1, {"product_id": str(product_id)})

        logger.info("Added product to cart", extra={
            "user_id": user_id,
            "product_id": product_id,
            "quantity": quantity,
            "cart_quantity": cart_item.quantity
        })

        return cart_item

    def update_item(
        self,
        db: Session,
        user_id: str,
        product_id: int,
        quantity: int
    ) -> CartItem:
        """Set the quantity of a cart line."""
        cart_item = db.query(CartItem).filter(
            CartItem.user_id == user_id,
            CartItem.product_id == product_id
        ).first()
        if cart_item is None:
            raise NotFound("Cart item not found", field="product_id")

        self._check_quantity(cart_item.product, quantity)

        cart_item.quantity = quantity
        db.commit()
        db.refresh(cart_item)

        logger.info("Updated cart item", extra={
            "user_id": user_id,
            "product_id": product_id,
            "quantity": quantity
        })
        return cart_item

    def remove_item(self, db: Session, user_id: str, product_id: int) -> None:
        deleted = db.query(CartItem).filter(
            CartItem.user_id == user_id,
            CartItem.product_id == product_id
        ).delete(synchronize_session=False)
        if not deleted:
            raise NotFound("Cart item not found", field="product_id")
        db.commit()

        logger.info("Removed product from cart", extra={
            "user_id": user_id,
            "product_id": product_id
        })

    def clear_cart(self, db: Session, user_id: str, commit: bool = True) -> int:
        """
        Clear user's cart.

        Args:
            db: Database session
            user_id: User identifier
            commit: Commit immediately; pass False to clear inside a larger
                transaction

        Returns:
            Number of removed lines
        """
        with self.tracer.start_as_current_span("db.query.delete_cart_items") as db_span:
            db_span.set_attribute("db.operation", "DELETE")
            db_span.set_attribute("db.table", "cart_items")
            db_span.set_attribute("user.id", user_id)

            deleted_count = db.query(CartItem).filter(
                CartItem.user_id == user_id
            ).delete(synchronize_session=False)

            db_span.set_attribute("db.rows_affected", deleted_count)

        if commit:
            db.commit()
        return deleted_count

    def get_cart(self, db: Session, user_id: str, locale: str) -> Dict[str, Any]:
        """
        Get user's cart contents, priced at current prices.

        Unlike ``price_cart`` this never fails on stock; lines that could not
        be checked out are flagged with ``available=False``.
        """
        items = []
        total = Decimal("0.00")

        for cart_item in self.get_cart_items(db, user_id):
            product = cart_item.product
            unit_price = effective_price(product)
            subtotal = line_total(unit_price, cart_item.quantity)
            total += subtotal
            items.append({
                "product_id": product.id,
                "product_name": translate(product.name, locale),
                "unit_price": unit_price,
                "quantity": cart_item.quantity,
                "subtotal": subtotal,
                "available": (
                    product.status == ProductStatus.ACTIVE.value
                    and cart_item.quantity <= product.quantity
                )
            })

        return {
            "user_id": user_id,
            "items": items,
            "total": total
        }

    def price_cart(self, db: Session, user_id: str, locale: str) -> OrderDraft:
        """
        Turn the user's cart into a priced order draft.

        Each line total is rounded to cents before summing so the draft total
        matches what the providers are sent line by line.

        Args:
            db: Database session
            user_id: User identifier
            locale: Language for line names

        Returns:
            The order draft

        Raises:
            EmptyCart: If the cart has no lines
            OutOfStock: If any line is inactive or exceeds stock; no partial
                drafts are produced
        """
        with self.tracer.start_as_current_span("cart.price") as span:
            span.set_attribute("user.id", user_id)

            cart_items = self.get_cart_items(db, user_id)
            if not cart_items:
                raise EmptyCart()

            lines = []
            total = Decimal("0.00")
            for cart_item in cart_items:
                product = cart_item.product
                name = translate(product.name, locale)

                if (
                    product.status != ProductStatus.ACTIVE.value
                    or cart_item.quantity > product.quantity
                ):
                    logger.warning("Cart line cannot be fulfilled", extra={
                        "user_id": user_id,
                        "product_id": product.id,
                        "requested": cart_item.quantity,
                        "available": product.quantity,
                        "status": product.status
                    })
                    raise OutOfStock(name)

                unit_price = effective_price(product)
                subtotal = line_total(unit_price, cart_item.quantity)
                total += subtotal
                lines.append(DraftLine(
                    product_id=product.id,
                    name=name,
                    quantity=cart_item.quantity,
                    unit_price=unit_price,
                    total=subtotal
                ))

            span.set_attribute("cart.lines", len(lines))
            span.set_attribute("cart.total", str(total))

            return OrderDraft(user_id=user_id, lines=lines, total=total)
