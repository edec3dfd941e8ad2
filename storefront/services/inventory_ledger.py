"""Inventory ledger: stock reservations and releases."""
import enum
import logging

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session
from opentelemetry import trace

from storefront.errors import InsufficientStock, NotFound
from storefront.i18n import translate
from storefront.models import Order, Product, ProductStatus
from storefront.monitoring import stock_released_counter, stock_reservation_failures_counter

logger = logging.getLogger(__name__)


class ReactivationPolicy(str, enum.Enum):
    """What a stock release does to an inactive product's status."""

    # Reactivate only products the ledger itself deactivated at zero stock
    AUTO_ONLY = "auto_only"
    NEVER = "never"
    ALWAYS = "always"


class InventoryLedger:
    """
    Atomic stock mutations.

    All methods run inside the caller's transaction; committing is the
    caller's job.
    """

    def __init__(self):
        self.tracer = trace.get_tracer(__name__)

    def reserve(self, db: Session, product_id: int, quantity: int) -> Product:
        """
        Decrement stock for a product.

        The product row is locked first, then decremented with a conditional
        update so two concurrent reservations can never both pass the
        available stock. Reaching zero deactivates the product and marks it
        as auto-deactivated.

        Raises:
            NotFound: unknown product
            InsufficientStock: quantity exceeds current stock
        """
        with self.tracer.start_as_current_span("inventory.reserve") as span:
            span.set_attribute("product.id", product_id)
            span.set_attribute("quantity", quantity)

            product = db.execute(
                select(Product).where(Product.id == product_id).with_for_update()
            ).scalar_one_or_none()
            if product is None:
                raise NotFound("Product not found", field="product_id")

            remaining = Product.quantity - quantity
            result = db.execute(
                update(Product)
                .where(Product.id == product_id, Product.quantity >= quantity)
                .values(
                    quantity=remaining,
                    status=case(
                        (remaining == 0, ProductStatus.INACTIVE.value),
                        else_=Product.status
                    ),
                    auto_deactivated=case(
                        (
                            (remaining == 0) & (Product.status == ProductStatus.ACTIVE.value),
                            True
                        ),
                        else_=Product.auto_deactivated
                    ),
                )
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 0:
                db.refresh(product)
                name = translate(product.name, "en")
                stock_reservation_failures_counter.add(1, {"product_id": str(product_id)})
                logger.warning("Stock reservation rejected", extra={
                    "product_id": product_id,
                    "requested": quantity,
                    "available": product.quantity
                })
                raise InsufficientStock(name)

            db.refresh(product)
            span.set_attribute("product.stock.after", product.quantity)

            logger.info("Reserved stock", extra={
                "product_id": product_id,
                "quantity": quantity,
                "remaining": product.quantity,
                "status": product.status
            })
            return product

    def release(
        self,
        db: Session,
        product_id: int,
        quantity: int,
        policy: ReactivationPolicy = ReactivationPolicy.AUTO_ONLY,
        reason: str = "compensation"
    ) -> None:
        """
        Return units to stock.

        Whether an inactive product becomes active again is decided by
        ``policy``; an admin-deactivated product stays inactive under the
        default policy.
        """
        with self.tracer.start_as_current_span("inventory.release") as span:
            span.set_attribute("product.id", product_id)
            span.set_attribute("quantity", quantity)
            span.set_attribute("reason", reason)

            values = {"quantity": Product.quantity + quantity}
            if policy is ReactivationPolicy.AUTO_ONLY:
                values["status"] = case(
                    (Product.auto_deactivated.is_(True), ProductStatus.ACTIVE.value),
                    else_=Product.status
                )
                values["auto_deactivated"] = False
            elif policy is ReactivationPolicy.ALWAYS:
                values["status"] = ProductStatus.ACTIVE.value
                values["auto_deactivated"] = False

            result = db.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 0:
                # Product was removed from the catalog; nothing to restock
                logger.warning("Stock release skipped for missing product", extra={
                    "product_id": product_id,
                    "quantity": quantity,
                    "reason": reason
                })
                return

            product = db.get(Product, product_id)
            if product is not None:
                db.refresh(product)

            stock_released_counter.add(quantity, {"reason": reason})
            logger.info("Released stock", extra={
                "product_id": product_id,
                "quantity": quantity,
                "reason": reason,
                "policy": policy.value
            })

    def release_order(
        self,
        db: Session,
        order: Order,
        policy: ReactivationPolicy = ReactivationPolicy.AUTO_ONLY,
        reason: str = "compensation"
    ) -> None:
        """Release every item of an order."""
        for item in sorted(order.items, key=lambda i: i.product_id):
            self.release(db, item.product_id, item.quantity, policy=policy, reason=reason)
