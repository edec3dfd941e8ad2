"""Order management service."""
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload
from opentelemetry import trace

from storefront.auth import Principal
from storefront.errors import (
    Forbidden,
    NotFound,
    NotPaid,
    PaymentInitFailed,
    ProviderError,
    ProviderUnavailable,
    RefundFailed,
    ValidationError,
)
from storefront.models import Order, OrderItem, OrderStatus, PaymentMethod, PaymentStatus
from storefront.monitoring import (
    checkout_amount_histogram,
    checkout_counter,
    payment_compensations_counter,
    refunds_counter,
)
from storefront.payments.port import PaymentProvider
from storefront.services.cart_service import CartService, OrderDraft
from storefront.services.inventory_ledger import InventoryLedger, ReactivationPolicy

logger = logging.getLogger(__name__)

ORDERS_PER_PAGE = 10


@dataclass(frozen=True)
class CheckoutResult:
    order: Order
    client_secret: Optional[str] = None
    approval_url: Optional[str] = None


class OrderService:
    """Service for managing orders."""

    def __init__(
        self,
        cart_service: CartService,
        ledger: InventoryLedger,
        providers: Dict[str, PaymentProvider],
        compensation_policy: ReactivationPolicy = ReactivationPolicy.AUTO_ONLY,
        refund_policy: ReactivationPolicy = ReactivationPolicy.AUTO_ONLY,
        restock_on_refund: bool = True
    ):
        """
        Initialize order service.

        Args:
            cart_service: Cart service instance
            ledger: Inventory ledger for stock reservations
            providers: Payment provider adapters keyed by payment method
            compensation_policy: Reactivation policy for releases after a
                failed or cancelled payment
            refund_policy: Reactivation policy for releases after a refund
            restock_on_refund: Whether refunds return units to stock
        """
        self.cart_service = cart_service
        self.ledger = ledger
        self.providers = providers
        self.compensation_policy = compensation_policy
        self.refund_policy = refund_policy
        self.restock_on_refund = restock_on_refund
        self.tracer = trace.get_tracer(__name__)

    def get_provider(self, payment_method: str) -> PaymentProvider:
        provider = self.providers.get(payment_method)
        if provider is None:
            raise ValidationError(f"Unsupported payment method: {payment_method}", field="payment_method")
        return provider

    def _generate_order_number(self, db: Session) -> str:
        while True:
            order_number = f"ORD-{datetime.utcnow():%Y%m%d}-{uuid4().hex[:6].upper()}"
            exists = db.query(Order.id).filter(Order.order_number == order_number).first()
            if not exists:
                return order_number

    def create_order(
        self,
        db: Session,
        principal: Principal,
        draft: OrderDraft,
        details: Any,
        locale: str
    ) -> Order:
        """
        Persist an order for a priced draft in one transaction.

        Stock for every line is locked and re-checked in product id order,
        the order and its items are written, stock is reserved and the cart
        is cleared. Any failure rolls the whole transaction back.

        Args:
            db: Database session
            principal: Ordering user
            draft: Priced cart contents
            details: Payment method and delivery address
            locale: Language captured for the order

        Returns:
            The committed order

        Raises:
            InsufficientStock: If a line no longer fits in stock
        """
        method = PaymentMethod(details.payment_method)

        try:
            with self.tracer.start_as_current_span("db.transaction.create_order") as db_span:
                db_span.set_attribute("db.operation", "INSERT")
                db_span.set_attribute("db.table", "orders")
                db_span.set_attribute("user.id", principal.user_id)
                db_span.set_attribute("order.total_amount", str(draft.total))

                order = Order(
                    order_number=self._generate_order_number(db),
                    user_id=principal.user_id,
                    status=OrderStatus.PENDING.value,
                    payment_status=(
                        PaymentStatus.AWAITING_PAYMENT.value if method.is_online
                        else PaymentStatus.NOT_PAID.value
                    ),
                    payment_method=method.value,
                    total_amount=draft.total,
                    city=details.city,
                    address=details.address,
                    building_number=details.building_number,
                    notes=details.notes,
                    locale=locale
                )
                db.add(order)

                for line in sorted(draft.lines, key=lambda l: l.product_id):
                    self.ledger.reserve(db, line.product_id, line.quantity)
                    order.items.append(OrderItem(
                        product_id=line.product_id,
                        quantity=line.quantity,
                        price=line.unit_price,
                        total=line.total
                    ))

                self.cart_service.clear_cart(db, principal.user_id, commit=False)

                db.commit()
                db_span.set_attribute("order.id", order.id)
        except Exception as e:
            db.rollback()
            logger.error("Failed to create order", extra={
                "user_id": principal.user_id,
                "amount": str(draft.total),
                "payment_method": method.value,
                "error": str(e)
            })
            raise

        db.refresh(order)
        logger.info("Order created", extra={
            "order_id": order.id,
            "order_number": order.order_number,
            "user_id": principal.user_id,
            "amount": str(order.total_amount),
            "payment_method": method.value,
            "item_count": len(draft.lines)
        })
        return order

    async def checkout(
        self,
        db: Session,
        principal: Principal,
        details: Any,
        locale: str
    ) -> CheckoutResult:
        """
        Check out the user's cart.

        Online orders get a payment intent from their provider. If that
        fails, the order is compensated (stock released, order deleted)
        before the error is surfaced.

        Raises:
            EmptyCart: If the cart has no lines
            OutOfStock: If a line cannot be fulfilled
            PaymentInitFailed: If the provider rejected the payment
            ProviderUnavailable: If the provider could not be reached
        """
        method = PaymentMethod(details.payment_method)
        span = trace.get_current_span()
        span.set_attribute("payment.method", method.value)
        if method.is_online:
            # Fail before touching stock when the method is not wired
            self.get_provider(method.value)

        draft = self.cart_service.price_cart(db, principal.user_id, locale)
        order = self.create_order(db, principal, draft, details, locale)

        if not method.is_online:
            self._record_checkout(order, "completed")
            return CheckoutResult(order=order)

        provider = self.get_provider(method.value)
        start = time.time()
        try:
            intent = await provider.create_intent(order)
        except ProviderUnavailable:
            self._compensate(db, order.id, "provider_unavailable")
            self._record_checkout(order, "provider_unavailable")
            raise
        except Exception as e:
            self._compensate(db, order.id, "intent_failed")
            self._record_checkout(order, "failed")
            message = e.message if isinstance(e, ProviderError) else "Payment initialization failed"
            logger.error("Payment intent creation failed", extra={
                "order_id": order.id,
                "payment_method": method.value,
                "duration_ms": int((time.time() - start) * 1000),
                "error": str(e)
            })
            raise PaymentInitFailed(message) from e

        column = (
            Order.stripe_payment_intent_id if method is PaymentMethod.STRIPE
            else Order.paypal_payment_id
        )
        # A webhook may already have recorded the reference
        db.execute(
            update(Order)
            .where(Order.id == order.id, column.is_(None))
            .values({column.key: intent.provider_ref})
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.refresh(order)

        self._record_checkout(order, "completed")
        logger.info("Checkout completed", extra={
            "user_id": principal.user_id,
            "order_id": order.id,
            "amount": str(order.total_amount),
            "payment_method": method.value,
            "provider_ref": intent.provider_ref
        })

        return CheckoutResult(
            order=order,
            client_secret=intent.client_secret,
            approval_url=intent.approval_url
        )

    def _record_checkout(self, order: Order, status: str) -> None:
        checkout_counter.add(1, {"payment_method": order.payment_method, "status": status})
        if status == "completed":
            checkout_amount_histogram.record(
                float(order.total_amount),
                {"payment_method": order.payment_method}
            )

    def _compensate(self, db: Session, order_id: int, reason: str) -> None:
        try:
            order = self.lock_order(db, order_id)
            if order is None or order.payment_status != PaymentStatus.AWAITING_PAYMENT.value:
                # Already resolved by a provider notification
                db.rollback()
                return
            self.discard_unpaid(db, order, reason)
            db.commit()
        except Exception:
            db.rollback()
            raise

        payment_compensations_counter.add(1, {"reason": reason})

    def lock_order(self, db: Session, order_id: int) -> Optional[Order]:
        """Load an order with a row lock, refreshing any cached state."""
        return db.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def discard_unpaid(self, db: Session, order: Order, reason: str) -> None:
        """Release an unpaid order's stock and delete it. Does not commit."""
        if order.payment_status == PaymentStatus.PAID.value:
            raise ValidationError("Paid orders cannot be deleted")

        self.ledger.release_order(db, order, policy=self.compensation_policy, reason=reason)
        db.delete(order)

        logger.warning("Order discarded", extra={
            "order_id": order.id,
            "order_number": order.order_number,
            "payment_method": order.payment_method,
            "reason": reason
        })

    def mark_paid(self, db: Session, order: Order, provider_ref: Optional[str] = None) -> None:
        """Record a confirmed capture. Does not commit."""
        order.payment_status = PaymentStatus.PAID.value
        if provider_ref and not order.provider_reference:
            if order.payment_method == PaymentMethod.STRIPE.value:
                order.stripe_payment_intent_id = provider_ref
            elif order.payment_method == PaymentMethod.PAYPAL.value:
                order.paypal_payment_id = provider_ref

        logger.info("Order paid", extra={
            "order_id": order.id,
            "payment_method": order.payment_method,
            "provider_ref": order.provider_reference
        })

    def mark_refunded(self, db: Session, order: Order, refund_id: Optional[str], reason: str) -> None:
        """Release stock (when configured) and record the refund. Does not commit."""
        if self.restock_on_refund:
            self.ledger.release_order(db, order, policy=self.refund_policy, reason=reason)
        order.payment_status = PaymentStatus.REFUNDED.value
        if refund_id:
            order.refund_id = refund_id

        logger.info("Order refunded", extra={
            "order_id": order.id,
            "refund_id": refund_id,
            "reason": reason,
            "restocked": self.restock_on_refund
        })

    def update_status(
        self,
        db: Session,
        principal: Principal,
        order_id: int,
        status: str
    ) -> Order:
        """
        Change an order's fulfillment status. Admin only.

        The payment axis is never touched here.
        """
        if not principal.is_admin:
            raise Forbidden("This action is unauthorized")
        try:
            new_status = OrderStatus(status)
        except ValueError as e:
            raise ValidationError("Invalid order status", field="status") from e

        order = self.lock_order(db, order_id)
        if order is None:
            raise NotFound("Order not found")

        previous = order.status
        order.status = new_status.value
        db.commit()
        db.refresh(order)

        logger.info("Order status updated", extra={
            "order_id": order.id,
            "from_status": previous,
            "to_status": new_status.value,
            "admin": principal.user_id
        })
        return order

    async def refund(self, db: Session, principal: Principal, order_id: int) -> Order:
        """
        Refund a paid order through its provider. Admin only.

        Raises:
            Forbidden: If the caller is not an admin
            NotPaid: If the order is not paid
            RefundFailed: If the provider rejected the refund
            ProviderUnavailable: If the provider could not be reached
        """
        if not principal.is_admin:
            raise Forbidden("This action is unauthorized")

        order = db.get(Order, order_id)
        if order is None:
            raise NotFound("Order not found")
        if order.payment_status != PaymentStatus.PAID.value:
            raise NotPaid()

        provider_ref = order.provider_reference
        if not provider_ref:
            raise RefundFailed("Order has no payment reference to refund")

        provider = self.get_provider(order.payment_method)
        with self.tracer.start_as_current_span("payment.refund") as span:
            span.set_attribute("order.id", order.id)
            span.set_attribute("payment.method", order.payment_method)
            try:
                result = await provider.refund(provider_ref, order.total_amount)
            except ProviderUnavailable:
                refunds_counter.add(1, {"provider": order.payment_method, "origin": "admin", "outcome": "unavailable"})
                raise
            except ProviderError as e:
                refunds_counter.add(1, {"provider": order.payment_method, "origin": "admin", "outcome": "failed"})
                raise RefundFailed(e.message) from e

        if not result.success:
            refunds_counter.add(1, {"provider": order.payment_method, "origin": "admin", "outcome": "failed"})
            logger.error("Refund rejected", extra={
                "order_id": order.id,
                "status": result.status,
                "reason": result.failure_reason
            })
            raise RefundFailed(result.failure_reason or "Refund failed")

        try:
            order = self.lock_order(db, order_id)
            if order.payment_status == PaymentStatus.PAID.value:
                self.mark_refunded(db, order, result.refund_id, reason="refund")
            elif not order.refund_id:
                # The provider's refund notification won the race
                order.refund_id = result.refund_id
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(order)
        refunds_counter.add(1, {"provider": order.payment_method, "origin": "admin", "outcome": "succeeded"})
        return order

    def list_orders(
        self,
        db: Session,
        principal: Principal,
        page: int = 1,
        per_page: int = ORDERS_PER_PAGE
    ) -> Tuple[List[Order], int]:
        """
        Get a page of the user's orders, newest first.

        Returns:
            Orders on the page and the total number of orders
        """
        with self.tracer.start_as_current_span("db.query.get_user_orders") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "orders")
            db_span.set_attribute("user.id", principal.user_id)

            query = db.query(Order).filter(Order.user_id == principal.user_id)
            total = query.count()
            orders = (
                query.options(selectinload(Order.items).selectinload(OrderItem.product))
                .order_by(Order.created_at.desc(), Order.id.desc())
                .offset((max(page, 1) - 1) * per_page)
                .limit(per_page)
                .all()
            )

            db_span.set_attribute("db.rows_returned", len(orders))
            return orders, total

    def get_order(self, db: Session, principal: Principal, order_id: int) -> Order:
        order = db.get(Order, order_id)
        # Other users' orders are reported as missing
        if order is None or (order.user_id != principal.user_id and not principal.is_admin):
            raise NotFound("Order not found")
        return order

    async def get_payment_status(
        self,
        db: Session,
        principal: Principal,
        order_id: int
    ) -> Dict[str, Any]:
        """Look up the live provider status of an order's payment."""
        order = self.get_order(db, principal, order_id)
        status = {
            "order_id": order.id,
            "payment_method": order.payment_method,
            "payment_status": order.payment_status,
            "provider_status": None,
            "amount": None,
            "currency": None,
            "details": {}
        }

        provider_ref = order.provider_reference
        if not PaymentMethod(order.payment_method).is_online or not provider_ref:
            return status

        result = await self.get_provider(order.payment_method).get_status(provider_ref)
        status.update({
            "provider_status": result.status,
            "amount": result.amount,
            "currency": result.currency,
            "details": result.details
        })
        return status
