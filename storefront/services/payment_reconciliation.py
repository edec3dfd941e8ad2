"""Payment reconciliation: provider notifications -> order transitions.

Webhooks and redirect completions of both providers are normalized into a
``PaymentEvent`` and applied under a row lock on the order. The order's
payment status is the only ordering guard: an event is applied only from the
state it expects and acknowledged without changes otherwise, so duplicated or
out-of-order deliveries are harmless.
"""
import json
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session
from opentelemetry import trace

from storefront.auth import Principal
from storefront.errors import (
    NotFound,
    PaymentFailed,
    ProviderError,
    ValidationError,
    WebhookVerificationFailed,
)
from storefront.models import Order, PaymentMethod, PaymentStatus
from storefront.monitoring import (
    refunds_counter,
    webhook_events_counter,
    webhook_verification_failures_counter,
)
from storefront.payments.events import PaymentEvent, PaymentEventType
from storefront.payments.port import CaptureResult
from storefront.payments.webhooks import normalize_paypal_event, normalize_stripe_event
from storefront.services.order_service import OrderService

logger = logging.getLogger(__name__)

APPLIED = "applied"
IGNORED = "ignored"
DUPLICATE = "duplicate"
ORDER_NOT_FOUND = "order_not_found"

NORMALIZERS: Dict[str, Callable[[Mapping[str, Any]], Optional[PaymentEvent]]] = {
    PaymentMethod.STRIPE.value: normalize_stripe_event,
    PaymentMethod.PAYPAL.value: normalize_paypal_event,
}

_REFERENCE_COLUMNS = {
    PaymentMethod.STRIPE.value: Order.stripe_payment_intent_id,
    PaymentMethod.PAYPAL.value: Order.paypal_payment_id,
}


class PaymentReconciliationService:
    """Verifies, normalizes and applies payment notifications."""

    def __init__(self, order_service: OrderService, verifiers: Dict[str, Any]):
        """
        Initialize reconciliation service.

        Args:
            order_service: Order service performing the transitions
            verifiers: Webhook signature verifiers keyed by provider
        """
        self.order_service = order_service
        self.verifiers = verifiers
        self.tracer = trace.get_tracer(__name__)

    async def handle_webhook(
        self,
        db: Session,
        provider: str,
        body: bytes,
        headers: Mapping[str, str]
    ) -> str:
        """
        Verify and apply one webhook delivery.

        Returns:
            The outcome of applying the event

        Raises:
            WebhookVerificationFailed: If the signature does not check out
            ValidationError: If the payload is malformed
        """
        verifier = self.verifiers.get(provider)
        normalizer = NORMALIZERS.get(provider)
        if verifier is None or normalizer is None:
            raise ValidationError(f"Unknown payment provider: {provider}")

        try:
            await verifier.verify(body, headers)
        except WebhookVerificationFailed as e:
            webhook_verification_failures_counter.add(1, {"provider": provider})
            logger.warning("Webhook signature verification failed", extra={
                "provider": provider,
                "error": e.message
            })
            raise

        try:
            payload = json.loads(body)
        except ValueError as e:
            raise ValidationError("Invalid payload") from e
        if not isinstance(payload, dict):
            raise ValidationError("Invalid payload")

        event = normalizer(payload)
        if event is None:
            webhook_events_counter.add(1, {"provider": provider, "type": "unhandled", "outcome": IGNORED})
            logger.info("Unhandled webhook event type", extra={
                "provider": provider,
                "event_type": payload.get("type") or payload.get("event_type"),
                "event_id": payload.get("id")
            })
            return IGNORED

        return self.apply(db, event)

    def _find_order(self, db: Session, event: PaymentEvent) -> Optional[Order]:
        if event.order_id is not None:
            return self.order_service.lock_order(db, event.order_id)

        column = _REFERENCE_COLUMNS.get(event.provider)
        if column is None or not event.provider_ref:
            return None
        return db.execute(
            select(Order)
            .where(column == event.provider_ref)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def apply(self, db: Session, event: PaymentEvent) -> str:
        """
        Apply a normalized event to its order, idempotently.

        Captured moves awaiting_payment to paid. Failed releases stock and
        deletes an awaiting_payment order. Refunded releases stock and marks
        a paid order refunded. Every other combination is acknowledged
        without changes.

        Raises:
            ValidationError: If a capture amount does not match the order total
        """
        with self.tracer.start_as_current_span("payment.reconcile") as span:
            span.set_attribute("payment.provider", event.provider)
            span.set_attribute("payment.event", event.type.value)
            span.set_attribute("payment.source", event.source)

            try:
                order = self._find_order(db, event)
                outcome = self._transition(db, order, event)
                if outcome == APPLIED:
                    db.commit()
                else:
                    db.rollback()
            except Exception:
                db.rollback()
                raise

            span.set_attribute("payment.outcome", outcome)
            webhook_events_counter.add(1, {
                "provider": event.provider,
                "type": event.type.value,
                "outcome": outcome
            })
            if outcome == APPLIED and event.type is PaymentEventType.REFUNDED:
                refunds_counter.add(1, {"provider": event.provider, "origin": event.source, "outcome": "succeeded"})

            logger.info("Payment event reconciled", extra={
                "provider": event.provider,
                "event_type": event.type.value,
                "event_id": event.event_id,
                "order_id": event.order_id,
                "provider_ref": event.provider_ref,
                "source": event.source,
                "outcome": outcome
            })
            return outcome

    def _transition(self, db: Session, order: Optional[Order], event: PaymentEvent) -> str:
        if order is None:
            # Already compensated, or never ours
            return ORDER_NOT_FOUND

        if order.payment_method != event.provider:
            logger.warning("Payment event provider does not match order", extra={
                "order_id": order.id,
                "order_payment_method": order.payment_method,
                "event_provider": event.provider
            })
            return IGNORED

        if event.type is PaymentEventType.CAPTURED:
            if order.payment_status != PaymentStatus.AWAITING_PAYMENT.value:
                return DUPLICATE
            if event.amount is not None and event.amount != order.total_amount:
                logger.error("Captured amount does not match order total", extra={
                    "order_id": order.id,
                    "order_total": str(order.total_amount),
                    "captured_amount": str(event.amount)
                })
                raise ValidationError("Payment amount does not match order total", field="amount")
            self.order_service.mark_paid(db, order, event.provider_ref)
            return APPLIED

        if event.type is PaymentEventType.FAILED:
            if order.payment_status != PaymentStatus.AWAITING_PAYMENT.value:
                return DUPLICATE
            self.order_service.discard_unpaid(db, order, reason=f"payment_failed_{event.source}")
            return APPLIED

        if event.type is PaymentEventType.REFUNDED:
            if order.payment_status != PaymentStatus.PAID.value:
                return DUPLICATE
            if event.amount is not None and event.amount < order.total_amount:
                # Only a full refund releases stock and closes the order
                logger.info("Ignoring partial refund", extra={
                    "order_id": order.id,
                    "order_total": str(order.total_amount),
                    "refunded_amount": str(event.amount),
                    "refund_id": event.refund_id
                })
                return IGNORED
            self.order_service.mark_refunded(db, order, event.refund_id, reason="provider_refund")
            return APPLIED

        return IGNORED

    async def complete_redirect(
        self,
        db: Session,
        principal: Principal,
        payment_id: Optional[str],
        payer_id: Optional[str]
    ) -> Order:
        """
        Finish a wallet payment after the customer returns from approval.

        The provider is asked to execute the payment and the outcome is
        applied like a webhook would be, so a notification arriving first
        or later changes nothing.

        Raises:
            ValidationError: If the redirect parameters are missing
            NotFound: If no order of the caller carries the payment id
            PaymentFailed: If the provider did not approve the payment
        """
        if not payment_id or not payer_id:
            logger.error("Missing PayPal parameters", extra={
                "payment_id": payment_id,
                "payer_id": payer_id
            })
            raise ValidationError("Missing payment parameters")

        provider_name = PaymentMethod.PAYPAL.value
        order = db.query(Order).filter(Order.paypal_payment_id == payment_id).first()
        if order is None or (order.user_id != principal.user_id and not principal.is_admin):
            raise NotFound("Order not found")
        order_id = order.id

        provider = self.order_service.get_provider(provider_name)
        try:
            result = await provider.capture(payment_id, payer_id)
        except ProviderError as e:
            logger.error("PayPal payment execution rejected", extra={
                "payment_id": payment_id,
                "order_id": order_id,
                "error": e.message
            })
            result = CaptureResult(
                success=False,
                provider_ref=payment_id,
                status="rejected",
                order_id=order_id,
                failure_reason=e.message
            )

        event = PaymentEvent(
            type=PaymentEventType.CAPTURED if result.success else PaymentEventType.FAILED,
            provider=provider_name,
            order_id=order_id,
            provider_ref=payment_id,
            amount=result.amount if result.success else None,
            source="redirect"
        )
        self.apply(db, event)

        if not result.success:
            logger.error("PayPal payment not approved", extra={
                "state": result.status,
                "payment_id": payment_id,
                "order_id": order_id
            })
            # A webhook may already have settled the order
            settled = db.get(Order, order_id)
            if settled is not None and settled.payment_status == PaymentStatus.PAID.value:
                return settled
            raise PaymentFailed(result.failure_reason or "Payment was not approved")

        order = db.get(Order, order_id)
        if order is None:
            raise NotFound("Order not found")
        return order

    def cancel_redirect(self, db: Session, principal: Principal, order_id: Optional[int]) -> str:
        """Handle the customer abandoning a wallet payment."""
        if order_id is None:
            raise ValidationError("Missing order id", field="order_id")

        order = self.order_service.get_order(db, principal, order_id)
        if order.payment_method != PaymentMethod.PAYPAL.value:
            raise ValidationError("Order was not paid with PayPal", field="order_id")

        logger.info("PayPal payment cancelled by user", extra={"order_id": order_id})
        return self.apply(db, PaymentEvent(
            type=PaymentEventType.FAILED,
            provider=order.payment_method,
            order_id=order_id,
            provider_ref=order.paypal_payment_id,
            source="redirect_cancel"
        ))
