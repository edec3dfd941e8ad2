"""Card payments through the Stripe PaymentIntents API."""
import logging
from decimal import Decimal
from typing import Dict, Optional

import httpx

from storefront.config import CURRENCY, STRIPE_API_URL, STRIPE_SECRET_KEY
from storefront.errors import ProviderError
from storefront.models import Order, PaymentMethod, PaymentStatus
from storefront.payments.http_provider import HttpPaymentProvider
from storefront.payments.port import (
    CaptureResult,
    PaymentIntent,
    PaymentProvider,
    RefundResult,
    StatusResult,
    from_minor_units,
    to_minor_units,
)

logger = logging.getLogger(__name__)


class StripeGateway(HttpPaymentProvider, PaymentProvider):
    """
    Card provider adapter.

    The customer confirms the intent client-side with the returned client
    secret; funds movement is reported back through signed webhooks.
    """

    name = PaymentMethod.STRIPE.value

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        secret_key: str = STRIPE_SECRET_KEY,
        base_url: str = STRIPE_API_URL,
        **kwargs
    ):
        super().__init__(http_client, base_url, **kwargs)
        self.secret_key = secret_key

    def _headers(self, idempotency_key: Optional[str] = None) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {self.secret_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    async def create_intent(self, order: Order) -> PaymentIntent:
        if order.payment_status == PaymentStatus.PAID.value:
            raise ProviderError(self.name, "Order is already paid")

        intent = await self._request(
            "POST",
            "/v1/payment_intents",
            operation="create_intent",
            headers=self._headers(idempotency_key=f"order-{order.order_number}-intent"),
            data={
                "amount": to_minor_units(order.total_amount),
                "currency": CURRENCY.lower(),
                "metadata[order_id]": str(order.id),
                "metadata[order_number]": order.order_number,
                "automatic_payment_methods[enabled]": "true",
                "description": f"Order #{order.order_number}",
            }
        )

        if not intent.get("id") or not intent.get("client_secret"):
            raise ProviderError(self.name, "Payment intent response is missing its id or client secret")

        logger.info("Stripe payment intent created", extra={
            "order_id": order.id,
            "payment_intent_id": intent["id"],
            "amount": str(order.total_amount)
        })

        return PaymentIntent(provider_ref=intent["id"], client_secret=intent["client_secret"])

    async def capture(self, provider_ref: str, payer_id: Optional[str] = None) -> CaptureResult:
        intent = await self._request(
            "GET",
            f"/v1/payment_intents/{provider_ref}",
            operation="retrieve_intent",
            headers=self._headers()
        )

        # Manual-capture intents hold funds until captured explicitly
        if intent.get("status") == "requires_capture":
            intent = await self._request(
                "POST",
                f"/v1/payment_intents/{provider_ref}/capture",
                operation="capture",
                headers=self._headers(idempotency_key=f"{provider_ref}-capture")
            )

        status = intent.get("status", "unknown")
        order_id = (intent.get("metadata") or {}).get("order_id")
        return CaptureResult(
            success=status == "succeeded",
            provider_ref=provider_ref,
            status=status,
            order_id=int(order_id) if order_id and str(order_id).isdigit() else None,
            amount=from_minor_units(intent.get("amount_received") or intent.get("amount")),
            failure_reason=None if status == "succeeded" else f"Payment intent is {status}"
        )

    async def refund(self, provider_ref: str, amount: Decimal) -> RefundResult:
        refund = await self._request(
            "POST",
            "/v1/refunds",
            operation="refund",
            headers=self._headers(idempotency_key=f"{provider_ref}-refund"),
            data={
                "payment_intent": provider_ref,
                "amount": to_minor_units(amount),
            }
        )

        status = refund.get("status")
        success = status in ("succeeded", "pending")
        return RefundResult(
            success=success,
            refund_id=refund.get("id"),
            status=status,
            failure_reason=None if success else refund.get("failure_reason") or f"Refund is {status}"
        )

    async def get_status(self, provider_ref: str) -> StatusResult:
        intent = await self._request(
            "GET",
            f"/v1/payment_intents/{provider_ref}",
            operation="retrieve_intent",
            headers=self._headers()
        )

        method_types = intent.get("payment_method_types") or []
        return StatusResult(
            provider=self.name,
            status=intent.get("status", "unknown"),
            amount=from_minor_units(intent.get("amount")),
            currency=intent.get("currency"),
            details={"payment_method": method_types[0] if method_types else None}
        )
