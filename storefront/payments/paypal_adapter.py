"""Wallet payments through the PayPal Payments REST API."""
import logging
import time
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from storefront.config import (
    CURRENCY,
    PAYPAL_API_URL,
    PAYPAL_CANCEL_URL,
    PAYPAL_CLIENT_ID,
    PAYPAL_RETURN_URL,
    PAYPAL_SECRET,
)
from storefront.errors import ProviderError
from storefront.i18n import translate
from storefront.models import Order, PaymentMethod, PaymentStatus
from storefront.payments.http_provider import HttpPaymentProvider
from storefront.payments.port import (
    CaptureResult,
    PaymentIntent,
    PaymentProvider,
    RefundResult,
    StatusResult,
    format_amount,
)

logger = logging.getLogger(__name__)


class PayPalGateway(HttpPaymentProvider, PaymentProvider):
    """
    Wallet provider adapter.

    Payments are approved by the customer on the provider's site and must be
    executed explicitly when the customer is redirected back; creating the
    payment alone moves no funds.
    """

    name = PaymentMethod.PAYPAL.value

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        client_id: str = PAYPAL_CLIENT_ID,
        secret: str = PAYPAL_SECRET,
        base_url: str = PAYPAL_API_URL,
        return_url: str = PAYPAL_RETURN_URL,
        cancel_url: str = PAYPAL_CANCEL_URL,
        **kwargs
    ):
        super().__init__(http_client, base_url, **kwargs)
        self.client_id = client_id
        self.secret = secret
        self.return_url = return_url
        self.cancel_url = cancel_url
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0

    async def _headers(self) -> Dict[str, str]:
        if not self._access_token or time.time() >= self._token_expires_at:
            token = await self._request(
                "POST",
                "/v1/oauth2/token",
                operation="oauth_token",
                auth=(self.client_id, self.secret),
                data={"grant_type": "client_credentials"}
            )
            if not token.get("access_token"):
                raise ProviderError(self.name, "Could not obtain an access token")
            self._access_token = token["access_token"]
            # Refresh a minute early
            self._token_expires_at = time.time() + int(token.get("expires_in", 0)) - 60
        return {"Authorization": f"Bearer {self._access_token}"}

    def _build_items(self, order: Order) -> Dict[str, Any]:
        items = []
        total = Decimal("0.00")

        for order_item in order.items:
            product = order_item.product
            name = translate(product.name if product else None, order.locale) or f"Product #{order_item.product_id}"

            if order_item.quantity <= 0:
                raise ProviderError(self.name, f"Invalid quantity for product: {name}")
            if order_item.price <= 0:
                raise ProviderError(self.name, f"Invalid price for product: {name}")

            items.append({
                "name": name[:127],
                "sku": str(order_item.product_id),
                "price": format_amount(order_item.price),
                "currency": CURRENCY,
                "quantity": order_item.quantity,
            })
            total += Decimal(format_amount(order_item.price)) * order_item.quantity

        if not items:
            raise ProviderError(self.name, "No items in order")

        if format_amount(total) != format_amount(order.total_amount):
            logger.error("Order total mismatch", extra={
                "calculated_total": format_amount(total),
                "order_total": format_amount(order.total_amount),
                "order_id": order.id
            })
            raise ProviderError(self.name, "Order total mismatch")

        return {"items": items, "total": format_amount(total)}

    async def create_intent(self, order: Order) -> PaymentIntent:
        if order.payment_status == PaymentStatus.PAID.value:
            raise ProviderError(self.name, "Order is already paid")

        item_list = self._build_items(order)

        logger.info("Creating PayPal payment", extra={
            "order_id": order.id,
            "amount": item_list["total"],
            "items_count": len(item_list["items"])
        })

        payment = await self._request(
            "POST",
            "/v1/payments/payment",
            operation="create_payment",
            headers={
                **(await self._headers()),
                "PayPal-Request-Id": f"order-{order.order_number}-payment",
            },
            json={
                "intent": "sale",
                "payer": {"payment_method": "paypal"},
                "transactions": [{
                    "amount": {
                        "total": item_list["total"],
                        "currency": CURRENCY,
                        "details": {"subtotal": item_list["total"]},
                    },
                    "item_list": {"items": item_list["items"]},
                    "description": f"Order #{order.order_number}",
                    "invoice_number": order.order_number,
                    "custom": str(order.id),
                }],
                "redirect_urls": {
                    "return_url": self.return_url,
                    "cancel_url": f"{self.cancel_url}?order_id={order.id}",
                },
            }
        )

        approval_url = next(
            (link.get("href") for link in payment.get("links", []) if link.get("rel") == "approval_url"),
            None
        )
        if not payment.get("id") or not approval_url:
            raise ProviderError(self.name, "Could not get PayPal approval URL")

        logger.info("PayPal payment created", extra={
            "payment_id": payment["id"],
            "state": payment.get("state"),
            "order_id": order.id
        })

        return PaymentIntent(provider_ref=payment["id"], approval_url=approval_url)

    async def _get_payment(self, payment_id: str) -> Dict[str, Any]:
        return await self._request(
            "GET",
            f"/v1/payments/payment/{payment_id}",
            operation="get_payment",
            headers=await self._headers()
        )

    def _capture_result(self, payment_id: str, payment: Dict[str, Any]) -> CaptureResult:
        state = payment.get("state", "unknown")
        transactions = payment.get("transactions") or [{}]
        custom = transactions[0].get("custom")
        total = (transactions[0].get("amount") or {}).get("total")
        return CaptureResult(
            success=state == "approved",
            provider_ref=payment_id,
            status=state,
            order_id=int(custom) if custom and str(custom).isdigit() else None,
            amount=Decimal(total) if total else None,
            failure_reason=None if state == "approved" else f"Payment was not approved ({state})"
        )

    async def capture(self, provider_ref: str, payer_id: Optional[str] = None) -> CaptureResult:
        if not payer_id:
            raise ProviderError(self.name, "Missing payer id")

        payment = await self._get_payment(provider_ref)

        # Already executed on an earlier redirect: report it again
        if payment.get("state") == "approved":
            logger.info("PayPal payment already executed", extra={"payment_id": provider_ref})
            return self._capture_result(provider_ref, payment)

        logger.info("Executing PayPal payment", extra={
            "payment_id": provider_ref,
            "payer_id": payer_id,
            "payment_state": payment.get("state")
        })

        result = await self._request(
            "POST",
            f"/v1/payments/payment/{provider_ref}/execute",
            operation="execute_payment",
            headers=await self._headers(),
            json={"payer_id": payer_id}
        )

        logger.info("PayPal payment executed", extra={
            "payment_id": provider_ref,
            "state": result.get("state")
        })

        return self._capture_result(provider_ref, result)

    async def refund(self, provider_ref: str, amount: Decimal) -> RefundResult:
        payment = await self._get_payment(provider_ref)

        try:
            related = payment["transactions"][0]["related_resources"]
            sale_id = next(resource["sale"]["id"] for resource in related if "sale" in resource)
        except (KeyError, IndexError, StopIteration) as e:
            raise ProviderError(self.name, "No completed sale found for payment") from e

        refund = await self._request(
            "POST",
            f"/v1/payments/sale/{sale_id}/refund",
            operation="refund",
            headers={
                **(await self._headers()),
                "PayPal-Request-Id": f"{sale_id}-refund",
            },
            json={"amount": {"total": format_amount(amount), "currency": CURRENCY}}
        )

        state = refund.get("state")
        success = state in ("completed", "pending")
        return RefundResult(
            success=success,
            refund_id=refund.get("id"),
            status=state,
            failure_reason=None if success else f"Refund is {state}"
        )

    async def get_status(self, provider_ref: str) -> StatusResult:
        payment = await self._get_payment(provider_ref)

        transactions = payment.get("transactions") or [{}]
        amount = transactions[0].get("amount") or {}
        payer_info = (payment.get("payer") or {}).get("payer_info") or {}
        return StatusResult(
            provider=self.name,
            status=payment.get("state", "unknown"),
            amount=Decimal(amount["total"]) if amount.get("total") else None,
            currency=amount.get("currency"),
            details={"payer_email": payer_info.get("email")}
        )

    async def verify_webhook_signature(
        self,
        webhook_id: str,
        transmission: Dict[str, str],
        event: Dict[str, Any]
    ) -> bool:
        """
        Ask the provider whether a webhook delivery is authentic.

        ``transmission`` holds the delivery's auth_algo, cert_url,
        transmission_id, transmission_sig and transmission_time.
        """
        result = await self._request(
            "POST",
            "/v1/notifications/verify-webhook-signature",
            operation="verify_webhook",
            headers=await self._headers(),
            json={**transmission, "webhook_id": webhook_id, "webhook_event": event}
        )
        status = result.get("verification_status")
        if status != "SUCCESS":
            logger.warning("PayPal rejected webhook signature", extra={
                "transmission_id": transmission.get("transmission_id"),
                "verification_status": status
            })
        return status == "SUCCESS"
