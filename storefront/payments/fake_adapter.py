"""Configurable fake payment provider for development and testing.

Simulates a provider without any external calls. It can be told to succeed,
reject or time out, which makes it useful for:
- Local development without provider credentials (PAYMENT_PROVIDER_MODE=fake)
- Automated tests with predictable outcomes
"""
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import uuid4

from storefront.errors import ProviderError, ProviderUnavailable
from storefront.models import Order
from storefront.payments.port import (
    CaptureResult,
    PaymentIntent,
    PaymentProvider,
    RefundResult,
    StatusResult,
)


class FakePaymentProvider(PaymentProvider):
    """Configurable fake payment provider."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.should_succeed: bool = True
        self.unavailable: bool = False
        self.failure_reason: str = "Payment declined"
        self.webhook_signatures_valid: bool = True
        self.calls: List[dict] = []
        self.payments: Dict[str, dict] = {}

    def configure(
        self,
        should_succeed: bool = True,
        unavailable: bool = False,
        failure_reason: str = "Payment declined",
        webhook_signatures_valid: bool = True
    ) -> None:
        """Configure provider behavior at runtime."""
        self.should_succeed = should_succeed
        self.unavailable = unavailable
        self.failure_reason = failure_reason
        self.webhook_signatures_valid = webhook_signatures_valid

    def _check_available(self) -> None:
        if self.unavailable:
            raise ProviderUnavailable(self.name)

    async def create_intent(self, order: Order) -> PaymentIntent:
        self.calls.append({"method": "create_intent", "order_id": order.id, "amount": order.total_amount})
        self._check_available()
        if not self.should_succeed:
            raise ProviderError(self.name, self.failure_reason)

        provider_ref = f"fake_{self.name}_{uuid4().hex[:12]}"
        self.payments[provider_ref] = {
            "order_id": order.id,
            "amount": order.total_amount,
            "status": "created",
        }
        return PaymentIntent(
            provider_ref=provider_ref,
            client_secret=f"{provider_ref}_secret",
            approval_url=f"https://fake-{self.name}.test/approve/{provider_ref}",
        )

    async def capture(self, provider_ref: str, payer_id: Optional[str] = None) -> CaptureResult:
        self.calls.append({"method": "capture", "provider_ref": provider_ref, "payer_id": payer_id})
        self._check_available()
        payment = self.payments.get(provider_ref)
        if payment is None:
            raise ProviderError(self.name, "Unknown payment")

        if self.should_succeed:
            payment["status"] = "approved"
            return CaptureResult(
                success=True,
                provider_ref=provider_ref,
                status="approved",
                order_id=payment["order_id"],
                amount=payment["amount"],
            )
        payment["status"] = "failed"
        return CaptureResult(
            success=False,
            provider_ref=provider_ref,
            status="failed",
            order_id=payment["order_id"],
            failure_reason=self.failure_reason,
        )

    async def refund(self, provider_ref: str, amount: Decimal) -> RefundResult:
        self.calls.append({"method": "refund", "provider_ref": provider_ref, "amount": amount})
        self._check_available()
        if self.should_succeed:
            return RefundResult(success=True, refund_id=f"fake_ref_{uuid4().hex[:12]}", status="succeeded")
        return RefundResult(success=False, status="failed", failure_reason=self.failure_reason)

    async def get_status(self, provider_ref: str) -> StatusResult:
        self.calls.append({"method": "get_status", "provider_ref": provider_ref})
        self._check_available()
        payment = self.payments.get(provider_ref, {})
        return StatusResult(
            provider=self.name,
            status=payment.get("status", "unknown"),
            amount=payment.get("amount"),
            currency="USD",
        )

    async def verify_webhook_signature(
        self,
        webhook_id: str,
        transmission: Dict[str, str],
        event: dict
    ) -> bool:
        self.calls.append({
            "method": "verify_webhook_signature",
            "webhook_id": webhook_id,
            "transmission_id": transmission.get("transmission_id"),
            "event_id": event.get("id") if isinstance(event, dict) else None,
        })
        self._check_available()
        return self.webhook_signatures_valid
