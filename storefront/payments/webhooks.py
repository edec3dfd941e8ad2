"""Webhook authentication and normalization for both payment providers.

A delivery is only parsed after its origin checks out; anything else is
rejected with ``WebhookVerificationFailed`` and never reaches the order
state machine. Card deliveries carry a ``Stripe-Signature`` header checked
with the endpoint secret; wallet deliveries are confirmed by the provider's
own verify-webhook-signature API.
"""
import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

import stripe

from storefront.errors import ProviderError, ValidationError, WebhookVerificationFailed
from storefront.models import PaymentMethod
from storefront.payments.events import PaymentEvent, PaymentEventType
from storefront.payments.port import from_minor_units

logger = logging.getLogger(__name__)


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def _order_id(value: Any) -> Optional[int]:
    if value is None:
        return None
    text = str(value).strip()
    return int(text) if text.isdigit() else None


def _decimal(value: Any) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value)).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None


class StripeSignatureVerifier:
    """
    Verifies ``Stripe-Signature`` with the endpoint secret.

    Signature parsing, the timestamp tolerance and secret rotation (several
    ``v1`` entries) are handled by ``stripe.Webhook.construct_event``.
    """

    header_name = "Stripe-Signature"

    def __init__(self, secret: str, tolerance: int = 300):
        self.secret = secret
        self.tolerance = tolerance

    async def verify(self, body: bytes, headers: Mapping[str, str]) -> None:
        # An empty secret would accept deliveries signed with an empty key
        if not self.secret:
            raise WebhookVerificationFailed("Webhook secret is not configured")

        header = _header(headers, self.header_name)
        if not header:
            raise WebhookVerificationFailed("Missing signature header")

        try:
            stripe.Webhook.construct_event(body, header, self.secret, tolerance=self.tolerance)
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationFailed(e.user_message or "Invalid signature") from e
        except ValueError as e:
            raise ValidationError("Invalid payload") from e


class PayPalSignatureVerifier:
    """
    Confirms ``PAYPAL-*`` transmission headers with the provider.

    The headers and the parsed event are posted to the provider's
    verify-webhook-signature endpoint through ``gateway``; only a
    ``SUCCESS`` verdict lets the delivery through.
    """

    transmission_headers = {
        "auth_algo": "PAYPAL-AUTH-ALGO",
        "cert_url": "PAYPAL-CERT-URL",
        "transmission_id": "PAYPAL-TRANSMISSION-ID",
        "transmission_sig": "PAYPAL-TRANSMISSION-SIG",
        "transmission_time": "PAYPAL-TRANSMISSION-TIME",
    }

    def __init__(self, gateway, webhook_id: str):
        self.gateway = gateway
        self.webhook_id = webhook_id

    async def verify(self, body: bytes, headers: Mapping[str, str]) -> None:
        if not self.webhook_id:
            raise WebhookVerificationFailed("Webhook id is not configured")

        transmission: Dict[str, str] = {}
        for field, name in self.transmission_headers.items():
            value = _header(headers, name)
            if not value:
                raise WebhookVerificationFailed("Missing signature headers")
            transmission[field] = value

        try:
            event = json.loads(body)
        except ValueError as e:
            raise ValidationError("Invalid payload") from e

        try:
            verified = await self.gateway.verify_webhook_signature(self.webhook_id, transmission, event)
        except ProviderError as e:
            logger.warning("Webhook signature check failed at the provider", extra={
                "provider": PaymentMethod.PAYPAL.value,
                "error": e.message
            })
            raise WebhookVerificationFailed("Signature could not be verified") from e

        if not verified:
            raise WebhookVerificationFailed("Invalid signature")


def normalize_stripe_event(payload: Mapping[str, Any]) -> Optional[PaymentEvent]:
    """
    Map a card provider event to a PaymentEvent.

    Returns None for event types the store does not act on.
    """
    event_type = payload.get("type")
    obj = (payload.get("data") or {}).get("object")
    if not event_type or not isinstance(obj, Mapping):
        raise ValidationError("Invalid payload")

    provider = PaymentMethod.STRIPE.value
    metadata = obj.get("metadata") or {}

    if event_type == "payment_intent.succeeded":
        return PaymentEvent(
            type=PaymentEventType.CAPTURED,
            provider=provider,
            order_id=_order_id(metadata.get("order_id")),
            provider_ref=obj.get("id"),
            amount=from_minor_units(obj.get("amount_received") or obj.get("amount")),
            event_id=payload.get("id"),
        )

    if event_type in ("payment_intent.payment_failed", "payment_intent.canceled"):
        return PaymentEvent(
            type=PaymentEventType.FAILED,
            provider=provider,
            order_id=_order_id(metadata.get("order_id")),
            provider_ref=obj.get("id"),
            event_id=payload.get("id"),
        )

    if event_type == "charge.refunded":
        # Only full refunds move the order to refunded
        if not obj.get("refunded"):
            logger.info("Ignoring partial refund", extra={
                "charge_id": obj.get("id"),
                "amount_refunded": obj.get("amount_refunded")
            })
            return None
        refunds = (obj.get("refunds") or {}).get("data") or []
        return PaymentEvent(
            type=PaymentEventType.REFUNDED,
            provider=provider,
            order_id=_order_id(metadata.get("order_id")),
            provider_ref=obj.get("payment_intent"),
            amount=from_minor_units(obj.get("amount_refunded")),
            refund_id=refunds[0].get("id") if refunds else None,
            event_id=payload.get("id"),
        )

    return None


_PAYPAL_EVENT_TYPES = {
    "PAYMENT.CAPTURE.COMPLETED": PaymentEventType.CAPTURED,
    "PAYMENT.SALE.COMPLETED": PaymentEventType.CAPTURED,
    "PAYMENT.CAPTURE.DENIED": PaymentEventType.FAILED,
    "PAYMENT.SALE.DENIED": PaymentEventType.FAILED,
    "PAYMENT.CAPTURE.REFUNDED": PaymentEventType.REFUNDED,
    "PAYMENT.SALE.REFUNDED": PaymentEventType.REFUNDED,
}


def normalize_paypal_event(payload: Mapping[str, Any]) -> Optional[PaymentEvent]:
    """
    Map a wallet provider event to a PaymentEvent.

    Returns None for event types the store does not act on.
    """
    event_type = payload.get("event_type")
    resource = payload.get("resource")
    if not event_type or not isinstance(resource, Mapping):
        raise ValidationError("Invalid payload")

    normalized_type = _PAYPAL_EVENT_TYPES.get(event_type)
    if normalized_type is None:
        return None

    amount = resource.get("amount") or {}
    order_id = _order_id(resource.get("custom_id") or resource.get("custom"))

    if normalized_type is PaymentEventType.REFUNDED:
        return PaymentEvent(
            type=normalized_type,
            provider=PaymentMethod.PAYPAL.value,
            order_id=order_id,
            provider_ref=resource.get("parent_payment"),
            amount=_decimal(amount.get("value") or amount.get("total")),
            refund_id=resource.get("id"),
            event_id=payload.get("id"),
        )

    return PaymentEvent(
        type=normalized_type,
        provider=PaymentMethod.PAYPAL.value,
        order_id=order_id,
        provider_ref=resource.get("parent_payment") or resource.get("id"),
        amount=_decimal(amount.get("value") or amount.get("total")),
        event_id=payload.get("id"),
    )
