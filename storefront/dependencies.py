"""Dependency injection for services."""
from typing import Dict

import httpx
from fastapi import Depends, Request

from storefront.config import (
    COMPENSATION_REACTIVATION_POLICY,
    PAYMENT_PROVIDER_MODE,
    PAYPAL_WEBHOOK_ID,
    REFUND_REACTIVATION_POLICY,
    RESTOCK_ON_REFUND,
    STRIPE_WEBHOOK_SECRET,
    STRIPE_WEBHOOK_TOLERANCE_SECONDS,
)
from storefront.models import PaymentMethod
from storefront.payments.fake_adapter import FakePaymentProvider
from storefront.payments.paypal_adapter import PayPalGateway
from storefront.payments.port import PaymentProvider
from storefront.payments.stripe_adapter import StripeGateway
from storefront.payments.webhooks import PayPalSignatureVerifier, StripeSignatureVerifier
from storefront.services.cart_service import CartService
from storefront.services.catalog_service import CatalogService
from storefront.services.inventory_ledger import InventoryLedger, ReactivationPolicy
from storefront.services.order_service import OrderService
from storefront.services.payment_reconciliation import PaymentReconciliationService


def build_payment_providers(
    http_client: httpx.AsyncClient,
    mode: str = PAYMENT_PROVIDER_MODE
) -> Dict[str, PaymentProvider]:
    """
    Create the provider adapters once per application.

    Adapters keep state between requests (OAuth tokens, fake payments), so
    they live on ``app.state`` rather than being built per request.
    """
    if mode == "fake":
        return {
            PaymentMethod.STRIPE.value: FakePaymentProvider(PaymentMethod.STRIPE.value),
            PaymentMethod.PAYPAL.value: FakePaymentProvider(PaymentMethod.PAYPAL.value),
        }
    return {
        PaymentMethod.STRIPE.value: StripeGateway(http_client),
        PaymentMethod.PAYPAL.value: PayPalGateway(http_client),
    }


def get_payment_providers(request: Request) -> Dict[str, PaymentProvider]:
    """Get payment provider adapters from app state."""
    return request.app.state.payment_providers


def get_cart_service() -> CartService:
    """Get cart service instance."""
    return CartService()


def get_catalog_service() -> CatalogService:
    return CatalogService()


def get_inventory_ledger() -> InventoryLedger:
    return InventoryLedger()


def get_order_service(
    providers: Dict[str, PaymentProvider] = Depends(get_payment_providers),
    cart_service: CartService = Depends(get_cart_service),
    ledger: InventoryLedger = Depends(get_inventory_ledger)
) -> OrderService:
    """Get order service instance."""
    return OrderService(
        cart_service,
        ledger,
        providers,
        compensation_policy=ReactivationPolicy(COMPENSATION_REACTIVATION_POLICY),
        refund_policy=ReactivationPolicy(REFUND_REACTIVATION_POLICY),
        restock_on_refund=RESTOCK_ON_REFUND
    )


def get_webhook_verifiers(
    providers: Dict[str, PaymentProvider] = Depends(get_payment_providers)
) -> Dict[str, object]:
    """Signature verifiers for both providers, built from configuration."""
    return {
        PaymentMethod.STRIPE.value: StripeSignatureVerifier(
            STRIPE_WEBHOOK_SECRET,
            tolerance=STRIPE_WEBHOOK_TOLERANCE_SECONDS
        ),
        PaymentMethod.PAYPAL.value: PayPalSignatureVerifier(
            providers[PaymentMethod.PAYPAL.value],
            PAYPAL_WEBHOOK_ID
        ),
    }


def get_reconciliation_service(
    order_service: OrderService = Depends(get_order_service),
    verifiers: Dict[str, object] = Depends(get_webhook_verifiers)
) -> PaymentReconciliationService:
    """Get payment reconciliation service instance."""
    return PaymentReconciliationService(order_service, verifiers)
