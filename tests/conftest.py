import json
import time
from datetime import datetime, timezone
from decimal import Decimal

import pytest
import stripe
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from storefront.auth import Principal
from storefront.database import get_db
from storefront.dependencies import get_payment_providers, get_webhook_verifiers
from storefront.main import create_app
from storefront.models import Base, CartItem, Category, Product
from storefront.payments.fake_adapter import FakePaymentProvider
from storefront.payments.webhooks import PayPalSignatureVerifier, StripeSignatureVerifier
from storefront.schemas import CheckoutRequest
from storefront.services.cart_service import CartService
from storefront.services.inventory_ledger import InventoryLedger
from storefront.services.order_service import OrderService
from storefront.services.payment_reconciliation import PaymentReconciliationService

STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
PAYPAL_WEBHOOK_ID = "WH-TEST-0001"


@pytest.fixture()
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'storefront.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def make_category(db):
    def _make(name="Furniture", name_ar=None, status="active"):
        translations = {"en": name}
        if name_ar:
            translations["ar"] = name_ar
        category = Category(name=translations, description={}, status=status)
        db.add(category)
        db.commit()
        db.refresh(category)
        return category

    return _make


@pytest.fixture()
def make_product(db):
    def _make(
        name="Widget",
        price="100.00",
        quantity=10,
        discounted_price=None,
        status="active",
        auto_deactivated=False,
        name_ar=None,
        category_id=None,
    ):
        translations = {"en": name}
        if name_ar:
            translations["ar"] = name_ar
        product = Product(
            category_id=category_id,
            name=translations,
            description={"en": f"{name} description"},
            price=Decimal(price),
            discounted_price=Decimal(discounted_price) if discounted_price else None,
            quantity=quantity,
            status=status,
            auto_deactivated=auto_deactivated,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture()
def fill_cart(db):
    def _fill(user_id, *lines):
        for product, quantity in lines:
            db.add(CartItem(user_id=user_id, product_id=product.id, quantity=quantity))
        db.commit()

    return _fill


@pytest.fixture()
def user():
    return Principal(user_id="user_123")


@pytest.fixture()
def other_user():
    return Principal(user_id="user_test")


@pytest.fixture()
def admin():
    return Principal(user_id="admin", roles=("admin",))


@pytest.fixture()
def details():
    def _details(payment_method="stripe", notes=None):
        return CheckoutRequest(
            payment_method=payment_method,
            city="Cairo",
            address="12 Nile Street",
            building_number="7A",
            notes=notes,
        )

    return _details


@pytest.fixture()
def providers():
    return {
        "stripe": FakePaymentProvider("stripe"),
        "paypal": FakePaymentProvider("paypal"),
    }


@pytest.fixture()
def verifiers(providers):
    return {
        "stripe": StripeSignatureVerifier(STRIPE_WEBHOOK_SECRET),
        "paypal": PayPalSignatureVerifier(providers["paypal"], PAYPAL_WEBHOOK_ID),
    }


@pytest.fixture()
def ledger():
    return InventoryLedger()


@pytest.fixture()
def cart_service():
    return CartService()


@pytest.fixture()
def order_service(cart_service, ledger, providers):
    return OrderService(cart_service, ledger, providers)


@pytest.fixture()
def reconciliation(order_service, verifiers):
    return PaymentReconciliationService(order_service, verifiers)


@pytest.fixture()
def client(session_factory, providers, verifiers):
    app = create_app()

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_payment_providers] = lambda: providers
    app.dependency_overrides[get_webhook_verifiers] = lambda: verifiers
    return TestClient(app)


@pytest.fixture()
def stripe_signed():
    """Build a signed card provider delivery: (body, headers)."""
    def _sign(payload, secret=STRIPE_WEBHOOK_SECRET, timestamp=None):
        payload = json.dumps(payload)
        timestamp = int(time.time()) if timestamp is None else timestamp
        signature = stripe.WebhookSignature._compute_signature(f"{timestamp}.{payload}", secret)
        return payload.encode(), {
            "Content-Type": "application/json",
            "Stripe-Signature": f"t={timestamp},v1={signature}",
        }

    return _sign


@pytest.fixture()
def paypal_signed():
    """
    Build a wallet provider delivery with its transmission headers: (body, headers).

    Whether the signature is accepted is decided by the fake provider's
    ``webhook_signatures_valid`` flag.
    """
    def _sign(payload, transmission_time=None):
        body = json.dumps(payload).encode()
        transmission_id = "b2c3d4e5-0000-1111-2222-333344445555"
        if transmission_time is None:
            transmission_time = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        return body, {
            "Content-Type": "application/json",
            "PAYPAL-AUTH-ALGO": "SHA256withRSA",
            "PAYPAL-CERT-URL": "https://api.sandbox.paypal.com/v1/notifications/certs/CERT-360caa42",
            "PAYPAL-TRANSMISSION-ID": transmission_id,
            "PAYPAL-TRANSMISSION-TIME": transmission_time,
            "PAYPAL-TRANSMISSION-SIG": "dGVzdC1zaWduYXR1cmU=",
        }

    return _sign


@pytest.fixture()
def user_headers():
    return {"Authorization": "Bearer user-token-123"}


@pytest.fixture()
def other_user_headers():
    return {"Authorization": "Bearer test-token-789"}


@pytest.fixture()
def admin_headers():
    return {"Authorization": "Bearer admin-token-456"}
