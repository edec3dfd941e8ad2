import json
from decimal import Decimal
from urllib.parse import parse_qs

import httpx
import pytest

from storefront.errors import ProviderError, ProviderUnavailable
from storefront.models import Order, OrderItem, Product
from storefront.payments.paypal_adapter import PayPalGateway
from storefront.payments.stripe_adapter import StripeGateway


def build_order():
    order = Order(
        id=7,
        order_number="ORD-20260101-ABC123",
        user_id="user_123",
        payment_status="awaiting_payment",
        payment_method="stripe",
        total_amount=Decimal("240.00"),
        locale="en",
    )
    order.items = [
        OrderItem(
            product_id=1, quantity=2, price=Decimal("100.00"), total=Decimal("200.00"),
            product=Product(id=1, name={"en": "Product X"}),
        ),
        OrderItem(
            product_id=2, quantity=1, price=Decimal("40.00"), total=Decimal("40.00"),
            product=Product(id=2, name={"en": "Product Y", "ar": "منتج"}),
        ),
    ]
    return order


class Recorder:
    """MockTransport handler returning canned responses per (method, path)."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes[(request.method, request.url.path)]
        if isinstance(route, Exception):
            raise route
        status_code, body = route
        return httpx.Response(status_code, json=body)


def client_for(recorder):
    return httpx.AsyncClient(transport=httpx.MockTransport(recorder))


class TestStripeGateway:
    async def test_create_intent(self):
        recorder = Recorder({
            ("POST", "/v1/payment_intents"): (200, {"id": "pi_1", "client_secret": "pi_1_secret_x"}),
        })
        async with client_for(recorder) as http_client:
            gateway = StripeGateway(http_client, secret_key="sk_test", base_url="https://stripe.test")

            intent = await gateway.create_intent(build_order())

        assert intent.provider_ref == "pi_1"
        assert intent.client_secret == "pi_1_secret_x"
        request = recorder.requests[0]
        form = parse_qs(request.content.decode())
        assert form["amount"] == ["24000"]
        assert form["currency"] == ["usd"]
        assert form["metadata[order_id]"] == ["7"]
        assert request.headers["Authorization"] == "Bearer sk_test"
        assert request.headers["Idempotency-Key"] == "order-ORD-20260101-ABC123-intent"

    async def test_server_error_is_unavailable(self):
        recorder = Recorder({("POST", "/v1/payment_intents"): (500, {"error": {"message": "boom"}})})
        async with client_for(recorder) as http_client:
            gateway = StripeGateway(http_client, base_url="https://stripe.test")

            with pytest.raises(ProviderUnavailable):
                await gateway.create_intent(build_order())

    async def test_rejection_carries_provider_message(self):
        recorder = Recorder({
            ("POST", "/v1/payment_intents"): (402, {"error": {"message": "Your card was declined."}}),
        })
        async with client_for(recorder) as http_client:
            gateway = StripeGateway(http_client, base_url="https://stripe.test")

            with pytest.raises(ProviderError) as exc_info:
                await gateway.create_intent(build_order())

        assert exc_info.value.message == "Your card was declined."
        assert not isinstance(exc_info.value, ProviderUnavailable)

    async def test_timeout_is_unavailable(self):
        recorder = Recorder({("POST", "/v1/payment_intents"): httpx.ReadTimeout("timed out")})
        async with client_for(recorder) as http_client:
            gateway = StripeGateway(http_client, base_url="https://stripe.test")

            with pytest.raises(ProviderUnavailable):
                await gateway.create_intent(build_order())

    async def test_refund(self):
        recorder = Recorder({("POST", "/v1/refunds"): (200, {"id": "re_1", "status": "succeeded"})})
        async with client_for(recorder) as http_client:
            gateway = StripeGateway(http_client, base_url="https://stripe.test")

            result = await gateway.refund("pi_1", Decimal("240.00"))

        assert result.success is True
        assert result.refund_id == "re_1"
        form = parse_qs(recorder.requests[0].content.decode())
        assert form == {"payment_intent": ["pi_1"], "amount": ["24000"]}

    async def test_capture_reports_intent_status(self):
        recorder = Recorder({
            ("GET", "/v1/payment_intents/pi_1"): (200, {
                "id": "pi_1", "status": "requires_payment_method", "amount": 24000,
                "metadata": {"order_id": "7"},
            }),
        })
        async with client_for(recorder) as http_client:
            gateway = StripeGateway(http_client, base_url="https://stripe.test")

            result = await gateway.capture("pi_1")

        assert result.success is False
        assert result.order_id == 7


class TestPayPalGateway:
    token = ("POST", "/v1/oauth2/token")

    def gateway(self, http_client):
        return PayPalGateway(
            http_client,
            client_id="client",
            secret="secret",
            base_url="https://paypal.test",
            return_url="https://shop.test/payment/paypal/success",
            cancel_url="https://shop.test/payment/paypal/cancel",
        )

    async def test_create_intent(self):
        recorder = Recorder({
            self.token: (200, {"access_token": "A21", "expires_in": 3600}),
            ("POST", "/v1/payments/payment"): (201, {
                "id": "PAYID-1",
                "state": "created",
                "links": [{"rel": "approval_url", "href": "https://paypal.test/approve?token=EC-1"}],
            }),
        })
        async with client_for(recorder) as http_client:
            intent = await self.gateway(http_client).create_intent(build_order())

        assert intent.provider_ref == "PAYID-1"
        assert intent.approval_url == "https://paypal.test/approve?token=EC-1"
        token_request, payment_request = recorder.requests
        assert token_request.headers["Authorization"].startswith("Basic ")
        assert payment_request.headers["Authorization"] == "Bearer A21"
        body = json.loads(payment_request.content)
        transaction = body["transactions"][0]
        assert transaction["amount"]["total"] == "240.00"
        assert transaction["custom"] == "7"
        assert [item["name"] for item in transaction["item_list"]["items"]] == ["Product X", "Product Y"]
        assert body["redirect_urls"]["cancel_url"] == "https://shop.test/payment/paypal/cancel?order_id=7"

    async def test_token_is_reused(self):
        recorder = Recorder({
            self.token: (200, {"access_token": "A21", "expires_in": 3600}),
            ("GET", "/v1/payments/payment/PAYID-1"): (200, {"id": "PAYID-1", "state": "created"}),
        })
        async with client_for(recorder) as http_client:
            gateway = self.gateway(http_client)
            await gateway.get_status("PAYID-1")
            await gateway.get_status("PAYID-1")

        assert [request.url.path for request in recorder.requests].count("/v1/oauth2/token") == 1

    async def test_item_total_mismatch(self):
        order = build_order()
        order.total_amount = Decimal("250.00")
        recorder = Recorder({self.token: (200, {"access_token": "A21", "expires_in": 3600})})
        async with client_for(recorder) as http_client:
            with pytest.raises(ProviderError):
                await self.gateway(http_client).create_intent(order)

        assert recorder.requests == []

    async def test_capture_executes_payment(self):
        recorder = Recorder({
            self.token: (200, {"access_token": "A21", "expires_in": 3600}),
            ("GET", "/v1/payments/payment/PAYID-1"): (200, {"id": "PAYID-1", "state": "created"}),
            ("POST", "/v1/payments/payment/PAYID-1/execute"): (200, {
                "id": "PAYID-1",
                "state": "approved",
                "transactions": [{"custom": "7", "amount": {"total": "240.00", "currency": "USD"}}],
            }),
        })
        async with client_for(recorder) as http_client:
            result = await self.gateway(http_client).capture("PAYID-1", "PAYER123")

        assert result.success is True
        assert result.order_id == 7
        assert result.amount == Decimal("240.00")
        assert json.loads(recorder.requests[-1].content) == {"payer_id": "PAYER123"}

    async def test_refund_uses_sale_id(self):
        recorder = Recorder({
            self.token: (200, {"access_token": "A21", "expires_in": 3600}),
            ("GET", "/v1/payments/payment/PAYID-1"): (200, {
                "id": "PAYID-1",
                "state": "approved",
                "transactions": [{"related_resources": [{"sale": {"id": "SALE-9"}}]}],
            }),
            ("POST", "/v1/payments/sale/SALE-9/refund"): (201, {"id": "REF-1", "state": "completed"}),
        })
        async with client_for(recorder) as http_client:
            result = await self.gateway(http_client).refund("PAYID-1", Decimal("240"))

        assert result.success is True
        assert result.refund_id == "REF-1"
        assert json.loads(recorder.requests[-1].content) == {"amount": {"total": "240.00", "currency": "USD"}}

    async def test_refund_without_sale(self):
        recorder = Recorder({
            self.token: (200, {"access_token": "A21", "expires_in": 3600}),
            ("GET", "/v1/payments/payment/PAYID-1"): (200, {"id": "PAYID-1", "state": "created"}),
        })
        async with client_for(recorder) as http_client:
            with pytest.raises(ProviderError):
                await self.gateway(http_client).refund("PAYID-1", Decimal("240.00"))

    async def test_verify_webhook_signature(self):
        recorder = Recorder({
            self.token: (200, {"access_token": "A21", "expires_in": 3600}),
            ("POST", "/v1/notifications/verify-webhook-signature"): (200, {"verification_status": "SUCCESS"}),
        })
        transmission = {
            "auth_algo": "SHA256withRSA",
            "cert_url": "https://api.sandbox.paypal.com/v1/notifications/certs/CERT-1",
            "transmission_id": "a1b2c3",
            "transmission_sig": "c2lnbmF0dXJl",
            "transmission_time": "2023-11-14T22:13:20Z",
        }
        event = {"id": "WH-1", "event_type": "PAYMENT.SALE.COMPLETED", "resource": {"id": "SALE-1"}}
        async with client_for(recorder) as http_client:
            verified = await self.gateway(http_client).verify_webhook_signature("WH-ID", transmission, event)

        assert verified is True
        request = recorder.requests[-1]
        assert request.headers["Authorization"] == "Bearer A21"
        assert json.loads(request.content) == {**transmission, "webhook_id": "WH-ID", "webhook_event": event}

    async def test_verify_webhook_signature_failure(self):
        recorder = Recorder({
            self.token: (200, {"access_token": "A21", "expires_in": 3600}),
            ("POST", "/v1/notifications/verify-webhook-signature"): (200, {"verification_status": "FAILURE"}),
        })
        async with client_for(recorder) as http_client:
            verified = await self.gateway(http_client).verify_webhook_signature(
                "WH-ID", {"transmission_id": "a1b2c3"}, {"id": "WH-1"}
            )

        assert verified is False

    async def test_verify_webhook_signature_outage(self):
        recorder = Recorder({
            self.token: (200, {"access_token": "A21", "expires_in": 3600}),
            ("POST", "/v1/notifications/verify-webhook-signature"): (503, {"name": "SERVICE_UNAVAILABLE"}),
        })
        async with client_for(recorder) as http_client:
            with pytest.raises(ProviderUnavailable):
                await self.gateway(http_client).verify_webhook_signature("WH-ID", {}, {"id": "WH-1"})
