import json
import logging

from storefront.logging_config import REDACTED, StorefrontJsonFormatter


def render(message, **extra):
    formatter = StorefrontJsonFormatter('%(levelname)s %(name)s %(message)s', rename_fields={'levelname': 'level'})
    record = logging.LogRecord("storefront.test", logging.INFO, __file__, 1, message, None, None)
    record.__dict__.update(extra)
    return json.loads(formatter.format(record))


class TestStorefrontJsonFormatter:
    def test_service_fields(self):
        line = render("Order created", order_id=7)

        assert line["msg"] == "Order created"
        assert line["level"] == "INFO"
        assert line["order_id"] == 7
        assert line["service"]
        assert line["environment"]
        assert "message" not in line

    def test_credentials_are_masked(self):
        line = render("PayPal payment created", client_secret="pi_1_secret_x", payment_id="PAYID-1")

        assert line["client_secret"] == REDACTED
        assert line["payment_id"] == "PAYID-1"

    def test_no_trace_ids_outside_a_span(self):
        line = render("Startup")

        assert "trace_id" not in line
