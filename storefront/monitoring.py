"""Monitoring and observability setup.

Instruments are created against the global OpenTelemetry meter. Until
``init_metrics()`` installs an exporting MeterProvider (see the application
lifespan) they are no-ops, so services and tests can record freely.

Exemplars are attached automatically by the SDK to histograms recorded inside
an active span:
- checkout_amount_histogram (links order totals to checkout traces)
- payment_provider_duration_histogram (links slow provider calls to traces)
"""
import logging
from opentelemetry import trace, metrics
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
import pyroscope

from storefront.config import (
    DEPLOYMENT_ENVIRONMENT,
    OTEL_EXPORTER_OTLP_ENDPOINT,
    PYROSCOPE_SERVER,
    SERVICE_NAME,
)

logger = logging.getLogger(__name__)


def init_tracing() -> trace.Tracer:
    """
    Initialize OpenTelemetry tracing.

    Returns:
        Tracer instance
    """
    resource = Resource.create({"service.name": SERVICE_NAME})

    tracer_provider = TracerProvider(resource=resource)
    otlp_span_exporter = OTLPSpanExporter(
        endpoint=OTEL_EXPORTER_OTLP_ENDPOINT,
        insecure=True
    )
    tracer_provider.add_span_processor(BatchSpanProcessor(otlp_span_exporter))
    trace.set_tracer_provider(tracer_provider)

    logger.info("Tracing initialized", extra={"endpoint": OTEL_EXPORTER_OTLP_ENDPOINT})

    return trace.get_tracer(__name__)


def init_metrics() -> metrics.Meter:
    """
    Initialize OpenTelemetry metrics.

    Returns:
        Meter instance
    """
    resource = Resource.create({"service.name": SERVICE_NAME})

    otlp_metric_exporter = OTLPMetricExporter(
        endpoint=OTEL_EXPORTER_OTLP_ENDPOINT,
        insecure=True
    )
    otlp_metric_reader = PeriodicExportingMetricReader(
        otlp_metric_exporter,
        export_interval_millis=5000
    )

    meter_provider = MeterProvider(
        resource=resource,
        metric_readers=[otlp_metric_reader]
    )
    metrics.set_meter_provider(meter_provider)

    logger.info("Metrics initialized with OTLP exporter")

    return metrics.get_meter(__name__)


def init_profiling() -> None:
    """Initialize Pyroscope profiling."""
    try:
        pyroscope.configure(
            application_name=SERVICE_NAME,
            server_address=PYROSCOPE_SERVER,
            tags={"env": DEPLOYMENT_ENVIRONMENT}
        )
        logger.info("Profiling initialized", extra={"server": PYROSCOPE_SERVER})
    except Exception as e:
        logger.warning(f"Failed to initialize profiling: {e}")


meter = metrics.get_meter(__name__)

# Business metrics using OpenTelemetry

# Checkout funnel
product_views_counter = meter.create_counter(
    "storefront.product.views",
    description="Catalog and product detail views by locale",
    unit="1"
)

checkout_counter = meter.create_counter(
    "storefront.checkouts",
    description="Checkouts by payment method and outcome",
    unit="1"
)

checkout_amount_histogram = meter.create_histogram(
    "storefront.checkout.amount",
    description="Order total at checkout",
    unit="USD"
)

cart_additions_counter = meter.create_counter(
    "storefront.cart.additions",
    description="Total number of items added to cart",
    unit="1"
)

# Payment provider calls
payment_provider_duration_histogram = meter.create_histogram(
    "storefront.payment_provider.duration",
    description="Duration of payment provider API calls",
    unit="s"
)

payment_compensations_counter = meter.create_counter(
    "storefront.payments.compensations",
    description="Orders rolled back after payment initialization failures",
    unit="1"
)

refunds_counter = meter.create_counter(
    "storefront.payments.refunds",
    description="Refunds by provider, origin and outcome",
    unit="1"
)

# Reconciliation
webhook_events_counter = meter.create_counter(
    "storefront.webhooks.events",
    description="Payment notifications by provider, event type and outcome",
    unit="1"
)

webhook_verification_failures_counter = meter.create_counter(
    "storefront.webhooks.verification_failures",
    description="Webhook deliveries rejected by signature verification",
    unit="1"
)

# Inventory
stock_reservation_failures_counter = meter.create_counter(
    "storefront.inventory.reservation_failures",
    description="Stock reservations rejected for insufficient stock",
    unit="1"
)

stock_released_counter = meter.create_counter(
    "storefront.inventory.released_units",
    description="Units returned to stock, by reason",
    unit="1"
)

# Security monitoring metrics
auth_failures_counter = meter.create_counter(
    "storefront.auth.failures",
    description="Total number of authentication failures",
    unit="1"
)

auth_attempts_counter = meter.create_counter(
    "storefront.auth.attempts",
    description="Total number of authentication attempts",
    unit="1"
)

rate_limit_exceeded_counter = meter.create_counter(
    "storefront.rate_limit.exceeded",
    description="Total number of rate limit violations",
    unit="1"
)

suspicious_activity_counter = meter.create_counter(
    "storefront.security.suspicious_activity",
    description="Total number of suspicious activity detections",
    unit="1"
)
