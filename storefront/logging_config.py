"""Structured logging configuration.

Every record is a JSON object on stdout carrying the service, environment
and, inside a request, the active trace ids. Payment credentials passed as
``extra`` fields are masked before they are written.
"""
import logging
import sys
from pythonjsonlogger.json import JsonFormatter
from opentelemetry import trace

from storefront.config import DEPLOYMENT_ENVIRONMENT, LOG_LEVEL, SERVICE_NAME

# Extra fields that may carry payment or session credentials
REDACTED_FIELDS = frozenset({
    "authorization",
    "client_secret",
    "access_token",
    "transmission_sig",
    "stripe_signature",
})
REDACTED = "[redacted]"


class StorefrontJsonFormatter(JsonFormatter):
    """JSON formatter adding trace context and masking credentials."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        span = trace.get_current_span()
        if span and span.get_span_context().is_valid:
            ctx = span.get_span_context()
            log_record['trace_id'] = format(ctx.trace_id, '032x')
            log_record['span_id'] = format(ctx.span_id, '016x')

        log_record['service'] = SERVICE_NAME
        log_record['environment'] = DEPLOYMENT_ENVIRONMENT

        for field in REDACTED_FIELDS.intersection(log_record):
            if log_record[field]:
                log_record[field] = REDACTED

        if 'message' in log_record:
            log_record['msg'] = log_record.pop('message')


def setup_logging(level: str = LOG_LEVEL):
    """Route all logging to stdout as JSON."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter = StorefrontJsonFormatter(
        '%(levelname)s %(name)s %(message)s',
        rename_fields={
            'levelname': 'level'
        }
    )
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Provider calls are already logged by the adapters
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
