"""Provider-agnostic payment notification."""
import enum
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional


class PaymentEventType(str, enum.Enum):
    CAPTURED = "captured"
    FAILED = "failed"
    REFUNDED = "refunded"


@dataclass(frozen=True)
class PaymentEvent:
    """
    Normalized payment event consumed by the reconciliation service.

    Either ``order_id`` or ``provider_ref`` identifies the order; webhooks
    that only carry the provider's correlation id (e.g. card refunds) are
    resolved through the order's stored reference.
    """

    type: PaymentEventType
    provider: str
    order_id: Optional[int] = None
    provider_ref: Optional[str] = None
    amount: Optional[Decimal] = None
    refund_id: Optional[str] = None
    event_id: Optional[str] = None
    source: str = "webhook"
