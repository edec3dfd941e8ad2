"""Payment provider port (abstract interface).

Defines the contract every payment provider adapter implements, so the order
and reconciliation services never depend on a provider's wire format.

Adapters raise ``ProviderError`` when the provider rejects a request and
``ProviderUnavailable`` on timeouts and network failures.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

from storefront.models import Order


@dataclass(frozen=True)
class PaymentIntent:
    """Result of creating a payment with a provider."""

    provider_ref: str
    client_secret: Optional[str] = None
    approval_url: Optional[str] = None


@dataclass(frozen=True)
class CaptureResult:
    """Result of finalizing a payment."""

    success: bool
    provider_ref: str
    status: str
    order_id: Optional[int] = None
    amount: Optional[Decimal] = None
    failure_reason: Optional[str] = None


@dataclass(frozen=True)
class RefundResult:
    """Result of a refund attempt."""

    success: bool
    refund_id: Optional[str] = None
    status: Optional[str] = None
    failure_reason: Optional[str] = None


@dataclass(frozen=True)
class StatusResult:
    """Provider-side view of a payment."""

    provider: str
    status: str
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class PaymentProvider(ABC):
    """Abstract payment provider interface."""

    name: str

    @abstractmethod
    async def create_intent(self, order: Order) -> PaymentIntent:
        """Create the provider-side payment for an order."""
        ...

    @abstractmethod
    async def capture(self, provider_ref: str, payer_id: Optional[str] = None) -> CaptureResult:
        """Finalize a payment the customer approved."""
        ...

    @abstractmethod
    async def refund(self, provider_ref: str, amount: Decimal) -> RefundResult:
        """Refund a captured payment."""
        ...

    @abstractmethod
    async def get_status(self, provider_ref: str) -> StatusResult:
        """Look up the provider-side status of a payment."""
        ...


def to_minor_units(amount: Decimal) -> int:
    """Convert an amount to cents."""
    return int((amount * 100).quantize(Decimal("1")))


def from_minor_units(cents: Any) -> Optional[Decimal]:
    if cents is None:
        return None
    return (Decimal(int(cents)) / 100).quantize(Decimal("0.01"))


def format_amount(amount: Decimal) -> str:
    """Two-decimal string representation used by wallet APIs."""
    return str(Decimal(amount).quantize(Decimal("0.01")))
