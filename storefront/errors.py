"""Error taxonomy shared by services and routers.

Every error carries the HTTP status it is surfaced with and an optional
``field`` naming the offending input or product.
"""
from typing import Any, Dict, Optional


class StoreError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code = 422

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"message": self.message}
        if self.field is not None:
            body["field"] = self.field
        return body


class ValidationError(StoreError):
    status_code = 422


class NotFound(StoreError):
    status_code = 404


class Unauthorized(StoreError):
    status_code = 401


class Forbidden(StoreError):
    status_code = 403


class EmptyCart(StoreError):
    status_code = 422

    def __init__(self, message: str = "Your cart is empty"):
        super().__init__(message)


class InsufficientStock(StoreError):
    """Requested quantity exceeds the available stock of a product."""

    status_code = 422

    def __init__(self, product_name: str, message: Optional[str] = None):
        super().__init__(
            message or f"Insufficient stock for {product_name}",
            field=product_name,
        )
        self.product_name = product_name


class OutOfStock(InsufficientStock):
    """A cart line can no longer be fulfilled at checkout."""

    def __init__(self, product_name: str):
        super().__init__(product_name, f"{product_name} is out of stock")


class PaymentInitFailed(StoreError):
    status_code = 422


class PaymentFailed(StoreError):
    status_code = 422


class ProviderError(StoreError):
    """The payment provider rejected a request."""

    status_code = 422

    def __init__(self, provider: str, message: str):
        super().__init__(message)
        self.provider = provider


class ProviderUnavailable(StoreError):
    """The payment provider timed out or could not be reached. Retryable."""

    status_code = 503
    retry_after_seconds = 30

    def __init__(self, provider: str, message: Optional[str] = None):
        super().__init__(message or f"Payment provider {provider} is unavailable, please retry")
        self.provider = provider


class NotPaid(StoreError):
    status_code = 422

    def __init__(self, message: str = "Order is not paid"):
        super().__init__(message)


class RefundFailed(StoreError):
    status_code = 422


class WebhookVerificationFailed(StoreError):
    status_code = 400
