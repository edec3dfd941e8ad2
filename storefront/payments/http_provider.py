"""Shared HTTP plumbing for payment provider adapters."""
import logging
import time
from typing import Any, Dict, Optional

import httpx

from storefront.config import PAYMENT_PROVIDER_TIMEOUT_SECONDS
from storefront.errors import ProviderError, ProviderUnavailable
from storefront.monitoring import payment_provider_duration_histogram

logger = logging.getLogger(__name__)


class HttpPaymentProvider:
    """
    Base class for adapters that talk to a provider over HTTP.

    Subclasses set ``name`` and ``base_url`` and call ``_request``.
    """

    name = "provider"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        timeout: float = PAYMENT_PROVIDER_TIMEOUT_SECONDS
    ):
        """
        Initialize the adapter.

        Args:
            http_client: Shared async HTTP client
            base_url: Provider API root
            timeout: Per-request timeout in seconds
        """
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        headers: Optional[Dict[str, str]] = None,
        **kwargs: Any
    ) -> Dict[str, Any]:
        """
        Perform one provider call and decode its JSON body.

        Raises:
            ProviderUnavailable: timeout, network failure or provider 5xx
            ProviderError: provider rejected the request (4xx)
        """
        # HTTPXClientInstrumentor already creates spans for HTTP calls
        start_time = time.time()
        status = "success"
        status_code = None
        try:
            response = await self.http_client.request(
                method,
                f"{self.base_url}{path}",
                headers=headers,
                timeout=self.timeout,
                **kwargs
            )
            status_code = response.status_code

            if response.status_code >= 500:
                status = "error"
                logger.warning("Payment provider returned server error", extra={
                    "provider": self.name,
                    "operation": operation,
                    "status_code": response.status_code
                })
                raise ProviderUnavailable(self.name)

            if response.status_code >= 400:
                status = "rejected"
                message = self._error_message(response)
                logger.warning("Payment provider rejected request", extra={
                    "provider": self.name,
                    "operation": operation,
                    "status_code": response.status_code,
                    "error": message
                })
                raise ProviderError(self.name, message)

            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError as e:
                status = "invalid_response"
                raise ProviderError(self.name, f"{self.name} returned an unreadable response") from e
        except httpx.TimeoutException as e:
            status = "timeout"
            logger.error("Payment provider timed out", extra={
                "provider": self.name,
                "operation": operation,
                "error": str(e)
            })
            raise ProviderUnavailable(self.name) from e
        except httpx.TransportError as e:
            status = "error"
            status_code = 0  # Connection failure
            logger.error("Payment provider unreachable", extra={
                "provider": self.name,
                "operation": operation,
                "error": str(e)
            })
            raise ProviderUnavailable(self.name) from e
        finally:
            duration = time.time() - start_time
            payment_provider_duration_histogram.record(
                duration,
                {
                    "provider": self.name,
                    "operation": operation,
                    "status": status,
                    "status_code": str(status_code) if status_code else "0"
                }
            )

    def _error_message(self, response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return f"{self.name} request failed with status {response.status_code}"
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        if isinstance(body, dict) and body.get("message"):
            return body["message"]
        return f"{self.name} request failed with status {response.status_code}"
