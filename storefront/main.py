"""Main application entry point."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import redis
import httpx
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from storefront.config import (
    API_VERSION,
    OTEL_ENABLED,
    PAYMENT_PROVIDER_MODE,
    PAYMENT_PROVIDER_TIMEOUT_SECONDS,
    PYROSCOPE_ENABLED,
    RATE_LIMIT_ENABLED,
    REDIS_URL,
)
from storefront.database import engine, init_db
from storefront.dependencies import build_payment_providers
from storefront.errors import ProviderUnavailable, StoreError
from storefront.logging_config import setup_logging
from storefront.monitoring import init_metrics, init_profiling, init_tracing
from storefront.redis_rate_limiter import RedisRateLimiter
from storefront.routers import cart, categories, orders, payments, products, webhooks

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info("Starting application...")

    if OTEL_ENABLED:
        init_tracing()
        init_metrics()
        SQLAlchemyInstrumentor().instrument(engine=engine)

    init_db()

    redis_client = app.state.redis_client
    if redis_client is not None:
        RedisInstrumentor().instrument(redis_client=redis_client)
        logger.info("Redis client initialized")

    # Shared by both payment provider adapters
    http_client = httpx.AsyncClient(timeout=PAYMENT_PROVIDER_TIMEOUT_SECONDS)
    HTTPXClientInstrumentor().instrument_client(http_client)
    app.state.http_client = http_client
    app.state.payment_providers = build_payment_providers(http_client)
    logger.info("Payment providers initialized", extra={"mode": PAYMENT_PROVIDER_MODE})

    if PYROSCOPE_ENABLED:
        init_profiling()

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application...")
    await http_client.aclose()
    logger.info("Application shutdown complete")


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    """Render domain errors as ``{"message", "field"}`` with their status."""
    headers = None
    if isinstance(exc, ProviderUnavailable):
        headers = {"Retry-After": str(exc.retry_after_seconds)}

    log = logger.warning if exc.status_code < 500 else logger.error
    log("Request failed", extra={
        "path": request.url.path,
        "error_type": type(exc).__name__,
        "error": exc.message,
        "status_code": exc.status_code
    })

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    content = {"message": first.get("msg", "Invalid request")}
    if location:
        content["field"] = ".".join(location)
    return JSONResponse(status_code=422, content=content)


def create_app(redis_client: Optional[redis.Redis] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        redis_client: Redis connection for rate limiting; no rate limiting
            without one

    Returns:
        Configured application
    """
    app = FastAPI(
        title="Storefront API",
        version=API_VERSION,
        lifespan=lifespan
    )
    app.state.redis_client = redis_client

    if redis_client is not None and RATE_LIMIT_ENABLED:
        app.add_middleware(RedisRateLimiter, redis_client=redis_client)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    FastAPIInstrumentor.instrument_app(app)

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    app.include_router(categories.router)
    app.include_router(products.router)
    app.include_router(cart.router)
    app.include_router(orders.router)
    app.include_router(payments.router)
    app.include_router(webhooks.router)

    return app


setup_logging()
app = create_app(redis.from_url(REDIS_URL, decode_responses=True))


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
