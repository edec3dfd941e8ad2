"""Payment provider webhooks.

Providers retry on anything but a 2xx, so no exception may escape these
handlers: every failure becomes ``{"error": ...}`` with status 400.
"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from storefront.database import get_db
from storefront.dependencies import get_reconciliation_service
from storefront.errors import StoreError
from storefront.models import PaymentMethod
from storefront.services.payment_reconciliation import PaymentReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _handle(
    provider: str,
    request: Request,
    db: Session,
    reconciliation: PaymentReconciliationService
) -> JSONResponse:
    body = await request.body()
    try:
        await reconciliation.handle_webhook(db, provider, body, request.headers)
    except StoreError as e:
        return JSONResponse(status_code=400, content={"error": e.message})
    except Exception as e:
        logger.exception("Webhook handling failed", extra={
            "provider": provider,
            "error": str(e)
        })
        return JSONResponse(status_code=400, content={"error": "Webhook handling failed"})

    return JSONResponse(status_code=200, content={"status": "success"})


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    reconciliation: PaymentReconciliationService = Depends(get_reconciliation_service)
):
    return await _handle(PaymentMethod.STRIPE.value, request, db, reconciliation)


@router.post("/paypal")
async def paypal_webhook(
    request: Request,
    db: Session = Depends(get_db),
    reconciliation: PaymentReconciliationService = Depends(get_reconciliation_service)
):
    return await _handle(PaymentMethod.PAYPAL.value, request, db, reconciliation)
