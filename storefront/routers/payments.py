"""Wallet payment redirect endpoints."""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.auth import Principal, get_current_user
from storefront.database import get_db
from storefront.dependencies import get_reconciliation_service
from storefront.i18n import get_locale
from storefront.presenters import order_to_dto
from storefront.schemas import MessageResponse, OrderMessageResponse
from storefront.services.payment_reconciliation import PaymentReconciliationService

router = APIRouter(prefix="/payment/paypal", tags=["payments"])


@router.get("/success", response_model=OrderMessageResponse)
async def paypal_success(
    payment_id: Optional[str] = Query(None, alias="paymentId"),
    payer_id: Optional[str] = Query(None, alias="PayerID"),
    db: Session = Depends(get_db),
    locale: str = Depends(get_locale),
    principal: Principal = Depends(get_current_user),
    reconciliation: PaymentReconciliationService = Depends(get_reconciliation_service)
):
    """Customer returned after approving the payment: execute it."""
    order = await reconciliation.complete_redirect(db, principal, payment_id, payer_id)

    return {
        "message": "Payment completed successfully",
        "order": order_to_dto(order, locale)
    }


@router.get("/cancel", response_model=MessageResponse)
async def paypal_cancel(
    order_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_user),
    reconciliation: PaymentReconciliationService = Depends(get_reconciliation_service)
):
    """Customer abandoned the payment: release the order's stock and drop it."""
    reconciliation.cancel_redirect(db, principal, order_id)
    return {"message": "Payment cancelled"}
