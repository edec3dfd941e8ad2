"""Orders API router."""
from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session

from storefront.auth import Principal, get_current_user, require_admin
from storefront.database import get_db
from storefront.dependencies import get_order_service
from storefront.i18n import get_locale
from storefront.presenters import order_to_dto
from storefront.schemas import (
    CheckoutRequest,
    CheckoutResponse,
    OrderMessageResponse,
    OrderResponse,
    OrdersListResponse,
    PaymentStatusResponse,
    UpdateOrderStatusRequest,
)
from storefront.services.order_service import ORDERS_PER_PAGE, OrderService

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=CheckoutResponse, status_code=201)
async def checkout(
    request: CheckoutRequest,
    db: Session = Depends(get_db),
    locale: str = Depends(get_locale),
    principal: Principal = Depends(get_current_user),
    order_service: OrderService = Depends(get_order_service)
):
    """
    Check out the cart - requires authentication.

    Card orders return a client secret for client-side confirmation; wallet
    orders return the approval URL the customer must be redirected to.
    """
    result = await order_service.checkout(db, principal, request, locale)

    return {
        "message": "Order created successfully",
        "order": order_to_dto(result.order, locale),
        "client_secret": result.client_secret,
        "approval_url": result.approval_url
    }


@router.get("", response_model=OrdersListResponse)
async def get_orders(
    page: int = Query(1, ge=1),
    db: Session = Depends(get_db),
    locale: str = Depends(get_locale),
    principal: Principal = Depends(get_current_user),
    order_service: OrderService = Depends(get_order_service)
):
    """Get user's orders, newest first - requires authentication."""
    orders, total = order_service.list_orders(db, principal, page=page)

    return {
        "orders": [order_to_dto(order, locale) for order in orders],
        "page": page,
        "per_page": ORDERS_PER_PAGE,
        "total": total
    }


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int = Path(..., description="Order ID"),
    db: Session = Depends(get_db),
    locale: str = Depends(get_locale),
    principal: Principal = Depends(get_current_user),
    order_service: OrderService = Depends(get_order_service)
):
    """Get one order - owner or admin."""
    return order_to_dto(order_service.get_order(db, principal, order_id), locale)


@router.put("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    request: UpdateOrderStatusRequest,
    order_id: int = Path(..., description="Order ID"),
    db: Session = Depends(get_db),
    locale: str = Depends(get_locale),
    admin: Principal = Depends(require_admin),
    order_service: OrderService = Depends(get_order_service)
):
    """Update fulfillment status - admin only."""
    order = order_service.update_status(db, admin, order_id, request.status.value)
    return order_to_dto(order, locale)


@router.post("/{order_id}/refund", response_model=OrderMessageResponse)
async def refund_order(
    order_id: int = Path(..., description="Order ID"),
    db: Session = Depends(get_db),
    locale: str = Depends(get_locale),
    admin: Principal = Depends(require_admin),
    order_service: OrderService = Depends(get_order_service)
):
    """Refund a paid order through its provider - admin only."""
    order = await order_service.refund(db, admin, order_id)

    return {
        "message": "Order refunded successfully",
        "order": order_to_dto(order, locale)
    }


@router.get("/{order_id}/payment-status", response_model=PaymentStatusResponse)
async def get_payment_status(
    order_id: int = Path(..., description="Order ID"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_user),
    order_service: OrderService = Depends(get_order_service)
):
    """Look up the provider's view of the order's payment."""
    return await order_service.get_payment_status(db, principal, order_id)
