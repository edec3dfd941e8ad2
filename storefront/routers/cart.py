"""Cart API router."""
from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session

from storefront.auth import Principal, get_current_user
from storefront.database import get_db
from storefront.dependencies import get_cart_service
from storefront.i18n import get_locale
from storefront.presenters import cart_to_dto
from storefront.schemas import AddToCartRequest, CartResponse, MessageResponse, UpdateCartRequest
from storefront.services.cart_service import CartService

router = APIRouter(prefix="/cart", tags=["cart"])


@router.get("", response_model=CartResponse)
async def get_cart(
    db: Session = Depends(get_db),
    locale: str = Depends(get_locale),
    principal: Principal = Depends(get_current_user),
    cart_service: CartService = Depends(get_cart_service)
):
    """Get user's cart - requires authentication."""
    return cart_to_dto(cart_service.get_cart(db, principal.user_id, locale))


@router.post("", response_model=CartResponse, status_code=201)
async def add_to_cart(
    request: AddToCartRequest,
    db: Session = Depends(get_db),
    locale: str = Depends(get_locale),
    principal: Principal = Depends(get_current_user),
    cart_service: CartService = Depends(get_cart_service)
):
    """Add item to cart - requires authentication."""
    cart_service.add_to_cart(
        db=db,
        user_id=principal.user_id,
        product_id=request.product_id,
        quantity=request.quantity
    )
    return cart_to_dto(cart_service.get_cart(db, principal.user_id, locale))


@router.put("/{product_id}", response_model=CartResponse)
async def update_cart_item(
    request: UpdateCartRequest,
    product_id: int = Path(..., description="Product ID"),
    db: Session = Depends(get_db),
    locale: str = Depends(get_locale),
    principal: Principal = Depends(get_current_user),
    cart_service: CartService = Depends(get_cart_service)
):
    """Set the quantity of a cart line."""
    cart_service.update_item(db, principal.user_id, product_id, request.quantity)
    return cart_to_dto(cart_service.get_cart(db, principal.user_id, locale))


@router.delete("/{product_id}", response_model=MessageResponse)
async def remove_cart_item(
    product_id: int = Path(..., description="Product ID"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_user),
    cart_service: CartService = Depends(get_cart_service)
):
    cart_service.remove_item(db, principal.user_id, product_id)
    return {"message": "Item removed from cart"}


@router.post("/clear", response_model=MessageResponse)
async def clear_cart(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_user),
    cart_service: CartService = Depends(get_cart_service)
):
    cart_service.clear_cart(db, principal.user_id)
    return {"message": "Cart cleared"}
