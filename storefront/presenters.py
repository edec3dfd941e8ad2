"""Response formatting. Every presenter takes the request locale explicitly."""
from typing import Any, Dict, List

from storefront.i18n import translate
from storefront.models import Category, Order, Product
from storefront.schemas import (
    CartResponse,
    CategoryResponse,
    OrderItemResponse,
    OrderResponse,
    ProductResponse,
)
from storefront.services.cart_service import effective_price


def product_to_dto(product: Product, locale: str) -> ProductResponse:
    return ProductResponse(
        id=product.id,
        category_id=product.category_id,
        name=translate(product.name, locale),
        description=translate(product.description, locale),
        price=product.price,
        discounted_price=product.discounted_price,
        effective_price=effective_price(product),
        quantity=product.quantity,
        status=product.status
    )


def products_to_dto(products: List[Product], locale: str) -> List[ProductResponse]:
    return [product_to_dto(product, locale) for product in products]


def category_to_dto(category: Category, locale: str, products_count: int = 0) -> CategoryResponse:
    return CategoryResponse(
        id=category.id,
        name=translate(category.name, locale),
        description=translate(category.description, locale),
        status=category.status,
        products_count=products_count
    )


def cart_to_dto(cart: Dict[str, Any]) -> CartResponse:
    """The cart view is already localized by ``CartService.get_cart``."""
    return CartResponse(**cart)


def order_to_dto(order: Order, locale: str) -> OrderResponse:
    return OrderResponse(
        id=order.id,
        order_number=order.order_number,
        user_id=order.user_id,
        status=order.status,
        payment_status=order.payment_status,
        payment_method=order.payment_method,
        stripe_payment_intent_id=order.stripe_payment_intent_id,
        paypal_payment_id=order.paypal_payment_id,
        refund_id=order.refund_id,
        total_amount=order.total_amount,
        city=order.city,
        address=order.address,
        building_number=order.building_number,
        notes=order.notes,
        items=[
            OrderItemResponse(
                id=item.id,
                product_id=item.product_id,
                product_name=translate(item.product.name if item.product else None, locale),
                quantity=item.quantity,
                price=item.price,
                total=item.total
            )
            for item in order.items
        ],
        created_at=order.created_at,
        updated_at=order.updated_at
    )
