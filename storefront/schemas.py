"""Pydantic schemas for request/response validation."""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from storefront.models import OrderStatus, PaymentMethod, ProductStatus


class CategoryCreate(BaseModel):
    """Schema for creating a category."""
    name: Dict[str, str]
    description: Dict[str, str] = Field(default_factory=dict)
    status: ProductStatus = ProductStatus.ACTIVE


class CategoryResponse(BaseModel):
    id: int
    name: str
    description: str
    status: str
    products_count: int = 0


class ProductCreate(BaseModel):
    """Schema for creating a product."""
    category_id: Optional[int] = None
    name: Dict[str, str]
    description: Dict[str, str] = Field(default_factory=dict)
    price: Decimal = Field(..., max_digits=10, decimal_places=2)
    discounted_price: Optional[Decimal] = Field(None, max_digits=10, decimal_places=2)
    quantity: int = 0
    status: ProductStatus = ProductStatus.ACTIVE


class ProductUpdate(BaseModel):
    """Schema for a partial product update. Unset fields stay unchanged."""
    name: Optional[Dict[str, str]] = None
    description: Optional[Dict[str, str]] = None
    price: Optional[Decimal] = Field(None, max_digits=10, decimal_places=2)
    discounted_price: Optional[Decimal] = Field(None, max_digits=10, decimal_places=2)
    category_id: Optional[int] = None
    quantity: Optional[int] = None
    status: Optional[ProductStatus] = None


class ProductResponse(BaseModel):
    """Schema for product response."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    category_id: Optional[int] = None
    name: str
    description: str
    price: Decimal
    discounted_price: Optional[Decimal] = None
    effective_price: Decimal
    quantity: int
    status: str


class AddToCartRequest(BaseModel):
    """Schema for add to cart request."""
    product_id: int
    quantity: int = Field(1, ge=1)


class UpdateCartRequest(BaseModel):
    quantity: int = Field(..., ge=1)


class CartItemResponse(BaseModel):
    """Schema for cart item in response."""
    product_id: int
    product_name: str
    unit_price: Decimal
    quantity: int
    subtotal: Decimal
    available: bool


class CartResponse(BaseModel):
    """Schema for cart response."""
    user_id: str
    items: List[CartItemResponse]
    total: Decimal


class CheckoutRequest(BaseModel):
    """Schema for checkout request."""
    payment_method: PaymentMethod
    city: str = Field(..., min_length=1, max_length=255)
    address: str = Field(..., min_length=1, max_length=255)
    building_number: str = Field(..., min_length=1, max_length=50)
    notes: Optional[str] = Field(None, max_length=1000)


class OrderItemResponse(BaseModel):
    id: int
    product_id: int
    product_name: str
    quantity: int
    price: Decimal
    total: Decimal


class OrderResponse(BaseModel):
    """Schema for order response."""
    id: int
    order_number: str
    user_id: str
    status: str
    payment_status: str
    payment_method: str
    stripe_payment_intent_id: Optional[str] = None
    paypal_payment_id: Optional[str] = None
    refund_id: Optional[str] = None
    total_amount: Decimal
    city: str
    address: str
    building_number: str
    notes: Optional[str] = None
    items: List[OrderItemResponse]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CheckoutResponse(BaseModel):
    """Schema for checkout response."""
    message: str
    order: OrderResponse
    client_secret: Optional[str] = None
    approval_url: Optional[str] = None


class OrdersListResponse(BaseModel):
    """Schema for orders list response."""
    orders: List[OrderResponse]
    page: int
    per_page: int
    total: int


class OrderMessageResponse(BaseModel):
    message: str
    order: OrderResponse


class MessageResponse(BaseModel):
    message: str


class UpdateOrderStatusRequest(BaseModel):
    status: OrderStatus


class PaymentStatusResponse(BaseModel):
    """Schema for payment status lookup."""
    order_id: int
    payment_method: str
    payment_status: str
    provider_status: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
