"""Database models for the storefront service."""
import enum
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class ProductStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class OrderStatus(str, enum.Enum):
    """Fulfillment axis of an order."""
    PENDING = "pending"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


class PaymentStatus(str, enum.Enum):
    """Payment axis of an order."""
    AWAITING_PAYMENT = "awaiting_payment"
    NOT_PAID = "not_paid"
    PAID = "paid"
    REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
    STRIPE = "stripe"
    PAYPAL = "paypal"
    CASH_ON_DELIVERY = "cash_on_delivery"

    @property
    def is_online(self) -> bool:
        return self is not PaymentMethod.CASH_ON_DELIVERY


class Category(Base):
    """Category model."""
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(JSON, nullable=False, default=dict)
    description = Column(JSON, nullable=False, default=dict)
    status = Column(String(16), nullable=False, default=ProductStatus.ACTIVE.value, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    products = relationship("Product", back_populates="category")


class Product(Base):
    """Product model."""
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)
    # Translation maps: locale -> text
    name = Column(JSON, nullable=False, default=dict)
    description = Column(JSON, nullable=False, default=dict)
    price = Column(Numeric(10, 2), nullable=False)
    discounted_price = Column(Numeric(10, 2), nullable=True)
    quantity = Column(Integer, nullable=False, default=0)
    status = Column(String(16), nullable=False, default=ProductStatus.ACTIVE.value, index=True)
    # Set when the inventory ledger deactivated the product at zero stock
    auto_deactivated = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    category = relationship("Category", back_populates="products")


class CartItem(Base):
    """Cart item model."""
    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_cart_items_user_product"),
        CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    product = relationship("Product")


class Order(Base):
    """Order model."""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(32), unique=True, nullable=False)
    user_id = Column(String, index=True, nullable=False)
    status = Column(String(16), nullable=False, default=OrderStatus.PENDING.value, index=True)
    payment_status = Column(String(24), nullable=False, index=True)
    payment_method = Column(String(24), nullable=False)
    stripe_payment_intent_id = Column(String(255), nullable=True, index=True)
    paypal_payment_id = Column(String(255), nullable=True, index=True)
    refund_id = Column(String(255), nullable=True)
    total_amount = Column(Numeric(10, 2), nullable=False)
    city = Column(String(255), nullable=False)
    address = Column(String(255), nullable=False)
    building_number = Column(String(255), nullable=False)
    notes = Column(Text, nullable=True)
    locale = Column(String(8), nullable=False, default="en")
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    @property
    def provider_reference(self):
        """Correlation id of the live payment for this order's provider."""
        if self.payment_method == PaymentMethod.STRIPE.value:
            return self.stripe_payment_intent_id
        if self.payment_method == PaymentMethod.PAYPAL.value:
            return self.paypal_payment_id
        return None


class OrderItem(Base):
    """Order line, priced at the time of purchase."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    total = Column(Numeric(10, 2), nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")
