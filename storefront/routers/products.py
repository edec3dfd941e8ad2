"""Products API router."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session
from opentelemetry import trace

from storefront.auth import Principal, require_admin
from storefront.database import get_db
from storefront.dependencies import get_catalog_service
from storefront.i18n import get_locale
from storefront.monitoring import product_views_counter
from storefront.presenters import product_to_dto, products_to_dto
from storefront.schemas import ProductCreate, ProductResponse, ProductUpdate
from storefront.services.catalog_service import CatalogService

router = APIRouter(prefix="/products", tags=["products"])


@router.get("", response_model=List[ProductResponse])
async def get_products(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=100),
    category_id: Optional[int] = Query(None, description="Only products in this category"),
    db: Session = Depends(get_db),
    locale: str = Depends(get_locale),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """List active products, localized by Accept-Language."""
    products = catalog.list_active(db, skip=skip, limit=limit, category_id=category_id)

    span = trace.get_current_span()
    span.set_attribute("product.count", len(products))
    span.set_attribute("locale", locale)

    product_views_counter.add(1, {"locale": locale, "view": "catalog"})

    return products_to_dto(products, locale)


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: int = Path(..., description="Product ID"),
    db: Session = Depends(get_db),
    locale: str = Depends(get_locale),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """Get product details."""
    product = catalog.get(db, product_id)

    span = trace.get_current_span()
    span.set_attribute("product.id", product_id)
    span.set_attribute("locale", locale)

    product_views_counter.add(1, {"locale": locale, "view": "detail"})

    return product_to_dto(product, locale)


@router.post("", response_model=ProductResponse, status_code=201)
async def create_product(
    request: ProductCreate,
    db: Session = Depends(get_db),
    locale: str = Depends(get_locale),
    admin: Principal = Depends(require_admin),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """Create a product - admin only."""
    product = catalog.create(db, request.model_dump())
    return product_to_dto(product, locale)


@router.put("/{product_id}", response_model=ProductResponse)
async def update_product(
    request: ProductUpdate,
    product_id: int = Path(..., description="Product ID"),
    db: Session = Depends(get_db),
    locale: str = Depends(get_locale),
    admin: Principal = Depends(require_admin),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """Update a product - admin only. Omitted fields are left unchanged."""
    product = catalog.update(db, product_id, request.model_dump(exclude_unset=True))
    return product_to_dto(product, locale)
