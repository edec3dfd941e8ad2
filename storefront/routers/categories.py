"""Categories API router."""
from typing import List

from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session
from opentelemetry import trace

from storefront.auth import Principal, require_admin
from storefront.database import get_db
from storefront.dependencies import get_catalog_service
from storefront.i18n import get_locale
from storefront.presenters import category_to_dto
from storefront.schemas import CategoryCreate, CategoryResponse
from storefront.services.catalog_service import CatalogService

router = APIRouter(prefix="/categories", tags=["categories"])


@router.get("", response_model=List[CategoryResponse])
async def get_categories(
    db: Session = Depends(get_db),
    locale: str = Depends(get_locale),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """List active categories with their count of purchasable products."""
    categories = catalog.list_categories(db)

    span = trace.get_current_span()
    span.set_attribute("category.count", len(categories))
    span.set_attribute("locale", locale)

    return [category_to_dto(category, locale, count) for category, count in categories]


@router.get("/{category_id}", response_model=CategoryResponse)
async def get_category(
    category_id: int = Path(..., description="Category ID"),
    db: Session = Depends(get_db),
    locale: str = Depends(get_locale),
    catalog: CatalogService = Depends(get_catalog_service)
):
    category = catalog.get_category(db, category_id)
    trace.get_current_span().set_attribute("category.id", category_id)
    return category_to_dto(category, locale, catalog.count_available(db, category_id))


@router.post("", response_model=CategoryResponse, status_code=201)
async def create_category(
    request: CategoryCreate,
    db: Session = Depends(get_db),
    locale: str = Depends(get_locale),
    admin: Principal = Depends(require_admin),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """Create a category - admin only."""
    category = catalog.create_category(db, request.model_dump())
    return category_to_dto(category, locale)
