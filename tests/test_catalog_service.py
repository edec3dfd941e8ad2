from decimal import Decimal

import pytest

from storefront.errors import NotFound, ValidationError
from storefront.models import ProductStatus
from storefront.services.catalog_service import CatalogService


@pytest.fixture()
def catalog():
    return CatalogService()


class TestCreate:
    def test_create_product(self, db, catalog):
        product = catalog.create(db, {
            "name": {"en": "Desk", "ar": "مكتب"},
            "price": Decimal("120.00"),
            "discounted_price": Decimal("99.99"),
            "quantity": 4,
        })

        assert product.id is not None
        assert product.name == {"en": "Desk", "ar": "مكتب"}
        assert product.description == {}
        assert product.status == "active"

    @pytest.mark.parametrize("price,discounted_price,field", [
        (Decimal("0"), None, "price"),
        (Decimal("10.00"), Decimal("10.00"), "discounted_price"),
        (Decimal("10.00"), Decimal("0"), "discounted_price"),
    ])
    def test_rejects_bad_prices(self, db, catalog, price, discounted_price, field):
        with pytest.raises(ValidationError) as exc_info:
            catalog.create(db, {"name": {"en": "Desk"}, "price": price, "discounted_price": discounted_price})

        assert exc_info.value.field == field

    def test_requires_default_translation(self, db, catalog):
        with pytest.raises(ValidationError):
            catalog.create(db, {"name": {"ar": "مكتب"}, "price": Decimal("10.00")})


class TestUpdate:
    def test_partial_update(self, db, catalog, make_product):
        product = make_product(name="Desk", price="100.00", quantity=3)

        updated = catalog.update(db, product.id, {"quantity": 7})

        assert updated.quantity == 7
        assert updated.price == Decimal("100.00")
        assert updated.name == {"en": "Desk"}

    def test_discount_checked_against_current_price(self, db, catalog, make_product):
        product = make_product(price="50.00")

        with pytest.raises(ValidationError):
            catalog.update(db, product.id, {"discounted_price": Decimal("60.00")})

    def test_unknown_product(self, db, catalog):
        with pytest.raises(NotFound):
            catalog.update(db, 999, {"quantity": 1})


class TestStatus:
    def test_admin_status_clears_zero_stock_marker(self, db, catalog, make_product):
        product = make_product(quantity=0, status="inactive", auto_deactivated=True)

        updated = catalog.set_status(db, product.id, ProductStatus.INACTIVE)

        assert updated.status == "inactive"
        assert updated.auto_deactivated is False

    def test_listing_hides_inactive_products(self, db, catalog, make_product):
        visible = make_product(name="Visible")
        make_product(name="Hidden", status="inactive")

        assert [product.id for product in catalog.list_active(db)] == [visible.id]


class TestCategories:
    def test_create_category(self, db, catalog):
        category = catalog.create_category(db, {"name": {"en": "Lighting", "ar": "إضاءة"}})

        assert category.id is not None
        assert category.status == "active"
        assert category.description == {}

    def test_category_requires_default_translation(self, db, catalog):
        with pytest.raises(ValidationError):
            catalog.create_category(db, {"name": {"ar": "إضاءة"}})

    def test_counts_only_purchasable_products(self, db, catalog, make_category, make_product):
        furniture = make_category("Furniture")
        empty = make_category("Garden")
        make_category("Archived", status="inactive")
        make_product(name="Desk", category_id=furniture.id)
        make_product(name="Chair", category_id=furniture.id, quantity=0)
        make_product(name="Shelf", category_id=furniture.id, status="inactive")

        listing = [(category.name["en"], count) for category, count in catalog.list_categories(db)]

        assert listing == [("Furniture", 1), ("Garden", 0)]
        assert catalog.count_available(db, empty.id) == 0

    def test_listing_filters_by_category(self, db, catalog, make_category, make_product):
        furniture = make_category("Furniture")
        desk = make_product(name="Desk", category_id=furniture.id)
        make_product(name="Lamp")

        assert [product.id for product in catalog.list_active(db, category_id=furniture.id)] == [desk.id]

    def test_product_rejects_unknown_category(self, db, catalog, make_product):
        with pytest.raises(ValidationError) as exc_info:
            catalog.create(db, {"name": {"en": "Desk"}, "price": Decimal("10.00"), "category_id": 999})

        assert exc_info.value.field == "category_id"

        product = make_product()
        with pytest.raises(ValidationError):
            catalog.update(db, product.id, {"category_id": 999})

    def test_unknown_category(self, db, catalog):
        with pytest.raises(NotFound):
            catalog.get_category(db, 999)
