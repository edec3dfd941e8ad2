from decimal import Decimal

import pytest

from storefront.errors import EmptyCart, InsufficientStock, NotFound, OutOfStock
from storefront.models import CartItem


class TestPriceCart:
    def test_prices_lines_with_discounts(self, db, cart_service, make_product, fill_cart):
        product_x = make_product(name="Product X", price="100.00", quantity=5)
        product_y = make_product(name="Product Y", price="50.00", discounted_price="40.00", quantity=5)
        fill_cart("user_123", (product_x, 2), (product_y, 1))

        draft = cart_service.price_cart(db, "user_123", "en")

        assert draft.total == Decimal("240.00")
        assert [(line.name, line.quantity, line.unit_price, line.total) for line in draft.lines] == [
            ("Product X", 2, Decimal("100.00"), Decimal("200.00")),
            ("Product Y", 1, Decimal("40.00"), Decimal("40.00")),
        ]

    def test_discount_not_lower_than_price_is_ignored(self, db, cart_service, make_product, fill_cart):
        product = make_product(price="50.00", discounted_price="60.00")
        fill_cart("user_123", (product, 1))

        draft = cart_service.price_cart(db, "user_123", "en")

        assert draft.total == Decimal("50.00")

    def test_empty_cart(self, db, cart_service):
        with pytest.raises(EmptyCart):
            cart_service.price_cart(db, "user_123", "en")

    def test_line_over_stock_aborts_whole_draft(self, db, cart_service, make_product, fill_cart):
        plenty = make_product(name="Plenty", quantity=10)
        scarce = make_product(name="Scarce", quantity=1)
        fill_cart("user_123", (plenty, 1), (scarce, 2))

        with pytest.raises(OutOfStock) as exc_info:
            cart_service.price_cart(db, "user_123", "en")

        assert exc_info.value.field == "Scarce"

    def test_inactive_product_is_out_of_stock(self, db, cart_service, make_product, fill_cart):
        product = make_product(name="Retired", status="inactive")
        fill_cart("user_123", (product, 1))

        with pytest.raises(OutOfStock):
            cart_service.price_cart(db, "user_123", "en")

    def test_line_names_follow_locale(self, db, cart_service, make_product, fill_cart):
        product = make_product(name="Chair", name_ar="كرسي")
        fill_cart("user_123", (product, 1))

        draft = cart_service.price_cart(db, "user_123", "ar")

        assert draft.lines[0].name == "كرسي"


class TestCartLines:
    def test_add_merges_into_existing_line(self, db, cart_service, make_product):
        product = make_product(quantity=5)

        cart_service.add_to_cart(db, "user_123", product.id, 2)
        item = cart_service.add_to_cart(db, "user_123", product.id, 1)

        assert item.quantity == 3
        assert db.query(CartItem).filter(CartItem.user_id == "user_123").count() == 1

    def test_merged_quantity_is_checked_against_stock(self, db, cart_service, make_product):
        product = make_product(quantity=3)
        cart_service.add_to_cart(db, "user_123", product.id, 2)

        with pytest.raises(InsufficientStock):
            cart_service.add_to_cart(db, "user_123", product.id, 2)

        item = db.query(CartItem).filter(CartItem.user_id == "user_123").one()
        assert item.quantity == 2

    def test_add_inactive_product(self, db, cart_service, make_product):
        product = make_product(status="inactive")

        with pytest.raises(OutOfStock):
            cart_service.add_to_cart(db, "user_123", product.id, 1)

    def test_add_unknown_product(self, db, cart_service):
        with pytest.raises(NotFound):
            cart_service.add_to_cart(db, "user_123", 404, 1)

    def test_update_and_remove(self, db, cart_service, make_product):
        product = make_product(quantity=5)
        cart_service.add_to_cart(db, "user_123", product.id, 1)

        assert cart_service.update_item(db, "user_123", product.id, 4).quantity == 4

        cart_service.remove_item(db, "user_123", product.id)
        with pytest.raises(NotFound):
            cart_service.remove_item(db, "user_123", product.id)

    def test_update_missing_line(self, db, cart_service, make_product):
        product = make_product()

        with pytest.raises(NotFound):
            cart_service.update_item(db, "user_123", product.id, 1)

    def test_clear_only_touches_own_cart(self, db, cart_service, make_product, fill_cart):
        product = make_product()
        fill_cart("user_123", (product, 1))
        fill_cart("user_test", (product, 2))

        assert cart_service.clear_cart(db, "user_123") == 1
        assert db.query(CartItem).filter(CartItem.user_id == "user_test").count() == 1

    def test_view_flags_unavailable_lines(self, db, cart_service, make_product, fill_cart):
        product = make_product(quantity=1, price="10.00")
        fill_cart("user_123", (product, 3))

        cart = cart_service.get_cart(db, "user_123", "en")

        assert cart["total"] == Decimal("30.00")
        assert cart["items"][0]["available"] is False
