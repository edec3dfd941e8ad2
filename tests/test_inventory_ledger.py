import pytest

from storefront.errors import InsufficientStock, NotFound
from storefront.models import Product
from storefront.services.inventory_ledger import InventoryLedger, ReactivationPolicy


class TestReserve:
    def test_decrements_stock(self, db, ledger, make_product):
        product = make_product(quantity=5)

        ledger.reserve(db, product.id, 2)
        db.commit()

        db.refresh(product)
        assert product.quantity == 3
        assert product.status == "active"

    def test_reaching_zero_deactivates_product(self, db, ledger, make_product):
        product = make_product(quantity=2)

        ledger.reserve(db, product.id, 2)
        db.commit()

        db.refresh(product)
        assert product.quantity == 0
        assert product.status == "inactive"
        assert product.auto_deactivated is True

    def test_zero_on_inactive_product_is_not_marked_auto(self, db, ledger, make_product):
        product = make_product(quantity=1, status="inactive")

        ledger.reserve(db, product.id, 1)
        db.commit()

        db.refresh(product)
        assert product.status == "inactive"
        assert product.auto_deactivated is False

    def test_exceeding_stock_raises_and_leaves_stock(self, db, ledger, make_product):
        product = make_product(name="Lamp", quantity=1)

        with pytest.raises(InsufficientStock) as exc_info:
            ledger.reserve(db, product.id, 2)
        db.rollback()

        assert exc_info.value.field == "Lamp"
        db.refresh(product)
        assert product.quantity == 1

    def test_unknown_product(self, db, ledger):
        with pytest.raises(NotFound):
            ledger.reserve(db, 999, 1)

    def test_stale_session_cannot_oversell(self, session_factory, make_product):
        product = make_product(quantity=1)
        first, second = session_factory(), session_factory()
        try:
            # Both sessions saw one unit before either reserved it
            assert first.get(Product, product.id).quantity == 1
            assert second.get(Product, product.id).quantity == 1

            InventoryLedger().reserve(first, product.id, 1)
            first.commit()

            with pytest.raises(InsufficientStock):
                InventoryLedger().reserve(second, product.id, 1)
            second.rollback()

            assert second.get(Product, product.id).quantity == 0
        finally:
            first.close()
            second.close()


class TestRelease:
    def test_auto_only_reactivates_auto_deactivated(self, db, ledger, make_product):
        product = make_product(quantity=1)
        ledger.reserve(db, product.id, 1)
        db.commit()

        ledger.release(db, product.id, 1)
        db.commit()

        db.refresh(product)
        assert product.quantity == 1
        assert product.status == "active"
        assert product.auto_deactivated is False

    def test_auto_only_keeps_admin_deactivation(self, db, ledger, make_product):
        product = make_product(quantity=0, status="inactive")

        ledger.release(db, product.id, 3, policy=ReactivationPolicy.AUTO_ONLY)
        db.commit()

        db.refresh(product)
        assert product.quantity == 3
        assert product.status == "inactive"

    def test_never_leaves_status_untouched(self, db, ledger, make_product):
        product = make_product(quantity=0, status="inactive", auto_deactivated=True)

        ledger.release(db, product.id, 1, policy=ReactivationPolicy.NEVER)
        db.commit()

        db.refresh(product)
        assert product.status == "inactive"
        assert product.auto_deactivated is True

    def test_always_forces_active(self, db, ledger, make_product):
        product = make_product(quantity=0, status="inactive")

        ledger.release(db, product.id, 1, policy=ReactivationPolicy.ALWAYS)
        db.commit()

        db.refresh(product)
        assert product.status == "active"

    def test_missing_product_is_skipped(self, db, ledger):
        ledger.release(db, 12345, 2)
        db.commit()

    def test_stock_never_negative_across_operations(self, db, ledger, make_product):
        product = make_product(quantity=3)

        for quantity in (2, 2, 1, 1):
            try:
                ledger.reserve(db, product.id, quantity)
                db.commit()
            except InsufficientStock:
                db.rollback()
            db.refresh(product)
            assert product.quantity >= 0

        assert product.quantity == 0
