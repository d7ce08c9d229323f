"""Stock reconciler: restocks, expiration withdrawals and derived stock views."""

from datetime import timedelta

import pytest

from tindahan.extensions import db
from tindahan.errors import InvalidQuantity, NotFound, ValidationError
from tindahan.models import StockMovement
from tindahan.services import products_service, stock_service
from tindahan.time_utils import today


def _movements(product_id, kind):
    return db.session.query(StockMovement).filter_by(product_id=product_id, kind=kind).all()


class TestRestock:
    def test_restock_clears_low_stock_flag(self, db_session, make_product):
        product = make_product(quantity=10, min_stock=10)
        assert product.is_low_stock is True

        product = stock_service.restock(product.id, 1, note="Delivery")

        assert product.quantity == 11
        assert product.is_low_stock is False
        [movement] = _movements(product.id, "RESTOCK")
        assert movement.quantity_delta == 1
        assert movement.note == "Delivery"

    def test_restock_accepts_numeric_strings(self, db_session, make_product):
        product = make_product(quantity=3)
        assert stock_service.restock(product.id, "4").quantity == 7

    @pytest.mark.parametrize("qty", [0, -1, "abc", 1.5, None, 1_000_001, 10**20])
    def test_rejects_invalid_quantity(self, db_session, make_product, qty):
        product = make_product(quantity=3)
        with pytest.raises(InvalidQuantity):
            stock_service.restock(product.id, qty)
        db_session.expire_all()
        assert product.quantity == 3
        assert _movements(product.id, "RESTOCK") == []

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFound):
            stock_service.restock(999, 1)

    @pytest.mark.parametrize("note", [7, "n" * 256])
    def test_rejects_invalid_note(self, db_session, make_product, note):
        product = make_product(quantity=3)
        with pytest.raises(ValidationError) as exc_info:
            stock_service.restock(product.id, 1, note=note)
        assert "notes" in exc_info.value.fields
        db_session.expire_all()
        assert product.quantity == 3

    def test_dated_restock_merges_into_existing_batch(self, db_session, make_product):
        product = make_product(quantity=4, batches={10: 4})
        expiry = (today() + timedelta(days=10)).isoformat()

        product = stock_service.restock(product.id, 6, expiration_date=expiry)

        assert product.quantity == 10
        assert [(b.expiration_date.isoformat(), b.quantity) for b in product.active_batches] == [(expiry, 10)]

    def test_new_date_adds_batch(self, db_session, make_product):
        product = make_product(quantity=4, batches={10: 4})
        product = stock_service.restock(product.id, 2, expiration_date=(today() + timedelta(days=3)).isoformat())
        assert sorted(b.quantity for b in product.active_batches) == [2, 4]

    def test_bad_expiration_date(self, db_session, make_product):
        product = make_product(quantity=4)
        with pytest.raises(ValidationError):
            stock_service.restock(product.id, 2, expiration_date="next week")


class TestWithdrawExpired:
    def test_partial_then_full_pull(self, db_session, make_product):
        product = make_product(quantity=10, batches={2: 10})
        expiry = today() + timedelta(days=2)

        result = stock_service.withdraw_expired(product.id, expiry.isoformat(), "pull", 4)
        assert result["pulled"] == 4
        assert result["product"].quantity == 6
        assert result["batch"].quantity == 6
        assert result["batch"].is_active

        result = stock_service.withdraw_expired(product.id, expiry.isoformat(), "pull", 6)
        assert result["product"].quantity == 0
        assert result["batch"].quantity == 0
        assert not result["batch"].is_active

        pulls = _movements(product.id, "EXPIRY_PULL")
        assert sorted(m.quantity_delta for m in pulls) == [-6, -4]

    def test_pull_defaults_to_remaining_batch(self, db_session, make_product):
        product = make_product(quantity=12, batches={1: 5})
        result = stock_service.withdraw_expired(product.id, today() + timedelta(days=1), "pull")
        assert result["pulled"] == 5
        assert result["product"].quantity == 7

    def test_pull_more_than_stock_is_rejected(self, db_session, make_product):
        product = make_product(quantity=3, batches={1: 3})
        with pytest.raises(InvalidQuantity):
            stock_service.withdraw_expired(product.id, today() + timedelta(days=1), "pull", 4)
        db_session.expire_all()
        assert product.quantity == 3
        assert product.active_batches[0].quantity == 3

    def test_pull_zero_is_rejected(self, db_session, make_product):
        product = make_product(quantity=3, batches={1: 3})
        with pytest.raises(InvalidQuantity):
            stock_service.withdraw_expired(product.id, today() + timedelta(days=1), "pull", 0)

    def test_pulling_past_the_batch_trims_other_batches(self, db_session, make_product):
        product = make_product(quantity=10, batches={1: 4, 5: 6})
        result = stock_service.withdraw_expired(product.id, today() + timedelta(days=1), "pull", 7)

        product = result["product"]
        assert product.quantity == 3
        assert sum(b.quantity for b in product.active_batches) <= product.quantity

    def test_clear_keeps_stock(self, db_session, make_product):
        product = make_product(quantity=8, batches={1: 8})
        result = stock_service.withdraw_expired(product.id, today() + timedelta(days=1), "clear")

        assert result["pulled"] == 0
        assert result["product"].quantity == 8
        assert result["batch"].dismissed_at is not None
        assert result["product"].active_batches == []
        [movement] = _movements(product.id, "EXPIRY_CLEAR")
        assert movement.quantity_delta == 0

    def test_missing_alert(self, db_session, make_product):
        product = make_product(quantity=8, batches={1: 8})
        with pytest.raises(NotFound):
            stock_service.withdraw_expired(product.id, today() + timedelta(days=30), "pull", 1)

    def test_unknown_mode(self, db_session, make_product):
        product = make_product(quantity=8, batches={1: 8})
        with pytest.raises(ValidationError):
            stock_service.withdraw_expired(product.id, today() + timedelta(days=1), "discard")


class TestStockViews:
    def test_low_and_out_of_stock_are_disjoint(self, db_session, make_product):
        empty = make_product(name="Empty", quantity=0)
        low = make_product(name="Low", quantity=2, min_stock=5)
        make_product(name="Plenty", quantity=50, min_stock=5)

        assert [p.id for p in stock_service.low_stock_products()] == [low.id]
        assert [p.id for p in stock_service.out_of_stock_products()] == [empty.id]
        assert [p.id for p in products_service.list_products("low-stock")] == [low.id]
        assert [p.id for p in products_service.list_products("out-of-stock")] == [empty.id]

    def test_inventory_stats(self, db_session, make_product):
        make_product(quantity=0, price_cents=1000)
        make_product(quantity=2, price_cents=1500, min_stock=5)
        make_product(quantity=10, price_cents=250, min_stock=5)

        stats = stock_service.inventory_stats()

        assert stats["total_products"] == 3
        assert stats["total_value_cents"] == 2 * 1500 + 10 * 250
        assert stats["total_value"] == 55.0
        assert stats["low_stock_count"] == 1
        assert stats["out_of_stock_count"] == 1
