"""Bulk import: whole-batch validation and all-or-nothing commit."""

import io
from datetime import timedelta

import pytest

from tindahan.errors import ConflictError, ValidationError
from tindahan.extensions import db
from tindahan.models import Product, StockMovement
from tindahan.services import import_service
from tindahan.time_utils import today


def _row(**overrides):
    row = {
        "name": "Sardines",
        "price": "25.50",
        "quantity": "12",
        "barcode": "",
        "category": "Canned",
        "brand": "Ligo",
        "description": "",
        "min_stock": "",
        "image_url": "",
        "expiration_date": "",
    }
    row.update(overrides)
    return row


def test_five_valid_one_invalid_imports_nothing(db_session):
    records = [_row(name=f"Item {i}") for i in range(5)]
    records.insert(3, _row(name="Broken", price="abc"))

    with pytest.raises(ValidationError) as exc_info:
        import_service.import_products(records)

    row_errors = exc_info.value.details["row_errors"]
    assert len(row_errors) == 1
    assert row_errors[0]["row"] == 4
    assert "price" in row_errors[0]["errors"]
    assert exc_info.value.details["total_rows"] == 6
    assert db.session.query(Product).count() == 0


def test_valid_batch_applies_defaults(app, db_session):
    expiry = (today() + timedelta(days=20)).isoformat()
    records = [
        _row(name="Sardines", quantity="", price="", barcode="4800016644290"),
        _row(name="Corned Beef", quantity="8", expiration_date=expiry),
    ]

    created = import_service.import_products(records)

    assert [p.name for p in created] == ["Sardines", "Corned Beef"]
    sardines, beef = created
    assert (sardines.quantity, sardines.price_cents, sardines.min_stock) == (0, 0, app.config["DEFAULT_MIN_STOCK"])
    assert sardines.barcode == "4800016644290"
    assert beef.price_cents == 2550
    assert len(beef.barcode) == 13
    assert [(b.expiration_date.isoformat(), b.quantity) for b in beef.active_batches] == [(expiry, 8)]
    assert db.session.query(StockMovement).filter_by(kind="IMPORT").count() == 2


def test_every_row_error_is_reported(db_session, make_product):
    make_product(barcode="TAKEN-1")
    records = [
        _row(name="", quantity="-1"),
        _row(barcode="TAKEN-1"),
        _row(barcode="DUP-01"),
        _row(barcode="DUP-01"),
        _row(min_stock="1.5", expiration_date="soon"),
    ]

    results, row_errors = import_service.validate_batch(records)

    by_row = {e["row"]: e["errors"] for e in row_errors}
    assert set(by_row) == {1, 2, 4, 5}
    assert set(by_row[1]) == {"name", "quantity"}
    assert "barcode" in by_row[2]
    assert "row 3" in by_row[4]["barcode"]
    assert set(by_row[5]) == {"min_stock", "expiration_date"}


def test_missing_and_unknown_columns(db_session):
    record = _row()
    del record["brand"]
    record["colour"] = "red"

    _, row_errors = import_service.validate_batch([record])

    errors = row_errors[0]["errors"]
    assert "brand" in errors["_columns"]
    assert "colour" in errors["_columns_unknown"]


@pytest.mark.parametrize("records", [[], None, {"name": "x"}])
def test_empty_batch(db_session, records):
    with pytest.raises(ValidationError):
        import_service.import_products(records)


def test_read_csv_and_template(db_session):
    text = import_service.template_csv() + "Soy Sauce,32,6,,Condiments,Datu Puti,,3,,\n"

    records = import_service.read_csv(io.StringIO(text))

    assert import_service.template_csv().strip().split(",") == list(import_service.CSV_TEMPLATE_HEADERS)
    assert records == [_row(
        name="Soy Sauce", price="32", quantity="6", category="Condiments",
        brand="Datu Puti", min_stock="3",
    )]
    [product] = import_service.import_products(records)
    assert (product.quantity, product.min_stock) == (6, 3)


def test_oversized_quantity_is_a_row_error(db_session):
    _, row_errors = import_service.validate_batch([_row(quantity="1000001", min_stock="99999999999")])
    assert set(row_errors[0]["errors"]) == {"quantity", "min_stock"}


def test_barcode_taken_after_validation(db_session, monkeypatch):
    real_begin_write = import_service.begin_write

    def begin_after_other_terminal_inserts():
        db.session.add(Product(name="Other terminal", price_cents=100, quantity=1, min_stock=0, barcode="RACE-001"))
        db.session.commit()
        real_begin_write()

    monkeypatch.setattr(import_service, "begin_write", begin_after_other_terminal_inserts)

    with pytest.raises(ValidationError) as exc_info:
        import_service.import_products([_row(name="Late", barcode="RACE-001"), _row(name="Fine")])

    [row_error] = exc_info.value.details["row_errors"]
    assert row_error["row"] == 1
    assert "RACE-001" in row_error["errors"]["barcode"]
    assert [p.name for p in db.session.query(Product).all()] == ["Other terminal"]


def test_unique_constraint_violation_is_a_conflict(db_session, make_product, monkeypatch):
    make_product(name="Existing", barcode="RACE-002")
    # Both barcode checks miss, as when another backend commits between check and insert
    monkeypatch.setattr(import_service, "barcode_exists", lambda code: False)

    with pytest.raises(ConflictError):
        import_service.import_products([_row(name="Fine"), _row(name="Clash", barcode="RACE-002")])

    assert [p.name for p in db.session.query(Product).all()] == ["Existing"]
    assert db.session.query(StockMovement).count() == 0
