"""HTTP surface: status codes, payload shapes and error serialization."""

from datetime import timedelta

from tindahan.models import Sale
from tindahan.services import products_service
from tindahan.time_utils import local_day_start, today


def _create(client, **fields):
    body = {"name": "Coffee 3-in-1", "price": 8.5, "quantity": 20}
    body.update(fields)
    return client.post("/products", json=body)


class TestProductRoutes:
    def test_create_and_fetch(self, client):
        response = _create(client, barcode="COFFEE-01", category="Drinks")
        assert response.status_code == 201
        data = response.get_json()
        assert data["barcode"] == "COFFEE-01"
        assert data["product"]["price"] == 8.5

        by_code = client.get("/products/barcode/COFFEE-01")
        assert by_code.status_code == 200
        assert by_code.get_json()["id"] == data["id"]

        listed = client.get("/products", query_string={"category": "Drinks"}).get_json()
        assert [p["id"] for p in listed] == [data["id"]]

    def test_generated_barcode(self, client):
        data = _create(client).get_json()
        assert data["barcode"].startswith("480")
        assert len(data["barcode"]) == 13

    def test_validation_errors_are_per_field(self, client):
        response = client.post("/products", json={"name": " ", "price": -1, "color": "red"})
        assert response.status_code == 400
        body = response.get_json()
        assert body["code"] == "validation_error"
        assert set(body["fields"]) == {"name", "price", "color"}

    def test_duplicate_barcode_conflict(self, client):
        _create(client, barcode="DUP-1")
        response = _create(client, barcode="DUP-1")
        assert response.status_code == 409
        assert response.get_json()["code"] == "conflict"

    def test_barcode_claimed_concurrently_is_a_conflict(self, client, make_product, monkeypatch):
        make_product(barcode="RACE-003")
        # The pre-insert check misses, as when another backend commits first
        monkeypatch.setattr(products_service, "barcode_exists", lambda code, exclude_product_id=None: False)

        created = _create(client, barcode="RACE-003")
        assert created.status_code == 409
        assert created.get_json()["code"] == "conflict"
        assert created.get_json()["details"]["barcode"] == "RACE-003"

        product_id = _create(client, barcode="MINE-01").get_json()["id"]
        updated = client.put(f"/products/{product_id}", json={"barcode": "RACE-003"})
        assert updated.status_code == 409
        assert client.get(f"/products/{product_id}").get_json()["barcode"] == "MINE-01"

    def test_oversized_numbers_are_rejected(self, client):
        response = _create(client, quantity=10**7)
        assert response.status_code == 400
        assert "quantity" in response.get_json()["fields"]

        product_id = _create(client).get_json()["id"]
        restock = client.post(f"/products/{product_id}/restock", json={"quantity": 10**20})
        assert restock.status_code == 400
        assert restock.get_json()["code"] == "invalid_quantity"

        far = client.get("/products/near-expiration", query_string={"days": "1000000000"})
        assert far.status_code == 400
        assert "days" in far.get_json()["fields"]

        for limit in ("501", "abc", "0"):
            movements = client.get(f"/products/{product_id}/movements", query_string={"limit": limit})
            assert movements.status_code == 400

        notification = client.post("/products/expiration-notification", json={"productId": 1.5, "action": "clear"})
        assert notification.status_code == 400

    def test_update_and_delete(self, client):
        product_id = _create(client).get_json()["id"]

        updated = client.put(f"/products/{product_id}", json={"price": "9.25", "min_stock": 3})
        assert updated.status_code == 200
        assert updated.get_json()["product"]["price_cents"] == 925

        assert client.delete(f"/products/{product_id}").status_code == 200
        assert client.get(f"/products/{product_id}").status_code == 404
        assert client.delete(f"/products/{product_id}").status_code == 404

    def test_restock_and_low_stock(self, client):
        product_id = _create(client, quantity=2, min_stock=5).get_json()["id"]
        assert [p["id"] for p in client.get("/products/low-stock").get_json()] == [product_id]

        response = client.post(f"/products/{product_id}/restock", json={"quantity": 10, "notes": "Supplier"})
        assert response.status_code == 200
        assert response.get_json()["product"]["quantity"] == 12
        assert client.get("/products/low-stock").get_json() == []

        bad = client.post(f"/products/{product_id}/restock", json={"quantity": 0})
        assert bad.status_code == 400
        assert bad.get_json()["code"] == "invalid_quantity"

        kinds = [m["kind"] for m in client.get(f"/products/{product_id}/movements").get_json()]
        assert kinds == ["RESTOCK", "CREATE"]

    def test_expiration_flow(self, client):
        expiry = (today() + timedelta(days=2)).isoformat()
        product_id = _create(client, quantity=10, expiration_date=expiry).get_json()["id"]

        alerts = client.get("/products/near-expiration").get_json()
        assert [(a["productId"], a["quantity"]) for a in alerts] == [(product_id, 10)]

        body = {"productId": product_id, "expirationDate": expiry, "action": "pull", "quantityToPull": 4}
        first = client.post("/products/expiration-notification", json=body)
        assert first.status_code == 200
        assert first.get_json()["alertResolved"] is False
        assert first.get_json()["product"]["quantity"] == 6

        body["quantityToPull"] = 6
        second = client.post("/products/expiration-notification", json=body).get_json()
        assert second["alertResolved"] is True
        assert client.get("/products/near-expiration").get_json() == []

    def test_expiration_notification_requires_product(self, client):
        response = client.post("/products/expiration-notification", json={"action": "clear"})
        assert response.status_code == 400

    def test_import_is_all_or_nothing(self, client):
        good = {
            "name": "Noodles", "price": "12", "quantity": "30", "barcode": "", "category": "",
            "brand": "", "description": "", "min_stock": "", "image_url": "", "expiration_date": "",
        }
        bad = dict(good, quantity="many")

        rejected = client.post("/products/import-csv", json={"products": [good, good, bad]})
        assert rejected.status_code == 400
        assert rejected.get_json()["imported"] == 0
        assert rejected.get_json()["details"]["row_errors"][0]["row"] == 3
        assert client.get("/products").get_json() == []

        accepted = client.post("/products/import-csv", json={"products": [good, good]})
        assert accepted.status_code == 201
        assert accepted.get_json()["imported"] == 2

    def test_csv_template_and_stats(self, client):
        template = client.get("/products/csv-template")
        assert template.mimetype == "text/csv"
        assert template.get_data(as_text=True).strip() == (
            "name,price,quantity,barcode,category,brand,description,min_stock,image_url,expiration_date"
        )
        _create(client, quantity=0)
        assert client.get("/products/stats").get_json()["out_of_stock_count"] == 1

    def test_barcode_generate(self, client):
        response = client.post("/barcode/generate")
        assert response.status_code == 200
        assert len(response.get_json()["barcode"]) == 13


class TestSaleRoutes:
    def test_sale_cancel_round(self, client):
        product_id = _create(client, price=20, quantity=10).get_json()["id"]

        created = client.post("/sales", json={
            "items": [{"id": product_id, "name": "x", "price": 1, "quantity": 3}],
            "total": 3,
            "paymentMethod": "cash",
            "customer_name": "",
        })
        assert created.status_code == 201
        body = created.get_json()
        assert body["success"] is True
        assert body["sale"]["total"] == 60.0
        sale_id = body["saleId"]

        assert client.get("/cash/balance").get_json()["cashOnHand"] == 60.0
        assert client.get(f"/products/{product_id}").get_json()["quantity"] == 7

        cancelled = client.post(f"/sales/{sale_id}/cancel", json={"reason": "Returned"})
        assert cancelled.status_code == 200
        assert cancelled.get_json()["refundAmount"] == 60.0
        assert client.get(f"/products/{product_id}").get_json()["quantity"] == 10

        again = client.post(f"/sales/{sale_id}/cancel", json={"reason": "Returned"})
        assert again.status_code == 409
        assert again.get_json()["code"] == "already_cancelled"

    def test_insufficient_stock(self, client):
        product_id = _create(client, quantity=1).get_json()["id"]
        response = client.post("/sales", json={"items": [{"id": product_id, "quantity": 2}], "paymentMethod": "cash"})
        assert response.status_code == 409
        body = response.get_json()
        assert body["code"] == "insufficient_stock"
        assert body["details"]["product_id"] == product_id

    def test_invalid_customer_and_item_ids(self, client):
        product_id = _create(client, quantity=5).get_json()["id"]

        named = client.post("/sales", json={
            "items": [{"id": product_id, "quantity": 1}], "paymentMethod": "cash", "customer_name": 123,
        })
        assert named.status_code == 400
        assert "customer_name" in named.get_json()["fields"]

        fractional = client.post("/sales", json={
            "items": [{"id": product_id + 0.7, "quantity": 1}], "paymentMethod": "cash",
        })
        assert fractional.status_code == 400
        assert "items[0].id" in fractional.get_json()["fields"]

        assert client.get(f"/products/{product_id}").get_json()["quantity"] == 5
        assert client.get("/sales").get_json() == []

    def test_end_date_covers_the_whole_store_day(self, client, db_session):
        product_id = _create(client, quantity=5).get_json()["id"]
        late = client.post("/sales", json={"items": [{"id": product_id, "quantity": 1}], "paymentMethod": "cash"})
        after = client.post("/sales", json={"items": [{"id": product_id, "quantity": 1}], "paymentMethod": "cash"})
        next_midnight = local_day_start(today() + timedelta(days=1))
        db_session.get(Sale, late.get_json()["saleId"]).created_at = next_midnight - timedelta(microseconds=500)
        db_session.get(Sale, after.get_json()["saleId"]).created_at = next_midnight
        db_session.commit()

        day = today().isoformat()
        listed = client.get("/sales", query_string={"startDate": day, "endDate": day}).get_json()

        assert [s["id"] for s in listed] == [late.get_json()["saleId"]]

    def test_empty_cart(self, client):
        response = client.post("/sales", json={"items": [], "paymentMethod": "cash"})
        assert response.status_code == 400
        assert response.get_json()["code"] == "empty_cart"

    def test_credit_then_mark_paid(self, client):
        product_id = _create(client).get_json()["id"]
        sale_id = client.post("/sales", json={
            "items": [{"id": product_id, "quantity": 1}], "paymentMethod": "credit", "customer_name": "Nena",
        }).get_json()["saleId"]

        unpaid = client.get("/sales/details", query_string={"status": "unpaid"}).get_json()
        assert [s["id"] for s in unpaid] == [sale_id]
        assert unpaid[0]["items"][0]["quantity"] == 1

        paid = client.put(f"/sales/{sale_id}/mark-paid")
        assert paid.status_code == 200
        assert paid.get_json()["sale"]["status"] == "completed"
        assert client.put(f"/sales/{sale_id}/mark-paid").status_code == 409
        assert client.put("/sales/9999/mark-paid").status_code == 404

    def test_reports(self, client):
        product_id = _create(client, price=10).get_json()["id"]
        client.post("/sales", json={"items": [{"id": product_id, "quantity": 2}], "paymentMethod": "gcash"})
        day = today().isoformat()

        listed = client.get("/sales", query_string={"startDate": day, "endDate": day}).get_json()
        assert len(listed) == 1
        assert "items" not in listed[0]

        assert client.get("/sales/bestsellers").get_json()[0]["total_quantity"] == 2
        assert client.get("/sales/bestsellers/").status_code == 200

        summary = client.get("/sales/analytics/summary", query_string={"period": "today"}).get_json()
        assert summary == [{"date": day, "daily_total": 20.0, "transaction_count": 1}]

        assert client.get("/sales", query_string={"startDate": "yesterday"}).status_code == 400
        assert client.get("/sales/bestsellers", query_string={"days": "abc"}).status_code == 400
        assert client.get("/sales/bestsellers", query_string={"limit": "501"}).status_code == 400
        assert client.get("/sales/analytics/summary", query_string={"period": "1000000000"}).status_code == 400


class TestCashRoutes:
    def test_update_and_history(self, client):
        response = client.post("/cash/update", json={
            "cashOnHand": "1,000.00",
            "gcashBalance": 250,
            "transaction_type": "add",
            "description": "Opening float",
        })
        assert response.status_code == 200
        body = response.get_json()
        assert body["message"] == "Cash balances updated successfully"
        assert body["balances"] == {"cashOnHand": 1000.0, "gcashBalance": 250.0, "paymayaBalance": 0.0}

        history = client.get("/cash/history").get_json()
        assert sorted(h["payment_method"] for h in history) == ["cash", "gcash"]

        removed = client.post("/cash/update", json={
            "cashOnHand": 1500, "transaction_type": "remove", "description": "Bank deposit",
        })
        assert removed.get_json()["balances"]["cashOnHand"] == -500.0

    def test_update_validation(self, client):
        missing_description = client.post("/cash/update", json={"cashOnHand": 5, "transaction_type": "add"})
        assert missing_description.status_code == 400

        bad_type = client.post("/cash/update", json={"cashOnHand": 5, "transaction_type": "steal", "description": "x"})
        assert bad_type.status_code == 400

        bad_amount = client.post("/cash/update", json={"cashOnHand": "lots", "transaction_type": "add", "description": "x"})
        assert bad_amount.status_code == 400
        assert "cashOnHand" in bad_amount.get_json()["fields"]

        nothing = client.post("/cash/update", json={"transaction_type": "add", "description": "x"})
        assert nothing.status_code == 400

        huge = client.post("/cash/update", json={"cashOnHand": 10**20, "transaction_type": "add", "description": "x"})
        assert huge.status_code == 400
        assert "cashOnHand" in huge.get_json()["fields"]

        long_description = client.post("/cash/update", json={
            "cashOnHand": 5, "transaction_type": "add", "description": "d" * 256,
        })
        assert long_description.status_code == 400

        bad_reference = client.post("/cash/update", json={
            "cashOnHand": 5, "transaction_type": "add", "description": "x", "reference_id": 2.5,
        })
        assert bad_reference.status_code == 400
        assert client.get("/cash/balance").get_json()["cashOnHand"] == 0.0


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.get_json()["checks"]["database"]["status"] == "healthy"
