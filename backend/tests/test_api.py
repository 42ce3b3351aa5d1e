# Overview: Pytest coverage for the HTTP API end to end through the Flask test client.

from sqlalchemy.orm.exc import StaleDataError

from pharmapos.services import checkout_service, stock_ledger_service


class TestSystemRoutes:

    def test_health(self, client, db_session):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json["status"] == "healthy"
        assert response.json["checks"]["cart_sessions"]["open_carts"] == 0

    def test_version(self, client, db_session):
        assert client.get("/version").json["api_version"] == "1.0.0"


class TestProductRoutes:

    def test_create_with_units_and_opening_stock(self, client, db_session, headers):
        response = client.post("/api/products", headers=headers, json={
            "name": "Amoxicillin 250mg",
            "category": "Antibiotics",
            "product_type": "tablets",
            "cost_price_cents": 6,
            "units": [
                {"unit_type": "tablet", "quantity": 1, "price_cents": 15},
                {"unit_type": "STRIP", "quantity": 10, "price_cents": 150},
            ],
            "opening_stock": 300,
        })

        assert response.status_code == 201
        body = response.json
        assert body["stock_quantity"] == 300
        assert [u["unit_type"] for u in body["units"]] == ["TABLET", "STRIP"]

        movements = client.get(f"/api/stock/movements?product_id={body['id']}").json
        assert movements["items"][0]["actor_id"] == "c-001"

    def test_stock_is_not_writable(self, client, db_session):
        response = client.post("/api/products", json={"name": "Sneaky", "stock_quantity": 500})
        assert response.status_code == 400
        assert "stock_quantity" in response.json["error"]

    def test_bad_units_rejected(self, client, db_session):
        response = client.post("/api/products", json={
            "name": "Broken",
            "units": [{"unit_type": "CRATE", "quantity": 1, "price_cents": 1}],
        })
        assert response.status_code == 400

    def test_recalculate_prices(self, client, make_product):
        product = make_product(prices=(0, 0, 90000))

        response = client.post(f"/api/products/{product.id}/units/recalculate", json={})

        assert response.status_code == 200
        assert [u["price_cents"] for u in response.json["units"]] == [900, 9000, 90000]

    def test_unit_presets(self, client, db_session):
        response = client.get("/api/products/unit-presets/liquid_bottle")
        assert [u["quantity"] for u in response.json["units"]] == [100, 200, 500]
        assert client.get("/api/products/unit-presets/nonsense").status_code == 400

    def test_unknown_product(self, client, db_session):
        response = client.get("/api/products/999")
        assert response.status_code == 404
        assert response.json["details"] == {"product_id": 999}


class TestCartAndCheckoutRoutes:

    def test_cashier_header_required(self, client, db_session):
        response = client.get("/api/cart")
        assert response.status_code == 401

    def test_cart_checkout_flow(self, client, paracetamol, headers):
        response = client.post("/api/cart/items", headers=headers, json={
            "product_id": paracetamol.id, "unit_type": "STRIP", "quantity": 2,
        })
        assert response.status_code == 201
        assert response.json["subtotal_cents"] == 100

        response = client.patch("/api/cart/items/0", headers=headers, json={"delta": 1})
        assert response.json["items"][0]["quantity"] == 3

        response = client.put("/api/cart/payment", headers=headers, json={"payment_method": "card", "discount_cents": 10})
        assert response.json["payment_method"] == "CARD"
        assert response.json["total_cents"] == 140

        response = client.post("/api/cart/checkout", headers=headers)
        assert response.status_code == 201
        sale = response.json["sale"]
        assert sale["document_number"] == "S-000001"
        assert sale["total_cents"] == 140

        assert client.get(f"/api/products/{paracetamol.id}").json["stock_quantity"] == 70
        assert client.get(f"/api/sales/{sale['id']}").json["sale"]["items"][0]["base_quantity"] == 30
        assert client.get("/api/cart", headers=headers).json["items"] == []

    def test_checkout_conflict_is_409_and_keeps_cart(self, client, paracetamol, headers, monkeypatch):
        client.post("/api/cart/items", headers=headers, json={"product_id": paracetamol.id, "unit_type": "STRIP"})

        def stale_apply(product, delta, kind, **kwargs):
            raise StaleDataError("version mismatch on products")

        monkeypatch.setattr(checkout_service, "apply_movement_locked", stale_apply)

        response = client.post("/api/cart/checkout", headers=headers)

        assert response.status_code == 409
        assert response.json["details"] == {"cashier_id": "c-001"}
        assert len(client.get("/api/cart", headers=headers).json["items"]) == 1
        assert client.get(f"/api/products/{paracetamol.id}").json["stock_quantity"] == 100

    def test_carts_are_per_cashier(self, client, paracetamol, headers):
        client.post("/api/cart/items", headers=headers, json={"product_id": paracetamol.id, "unit_type": "TABLET"})

        other = client.get("/api/cart", headers={"X-Cashier-Id": "c-002"})

        assert other.json["items"] == []
        assert len(client.get("/api/cart", headers=headers).json["items"]) == 1

    def test_insufficient_stock_is_409(self, client, paracetamol, headers):
        response = client.post("/api/cart/items", headers=headers, json={
            "product_id": paracetamol.id, "unit_type": "BOX", "quantity": 2,
        })

        assert response.status_code == 409
        assert response.json["details"]["available"] == 100

    def test_empty_checkout_is_400(self, client, db_session, headers):
        response = client.post("/api/cart/checkout", headers=headers)
        assert response.status_code == 400
        assert response.json["error"] == "Cart is empty"

    def test_bad_line_index_is_404(self, client, db_session, headers):
        assert client.delete("/api/cart/items/3", headers=headers).status_code == 404

    def test_credit_checkout_and_payment(self, client, paracetamol, headers):
        client.post("/api/cart/items", headers=headers, json={"product_id": paracetamol.id, "unit_type": "STRIP"})
        client.put("/api/cart/payment", headers=headers, json={"payment_method": "CREDIT"})

        assert client.post("/api/cart/checkout", headers=headers).status_code == 400

        client.put("/api/cart/customer", headers=headers, json={"customer_name": "Jane Doe", "customer_phone": "0712345678"})
        sale = client.post("/api/cart/checkout", headers=headers).json["sale"]
        assert sale["is_credit"] is True

        response = client.post(
            f"/api/sales/credit/{sale['credit_sale_id']}/payments",
            headers=headers,
            json={"amount_cents": 50, "payment_method": "MPESA"},
        )
        assert response.status_code == 201
        assert response.json["status"] == "PAID"
        assert response.json["payments"][0]["received_by_id"] == "c-001"

        assert client.get("/api/sales/credit?status=PAID").json["count"] == 1


class TestStockRoutes:

    def test_lost_version_race_is_409(self, client, paracetamol, headers, monkeypatch):
        def stale_apply(product, delta, kind, **kwargs):
            raise StaleDataError("version mismatch on products")

        monkeypatch.setattr(stock_ledger_service, "apply_movement_locked", stale_apply)

        response = client.post("/api/stock/movements", headers=headers, json={
            "product_id": paracetamol.id, "kind": "restock", "quantity": 20,
        })

        assert response.status_code == 409
        assert response.json["details"] == {"product_id": paracetamol.id}
        assert client.get(f"/api/products/{paracetamol.id}").json["stock_quantity"] == 100

    def test_loss_requires_reason(self, client, paracetamol, headers):
        response = client.post("/api/stock/movements", headers=headers, json={
            "product_id": paracetamol.id, "kind": "loss", "quantity": 3,
        })
        assert response.status_code == 400

    def test_manual_movements(self, client, paracetamol, headers):
        response = client.post("/api/stock/movements", headers=headers, json={
            "product_id": paracetamol.id, "kind": "loss", "quantity": 3, "reason": "Crushed",
        })
        assert response.status_code == 201
        assert response.json["stock_quantity"] == 97

        response = client.post("/api/stock/movements", headers=headers, json={
            "product_id": paracetamol.id, "kind": "correction", "quantity": 90, "reason": "Shelf count",
        })
        assert response.json["stock_quantity"] == 90

        response = client.post("/api/stock/movements", headers=headers, json={
            "product_id": paracetamol.id, "kind": "sale", "quantity": 1,
        })
        assert response.status_code == 400

        assert client.get("/api/stock/verify").json["consistent"] is True
        summary = client.get("/api/stock/summary").json
        assert summary["total_losses"] == 3
        assert summary["total_corrections"] == -7

    def test_loss_beyond_stock_is_409(self, client, paracetamol, headers):
        response = client.post("/api/stock/movements", headers=headers, json={
            "product_id": paracetamol.id, "kind": "loss", "quantity": 101, "reason": "Flood",
        })
        assert response.status_code == 409


class TestPrescriptionRoutes:

    def test_prescription_into_cart(self, client, make_product, headers):
        make_product("Amoxicillin 250mg", stock=30)
        prescription = client.post("/api/prescriptions", json={
            "patient_name": "John Kamau",
            "patient_phone": "0722000111",
            "items": [
                {"medicine": "Amoxicillin", "dosage": "2 tablets", "frequency": "Three times daily", "duration": "7 days"},
            ],
        }).json

        preview = client.get(f"/api/prescriptions/{prescription['id']}/resolve").json
        assert preview["items"][0]["quantity"] == 30

        response = client.post(f"/api/cart/prescriptions/{prescription['id']}", headers=headers)
        assert response.status_code == 200
        assert response.json["cart"]["customer_name"] == "John Kamau"
        assert response.json["warnings"][0]["kind"] == "PARTIAL_FULFILLMENT"

        client.post("/api/cart/checkout", headers=headers)
        assert client.get(f"/api/prescriptions/{prescription['id']}").json["status"] == "DISPENSED"

    def test_create_validation(self, client, db_session):
        response = client.post("/api/prescriptions", json={"patient_name": "", "items": []})
        assert response.status_code == 400


class TestReportRoutes:

    def test_stock_audit_with_counts(self, client, paracetamol):
        response = client.post("/api/reports/stock-audit", json={
            "counts": [{"product_id": paracetamol.id, "counted": 95}],
        })

        assert response.status_code == 200
        item = response.json["items"][0]
        assert item["closing_stock"] == 95
        assert item["total_lost"] == 5

    def test_bad_period_is_400(self, client, db_session):
        response = client.get("/api/reports/stock-audit?start=2026-02-01&end=2026-01-01")
        assert response.status_code == 400

    def test_bad_counts_is_400(self, client, db_session):
        response = client.post("/api/reports/stock-audit", json={"counts": "lots"})
        assert response.status_code == 400

    def test_sales_summary(self, client, db_session):
        response = client.get("/api/sales/summary")
        assert response.status_code == 200
        assert response.json["sales_count"] == 0
