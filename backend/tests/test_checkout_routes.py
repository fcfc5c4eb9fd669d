# Overview: Pytest coverage for point-of-sale, sales and system HTTP routes.

from conftest import context_headers, quantity_of


def _checkout_body(product, quantity, *, method="cash", paid=None, tax=0):
    subtotal = quantity * product.unit_price_cents
    total = subtotal + tax
    body = {
        "items": [{"product_id": product.id, "quantity": quantity, "unit_price_cents": product.unit_price_cents}],
        "subtotal_cents": subtotal,
        "tax_cents": tax,
        "discount_cents": 0,
        "total_cents": total,
    }
    if method is not None:
        body["payment_method"] = method
        body["amount_paid_cents"] = total if paid is None else paid
    return body


class TestCheckoutRoute:
    def test_checkout_paid_in_full(self, client, db_session, tenant_a, stocked_branch, amoxicillin):
        response = client.post(
            "/api/v1/pos/checkout",
            json=_checkout_body(amoxicillin, 2, tax=144),
            headers=context_headers(tenant_a.id, user_id=9, branch_id=stocked_branch.id),
        )

        assert response.status_code == 200
        body = response.get_json()
        assert body["success"] is True
        assert body["sale"]["status"] == "completed"
        assert body["sale"]["payment_status"] == "paid"
        assert body["sale"]["total_cents"] == 1044
        assert body["sale"]["cashier_id"] == 9
        assert len(body["sale"]["items"]) == 1
        assert body["payment"]["status"] == "completed"
        assert body["payment"]["amount_cents"] == 1044
        assert quantity_of(db_session, stocked_branch, amoxicillin) == 8

    def test_insufficient_stock_is_400_with_figures(self, client, db_session, tenant_a, stocked_branch, paracetamol):
        response = client.post(
            "/api/v1/pos/checkout",
            json=_checkout_body(paracetamol, 7),
            headers=context_headers(tenant_a.id, branch_id=stocked_branch.id),
        )

        assert response.status_code == 400
        body = response.get_json()
        assert body["error"] == "Insufficient stock for product Paracetamol 500mg. Available: 5, Requested: 7"
        assert body["details"]["available"] == 5
        assert body["details"]["requested"] == 7
        assert quantity_of(db_session, stocked_branch, paracetamol) == 5

    def test_unknown_product_is_400(self, client, db_session, tenant_a, stocked_branch):
        response = client.post(
            "/api/v1/pos/checkout",
            json={
                "items": [{"product_id": 9999, "quantity": 1, "unit_price_cents": 100}],
                "subtotal_cents": 100,
                "total_cents": 100,
            },
            headers=context_headers(tenant_a.id, branch_id=stocked_branch.id),
        )
        assert response.status_code == 400
        assert response.get_json()["error"] == "Product 9999 not found in inventory"

    def test_total_mismatch_is_400(self, client, db_session, tenant_a, stocked_branch, amoxicillin):
        body = _checkout_body(amoxicillin, 1)
        body["total_cents"] += 1
        response = client.post(
            "/api/v1/pos/checkout",
            json=body,
            headers=context_headers(tenant_a.id, branch_id=stocked_branch.id),
        )
        assert response.status_code == 400
        assert "total_cents" in response.get_json()["error"]

    def test_invalid_bodies_are_400(self, client, db_session, tenant_a, stocked_branch, amoxicillin):
        headers = context_headers(tenant_a.id, branch_id=stocked_branch.id)

        assert client.post("/api/v1/pos/checkout", data="not json", headers=headers).status_code == 400
        assert client.post("/api/v1/pos/checkout", json={"items": []}, headers=headers).status_code == 400

        body = _checkout_body(amoxicillin, 1)
        body["items"][0]["quantity"] = 1.5
        assert client.post("/api/v1/pos/checkout", json=body, headers=headers).status_code == 400

        body = _checkout_body(amoxicillin, 1)
        body["items"][0]["quantity"] = 0
        assert client.post("/api/v1/pos/checkout", json=body, headers=headers).status_code == 400

        assert quantity_of(db_session, stocked_branch, amoxicillin) == 10

    def test_unsupported_method_is_400(self, client, db_session, tenant_a, stocked_branch, amoxicillin):
        response = client.post(
            "/api/v1/pos/checkout",
            json=_checkout_body(amoxicillin, 1, method="bitcoin"),
            headers=context_headers(tenant_a.id, branch_id=stocked_branch.id),
        )
        assert response.status_code == 400
        assert quantity_of(db_session, stocked_branch, amoxicillin) == 10

    def test_declined_payment_still_returns_sale(self, client, db_session, tenant_a, stocked_branch, amoxicillin):
        response = client.post(
            "/api/v1/pos/checkout",
            json=_checkout_body(amoxicillin, 1, method="insurance"),
            headers=context_headers(tenant_a.id, branch_id=stocked_branch.id),
        )
        assert response.status_code == 200
        body = response.get_json()
        assert body["success"] is False
        assert body["sale"]["payment_status"] == "pending"
        assert body["payment"]["status"] == "failed"


class TestInventoryRoutes:
    def test_list_inventory(self, client, db_session, tenant_a, stocked_branch):
        response = client.get(
            "/api/v1/pos/inventory?search=amox",
            headers=context_headers(tenant_a.id, branch_id=stocked_branch.id),
        )
        assert response.status_code == 200
        body = response.get_json()
        assert body["total"] == 1
        assert body["items"][0]["product_name"] == "Amoxicillin 500mg"
        assert body["items"][0]["quantity_on_hand"] == 10

    def test_receive_stock(self, client, db_session, tenant_a, stocked_branch, paracetamol):
        response = client.post(
            "/api/v1/pos/inventory/receive",
            json={"product_id": paracetamol.id, "quantity": 20, "batch_number": "PCM-0425"},
            headers=context_headers(tenant_a.id, branch_id=stocked_branch.id),
        )
        assert response.status_code == 201
        assert response.get_json()["quantity_on_hand"] == 25
        assert quantity_of(db_session, stocked_branch, paracetamol) == 25

    def test_receive_rejects_bad_quantity(self, client, db_session, tenant_a, stocked_branch, paracetamol):
        response = client.post(
            "/api/v1/pos/inventory/receive",
            json={"product_id": paracetamol.id, "quantity": -3},
            headers=context_headers(tenant_a.id, branch_id=stocked_branch.id),
        )
        assert response.status_code == 400


class TestSaleDetailRoute:
    def test_sale_with_payments_and_summary(self, client, db_session, tenant_a, stocked_branch, amoxicillin):
        headers = context_headers(tenant_a.id, branch_id=stocked_branch.id)
        sale = client.post(
            "/api/v1/pos/checkout", json=_checkout_body(amoxicillin, 2, paid=300), headers=headers
        ).get_json()["sale"]

        response = client.get(f"/api/v1/sales/{sale['id']}", headers=headers)

        assert response.status_code == 200
        body = response.get_json()
        assert body["sale"]["sale_number"] == sale["sale_number"]
        assert len(body["payments"]) == 1
        assert body["summary"]["completed_total_cents"] == 300
        assert body["summary"]["balance_due_cents"] == 600
        assert body["summary"]["payment_status"] == "partial"

    def test_missing_sale_is_404(self, client, db_session, tenant_a):
        response = client.get("/api/v1/sales/12345", headers=context_headers(tenant_a.id))
        assert response.status_code == 404


class TestSystemRoutes:
    def test_health(self, client, db_session, tenant_a):
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["details"]["tenants"] == 1
        assert body["checks"]["payment_gateway"]["details"]["providers"] == ["airtel", "mtn", "zamtel"]
        assert body["checks"]["payment_gateway"]["details"]["mode"] == "simulated"

    def test_version(self, client):
        response = client.get("/api/v1/version")
        assert response.status_code == 200
        assert response.get_json()["api_version"] == "1.0.0"

    def test_cors_allows_context_headers(self, client):
        response = client.get("/api/v1/version", headers={"Origin": "http://localhost:5173"})
        assert response.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"
        assert "X-Tenant-Id" in response.headers["Access-Control-Allow-Headers"]
