# Overview: Pytest coverage for payment HTTP routes.

import pytest

from pharmapos.services.payment_gateway import GatewayUnavailableError

from conftest import context_headers, make_sale


@pytest.fixture
def headers(tenant_a, branch_a):
    return context_headers(tenant_a.id, user_id=4, branch_id=branch_a.id)


def _create(client, headers, **body):
    body.setdefault("amount_cents", 1000)
    body.setdefault("method", "cash")
    response = client.post("/api/v1/payments", json=body, headers=headers)
    assert response.status_code == 201, response.get_json()
    return response.get_json()


class TestCreateAndProcessRoutes:
    def test_create_returns_pending_payment(self, client, db_session, headers, branch_a):
        sale = make_sale(db_session, branch_a, 1000)
        body = _create(client, headers, sale_id=sale.id, method="card", reference_number="AUTH-1")

        assert body["status"] == "pending"
        assert body["sale_id"] == sale.id
        assert body["created_by_user_id"] == 4
        assert body["reference_number"] == "AUTH-1"

    @pytest.mark.parametrize("payload", [
        {"amount_cents": 0, "method": "cash"},
        {"amount_cents": 10.5, "method": "cash"},
        {"amount_cents": 1000, "method": "cheque"},
        {"amount_cents": 1000, "method": "refund"},
        {"amount_cents": 1000},
    ])
    def test_create_rejects_invalid_input(self, client, db_session, headers, payload):
        response = client.post("/api/v1/payments", json=payload, headers=headers)
        assert response.status_code == 400

    def test_create_for_unknown_sale_is_404(self, client, db_session, headers):
        response = client.post(
            "/api/v1/payments", json={"amount_cents": 100, "method": "cash", "sale_id": 777}, headers=headers
        )
        assert response.status_code == 404

    def test_process_then_reprocess(self, client, db_session, headers, branch_a):
        sale = make_sale(db_session, branch_a, 1000)
        payment = _create(client, headers, sale_id=sale.id)

        response = client.post(f"/api/v1/payments/{payment['id']}/process", headers=headers)
        assert response.status_code == 200
        body = response.get_json()
        assert body["success"] is True
        assert body["payment"]["status"] == "completed"

        detail = client.get(f"/api/v1/sales/{sale.id}", headers=headers).get_json()
        assert detail["sale"]["payment_status"] == "paid"
        assert detail["sale"]["status"] == "completed"

        again = client.post(f"/api/v1/payments/{payment['id']}/process", headers=headers)
        assert again.status_code == 400
        assert again.get_json()["error"] == "Payment is not in pending status"

    def test_process_insurance_with_details(self, client, db_session, headers):
        payment = _create(client, headers, method="insurance")
        response = client.post(
            f"/api/v1/payments/{payment['id']}/process",
            json={"details": {"insurance_provider": "NHIMA", "policy_number": "P-1"}},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.get_json()["payment"]["status"] == "completed"

    def test_process_unknown_payment_is_404(self, client, db_session, headers):
        assert client.post("/api/v1/payments/999/process", headers=headers).status_code == 404


class TestUpdateRoute:
    def test_update_to_completed_is_204(self, client, db_session, headers):
        payment = _create(client, headers, method="card")
        response = client.put(
            f"/api/v1/payments/{payment['id']}",
            json={"status": "completed", "notes": "Confirmed on terminal"},
            headers=headers,
        )
        assert response.status_code == 204

        body = client.get(f"/api/v1/payments/{payment['id']}", headers=headers).get_json()
        assert body["status"] == "completed"
        assert body["notes"] == "Confirmed on terminal"

    def test_update_final_status_is_400(self, client, db_session, headers):
        payment = _create(client, headers)
        client.post(f"/api/v1/payments/{payment['id']}/process", headers=headers)

        response = client.put(f"/api/v1/payments/{payment['id']}", json={"status": "failed"}, headers=headers)
        assert response.status_code == 400

    def test_update_unknown_payment_is_404(self, client, db_session, headers):
        response = client.put("/api/v1/payments/999", json={"notes": "x"}, headers=headers)
        assert response.status_code == 404


class TestMobileMoneyRoutes:
    def test_initiate_and_poll(self, client, db_session, headers, branch_a):
        sale = make_sale(db_session, branch_a, 2500)
        response = client.post(
            "/api/v1/payments/mobile-money",
            json={"sale_id": sale.id, "amount_cents": 2500, "phone": "+260971234567", "provider": "mtn"},
            headers=headers,
        )
        assert response.status_code == 201
        body = response.get_json()
        transaction_id = body["transaction_id"]
        assert transaction_id.startswith("MM_MTN_")
        assert body["payment"]["status"] == "pending"

        status = client.get(f"/api/v1/payments/mobile-money/{transaction_id}/status", headers=headers)
        assert status.status_code == 200
        polled = status.get_json()
        assert polled["status"] == "completed"
        assert polled["gateway_status"] == "completed"
        assert polled["changed"] is True

        detail = client.get(f"/api/v1/sales/{sale.id}", headers=headers).get_json()
        assert detail["sale"]["payment_status"] == "paid"

    def test_initiate_requires_known_provider(self, client, db_session, headers):
        response = client.post(
            "/api/v1/payments/mobile-money",
            json={"amount_cents": 2500, "phone": "+260971234567", "provider": "unknown"},
            headers=headers,
        )
        assert response.status_code == 400

    def test_unknown_transaction_is_404(self, client, db_session, headers):
        response = client.get("/api/v1/payments/mobile-money/MM_MTN_0_x/status", headers=headers)
        assert response.status_code == 404


class TestRefundRoute:
    def test_refund_flow(self, client, db_session, headers):
        payment = _create(client, headers, amount_cents=5000)
        processed = client.post(f"/api/v1/payments/{payment['id']}/process", headers=headers).get_json()
        assert processed["payment"]["status"] == "completed"

        response = client.post(
            "/api/v1/payments/refunds",
            json={"original_reference": payment["payment_number"], "amount_cents": 2000, "reason": "Returned"},
            headers=headers,
        )
        assert response.status_code == 201
        body = response.get_json()
        assert body["success"] is True
        assert body["refund_reference"] == body["payment"]["payment_number"]
        assert body["payment"]["amount_cents"] == -2000
        assert body["payment"]["refund_of_payment_id"] == payment["id"]

        too_much = client.post(
            "/api/v1/payments/refunds",
            json={"original_reference": payment["payment_number"], "amount_cents": 3001},
            headers=headers,
        )
        assert too_much.status_code == 400
        assert too_much.get_json()["details"]["refundable"] == 3000

    def test_refund_unknown_reference_is_404(self, client, db_session, headers):
        response = client.post(
            "/api/v1/payments/refunds",
            json={"original_reference": "PAY00000000", "amount_cents": 100},
            headers=headers,
        )
        assert response.status_code == 404

    def test_refund_gateway_outage_is_503(self, client, db_session, monkeypatch, headers, gateway):
        payment = _create(client, headers, amount_cents=5000)
        client.post(f"/api/v1/payments/{payment['id']}/process", headers=headers)

        def unavailable(method, amount_cents, **kwargs):
            raise GatewayUnavailableError("Refund service is unavailable")

        monkeypatch.setattr(gateway, "process", unavailable)
        response = client.post(
            "/api/v1/payments/refunds",
            json={"original_reference": payment["payment_number"], "amount_cents": 2000},
            headers=headers,
        )

        assert response.status_code == 503
        assert response.get_json()["error"] == "Refund service is unavailable"
        listed = client.get("/api/v1/payments?method=refund", headers=headers).get_json()
        assert [p["status"] for p in listed["payments"]] == ["failed"]


class TestQueryRoutes:
    def test_list_and_stats(self, client, db_session, headers):
        paid = _create(client, headers, amount_cents=3000)
        client.post(f"/api/v1/payments/{paid['id']}/process", headers=headers)
        _create(client, headers, amount_cents=1500, method="card")

        listing = client.get("/api/v1/payments?status=pending", headers=headers).get_json()
        assert listing["total"] == 1
        assert listing["payments"][0]["method"] == "card"

        stats = client.get("/api/v1/payments/stats", headers=headers).get_json()
        assert stats["total_payments"] == 2
        assert stats["completed_payments"] == 1
        assert stats["total_amount_cents"] == 3000

    def test_list_rejects_bad_dates(self, client, db_session, headers):
        response = client.get("/api/v1/payments?start_date=yesterday", headers=headers)
        assert response.status_code == 400

    def test_get_unknown_payment_is_404(self, client, db_session, headers):
        assert client.get("/api/v1/payments/424242", headers=headers).status_code == 404
