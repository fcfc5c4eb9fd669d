# Overview: Pytest coverage for the Flask CLI command groups.

from pharmapos.services import payment_service

from conftest import make_product, quantity_of


def test_tenants_list(app, db_session, tenant_a, branch_a):
    result = app.test_cli_runner().invoke(args=["tenants", "list"])
    assert result.exit_code == 0
    assert "Tenant A - Lusaka Pharmacy" in result.output
    assert f"{branch_a.id}:Cairo Road" in result.output


def test_inventory_receive_creates_record(app, db_session, tenant_a, branch_a):
    product = make_product(db_session, tenant_a, "ORS-1", "Oral Rehydration Salts", 250)

    result = app.test_cli_runner().invoke(args=[
        "inventory", "receive",
        "--branch-id", str(branch_a.id),
        "--product-id", str(product.id),
        "--quantity", "40",
        "--reorder-level", "10",
    ])

    assert result.exit_code == 0, result.output
    assert "on hand: 40" in result.output
    assert quantity_of(db_session, branch_a, product) == 40


def test_inventory_receive_foreign_product_fails(app, db_session, tenant_b, branch_a):
    product = make_product(db_session, tenant_b, "ORS-1", "Oral Rehydration Salts", 250)

    result = app.test_cli_runner().invoke(args=[
        "inventory", "receive",
        "--branch-id", str(branch_a.id),
        "--product-id", str(product.id),
        "--quantity", "5",
    ])

    assert result.exit_code == 1
    assert "FAIL" in result.output


def test_poll_pending_settles_mobile_money(app, db_session, tenant_a, branch_a):
    payment, _ = payment_service.initiate_mobile_money(
        tenant_id=tenant_a.id, branch_id=branch_a.id,
        amount_cents=1200, phone="0977000111", provider="mtn",
    )

    result = app.test_cli_runner().invoke(args=["payments", "poll-pending"])

    assert result.exit_code == 0
    assert "Polled 1 payment(s): 1 settled, 0 error(s)" in result.output
    db_session.refresh(payment)
    assert payment.status == "completed"
