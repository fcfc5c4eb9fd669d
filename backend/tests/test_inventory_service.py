# Overview: Pytest coverage for stock validation, atomic decrements and receipts.

"""
Inventory Ledger Tests

Covers:
- Validation pass (missing record, insufficient stock, summed lines)
- All-or-nothing decrement: a failing line leaves every record untouched
- Lost race between validation and decrement
- CHECK constraint as the last line of defence
- Receiving stock and listing branch inventory
"""

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from pharmapos.extensions import db
from pharmapos.models import InventoryRecord
from pharmapos.services import inventory_service
from pharmapos.services.inventory_service import (
    InsufficientStockError,
    InventoryError,
    ProductNotFoundError,
    check_availability,
    reserve_and_decrement,
)

from conftest import make_product, quantity_of, stock


class TestCheckAvailability:
    def test_missing_record_is_product_not_found(self, db_session, branch_a, amoxicillin):
        with pytest.raises(ProductNotFoundError) as exc_info:
            check_availability(branch_a.id, [(amoxicillin.id, 1)])
        assert str(exc_info.value) == f"Product {amoxicillin.id} not found in inventory"

    def test_insufficient_stock_reports_available_and_requested(self, db_session, stocked_branch, paracetamol):
        with pytest.raises(InsufficientStockError) as exc_info:
            check_availability(stocked_branch.id, [(paracetamol.id, 6)])

        err = exc_info.value
        assert err.available == 5
        assert err.requested == 6
        assert err.product_name == "Paracetamol 500mg"
        assert "Available: 5, Requested: 6" in str(err)

    def test_lines_for_same_product_are_summed(self, db_session, stocked_branch, paracetamol):
        with pytest.raises(InsufficientStockError) as exc_info:
            check_availability(stocked_branch.id, [(paracetamol.id, 3), (paracetamol.id, 3)])
        assert exc_info.value.requested == 6

    def test_other_branch_stock_does_not_count(self, db_session, stocked_branch, tenant_a, amoxicillin):
        from pharmapos.models import Branch
        other = Branch(tenant_id=tenant_a.id, name="Other", code="A2")
        db_session.add(other)
        db_session.commit()

        with pytest.raises(ProductNotFoundError):
            check_availability(other.id, [(amoxicillin.id, 1)])

    def test_deleted_record_is_not_found(self, db_session, stocked_branch, amoxicillin):
        from pharmapos.time_utils import utcnow
        record = db_session.query(InventoryRecord).filter_by(product_id=amoxicillin.id).one()
        record.deleted_at = utcnow()
        db_session.commit()

        with pytest.raises(ProductNotFoundError):
            check_availability(stocked_branch.id, [(amoxicillin.id, 1)])
        assert inventory_service.get_record(stocked_branch.id, amoxicillin.id) is None


class TestReserveAndDecrement:
    def test_decrements_every_line(self, db_session, stocked_branch, amoxicillin, paracetamol):
        records = reserve_and_decrement(
            stocked_branch.id, [(amoxicillin.id, 3), (paracetamol.id, 2)]
        )
        db_session.commit()

        assert {r.product_id: r.quantity_on_hand for r in records} == {
            amoxicillin.id: 7,
            paracetamol.id: 3,
        }
        assert quantity_of(db_session, stocked_branch, amoxicillin) == 7
        assert quantity_of(db_session, stocked_branch, paracetamol) == 3

    def test_get_record_reads_live_stock(self, db_session, stocked_branch, amoxicillin):
        record = inventory_service.get_record(stocked_branch.id, amoxicillin.id)
        assert record.quantity_on_hand == 10
        assert inventory_service.get_record(stocked_branch.id, 99999) is None

    def test_decrement_bumps_version(self, db_session, stocked_branch, amoxicillin):
        before = db_session.query(InventoryRecord).filter_by(product_id=amoxicillin.id).one().version_id
        reserve_and_decrement(stocked_branch.id, [(amoxicillin.id, 1)])
        db_session.commit()
        after = db_session.query(InventoryRecord).filter_by(product_id=amoxicillin.id).one().version_id
        assert after == before + 1

    def test_exact_stock_can_be_sold_to_zero(self, db_session, stocked_branch, paracetamol):
        reserve_and_decrement(stocked_branch.id, [(paracetamol.id, 5)])
        db_session.commit()
        assert quantity_of(db_session, stocked_branch, paracetamol) == 0

    def test_failing_line_leaves_all_records_untouched(self, db_session, stocked_branch, amoxicillin, paracetamol):
        with pytest.raises(InsufficientStockError):
            reserve_and_decrement(
                stocked_branch.id, [(amoxicillin.id, 3), (paracetamol.id, 6)]
            )
        db_session.rollback()

        assert quantity_of(db_session, stocked_branch, amoxicillin) == 10
        assert quantity_of(db_session, stocked_branch, paracetamol) == 5

    def test_lost_race_raises_and_never_goes_negative(self, db_session, stocked_branch, paracetamol, monkeypatch):
        """A concurrent sale lands between validation and decrement."""
        original = inventory_service.check_availability

        def racing_check(branch_id, lines):
            records = original(branch_id, lines)
            db.session.execute(
                update(InventoryRecord)
                .where(InventoryRecord.product_id == paracetamol.id)
                .values(quantity_on_hand=1)
                .execution_options(synchronize_session=False)
            )
            return records

        monkeypatch.setattr(inventory_service, "check_availability", racing_check)

        with pytest.raises(InsufficientStockError) as exc_info:
            reserve_and_decrement(stocked_branch.id, [(paracetamol.id, 3)])

        assert exc_info.value.available == 1
        assert exc_info.value.requested == 3
        assert quantity_of(db_session, stocked_branch, paracetamol) == 1
        db_session.rollback()

    def test_check_constraint_rejects_negative_quantity(self, db_session, stocked_branch, paracetamol):
        with pytest.raises(IntegrityError):
            db_session.execute(
                update(InventoryRecord)
                .where(InventoryRecord.product_id == paracetamol.id)
                .values(quantity_on_hand=-1)
                .execution_options(synchronize_session=False)
            )
        db_session.rollback()
        assert quantity_of(db_session, stocked_branch, paracetamol) == 5


class TestReceiveStock:
    def test_receive_increments_existing_record(self, db_session, stocked_branch, paracetamol):
        record = inventory_service.receive_stock(
            branch_id=stocked_branch.id, product_id=paracetamol.id, quantity=20, reorder_level=4
        )
        assert record.quantity_on_hand == 25
        assert record.reorder_level == 4

    def test_receive_creates_record_on_first_receipt(self, db_session, branch_a, amoxicillin):
        record = inventory_service.receive_stock(
            branch_id=branch_a.id, product_id=amoxicillin.id, quantity=12, batch_number="B-7"
        )
        assert record.id is not None
        assert record.quantity_on_hand == 12
        assert record.batch_number == "B-7"

    def test_receive_rejects_foreign_tenant_product(self, db_session, branch_a, tenant_b):
        foreign = make_product(db_session, tenant_b, "FOREIGN-1", "Foreign Syrup")
        with pytest.raises(ProductNotFoundError):
            inventory_service.receive_stock(branch_id=branch_a.id, product_id=foreign.id, quantity=1)

    def test_receive_rejects_non_positive_quantity(self, db_session, stocked_branch, paracetamol):
        with pytest.raises(InventoryError):
            inventory_service.receive_stock(branch_id=stocked_branch.id, product_id=paracetamol.id, quantity=0)


class TestListInventory:
    def test_search_and_low_stock_filters(self, db_session, branch_a, tenant_a):
        ibuprofen = make_product(db_session, tenant_a, "IBU-200", "Ibuprofen 200mg")
        cetirizine = make_product(db_session, tenant_a, "CET-10", "Cetirizine 10mg")
        stock(db_session, branch_a, ibuprofen, 2, reorder_level=5)
        stock(db_session, branch_a, cetirizine, 50, reorder_level=5)

        records, total = inventory_service.list_inventory(branch_id=branch_a.id, search="ibu")
        assert total == 1
        assert records[0].product_id == ibuprofen.id

        low, low_total = inventory_service.list_inventory(branch_id=branch_a.id, low_stock=True)
        assert low_total == 1
        assert low[0].is_low_stock
