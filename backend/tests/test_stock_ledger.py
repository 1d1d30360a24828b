# Overview: Pytest coverage for the stock ledger.

"""
Stock Ledger Tests

Every change to an item's on-hand quantity appends one movement whose
signed quantity equals the change, so on-hand always equals the ledger sum.
"""

import pytest

from workshop.errors import InsufficientStockError, NotFoundError, ValidationError
from workshop.models import StockMovement
from workshop.services import stock_service

from conftest import ledger_sum, stock_of


# =============================================================================
# RECEIVE / ADJUST
# =============================================================================


class TestReceiveAndAdjust:
    """Purchases and absolute counts."""

    def test_opening_stock_is_an_initial_adjustment(self, item):
        movements = stock_service.list_movements(item.id)
        assert len(movements) == 1
        assert movements[0].type == "adjustment"
        assert movements[0].quantity == 10
        assert movements[0].reference == "Initial Stock"

    def test_receive_increments_and_records_purchase(self, item, admin):
        movement = stock_service.receive_stock(item.id, 5, unit_cost_cents=550, reference="PO-17", actor=admin)

        assert movement.type == "purchase"
        assert movement.quantity == 5
        assert movement.user_id == admin.user_id
        assert stock_of(item.id) == 15
        assert item.cost_price_cents == 550

    @pytest.mark.parametrize("qty", [0, -3, "abc", 1.5])
    def test_receive_rejects_non_positive_or_malformed(self, item, qty):
        with pytest.raises(ValidationError):
            stock_service.receive_stock(item.id, qty)
        assert stock_of(item.id) == 10

    def test_receive_unknown_item(self, db_session):
        with pytest.raises(NotFoundError):
            stock_service.receive_stock(9999, 1)

    def test_absolute_level_records_negative_delta(self, item, admin):
        movement = stock_service.set_absolute_level(item.id, 7, notes="cycle count", actor=admin)

        assert movement.type == "adjustment"
        assert movement.quantity == -3
        assert stock_of(item.id) == 7

    def test_absolute_level_to_zero(self, item):
        stock_service.set_absolute_level(item.id, 0)
        assert stock_of(item.id) == 0
        assert ledger_sum(item.id) == 0

    def test_absolute_level_rejects_negative(self, item):
        with pytest.raises(ValidationError):
            stock_service.set_absolute_level(item.id, -1)


# =============================================================================
# DEBIT / CREDIT
# =============================================================================


class TestDebitAndCredit:
    """Outbound movements and returns."""

    def test_debit_decrements_and_records_negative_quantity(self, item, tech):
        movement = stock_service.debit(item.id, 4, "job_usage", reference="JC2026030001", actor=tech)

        assert movement.quantity == -4
        assert movement.type == "job_usage"
        assert movement.reference == "JC2026030001"
        assert stock_of(item.id) == 6

    def test_debit_more_than_on_hand_fails_and_changes_nothing(self, item):
        before = len(stock_service.list_movements(item.id))

        with pytest.raises(InsufficientStockError) as excinfo:
            stock_service.debit(item.id, 11, "sale")

        assert excinfo.value.available == 10
        assert excinfo.value.requested == 11
        assert excinfo.value.details["item_name"] == "Engine Oil 5W-30"
        assert stock_of(item.id) == 10
        assert len(stock_service.list_movements(item.id)) == before

    def test_debit_exact_on_hand_reaches_zero(self, item):
        stock_service.debit(item.id, 10, "shop_use")
        assert stock_of(item.id) == 0

        with pytest.raises(InsufficientStockError):
            stock_service.debit(item.id, 1, "shop_use")

    def test_debit_rejects_unknown_movement_type(self, item):
        with pytest.raises(ValidationError):
            stock_service.debit(item.id, 1, "purchase")

    def test_credit_is_unconditional_adjustment(self, item):
        movement = stock_service.credit(item.id, 1000, reference="return")

        assert movement.type == "adjustment"
        assert movement.quantity == 1000
        assert stock_of(item.id) == 1010

    def test_credit_rejects_zero(self, item):
        with pytest.raises(ValidationError):
            stock_service.credit(item.id, 0)


# =============================================================================
# RECONCILIATION
# =============================================================================


class TestReconciliation:
    """On-hand equals the signed movement sum after any sequence of operations."""

    def test_mixed_sequence_reconciles(self, item, filter_item):
        stock_service.receive_stock(item.id, 12)
        stock_service.debit(item.id, 5, "sale")
        stock_service.set_absolute_level(item.id, 9)
        stock_service.credit(item.id, 2)
        stock_service.debit(filter_item.id, 5, "job_usage")
        with pytest.raises(InsufficientStockError):
            stock_service.debit(filter_item.id, 1, "job_usage")

        for item_id in (item.id, filter_item.id):
            assert stock_of(item_id) == ledger_sum(item_id) == stock_service.ledger_balance(item_id)
        assert stock_service.reconcile_all() == []

    def test_reconcile_reports_out_of_band_changes(self, item, db_session):
        item.current_stock = 42
        db_session.commit()

        mismatches = stock_service.reconcile_all()

        assert len(mismatches) == 1
        assert mismatches[0]["item_id"] == item.id
        assert mismatches[0]["ledger_quantity"] == 10
        assert mismatches[0]["difference"] == 32

    def test_movement_filter_by_type(self, item):
        stock_service.receive_stock(item.id, 3)
        stock_service.debit(item.id, 1, "sale")

        purchases = stock_service.list_movements(item.id, movement_type="purchase")
        assert [m.quantity for m in purchases] == [3]
        assert all(isinstance(m, StockMovement) for m in purchases)
