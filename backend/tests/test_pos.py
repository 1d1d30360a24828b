# Overview: Pytest coverage for POS sales and refunds.

"""
POS Engine Tests

A sale checks the whole cart before writing, debits every line in one
transaction and can be refunded once, as a whole.
"""

from datetime import datetime

import pytest

from workshop.errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from workshop.models import PosSale, StockMovement
from workshop.services import catalog_service, pos_service, stock_service

from conftest import ledger_sum, stock_of


# =============================================================================
# CREATE
# =============================================================================


class TestCreateSale:
    """Totals, numbering and stock debits."""

    def test_sale_totals_and_change(self, item, filter_item, admin):
        sale = pos_service.create_sale(
            lines=[
                {"item_id": item.id, "quantity": 2},
                {"item_id": filter_item.id, "quantity": 1, "unit_price_cents": 500},
            ],
            payment_method="cash",
            paid_cents=3000,
            tax_rate=8,
            discount_cents=50,
            actor=admin,
        )

        assert sale.subtotal_cents == 2 * 800 + 500
        assert sale.tax_cents == 168
        assert sale.total_cents == 2100 + 168 - 50
        assert sale.change_cents == 3000 - sale.total_cents
        assert sale.status == "completed"
        assert sale.cashier_user_id == admin.user_id
        assert sale.sale_number == "POS202603150001"
        assert len(sale.items) == 2
        assert sale.items[0].unit_cost_cents == 500

    def test_sale_debits_each_line_with_sale_reference(self, item, filter_item):
        sale = pos_service.create_sale(
            lines=[{"item_id": item.id, "quantity": 3}, {"item_id": filter_item.id, "quantity": 2}],
            payment_method="card",
            tax_rate=0,
        )

        assert stock_of(item.id) == 7
        assert stock_of(filter_item.id) == 3
        sale_moves = [m for m in stock_service.list_movements(item.id) if m.type == "sale"]
        assert [m.quantity for m in sale_moves] == [-3]
        assert sale_moves[0].reference == sale.sale_number

    def test_line_discount_does_not_reduce_subtotal(self, item):
        sale = pos_service.create_sale(
            lines=[{"item_id": item.id, "quantity": 2, "discount_cents": 100}],
            payment_method="card",
            tax_rate=0,
        )

        assert sale.items[0].total_cents == 1500
        assert sale.subtotal_cents == 1600

    def test_card_sale_defaults_paid_to_total(self, item):
        sale = pos_service.create_sale(lines=[{"item_id": item.id, "quantity": 1}], payment_method="card", tax_rate=0)
        assert sale.paid_cents == sale.total_cents == 800
        assert sale.change_cents == 0

    def test_cash_sale_requires_paid_amount(self, item):
        with pytest.raises(ValidationError):
            pos_service.create_sale(lines=[{"item_id": item.id, "quantity": 1}], payment_method="cash", tax_rate=0)

    def test_underpaid_sale_is_recorded_without_change(self, item, db_session):
        sale = pos_service.create_sale(
            lines=[{"item_id": item.id, "quantity": 1}], payment_method="cash", paid_cents=799, tax_rate=0,
        )

        assert sale.total_cents == 800
        assert sale.paid_cents == 799
        assert sale.change_cents == 0
        assert db_session.query(PosSale).count() == 1
        assert stock_of(item.id) == ledger_sum(item.id) == 9

    def test_tax_rate_defaults_to_setting_fallback(self, item):
        sale = pos_service.create_sale(lines=[{"item_id": item.id, "quantity": 1}], payment_method="card")
        # DEFAULT_TAX_RATE is 8 in the test config
        assert sale.tax_rate_bps == 800
        assert sale.tax_cents == 64

    def test_sale_numbers_are_per_day(self, item, clock):
        first = pos_service.create_sale(lines=[{"item_id": item.id, "quantity": 1}], payment_method="card", tax_rate=0)
        second = pos_service.create_sale(lines=[{"item_id": item.id, "quantity": 1}], payment_method="card", tax_rate=0)
        clock.now = datetime(2026, 3, 16, 9, 0, 0)
        third = pos_service.create_sale(lines=[{"item_id": item.id, "quantity": 1}], payment_method="card", tax_rate=0)

        assert [first.sale_number, second.sale_number, third.sale_number] == [
            "POS202603150001", "POS202603150002", "POS202603160001",
        ]

    @pytest.mark.parametrize("lines", [[], [{"quantity": 1}], [{"item_id": 1, "quantity": 0}], ["bad"]])
    def test_malformed_cart(self, db_session, lines):
        with pytest.raises(ValidationError):
            pos_service.create_sale(lines=lines, payment_method="card", tax_rate=0)

    def test_unknown_item(self, db_session):
        with pytest.raises(NotFoundError):
            pos_service.create_sale(lines=[{"item_id": 9999, "quantity": 1}], payment_method="card", tax_rate=0)


# =============================================================================
# ATOMICITY
# =============================================================================


class TestSaleAtomicity:
    """A short line aborts the whole sale."""

    def test_short_line_aborts_entire_cart(self, item, filter_item, db_session):
        with pytest.raises(InsufficientStockError) as excinfo:
            pos_service.create_sale(
                lines=[{"item_id": item.id, "quantity": 2}, {"item_id": filter_item.id, "quantity": 6}],
                payment_method="card",
                tax_rate=0,
            )

        assert excinfo.value.item_id == filter_item.id
        assert excinfo.value.available == 5
        assert stock_of(item.id) == 10
        assert stock_of(filter_item.id) == 5
        assert db_session.query(PosSale).count() == 0
        assert db_session.query(StockMovement).filter_by(type="sale").count() == 0

    def test_repeated_item_lines_are_checked_together(self, item, db_session):
        with pytest.raises(InsufficientStockError):
            pos_service.create_sale(
                lines=[{"item_id": item.id, "quantity": 6}, {"item_id": item.id, "quantity": 5}],
                payment_method="card",
                tax_rate=0,
            )
        assert stock_of(item.id) == 10

    def test_inactive_item_cannot_be_sold(self, item):
        catalog_service.update_item(item.id, {"is_active": False})
        with pytest.raises(ValidationError):
            pos_service.create_sale(lines=[{"item_id": item.id, "quantity": 1}], payment_method="card", tax_rate=0)

    def test_failed_debit_rolls_back_earlier_lines(self, item, filter_item, db_session, monkeypatch):
        real_debit = stock_service.debit_locked
        calls = []

        def debit_then_fail(item_row, quantity, *args, **kwargs):
            calls.append(item_row.id)
            if len(calls) == 2:
                raise InsufficientStockError(
                    item_id=item_row.id, item_name=item_row.name, requested=quantity, available=0,
                )
            return real_debit(item_row, quantity, *args, **kwargs)

        monkeypatch.setattr(stock_service, "debit_locked", debit_then_fail)

        with pytest.raises(InsufficientStockError):
            pos_service.create_sale(
                lines=[{"item_id": item.id, "quantity": 2}, {"item_id": filter_item.id, "quantity": 1}],
                payment_method="card",
                tax_rate=0,
            )

        assert calls == [item.id, filter_item.id]
        assert db_session.query(PosSale).count() == 0
        assert db_session.query(StockMovement).filter_by(type="sale").count() == 0
        assert stock_of(item.id) == ledger_sum(item.id) == 10
        assert stock_of(filter_item.id) == ledger_sum(filter_item.id) == 5

        monkeypatch.undo()
        sale = pos_service.create_sale(lines=[{"item_id": item.id, "quantity": 1}], payment_method="card", tax_rate=0)
        assert sale.sale_number == "POS202603150001"


# =============================================================================
# REFUND
# =============================================================================


class TestRefund:
    """Whole-sale refunds credit every line back once."""

    def test_refund_credits_stock_and_marks_refunded(self, db_session, admin):
        widget = catalog_service.create_item({
            "sku": "WIPER-18", "name": "Wiper Blade 18in",
            "cost_price_cents": 600, "selling_price_cents": 1000, "current_stock": 5,
        })
        sale = pos_service.create_sale(
            lines=[{"item_id": widget.id, "quantity": 2, "unit_price_cents": 1000}],
            payment_method="cash", paid_cents=2000, tax_rate=0,
        )
        assert stock_of(widget.id) == 3

        refunded = pos_service.refund_sale(sale.id, actor=admin)

        assert refunded.status == "refunded"
        assert refunded.refunded_by_user_id == admin.user_id
        assert stock_of(widget.id) == 5
        credit = db_session.query(StockMovement).filter_by(reference=f"refund:{sale.sale_number}").one()
        assert credit.quantity == 2
        assert credit.type == "adjustment"

    def test_second_refund_is_a_conflict_and_leaves_stock(self, item):
        sale = pos_service.create_sale(lines=[{"item_id": item.id, "quantity": 2}], payment_method="card", tax_rate=0)
        pos_service.refund_sale(sale.id)
        assert stock_of(item.id) == 10

        with pytest.raises(ConflictError):
            pos_service.refund_sale(sale.id)
        assert stock_of(item.id) == 10
        assert ledger_sum(item.id) == 10

    def test_refund_unknown_sale(self, db_session):
        with pytest.raises(NotFoundError):
            pos_service.refund_sale(9999)


# =============================================================================
# READS
# =============================================================================


class TestSaleReads:
    """Listing and today's summary."""

    def test_today_summary_excludes_refunds(self, item, clock):
        pos_service.create_sale(lines=[{"item_id": item.id, "quantity": 1}], payment_method="card", tax_rate=0)
        pos_service.create_sale(
            lines=[{"item_id": item.id, "quantity": 2}], payment_method="cash", paid_cents=2000, tax_rate=0,
        )
        refunded = pos_service.create_sale(lines=[{"item_id": item.id, "quantity": 1}], payment_method="card", tax_rate=0)
        pos_service.refund_sale(refunded.id)

        summary = pos_service.today_summary()

        assert summary["total_transactions"] == 2
        assert summary["card_sales_cents"] == 800
        assert summary["cash_sales_cents"] == 1600
        assert summary["total_sales_cents"] == 2400

    def test_list_sales_by_status_and_number(self, item):
        kept = pos_service.create_sale(lines=[{"item_id": item.id, "quantity": 1}], payment_method="card", tax_rate=0)
        gone = pos_service.create_sale(lines=[{"item_id": item.id, "quantity": 1}], payment_method="card", tax_rate=0)
        pos_service.refund_sale(gone.id)

        assert [s.id for s in pos_service.list_sales(status="refunded")] == [gone.id]
        assert [s.id for s in pos_service.list_sales(search=kept.sale_number)] == [kept.id]
        assert len(pos_service.list_sales()) == 2
