# Overview: Pytest coverage for the job card engine.

"""
Job Card Engine Tests

Covers numbering, line totals, part/stock interaction, the status state
machine and atomic deletion.
"""

from datetime import datetime

import pytest

from workshop.errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from workshop.models import JobCard, JobPart, StockMovement
from workshop.services import catalog_service, customer_service, invoice_service, jobcard_service, stock_service

from conftest import ledger_sum, stock_of


# =============================================================================
# CREATION AND NUMBERING
# =============================================================================


class TestCreateJobCard:
    """Job cards open in pending with a sequential per-month number."""

    def test_three_cards_number_sequentially(self, customer, vehicle):
        numbers = [
            jobcard_service.create_job_card(customer_id=customer.id, vehicle_id=vehicle.id).job_number
            for _ in range(3)
        ]
        assert numbers == ["JC2026030001", "JC2026030002", "JC2026030003"]

    def test_numbering_restarts_each_month(self, customer, vehicle, clock):
        first = jobcard_service.create_job_card(customer_id=customer.id, vehicle_id=vehicle.id)
        clock.now = datetime(2026, 4, 1, 8, 0, 0)
        second = jobcard_service.create_job_card(customer_id=customer.id, vehicle_id=vehicle.id)

        assert first.job_number == "JC2026030001"
        assert second.job_number == "JC2026040001"

    def test_new_card_is_pending_with_zero_total(self, job_card, tech):
        assert job_card.status == "pending"
        assert job_card.actual_total_cents == 0
        assert job_card.created_by_user_id == tech.user_id
        assert job_card.odometer == 45000

    def test_vehicle_must_belong_to_customer(self, vehicle):
        other = customer_service.create_customer({"name": "Someone Else"})
        with pytest.raises(ValidationError):
            jobcard_service.create_job_card(customer_id=other.id, vehicle_id=vehicle.id)

    def test_unknown_customer(self, vehicle):
        with pytest.raises(NotFoundError):
            jobcard_service.create_job_card(customer_id=9999, vehicle_id=vehicle.id)

    def test_update_assigns_technician(self, job_card, tech_user):
        updated = jobcard_service.update_job_card(
            job_card.id, {"assigned_to_id": tech_user.id, "notes": "noise from front left"}
        )
        assert updated.assigned_to_id == tech_user.id
        assert updated.notes == "noise from front left"

    def test_update_rejects_unknown_technician(self, job_card):
        with pytest.raises(NotFoundError):
            jobcard_service.update_job_card(job_card.id, {"assigned_to_id": 9999})


# =============================================================================
# LINES AND TOTALS
# =============================================================================


class TestLinesAndTotals:
    """actual_total is recomputed from child rows after every mutation."""

    def test_service_line_defaults_to_base_price(self, job_card, service):
        line = jobcard_service.add_service(job_card.id, service.id, quantity=2, discount_cents=500)

        assert line.unit_price_cents == 1500
        assert line.total_cents == 2500
        assert jobcard_service.get_job_card(job_card.id).actual_total_cents == 2500

    def test_line_discount_larger_than_line_is_rejected(self, job_card, service):
        with pytest.raises(ValidationError):
            jobcard_service.add_service(job_card.id, service.id, discount_cents=1501)
        assert jobcard_service.get_job_card(job_card.id).actual_total_cents == 0

    def test_manual_entry_actual_overrides_estimate(self, job_card):
        entry = jobcard_service.add_manual_entry(
            job_card.id, {"description": "Strip and refit bumper", "category": "tinkering", "estimated_cost_cents": 4000}
        )
        assert jobcard_service.get_job_card(job_card.id).actual_total_cents == 4000

        jobcard_service.update_manual_entry(job_card.id, entry.id, {"actual_cost_cents": 3500})
        assert jobcard_service.get_job_card(job_card.id).actual_total_cents == 3500

        jobcard_service.update_manual_entry(job_card.id, entry.id, {"actual_cost_cents": None})
        assert jobcard_service.get_job_card(job_card.id).actual_total_cents == 4000

        jobcard_service.remove_manual_entry(job_card.id, entry.id)
        assert jobcard_service.get_job_card(job_card.id).actual_total_cents == 0

    def test_manual_entry_category_is_validated(self, job_card):
        with pytest.raises(ValidationError):
            jobcard_service.add_manual_entry(job_card.id, {"description": "Wrap", "category": "vinyl"})

    def test_total_sums_all_groups(self, job_card, service, item):
        jobcard_service.add_service(job_card.id, service.id)
        jobcard_service.add_part(job_card.id, item.id, quantity=2)
        jobcard_service.add_manual_entry(job_card.id, {"description": "Labour", "estimated_cost_cents": 1000})

        assert jobcard_service.get_job_card(job_card.id).actual_total_cents == 1500 + 1600 + 1000

    def test_recompute_is_idempotent(self, job_card, service, item):
        jobcard_service.add_service(job_card.id, service.id)
        jobcard_service.add_part(job_card.id, item.id, quantity=1)

        first = jobcard_service.recompute_total(job_card.id)
        second = jobcard_service.recompute_total(job_card.id)

        assert first == second == 2300

    def test_recompute_repairs_out_of_band_drift(self, job_card, service, db_session):
        jobcard_service.add_service(job_card.id, service.id)
        job = jobcard_service.get_job_card(job_card.id)
        job.actual_total_cents = 1
        db_session.commit()

        assert jobcard_service.recompute_total(job_card.id) == 1500

    def test_remove_service_line(self, job_card, service):
        line = jobcard_service.add_service(job_card.id, service.id)
        jobcard_service.remove_service(job_card.id, line.id)

        assert jobcard_service.get_job_card(job_card.id).actual_total_cents == 0
        with pytest.raises(NotFoundError):
            jobcard_service.remove_service(job_card.id, line.id)


# =============================================================================
# PARTS (stock-affecting)
# =============================================================================


class TestParts:
    """Fitting a part debits stock; removing it credits stock back."""

    def test_add_part_debits_stock_with_job_reference(self, job_card, item, tech):
        line = jobcard_service.add_part(job_card.id, item.id, quantity=4, unit_price_cents=800, actor=tech)

        assert line.total_cents == 3200
        assert line.unit_cost_cents == 500
        assert stock_of(item.id) == 6

        usage = [m for m in stock_service.list_movements(item.id) if m.type == "job_usage"]
        assert len(usage) == 1
        assert usage[0].quantity == -4
        assert usage[0].reference == job_card.job_number
        assert usage[0].user_id == tech.user_id

    def test_insufficient_stock_writes_nothing(self, job_card, item, db_session):
        with pytest.raises(InsufficientStockError) as excinfo:
            jobcard_service.add_part(job_card.id, item.id, quantity=11)

        assert excinfo.value.available == 10
        assert stock_of(item.id) == 10
        assert db_session.query(JobPart).count() == 0
        assert jobcard_service.get_job_card(job_card.id).actual_total_cents == 0

    def test_inactive_item_cannot_be_fitted(self, job_card, item):
        catalog_service.update_item(item.id, {"is_active": False})

        with pytest.raises(ValidationError):
            jobcard_service.add_part(job_card.id, item.id, quantity=1)

    def test_part_round_trip_is_stock_neutral(self, job_card, item, db_session):
        movements_before = db_session.query(StockMovement).filter_by(item_id=item.id).count()

        line = jobcard_service.add_part(job_card.id, item.id, quantity=3)
        jobcard_service.remove_part(job_card.id, line.id)

        assert stock_of(item.id) == 10
        new = (
            db_session.query(StockMovement)
            .filter_by(item_id=item.id)
            .order_by(StockMovement.id)
            .all()[movements_before:]
        )
        assert [m.quantity for m in new] == [-3, 3]
        assert new[1].reference == "Part removed from job"
        assert new[1].notes == job_card.job_number
        assert jobcard_service.get_job_card(job_card.id).actual_total_cents == 0
        assert ledger_sum(item.id) == 10

    def test_remove_part_from_other_job_is_not_found(self, job_card, item, customer, vehicle):
        other = jobcard_service.create_job_card(customer_id=customer.id, vehicle_id=vehicle.id)
        line = jobcard_service.add_part(job_card.id, item.id, quantity=1)

        with pytest.raises(NotFoundError):
            jobcard_service.remove_part(other.id, line.id)
        assert stock_of(item.id) == 9


# =============================================================================
# STATUS STATE MACHINE
# =============================================================================


class TestStatus:
    """Workshop states move freely; billing states only move forward."""

    def test_ready_stamps_completed_at(self, job_card, clock):
        jobcard_service.update_status(job_card.id, "in_progress")
        job = jobcard_service.update_status(job_card.id, "ready")

        assert job.status == "ready"
        assert job.completed_at == clock.now

    def test_moving_back_to_workshop_state_clears_completed_at(self, job_card):
        jobcard_service.update_status(job_card.id, "ready")
        job = jobcard_service.update_status(job_card.id, "in_progress")

        assert job.status == "in_progress"
        assert job.completed_at is None

    def test_unknown_status(self, job_card):
        with pytest.raises(ValidationError):
            jobcard_service.update_status(job_card.id, "finished")

    def test_invoiced_requires_an_invoice(self, job_card):
        with pytest.raises(ConflictError):
            jobcard_service.update_status(job_card.id, "invoiced")

    def test_invoiced_job_cannot_move_backward(self, job_card, service):
        jobcard_service.add_service(job_card.id, service.id)
        invoice_service.create_invoice(job_card.id, tax_rate=0)

        with pytest.raises(ConflictError):
            jobcard_service.update_status(job_card.id, "pending")
        assert jobcard_service.get_job_card(job_card.id).status == "invoiced"

    def test_paid_requires_settled_invoice(self, job_card, service):
        jobcard_service.add_service(job_card.id, service.id)
        invoice_service.create_invoice(job_card.id, tax_rate=0)

        with pytest.raises(ConflictError):
            jobcard_service.update_status(job_card.id, "paid")

    def test_stats_count_by_status(self, job_card, customer, vehicle):
        second = jobcard_service.create_job_card(customer_id=customer.id, vehicle_id=vehicle.id)
        jobcard_service.update_status(second.id, "in_progress")

        stats = jobcard_service.job_card_stats()

        assert stats["by_status"]["pending"] == 1
        assert stats["by_status"]["in_progress"] == 1
        assert stats["open"] == 2
        assert stats["total"] == 2
        assert stats["created_today"] == 2


# =============================================================================
# DELETION
# =============================================================================


class TestDeleteJobCard:
    """Deleting a job card returns every fitted part to stock, atomically."""

    def test_delete_credits_all_parts(self, job_card, item, filter_item, service, db_session):
        jobcard_service.add_part(job_card.id, item.id, quantity=4)
        jobcard_service.add_part(job_card.id, filter_item.id, quantity=2)
        jobcard_service.add_service(job_card.id, service.id)

        jobcard_service.delete_job_card(job_card.id)

        assert stock_of(item.id) == 10
        assert stock_of(filter_item.id) == 5
        assert db_session.get(JobCard, job_card.id) is None
        assert db_session.query(JobPart).count() == 0
        credits = db_session.query(StockMovement).filter_by(reference="Job card deleted").all()
        assert sorted(m.quantity for m in credits) == [2, 4]

    def test_delete_blocked_by_open_invoice(self, job_card, item):
        jobcard_service.add_part(job_card.id, item.id, quantity=2)
        invoice_service.create_invoice(job_card.id, tax_rate=0)

        with pytest.raises(ConflictError):
            jobcard_service.delete_job_card(job_card.id)
        assert stock_of(item.id) == 8

    def test_delete_allowed_after_unpaid_invoice_cancelled(self, job_card, item, db_session):
        jobcard_service.add_part(job_card.id, item.id, quantity=2)
        invoice = invoice_service.create_invoice(job_card.id, tax_rate=0)
        invoice_service.cancel_invoice(invoice.id)

        jobcard_service.delete_job_card(job_card.id)

        assert stock_of(item.id) == 10
        assert db_session.get(JobCard, job_card.id) is None

    def test_failed_credit_keeps_job_card_and_stock(self, job_card, item, filter_item, db_session, monkeypatch):
        jobcard_service.add_part(job_card.id, item.id, quantity=4)
        jobcard_service.add_part(job_card.id, filter_item.id, quantity=2)
        real_credit = stock_service.credit_locked
        calls = []

        def credit_then_fail(item_row, quantity, **kwargs):
            calls.append(item_row.id)
            if len(calls) == 2:
                raise RuntimeError("stock ledger unavailable")
            return real_credit(item_row, quantity, **kwargs)

        monkeypatch.setattr(stock_service, "credit_locked", credit_then_fail)

        with pytest.raises(RuntimeError):
            jobcard_service.delete_job_card(job_card.id)

        assert len(calls) == 2
        assert db_session.get(JobCard, job_card.id) is not None
        assert sorted(p.quantity for p in db_session.query(JobPart).filter_by(job_card_id=job_card.id)) == [2, 4]
        assert db_session.query(StockMovement).filter_by(reference="Job card deleted").count() == 0
        assert stock_of(item.id) == ledger_sum(item.id) == 6
        assert stock_of(filter_item.id) == ledger_sum(filter_item.id) == 3

    def test_list_filters_by_search_and_status(self, job_card, customer, vehicle):
        jobcard_service.update_status(job_card.id, "in_progress")
        jobcard_service.create_job_card(customer_id=customer.id, vehicle_id=vehicle.id)

        assert len(jobcard_service.list_job_cards(search="P-1234")) == 2
        assert len(jobcard_service.list_job_cards(search="Ahmed")) == 2
        in_progress = jobcard_service.list_job_cards(status="in_progress")
        assert [j.id for j in in_progress] == [job_card.id]
