# Overview: Pytest coverage for read-only reports and the dashboard.

"""
Reporting Tests

All figures come from stored snapshots (invoice and sale columns, the stock
ledger); refunded sales and cancelled invoices never count.
"""

import pytest

from workshop.services import (
    invoice_service,
    jobcard_service,
    pos_service,
    reporting_service,
    shop_usage_service,
    stock_service,
)


def _card_sale(item_id, quantity=1, tax_rate=0):
    return pos_service.create_sale(
        lines=[{"item_id": item_id, "quantity": quantity}], payment_method="card", tax_rate=tax_rate,
    )


@pytest.fixture
def invoiced_job(job_card, service):
    """Job card billed at 100.00 + 5% tax, not yet paid."""
    jobcard_service.add_service(job_card.id, service.id, unit_price_cents=10000)
    invoice = invoice_service.create_invoice(job_card.id, tax_rate=5)
    return job_card, invoice


# =============================================================================
# SALES
# =============================================================================


class TestSalesReport:
    def test_combines_pos_and_settled_invoices(self, item, invoiced_job):
        _, invoice = invoiced_job
        _card_sale(item.id, tax_rate=8)
        refunded = _card_sale(item.id, quantity=2)
        pos_service.refund_sale(refunded.id)
        invoice_service.add_payment(invoice.id, invoice.total_cents, "card")

        report = reporting_service.sales_report()

        assert report["pos_sales_cents"] == 864
        assert report["job_card_sales_cents"] == 10500
        assert report["total_revenue_cents"] == 11364
        assert report["services_revenue_cents"] == 10000
        assert report["parts_revenue_cents"] == 800
        assert report["tax_collected_cents"] == 564
        assert report["transaction_count"] == 2
        assert report["period"] == {"from": "2026-03-01T00:00:00Z", "to": "2026-03-15T23:59:59Z"}

    def test_unsettled_invoices_are_left_out(self, invoiced_job):
        report = reporting_service.sales_report()
        assert report["job_card_sales_cents"] == 0
        assert report["transaction_count"] == 0

    def test_explicit_window_outside_activity(self, item):
        _card_sale(item.id)
        report = reporting_service.sales_report("2026-02-01", "2026-02-28")
        assert report["total_revenue_cents"] == 0


# =============================================================================
# TAX
# =============================================================================


class TestTaxReport:
    """Output tax from sales and invoices; input tax estimated on purchases."""

    def test_net_tax_payable(self, item, job_card, service):
        _card_sale(item.id, tax_rate=8)
        jobcard_service.add_service(job_card.id, service.id, unit_price_cents=10000)
        invoice_service.create_invoice(job_card.id, tax_rate=8)
        stock_service.receive_stock(item.id, 10, unit_cost_cents=500)

        report = reporting_service.tax_report()

        assert report["tax_rate_bps"] == 800
        assert report["output_tax"]["pos_sales"] == {"count": 1, "inclusive_cents": 864, "tax_cents": 64}
        assert report["output_tax"]["invoices"]["tax_cents"] == 800
        assert report["output_tax"]["tax_collected_cents"] == 864
        assert report["output_tax"]["total_sales_exclusive_cents"] == 864 + 10800 - 864
        assert report["input_tax"] == {
            "total_purchases_exclusive_cents": 5000,
            "tax_paid_cents": 400,
            "purchase_count": 1,
        }
        assert report["net_tax"]["net_payable_cents"] == 464
        assert report["net_tax"]["status"] == "PAYABLE"
        assert report["sales_by_type"] == {"parts_cents": 800, "services_cents": 10000, "labor_cents": 0}
        assert [m["month"] for m in report["monthly"]] == ["March 2026"]
        assert report["monthly"][0]["total_tax_cents"] == 864
        assert len(report["transactions"]) == 2
        assert report["summary"]["average_transaction_cents"] == (864 + 10800) // 2

    def test_cancelled_invoice_is_excluded(self, invoiced_job):
        _, invoice = invoiced_job
        invoice_service.cancel_invoice(invoice.id)

        report = reporting_service.tax_report()

        assert report["output_tax"]["invoices"]["count"] == 0
        assert report["net_tax"]["status"] == "REFUNDABLE"


# =============================================================================
# PROFITABILITY / INVENTORY / SHOP USAGE
# =============================================================================


class TestJobProfitability:
    def test_parts_cost_against_revenue(self, job_card, item, service, customer, vehicle):
        jobcard_service.add_part(job_card.id, item.id, quantity=2)
        jobcard_service.add_service(job_card.id, service.id)
        invoice = invoice_service.create_invoice(job_card.id, tax_rate=0)
        invoice_service.add_payment(invoice.id, 1000, "cash")

        unpaid = jobcard_service.create_job_card(customer_id=customer.id, vehicle_id=vehicle.id)
        jobcard_service.add_service(unpaid.id, service.id)
        invoice_service.create_invoice(unpaid.id, tax_rate=0)

        report = reporting_service.job_profitability_report()

        assert report["summary"]["total_jobs"] == 1
        job = report["jobs"][0]
        assert job["job_number"] == job_card.job_number
        assert job["vehicle"] == "P-1234"
        assert job["total_revenue_cents"] == 3100
        assert job["total_cost_cents"] == 1000
        assert job["profit_cents"] == 2100
        assert job["margin"] == 67.74


class TestInventoryReport:
    def test_valuation_and_alerts(self, item, filter_item):
        stock_service.set_absolute_level(filter_item.id, 0)

        report = reporting_service.inventory_report()

        assert report["total_items"] == 2
        assert report["total_stock"] == 10
        assert report["total_value_cents"] == 5000
        assert report["retail_value_cents"] == 8000
        assert report["potential_profit_cents"] == 3000
        assert report["out_of_stock_count"] == 1
        assert [i["sku"] for i in report["low_stock_items"]] == ["FLT-OIL"]
        assert report["by_category"] == {"Uncategorized": {"count": 2, "stock": 10, "value_cents": 5000}}


class TestShopUsageReport:
    def test_grouped_by_reason(self, item, filter_item):
        shop_usage_service.record_usage(item.id, 2, reason="cleaning")
        shop_usage_service.record_usage(filter_item.id, 1, reason="maintenance")

        report = reporting_service.shop_usage_report()

        assert report["summary"] == {"total_cost_cents": 1300, "total_quantity": 3, "record_count": 2}
        assert report["by_reason"]["cleaning"]["cost_cents"] == 1000
        assert report["by_reason"]["maintenance"]["items"] == [
            {"item": "Oil Filter", "quantity": 1, "cost_cents": 300},
        ]


# =============================================================================
# DASHBOARD
# =============================================================================


class TestDashboard:
    def test_snapshot(self, item, filter_item, invoiced_job, customer, vehicle):
        _, invoice = invoiced_job
        invoice_service.add_payment(invoice.id, 600, "cash")
        jobcard_service.create_job_card(customer_id=customer.id, vehicle_id=vehicle.id)
        _card_sale(item.id)
        shop_usage_service.record_usage(filter_item.id, 3)

        summary = reporting_service.dashboard_summary()

        assert summary["job_cards"]["pending"] == 1
        assert summary["job_cards"]["ready"] == 0
        assert summary["job_cards"]["today_new"] == 2
        assert summary["revenue"]["today_pos_cents"] == 800
        assert summary["revenue"]["today_invoices_cents"] == 600
        assert summary["revenue"]["month_cents"] == 1400
        assert summary["revenue"]["pending_amount_cents"] == 10500 - 600
        assert summary["revenue"]["pending_invoice_count"] == 1
        assert summary["inventory"]["low_stock_count"] == 1
        assert len(summary["recent_jobs"]) == 2
        assert len(summary["recent_sales"]) == 1
