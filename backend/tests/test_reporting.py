"""
Reporting tests.

One day of trading at BR1: a cash sale, a card sale with tax, a voided sale
and a partial cash return. Voided documents never count; returns net out.
"""

import pytest

from posledger.services import reporting_service, sales_service
from posledger.services.reporting_service import ReportError
from posledger.services.return_service import return_sale
from posledger.time_utils import utcnow
from posledger.validation import NotFoundError


@pytest.fixture
def trading_day(db_session, branch, widget, gadget, stock, sale_payload):
    stock(widget, branch, 10)
    stock(gadget, branch, 10)
    cash = sales_service.create_sale(db_session, sale_payload(branch, [(widget, 3)]))
    sales_service.create_sale(db_session, sale_payload(branch, [(gadget, 2)], method="card"))
    voided = sales_service.create_sale(db_session, sale_payload(branch, [(widget, 1)]))
    sales_service.void_sale(db_session, voided["sale_id"], user_id=1, reason="test")
    return_sale(db_session, {
        "original_sale_id": cash["sale_id"],
        "user_id": 1,
        "items": [{"product_id": widget.id, "quantity": 1}],
        "reason": "faulty",
        "refund_method": "cash",
    })
    return utcnow().date()


class TestReports:

    def test_daily_sales(self, db_session, branch, trading_day):
        report = reporting_service.daily_sales(db_session, branch_id=branch.id)

        assert report["rows"] == [{
            "day": trading_day.isoformat(),
            "sales_count": 2,
            "gross_cents": 8500,
            "refunds_cents": 1000,
            "tax_cents": 500,
            "net_cents": 7500,
        }]

    def test_daily_sales_outside_range(self, db_session, branch, trading_day):
        report = reporting_service.daily_sales(
            db_session, branch_id=branch.id, date_from="2001-01-01", date_to="2001-01-31",
        )
        assert report["rows"] == []
        assert report["date_from"] == "2001-01-01T00:00:00Z"

    def test_sales_by_product(self, db_session, branch, widget, gadget, trading_day):
        report = reporting_service.sales_by_product(db_session, branch_id=branch.id)

        rows = {row["product_id"]: row for row in report["rows"]}
        assert rows[widget.id]["quantity"] == 2
        assert rows[widget.id]["revenue_cents"] == 2000
        assert rows[gadget.id]["quantity"] == 2
        assert rows[gadget.id]["revenue_cents"] == 5500

    def test_payment_breakdown(self, db_session, branch, trading_day):
        report = reporting_service.payment_breakdown(db_session, branch_id=branch.id)

        assert report["rows"] == [
            {"method": "card", "count": 1, "total_cents": 5500},
            {"method": "cash", "count": 2, "total_cents": 2000},
        ]
        assert report["total_cents"] == 7500

    def test_profit(self, db_session, branch, trading_day):
        report = reporting_service.profit_report(db_session, branch_id=branch.id)

        assert report["revenue_cents"] == 7000
        assert report["cost_cents"] == 4200
        assert report["profit_cents"] == 2800
        assert report["margin_bps"] == 4000

    def test_dashboard(self, db_session, branch, shift, trading_day):
        summary = reporting_service.dashboard_summary(db_session, branch_id=branch.id)

        assert summary["sales_count"] == 2
        assert summary["sales_cents"] == 8500
        assert summary["refunds_cents"] == 1000
        assert summary["net_cents"] == 7500
        assert summary["average_sale_cents"] == 4250
        assert summary["low_stock_count"] == 0
        assert summary["open_shifts"] == 1

    def test_empty_branch(self, db_session, branch):
        summary = reporting_service.dashboard_summary(db_session, branch_id=branch.id)
        assert summary["sales_count"] == 0
        assert summary["average_sale_cents"] == 0
        assert reporting_service.profit_report(db_session, branch_id=branch.id)["margin_bps"] is None


class TestReportErrors:

    def test_bad_date(self, db_session, branch):
        with pytest.raises(ReportError):
            reporting_service.daily_sales(db_session, branch_id=branch.id, date_from="2026-13-45")

    def test_inverted_range(self, db_session, branch):
        with pytest.raises(ReportError) as exc:
            reporting_service.payment_breakdown(
                db_session, branch_id=branch.id, date_from="2026-02-01", date_to="2026-01-01",
            )
        assert exc.value.message == "date_from must be on or before date_to"

    def test_unknown_branch(self, db_session):
        with pytest.raises(NotFoundError):
            reporting_service.sales_by_product(db_session, branch_id=8080)
