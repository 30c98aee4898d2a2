"""
Sale transaction tests.

Verifies:
- Worked example: 3 x WidgetA at branch BR1 -> first invoice, stock and shift updated
- A payment shortfall writes nothing at all
- Negative stock policy
- Voids restore stock and shift totals and never create payment rows
"""

import pytest
from sqlalchemy.exc import OperationalError

from posledger.models import AuditLogEntry, Payment, Sale, SaleItem, Setting, Shift, StockMovement
from posledger.models.sales import SALE_STATUS_COMPLETED, SALE_STATUS_VOIDED
from posledger.services import sales_service
from posledger.services.return_service import return_sale
from posledger.services.sales_service import SaleStateError, SaleValidationError
from posledger.services.stock_ledger_service import (
    InsufficientStockError,
    get_cached_quantity,
    get_ledger_quantity,
)
from posledger.time_utils import utcnow


# =============================================================================
# CREATE SALE
# =============================================================================


class TestCreateSale:

    def test_worked_example(self, db_session, branch, widget, shift, stock, sale_payload):
        stock(widget, branch, 10)

        result = sales_service.create_sale(db_session, sale_payload(branch, [(widget, 3)], shift=shift))

        assert result["invoice_number"] == f"BR1-{utcnow().year}-000001"
        sale = db_session.get(Sale, result["sale_id"])
        assert sale.status == SALE_STATUS_COMPLETED
        assert sale.total_cents == 3000
        assert len(sale.items) == 1
        assert sale.items[0].quantity == 3
        assert sale.items[0].product_name == "WidgetA"
        assert [p.amount_cents for p in sale.payments] == [3000]

        movement = db_session.query(StockMovement).filter_by(reference_type="sale", reference_id=sale.id).one()
        assert movement.type == "SALE"
        assert movement.quantity == -3

        assert get_cached_quantity(db_session, widget.id, branch.id) == 7
        assert get_ledger_quantity(db_session, widget.id, branch.id) == 7

        db_session.refresh(shift)
        assert shift.total_sales_cents == 3000
        assert shift.total_transactions == 1

    def test_invoice_numbers_increase(self, db_session, branch, widget, stock, sale_payload):
        stock(widget, branch, 10)
        year = utcnow().year

        numbers = [
            sales_service.create_sale(db_session, sale_payload(branch, [(widget, 1)]))["invoice_number"]
            for _ in range(3)
        ]

        assert numbers == [f"BR1-{year}-000001", f"BR1-{year}-000002", f"BR1-{year}-000003"]
        assert len(set(numbers)) == 3

    def test_payment_shortfall_writes_nothing(self, db_session, branch, widget, shift, stock, sale_payload):
        stock(widget, branch, 10)
        movements_before = db_session.query(StockMovement).count()

        with pytest.raises(SaleValidationError) as exc:
            sales_service.create_sale(db_session, sale_payload(branch, [(widget, 3)], shift=shift, paid_cents=2000))

        assert exc.value.message == "Payment total does not match bill total"
        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleItem).count() == 0
        assert db_session.query(Payment).count() == 0
        assert db_session.query(StockMovement).count() == movements_before
        assert db_session.query(Setting).count() == 0
        assert get_cached_quantity(db_session, widget.id, branch.id) == 10
        db_session.refresh(shift)
        assert shift.total_sales_cents == 0

    def test_one_cent_short_is_tolerated(self, db_session, branch, widget, sale_payload):
        result = sales_service.create_sale(db_session, sale_payload(branch, [(widget, 1)], paid_cents=999))
        assert db_session.get(Sale, result["sale_id"]).total_cents == 1000

    def test_split_payment(self, db_session, branch, widget, sale_payload):
        payload = sale_payload(branch, [(widget, 2)])
        payload["payments"] = [
            {"method": "cash", "amount_cents": 500, "received_cents": 1000, "change_cents": 500},
            {"method": "card", "amount_cents": 1500, "reference": "AUTH-1"},
        ]

        result = sales_service.create_sale(db_session, payload)

        payments = db_session.get(Sale, result["sale_id"]).payments
        assert [(p.method, p.amount_cents) for p in payments] == [("cash", 500), ("card", 1500)]
        assert payments[0].change_cents == 500
        assert payments[1].received_cents == 1500

    def test_negative_stock_allowed_by_default(self, db_session, branch, widget, sale_payload):
        sales_service.create_sale(db_session, sale_payload(branch, [(widget, 2)]))

        assert get_cached_quantity(db_session, widget.id, branch.id) == -2
        assert get_ledger_quantity(db_session, widget.id, branch.id) == -2

    def test_negative_stock_refused_when_disabled(self, db_session, branch, widget, gadget, stock, sale_payload):
        stock(widget, branch, 5)
        stock(gadget, branch, 1)

        with pytest.raises(InsufficientStockError):
            sales_service.create_sale(
                db_session,
                sale_payload(branch, [(widget, 2), (gadget, 2)]),
                allow_negative_stock=False,
            )

        assert db_session.query(Sale).count() == 0
        assert get_cached_quantity(db_session, widget.id, branch.id) == 5
        assert get_cached_quantity(db_session, gadget.id, branch.id) == 1
        assert db_session.query(StockMovement).filter_by(type="SALE").count() == 0

    @pytest.mark.parametrize(
        "mutate,message",
        [
            (lambda p: p.update(items=[]), "Cannot create a sale with no items"),
            (lambda p: p["items"][0].update(quantity=0), "item quantity must be > 0"),
            (lambda p: p["payments"][0].update(method="barter"), "method must be one of"),
            (lambda p: p.pop("branch_id"), "branch_id required"),
        ],
    )
    def test_validation(self, db_session, branch, widget, sale_payload, mutate, message):
        payload = sale_payload(branch, [(widget, 1)])
        mutate(payload)

        with pytest.raises(SaleValidationError) as exc:
            sales_service.create_sale(db_session, payload)

        assert message in exc.value.message
        assert db_session.query(Sale).count() == 0

    def test_unknown_shift_rolls_back(self, db_session, branch, widget, sale_payload):
        payload = sale_payload(branch, [(widget, 1)])
        payload["shift_id"] = 999

        with pytest.raises(Exception):
            sales_service.create_sale(db_session, payload)

        assert db_session.query(Sale).count() == 0
        assert db_session.query(StockMovement).count() == 0

    def test_lock_contention_is_not_retried(self, db_session, branch, widget, sale_payload, monkeypatch):
        calls = []

        def locked(session, branch_id):
            calls.append(branch_id)
            raise OperationalError("UPDATE settings", {}, Exception("database is locked"))

        monkeypatch.setattr(sales_service, "next_invoice_number", locked)

        with pytest.raises(OperationalError):
            sales_service.create_sale(db_session, sale_payload(branch, [(widget, 1)]))

        assert calls == [branch.id]
        assert db_session.query(Sale).count() == 0


# =============================================================================
# VOID SALE
# =============================================================================


class TestVoidSale:

    def test_void_restores_stock_and_shift(self, db_session, branch, widget, shift, stock, sale_payload):
        stock(widget, branch, 10)
        result = sales_service.create_sale(db_session, sale_payload(branch, [(widget, 3)], shift=shift))
        payments_before = db_session.query(Payment).count()

        sales_service.void_sale(db_session, result["sale_id"], user_id=1, reason="Customer changed mind")

        sale = db_session.get(Sale, result["sale_id"])
        assert sale.status == SALE_STATUS_VOIDED
        assert "Customer changed mind" in sale.notes
        assert get_cached_quantity(db_session, widget.id, branch.id) == 10
        assert get_ledger_quantity(db_session, widget.id, branch.id) == 10
        assert db_session.query(Payment).count() == payments_before

        reversal = db_session.query(StockMovement).filter_by(reference_type="void", reference_id=sale.id).one()
        assert reversal.type == "RETURN"
        assert reversal.quantity == 3

        db_session.refresh(shift)
        assert shift.total_sales_cents == 0
        assert shift.total_transactions == 0

        audit = db_session.query(AuditLogEntry).filter_by(action="void_sale").one()
        assert audit.entity_id == sale.id
        assert audit.details["reason"] == "Customer changed mind"

    def test_void_twice(self, db_session, branch, widget, sale_payload):
        result = sales_service.create_sale(db_session, sale_payload(branch, [(widget, 1)]))
        sales_service.void_sale(db_session, result["sale_id"], user_id=1, reason="mistake")

        with pytest.raises(SaleStateError) as exc:
            sales_service.void_sale(db_session, result["sale_id"], user_id=1, reason="again")

        assert exc.value.message == "Sale not found or already voided/returned"
        assert db_session.query(StockMovement).filter_by(reference_type="void").count() == 1

    def test_void_missing_sale(self, db_session):
        with pytest.raises(SaleStateError):
            sales_service.void_sale(db_session, 4242, user_id=1, reason="nope")

    def test_void_requires_reason(self, db_session, branch, widget, sale_payload):
        result = sales_service.create_sale(db_session, sale_payload(branch, [(widget, 1)]))

        with pytest.raises(SaleValidationError):
            sales_service.void_sale(db_session, result["sale_id"], user_id=1, reason="   ")

        assert db_session.get(Sale, result["sale_id"]).status == SALE_STATUS_COMPLETED

    def test_cannot_void_partially_returned_sale(self, db_session, branch, widget, sale_payload):
        result = sales_service.create_sale(db_session, sale_payload(branch, [(widget, 2)]))
        return_sale(db_session, {
            "original_sale_id": result["sale_id"],
            "user_id": 1,
            "items": [{"product_id": widget.id, "quantity": 1}],
            "reason": "damaged",
            "refund_method": "cash",
        })

        with pytest.raises(SaleStateError):
            sales_service.void_sale(db_session, result["sale_id"], user_id=1, reason="late void")

    def test_void_after_shift_closed_still_reverses_totals(self, db_session, branch, widget, shift, sale_payload):
        from posledger.services.shift_service import close_shift

        result = sales_service.create_sale(db_session, sale_payload(branch, [(widget, 2)], shift=shift))
        close_shift(db_session, shift.id)

        sales_service.void_sale(db_session, result["sale_id"], user_id=1, reason="after close")

        closed = db_session.get(Shift, shift.id)
        assert closed.status == "closed"
        assert closed.total_sales_cents == 0
        assert closed.total_transactions == 0


# =============================================================================
# LOOKUPS
# =============================================================================


class TestSaleLookups:

    def test_get_by_invoice_and_last(self, db_session, branch, widget, sale_payload):
        first = sales_service.create_sale(db_session, sale_payload(branch, [(widget, 1)]))
        second = sales_service.create_sale(db_session, sale_payload(branch, [(widget, 2)]))

        assert sales_service.get_sale_by_invoice(db_session, first["invoice_number"]).id == first["sale_id"]
        assert sales_service.get_last_sale(db_session, branch.id).id == second["sale_id"]

        sales_service.void_sale(db_session, second["sale_id"], user_id=1, reason="x")
        assert sales_service.get_last_sale(db_session, branch.id).id == first["sale_id"]

    def test_list_filters(self, db_session, branch, branch2, widget, sale_payload):
        sales_service.create_sale(db_session, sale_payload(branch, [(widget, 1)]))
        voided = sales_service.create_sale(db_session, sale_payload(branch, [(widget, 1)]))
        sales_service.create_sale(db_session, sale_payload(branch2, [(widget, 1)]))
        sales_service.void_sale(db_session, voided["sale_id"], user_id=1, reason="x")

        rows, total = sales_service.list_sales(db_session, branch_id=branch.id)
        assert total == 2
        assert rows[0].id == voided["sale_id"]

        rows, total = sales_service.list_sales(db_session, branch_id=branch.id, status=SALE_STATUS_VOIDED)
        assert [r.id for r in rows] == [voided["sale_id"]]

        today = utcnow().date().isoformat()
        _, total = sales_service.list_sales(db_session, date_from=today, date_to=today)
        assert total == 3
        _, total = sales_service.list_sales(db_session, date_to="2000-01-01")
        assert total == 0
