"""
HTTP API tests.

Verifies:
- Success and error envelopes ({"success": ..., "data"/"error": ...})
- Business errors map to 400, missing records to 404
- Permission checks return 403 before the handler runs
"""

import pytest

from posledger.models import Sale
from posledger.services.stock_ledger_service import get_cached_quantity
from posledger.time_utils import utcnow

from conftest import CASHIER_ID


HEADERS = {"X-User-Id": str(CASHIER_ID)}


@pytest.fixture
def deny_all(app):
    """Permission checker that only allows VIEW_SALES."""
    previous = app.config.get("PERMISSION_CHECKER")
    app.config["PERMISSION_CHECKER"] = lambda user_id, code: code == "VIEW_SALES"
    yield
    app.config["PERMISSION_CHECKER"] = previous


# =============================================================================
# SYSTEM
# =============================================================================


class TestHealth:

    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["success"] is True
        assert body["data"]["status"] == "healthy"
        assert body["data"]["database"]["details"]["branches"] == 0


# =============================================================================
# SALES
# =============================================================================


class TestSalesApi:

    def test_create_and_fetch(self, client, db_session, branch, widget, stock, sale_payload):
        stock(widget, branch, 10)

        resp = client.post("/api/sales/", json=sale_payload(branch, [(widget, 3)]), headers=HEADERS)

        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["invoice_number"] == f"BR1-{utcnow().year}-000001"

        resp = client.get(f"/api/sales/{data['sale_id']}", headers=HEADERS)
        sale = resp.get_json()["data"]
        assert sale["total_cents"] == 3000
        assert sale["returns"] == []

        resp = client.get(f"/api/sales/invoice/{data['invoice_number']}", headers=HEADERS)
        assert resp.get_json()["data"]["id"] == data["sale_id"]

        db_session.expire_all()
        assert get_cached_quantity(db_session, widget.id, branch.id) == 7

    def test_payment_shortfall_is_400(self, client, db_session, branch, widget, sale_payload):
        resp = client.post(
            "/api/sales/", json=sale_payload(branch, [(widget, 3)], paid_cents=100), headers=HEADERS,
        )

        assert resp.status_code == 400
        body = resp.get_json()
        assert body == {
            "success": False,
            "error": "Payment total does not match bill total",
            "details": {"total_cents": 3000, "paid_cents": 100},
        }
        assert db_session.query(Sale).count() == 0

    def test_user_id_from_header(self, client, db_session, branch, widget, sale_payload):
        payload = sale_payload(branch, [(widget, 1)])
        payload.pop("user_id")

        resp = client.post("/api/sales/", json=payload, headers={"X-User-Id": "42"})

        assert resp.status_code == 201
        assert db_session.get(Sale, resp.get_json()["data"]["sale_id"]).user_id == 42

    def test_void_and_return(self, client, db_session, branch, widget, sale_payload):
        first = client.post("/api/sales/", json=sale_payload(branch, [(widget, 2)]), headers=HEADERS)
        second = client.post("/api/sales/", json=sale_payload(branch, [(widget, 2)]), headers=HEADERS)
        first_id = first.get_json()["data"]["sale_id"]
        second_id = second.get_json()["data"]["sale_id"]

        resp = client.post(f"/api/sales/{first_id}/void", json={"reason": "wrong item"}, headers=HEADERS)
        assert resp.status_code == 200

        resp = client.post(f"/api/sales/{first_id}/void", json={"reason": "again"}, headers=HEADERS)
        assert resp.status_code == 400

        resp = client.post("/api/sales/returns", json={
            "original_sale_id": second_id,
            "items": [{"product_id": widget.id, "quantity": 1}],
            "reason": "damaged",
            "refund_method": "cash",
        }, headers=HEADERS)
        assert resp.status_code == 201

        resp = client.get(f"/api/sales/{second_id}", headers=HEADERS)
        data = resp.get_json()["data"]
        assert data["status"] == "partial_return"
        assert [r["total_cents"] for r in data["returns"]] == [-1000]

    def test_return_of_missing_sale_is_404(self, client, db_session, widget):
        resp = client.post("/api/sales/returns", json={
            "original_sale_id": 5150,
            "items": [{"product_id": widget.id, "quantity": 1}],
            "reason": "damaged",
            "refund_method": "cash",
        }, headers=HEADERS)
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "Original sale not found"

    def test_missing_sale_is_404(self, client, db_session):
        assert client.get("/api/sales/999", headers=HEADERS).status_code == 404

    def test_list(self, client, db_session, branch, widget, sale_payload):
        client.post("/api/sales/", json=sale_payload(branch, [(widget, 1)]), headers=HEADERS)
        client.post("/api/sales/", json=sale_payload(branch, [(widget, 1)]), headers=HEADERS)

        resp = client.get(f"/api/sales/?branch_id={branch.id}&limit=1", headers=HEADERS)

        data = resp.get_json()["data"]
        assert data["total"] == 2
        assert len(data["sales"]) == 1

    def test_held_sale_round_trip(self, client, db_session, branch, widget):
        cart = {"lines": [{"product_id": widget.id, "product_name": "WidgetA", "quantity": 2, "unit_price_cents": 1000}]}

        resp = client.post("/api/sales/held", json={"branch_id": branch.id, "cart": cart}, headers=HEADERS)
        assert resp.status_code == 201
        held_id = resp.get_json()["data"]["id"]

        resp = client.get(f"/api/sales/held?branch_id={branch.id}", headers=HEADERS)
        assert [h["id"] for h in resp.get_json()["data"]] == [held_id]

        assert client.delete(f"/api/sales/held/{held_id}", headers=HEADERS).status_code == 200
        assert client.delete(f"/api/sales/held/{held_id}", headers=HEADERS).status_code == 404


# =============================================================================
# CATALOG / AUDIT / INVENTORY / PURCHASES / SHIFTS / SETTINGS / REPORTS
# =============================================================================


class TestCatalogApi:

    def test_product_lifecycle(self, client, db_session):
        resp = client.post("/api/products/", json={
            "name": "Soap", "barcode": "5000000000001", "selling_price_cents": 350, "tax_rate_bps": 1500,
        }, headers=HEADERS)
        assert resp.status_code == 201
        product_id = resp.get_json()["data"]["id"]

        resp = client.get("/api/products/barcode/5000000000001", headers=HEADERS)
        assert resp.get_json()["data"]["id"] == product_id

        resp = client.get("/api/products/?search=SOA", headers=HEADERS)
        assert [p["name"] for p in resp.get_json()["data"]] == ["Soap"]

        resp = client.put(f"/api/products/{product_id}", json={"selling_price_cents": 400}, headers=HEADERS)
        assert resp.status_code == 200
        assert resp.get_json()["data"]["selling_price_cents"] == 400

        resp = client.put(f"/api/products/{product_id}", json={"is_active": False}, headers=HEADERS)
        assert resp.get_json()["data"]["is_active"] is False
        assert client.get("/api/products/barcode/5000000000001", headers=HEADERS).status_code == 404
        assert client.get("/api/products/", headers=HEADERS).get_json()["data"] == []
        resp = client.get("/api/products/?include_inactive=1", headers=HEADERS)
        assert [p["id"] for p in resp.get_json()["data"]] == [product_id]

    def test_duplicate_barcode(self, client, db_session, widget, gadget):
        resp = client.post("/api/products/", json={
            "name": "Copy", "barcode": widget.barcode, "selling_price_cents": 100,
        }, headers=HEADERS)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == f"Barcode '{widget.barcode}' already exists"

        resp = client.put(f"/api/products/{gadget.id}", json={"barcode": widget.barcode}, headers=HEADERS)
        assert resp.status_code == 400

    @pytest.mark.parametrize(
        "payload,message",
        [
            ({"name": "Soap"}, "Missing required fields: selling_price_cents"),
            ({"name": "Soap", "selling_price_cents": -1}, "selling_price_cents must be >= 0"),
            ({"name": "Soap", "selling_price_cents": 1, "price": 3}, "Field not allowed: price"),
        ],
    )
    def test_product_validation(self, client, db_session, payload, message):
        resp = client.post("/api/products/", json=payload, headers=HEADERS)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == message

    def test_missing_product(self, client, db_session):
        assert client.get("/api/products/404", headers=HEADERS).status_code == 404
        resp = client.put("/api/products/404", json={"name": "Ghost"}, headers=HEADERS)
        assert resp.status_code == 404

    def test_suppliers(self, client, db_session):
        resp = client.post("/api/suppliers/", json={"name": "Acme", "phone": "555-0100"}, headers=HEADERS)
        assert resp.status_code == 201

        resp = client.get("/api/suppliers/", headers=HEADERS)
        assert [s["name"] for s in resp.get_json()["data"]] == ["Acme"]

        resp = client.post("/api/suppliers/", json={"phone": "555"}, headers=HEADERS)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "name required"

    def test_branches(self, client, db_session):
        resp = client.post("/api/branches/", json={
            "name": "North", "code": "NTH", "invoice_prefix": "NTH",
        }, headers=HEADERS)
        assert resp.status_code == 201

        resp = client.get("/api/branches/", headers=HEADERS)
        assert [b["invoice_prefix"] for b in resp.get_json()["data"]] == ["NTH"]

        resp = client.post("/api/branches/", json={"name": "South", "invoice_prefix": "S-1"}, headers=HEADERS)
        assert resp.status_code == 400

    def test_setup_through_api_then_sell(self, client, db_session):
        branch_id = client.post("/api/branches/", json={
            "name": "North", "invoice_prefix": "NTH",
        }, headers=HEADERS).get_json()["data"]["id"]
        supplier_id = client.post("/api/suppliers/", json={"name": "Acme"}, headers=HEADERS).get_json()["data"]["id"]
        product = client.post("/api/products/", json={
            "name": "Soap", "barcode": "5000000000001", "selling_price_cents": 350, "cost_price_cents": 200,
        }, headers=HEADERS).get_json()["data"]

        purchase = client.post("/api/purchases/", json={
            "supplier_id": supplier_id,
            "branch_id": branch_id,
            "items": [{"product_id": product["id"], "quantity": 6, "unit_cost_cents": 200}],
        }, headers=HEADERS).get_json()["data"]
        client.post(f"/api/purchases/{purchase['id']}/receive", headers=HEADERS)

        resp = client.post("/api/sales/", json={
            "branch_id": branch_id,
            "items": [{
                "product_id": product["id"], "product_name": product["name"], "quantity": 2,
                "unit_price_cents": 350, "cost_price_cents": 200, "total_cents": 700,
            }],
            "payments": [{"method": "cash", "amount_cents": 700}],
            "subtotal_cents": 700,
            "total_cents": 700,
        }, headers=HEADERS)

        assert resp.status_code == 201
        assert resp.get_json()["data"]["invoice_number"] == f"NTH-{utcnow().year}-000001"
        db_session.expire_all()
        assert get_cached_quantity(db_session, product["id"], branch_id) == 4


class TestAuditApi:

    def test_filtered_by_entity(self, client, db_session, branch, widget, gadget):
        for product in (widget, gadget):
            client.post("/api/inventory/adjust", json={
                "product_id": product.id, "branch_id": branch.id, "quantity": 3, "notes": "count",
            }, headers=HEADERS)

        resp = client.get(f"/api/audit?entity_type=product&entity_id={widget.id}", headers=HEADERS)

        entries = resp.get_json()["data"]
        assert [(e["action"], e["entity_id"]) for e in entries] == [("adjust_stock", widget.id)]
        assert entries[0]["details"]["quantity"] == 3
        assert entries[0]["user_id"] == CASHIER_ID


class TestInventoryApi:

    def test_adjust_and_reconcile(self, client, db_session, branch, widget):
        resp = client.post("/api/inventory/adjust", json={
            "product_id": widget.id, "branch_id": branch.id, "quantity": 8, "notes": "count",
        }, headers=HEADERS)
        assert resp.status_code == 200
        assert resp.get_json()["data"]["quantity"] == 8

        resp = client.get(f"/api/inventory/reconcile?branch_id={branch.id}", headers=HEADERS)
        assert resp.get_json()["data"] == []

        resp = client.post("/api/inventory/fix-cache", json={"branch_id": branch.id}, headers=HEADERS)
        assert resp.get_json()["data"] == {"fixed": 0}

    def test_adjust_without_notes(self, client, db_session, branch, widget):
        resp = client.post("/api/inventory/adjust", json={
            "product_id": widget.id, "branch_id": branch.id, "quantity": 8, "notes": "",
        }, headers=HEADERS)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "notes required for stock adjustment"

    def test_transfer_overdraw(self, client, db_session, branch, branch2, widget):
        resp = client.post("/api/inventory/transfer", json={
            "product_id": widget.id, "from_branch_id": branch.id, "to_branch_id": branch2.id, "quantity": 1,
        }, headers=HEADERS)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Insufficient stock for transfer"

    def test_stock_requires_branch(self, client, db_session):
        assert client.get("/api/inventory/stock", headers=HEADERS).status_code == 400


class TestPurchasesApi:

    def test_create_and_receive(self, client, db_session, branch, supplier, widget):
        resp = client.post("/api/purchases/", json={
            "supplier_id": supplier.id,
            "branch_id": branch.id,
            "items": [{"product_id": widget.id, "quantity": 12, "unit_cost_cents": 500}],
        }, headers=HEADERS)
        assert resp.status_code == 201
        purchase_id = resp.get_json()["data"]["id"]

        assert client.post(f"/api/purchases/{purchase_id}/receive", headers=HEADERS).status_code == 200
        assert client.post(f"/api/purchases/{purchase_id}/receive", headers=HEADERS).status_code == 400

        db_session.expire_all()
        assert get_cached_quantity(db_session, widget.id, branch.id) == 12


class TestShiftsApi:

    def test_open_close(self, client, db_session, branch):
        resp = client.post("/api/shifts/open", json={"branch_id": branch.id, "opening_cash_cents": 5000}, headers=HEADERS)
        assert resp.status_code == 201
        shift_id = resp.get_json()["data"]["id"]

        resp = client.post("/api/shifts/open", json={"branch_id": branch.id}, headers=HEADERS)
        assert resp.status_code == 400

        resp = client.get(f"/api/shifts/current?branch_id={branch.id}", headers=HEADERS)
        assert resp.get_json()["data"]["id"] == shift_id

        resp = client.post(f"/api/shifts/{shift_id}/close", json={"closing_cash_cents": 5000}, headers=HEADERS)
        assert resp.get_json()["data"]["difference_cents"] == 0

        resp = client.get(f"/api/shifts/{shift_id}/report", headers=HEADERS)
        assert resp.get_json()["data"]["reconciliation"]["ok"] is True


class TestSettingsApi:

    def test_put_and_get(self, client, db_session):
        resp = client.put("/api/settings/store_name", json={"value": "Corner Shop"}, headers=HEADERS)
        assert resp.status_code == 200

        resp = client.get("/api/settings/store_name", headers=HEADERS)
        assert resp.get_json()["data"] == {"key": "store_name", "value": "Corner Shop"}

        assert client.get("/api/settings/nope", headers=HEADERS).status_code == 404

    def test_counter_keys_rejected(self, client, db_session):
        resp = client.put("/api/settings/", json={"last_invoice_seq_1_2026": "5"}, headers=HEADERS)
        assert resp.status_code == 400


class TestReportsApi:

    def test_dashboard(self, client, db_session, branch, widget, sale_payload):
        client.post("/api/sales/", json=sale_payload(branch, [(widget, 2)]), headers=HEADERS)

        resp = client.get(f"/api/reports/dashboard?branch_id={branch.id}", headers=HEADERS)

        assert resp.status_code == 200
        assert resp.get_json()["data"]["sales_cents"] == 2000

    def test_unknown_branch(self, client, db_session):
        resp = client.get("/api/reports/daily-sales?branch_id=999", headers=HEADERS)
        assert resp.status_code == 404


# =============================================================================
# PERMISSIONS
# =============================================================================


class TestPermissions:

    def test_denied(self, client, db_session, branch, widget, sale_payload, deny_all):
        resp = client.post("/api/sales/", json=sale_payload(branch, [(widget, 1)]), headers=HEADERS)

        assert resp.status_code == 403
        assert resp.get_json() == {
            "success": False,
            "error": "Permission denied",
            "required_permission": "CREATE_SALE",
        }
        assert db_session.query(Sale).count() == 0

    def test_allowed(self, client, db_session, deny_all):
        resp = client.get("/api/sales/", headers=HEADERS)
        assert resp.status_code == 200
