"""
Pytest fixtures for posledger backend tests.

Provides the in-memory app, a per-test wiped database, catalog/shift fixtures
and a sale payload builder.
"""

import pytest

from posledger import create_app
from posledger.config import TestingConfig
from posledger.extensions import db
from posledger.services import catalog_service, inventory_service, shift_service


CASHIER_ID = 7


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestingConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh data for each test; schema is kept."""
    with app.app_context():
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def branch(db_session):
    """Branch with invoice prefix BR1."""
    return catalog_service.create_branch(db_session, name="Main Branch", code="BR1", invoice_prefix="BR1")


@pytest.fixture(scope='function')
def branch2(db_session):
    return catalog_service.create_branch(db_session, name="Second Branch", code="BR2", invoice_prefix="BR2")


@pytest.fixture(scope='function')
def widget(db_session):
    """WidgetA: 10.00, cost 6.00, no tax."""
    return catalog_service.create_product(
        db_session,
        name="WidgetA",
        barcode="2000000000011",
        selling_price_cents=1000,
        cost_price_cents=600,
    )


@pytest.fixture(scope='function')
def gadget(db_session):
    """Gadget: 25.00, cost 15.00, 10% tax."""
    return catalog_service.create_product(
        db_session,
        name="Gadget",
        barcode="2000000000028",
        selling_price_cents=2500,
        cost_price_cents=1500,
        tax_rate_bps=1000,
    )


@pytest.fixture(scope='function')
def supplier(db_session):
    return catalog_service.create_supplier(db_session, name="Acme Wholesale", phone="555-0100")


@pytest.fixture(scope='function')
def shift(db_session, branch):
    """Open shift for CASHIER_ID at branch, 100.00 float."""
    return shift_service.open_shift(db_session, branch_id=branch.id, user_id=CASHIER_ID, opening_cash_cents=10000)


@pytest.fixture(scope='function')
def stock(db_session):
    """Put stock on hand through a ledger adjustment."""
    def _stock(product, branch, quantity):
        inventory_service.adjust_stock(db_session, {
            "product_id": product.id,
            "branch_id": branch.id,
            "quantity": quantity,
            "notes": "Opening stock",
        })
    return _stock


@pytest.fixture(scope='function')
def sale_payload():
    """
    Build a create_sale payload.

    lines: [(product, quantity)] priced at the product's selling price, with
    tax added on top at the product's rate. Paid in full in cash unless
    paid_cents is given.
    """
    def _payload(branch, lines, *, shift=None, paid_cents=None, method="cash", user_id=CASHIER_ID):
        items = []
        subtotal = 0
        tax_total = 0
        for product, quantity in lines:
            line_subtotal = product.selling_price_cents * quantity
            line_tax = line_subtotal * product.tax_rate_bps // 10000
            subtotal += line_subtotal
            tax_total += line_tax
            items.append({
                "product_id": product.id,
                "product_name": product.name,
                "barcode": product.barcode,
                "quantity": quantity,
                "unit_price_cents": product.selling_price_cents,
                "cost_price_cents": product.cost_price_cents,
                "tax_rate_bps": product.tax_rate_bps,
                "tax_cents": line_tax,
                "total_cents": line_subtotal + line_tax,
            })
        total = subtotal + tax_total
        paid = total if paid_cents is None else paid_cents
        return {
            "branch_id": branch.id,
            "user_id": user_id,
            "shift_id": shift.id if shift is not None else None,
            "items": items,
            "payments": [{"method": method, "amount_cents": paid}],
            "subtotal_cents": subtotal,
            "tax_cents": tax_total,
            "total_cents": total,
        }
    return _payload
