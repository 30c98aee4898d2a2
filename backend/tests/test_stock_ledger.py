"""
Stock ledger tests.

Verifies:
- Movements are appended with their signed quantity
- The cache row is created on first touch and tracks the ledger sum
- Guarded decrements refuse to cross the floor
- Ledger rows cannot be updated or deleted through the ORM
"""

import pytest

from posledger.models import BranchStock, StockMovement
from posledger.models.inventory import MOVEMENT_ADJUSTMENT, MOVEMENT_PURCHASE, MOVEMENT_SALE
from posledger.services.concurrency import atomic
from posledger.services.stock_ledger_service import (
    InsufficientStockError,
    apply_stock_delta,
    get_cached_quantity,
    get_ledger_quantity,
    list_movements,
    post_movement,
    record_stock_change,
)


class TestPostMovement:

    def test_returns_new_id_and_keeps_sign(self, db_session, branch, widget):
        with atomic(db_session):
            movement_id = post_movement(
                db_session,
                product_id=widget.id,
                branch_id=branch.id,
                type=MOVEMENT_SALE,
                quantity=-4,
                reference_type="sale",
                reference_id=99,
            )

        movement = db_session.get(StockMovement, movement_id)
        assert movement.quantity == -4
        assert movement.type == MOVEMENT_SALE
        assert movement.reference_type == "sale"
        assert movement.reference_id == 99

    def test_does_not_touch_cache(self, db_session, branch, widget):
        with atomic(db_session):
            post_movement(db_session, product_id=widget.id, branch_id=branch.id, type=MOVEMENT_PURCHASE, quantity=5)

        assert get_ledger_quantity(db_session, widget.id, branch.id) == 5
        assert db_session.query(BranchStock).count() == 0

    def test_rejects_unknown_type(self, db_session, branch, widget):
        with pytest.raises(ValueError):
            post_movement(db_session, product_id=widget.id, branch_id=branch.id, type="GIFT", quantity=1)


class TestStockCache:

    def test_row_created_lazily(self, db_session, branch, widget):
        assert get_cached_quantity(db_session, widget.id, branch.id) == 0

        with atomic(db_session):
            apply_stock_delta(db_session, product_id=widget.id, branch_id=branch.id, delta=7)

        assert get_cached_quantity(db_session, widget.id, branch.id) == 7
        assert db_session.query(BranchStock).count() == 1

    def test_increments_existing_row(self, db_session, branch, widget):
        with atomic(db_session):
            apply_stock_delta(db_session, product_id=widget.id, branch_id=branch.id, delta=7)
        with atomic(db_session):
            apply_stock_delta(db_session, product_id=widget.id, branch_id=branch.id, delta=-10)

        assert get_cached_quantity(db_session, widget.id, branch.id) == -3
        assert db_session.query(BranchStock).count() == 1

    def test_floor_blocks_overdraw(self, db_session, branch, widget):
        with atomic(db_session):
            apply_stock_delta(db_session, product_id=widget.id, branch_id=branch.id, delta=2)

        with pytest.raises(InsufficientStockError):
            with atomic(db_session):
                apply_stock_delta(db_session, product_id=widget.id, branch_id=branch.id, delta=-3, floor=0)

        assert get_cached_quantity(db_session, widget.id, branch.id) == 2

    def test_floor_on_missing_row(self, db_session, branch, widget):
        with pytest.raises(InsufficientStockError) as exc:
            with atomic(db_session):
                apply_stock_delta(
                    db_session,
                    product_id=widget.id,
                    branch_id=branch.id,
                    delta=-1,
                    floor=0,
                    error_message="Insufficient stock for transfer",
                )

        assert exc.value.message == "Insufficient stock for transfer"
        assert db_session.query(BranchStock).count() == 0

    def test_floor_allows_exact_drain(self, db_session, branch, widget):
        with atomic(db_session):
            apply_stock_delta(db_session, product_id=widget.id, branch_id=branch.id, delta=3)
        with atomic(db_session):
            apply_stock_delta(db_session, product_id=widget.id, branch_id=branch.id, delta=-3, floor=0)

        assert get_cached_quantity(db_session, widget.id, branch.id) == 0


class TestRecordStockChange:

    def test_cache_matches_ledger(self, db_session, branch, branch2, widget):
        deltas = [(branch, 10), (branch, -3), (branch2, 4), (branch, -9), (branch2, -1)]
        for target, delta in deltas:
            with atomic(db_session):
                record_stock_change(
                    db_session,
                    product_id=widget.id,
                    branch_id=target.id,
                    type=MOVEMENT_ADJUSTMENT,
                    quantity=delta,
                    notes="count",
                )

        for target in (branch, branch2):
            assert get_cached_quantity(db_session, widget.id, target.id) == \
                get_ledger_quantity(db_session, widget.id, target.id)
        assert get_cached_quantity(db_session, widget.id, branch.id) == -2
        assert get_cached_quantity(db_session, widget.id, branch2.id) == 3

    def test_rollback_leaves_nothing(self, db_session, branch, widget):
        with pytest.raises(RuntimeError):
            with atomic(db_session):
                record_stock_change(
                    db_session,
                    product_id=widget.id,
                    branch_id=branch.id,
                    type=MOVEMENT_PURCHASE,
                    quantity=5,
                )
                raise RuntimeError("boom")

        assert db_session.query(StockMovement).count() == 0
        assert get_cached_quantity(db_session, widget.id, branch.id) == 0

    def test_history_newest_first(self, db_session, branch, widget):
        for delta in (5, -1, -2):
            with atomic(db_session):
                record_stock_change(
                    db_session,
                    product_id=widget.id,
                    branch_id=branch.id,
                    type=MOVEMENT_ADJUSTMENT,
                    quantity=delta,
                )

        history = list_movements(db_session, widget.id, branch.id, limit=2)
        assert [m.quantity for m in history] == [-2, -1]


class TestLedgerImmutability:

    def _movement(self, db_session, branch, widget):
        with atomic(db_session):
            movement_id = post_movement(
                db_session, product_id=widget.id, branch_id=branch.id, type=MOVEMENT_PURCHASE, quantity=3
            )
        return db_session.get(StockMovement, movement_id)

    def test_update_refused(self, db_session, branch, widget):
        movement = self._movement(db_session, branch, widget)
        movement.quantity = 300
        with pytest.raises(ValueError):
            db_session.flush()
        db_session.rollback()

        assert get_ledger_quantity(db_session, widget.id, branch.id) == 3

    def test_delete_refused(self, db_session, branch, widget):
        movement = self._movement(db_session, branch, widget)
        db_session.delete(movement)
        with pytest.raises(ValueError):
            db_session.flush()
        db_session.rollback()

        assert db_session.query(StockMovement).count() == 1
