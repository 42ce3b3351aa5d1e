# Overview: Pytest coverage for the append-only stock ledger.

from datetime import timedelta

import pytest
from sqlalchemy.orm.exc import StaleDataError

from pharmapos.errors import ConcurrentStockConflict, InsufficientStockError, ValidationError
from pharmapos.extensions import db
from pharmapos.models import StockMovement
from pharmapos.services import stock_ledger_service
from pharmapos.time_utils import utcnow


def _movements(product_id):
    return (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.id.asc())
        .all()
    )


class TestApplyMovement:

    def test_history_sum_matches_cached_stock(self, paracetamol):
        """Stock always equals the sum of its movement deltas."""
        stock_ledger_service.apply_movement(paracetamol.id, 50, "RESTOCK", "Supplier delivery", actor_id="c-001")
        stock_ledger_service.apply_movement(paracetamol.id, -30, "SALE", reference_id="S-000001")
        stock_ledger_service.apply_movement(paracetamol.id, -5, "LOSS", "Expired", actor_id="c-001")
        new_stock = stock_ledger_service.apply_movement(paracetamol.id, 2, "RETURN", "Customer return")

        db.session.refresh(paracetamol)
        assert new_stock == 117
        assert paracetamol.stock_quantity == 117
        assert stock_ledger_service.stock_from_history(paracetamol.id) == 117
        assert stock_ledger_service.verify_ledger() == []

    def test_movement_snapshots_previous_and_new_stock(self, paracetamol):
        stock_ledger_service.apply_movement(paracetamol.id, -5, "LOSS", "Broken strip")

        loss = _movements(paracetamol.id)[-1]
        assert (loss.previous_stock, loss.delta, loss.new_stock) == (100, -5, 95)
        assert loss.reason == "Broken strip"

    def test_rejects_going_negative_and_records_nothing(self, paracetamol):
        with pytest.raises(InsufficientStockError) as exc_info:
            stock_ledger_service.apply_movement(paracetamol.id, -101, "SALE")

        assert exc_info.value.available == 100
        assert exc_info.value.details == {"product_id": paracetamol.id, "available": 100, "requested": 101}
        assert len(_movements(paracetamol.id)) == 1
        db.session.refresh(paracetamol)
        assert paracetamol.stock_quantity == 100

    @pytest.mark.parametrize("kind,delta", [
        ("SALE", 3),
        ("LOSS", 3),
        ("RESTOCK", -3),
        ("RETURN", -3),
        ("CORRECTION", 0),
        ("SHRINK", -3),
    ])
    def test_sign_rules(self, paracetamol, kind, delta):
        with pytest.raises(ValidationError):
            stock_ledger_service.apply_movement(paracetamol.id, delta, kind)

    def test_movements_are_immutable(self, paracetamol):
        movement = _movements(paracetamol.id)[0]
        movement.delta = 1000

        with pytest.raises(ValueError):
            db.session.commit()
        db.session.rollback()

    def test_movements_cannot_be_deleted(self, paracetamol):
        db.session.delete(_movements(paracetamol.id)[0])

        with pytest.raises(ValueError):
            db.session.commit()
        db.session.rollback()


class TestSetStockLevel:

    def test_records_correction_delta(self, paracetamol):
        assert stock_ledger_service.set_stock_level(paracetamol.id, 80, "Shelf count", actor_id="c-001") == 80

        correction = _movements(paracetamol.id)[-1]
        assert correction.kind == "CORRECTION"
        assert correction.delta == -20
        assert correction.actor_id == "c-001"

    def test_unchanged_level_records_nothing(self, paracetamol):
        stock_ledger_service.set_stock_level(paracetamol.id, 100)
        assert len(_movements(paracetamol.id)) == 1

    def test_negative_level_rejected(self, paracetamol):
        with pytest.raises(ValidationError):
            stock_ledger_service.set_stock_level(paracetamol.id, -1)


def _always_stale(product, delta, kind, **kwargs):
    raise StaleDataError("version mismatch on products")


class TestLostVersionRace:

    def test_movement_becomes_conflict_after_retries(self, paracetamol, monkeypatch):
        monkeypatch.setattr(stock_ledger_service, "apply_movement_locked", _always_stale)

        with pytest.raises(ConcurrentStockConflict) as exc_info:
            stock_ledger_service.apply_movement(paracetamol.id, 20, "RESTOCK", "Delivery")

        assert exc_info.value.status_code == 409
        assert exc_info.value.details == {"product_id": paracetamol.id}
        db.session.expire_all()
        assert paracetamol.stock_quantity == 100
        assert len(_movements(paracetamol.id)) == 1

    def test_correction_becomes_conflict_after_retries(self, paracetamol, monkeypatch):
        monkeypatch.setattr(stock_ledger_service, "apply_movement_locked", _always_stale)

        with pytest.raises(ConcurrentStockConflict):
            stock_ledger_service.set_stock_level(paracetamol.id, 80, "Shelf count")

        assert len(_movements(paracetamol.id)) == 1
        assert stock_ledger_service.verify_ledger() == []


class TestLedgerReads:

    def test_verify_reports_divergence(self, paracetamol):
        db.session.execute(
            StockMovement.__table__.insert().values(
                product_id=paracetamol.id,
                kind="RESTOCK",
                delta=7,
                previous_stock=100,
                new_stock=107,
                occurred_at=utcnow(),
            )
        )
        db.session.commit()

        mismatches = stock_ledger_service.verify_ledger(paracetamol.id)

        assert mismatches == [{
            "product_id": paracetamol.id,
            "name": "Paracetamol 500mg",
            "stock_quantity": 100,
            "history_total": 107,
            "difference": -7,
        }]

    def test_movement_summary(self, paracetamol):
        stock_ledger_service.apply_movement(paracetamol.id, 20, "RESTOCK")
        stock_ledger_service.apply_movement(paracetamol.id, -12, "SALE")
        stock_ledger_service.apply_movement(paracetamol.id, -3, "LOSS", "Damaged")
        stock_ledger_service.set_stock_level(paracetamol.id, 100)

        summary = stock_ledger_service.movement_summary(product_id=paracetamol.id)

        assert summary == {
            "total_additions": 120,
            "total_sales": 12,
            "total_losses": 3,
            "total_corrections": -5,
            "net_change": 100,
        }

    def test_stock_as_of_past_instant(self, paracetamol):
        before = utcnow() - timedelta(days=1)
        assert stock_ledger_service.stock_from_history(paracetamol.id, as_of=before) == 0
        assert stock_ledger_service.stock_levels_as_of(before) == {}
        assert stock_ledger_service.stock_levels_as_of(utcnow() + timedelta(seconds=1)) == {paracetamol.id: 100}

    def test_list_movements_filters_by_reference(self, paracetamol):
        stock_ledger_service.apply_movement(paracetamol.id, -2, "SALE", reference_id="S-000009")

        found = stock_ledger_service.list_movements(reference_id="S-000009")

        assert [m.delta for m in found] == [-2]
        assert len(stock_ledger_service.list_movements(product_id=paracetamol.id, kind="restock")) == 1
