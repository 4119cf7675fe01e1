"""
Tests for the adjustment ledger.

Every quantity change is a ledger row, the batch quantity always equals the
sum of its deltas, and a rejected write leaves neither a row nor a quantity
change behind.
"""

import pytest
from sqlalchemy.exc import DBAPIError, OperationalError

from meditrack.errors import (
    ConflictError,
    ImmutableRecordError,
    InsufficientStockError,
    NotFoundError,
    TransientStorageError,
    ValidationError,
)
from meditrack.stock.adjustments import service as ledger
from meditrack.stock.adjustments.models import AdjustmentType, StockAdjustment
from meditrack.stock.inventory.service import StockStatus, derive_item_state

from tests.conftest import ACTOR_ID, LEAD_ID, TODAY, days_from_today, failing_flushes


def ledger_rows(db, batch_id):
    return db.query(StockAdjustment).filter(StockAdjustment.batch_id == batch_id).all()


# =============================================================================
# Receiving
# =============================================================================


class TestReceiveBatch:
    def test_receive_creates_batch_and_entry(self, db, item, receive):
        batch = receive(item, 100, expiry_date=days_from_today(90), batch_number="AMX-001")

        assert batch.quantity == 100
        assert batch.batch_number == "AMX-001"

        rows = ledger_rows(db, batch.id)
        assert len(rows) == 1
        assert rows[0].type == AdjustmentType.RECEIVE
        assert rows[0].delta == 100
        assert rows[0].actor_id == ACTOR_ID

    def test_duplicate_batch_number_conflicts(self, db, item, receive):
        receive(item, 10, batch_number="AMX-001")

        with pytest.raises(ConflictError):
            receive(item, 5, batch_number="AMX-001")

        assert len(item.batches) == 1

    def test_same_batch_number_on_other_item_is_fine(self, make_item, receive):
        first = make_item(name="Paracetamol")
        second = make_item(name="Ibuprofen")

        receive(first, 10, batch_number="LOT-9")
        batch = receive(second, 10, batch_number="LOT-9")

        assert batch.item_id == second.id

    def test_receive_rejects_non_positive_quantity(self, item, receive):
        with pytest.raises(ValidationError):
            receive(item, 0)
        with pytest.raises(ValidationError):
            receive(item, -4)

    def test_receive_for_unknown_item(self, db, clinic):
        with pytest.raises(NotFoundError):
            ledger.receive_batch(db, clinic.id, 999, "X-1", 10, ACTOR_ID)


# =============================================================================
# Applying adjustments
# =============================================================================


class TestApplyAdjustment:
    def test_receive_then_dispense(self, db, make_item, receive):
        item = make_item(threshold=20)
        batch = receive(item, 100)

        ledger.apply_adjustment(
            db, item.clinic_id, item.id, batch.id, AdjustmentType.DISPENSE, -30, "Ward round", ACTOR_ID
        )

        state = derive_item_state(db, item.clinic_id, item.id)
        assert state.total_quantity == 70
        assert state.stock_status == StockStatus.IN_STOCK

    def test_drain_to_low_stock(self, db, make_item, receive):
        item = make_item(threshold=20)
        batch = receive(item, 100)

        for delta in (-30, -55):
            ledger.apply_adjustment(
                db, item.clinic_id, item.id, batch.id, AdjustmentType.DISPENSE, delta, "Dispensed", ACTOR_ID
            )

        state = derive_item_state(db, item.clinic_id, item.id)
        assert state.total_quantity == 15
        assert state.stock_status == StockStatus.LOW_STOCK

    def test_over_dispense_is_rejected_without_side_effects(self, db, item, receive):
        batch = receive(item, 15)

        with pytest.raises(InsufficientStockError) as excinfo:
            ledger.apply_adjustment(
                db, item.clinic_id, item.id, batch.id, AdjustmentType.DISPENSE, -1000, "Oops", ACTOR_ID
            )

        assert excinfo.value.available == 15
        assert excinfo.value.requested == 1000

        db.refresh(batch)
        assert batch.quantity == 15
        assert len(ledger_rows(db, batch.id)) == 1

    def test_dispense_to_exactly_zero(self, db, item, receive):
        batch = receive(item, 8)

        ledger.apply_adjustment(
            db, item.clinic_id, item.id, batch.id, AdjustmentType.DISPENSE, -8, "All out", ACTOR_ID
        )

        db.refresh(batch)
        assert batch.quantity == 0
        assert derive_item_state(db, item.clinic_id, item.id).stock_status == StockStatus.OUT_OF_STOCK

    @pytest.mark.parametrize(
        "adjustment_type, delta",
        [
            (AdjustmentType.DISPENSE, 5),
            (AdjustmentType.DAMAGE, 1),
            (AdjustmentType.EXPIRE, 2),
            (AdjustmentType.RECEIVE, -3),
        ],
    )
    def test_sign_must_match_type(self, db, item, receive, adjustment_type, delta):
        batch = receive(item, 10)

        with pytest.raises(ValidationError):
            ledger.apply_adjustment(
                db, item.clinic_id, item.id, batch.id, adjustment_type, delta, "Wrong sign", ACTOR_ID
            )

        db.refresh(batch)
        assert batch.quantity == 10

    def test_zero_delta_rejected(self, db, item, receive):
        batch = receive(item, 10)
        with pytest.raises(ValidationError):
            ledger.apply_adjustment(
                db, item.clinic_id, item.id, batch.id, AdjustmentType.CORRECTION, 0, "Nothing", ACTOR_ID
            )

    def test_blank_reason_rejected(self, db, item, receive):
        batch = receive(item, 10)
        with pytest.raises(ValidationError):
            ledger.apply_adjustment(
                db, item.clinic_id, item.id, batch.id, AdjustmentType.DAMAGE, -1, "   ", ACTOR_ID
            )

    def test_unknown_type_rejected(self, db, item, receive):
        batch = receive(item, 10)
        with pytest.raises(ValidationError):
            ledger.apply_adjustment(db, item.clinic_id, item.id, batch.id, "STOLEN", -1, "Gone", ACTOR_ID)

    def test_correction_may_go_either_way(self, db, item, receive):
        batch = receive(item, 10)

        ledger.apply_adjustment(
            db, item.clinic_id, item.id, batch.id, AdjustmentType.CORRECTION, 3, "Stock count", ACTOR_ID
        )
        ledger.apply_adjustment(
            db, item.clinic_id, item.id, batch.id, AdjustmentType.CORRECTION, -5, "Stock count", ACTOR_ID
        )

        db.refresh(batch)
        assert batch.quantity == 8

    def test_negative_correction_cannot_go_below_zero(self, db, item, receive):
        batch = receive(item, 2)
        with pytest.raises(InsufficientStockError):
            ledger.apply_adjustment(
                db, item.clinic_id, item.id, batch.id, AdjustmentType.CORRECTION, -3, "Count", ACTOR_ID
            )

    def test_batch_of_another_item_rejected(self, db, make_item, receive):
        first = make_item(name="Paracetamol")
        second = make_item(name="Ibuprofen")
        batch = receive(first, 10)

        with pytest.raises(ValidationError):
            ledger.apply_adjustment(
                db, second.clinic_id, second.id, batch.id, AdjustmentType.DISPENSE, -1, "Mixup", ACTOR_ID
            )

        db.refresh(batch)
        assert batch.quantity == 10

    def test_missing_batch(self, db, item):
        with pytest.raises(NotFoundError):
            ledger.apply_adjustment(
                db, item.clinic_id, item.id, 4242, AdjustmentType.DISPENSE, -1, "Ghost", ACTOR_ID
            )

    def test_item_of_other_clinic_is_not_found(self, db, make_clinic, item, receive):
        other = make_clinic(name="Hillside")
        batch = receive(item, 10)

        with pytest.raises(NotFoundError):
            ledger.apply_adjustment(
                db, other.id, item.id, batch.id, AdjustmentType.DISPENSE, -1, "Wrong clinic", ACTOR_ID
            )

    def test_batchless_entry_only_for_corrections(self, db, item):
        with pytest.raises(ValidationError):
            ledger.apply_adjustment(
                db, item.clinic_id, item.id, None, AdjustmentType.DISPENSE, -1, "No batch", ACTOR_ID
            )

        entry = ledger.apply_adjustment(
            db, item.clinic_id, item.id, None, AdjustmentType.CORRECTION, 2, "Opening note", ACTOR_ID
        )
        assert entry.batch_id is None


# =============================================================================
# Conservation
# =============================================================================


class TestConservation:
    def test_quantity_equals_sum_of_deltas(self, db, item, receive):
        batch = receive(item, 50)
        steps = [
            (AdjustmentType.DISPENSE, -12),
            (AdjustmentType.DAMAGE, -3),
            (AdjustmentType.CORRECTION, 4),
            (AdjustmentType.EXPIRE, -9),
        ]
        for adjustment_type, delta in steps:
            ledger.apply_adjustment(db, item.clinic_id, item.id, batch.id, adjustment_type, delta, "Step", ACTOR_ID)

        with pytest.raises(InsufficientStockError):
            ledger.apply_adjustment(
                db, item.clinic_id, item.id, batch.id, AdjustmentType.DISPENSE, -31, "Too much", ACTOR_ID
            )

        check = ledger.verify_batch_ledger(db, item.clinic_id, batch.id)
        assert check.recorded_quantity == 30
        assert check.ledger_total == 30
        assert check.balanced

    def test_item_ledger_check_covers_every_batch(self, db, item, receive):
        receive(item, 5)
        receive(item, 7)

        checks = ledger.verify_item_ledger(db, item.clinic_id, item.id)

        assert [c.recorded_quantity for c in checks] == [5, 7]
        assert all(c.balanced for c in checks)


# =============================================================================
# Immutability and reversal
# =============================================================================


class TestImmutability:
    def test_entries_cannot_be_edited(self, db, item, receive):
        batch = receive(item, 10)
        entry = ledger_rows(db, batch.id)[0]

        entry.delta = 99
        with pytest.raises(ImmutableRecordError):
            db.flush()
        db.rollback()

    def test_entries_cannot_be_deleted(self, db, item, receive):
        batch = receive(item, 10)
        entry = ledger_rows(db, batch.id)[0]

        db.delete(entry)
        with pytest.raises(ImmutableRecordError):
            db.flush()
        db.rollback()


class TestReversal:
    def test_reversal_books_compensating_correction(self, db, item, receive):
        batch = receive(item, 20)
        dispense = ledger.apply_adjustment(
            db, item.clinic_id, item.id, batch.id, AdjustmentType.DISPENSE, -6, "Wrong patient", ACTOR_ID
        )

        reversal = ledger.reverse_adjustment(db, item.clinic_id, dispense.id, LEAD_ID)

        assert reversal.type == AdjustmentType.CORRECTION
        assert reversal.delta == 6
        assert reversal.reversal_of_id == dispense.id
        assert reversal.actor_id == LEAD_ID

        db.refresh(batch)
        assert batch.quantity == 20
        assert len(ledger_rows(db, batch.id)) == 3

    def test_second_reversal_conflicts(self, db, item, receive):
        batch = receive(item, 20)
        dispense = ledger.apply_adjustment(
            db, item.clinic_id, item.id, batch.id, AdjustmentType.DISPENSE, -6, "Wrong patient", ACTOR_ID
        )
        ledger.reverse_adjustment(db, item.clinic_id, dispense.id, LEAD_ID)

        with pytest.raises(ConflictError):
            ledger.reverse_adjustment(db, item.clinic_id, dispense.id, LEAD_ID)

    def test_reversing_a_receive_needs_stock(self, db, item, receive):
        batch = receive(item, 10)
        ledger.apply_adjustment(
            db, item.clinic_id, item.id, batch.id, AdjustmentType.DISPENSE, -4, "Given", ACTOR_ID
        )
        receive_entry = ledger_rows(db, batch.id)[0]

        with pytest.raises(InsufficientStockError):
            ledger.reverse_adjustment(db, item.clinic_id, receive_entry.id, LEAD_ID)

        db.refresh(batch)
        assert batch.quantity == 6


# =============================================================================
# FEFO dispensing
# =============================================================================


class TestDispenseFefo:
    def test_takes_earliest_expiry_first(self, db, item, receive):
        late = receive(item, 10, expiry_date=days_from_today(200))
        early = receive(item, 4, expiry_date=days_from_today(20))
        undated = receive(item, 10)

        entries = ledger.dispense_fefo(db, item.clinic_id, item.id, 9, "Clinic session", ACTOR_ID, today=TODAY)

        assert [(e.batch_id, e.delta) for e in entries] == [(early.id, -4), (late.id, -5)]
        for batch in (early, late, undated):
            db.refresh(batch)
        assert (early.quantity, late.quantity, undated.quantity) == (0, 5, 10)

    def test_skips_expired_batches(self, db, item, receive):
        expired = receive(item, 50, expiry_date=days_from_today(-1))
        good = receive(item, 5, expiry_date=days_from_today(60))

        entries = ledger.dispense_fefo(db, item.clinic_id, item.id, 5, "Session", ACTOR_ID, today=TODAY)

        assert [e.batch_id for e in entries] == [good.id]
        db.refresh(expired)
        assert expired.quantity == 50

    def test_insufficient_usable_stock_changes_nothing(self, db, item, receive):
        receive(item, 50, expiry_date=days_from_today(-1))
        good = receive(item, 5, expiry_date=days_from_today(60))

        with pytest.raises(InsufficientStockError) as excinfo:
            ledger.dispense_fefo(db, item.clinic_id, item.id, 6, "Session", ACTOR_ID, today=TODAY)

        assert excinfo.value.available == 5
        db.refresh(good)
        assert good.quantity == 5
        assert len(ledger_rows(db, good.id)) == 1


# =============================================================================
# Listing
# =============================================================================


def test_list_adjustments_filters_by_item_and_type(db, make_item, receive):
    first = make_item(name="Paracetamol")
    second = make_item(name="Ibuprofen")
    batch = receive(first, 10)
    receive(second, 10)
    ledger.apply_adjustment(
        db, first.clinic_id, first.id, batch.id, AdjustmentType.DAMAGE, -2, "Broken vial", ACTOR_ID
    )

    rows = ledger.list_adjustments(db, first.clinic_id, item_id=first.id)
    assert {r.type for r in rows} == {AdjustmentType.RECEIVE, AdjustmentType.DAMAGE}

    damaged = ledger.list_adjustments(db, first.clinic_id, adjustment_type=AdjustmentType.DAMAGE)
    assert [r.delta for r in damaged] == [-2]


# =============================================================================
# Storage failures
# =============================================================================


class TestTransientFailures:
    @pytest.mark.parametrize(
        "error",
        [
            OperationalError("INSERT INTO stock_adjustments", {}, Exception("database is locked")),
            DBAPIError(
                "INSERT INTO stock_adjustments",
                {},
                Exception("server closed the connection unexpectedly"),
                connection_invalidated=True,
            ),
        ],
        ids=["locked", "connection-invalidated"],
    )
    def test_failed_write_leaves_nothing_behind(self, db, item, receive, error):
        batch = receive(item, 40)

        with failing_flushes(db, error):
            with pytest.raises(TransientStorageError):
                ledger.apply_adjustment(
                    db, item.clinic_id, item.id, batch.id, AdjustmentType.DISPENSE, -5, "Ward round", ACTOR_ID
                )

        db.refresh(batch)
        assert batch.quantity == 40
        assert len(ledger_rows(db, batch.id)) == 1

    def test_failed_receive_creates_no_batch(self, db, item):
        error = OperationalError("INSERT INTO batches", {}, Exception("database is locked"))

        with failing_flushes(db, error):
            with pytest.raises(TransientStorageError):
                ledger.receive_batch(db, item.clinic_id, item.id, "AMX-9", 10, ACTOR_ID)

        db.refresh(item)
        assert item.batches == []
        assert db.query(StockAdjustment).count() == 0
