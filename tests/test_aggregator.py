"""
Tests for the stock aggregator: status classification, expiry helpers and
the read-only inventory views.
"""

from types import SimpleNamespace

import pytest

from meditrack.errors import NotFoundError
from meditrack.stock.adjustments import service as ledger
from meditrack.stock.adjustments.models import AdjustmentType
from meditrack.stock.inventory import service as inventory
from meditrack.stock.inventory.service import StockStatus
from meditrack.stock.items import service as item_service

from tests.conftest import ACTOR_ID, TODAY, days_from_today


def batch(quantity, expiry=None):
    return SimpleNamespace(quantity=quantity, expiry_date=expiry)


# =============================================================================
# Pure derivation
# =============================================================================


class TestClassifyStock:
    @pytest.mark.parametrize(
        "total, expected",
        [
            (0, StockStatus.OUT_OF_STOCK),
            (1, StockStatus.LOW_STOCK),
            (10, StockStatus.LOW_STOCK),
            (11, StockStatus.IN_STOCK),
        ],
    )
    def test_threshold_boundary(self, total, expected):
        assert inventory.classify_stock(total, 10) == expected

    def test_zero_threshold(self):
        assert inventory.classify_stock(0, 0) == StockStatus.OUT_OF_STOCK
        assert inventory.classify_stock(1, 0) == StockStatus.IN_STOCK


class TestSummarizeBatches:
    def test_empty_batches_are_ignored(self):
        state = inventory.summarize_batches(
            1,
            [batch(0, days_from_today(1)), batch(6, days_from_today(40)), batch(4, days_from_today(90))],
            threshold=5,
        )

        assert state.total_quantity == 10
        assert state.stock_status == StockStatus.IN_STOCK
        assert state.earliest_expiry == days_from_today(40)
        assert state.available_batches == 2

    def test_no_batches(self):
        state = inventory.summarize_batches(1, [], threshold=10)

        assert state.total_quantity == 0
        assert state.stock_status == StockStatus.OUT_OF_STOCK
        assert state.earliest_expiry is None

    def test_undated_batches_count_but_have_no_expiry(self):
        state = inventory.summarize_batches(1, [batch(30)], threshold=10)

        assert state.total_quantity == 30
        assert state.earliest_expiry is None


class TestExpiryHelpers:
    def test_expiring_window_is_inclusive(self):
        batches = [
            batch(5, TODAY),
            batch(5, days_from_today(30)),
            batch(5, days_from_today(31)),
            batch(5, days_from_today(-1)),
            batch(0, days_from_today(3)),
            batch(5),
        ]

        expiring = inventory.expiring_batches(batches, TODAY, 30)

        assert [b.expiry_date for b in expiring] == [TODAY, days_from_today(30)]

    def test_expired_excludes_today(self):
        batches = [batch(5, TODAY), batch(5, days_from_today(-1)), batch(0, days_from_today(-10))]

        expired = inventory.expired_batches(batches, TODAY)

        assert [b.expiry_date for b in expired] == [days_from_today(-1)]


# =============================================================================
# Loaded from the database
# =============================================================================


class TestDeriveItemState:
    @pytest.mark.parametrize(
        "quantity, expected",
        [(10, StockStatus.LOW_STOCK), (11, StockStatus.IN_STOCK)],
    )
    def test_status_boundary(self, db, item, receive, quantity, expected):
        receive(item, quantity)

        state = inventory.derive_item_state(db, item.clinic_id, item.id)

        assert state.total_quantity == quantity
        assert state.stock_status == expected

    def test_out_of_stock_after_full_dispense(self, db, item, receive):
        b = receive(item, 10)
        ledger.apply_adjustment(db, item.clinic_id, item.id, b.id, AdjustmentType.DISPENSE, -10, "All", ACTOR_ID)

        state = inventory.derive_item_state(db, item.clinic_id, item.id)

        assert state.total_quantity == 0
        assert state.stock_status == StockStatus.OUT_OF_STOCK

    def test_totals_span_batches(self, db, item, receive):
        receive(item, 6, expiry_date=days_from_today(50))
        receive(item, 9, expiry_date=days_from_today(10))

        state = inventory.derive_item_state(db, item.clinic_id, item.id)

        assert state.total_quantity == 15
        assert state.earliest_expiry == days_from_today(10)
        assert state.available_batches == 2

    def test_other_clinic_cannot_see_item(self, db, make_clinic, item):
        other = make_clinic(name="Hillside")
        with pytest.raises(NotFoundError):
            inventory.derive_item_state(db, other.id, item.id)

    def test_threshold_override(self, db, item, receive):
        receive(item, 15)

        assert inventory.state_for_item(db, item).stock_status == StockStatus.IN_STOCK
        assert inventory.state_for_item(db, item, threshold=20).stock_status == StockStatus.LOW_STOCK


class TestInventoryViews:
    def test_list_inventory_filters_by_status(self, db, clinic, make_item, receive):
        plenty = make_item(name="Saline", threshold=5)
        low = make_item(name="Insulin", threshold=5)
        make_item(name="Gauze", threshold=5)
        receive(plenty, 50)
        receive(low, 3)

        rows = inventory.list_inventory(db, clinic.id, status=StockStatus.LOW_STOCK)
        assert [r["item"].id for r in rows] == [low.id]

        rows = inventory.list_inventory(db, clinic.id)
        assert [r["item"].name for r in rows] == ["Gauze", "Insulin", "Saline"]

    def test_list_inventory_expiry_filters(self, db, clinic, make_item, receive):
        soon = make_item(name="Vaccine")
        old = make_item(name="Syrup")
        receive(soon, 20, expiry_date=days_from_today(7))
        receive(old, 20, expiry_date=days_from_today(-2))

        rows = inventory.list_inventory(db, clinic.id, expiring_within_days=30, today=TODAY)
        assert [r["item"].id for r in rows] == [soon.id]

        rows = inventory.list_inventory(db, clinic.id, expired=True, today=TODAY)
        assert [r["item"].id for r in rows] == [old.id]

    def test_deactivated_items_are_hidden(self, db, clinic, make_item):
        keep = make_item(name="Saline")
        gone = make_item(name="Old stock")
        item_service.update_item_status(db, clinic.id, gone.id, False)

        rows = inventory.list_inventory(db, clinic.id)
        assert [r["item"].id for r in rows] == [keep.id]

        with pytest.raises(NotFoundError):
            inventory.derive_item_state(db, clinic.id, gone.id)

    def test_summary_counts(self, db, clinic, make_item, receive):
        a = make_item(name="A", threshold=5)
        b = make_item(name="B", threshold=5)
        make_item(name="C", threshold=5)
        receive(a, 40, expiry_date=days_from_today(12))
        receive(b, 2, expiry_date=days_from_today(-3))

        summary = inventory.inventory_summary(db, clinic.id, today=TODAY, window_days=30)

        assert summary["total_items"] == 3
        assert summary["total_units"] == 42
        assert summary["in_stock"] == 1
        assert summary["low_stock"] == 1
        assert summary["out_of_stock"] == 1
        assert summary["expiring_soon"] == 1
        assert summary["expired"] == 1

    def test_categories_are_distinct(self, db, clinic, make_item):
        make_item(name="Amoxicillin", category="Antibiotics")
        make_item(name="Doxycycline", category="Antibiotics")
        make_item(name="Gauze", category="Dressings")
        make_item(name="Water")

        assert inventory.list_categories(db, clinic.id) == ["Antibiotics", "Dressings"]
