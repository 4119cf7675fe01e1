"""
Stock aggregator.

Derives an item's current state from its batches. Nothing here writes: the
arithmetic lives in pure functions over batch rows, and the ``db`` helpers
only load rows and hand them over.
"""

import enum
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from meditrack.clinics import service as clinic_service
from meditrack.config import settings
from meditrack.lifecycle import only_active
from meditrack.stock.batches import service as batch_service
from meditrack.stock.items import service as item_service
from meditrack.stock.items.models import Item


class StockStatus(str, enum.Enum):
    IN_STOCK = "IN_STOCK"
    LOW_STOCK = "LOW_STOCK"
    OUT_OF_STOCK = "OUT_OF_STOCK"


@dataclass(frozen=True)
class ItemState:
    item_id: int
    total_quantity: int
    stock_status: StockStatus
    earliest_expiry: Optional[date]
    available_batches: int


# --------------------------
# Pure derivation
# --------------------------
def classify_stock(total_quantity: int, threshold: int) -> StockStatus:
    if total_quantity <= 0:
        return StockStatus.OUT_OF_STOCK
    # Inclusive: a total equal to the threshold is already low
    if total_quantity <= threshold:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


def available(batches: Iterable) -> List:
    return [b for b in batches if b.quantity > 0]


def summarize_batches(item_id: int, batches: Iterable, threshold: int) -> ItemState:
    usable = available(batches)
    total = sum(b.quantity for b in usable)
    expiries = [b.expiry_date for b in usable if b.expiry_date is not None]

    return ItemState(
        item_id=item_id,
        total_quantity=total,
        stock_status=classify_stock(total, threshold),
        earliest_expiry=min(expiries) if expiries else None,
        available_batches=len(usable),
    )


def days_until(expiry: date, today: date) -> int:
    return (expiry - today).days


def expiring_batches(batches: Iterable, today: date, window_days: int) -> List:
    """Available batches expiring today or within ``window_days``; expired ones excluded."""
    return [
        b
        for b in available(batches)
        if b.expiry_date is not None and 0 <= days_until(b.expiry_date, today) <= window_days
    ]


def expired_batches(batches: Iterable, today: date) -> List:
    return [
        b
        for b in available(batches)
        if b.expiry_date is not None and b.expiry_date < today
    ]


# --------------------------
# Loading helpers
# --------------------------
def state_for_item(db: Session, item: Item, threshold: Optional[int] = None) -> ItemState:
    batches = batch_service.load_item_batches(db, [item.id])[item.id]
    return summarize_batches(item.id, batches, item.threshold if threshold is None else threshold)


def derive_item_state(db: Session, clinic_id: int, item_id: int) -> ItemState:
    item = item_service.get_item(db, clinic_id, item_id)
    return state_for_item(db, item)


def derive_states(db: Session, items: List[Item]) -> Dict[int, ItemState]:
    grouped = batch_service.load_item_batches(db, [i.id for i in items])
    return {
        item.id: summarize_batches(item.id, grouped[item.id], item.threshold)
        for item in items
    }


# --------------------------
# Read-only: list inventory
# --------------------------
def list_inventory(
    db: Session,
    clinic_id: int,
    search: Optional[str] = None,
    category: Optional[str] = None,
    status: Optional[StockStatus] = None,
    expiring_within_days: Optional[int] = None,
    expired: Optional[bool] = None,
    include_inactive: bool = False,
    today: Optional[date] = None,
    skip: int = 0,
    limit: int = 100,
):
    items = item_service.list_items(
        db, clinic_id, search=search, category=category, include_inactive=include_inactive
    )
    grouped = batch_service.load_item_batches(db, [i.id for i in items])

    if today is None and (expiring_within_days is not None or expired is not None):
        today = clinic_service.clinic_today(clinic_service.get_clinic(db, clinic_id))

    rows = []
    for item in items:
        batches = grouped[item.id]
        state = summarize_batches(item.id, batches, item.threshold)

        if status is not None and state.stock_status != status:
            continue

        if expiring_within_days is not None and not expiring_batches(batches, today, expiring_within_days):
            continue

        if expired is not None and bool(expired_batches(batches, today)) != expired:
            continue

        rows.append({"item": item, "state": state, "batch_count": len(batches)})

    return rows[skip:skip + limit]


def inventory_summary(db: Session, clinic_id: int, today: Optional[date] = None, window_days: Optional[int] = None):
    clinic = clinic_service.get_clinic(db, clinic_id)
    today = today or clinic_service.clinic_today(clinic)
    window_days = settings.EXPIRY_WARNING_DAYS if window_days is None else window_days

    items = only_active(db.query(Item), Item).filter(Item.clinic_id == clinic_id).all()
    grouped = batch_service.load_item_batches(db, [i.id for i in items])

    counts = {s: 0 for s in StockStatus}
    expiring = 0
    expired = 0
    total_units = 0

    for item in items:
        batches = grouped[item.id]
        state = summarize_batches(item.id, batches, item.threshold)
        counts[state.stock_status] += 1
        total_units += state.total_quantity
        if expiring_batches(batches, today, window_days):
            expiring += 1
        if expired_batches(batches, today):
            expired += 1

    return {
        "total_items": len(items),
        "total_units": total_units,
        "in_stock": counts[StockStatus.IN_STOCK],
        "low_stock": counts[StockStatus.LOW_STOCK],
        "out_of_stock": counts[StockStatus.OUT_OF_STOCK],
        "expiring_soon": expiring,
        "expired": expired,
        "as_of": today,
        "window_days": window_days,
    }


def list_categories(db: Session, clinic_id: int) -> List[str]:
    rows = (
        only_active(db.query(Item.category), Item)
        .filter(Item.clinic_id == clinic_id, Item.category.isnot(None))
        .distinct()
        .all()
    )
    return sorted(c for (c,) in rows if c)
