"""
Adjustment ledger.

Every change to a batch quantity goes through this module. A ledger write
updates the batch with a guarded compare-and-set (``quantity + delta >= 0``)
under a row lock and inserts the ledger row in the same transaction, so the
sum of a batch's deltas always equals its quantity and concurrent dispenses
cannot drive it negative.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Optional

from loguru import logger
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from meditrack.clinics.service import clinic_today
from meditrack.errors import (
    ConflictError,
    InsufficientStockError,
    InventoryError,
    NotFoundError,
    TransientStorageError,
    ValidationError,
    is_transient,
)
from meditrack.stock.batches import service as batch_service
from meditrack.stock.batches.models import Batch
from meditrack.stock.items import service as item_service
from meditrack.stock.items.models import Item

from .models import OUTBOUND_TYPES, AdjustmentType, StockAdjustment


@dataclass(frozen=True)
class LedgerCheck:
    batch_id: int
    batch_number: str
    recorded_quantity: int
    ledger_total: int

    @property
    def balanced(self) -> bool:
        return self.recorded_quantity == self.ledger_total


# --------------------------
# Transaction boundary
# --------------------------
@contextmanager
def ledger_transaction(db: Session):
    """Commit on success; on any failure roll back so no partial write survives."""
    try:
        yield
        db.commit()
    except InventoryError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Ledger write conflicts with existing data") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        if is_transient(exc):
            logger.warning(f"Transient storage failure during ledger write: {exc}")
            raise TransientStorageError("Storage temporarily unavailable; retry the operation") from exc
        raise
    except Exception:
        db.rollback()
        raise


# --------------------------
# Validation
# --------------------------
def _coerce_type(adjustment_type) -> AdjustmentType:
    try:
        return AdjustmentType(adjustment_type)
    except ValueError:
        raise ValidationError(f"Unknown adjustment type '{adjustment_type}'")


def validate_entry(adjustment_type: AdjustmentType, delta: int, reason: str):
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError("Adjustment delta must be an integer")

    if delta == 0:
        raise ValidationError("Adjustment delta cannot be zero")

    if adjustment_type in OUTBOUND_TYPES and delta > 0:
        raise ValidationError(f"{adjustment_type.value} adjustments require a negative delta")

    if adjustment_type == AdjustmentType.RECEIVE and delta < 0:
        raise ValidationError("RECEIVE adjustments require a positive delta")

    if not reason or not reason.strip():
        raise ValidationError("Adjustment reason is required")


# --------------------------
# Internal: guarded batch update + ledger insert (no commit)
# --------------------------
def _lock_batch(db: Session, batch_id: int) -> Batch:
    batch = (
        db.query(Batch)
        .filter(Batch.id == batch_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not batch:
        raise NotFoundError("Batch", batch_id)
    return batch


def _move_batch_quantity(db: Session, batch: Batch, delta: int):
    if batch.quantity + delta < 0:
        raise InsufficientStockError(batch.quantity, -delta, batch.id)

    result = db.execute(
        update(Batch)
        .where(Batch.id == batch.id, Batch.quantity + delta >= 0)
        .values(quantity=Batch.quantity + delta, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        # Lost the race to another writer on an engine without row locks
        db.refresh(batch)
        raise InsufficientStockError(batch.quantity, -delta, batch.id)

    db.expire(batch, ["quantity", "updated_at"])


def _write_entry(
    db: Session,
    clinic_id: int,
    item_id: int,
    batch_id: Optional[int],
    adjustment_type: AdjustmentType,
    delta: int,
    reason: str,
    actor_id: int,
    notes: Optional[str] = None,
    reversal_of_id: Optional[int] = None,
) -> StockAdjustment:
    item = item_service.get_item(db, clinic_id, item_id)

    if batch_id is not None:
        batch = _lock_batch(db, batch_id)
        if batch.item_id != item.id:
            raise ValidationError(
                f"Batch {batch_id} does not belong to item {item_id}",
                {"batch_id": batch_id, "item_id": item_id},
            )
        _move_batch_quantity(db, batch, delta)

    adjustment = StockAdjustment(
        item_id=item.id,
        batch_id=batch_id,
        type=adjustment_type,
        delta=delta,
        reason=reason.strip(),
        notes=notes,
        actor_id=actor_id,
        reversal_of_id=reversal_of_id,
    )
    db.add(adjustment)
    db.flush()
    return adjustment


# --------------------------
# Public ledger operations
# --------------------------
def apply_adjustment(
    db: Session,
    clinic_id: int,
    item_id: int,
    batch_id: Optional[int],
    adjustment_type,
    delta: int,
    reason: str,
    actor_id: int,
    notes: Optional[str] = None,
) -> StockAdjustment:
    adjustment_type = _coerce_type(adjustment_type)
    validate_entry(adjustment_type, delta, reason)

    # Only corrections may be recorded against the item as a whole
    if batch_id is None and adjustment_type != AdjustmentType.CORRECTION:
        raise ValidationError(f"{adjustment_type.value} adjustments must reference a batch")

    with ledger_transaction(db):
        adjustment = _write_entry(
            db, clinic_id, item_id, batch_id, adjustment_type, delta, reason, actor_id, notes
        )

    db.refresh(adjustment)
    logger.info(
        f"Stock adjustment {adjustment.id} applied: item={item_id} batch={batch_id} "
        f"type={adjustment_type.value} delta={delta} actor={actor_id}"
    )
    return adjustment


def receive_batch(
    db: Session,
    clinic_id: int,
    item_id: int,
    batch_number: str,
    quantity: int,
    actor_id: int,
    expiry_date: Optional[date] = None,
    lot_number: Optional[str] = None,
    reason: str = "New batch received",
) -> Batch:
    """Create a batch at zero and book its RECEIVE entry in one transaction."""
    batch_number = (batch_number or "").strip()
    if not batch_number:
        raise ValidationError("Batch number is required")
    validate_entry(AdjustmentType.RECEIVE, quantity, reason)

    with ledger_transaction(db):
        item = item_service.get_item(db, clinic_id, item_id)

        if batch_service.find_batch_by_number(db, item.id, batch_number):
            raise ConflictError(
                f"Batch number '{batch_number}' already exists for this item",
                {"item_id": item.id, "batch_number": batch_number},
            )

        batch = Batch(
            item_id=item.id,
            batch_number=batch_number,
            lot_number=lot_number,
            expiry_date=expiry_date,
            quantity=0,
        )
        db.add(batch)
        db.flush()

        adjustment = _write_entry(
            db, clinic_id, item.id, batch.id, AdjustmentType.RECEIVE, quantity, reason, actor_id
        )

    db.refresh(batch)
    logger.info(
        f"Batch received: batch={batch.id} number={batch_number} item={item_id} "
        f"quantity={quantity} adjustment={adjustment.id} actor={actor_id}"
    )
    return batch


def dispense_fefo(
    db: Session,
    clinic_id: int,
    item_id: int,
    quantity: int,
    reason: str,
    actor_id: int,
    notes: Optional[str] = None,
    today: Optional[date] = None,
) -> List[StockAdjustment]:
    """
    Dispense from the earliest-expiring usable batches first. Expired batches
    are skipped; batches without an expiry date go last.
    """
    validate_entry(AdjustmentType.DISPENSE, -quantity, reason)

    adjustments = []
    with ledger_transaction(db):
        item = item_service.get_item(db, clinic_id, item_id)
        today = today or clinic_today(item.clinic)

        batches = (
            db.query(Batch)
            .filter(Batch.item_id == item.id, Batch.quantity > 0)
            .filter((Batch.expiry_date.is_(None)) | (Batch.expiry_date >= today))
            .order_by(Batch.expiry_date.is_(None).asc(), Batch.expiry_date.asc(), Batch.id.asc())
            .with_for_update()
            .populate_existing()
            .all()
        )

        available = sum(b.quantity for b in batches)
        if available < quantity:
            raise InsufficientStockError(available, quantity)

        remaining = quantity
        for batch in batches:
            if remaining == 0:
                break
            take = min(batch.quantity, remaining)
            adjustments.append(
                _write_entry(
                    db, clinic_id, item.id, batch.id, AdjustmentType.DISPENSE, -take, reason, actor_id, notes
                )
            )
            remaining -= take

    for adjustment in adjustments:
        db.refresh(adjustment)

    logger.info(
        f"FEFO dispense: item={item_id} quantity={quantity} "
        f"batches={[a.batch_id for a in adjustments]} actor={actor_id}"
    )
    return adjustments


def get_adjustment(db: Session, clinic_id: int, adjustment_id: int) -> StockAdjustment:
    adjustment = (
        db.query(StockAdjustment)
        .join(Item, Item.id == StockAdjustment.item_id)
        .filter(StockAdjustment.id == adjustment_id, Item.clinic_id == clinic_id)
        .first()
    )
    if not adjustment:
        raise NotFoundError("Stock adjustment", adjustment_id)
    return adjustment


def reverse_adjustment(
    db: Session,
    clinic_id: int,
    adjustment_id: int,
    actor_id: int,
    reason: Optional[str] = None,
) -> StockAdjustment:
    """Append a CORRECTION that cancels an earlier entry. The original row is untouched."""
    with ledger_transaction(db):
        original = get_adjustment(db, clinic_id, adjustment_id)

        already = (
            db.query(StockAdjustment.id)
            .filter(StockAdjustment.reversal_of_id == original.id)
            .first()
        )
        if already:
            raise ConflictError(
                f"Stock adjustment {adjustment_id} has already been reversed",
                {"adjustment_id": adjustment_id, "reversal_id": already.id},
            )

        reversal = _write_entry(
            db,
            clinic_id,
            original.item_id,
            original.batch_id,
            AdjustmentType.CORRECTION,
            -original.delta,
            reason or f"Reversal of adjustment {original.id}",
            actor_id,
            reversal_of_id=original.id,
        )

    db.refresh(reversal)
    logger.info(f"Stock adjustment {adjustment_id} reversed by {reversal.id} (actor={actor_id})")
    return reversal


def list_adjustments(
    db: Session,
    clinic_id: int,
    item_id: Optional[int] = None,
    batch_id: Optional[int] = None,
    adjustment_type: Optional[AdjustmentType] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    skip: int = 0,
    limit: int = 100,
):
    query = (
        db.query(StockAdjustment)
        .join(Item, Item.id == StockAdjustment.item_id)
        .filter(Item.clinic_id == clinic_id)
    )

    if item_id is not None:
        query = query.filter(StockAdjustment.item_id == item_id)

    if batch_id is not None:
        query = query.filter(StockAdjustment.batch_id == batch_id)

    if adjustment_type is not None:
        query = query.filter(StockAdjustment.type == adjustment_type)

    if start_date:
        query = query.filter(
            StockAdjustment.created_at >= datetime.combine(start_date, datetime.min.time())
        )

    if end_date:
        query = query.filter(
            StockAdjustment.created_at <= datetime.combine(end_date, datetime.max.time())
        )

    return (
        query.order_by(StockAdjustment.created_at.desc(), StockAdjustment.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


# --------------------------
# Ledger audit
# --------------------------
def verify_batch_ledger(db: Session, clinic_id: int, batch_id: int) -> LedgerCheck:
    batch = batch_service.get_batch(db, clinic_id, batch_id)

    ledger_total = (
        db.query(func.coalesce(func.sum(StockAdjustment.delta), 0))
        .filter(StockAdjustment.batch_id == batch.id)
        .scalar()
    )

    return LedgerCheck(
        batch_id=batch.id,
        batch_number=batch.batch_number,
        recorded_quantity=batch.quantity,
        ledger_total=int(ledger_total),
    )


def verify_item_ledger(db: Session, clinic_id: int, item_id: int) -> List[LedgerCheck]:
    item = item_service.get_item(db, clinic_id, item_id, include_inactive=True)

    totals = dict(
        db.query(StockAdjustment.batch_id, func.sum(StockAdjustment.delta))
        .filter(StockAdjustment.item_id == item.id, StockAdjustment.batch_id.isnot(None))
        .group_by(StockAdjustment.batch_id)
        .all()
    )

    checks = []
    for batch in db.query(Batch).filter(Batch.item_id == item.id).order_by(Batch.id.asc()).all():
        check = LedgerCheck(
            batch_id=batch.id,
            batch_number=batch.batch_number,
            recorded_quantity=batch.quantity,
            ledger_total=int(totals.get(batch.id) or 0),
        )
        if not check.balanced:
            logger.error(
                f"Ledger imbalance on batch {batch.id}: quantity={check.recorded_quantity} "
                f"ledger={check.ledger_total}"
            )
        checks.append(check)
    return checks
