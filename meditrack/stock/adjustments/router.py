from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from meditrack.database import get_db
from meditrack.identity import Identity, get_identity, role_required

from . import schemas, service
from .models import AdjustmentType

router = APIRouter()


@router.post(
    "/items/{item_id}/adjustments",
    response_model=schemas.StockAdjustmentOut,
    status_code=status.HTTP_201_CREATED,
)
def create_adjustment(
    item_id: int,
    adjustment: schemas.StockAdjustmentCreate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    return service.apply_adjustment(
        db,
        identity.clinic_id,
        item_id,
        adjustment.batch_id,
        adjustment.type,
        adjustment.delta,
        adjustment.reason,
        identity.actor_id,
        notes=adjustment.notes,
    )


@router.post(
    "/items/{item_id}/dispense",
    response_model=List[schemas.StockAdjustmentOut],
    status_code=status.HTTP_201_CREATED,
)
def dispense(
    item_id: int,
    payload: schemas.DispenseRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    """Dispense across batches, earliest expiry first."""
    return service.dispense_fefo(
        db,
        identity.clinic_id,
        item_id,
        payload.quantity,
        payload.reason,
        identity.actor_id,
        notes=payload.notes,
    )


@router.get("/items/{item_id}/ledger-check", response_model=List[schemas.LedgerCheckOut])
def verify_item_ledger(
    item_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    return [
        schemas.LedgerCheckOut(
            batch_id=c.batch_id,
            batch_number=c.batch_number,
            recorded_quantity=c.recorded_quantity,
            ledger_total=c.ledger_total,
            balanced=c.balanced,
        )
        for c in service.verify_item_ledger(db, identity.clinic_id, item_id)
    ]


@router.get("/adjustments/", response_model=List[schemas.StockAdjustmentOut])
def list_adjustments(
    item_id: Optional[int] = None,
    batch_id: Optional[int] = None,
    type: Optional[AdjustmentType] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    return service.list_adjustments(
        db,
        identity.clinic_id,
        item_id=item_id,
        batch_id=batch_id,
        adjustment_type=type,
        start_date=start_date,
        end_date=end_date,
        skip=skip,
        limit=limit,
    )


@router.get("/adjustments/{adjustment_id}", response_model=schemas.StockAdjustmentOut)
def get_adjustment(
    adjustment_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    return service.get_adjustment(db, identity.clinic_id, adjustment_id)


@router.post(
    "/adjustments/{adjustment_id}/reverse",
    response_model=schemas.StockAdjustmentOut,
    status_code=status.HTTP_201_CREATED,
)
def reverse_adjustment(
    adjustment_id: int,
    payload: schemas.ReversalRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(role_required(["lead"])),
):
    """
    Lead/admin only. Books a compensating CORRECTION; the original entry stays in the ledger.
    """
    return service.reverse_adjustment(
        db, identity.clinic_id, adjustment_id, identity.actor_id, reason=payload.reason
    )


@router.get("/batches/{batch_id}/ledger-check", response_model=schemas.LedgerCheckOut)
def verify_batch_ledger(
    batch_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    check = service.verify_batch_ledger(db, identity.clinic_id, batch_id)
    return schemas.LedgerCheckOut(
        batch_id=check.batch_id,
        batch_number=check.batch_number,
        recorded_quantity=check.recorded_quantity,
        ledger_total=check.ledger_total,
        balanced=check.balanced,
    )
