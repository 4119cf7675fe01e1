from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from meditrack.database import get_db
from meditrack.identity import Identity, get_identity
from meditrack.stock.adjustments import service as ledger

from . import schemas, service

router = APIRouter()


@router.post(
    "/items/{item_id}/batches",
    response_model=schemas.BatchOut,
    status_code=status.HTTP_201_CREATED,
)
def receive_batch(
    item_id: int,
    payload: schemas.BatchReceive,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    """
    Receive a shipment as a new batch. The batch starts at zero and is
    filled by its RECEIVE ledger entry.
    """
    return ledger.receive_batch(
        db,
        identity.clinic_id,
        item_id,
        batch_number=payload.batch_number,
        quantity=payload.quantity,
        actor_id=identity.actor_id,
        expiry_date=payload.expiry_date,
        lot_number=payload.lot_number,
        reason=payload.reason,
    )


@router.get("/items/{item_id}/batches", response_model=List[schemas.BatchOut])
def list_batches(
    item_id: int,
    available_only: bool = False,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    return service.list_batches(db, identity.clinic_id, item_id, available_only=available_only)


@router.get("/batches/{batch_id}", response_model=schemas.BatchOut)
def get_batch(
    batch_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    return service.get_batch(db, identity.clinic_id, batch_id)
