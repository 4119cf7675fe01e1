from typing import List, Optional

from fastapi import APIRouter, Depends, File, UploadFile, status
from sqlalchemy.orm import Session

from meditrack.database import get_db
from meditrack.identity import Identity, get_identity, role_required

from . import schemas, service

router = APIRouter()


@router.post("/", response_model=schemas.ItemOut, status_code=status.HTTP_201_CREATED)
def create_item(
    item: schemas.ItemCreate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    return service.create_item(db, identity.clinic_id, item)


@router.get("/", response_model=List[schemas.ItemOut])
def list_items(
    search: Optional[str] = None,
    category: Optional[str] = None,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    return service.list_items(
        db,
        identity.clinic_id,
        search=search,
        category=category,
        include_inactive=include_inactive,
    )


@router.post("/import", response_model=schemas.ItemImportResult)
def import_items(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    identity: Identity = Depends(role_required(["lead"])),
):
    return service.import_items_from_excel(db, identity.clinic_id, file.filename, file.file)


@router.get("/{item_id}", response_model=schemas.ItemOut)
def get_item(
    item_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    return service.get_item(db, identity.clinic_id, item_id)


@router.patch("/{item_id}", response_model=schemas.ItemOut)
def update_item(
    item_id: int,
    item: schemas.ItemUpdate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    return service.update_item(db, identity.clinic_id, item_id, item)


@router.put("/{item_id}/status", response_model=schemas.ItemOut)
def update_item_status(
    item_id: int,
    payload: schemas.ItemStatusUpdate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(role_required(["lead"])),
):
    """
    Soft-delete (or restore) an item. Items referenced by the ledger are never removed.
    """
    return service.update_item_status(db, identity.clinic_id, item_id, payload.is_active)
