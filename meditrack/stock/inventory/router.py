from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from meditrack.database import get_db
from meditrack.identity import Identity, get_identity

from . import schemas, service

router = APIRouter()


@router.get("/", response_model=schemas.InventoryListOut)
def list_inventory(
    search: Optional[str] = None,
    category: Optional[str] = None,
    status: Optional[service.StockStatus] = None,
    expiring_within_days: Optional[int] = None,
    expired: Optional[bool] = None,
    include_inactive: bool = False,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    rows = service.list_inventory(
        db,
        identity.clinic_id,
        search=search,
        category=category,
        status=status,
        expiring_within_days=expiring_within_days,
        expired=expired,
        include_inactive=include_inactive,
        skip=skip,
        limit=limit,
    )

    inventory = []
    for row in rows:
        item, state = row["item"], row["state"]
        inventory.append(
            schemas.InventoryRowOut(
                id=item.id,
                name=item.name,
                category=item.category,
                unit=item.unit,
                threshold=item.threshold,
                state=item.state,
                batch_count=row["batch_count"],
                total_quantity=state.total_quantity,
                stock_status=state.stock_status,
                earliest_expiry=state.earliest_expiry,
                updated_at=item.updated_at,
            )
        )

    return {"inventory": inventory, "count": len(inventory)}


@router.get("/summary", response_model=schemas.InventorySummaryOut)
def inventory_summary(
    window_days: Optional[int] = None,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    return service.inventory_summary(db, identity.clinic_id, window_days=window_days)


@router.get("/categories", response_model=List[str])
def list_categories(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    return service.list_categories(db, identity.clinic_id)


@router.get("/{item_id}/state", response_model=schemas.ItemStateOut)
def get_item_state(
    item_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    return service.derive_item_state(db, identity.clinic_id, item_id)
