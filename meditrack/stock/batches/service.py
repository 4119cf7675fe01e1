from typing import Optional

from sqlalchemy.orm import Session

from meditrack.errors import NotFoundError
from meditrack.stock.items import service as item_service
from meditrack.stock.items.models import Item

from .models import Batch


# --------------------------
# Read-only access; quantity is changed by the ledger only
# --------------------------
def get_batch(db: Session, clinic_id: int, batch_id: int):
    batch = (
        db.query(Batch)
        .join(Item, Item.id == Batch.item_id)
        .filter(Batch.id == batch_id, Item.clinic_id == clinic_id)
        .first()
    )
    if not batch:
        raise NotFoundError("Batch", batch_id)
    return batch


def find_batch_by_number(db: Session, item_id: int, batch_number: str) -> Optional[Batch]:
    return (
        db.query(Batch)
        .filter(Batch.item_id == item_id, Batch.batch_number == batch_number)
        .first()
    )


def list_batches(db: Session, clinic_id: int, item_id: int, available_only: bool = False):
    # Raises NotFoundError for items outside the clinic
    item_service.get_item(db, clinic_id, item_id)

    query = db.query(Batch).filter(Batch.item_id == item_id)
    if available_only:
        query = query.filter(Batch.quantity > 0)

    return query.order_by(Batch.expiry_date.is_(None).asc(), Batch.expiry_date.asc(), Batch.id.asc()).all()


def load_item_batches(db: Session, item_ids):
    """Batches for many items at once, keyed by item id."""
    grouped = {item_id: [] for item_id in item_ids}
    if not grouped:
        return grouped

    rows = db.query(Batch).filter(Batch.item_id.in_(list(grouped))).order_by(Batch.id.asc()).all()
    for batch in rows:
        grouped[batch.item_id].append(batch)
    return grouped
