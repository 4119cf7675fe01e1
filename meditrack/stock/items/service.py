import re
from typing import BinaryIO, Optional

import pandas as pd
from loguru import logger
from sqlalchemy import func
from sqlalchemy.orm import Session

from meditrack.clinics import service as clinic_service
from meditrack.config import settings
from meditrack.errors import ConflictError, NotFoundError, ValidationError
from meditrack.lifecycle import only_active, state_for

from . import schemas
from .models import Item

REQUIRED_FIELDS = ("name", "unit", "threshold")


def create_item(db: Session, clinic_id: int, item: schemas.ItemCreate):
    clinic_service.get_clinic(db, clinic_id)

    db_item = Item(
        clinic_id=clinic_id,
        name=item.name.strip(),
        description=item.description,
        category=item.category.strip() if item.category else None,
        unit=(item.unit or "units").strip(),
        threshold=item.threshold if item.threshold is not None else settings.DEFAULT_ITEM_THRESHOLD,
    )

    db.add(db_item)
    db.commit()
    db.refresh(db_item)

    logger.info(f"Item created: id={db_item.id} clinic={clinic_id} name={db_item.name}")
    return db_item


def get_item(db: Session, clinic_id: int, item_id: int, include_inactive: bool = False):
    """Item scoped to the clinic; deactivated items are missing unless asked for."""
    query = db.query(Item).filter(Item.id == item_id, Item.clinic_id == clinic_id)
    if not include_inactive:
        query = only_active(query, Item)

    item = query.first()
    if not item:
        raise NotFoundError("Item", item_id)
    return item


def list_items(
    db: Session,
    clinic_id: int,
    search: Optional[str] = None,
    category: Optional[str] = None,
    include_inactive: bool = False,
):
    query = db.query(Item).filter(Item.clinic_id == clinic_id)

    if not include_inactive:
        query = only_active(query, Item)

    if search:
        query = query.filter(func.lower(Item.name).contains(search.lower().strip()))

    if category:
        query = query.filter(func.lower(Item.category) == category.lower().strip())

    return query.order_by(Item.name.asc(), Item.id.asc()).all()


def update_item(db: Session, clinic_id: int, item_id: int, item: schemas.ItemUpdate):
    db_item = get_item(db, clinic_id, item_id)

    update_data = item.model_dump(exclude_unset=True)
    cleared = [f for f in REQUIRED_FIELDS if f in update_data and update_data[f] is None]
    if cleared:
        raise ValidationError(f"Cannot clear required fields: {', '.join(cleared)}", {"fields": cleared})

    if "name" in update_data:
        update_data["name"] = update_data["name"].strip()

    for field, value in update_data.items():
        setattr(db_item, field, value)

    db.commit()
    db.refresh(db_item)
    return db_item


def update_item_status(db: Session, clinic_id: int, item_id: int, is_active: bool):
    db_item = get_item(db, clinic_id, item_id, include_inactive=True)

    db_item.state = state_for(is_active)
    db.commit()
    db.refresh(db_item)

    logger.info(f"Item {item_id} state set to {db_item.state.value}")
    return db_item


# --------------------------------------------------
# Helper: Clean threshold values from Excel
# --------------------------------------------------
def clean_threshold(value) -> int:
    """
    Accepts: int, float, str ("12 units"), or NaN
    Returns: non-negative int, falling back to the configured default
    """
    if value is None or pd.isna(value):
        return settings.DEFAULT_ITEM_THRESHOLD

    if isinstance(value, (int, float)):
        return max(int(value), 0)

    match = re.search(r"-?\d+", str(value))
    if not match:
        return settings.DEFAULT_ITEM_THRESHOLD
    return max(int(match.group()), 0)


def _optional_text(value) -> Optional[str]:
    if value is None or pd.isna(value):
        return None
    text = str(value).strip()
    return text or None


# --------------------------------------------------
# Bulk import
# --------------------------------------------------
def import_items_from_excel(db: Session, clinic_id: int, filename: str, file: BinaryIO):
    if not filename or not filename.lower().endswith((".xlsx", ".xls")):
        raise ValidationError("Invalid file type. Upload .xlsx or .xls")

    clinic_service.get_clinic(db, clinic_id)

    df = pd.read_excel(file)

    # Normalize column names
    df.columns = [str(c).strip().lower() for c in df.columns]

    if "name" not in df.columns:
        raise ValidationError("Excel must contain a 'name' column")

    def normalize(text: str) -> str:
        return " ".join(text.lower().strip().split())

    existing_names = {
        normalize(name)
        for (name,) in db.query(Item.name).filter(Item.clinic_id == clinic_id).all()
    }

    items_to_add = []
    skipped = 0

    for _, row in df.iterrows():
        if pd.isna(row["name"]) or not str(row["name"]).strip():
            skipped += 1
            continue

        name = str(row["name"]).strip()
        key = normalize(name)
        if key in existing_names:
            skipped += 1
            continue

        items_to_add.append(
            Item(
                clinic_id=clinic_id,
                name=name,
                category=_optional_text(row.get("category")),
                description=_optional_text(row.get("description")),
                unit=_optional_text(row.get("unit")) or "units",
                threshold=clean_threshold(row.get("threshold")),
            )
        )
        existing_names.add(key)

    if not items_to_add:
        raise ConflictError(
            "Import unsuccessful: all rows were invalid or duplicated",
            {"imported": 0, "skipped": skipped},
        )

    try:
        db.add_all(items_to_add)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Imported {len(items_to_add)} items into clinic {clinic_id} ({skipped} skipped)")

    return {
        "message": "Import completed successfully",
        "imported": len(items_to_add),
        "skipped": skipped,
    }
