from datetime import date, datetime

import pytz
from loguru import logger
from sqlalchemy.orm import Session

from meditrack.config import settings
from meditrack.errors import NotFoundError, ValidationError
from meditrack.lifecycle import only_active

from . import models, schemas

REQUIRED_FIELDS = ("name", "timezone")


def create_clinic(db: Session, clinic: schemas.ClinicCreate):
    db_clinic = models.Clinic(
        name=clinic.name.strip(),
        address=clinic.address,
        phone=clinic.phone,
        email=clinic.email,
        timezone=clinic.timezone or settings.DEFAULT_TIMEZONE,
    )
    db.add(db_clinic)
    db.commit()
    db.refresh(db_clinic)

    logger.info(f"Clinic created: id={db_clinic.id} name={db_clinic.name}")
    return db_clinic


def get_clinic(db: Session, clinic_id: int):
    clinic = (
        only_active(db.query(models.Clinic), models.Clinic)
        .filter(models.Clinic.id == clinic_id)
        .first()
    )
    if not clinic:
        raise NotFoundError("Clinic", clinic_id)
    return clinic


def list_active_clinics(db: Session):
    return only_active(db.query(models.Clinic), models.Clinic).order_by(models.Clinic.id.asc()).all()


def update_clinic(db: Session, clinic_id: int, clinic: schemas.ClinicUpdate):
    db_clinic = get_clinic(db, clinic_id)

    update_data = clinic.model_dump(exclude_unset=True)
    cleared = [f for f in REQUIRED_FIELDS if f in update_data and update_data[f] is None]
    if cleared:
        raise ValidationError(f"Cannot clear required fields: {', '.join(cleared)}", {"fields": cleared})

    for field, value in update_data.items():
        setattr(db_clinic, field, value)

    db.commit()
    db.refresh(db_clinic)
    return db_clinic


# --------------------------
# Clinic-local time
# --------------------------
def clinic_timezone(clinic) -> pytz.BaseTzInfo:
    name = (clinic.timezone if clinic is not None else None) or settings.DEFAULT_TIMEZONE
    return pytz.timezone(name)


def clinic_today(clinic, now: datetime | None = None) -> date:
    """Current calendar date at the clinic. ``now`` is taken as UTC when naive."""
    tz = clinic_timezone(clinic)
    if now is None:
        now = datetime.now(pytz.utc)
    elif now.tzinfo is None:
        now = pytz.utc.localize(now)
    return now.astimezone(tz).date()
