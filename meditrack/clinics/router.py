from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from meditrack.database import get_db
from meditrack.identity import Identity, get_identity, role_required

from . import schemas, service

router = APIRouter()


@router.post("/", response_model=schemas.ClinicOut, status_code=status.HTTP_201_CREATED)
def create_clinic(clinic: schemas.ClinicCreate, db: Session = Depends(get_db)):
    return service.create_clinic(db, clinic)


@router.get("/current", response_model=schemas.ClinicOut)
def get_current_clinic(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    return service.get_clinic(db, identity.clinic_id)


@router.patch("/current", response_model=schemas.ClinicOut)
def update_current_clinic(
    clinic: schemas.ClinicUpdate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(role_required(["admin"])),
):
    return service.update_clinic(db, identity.clinic_id, clinic)


@router.get("/{clinic_id}", response_model=schemas.ClinicOut)
def get_clinic(
    clinic_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    if clinic_id != identity.clinic_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Clinic not found")
    return service.get_clinic(db, clinic_id)
