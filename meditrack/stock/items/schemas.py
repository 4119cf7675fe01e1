from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from meditrack.lifecycle import LifecycleState


# -------------------------------
# Create
# -------------------------------
class ItemCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    unit: str = "units"
    threshold: Optional[int] = Field(default=None, ge=0)


# -------------------------------
# Update
# -------------------------------
class ItemUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    unit: Optional[str] = None
    threshold: Optional[int] = Field(default=None, ge=0)


class ItemStatusUpdate(BaseModel):
    is_active: bool


# -------------------------------
# Output
# -------------------------------
class ItemOut(BaseModel):
    id: int
    clinic_id: int
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    unit: str
    threshold: int
    state: LifecycleState
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ItemImportResult(BaseModel):
    message: str
    imported: int
    skipped: int
