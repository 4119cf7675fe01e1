from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class BatchReceive(BaseModel):
    batch_number: str = Field(min_length=1)
    lot_number: Optional[str] = None
    expiry_date: Optional[date] = None
    quantity: int = Field(gt=0)
    reason: str = "New batch received"


class BatchOut(BaseModel):
    id: int
    item_id: int
    batch_number: str
    lot_number: Optional[str] = None
    expiry_date: Optional[date] = None
    quantity: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
