from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import AdjustmentType


class StockAdjustmentCreate(BaseModel):
    """
    Signed delta: negative for DISPENSE/DAMAGE/EXPIRE, positive for RECEIVE,
    either sign for CORRECTION.
    """

    type: AdjustmentType
    delta: int
    reason: str = Field(min_length=1)
    notes: Optional[str] = None
    batch_id: Optional[int] = None


class DispenseRequest(BaseModel):
    quantity: int = Field(gt=0)
    reason: str = Field(min_length=1)
    notes: Optional[str] = None


class ReversalRequest(BaseModel):
    reason: Optional[str] = None


class StockAdjustmentOut(BaseModel):
    id: int
    item_id: int
    batch_id: Optional[int] = None
    type: AdjustmentType
    delta: int
    reason: str
    notes: Optional[str] = None
    actor_id: int
    reversal_of_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LedgerCheckOut(BaseModel):
    batch_id: int
    batch_number: str
    recorded_quantity: int
    ledger_total: int
    balanced: bool
