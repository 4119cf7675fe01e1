from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from meditrack.lifecycle import LifecycleState

from .service import StockStatus


class ItemStateOut(BaseModel):
    item_id: int
    total_quantity: int
    stock_status: StockStatus
    earliest_expiry: Optional[date] = None
    available_batches: int

    model_config = ConfigDict(from_attributes=True)


class InventoryRowOut(BaseModel):
    id: int
    name: str
    category: Optional[str] = None
    unit: str
    threshold: int
    state: LifecycleState
    batch_count: int
    total_quantity: int
    stock_status: StockStatus
    earliest_expiry: Optional[date] = None
    updated_at: datetime


class InventoryListOut(BaseModel):
    inventory: List[InventoryRowOut]
    count: int


class InventorySummaryOut(BaseModel):
    total_items: int
    total_units: int
    in_stock: int
    low_stock: int
    out_of_stock: int
    expiring_soon: int
    expired: int
    as_of: date
    window_days: int
