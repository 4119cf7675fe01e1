from datetime import datetime
from typing import Optional

import pytz
from pydantic import BaseModel, ConfigDict, field_validator

from meditrack.lifecycle import LifecycleState


def check_timezone(value: Optional[str]) -> Optional[str]:
    if value is not None and value not in pytz.all_timezones_set:
        raise ValueError(f"Unknown timezone '{value}'")
    return value


class ClinicCreate(BaseModel):
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    timezone: str = "UTC"

    @field_validator("timezone")
    @classmethod
    def valid_timezone(cls, v):
        return check_timezone(v)


class ClinicUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    timezone: Optional[str] = None

    @field_validator("timezone")
    @classmethod
    def valid_timezone(cls, v):
        return check_timezone(v)


class ClinicOut(BaseModel):
    id: int
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    timezone: str
    state: LifecycleState
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
