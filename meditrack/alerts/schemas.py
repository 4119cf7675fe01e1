from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from meditrack.lifecycle import LifecycleState

from .models import AlertState, Channel, RuleType, Severity


# -------------------------------
# Rules
# -------------------------------
class AlertRuleCreate(BaseModel):
    name: str = Field(min_length=1)
    type: RuleType
    item_id: Optional[int] = None
    threshold: Optional[int] = None
    recipients: List[str] = []
    channels: List[Channel] = [Channel.IN_APP]


class AlertRuleUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    item_id: Optional[int] = None
    threshold: Optional[int] = None
    recipients: Optional[List[str]] = None
    channels: Optional[List[Channel]] = None


class AlertRuleStatusUpdate(BaseModel):
    is_active: bool


class AlertRuleOut(BaseModel):
    id: int
    clinic_id: int
    item_id: Optional[int] = None
    name: str
    type: RuleType
    threshold: Optional[int] = None
    recipients: List[str]
    channels: List[Channel]
    created_by: int
    state: LifecycleState
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# -------------------------------
# Alerts
# -------------------------------
class AlertOut(BaseModel):
    id: int
    rule_id: int
    clinic_id: int
    item_id: Optional[int] = None
    type: RuleType
    severity: Severity
    title: str
    message: str
    state: AlertState
    is_read: bool
    is_resolved: bool
    is_test: bool
    data: Optional[Dict[str, Any]] = None
    read_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BulkReadRequest(BaseModel):
    alert_ids: List[int] = Field(min_length=1)


class BulkReadResult(BaseModel):
    updated: int


class AlertStatsOut(BaseModel):
    total: int
    unread: int
    unresolved: int
    last_24h: int
    by_type_7d: Dict[str, int]
    unresolved_by_severity: Dict[str, int]
    active_rules: int


class EvaluationOut(BaseModel):
    rules_evaluated: int
    created: int
    suppressed: int
    alert_ids: List[int]
