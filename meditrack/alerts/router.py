from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from meditrack.database import get_db
from meditrack.identity import Identity, get_identity, role_required

from . import evaluator, schemas, service
from .models import RuleType, Severity

router = APIRouter()


def _evaluation_out(results) -> schemas.EvaluationOut:
    created = [alert.id for r in results for alert in r.created]
    return schemas.EvaluationOut(
        rules_evaluated=len(results),
        created=len(created),
        suppressed=sum(r.suppressed for r in results),
        alert_ids=created,
    )


# ==========================================================
# RULES
# ==========================================================
@router.post("/rules", response_model=schemas.AlertRuleOut, status_code=status.HTTP_201_CREATED)
def create_rule(
    rule: schemas.AlertRuleCreate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(role_required(["lead"])),
):
    return service.create_rule(db, identity.clinic_id, rule, identity.actor_id)


@router.get("/rules", response_model=List[schemas.AlertRuleOut])
def list_rules(
    type: Optional[RuleType] = None,
    item_id: Optional[int] = None,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    return service.list_rules(
        db, identity.clinic_id, rule_type=type, item_id=item_id, include_inactive=include_inactive
    )


@router.get("/rules/{rule_id}", response_model=schemas.AlertRuleOut)
def get_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    return service.get_rule(db, identity.clinic_id, rule_id)


@router.patch("/rules/{rule_id}", response_model=schemas.AlertRuleOut)
def update_rule(
    rule_id: int,
    rule: schemas.AlertRuleUpdate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(role_required(["lead"])),
):
    return service.update_rule(db, identity.clinic_id, rule_id, rule)


@router.put("/rules/{rule_id}/status", response_model=schemas.AlertRuleOut)
def update_rule_status(
    rule_id: int,
    payload: schemas.AlertRuleStatusUpdate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(role_required(["lead"])),
):
    return service.update_rule_status(db, identity.clinic_id, rule_id, payload.is_active)


@router.post("/rules/{rule_id}/evaluate", response_model=schemas.EvaluationOut)
def evaluate_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    rule = service.get_rule(db, identity.clinic_id, rule_id)
    return _evaluation_out([evaluator.run_rule(db, rule)])


@router.post("/rules/{rule_id}/test", response_model=schemas.AlertOut, status_code=status.HTTP_201_CREATED)
def send_test_alert(
    rule_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(role_required(["lead"])),
):
    return service.send_test_alert(db, identity.clinic_id, rule_id, identity.actor_id)


# ==========================================================
# EVALUATION + STATS
# ==========================================================
@router.post("/evaluate", response_model=schemas.EvaluationOut)
def evaluate_clinic(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    """Run every active rule of the caller's clinic now."""
    return _evaluation_out(evaluator.run_clinic_evaluation(db, identity.clinic_id))


@router.get("/stats/summary", response_model=schemas.AlertStatsOut)
def alert_stats(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    return service.alert_stats(db, identity.clinic_id)


# ==========================================================
# ALERTS
# ==========================================================
@router.get("/", response_model=List[schemas.AlertOut])
def list_alerts(
    type: Optional[RuleType] = None,
    severity: Optional[Severity] = None,
    is_read: Optional[bool] = None,
    is_resolved: Optional[bool] = None,
    item_id: Optional[int] = None,
    rule_id: Optional[int] = None,
    include_test: bool = True,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    return service.list_alerts(
        db,
        identity.clinic_id,
        alert_type=type,
        severity=severity,
        is_read=is_read,
        is_resolved=is_resolved,
        item_id=item_id,
        rule_id=rule_id,
        include_test=include_test,
        start_date=start_date,
        end_date=end_date,
        skip=skip,
        limit=limit,
    )


@router.patch("/bulk/read", response_model=schemas.BulkReadResult)
def mark_many_read(
    payload: schemas.BulkReadRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    return {"updated": service.mark_many_read(db, identity.clinic_id, payload.alert_ids)}


@router.get("/{alert_id}", response_model=schemas.AlertOut)
def get_alert(
    alert_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    return service.get_alert(db, identity.clinic_id, alert_id)


@router.patch("/{alert_id}/read", response_model=schemas.AlertOut)
def mark_read(
    alert_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    return service.mark_read(db, identity.clinic_id, alert_id)


@router.patch("/{alert_id}/resolve", response_model=schemas.AlertOut)
def resolve(
    alert_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    return service.resolve(db, identity.clinic_id, alert_id, identity.actor_id)
