from datetime import date, datetime, time, timedelta
from typing import List, Optional

from loguru import logger
from sqlalchemy import func
from sqlalchemy.orm import Session

from meditrack.clinics import service as clinic_service
from meditrack.errors import NotFoundError, ValidationError
from meditrack.lifecycle import only_active, state_for
from meditrack.stock.items.models import Item

from . import schemas
from .models import Alert, AlertRule, RuleType, Severity
from .notifications import NotificationDispatcher, default_dispatcher, notify

THRESHOLD_RULES = (RuleType.LOW_STOCK, RuleType.EXPIRING_SOON)


# ==========================================================
# ALERT RULES
# ==========================================================
def _check_rule_item(db: Session, clinic_id: int, item_id: Optional[int]):
    if item_id is None:
        return

    item = (
        only_active(db.query(Item), Item)
        .filter(Item.id == item_id, Item.clinic_id == clinic_id)
        .first()
    )
    if not item:
        raise ValidationError(
            f"Item {item_id} is not an active item of this clinic",
            {"item_id": item_id},
        )


def _check_threshold(rule_type: RuleType, threshold: Optional[int]):
    if threshold is not None and threshold < 0:
        raise ValidationError("Threshold must be zero or greater", {"threshold": threshold})
    if threshold is not None and rule_type not in THRESHOLD_RULES:
        raise ValidationError(f"{rule_type.value} rules do not take a threshold")


def create_rule(db: Session, clinic_id: int, rule: schemas.AlertRuleCreate, actor_id: int):
    clinic_service.get_clinic(db, clinic_id)
    _check_rule_item(db, clinic_id, rule.item_id)
    _check_threshold(rule.type, rule.threshold)

    db_rule = AlertRule(
        clinic_id=clinic_id,
        item_id=rule.item_id,
        name=rule.name.strip(),
        type=rule.type,
        threshold=rule.threshold,
        recipients=list(rule.recipients),
        channels=[c.value for c in rule.channels],
        created_by=actor_id,
    )
    db.add(db_rule)
    db.commit()
    db.refresh(db_rule)

    logger.info(
        f"Alert rule created: id={db_rule.id} clinic={clinic_id} type={db_rule.type.value} "
        f"item={db_rule.item_id or 'all'} by={actor_id}"
    )
    return db_rule


def get_rule(db: Session, clinic_id: int, rule_id: int, include_inactive: bool = False):
    query = db.query(AlertRule).filter(AlertRule.id == rule_id, AlertRule.clinic_id == clinic_id)
    if not include_inactive:
        query = only_active(query, AlertRule)

    rule = query.first()
    if not rule:
        raise NotFoundError("Alert rule", rule_id)
    return rule


def list_rules(
    db: Session,
    clinic_id: int,
    rule_type: Optional[RuleType] = None,
    item_id: Optional[int] = None,
    include_inactive: bool = False,
):
    query = db.query(AlertRule).filter(AlertRule.clinic_id == clinic_id)

    if not include_inactive:
        query = only_active(query, AlertRule)
    if rule_type:
        query = query.filter(AlertRule.type == rule_type)
    if item_id is not None:
        query = query.filter(AlertRule.item_id == item_id)

    return query.order_by(AlertRule.id.asc()).all()


def update_rule(db: Session, clinic_id: int, rule_id: int, rule: schemas.AlertRuleUpdate):
    db_rule = get_rule(db, clinic_id, rule_id)
    update_data = rule.model_dump(exclude_unset=True)

    if "name" in update_data and update_data["name"] is None:
        raise ValidationError("Rule name cannot be cleared", {"fields": ["name"]})
    if "item_id" in update_data:
        _check_rule_item(db, clinic_id, update_data["item_id"])
    if "threshold" in update_data:
        _check_threshold(db_rule.type, update_data["threshold"])
    if update_data.get("name") is not None:
        update_data["name"] = update_data["name"].strip()
    if "channels" in update_data:
        update_data["channels"] = [c.value for c in rule.channels or []]
    if "recipients" in update_data:
        update_data["recipients"] = list(update_data["recipients"] or [])

    for field, value in update_data.items():
        setattr(db_rule, field, value)

    db.commit()
    db.refresh(db_rule)

    logger.info(f"Alert rule {rule_id} updated: {sorted(update_data)}")
    return db_rule


def update_rule_status(db: Session, clinic_id: int, rule_id: int, is_active: bool):
    db_rule = get_rule(db, clinic_id, rule_id, include_inactive=True)

    db_rule.state = state_for(is_active)
    db.commit()
    db.refresh(db_rule)

    logger.info(f"Alert rule {rule_id} state set to {db_rule.state.value}")
    return db_rule


# ==========================================================
# ALERTS
# ==========================================================
def get_alert(db: Session, clinic_id: int, alert_id: int):
    alert = db.query(Alert).filter(Alert.id == alert_id, Alert.clinic_id == clinic_id).first()
    if not alert:
        raise NotFoundError("Alert", alert_id)
    return alert


def list_alerts(
    db: Session,
    clinic_id: int,
    alert_type: Optional[RuleType] = None,
    severity: Optional[Severity] = None,
    is_read: Optional[bool] = None,
    is_resolved: Optional[bool] = None,
    item_id: Optional[int] = None,
    rule_id: Optional[int] = None,
    include_test: bool = True,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    skip: int = 0,
    limit: int = 100,
):
    query = db.query(Alert).filter(Alert.clinic_id == clinic_id)

    if alert_type:
        query = query.filter(Alert.type == alert_type)
    if severity:
        query = query.filter(Alert.severity == severity)
    if is_read is not None:
        query = query.filter(Alert.is_read.is_(is_read))
    if is_resolved is not None:
        query = query.filter(Alert.is_resolved.is_(is_resolved))
    if item_id is not None:
        query = query.filter(Alert.item_id == item_id)
    if rule_id is not None:
        query = query.filter(Alert.rule_id == rule_id)
    if not include_test:
        query = query.filter(Alert.is_test.is_(False))

    if start_date:
        query = query.filter(Alert.created_at >= datetime.combine(start_date, time.min))
    if end_date:
        query = query.filter(Alert.created_at <= datetime.combine(end_date, time.max))

    return (
        query.order_by(Alert.created_at.desc(), Alert.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def _apply_read(alert: Alert, now: datetime) -> bool:
    # One-directional: a resolved alert is already read
    if alert.is_resolved or alert.is_read:
        return False
    alert.is_read = True
    alert.read_at = now
    return True


def mark_read(db: Session, clinic_id: int, alert_id: int, now: Optional[datetime] = None):
    alert = get_alert(db, clinic_id, alert_id)

    if _apply_read(alert, now or datetime.utcnow()):
        db.commit()
        db.refresh(alert)
        logger.info(f"Alert {alert_id} marked read")

    return alert


def mark_many_read(db: Session, clinic_id: int, alert_ids: List[int], now: Optional[datetime] = None) -> int:
    wanted = set(alert_ids)
    if not wanted:
        raise ValidationError("No alert ids given")

    alerts = db.query(Alert).filter(Alert.clinic_id == clinic_id, Alert.id.in_(wanted)).all()

    missing = wanted - {a.id for a in alerts}
    if missing:
        raise ValidationError(
            "Some alerts were not found in this clinic",
            {"missing_ids": sorted(missing)},
        )

    now = now or datetime.utcnow()
    updated = sum(1 for alert in alerts if _apply_read(alert, now))
    db.commit()

    logger.info(f"Clinic {clinic_id}: {updated} of {len(alerts)} alerts marked read")
    return updated


def resolve(
    db: Session,
    clinic_id: int,
    alert_id: int,
    actor_id: int,
    now: Optional[datetime] = None,
):
    """Resolving implies reading; both flags land in the same commit."""
    alert = get_alert(db, clinic_id, alert_id)
    if alert.is_resolved:
        return alert

    now = now or datetime.utcnow()
    if not alert.is_read:
        alert.is_read = True
        alert.read_at = now
    alert.is_resolved = True
    alert.resolved_at = now
    alert.resolved_by = actor_id

    db.commit()
    db.refresh(alert)

    logger.info(f"Alert {alert_id} resolved by {actor_id}")
    return alert


def send_test_alert(
    db: Session,
    clinic_id: int,
    rule_id: int,
    actor_id: int,
    dispatcher: Optional[NotificationDispatcher] = None,
):
    rule = get_rule(db, clinic_id, rule_id)

    alert = Alert(
        rule_id=rule.id,
        clinic_id=clinic_id,
        item_id=rule.item_id,
        type=rule.type,
        severity=Severity.LOW,
        title=f"Test alert: {rule.name}",
        message=f"Test notification for rule '{rule.name}'. No action required.",
        is_test=True,
        data={"test": True, "requested_by": actor_id},
    )
    db.add(alert)
    db.commit()
    db.refresh(alert)

    logger.info(f"Test alert {alert.id} created for rule {rule_id} by {actor_id}")
    try:
        notify(dispatcher or default_dispatcher, alert, rule)
    except Exception as exc:
        logger.error(f"Notification hand-off failed for test alert {alert.id}: {exc}")
    return alert


def alert_stats(db: Session, clinic_id: int, now: Optional[datetime] = None):
    """Dashboard counters. Test alerts are left out."""
    now = now or datetime.utcnow()

    base = db.query(Alert).filter(Alert.clinic_id == clinic_id, Alert.is_test.is_(False))

    total = base.count()
    unread = base.filter(Alert.is_read.is_(False)).count()
    unresolved = base.filter(Alert.is_resolved.is_(False)).count()
    last_24h = base.filter(Alert.created_at >= now - timedelta(hours=24)).count()

    by_type_rows = (
        db.query(Alert.type, func.count(Alert.id))
        .filter(
            Alert.clinic_id == clinic_id,
            Alert.is_test.is_(False),
            Alert.created_at >= now - timedelta(days=7),
        )
        .group_by(Alert.type)
        .all()
    )

    severity_rows = (
        db.query(Alert.severity, func.count(Alert.id))
        .filter(
            Alert.clinic_id == clinic_id,
            Alert.is_test.is_(False),
            Alert.is_resolved.is_(False),
        )
        .group_by(Alert.severity)
        .all()
    )

    active_rules = (
        only_active(db.query(AlertRule), AlertRule)
        .filter(AlertRule.clinic_id == clinic_id)
        .count()
    )

    return {
        "total": total,
        "unread": unread,
        "unresolved": unresolved,
        "last_24h": last_24h,
        "by_type_7d": {t.value: 0 for t in RuleType} | {t.value: n for t, n in by_type_rows},
        "unresolved_by_severity": {s.value: 0 for s in Severity} | {s.value: n for s, n in severity_rows},
        "active_rules": active_rules,
    }
