"""
Alert rule evaluator.

Reads derived stock state and turns rule matches into Alert rows. Evaluation
is decoupled from ledger writes: it runs on a schedule or on request, and it
is idempotent. An unresolved alert for the same rule + item + type
suppresses a new one, so repeated runs never pile up duplicates. Resolving
the alert makes the condition eligible to fire again.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from meditrack.clinics import service as clinic_service
from meditrack.config import settings
from meditrack.lifecycle import only_active
from meditrack.stock.batches import service as batch_service
from meditrack.stock.inventory.service import (
    StockStatus,
    days_until,
    expired_batches,
    expiring_batches,
    summarize_batches,
)
from meditrack.stock.items.models import Item

from .models import Alert, AlertRule, RuleType, Severity
from .notifications import NotificationDispatcher, default_dispatcher, notify


@dataclass(frozen=True)
class AlertCandidate:
    rule_id: int
    clinic_id: int
    item_id: int
    type: RuleType
    severity: Severity
    title: str
    message: str
    data: Dict[str, Any]


@dataclass
class EvaluationResult:
    rule_id: int
    created: List[Alert] = field(default_factory=list)
    suppressed: int = 0


def expiry_window(rule: AlertRule) -> int:
    return rule.threshold if rule.threshold is not None else settings.EXPIRY_WARNING_DAYS


def _batch_snapshot(batch, today: date) -> Dict[str, Any]:
    return {
        "batch_id": batch.id,
        "batch_number": batch.batch_number,
        "quantity": batch.quantity,
        "expiry_date": batch.expiry_date.isoformat(),
        "days_until_expiry": days_until(batch.expiry_date, today),
    }


# --------------------------
# Pure rule matching
# --------------------------
def candidate_for(rule: AlertRule, item: Item, batches, today: date) -> Optional[AlertCandidate]:
    if rule.type == RuleType.LOW_STOCK:
        threshold = rule.threshold if rule.threshold is not None else item.threshold
        state = summarize_batches(item.id, batches, threshold)
        if state.stock_status == StockStatus.IN_STOCK:
            return None

        out = state.stock_status == StockStatus.OUT_OF_STOCK
        return AlertCandidate(
            rule_id=rule.id,
            clinic_id=rule.clinic_id,
            item_id=item.id,
            type=RuleType.LOW_STOCK,
            severity=Severity.HIGH if out else Severity.MEDIUM,
            title=f"{'Out of stock' if out else 'Low stock'}: {item.name}",
            message=(
                f"{item.name} has {state.total_quantity} {item.unit} available "
                f"(threshold {threshold})."
            ),
            data={
                "item_id": item.id,
                "item_name": item.name,
                "total_quantity": state.total_quantity,
                "threshold": threshold,
                "stock_status": state.stock_status.value,
                "earliest_expiry": state.earliest_expiry.isoformat() if state.earliest_expiry else None,
            },
        )

    if rule.type == RuleType.EXPIRING_SOON:
        window = expiry_window(rule)
        matches = expiring_batches(batches, today, window)
        if not matches:
            return None

        quantity = sum(b.quantity for b in matches)
        earliest = min(b.expiry_date for b in matches)
        return AlertCandidate(
            rule_id=rule.id,
            clinic_id=rule.clinic_id,
            item_id=item.id,
            type=RuleType.EXPIRING_SOON,
            severity=Severity.MEDIUM,
            title=f"Expiring soon: {item.name}",
            message=(
                f"{quantity} {item.unit} of {item.name} in {len(matches)} batch(es) expire "
                f"within {window} days (earliest {earliest.isoformat()})."
            ),
            data={
                "item_id": item.id,
                "item_name": item.name,
                "window_days": window,
                "as_of": today.isoformat(),
                "quantity": quantity,
                "earliest_expiry": earliest.isoformat(),
                "batches": [_batch_snapshot(b, today) for b in matches],
            },
        )

    if rule.type == RuleType.EXPIRED:
        matches = expired_batches(batches, today)
        if not matches:
            return None

        quantity = sum(b.quantity for b in matches)
        return AlertCandidate(
            rule_id=rule.id,
            clinic_id=rule.clinic_id,
            item_id=item.id,
            type=RuleType.EXPIRED,
            severity=Severity.HIGH,
            title=f"Expired stock: {item.name}",
            message=(
                f"{quantity} {item.unit} of {item.name} in {len(matches)} batch(es) "
                f"are past their expiry date."
            ),
            data={
                "item_id": item.id,
                "item_name": item.name,
                "as_of": today.isoformat(),
                "quantity": quantity,
                "batches": [_batch_snapshot(b, today) for b in matches],
            },
        )

    # CUSTOM rules only carry manual and test alerts
    return None


# --------------------------
# Scoped evaluation (read-only)
# --------------------------
def rule_items(db: Session, rule: AlertRule) -> List[Item]:
    query = only_active(db.query(Item), Item).filter(Item.clinic_id == rule.clinic_id)
    if rule.item_id is not None:
        query = query.filter(Item.id == rule.item_id)
    return query.order_by(Item.id.asc()).all()


def evaluate_item(db: Session, rule: AlertRule, item: Item, today: date) -> Optional[AlertCandidate]:
    batches = batch_service.load_item_batches(db, [item.id])[item.id]
    return candidate_for(rule, item, batches, today)


def evaluate(db: Session, rule: AlertRule, today: date) -> List[AlertCandidate]:
    """Candidates for every item in the rule's scope. An item rule yields at most one."""
    items = rule_items(db, rule)
    grouped = batch_service.load_item_batches(db, [i.id for i in items])

    candidates = []
    for item in items:
        candidate = candidate_for(rule, item, grouped[item.id], today)
        if candidate is not None:
            candidates.append(candidate)
    return candidates


# --------------------------
# Persistence with deduplication
# --------------------------
def find_open_alert(db: Session, rule_id: int, item_id: int, rule_type: RuleType) -> Optional[Alert]:
    return (
        db.query(Alert)
        .filter(
            Alert.rule_id == rule_id,
            Alert.item_id == item_id,
            Alert.type == rule_type,
            Alert.is_resolved.is_(False),
            Alert.is_test.is_(False),
        )
        .first()
    )


def _persist(db: Session, candidate: AlertCandidate) -> Optional[Alert]:
    if find_open_alert(db, candidate.rule_id, candidate.item_id, candidate.type):
        return None

    alert = Alert(
        rule_id=candidate.rule_id,
        clinic_id=candidate.clinic_id,
        item_id=candidate.item_id,
        type=candidate.type,
        severity=candidate.severity,
        title=candidate.title,
        message=candidate.message,
        data=candidate.data,
    )
    db.add(alert)
    try:
        db.commit()
    except IntegrityError:
        # Another evaluator inserted the same open alert first
        db.rollback()
        return None

    db.refresh(alert)
    return alert


def run_rule(
    db: Session,
    rule: AlertRule,
    today: Optional[date] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> EvaluationResult:
    result = EvaluationResult(rule_id=rule.id)
    if not rule.is_active:
        return result

    if today is None:
        today = clinic_service.clinic_today(clinic_service.get_clinic(db, rule.clinic_id))
    dispatcher = dispatcher or default_dispatcher

    for candidate in evaluate(db, rule, today):
        alert = _persist(db, candidate)
        if alert is None:
            result.suppressed += 1
            logger.debug(
                f"Alert suppressed: rule={candidate.rule_id} item={candidate.item_id} "
                f"type={candidate.type.value} (open alert exists)"
            )
            continue

        result.created.append(alert)
        logger.info(
            f"Alert {alert.id} created: rule={alert.rule_id} item={alert.item_id} "
            f"type={alert.type.value} severity={alert.severity.value}"
        )

        try:
            notify(dispatcher, alert, rule)
        except Exception as exc:
            # The alert is stored; delivery outcome is outside the core
            logger.error(f"Notification hand-off failed for alert {alert.id}: {exc}")

    return result


def run_clinic_evaluation(
    db: Session,
    clinic_id: int,
    today: Optional[date] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> List[EvaluationResult]:
    clinic = clinic_service.get_clinic(db, clinic_id)
    today = today or clinic_service.clinic_today(clinic)

    rules = (
        only_active(db.query(AlertRule), AlertRule)
        .filter(AlertRule.clinic_id == clinic_id)
        .order_by(AlertRule.id.asc())
        .all()
    )

    results = [run_rule(db, rule, today=today, dispatcher=dispatcher) for rule in rules]

    logger.info(
        f"Clinic {clinic_id} evaluated {len(rules)} rules as of {today}: "
        f"{sum(len(r.created) for r in results)} created, "
        f"{sum(r.suppressed for r in results)} suppressed"
    )
    return results


def run_all_clinics(
    db: Session,
    now: Optional[datetime] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> List[EvaluationResult]:
    results = []
    for clinic in clinic_service.list_active_clinics(db):
        today = clinic_service.clinic_today(clinic, now)
        results.extend(run_clinic_evaluation(db, clinic.id, today=today, dispatcher=dispatcher))
    return results
