from typing import List, Protocol

from loguru import logger

from .models import Alert, AlertRule, Channel


class NotificationDispatcher(Protocol):
    """Delivery collaborator. Success or failure of delivery is not tracked here."""

    def dispatch(self, alert: Alert, recipients: List[str], channels: List[Channel]) -> None:
        ...


class LogDispatcher:
    def dispatch(self, alert: Alert, recipients: List[str], channels: List[Channel]) -> None:
        logger.info(
            f"Alert {alert.id} ({alert.type.value}/{alert.severity.value}) handed off "
            f"to {recipients or '-'} via {[c.value for c in channels] or '-'}"
        )


class CollectingDispatcher:
    """Keeps dispatched alerts in memory; handy for scripts and tests."""

    def __init__(self):
        self.sent = []

    def dispatch(self, alert: Alert, recipients: List[str], channels: List[Channel]) -> None:
        self.sent.append((alert.id, list(recipients), list(channels)))


def rule_channels(rule: AlertRule) -> List[Channel]:
    return [Channel(c) for c in (rule.channels or [])]


def notify(dispatcher: NotificationDispatcher, alert: Alert, rule: AlertRule) -> None:
    dispatcher.dispatch(alert, list(rule.recipients or []), rule_channels(rule))


default_dispatcher = LogDispatcher()
