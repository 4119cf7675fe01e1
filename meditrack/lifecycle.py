import enum

from sqlalchemy import Column, Enum


class LifecycleState(str, enum.Enum):
    ACTIVE = "ACTIVE"
    DEACTIVATED = "DEACTIVATED"


class LifecycleMixin:
    """Explicit soft-delete state shared by clinics, items and alert rules."""

    state = Column(
        Enum(LifecycleState, name="lifecycle_state"),
        default=LifecycleState.ACTIVE,
        nullable=False,
        index=True,
    )

    @property
    def is_active(self) -> bool:
        return self.state == LifecycleState.ACTIVE


def only_active(query, model):
    """Every query path that must ignore soft-deleted rows goes through here."""
    return query.filter(model.state == LifecycleState.ACTIVE)


def state_for(is_active: bool) -> LifecycleState:
    return LifecycleState.ACTIVE if is_active else LifecycleState.DEACTIVATED
