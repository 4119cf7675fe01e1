import enum
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    false,
)
from sqlalchemy.orm import relationship

from meditrack.database import Base
from meditrack.lifecycle import LifecycleMixin


class RuleType(str, enum.Enum):
    LOW_STOCK = "LOW_STOCK"
    EXPIRING_SOON = "EXPIRING_SOON"
    EXPIRED = "EXPIRED"
    CUSTOM = "CUSTOM"


class Severity(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class Channel(str, enum.Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"
    IN_APP = "IN_APP"


class AlertState(str, enum.Enum):
    OPEN = "OPEN"
    READ = "READ"
    RESOLVED = "RESOLVED"


class AlertRule(LifecycleMixin, Base):
    __tablename__ = "alert_rules"

    id = Column(Integer, primary_key=True, index=True)

    clinic_id = Column(
        Integer,
        ForeignKey("clinics.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # NULL means the rule covers every item in the clinic
    item_id = Column(
        Integer,
        ForeignKey("items.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    name = Column(String(200), nullable=False)
    type = Column(Enum(RuleType, name="alert_rule_type"), nullable=False)

    # Quantity for LOW_STOCK, day count for EXPIRING_SOON
    threshold = Column(Integer, nullable=True)

    recipients = Column(JSON, nullable=False, default=list)
    channels = Column(JSON, nullable=False, default=list)

    created_by = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    item = relationship("Item")
    alerts = relationship("Alert", back_populates="rule")

    @property
    def is_clinic_wide(self) -> bool:
        return self.item_id is None


class Alert(Base):
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, index=True)

    rule_id = Column(
        Integer,
        ForeignKey("alert_rules.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    clinic_id = Column(Integer, ForeignKey("clinics.id", ondelete="RESTRICT"), nullable=False, index=True)

    # Item the condition was detected on; NULL only for test alerts of clinic-wide rules
    item_id = Column(Integer, ForeignKey("items.id", ondelete="RESTRICT"), nullable=True, index=True)

    type = Column(Enum(RuleType, name="alert_rule_type"), nullable=False)
    severity = Column(Enum(Severity, name="alert_severity"), nullable=False, default=Severity.MEDIUM)

    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)

    is_read = Column(Boolean, nullable=False, default=False)
    is_resolved = Column(Boolean, nullable=False, default=False)
    is_test = Column(Boolean, nullable=False, default=False)

    # Snapshot taken when the alert fired; never recomputed
    data = Column(JSON, nullable=True)

    read_at = Column(DateTime, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    resolved_by = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    rule = relationship("AlertRule", back_populates="alerts")
    item = relationship("Item")

    __table_args__ = (
        # At most one open (unresolved) alert per rule + item + type
        Index(
            "uq_alerts_open_rule_item_type",
            "rule_id",
            "item_id",
            "type",
            unique=True,
            sqlite_where=(is_resolved == false()) & (is_test == false()),
            postgresql_where=(is_resolved == false()) & (is_test == false()),
        ),
    )

    @property
    def state(self) -> AlertState:
        if self.is_resolved:
            return AlertState.RESOLVED
        if self.is_read:
            return AlertState.READ
        return AlertState.OPEN
