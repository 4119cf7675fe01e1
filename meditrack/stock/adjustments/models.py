import enum
from datetime import datetime

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String, Text, event
from sqlalchemy.orm import relationship

from meditrack.database import Base
from meditrack.errors import ImmutableRecordError


class AdjustmentType(str, enum.Enum):
    RECEIVE = "RECEIVE"
    DISPENSE = "DISPENSE"
    DAMAGE = "DAMAGE"
    EXPIRE = "EXPIRE"
    CORRECTION = "CORRECTION"


# Types whose delta must be negative
OUTBOUND_TYPES = frozenset({AdjustmentType.DISPENSE, AdjustmentType.DAMAGE, AdjustmentType.EXPIRE})


class StockAdjustment(Base):
    """Append-only ledger row. Corrections are new rows, never edits."""

    __tablename__ = "stock_adjustments"

    id = Column(Integer, primary_key=True, index=True)

    item_id = Column(
        Integer,
        ForeignKey("items.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # NULL for item-level corrections
    batch_id = Column(
        Integer,
        ForeignKey("batches.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    type = Column(Enum(AdjustmentType, name="adjustment_type"), nullable=False, index=True)

    # Signed quantity delta
    delta = Column(Integer, nullable=False)

    reason = Column(String(255), nullable=False)
    notes = Column(Text, nullable=True)

    actor_id = Column(Integer, nullable=False, index=True)

    reversal_of_id = Column(
        Integer,
        ForeignKey("stock_adjustments.id", ondelete="RESTRICT"),
        nullable=True,
        unique=True,
    )

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    item = relationship("Item")
    batch = relationship("Batch")
    reversal_of = relationship("StockAdjustment", remote_side=[id])


@event.listens_for(StockAdjustment, "before_update")
def _block_adjustment_update(mapper, connection, target):
    raise ImmutableRecordError(
        f"Stock adjustment {target.id} is immutable; record a correction instead",
        {"adjustment_id": target.id},
    )


@event.listens_for(StockAdjustment, "before_delete")
def _block_adjustment_delete(mapper, connection, target):
    raise ImmutableRecordError(
        f"Stock adjustment {target.id} cannot be deleted; record a correction instead",
        {"adjustment_id": target.id},
    )
