from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from meditrack.database import Base


class Batch(Base):
    """
    Physical stock of one item. ``quantity`` is written only by the adjustment
    ledger; it always equals the sum of the batch's ledger deltas.
    """

    __tablename__ = "batches"

    id = Column(Integer, primary_key=True, index=True)

    item_id = Column(
        Integer,
        ForeignKey("items.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    batch_number = Column(String(100), nullable=False)
    lot_number = Column(String(100), nullable=True)
    expiry_date = Column(Date, nullable=True, index=True)

    quantity = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    item = relationship("Item", back_populates="batches")

    __table_args__ = (
        UniqueConstraint("item_id", "batch_number", name="uq_batches_item_batch_number"),
        CheckConstraint("quantity >= 0", name="ck_batches_quantity_non_negative"),
    )
