from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from meditrack.database import Base
from meditrack.lifecycle import LifecycleMixin


class Item(LifecycleMixin, Base):
    __tablename__ = "items"

    id = Column(Integer, primary_key=True, index=True)

    clinic_id = Column(
        Integer,
        ForeignKey("clinics.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True, index=True)
    unit = Column(String(50), nullable=False, default="units")

    # Low-stock threshold; a total equal to it already counts as low
    threshold = Column(Integer, nullable=False, default=10)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    clinic = relationship("Clinic", back_populates="items")
    batches = relationship("Batch", back_populates="item", order_by="Batch.id")

    __table_args__ = (
        CheckConstraint("threshold >= 0", name="ck_items_threshold_non_negative"),
    )
