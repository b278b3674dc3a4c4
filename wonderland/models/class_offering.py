"""Class offering model definitions."""

from sqlalchemy import Column, Float, Index, Integer, String
from wonderland.database import Base

PENDING_STATUS = "pending"
APPROVED_STATUS = "approved"
REJECTED_STATUS = "rejected"


class ClassOffering(Base):
    """Represents a class an instructor offers, with its seat counters."""
    __tablename__ = "classes"
    __table_args__ = (
        Index("idx_classes_status_enrolled", "status", "enrolled"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    image_url = Column(String)
    instructor_email = Column(String, index=True, nullable=False)
    instructor_name = Column(String)
    price = Column(Float, nullable=False, default=0)
    available_seats = Column(Integer, nullable=False, default=0)
    enrolled = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default=PENDING_STATUS)
