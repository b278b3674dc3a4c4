"""Selection model definitions."""

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint, func
from wonderland.database import Base


class Selection(Base):
    """A class a student has picked but not paid for yet."""
    __tablename__ = "selected_classes"
    __table_args__ = (
        UniqueConstraint("student_email", "class_id", name="uq_selected_classes_student_class"),
        # Ids are the idempotency key for payments, so SQLite must not reuse them.
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True, index=True)
    student_email = Column(String, index=True, nullable=False)
    class_id = Column(Integer, ForeignKey("classes.id"), nullable=False)
    class_name = Column(String)
    price = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
