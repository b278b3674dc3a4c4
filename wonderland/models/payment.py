"""Payment ledger model definitions."""

from sqlalchemy import Column, DateTime, Float, Index, Integer, String, func
from wonderland.database import Base


class Payment(Base):
    """Append-only record of a paid enrollment."""
    __tablename__ = "payments"
    __table_args__ = (
        # One payment per consumed selection; commit retries rely on it.
        Index("idx_payments_selected_class", "selected_class_id", unique=True),
        Index("idx_payments_transaction", "transaction_id", unique=True),
        Index("idx_payments_student", "student_email"),
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True, index=True)
    student_email = Column(String, nullable=False)
    class_id = Column(Integer, nullable=False)
    class_name = Column(String)
    selected_class_id = Column(Integer, nullable=False)
    amount = Column(Float, nullable=False)
    transaction_id = Column(String)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
