from sqlalchemy import Column, Integer, String, Numeric, Date, DateTime, Boolean, ForeignKey, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base

class StaffLoan(Base):
    """
    Loan or salary advance granted to a staff member.

    Flipped to is_paid=True exactly once, by the settlement that recovers it.
    """
    __tablename__ = "staff_loans"

    id = Column(Integer, primary_key=True, index=True)
    staff_kind = Column(String, nullable=False)
    staff_id = Column(Integer, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    loan_date = Column(Date, nullable=False)
    reason = Column(String, nullable=True)

    is_paid = Column(Boolean, default=False, nullable=False)
    deducted_date = Column(Date, nullable=True)
    payment_id = Column(Integer, ForeignKey("salary_payments.id"), nullable=True)

    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    payment = relationship("SalaryPayment", back_populates="loans")

    __table_args__ = (
        Index("ix_staff_loans_staff", "staff_kind", "staff_id", "is_paid"),
    )
