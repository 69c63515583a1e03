from sqlalchemy import Column, Integer, String, Numeric, Date, DateTime, Text, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import enum

class PaymentStatus(str, enum.Enum):
    PAID = "paid"

class PaymentMethod(str, enum.Enum):
    BANK_TRANSFER = "Bank Transfer"
    CASH = "Cash"
    CHEQUE = "Cheque"
    MOBILE_MONEY = "Mobile Money"

class SalaryPayment(Base):
    """Append-only snapshot of a committed settlement."""
    __tablename__ = "salary_payments"

    id = Column(Integer, primary_key=True, index=True)
    staff_kind = Column(String, nullable=False)
    staff_id = Column(Integer, nullable=False)

    salary_period = Column(Date, nullable=False)
    payment_date = Column(Date, nullable=False)

    base_salary = Column(Numeric(12, 2), nullable=False)
    allowances = Column(Numeric(12, 2), nullable=False)
    gross_amount = Column(Numeric(12, 2), nullable=False)
    tax_rate = Column(Numeric(5, 2), nullable=False)
    tax_amount = Column(Numeric(12, 2), nullable=False)
    pension_rate = Column(Numeric(5, 2), nullable=False)
    pension_amount = Column(Numeric(12, 2), nullable=False)
    deductions = Column(Numeric(12, 2), nullable=False)  # other deductions
    loan_deduction = Column(Numeric(12, 2), nullable=False)
    total_deductions = Column(Numeric(12, 2), nullable=False)
    net_amount = Column(Numeric(12, 2), nullable=False)

    payment_method = Column(String, nullable=False)
    reference_number = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(String, nullable=False, default=PaymentStatus.PAID.value)

    processed_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    loans = relationship("StaffLoan", back_populates="payment", order_by="StaffLoan.id")

    __table_args__ = (
        Index("ix_salary_payments_staff", "staff_kind", "staff_id"),
    )
