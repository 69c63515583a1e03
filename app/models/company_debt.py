from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import enum

class DebtType(str, enum.Enum):
    OWED_TO_COMPANY = "owed_to_company"
    OWED_BY_COMPANY = "owed_by_company"

class DebtStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    WRITTEN_OFF = "written_off"

class TransactionType(str, enum.Enum):
    PAYMENT = "payment"
    ADJUSTMENT = "adjustment"
    GIFT = "gift"
    ADDITIONAL_DEBT = "additional_debt"

class CompanyDebt(Base):
    __tablename__ = "company_debts"

    id = Column(Integer, primary_key=True, index=True)
    staff_kind = Column(String, nullable=False)
    staff_id = Column(Integer, nullable=False)

    original_amount = Column(Numeric(12, 2), nullable=False)
    balance = Column(Numeric(12, 2), nullable=False)
    debt_type = Column(String, nullable=False)
    status = Column(String, nullable=False, default=DebtStatus.PENDING.value)
    reason = Column(String, nullable=True)

    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    history = relationship(
        "DebtHistory",
        back_populates="debt",
        order_by="DebtHistory.id",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_company_debts_staff", "staff_kind", "staff_id"),
    )

class DebtHistory(Base):
    """Append-only ledger entry for a CompanyDebt."""
    __tablename__ = "debt_history"

    id = Column(Integer, primary_key=True, index=True)
    debt_id = Column(Integer, ForeignKey("company_debts.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    transaction_type = Column(String, nullable=False)
    reason = Column(String, nullable=True)
    balance_after = Column(Numeric(12, 2), nullable=False)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    debt = relationship("CompanyDebt", back_populates="history")
