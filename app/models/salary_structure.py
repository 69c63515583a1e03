from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean, Index
from sqlalchemy.sql import func
from app.database import Base
import enum

class SalaryType(str, enum.Enum):
    MONTHLY = "monthly"
    WEEKLY = "weekly"
    DAILY = "daily"

class SalaryStructure(Base):
    """
    Compensation profile of one staff member.

    Rows are never updated in place or deleted: a structure change inserts a
    new current row and marks the previous one superseded.
    """
    __tablename__ = "salary_structures"

    id = Column(Integer, primary_key=True, index=True)
    staff_kind = Column(String, nullable=False)  # StaffKind value
    staff_id = Column(Integer, nullable=False)

    base_salary = Column(Numeric(12, 2), nullable=False, default=0)
    allowances = Column(Numeric(12, 2), nullable=False, default=0)
    deductions = Column(Numeric(12, 2), nullable=False, default=0)  # "other deductions"
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)
    pension_rate = Column(Numeric(5, 2), nullable=False, default=0)
    salary_type = Column(String, nullable=False, default=SalaryType.MONTHLY.value)

    bank_name = Column(String, nullable=True)
    account_number = Column(String, nullable=True)
    account_name = Column(String, nullable=True)

    is_current = Column(Boolean, default=True, nullable=False)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    superseded_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_salary_structures_staff", "staff_kind", "staff_id", "is_current"),
    )
