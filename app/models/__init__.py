# Models package
# Importing modules here ensures they are registered with SQLAlchemy Base
from . import (
    user, staff_member, salary_structure, staff_loan,
    salary_payment, company_debt, audit_log
)

# Explicit class exports for cleaner imports
from .user import User, UserRole
from .staff_member import StaffMember, StaffKind
from .salary_structure import SalaryStructure, SalaryType
from .staff_loan import StaffLoan
from .salary_payment import SalaryPayment, PaymentMethod, PaymentStatus
from .company_debt import CompanyDebt, DebtHistory, DebtType, DebtStatus, TransactionType
from .audit_log import AuditLog

__all__ = [
    "User",
    "UserRole",
    "StaffMember",
    "StaffKind",
    "SalaryStructure",
    "SalaryType",
    "StaffLoan",
    "SalaryPayment",
    "PaymentMethod",
    "PaymentStatus",
    "CompanyDebt",
    "DebtHistory",
    "DebtType",
    "DebtStatus",
    "TransactionType",
    "AuditLog",
]
