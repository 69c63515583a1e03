from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from app.models.staff_member import StaffKind
from app.models.company_debt import DebtType, DebtStatus, TransactionType


# --- Domain values ---

class DebtState(BaseModel):
    """The parts of a CompanyDebt that reconciliation reads."""
    model_config = ConfigDict(frozen=True)

    original_amount: Decimal
    balance: Decimal
    debt_type: DebtType
    status: DebtStatus = DebtStatus.PENDING


class DebtEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    amount: Decimal
    transaction_type: TransactionType
    reason: Optional[str] = None


class DebtReconciliation(BaseModel):
    model_config = ConfigDict(frozen=True)

    updated_balance: Decimal
    updated_status: DebtStatus


# --- Requests ---

class DebtCreate(BaseModel):
    staff_kind: StaffKind
    staff_id: int
    amount: Decimal = Field(gt=0)
    debt_type: DebtType = DebtType.OWED_TO_COMPANY
    reason: Optional[str] = None
    performed_by: Optional[str] = None


class DebtEntryCreate(BaseModel):
    # Signed for adjustments; checked by reconciliation
    amount: Decimal
    transaction_type: TransactionType
    reason: Optional[str] = None
    performed_by: Optional[str] = None


class DebtStatusOverride(BaseModel):
    status: DebtStatus
    reason: str = Field(min_length=1)
    performed_by: Optional[str] = None


# --- Responses ---

class DebtHistoryResponse(BaseModel):
    id: int
    amount: Decimal
    transaction_type: TransactionType
    reason: Optional[str] = None
    balance_after: Decimal
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DebtResponse(BaseModel):
    id: int
    staff_kind: StaffKind
    staff_id: int
    original_amount: Decimal
    balance: Decimal
    debt_type: DebtType
    status: DebtStatus
    reason: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DebtDetailResponse(DebtResponse):
    history: List[DebtHistoryResponse] = []
