"""
Company Debts Router

Debts owed by staff to the company, or by the company to staff, with their
append-only transaction history.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.company_debt import DebtStatus, DebtType
from app.models.staff_member import StaffKind
from app.schemas.debt import (
    DebtCreate,
    DebtDetailResponse,
    DebtEntryCreate,
    DebtResponse,
    DebtStatusOverride,
)
from app.schemas.salary import StaffRef
from app.services import debt_service


router = APIRouter(
    prefix="/debts",
    tags=["debts"]
)


@router.post("", response_model=DebtDetailResponse, status_code=status.HTTP_201_CREATED)
def create_debt(payload: DebtCreate, db: Session = Depends(get_db)):
    return debt_service.create_debt(db, payload)


@router.get("", response_model=List[DebtResponse])
def list_debts(
    staff_kind: Optional[StaffKind] = None,
    staff_id: Optional[int] = None,
    status: Optional[DebtStatus] = None,
    debt_type: Optional[DebtType] = None,
    db: Session = Depends(get_db)
):
    staff = StaffRef(kind=staff_kind, id=staff_id) if staff_kind and staff_id is not None else None
    return debt_service.list_debts(db, staff=staff, status=status, debt_type=debt_type)


@router.get("/{debt_id}", response_model=DebtDetailResponse)
def get_debt(debt_id: int, db: Session = Depends(get_db)):
    return debt_service.get_debt(db, debt_id)


@router.post("/{debt_id}/history", response_model=DebtDetailResponse, status_code=status.HTTP_201_CREATED)
def add_history_entry(debt_id: int, payload: DebtEntryCreate, db: Session = Depends(get_db)):
    """
    Record a payment, adjustment, gift or additional debt. Balance and status
    are recomputed from the ledger.
    """
    return debt_service.add_history_entry(db, debt_id, payload)


@router.post("/{debt_id}/status", response_model=DebtDetailResponse)
def override_status(debt_id: int, payload: DebtStatusOverride, db: Session = Depends(get_db)):
    """
    Manually set a debt's status (e.g. write it off). Audited; the balance is untouched.
    """
    return debt_service.override_status(db, debt_id, payload)
