"""
Company debt service.

Balances and statuses are derived from the append-only history via
app.services.debt_reconciliation. A manual status override is the only way
to set a status by hand and is always audited.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError, ValidationError
from app.core.money import to_money
from app.models.company_debt import CompanyDebt, DebtHistory, DebtStatus, DebtType, TransactionType
from app.schemas.debt import DebtCreate, DebtEntry, DebtEntryCreate, DebtState, DebtStatusOverride
from app.schemas.salary import StaffRef
from app.database import commit_or_raise
from app.services.audit import AuditService
from app.services.debt_reconciliation import reconcile_debt, verify_debt_ledger
from app.services.salary_service import get_staff_record

logger = logging.getLogger(__name__)


def _state(debt: CompanyDebt) -> DebtState:
    return DebtState(
        original_amount=to_money(debt.original_amount),
        balance=to_money(debt.balance),
        debt_type=DebtType(debt.debt_type),
        status=DebtStatus(debt.status)
    )


def _entries(debt: CompanyDebt) -> List[DebtEntry]:
    return [
        DebtEntry(amount=h.amount, transaction_type=TransactionType(h.transaction_type), reason=h.reason)
        for h in debt.history
    ]


def get_debt(db: Session, debt_id: int) -> CompanyDebt:
    debt = db.get(CompanyDebt, debt_id)
    if debt is None:
        raise NotFoundError(f"Company debt {debt_id} not found")
    return debt


def create_debt(db: Session, payload: DebtCreate) -> CompanyDebt:
    staff = StaffRef(kind=payload.staff_kind, id=payload.staff_id)
    get_staff_record(db, staff)

    amount = to_money(payload.amount, "amount")
    if amount <= 0:
        raise ValidationError("Debt amount must be greater than zero", field="amount")

    debt = CompanyDebt(
        staff_kind=staff.kind.value,
        staff_id=staff.id,
        original_amount=amount,
        balance=amount,
        debt_type=payload.debt_type.value,
        status=DebtStatus.PENDING.value,
        reason=payload.reason,
        created_by=payload.performed_by
    )
    db.add(debt)
    db.flush()
    AuditService.log(
        db,
        action="create_company_debt",
        entity_type="company_debt",
        entity_id=debt.id,
        performed_by=payload.performed_by,
        details={"staff": str(staff), "amount": amount, "debt_type": payload.debt_type}
    )
    commit_or_raise(db, "create debt")
    db.refresh(debt)

    logger.info(f"Company debt {debt.id} created for staff {staff}", extra={"debt_id": debt.id, "amount": str(amount)})
    return debt


def list_debts(
    db: Session,
    staff: Optional[StaffRef] = None,
    status: Optional[DebtStatus] = None,
    debt_type: Optional[DebtType] = None
) -> List[CompanyDebt]:
    query = db.query(CompanyDebt)
    if staff:
        query = query.filter(CompanyDebt.staff_kind == staff.kind.value, CompanyDebt.staff_id == staff.id)
    if status:
        query = query.filter(CompanyDebt.status == status.value)
    if debt_type:
        query = query.filter(CompanyDebt.debt_type == debt_type.value)
    return query.order_by(CompanyDebt.id.desc()).all()


def add_history_entry(db: Session, debt_id: int, payload: DebtEntryCreate) -> CompanyDebt:
    """
    Append a history entry and re-derive balance and status.

    Raises:
        ValidationError: Debt written off, zero/negative amount, or overpayment
        ReconciliationError: Stored balance no longer matches the history
    """
    debt = get_debt(db, debt_id)
    state = _state(debt)
    verify_debt_ledger(state, _entries(debt))

    entry = DebtEntry(amount=payload.amount, transaction_type=payload.transaction_type, reason=payload.reason)
    result = reconcile_debt(state, entry)

    debt.history.append(DebtHistory(
        amount=to_money(entry.amount, "amount"),
        transaction_type=entry.transaction_type.value,
        reason=entry.reason,
        balance_after=result.updated_balance,
        created_by=payload.performed_by
    ))
    debt.balance = result.updated_balance
    # A manually overridden status is replaced by the derived one on the next entry
    debt.status = result.updated_status.value

    commit_or_raise(db, "record debt transaction")
    db.refresh(debt)

    logger.info(
        f"Debt {debt.id}: {entry.transaction_type.value} {entry.amount}, balance now {result.updated_balance}",
        extra={"debt_id": debt.id, "status": result.updated_status.value}
    )
    return debt


def override_status(db: Session, debt_id: int, payload: DebtStatusOverride) -> CompanyDebt:
    """
    Set a debt's status by hand without touching its balance.

    written_off is terminal and cannot be overridden again.
    """
    debt = get_debt(db, debt_id)
    previous = DebtStatus(debt.status)
    if previous == DebtStatus.WRITTEN_OFF:
        raise ValidationError(
            "Debt has been written off; its status can no longer change",
            error_code="DEBT_WRITTEN_OFF"
        )

    debt.status = payload.status.value
    AuditService.log(
        db,
        action="override_debt_status",
        entity_type="company_debt",
        entity_id=debt.id,
        performed_by=payload.performed_by,
        details={"reason": payload.reason, "balance": debt.balance},
        before_state={"status": previous},
        after_state={"status": payload.status}
    )
    commit_or_raise(db, "override debt status")
    db.refresh(debt)

    logger.warning(
        f"Debt {debt.id} status manually set {previous.value} -> {payload.status.value}",
        extra={"debt_id": debt.id, "performed_by": payload.performed_by}
    )
    return debt
