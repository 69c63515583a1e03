"""
Salary Settlement Calculator

Derives gross pay, statutory deductions, discretionary deductions, loan
recovery and net pay from a compensation profile, and commits the result as
an immutable payment record.

Architecture:
- compute_settlement() is pure: same inputs, same SettlementResult
- settle_payment() validates, then writes the payment and clears the loans
  through a SettlementStore inside one transaction, serialized per staff member
- The SQLAlchemy-backed store lives in salary_service; this module never
  touches the database directly
"""

import logging
import threading
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import ContextManager, Dict, Iterator, List, Optional, Protocol, Sequence

from app.core.config import settings
from app.core.exceptions import (
    ConcurrentModificationError,
    InvalidSettlementError,
    ValidationError,
)
from app.core.money import ZERO, HUNDRED, percentage_of, round_money, to_money
from app.schemas.salary import (
    CompensationProfile,
    LoanRecord,
    PaymentMeta,
    PaymentRecord,
    SettlementOverrides,
    SettlementResult,
    StaffRef,
)

logger = logging.getLogger(__name__)


class SettlementStore(Protocol):
    """Persistence collaborator for settle_payment."""

    def transaction(self) -> ContextManager[None]:
        """Commit on clean exit, roll back everything on any exception."""
        ...

    def list_unpaid_loans(self, staff: StaffRef) -> List[LoanRecord]:
        ...

    def add_payment(self, record: PaymentRecord) -> PaymentRecord:
        ...

    def mark_loans_paid(self, loan_ids: Sequence[int], deducted_date: date, payment_id: Optional[int]) -> int:
        """Flip is_paid on loans that are still unpaid. Returns the number of rows changed."""
        ...


class StaffLockRegistry:
    """
    One mutex per staff member, created on first use.

    Each entry counts the holders and waiters using it and is dropped when the
    count falls back to zero, so the registry only tracks staff with a
    settlement in flight.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[StaffRef, List] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, staff: StaffRef) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(staff)
            if entry is None:
                entry = self._locks[staff] = [threading.Lock(), 0]
            entry[1] += 1
            return entry[0]

    def _checkin(self, staff: StaffRef) -> None:
        with self._guard:
            entry = self._locks[staff]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[staff]

    @contextmanager
    def hold(self, staff: StaffRef, timeout: Optional[float] = None) -> Iterator[None]:
        lock = self._checkout(staff)
        wait = settings.settlement_lock_timeout if timeout is None else timeout
        try:
            if not lock.acquire(timeout=wait):
                logger.warning(f"Settlement lock timeout for staff {staff}", extra={"staff": str(staff)})
                raise ConcurrentModificationError(
                    "Another payment for this staff member is in progress. Please retry.",
                    details={"staff": str(staff)}
                )
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(staff)


staff_locks = StaffLockRegistry()


def _check_rate(rate: Decimal, field: str) -> Decimal:
    rate = to_money(rate, field)
    if rate < ZERO or rate > HUNDRED:
        raise InvalidSettlementError(
            f"{field} must be between 0 and 100, got {rate}",
            constraint=f"{field}_range",
            details={"field": field, "value": str(rate)}
        )
    return rate


def _check_non_negative(amount: Decimal, field: str) -> Decimal:
    amount = to_money(amount, field)
    if amount < ZERO:
        raise ValidationError(f"{field} cannot be negative", field=field)
    return amount


def compute_settlement(
    profile: CompensationProfile,
    unpaid_loans: Sequence[LoanRecord] = (),
    overrides: Optional[SettlementOverrides] = None
) -> SettlementResult:
    """
    Compute one settlement.

    Tax and pension are rounded to cents before they are summed; net_amount
    is never clamped, so a negative net is returned as-is for display.

    Args:
        profile: Staff member's compensation profile
        unpaid_loans: Outstanding loans to recover; loans already paid are skipped
        overrides: Optional tax_rate / pension_rate / other_deductions replacing the profile's

    Returns:
        SettlementResult

    Raises:
        ValidationError: Negative or non-numeric money input
        InvalidSettlementError: A rate outside [0, 100]
    """
    overrides = overrides or SettlementOverrides()

    base_salary = _check_non_negative(profile.base_salary, "base_salary")
    allowances = _check_non_negative(profile.allowances, "allowances")
    other_deductions = _check_non_negative(
        profile.other_deductions if overrides.other_deductions is None else overrides.other_deductions,
        "other_deductions"
    )
    tax_rate = _check_rate(
        profile.tax_rate if overrides.tax_rate is None else overrides.tax_rate,
        "tax_rate"
    )
    pension_rate = _check_rate(
        profile.pension_rate if overrides.pension_rate is None else overrides.pension_rate,
        "pension_rate"
    )

    outstanding = [loan for loan in unpaid_loans if not loan.is_paid]
    for loan in outstanding:
        if to_money(loan.amount, "loan.amount") <= ZERO:
            raise ValidationError("Loan amount must be greater than zero", field="loan.amount")

    gross = round_money(base_salary + allowances)
    tax_amount = percentage_of(gross, tax_rate)
    pension_amount = percentage_of(gross, pension_rate)
    loan_deduction = round_money(sum((to_money(loan.amount) for loan in outstanding), ZERO))
    total_deductions = tax_amount + pension_amount + other_deductions + loan_deduction
    net_amount = gross - total_deductions

    return SettlementResult(
        gross_amount=gross,
        tax_rate=tax_rate,
        tax_amount=tax_amount,
        pension_rate=pension_rate,
        pension_amount=pension_amount,
        other_deductions=other_deductions,
        loan_deduction=loan_deduction,
        total_deductions=total_deductions,
        net_amount=net_amount,
        loan_ids=tuple(loan.id for loan in outstanding if loan.id is not None)
    )


def validate_settlement(
    profile: CompensationProfile,
    settlement: SettlementResult,
    meta: PaymentMeta
) -> None:
    """
    Raise InvalidSettlementError if the settlement may not be committed.

    Checked in order: payment date present, base salary positive,
    net amount non-negative.
    """
    if meta.payment_date is None:
        raise InvalidSettlementError("Payment date is required", constraint="payment_date_required")
    if profile.base_salary is None or profile.base_salary <= ZERO:
        raise InvalidSettlementError(
            "Base salary must be greater than zero",
            constraint="base_salary_positive"
        )
    if settlement.net_amount < ZERO:
        raise InvalidSettlementError(
            f"Net amount cannot be negative: deductions ({settlement.total_deductions}) "
            f"exceed gross ({settlement.gross_amount})",
            constraint="net_amount_non_negative",
            details={"net_amount": str(settlement.net_amount)}
        )


def build_payment_record(
    profile: CompensationProfile,
    settlement: SettlementResult,
    meta: PaymentMeta,
    loan_ids: Sequence[int]
) -> PaymentRecord:
    # Default period is the first day of the payment month
    salary_period = meta.salary_period or meta.payment_date.replace(day=1)
    return PaymentRecord(
        staff=profile.staff,
        salary_period=salary_period,
        payment_date=meta.payment_date,
        base_salary=round_money(profile.base_salary),
        allowances=round_money(profile.allowances),
        gross_amount=settlement.gross_amount,
        tax_rate=settlement.tax_rate,
        tax_amount=settlement.tax_amount,
        pension_rate=settlement.pension_rate,
        pension_amount=settlement.pension_amount,
        other_deductions=settlement.other_deductions,
        loan_deduction=settlement.loan_deduction,
        total_deductions=settlement.total_deductions,
        net_amount=settlement.net_amount,
        payment_method=meta.payment_method,
        reference_number=meta.reference_number,
        notes=meta.notes,
        loan_ids=tuple(loan_ids),
        processed_by=meta.processed_by
    )


def settle_payment(
    profile: CompensationProfile,
    unpaid_loans: Sequence[LoanRecord],
    settlement: SettlementResult,
    meta: PaymentMeta,
    store: SettlementStore,
    locks: Optional[StaffLockRegistry] = None,
    lock_timeout: Optional[float] = None
) -> PaymentRecord:
    """
    Commit a settlement: create the payment record and clear the recovered loans.

    The settlement is trusted as computed; recompute it after any override
    change before calling this.

    Args:
        profile: Compensation profile the settlement was computed from
        unpaid_loans: The loans the settlement recovered, as read by the caller
        settlement: Result of compute_settlement()
        meta: Payment date, period, method, reference and notes
        store: Persistence collaborator
        locks: Per-staff lock registry (module-wide registry by default)
        lock_timeout: Seconds to wait for the staff lock

    Returns:
        The persisted PaymentRecord

    Raises:
        InvalidSettlementError: Negative net, non-positive base salary, missing payment date,
            or a settlement whose loans differ from unpaid_loans
        ConcurrentModificationError: The unpaid-loan set changed since it was read
        PersistenceError: Storage failure; nothing was written
    """
    validate_settlement(profile, settlement, meta)

    outstanding = [loan for loan in unpaid_loans if not loan.is_paid]
    if any(loan.id is None for loan in outstanding):
        raise ValidationError("Loans must be persisted before they can be settled", field="unpaid_loans")
    loan_ids = sorted(loan.id for loan in outstanding)
    recovered = round_money(sum((to_money(loan.amount) for loan in outstanding), ZERO))
    if loan_ids != sorted(settlement.loan_ids) or recovered != settlement.loan_deduction:
        raise InvalidSettlementError(
            "Settlement was computed for a different set of loans. Recompute and retry.",
            constraint="settlement_loans_mismatch",
            details={
                "settlement_loan_ids": sorted(settlement.loan_ids),
                "outstanding_loan_ids": loan_ids
            }
        )
    record = build_payment_record(profile, settlement, meta, loan_ids)

    with (locks or staff_locks).hold(profile.staff, lock_timeout):
        with store.transaction():
            current_ids = sorted(loan.id for loan in store.list_unpaid_loans(profile.staff))
            if current_ids != loan_ids:
                logger.warning(
                    f"Unpaid loans changed for staff {profile.staff}",
                    extra={"expected": loan_ids, "found": current_ids}
                )
                raise ConcurrentModificationError(
                    "Outstanding loans changed since the settlement was computed. Recompute and retry.",
                    details={"expected_loan_ids": loan_ids, "current_loan_ids": current_ids}
                )

            saved = store.add_payment(record)
            marked = store.mark_loans_paid(loan_ids, record.payment_date, saved.id)
            if marked != len(loan_ids):
                raise ConcurrentModificationError(
                    "Some loans were settled by another payment. Recompute and retry.",
                    details={"expected": len(loan_ids), "marked": marked}
                )

    logger.info(
        f"Settled payment {saved.id} for staff {profile.staff}",
        extra={
            "payment_id": saved.id,
            "staff": str(profile.staff),
            "net_amount": str(saved.net_amount),
            "loans_cleared": len(loan_ids)
        }
    )
    return saved
