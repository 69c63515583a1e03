"""
Debt history reconciliation.

A CompanyDebt's outstanding balance is always the original amount plus the
signed deltas of its history entries; its status is derived from that
balance. Manual status overrides are handled by DebtService and audited.
"""

from decimal import Decimal
from typing import Iterable

from app.core.exceptions import ReconciliationError, ValidationError
from app.core.money import ZERO, to_money
from app.models.company_debt import DebtStatus, DebtType, TransactionType
from app.schemas.debt import DebtEntry, DebtReconciliation, DebtState


def entry_delta(debt_type: DebtType, entry: DebtEntry) -> Decimal:
    """
    Signed change an entry makes to the outstanding balance.

    - payment: reduces the balance
    - adjustment: reduces by `amount`; a negative amount grows the balance
    - additional_debt: grows the balance
    - gift: forgives (reduces) a debt owed to the company; for a debt owed by
      the company it is an extra sum the company now owes
    """
    amount = to_money(entry.amount, "amount")
    if entry.transaction_type == TransactionType.ADJUSTMENT:
        if amount == ZERO:
            raise ValidationError("Adjustment amount cannot be zero", field="amount")
        return -amount

    if amount <= ZERO:
        raise ValidationError(
            f"{entry.transaction_type.value} amount must be greater than zero",
            field="amount"
        )
    if entry.transaction_type == TransactionType.PAYMENT:
        return -amount
    if entry.transaction_type == TransactionType.ADDITIONAL_DEBT:
        return amount
    # gift
    if debt_type == DebtType.OWED_TO_COMPANY:
        return -amount
    return amount


def derive_status(original_amount: Decimal, balance: Decimal) -> DebtStatus:
    if balance == ZERO:
        return DebtStatus.PAID
    if balance >= original_amount:
        return DebtStatus.PENDING
    return DebtStatus.PARTIALLY_PAID


def reconcile_debt(debt: DebtState, entry: DebtEntry) -> DebtReconciliation:
    """
    Apply one history entry to a debt.

    Args:
        debt: Current original amount, balance, type and status
        entry: The entry about to be appended

    Returns:
        DebtReconciliation with the new balance and derived status

    Raises:
        ValidationError: Debt is written off, or the entry would take the balance below zero
    """
    if debt.status == DebtStatus.WRITTEN_OFF:
        raise ValidationError(
            "Debt has been written off; no further entries can be recorded",
            error_code="DEBT_WRITTEN_OFF"
        )

    balance = to_money(debt.balance, "balance") + entry_delta(debt.debt_type, entry)
    if balance < ZERO:
        raise ValidationError(
            f"Entry of {to_money(entry.amount)} exceeds the outstanding balance of {to_money(debt.balance)}",
            field="amount",
            error_code="DEBT_OVERPAYMENT"
        )

    return DebtReconciliation(
        updated_balance=balance,
        updated_status=derive_status(to_money(debt.original_amount), balance)
    )


def ledger_balance(original_amount: Decimal, debt_type: DebtType, entries: Iterable[DebtEntry]) -> Decimal:
    """Replay the history on top of the original amount."""
    balance = to_money(original_amount, "original_amount")
    for entry in entries:
        balance += entry_delta(debt_type, entry)
    return balance


def verify_debt_ledger(debt: DebtState, entries: Iterable[DebtEntry]) -> Decimal:
    """Raise ReconciliationError unless the stored balance matches the replayed history."""
    expected = ledger_balance(debt.original_amount, debt.debt_type, entries)
    if expected != to_money(debt.balance):
        raise ReconciliationError(
            f"Debt balance {to_money(debt.balance)} does not match its history ({expected})",
            details={"stored": str(to_money(debt.balance)), "replayed": str(expected)}
        )
    return expected
