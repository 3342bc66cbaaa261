"""
Balance and status computation.

Pure functions, no I/O. Callers supply `today` from the database clock so a
batch of invoices is judged against one calendar day.

Status priority, first match wins:
1. paid >= total                          -> PAID
2. due date before today, balance left    -> OVERDUE
3. something paid, balance left           -> PARTIALLY_PAID
4. otherwise                              -> PENDING
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from billing.models import InvoiceStatus
from utils.money import ZERO, to_money


@dataclass(frozen=True)
class Balance:
    """Derived money position of one invoice. Never persisted."""

    total_amount: Decimal
    paid_amount: Decimal
    remaining_balance: Decimal

    @property
    def is_settled(self) -> bool:
        return self.paid_amount >= self.total_amount


def compute_balance(total_amount: Decimal, paid_amount: Decimal) -> Balance:
    """Remaining balance is total minus completed payments, floored at zero."""
    total = to_money(total_amount)
    paid = to_money(paid_amount)
    return Balance(
        total_amount=total,
        paid_amount=paid,
        remaining_balance=max(ZERO, total - paid),
    )


def is_overdue(due_date: date | None, today: date, remaining_balance: Decimal) -> bool:
    """An invoice is overdue when its due date has passed with money still owed."""
    return due_date is not None and due_date < today and remaining_balance > ZERO


def determine_status(
    total_amount: Decimal,
    paid_amount: Decimal,
    due_date: date | None,
    today: date,
) -> InvoiceStatus:
    """Apply the status priority rule to one invoice's figures."""
    balance = compute_balance(total_amount, paid_amount)

    if balance.is_settled:
        return InvoiceStatus.PAID
    if is_overdue(due_date, today, balance.remaining_balance):
        return InvoiceStatus.OVERDUE
    if balance.paid_amount > ZERO:
        return InvoiceStatus.PARTIALLY_PAID
    return InvoiceStatus.PENDING


def reconcile_status(
    current_status: InvoiceStatus,
    total_amount: Decimal,
    paid_amount: Decimal,
    due_date: date | None,
    today: date,
) -> InvoiceStatus | None:
    """
    Status the invoice should move to, or None when the stored one is right.

    A None result means no write is needed.
    """
    computed = determine_status(total_amount, paid_amount, due_date, today)
    if computed == InvoiceStatus(current_status):
        return None
    return computed
