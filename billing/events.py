"""
Domain events for the billing ledger.

Immutable records of what happened to an invoice. They are published only
after the unit of work that produced them has committed, and they carry the
committed domain objects so handlers never re-read half-written state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class BillingEvent:
    """Base class for all billing events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


@dataclass(frozen=True)
class InvoiceCreated(BillingEvent):
    """A new invoice was created with its first items."""
    invoice: Any = None  # Invoice

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceCreated":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceStatusChanged(BillingEvent):
    """The stored status of an invoice moved."""
    invoice: Any = None
    old_status: Any = None
    new_status: Any = None

    @classmethod
    def create(cls, invoice: Any, old_status: Any, new_status: Any) -> "InvoiceStatusChanged":
        return cls(invoice=invoice, old_status=old_status, new_status=new_status)


@dataclass(frozen=True)
class InvoicePaid(BillingEvent):
    """Completed payments now cover the invoice total."""
    invoice: Any = None

    @classmethod
    def create(cls, invoice: Any) -> "InvoicePaid":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class PaymentRecorded(BillingEvent):
    """A payment row was appended to an invoice."""
    payment: Any = None  # Payment
    invoice: Any = None

    @classmethod
    def create(cls, payment: Any, invoice: Any) -> "PaymentRecorded":
        return cls(payment=payment, invoice=invoice)
