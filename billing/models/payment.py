"""Payment ledger models.

Payments are append-only. Only COMPLETED payments count toward an
invoice's paid amount.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, model_validator


class PaymentMethod(str, Enum):
    """How money actually arrived."""

    CASH = "cash"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    INSURANCE = "insurance"
    INSURANCE_CREDIT = "insurance_credit"


class PaymentStatus(str, Enum):
    """Processing state of a payment."""

    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"


class PaymentSortField(str, Enum):
    """Columns a payment listing may be ordered by."""

    PAID_AT = "paid_at"
    AMOUNT = "amount"
    METHOD = "method"


class PaymentCreate(BaseModel):
    """A payment to record against an invoice."""

    amount: Decimal
    method: PaymentMethod
    transaction_id: str | None = Field(None, max_length=255)
    status: PaymentStatus = PaymentStatus.COMPLETED
    notes: str | None = Field(None, max_length=1000)
    paid_at: datetime | None = None


class Payment(BaseModel):
    """Payment as stored."""

    id: int
    invoice_id: int
    amount: Decimal
    method: PaymentMethod
    transaction_id: str | None
    status: PaymentStatus
    notes: str | None
    paid_at: datetime
    recorded_by: int | None
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentFilters(BaseModel):
    """Optional filters for payment listings. Unset fields do not filter."""

    invoice_id: int | None = None
    party_id: int | None = None
    method: PaymentMethod | None = None
    status: PaymentStatus | None = None
    start_date: date | None = None
    end_date: date | None = None

    @model_validator(mode="after")
    def check_date_range(self) -> "PaymentFilters":
        """End date may not precede start date."""
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class PaymentStats(BaseModel):
    """Revenue summary for reporting collaborators."""

    total_payments: int
    total_revenue: Decimal
    revenue_by_method: dict[str, Decimal]
    revenue_today: Decimal
    revenue_last_7_days: Decimal
    revenue_this_month: Decimal
    pending_payments: int
    failed_payments: int
