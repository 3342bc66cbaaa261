"""Invoice domain models.

Money is an exact Decimal with two places ($10.00 = Decimal("10.00")).
Status is derived from balance and due date; the stored column is a cache
kept in sync by the billing service, never written from client input.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, model_validator

from billing.models.invoice_item import InvoiceItem, InvoiceItemCreate
from billing.models.payment import Payment


class InvoiceStatus(str, Enum):
    """Invoice payment state, always computed."""

    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    OVERDUE = "overdue"
    PAID = "paid"


class InvoiceType(str, Enum):
    """Kind of care being billed."""

    OPD = "opd"
    ADMISSION = "admission"
    RUNNING_BILL = "running_bill"


class InvoicePaymentMethod(str, Enum):
    """How the patient is expected to settle the invoice."""

    CASH = "cash"
    CARD = "card"
    INSURANCE_CREDIT = "insurance_credit"
    BANK_TRANSFER = "bank_transfer"


class InvoiceSortField(str, Enum):
    """Columns an invoice listing may be ordered by."""

    CREATED_AT = "created_at"
    TOTAL_AMOUNT = "total_amount"
    STATUS = "status"
    INVOICE_NUMBER = "invoice_number"
    DUE_DATE = "due_date"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class InvoiceCreate(BaseModel):
    """Data required to create an invoice with its items."""

    party_id: int
    invoice_type: InvoiceType
    payment_method: InvoicePaymentMethod
    items: list[InvoiceItemCreate]
    appointment_id: int | None = None
    due_date: date | None = None


class InvoiceUpdate(BaseModel):
    """
    Header fields that may change on an unpaid invoice.

    status is deliberately absent: a request carrying it is rejected.
    """

    payment_method: InvoicePaymentMethod | None = None
    due_date: date | None = None

    model_config = {"extra": "forbid"}


class Invoice(BaseModel):
    """
    Invoice header as stored, optionally enriched.

    items, payments, paid_amount, remaining_balance and is_overdue are filled
    by read paths that need them; a bare header leaves them empty/None.
    """

    id: int
    invoice_number: str
    party_id: int
    appointment_id: int | None
    prepared_by: int | None
    total_amount: Decimal
    payment_method: InvoicePaymentMethod
    status: InvoiceStatus
    invoice_type: InvoiceType
    due_date: date | None
    created_at: datetime
    updated_at: datetime

    items: list[InvoiceItem] = Field(default_factory=list)
    payments: list[Payment] = Field(default_factory=list)
    paid_amount: Decimal | None = None
    remaining_balance: Decimal | None = None
    is_overdue: bool | None = None

    model_config = {"from_attributes": True}

    @property
    def is_paid(self) -> bool:
        """Whether the invoice is settled and therefore immutable."""
        return self.status == InvoiceStatus.PAID


class InvoiceFilters(BaseModel):
    """Optional filters for invoice listings. Unset fields do not filter."""

    party_id: int | None = None
    status: InvoiceStatus | None = None
    invoice_type: InvoiceType | None = None
    start_date: date | None = None
    end_date: date | None = None

    @model_validator(mode="after")
    def check_date_range(self) -> "InvoiceFilters":
        """End date may not precede start date."""
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class PageInfo(BaseModel):
    """Pagination details returned alongside a listing."""

    page: int
    limit: int
    total: int
    total_pages: int


class InvoicePage(BaseModel):
    invoices: list[Invoice]
    pagination: PageInfo


class InvoiceStats(BaseModel):
    """Invoice counts and amounts for reporting collaborators."""

    total_invoices: int
    by_status: dict[str, int]
    by_type: dict[str, int]
    total_billed: Decimal
    outstanding_balance: Decimal
