"""Invoice line item models.

Amounts are exact Decimals with two places. total_price on input is optional
and only ever checked; the stored total is always quantity * unit_price
computed by the ledger.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class InvoiceItemCreate(BaseModel):
    """A line item to attach to an invoice."""

    service_id: int | None = None
    description: str = Field(..., max_length=500)
    quantity: int = 1
    unit_price: Decimal
    total_price: Decimal | None = None


class InvoiceItemUpdate(BaseModel):
    """Patch for an existing line item. total_price is always recomputed, never accepted."""

    description: str | None = Field(None, max_length=500)
    quantity: int | None = None
    unit_price: Decimal | None = None

    model_config = {"extra": "forbid"}


class InvoiceItem(BaseModel):
    """Line item as stored."""

    id: int
    invoice_id: int
    service_id: int | None
    description: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    created_at: datetime

    model_config = {"from_attributes": True}
