"""Billing ledger configuration."""

from decimal import Decimal

from pydantic import BaseModel, Field

# Column limits: quantity is INTEGER, money is NUMERIC(10,2).
MAX_ITEM_QUANTITY = 2_147_483_647
MAX_AMOUNT = Decimal("99999999.99")


class BillingConfig(BaseModel):
    """
    Ledger configuration.

    Monetary bounds are Decimals with two places; page sizes bound the
    listing endpoints.
    """

    # Invoice numbering
    invoice_number_prefix: str = Field(
        default="WC",
        description="Prefix of human-facing invoice numbers (PREFIX-YYYY-NNNN)",
        pattern=r"^[A-Z]{1,10}$",
    )

    # Item arithmetic
    amount_tolerance: Decimal = Field(
        default=Decimal("0.01"),
        description="Largest accepted gap between a supplied item total and quantity * unit price",
        ge=Decimal("0"),
        le=Decimal("1.00"),
    )
    max_item_quantity: int = Field(
        default=MAX_ITEM_QUANTITY,
        description="Largest quantity accepted on one line item",
        ge=1,
        le=MAX_ITEM_QUANTITY,
    )
    max_amount: Decimal = Field(
        default=MAX_AMOUNT,
        description="Largest item total or invoice total the ledger will store",
        gt=Decimal("0"),
        le=MAX_AMOUNT,
    )

    # Payments
    max_payment_amount: Decimal = Field(
        default=Decimal("999999.99"),
        description="Largest single payment that may be recorded",
        gt=Decimal("0"),
    )

    # Listings
    default_page_size: int = Field(
        default=20,
        description="Page size when the caller does not give one",
        ge=1,
        le=100,
    )
    max_page_size: int = Field(
        default=100,
        description="Largest page size a caller may request",
        ge=1,
        le=500,
    )
