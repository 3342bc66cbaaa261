"""Billing domain models."""

from billing.models.invoice_item import InvoiceItem, InvoiceItemCreate, InvoiceItemUpdate
from billing.models.payment import (
    Payment, PaymentCreate, PaymentFilters, PaymentMethod,
    PaymentSortField, PaymentStats, PaymentStatus,
)
from billing.models.invoice import (
    Invoice, InvoiceCreate, InvoiceUpdate, InvoiceFilters, InvoicePage,
    InvoicePaymentMethod, InvoiceSortField, InvoiceStats, InvoiceStatus,
    InvoiceType, PageInfo, SortOrder,
)
from billing.models.directory import AppointmentRef, Party, PATIENT_ROLE

__all__ = [
    # InvoiceItem
    "InvoiceItem", "InvoiceItemCreate", "InvoiceItemUpdate",
    # Payment
    "Payment", "PaymentCreate", "PaymentFilters", "PaymentMethod",
    "PaymentSortField", "PaymentStats", "PaymentStatus",
    # Invoice
    "Invoice", "InvoiceCreate", "InvoiceUpdate", "InvoiceFilters", "InvoicePage",
    "InvoicePaymentMethod", "InvoiceSortField", "InvoiceStats", "InvoiceStatus",
    "InvoiceType", "PageInfo", "SortOrder",
    # Directory lookups
    "AppointmentRef", "Party", "PATIENT_ROLE",
]
