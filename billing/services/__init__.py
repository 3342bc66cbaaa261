"""Ledger stores and the billing service that coordinates them."""

from billing.services.invoice_service import BalanceSnapshot, InvoiceService
from billing.services.line_item_service import LineItemService, validate_item, validate_items
from billing.services.payment_service import PaymentService, validate_payment
from billing.services.billing_service import BillingService
