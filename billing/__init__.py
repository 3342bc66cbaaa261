"""Clinic billing ledger: invoices, line items, payments and derived status."""
