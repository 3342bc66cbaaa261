"""Tests for billing models and configuration."""

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from billing.config import BillingConfig
from billing.models import (
    AppointmentRef, InvoiceCreate, InvoiceFilters, InvoiceStatus, InvoiceUpdate,
    Party, PaymentCreate, PaymentStatus,
)


class TestInvoiceCreate:

    def test_enums_are_closed(self):
        with pytest.raises(ValidationError):
            InvoiceCreate(party_id=1, invoice_type="dental", payment_method="cash", items=[])
        with pytest.raises(ValidationError):
            InvoiceCreate(party_id=1, invoice_type="opd", payment_method="barter", items=[])

    def test_items_parsed(self):
        data = InvoiceCreate.model_validate({
            "party_id": 1,
            "invoice_type": "running_bill",
            "payment_method": "insurance_credit",
            "due_date": "2026-04-01",
            "items": [{"description": "Ward day", "quantity": 3, "unit_price": "120.00"}],
        })

        assert data.due_date == date(2026, 4, 1)
        assert data.items[0].unit_price == Decimal("120.00")
        assert data.items[0].total_price is None


class TestInvoiceUpdate:

    def test_status_is_not_a_field(self):
        with pytest.raises(ValidationError):
            InvoiceUpdate(status="paid")

    def test_tracks_explicit_null(self):
        patch = InvoiceUpdate(due_date=None)

        assert patch.model_fields_set == {"due_date"}


class TestFilters:

    def test_inverted_date_range(self):
        with pytest.raises(ValidationError, match="end_date"):
            InvoiceFilters(start_date=date(2026, 3, 2), end_date=date(2026, 3, 1))

    def test_status_parsed(self):
        assert InvoiceFilters(status="overdue").status == InvoiceStatus.OVERDUE


class TestPaymentCreate:

    def test_defaults_to_completed(self):
        assert PaymentCreate(amount=Decimal("1.00"), method="cash").status == PaymentStatus.COMPLETED

    def test_unknown_status(self):
        with pytest.raises(ValidationError):
            PaymentCreate(amount=Decimal("1.00"), method="cash", status="refunded")


class TestDirectory:

    def test_patient_role(self):
        assert Party(id=1, role="patient").is_patient
        assert not Party(id=2, role="doctor").is_patient

    def test_appointment_ref(self):
        assert AppointmentRef.model_validate({"id": 10, "party_id": 1}).party_id == 1


class TestBillingConfig:

    def test_defaults(self):
        config = BillingConfig()

        assert config.invoice_number_prefix == "WC"
        assert config.amount_tolerance == Decimal("0.01")
        assert config.default_page_size == 20
        assert config.max_page_size == 100
        assert config.max_payment_amount == Decimal("999999.99")
        assert config.max_item_quantity == 2_147_483_647
        assert config.max_amount == Decimal("99999999.99")

    @pytest.mark.parametrize("overrides", [
        {"max_item_quantity": 0},
        {"max_item_quantity": 2 ** 31},
        {"max_amount": Decimal("0")},
        {"max_amount": Decimal("100000000.00")},
    ])
    def test_caps_bounded_by_columns(self, overrides):
        with pytest.raises(ValidationError):
            BillingConfig(**overrides)

    @pytest.mark.parametrize("prefix", ["wc", "W-C", "", "TOOLONGPREFIX"])
    def test_prefix_pattern(self, prefix):
        with pytest.raises(ValidationError):
            BillingConfig(invoice_number_prefix=prefix)
