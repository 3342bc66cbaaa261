"""API test fixtures: TestClient over a mocked BillingService."""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import Mock

import pytest
from starlette.testclient import TestClient

from api.app import create_app
from billing.models import Invoice, InvoiceItem, Payment
from billing.services.billing_service import BillingService

NOW = datetime(2026, 3, 15, 9, 0, tzinfo=timezone.utc)


def _make_item(item_id=11, invoice_id=100, quantity=2, unit_price="50.00"):
    unit = Decimal(unit_price)
    return InvoiceItem(
        id=item_id, invoice_id=invoice_id, service_id=None, description="Consultation",
        quantity=quantity, unit_price=unit, total_price=unit * quantity, created_at=NOW,
    )


def _make_invoice(invoice_id=100, status="pending", total="100.00", paid="0.00", **overrides):
    data = {
        "id": invoice_id,
        "invoice_number": f"WC-2026-{invoice_id:04d}",
        "party_id": 1,
        "appointment_id": None,
        "prepared_by": 7,
        "total_amount": Decimal(total),
        "payment_method": "cash",
        "status": status,
        "invoice_type": "opd",
        "due_date": None,
        "created_at": NOW,
        "updated_at": NOW,
        "items": [_make_item(invoice_id=invoice_id)],
        "paid_amount": Decimal(paid),
        "remaining_balance": max(Decimal("0.00"), Decimal(total) - Decimal(paid)),
        "is_overdue": False,
    }
    data.update(overrides)
    return Invoice(**data)


def _make_payment(payment_id=50, invoice_id=100, amount="60.00", status="completed"):
    return Payment(
        id=payment_id, invoice_id=invoice_id, amount=Decimal(amount), method="cash",
        transaction_id=None, status=status, notes=None, paid_at=NOW, recorded_by=7, created_at=NOW,
    )


@pytest.fixture
def billing():
    return Mock(spec=BillingService)


@pytest.fixture
def app(billing):
    """Billing app with middleware and error handlers over the mocked service."""
    return create_app(billing)


@pytest.fixture
def client(app):
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def staff_headers(staff_user_id):
    return {"X-Acting-User-Id": str(staff_user_id)}


@pytest.fixture
def invoice_factory():
    """Builds enriched Invoice objects as the service would return them."""
    return _make_invoice


@pytest.fixture
def payment_factory():
    return _make_payment
