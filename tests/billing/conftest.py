"""
Billing test fixtures: an in-memory ledger behind fake stores.

The fakes keep rows in dicts and speak the same methods as the PostgreSQL
stores, so BillingService runs unchanged. FakePostgres.transaction()
snapshots the ledger and restores it when the block raises, which is what
a rollback looks like from the outside.
"""

import copy
from contextlib import contextmanager
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import Mock

import psycopg2
import pytest

from billing.audit import AuditLogger
from billing.config import BillingConfig
from billing.event_bus import EventBus
from billing.exceptions import ConflictError, NotFoundError
from billing.models import (
    AppointmentRef, Invoice, InvoiceCreate, InvoiceItem, InvoiceItemCreate,
    InvoiceStats, InvoiceStatus, Party, Payment, PaymentStatus, PaymentStats,
)
from billing.pagination import page_info
from billing.sequence import format_invoice_number
from billing.services.billing_service import BillingService
from billing.services.invoice_service import BalanceSnapshot, resolve_sort
from billing.services.line_item_service import validate_items
from billing.services.payment_service import validate_payment
from utils.money import ZERO, to_money
from utils.timezone import now_utc

# Must match tests/conftest.py
PATIENT_ID = 1
DOCTOR_ID = 2
OTHER_PATIENT_ID = 3
PATIENT_APPOINTMENT_ID = 10
OTHER_PATIENT_APPOINTMENT_ID = 11

TODAY = date(2026, 3, 15)


# =============================================================================
# IN-MEMORY LEDGER
# =============================================================================


class InMemoryLedger:
    """Rows of every ledger table plus the database clock."""

    _TABLES = ("invoices", "items", "payments", "last_sequence", "next_id")

    def __init__(self):
        self.today = TODAY
        self.invoices: dict[int, dict] = {}
        self.items: dict[int, dict] = {}
        self.payments: dict[int, dict] = {}
        self.last_sequence = 0
        self.next_id = 1

        self.parties = {
            PATIENT_ID: Party(id=PATIENT_ID, role="patient"),
            DOCTOR_ID: Party(id=DOCTOR_ID, role="doctor"),
            OTHER_PATIENT_ID: Party(id=OTHER_PATIENT_ID, role="patient"),
        }
        self.appointments = {
            PATIENT_APPOINTMENT_ID: AppointmentRef(id=PATIENT_APPOINTMENT_ID, party_id=PATIENT_ID),
            OTHER_PATIENT_APPOINTMENT_ID: AppointmentRef(
                id=OTHER_PATIENT_APPOINTMENT_ID, party_id=OTHER_PATIENT_ID
            ),
        }

        # Writes that reached the store, as (operation, row id)
        self.writes: list[tuple[str, int]] = []
        # Store operation that should fail with a driver error
        self.fail_on: str | None = None

    def allocate_id(self) -> int:
        value = self.next_id
        self.next_id += 1
        return value

    def write(self, operation: str, row_id: int) -> None:
        if self.fail_on == operation:
            raise psycopg2.OperationalError(f"simulated failure in {operation}")
        self.writes.append((operation, row_id))

    def snapshot(self) -> dict:
        return copy.deepcopy({name: getattr(self, name) for name in self._TABLES})

    def restore(self, snapshot: dict) -> None:
        for name, value in snapshot.items():
            setattr(self, name, value)

    def paid(self, invoice_id: int, status: PaymentStatus = PaymentStatus.COMPLETED) -> Decimal:
        return to_money(sum(
            (p["amount"] for p in self.payments.values()
             if p["invoice_id"] == invoice_id and p["status"] == status.value),
            ZERO,
        ))


class FakeTransaction:
    """Marker object handed to stores inside a unit of work."""

    def __init__(self, ledger: InMemoryLedger):
        self.ledger = ledger


class FakePostgres:
    def __init__(self, ledger: InMemoryLedger):
        self.ledger = ledger
        self.commits = 0
        self.rollbacks = 0

    @contextmanager
    def transaction(self):
        snapshot = self.ledger.snapshot()
        try:
            yield FakeTransaction(self.ledger)
        except BaseException:
            self.ledger.restore(snapshot)
            self.rollbacks += 1
            raise
        self.commits += 1


# =============================================================================
# FAKE STORES
# =============================================================================


class FakeSequence:
    def __init__(self, ledger: InMemoryLedger, prefix: str = "WC"):
        self.ledger = ledger
        self.prefix = prefix

    def next(self, tx) -> str:
        self.ledger.last_sequence += 1
        return format_invoice_number(self.prefix, self.ledger.today.year, self.ledger.last_sequence)


class FakePartyDirectory:
    def __init__(self, ledger: InMemoryLedger):
        self.ledger = ledger

    def find_by_id(self, party_id, db=None):
        return self.ledger.parties.get(party_id)


class FakeAppointmentDirectory:
    def __init__(self, ledger: InMemoryLedger):
        self.ledger = ledger

    def find_by_id(self, appointment_id, db=None):
        return self.ledger.appointments.get(appointment_id)


class FakeInvoiceStore:
    def __init__(self, ledger: InMemoryLedger):
        self.ledger = ledger

    def insert(self, invoice_number, data: InvoiceCreate, total_amount, prepared_by, db):
        invoice_id = self.ledger.allocate_id()
        self.ledger.write("insert_invoice", invoice_id)
        now = now_utc()
        self.ledger.invoices[invoice_id] = {
            "id": invoice_id,
            "invoice_number": invoice_number,
            "party_id": data.party_id,
            "appointment_id": data.appointment_id,
            "prepared_by": prepared_by,
            "total_amount": to_money(total_amount),
            "payment_method": data.payment_method.value,
            "status": InvoiceStatus.PENDING.value,
            "invoice_type": data.invoice_type.value,
            "due_date": data.due_date,
            "created_at": now,
            "updated_at": now,
        }
        return Invoice.model_validate(self.ledger.invoices[invoice_id])

    def get_by_id(self, invoice_id, db=None, lock=False):
        row = self.ledger.invoices.get(invoice_id)
        return Invoice.model_validate(row) if row else None

    def update_by_id(self, invoice_id, patch, db):
        row = self.ledger.invoices.get(invoice_id)
        if row is None:
            raise LookupError(f"Invoice {invoice_id} not found")
        if row["status"] == InvoiceStatus.PAID.value:
            raise ConflictError("paid", error_code="INVOICE_IMMUTABLE")
        self.ledger.write("update_invoice", invoice_id)
        for key, value in patch.model_dump(mode="json", exclude_unset=True).items():
            row[key] = date.fromisoformat(value) if key == "due_date" and value else value
        row["updated_at"] = now_utc()
        return Invoice.model_validate(row)

    def set_total(self, invoice_id, total_amount, db):
        self.ledger.write("set_total", invoice_id)
        row = self.ledger.invoices[invoice_id]
        row["total_amount"] = to_money(total_amount)
        row["updated_at"] = now_utc()
        return Invoice.model_validate(row)

    def set_status(self, invoice_id, status, db, expected=None):
        row = self.ledger.invoices[invoice_id]
        if expected is not None and row["status"] != InvoiceStatus(expected).value:
            return None
        self.ledger.write("set_status", invoice_id)
        row["status"] = InvoiceStatus(status).value
        row["updated_at"] = now_utc()
        return Invoice.model_validate(row)

    def current_date(self, db=None):
        return self.ledger.today

    def get_balances(self, invoice_ids, db=None):
        snapshots = {}
        for invoice_id in invoice_ids:
            row = self.ledger.invoices.get(invoice_id)
            if row is None:
                continue
            snapshots[invoice_id] = BalanceSnapshot(
                invoice_id=invoice_id,
                status=InvoiceStatus(row["status"]),
                total_amount=row["total_amount"],
                paid_amount=self.ledger.paid(invoice_id),
                due_date=row["due_date"],
                today=self.ledger.today,
            )
        return snapshots

    def search(self, filters, page, limit, sort_by=None, sort_order=None, db=None):
        field, order = resolve_sort(sort_by, sort_order)
        rows = list(self.ledger.invoices.values())
        if filters is not None:
            if filters.party_id is not None:
                rows = [r for r in rows if r["party_id"] == filters.party_id]
            if filters.status is not None:
                rows = [r for r in rows if r["status"] == filters.status.value]
            if filters.invoice_type is not None:
                rows = [r for r in rows if r["invoice_type"] == filters.invoice_type.value]

        rows.sort(key=lambda r: (r[field.value], r["id"]), reverse=order.value == "desc")
        window = rows[(page - 1) * limit: page * limit]
        return [Invoice.model_validate(r) for r in window], page_info(page, limit, len(rows))

    def list_overdue(self, limit, db=None):
        rows = [
            r for r in self.ledger.invoices.values()
            if r["status"] != InvoiceStatus.PAID.value
            and r["due_date"] is not None
            and r["due_date"] < self.ledger.today
            and r["total_amount"] > self.ledger.paid(r["id"])
        ]
        rows.sort(key=lambda r: (r["due_date"], r["id"]))
        return [Invoice.model_validate(r) for r in rows[:limit]]

    def stats(self, party_id=None):
        rows = [r for r in self.ledger.invoices.values() if party_id is None or r["party_id"] == party_id]
        by_status: dict[str, int] = {}
        by_type: dict[str, int] = {}
        for r in rows:
            by_status[r["status"]] = by_status.get(r["status"], 0) + 1
            by_type[r["invoice_type"]] = by_type.get(r["invoice_type"], 0) + 1
        return InvoiceStats(
            total_invoices=len(rows),
            by_status=by_status,
            by_type=by_type,
            total_billed=to_money(sum((r["total_amount"] for r in rows), ZERO)),
            outstanding_balance=to_money(sum(
                (max(ZERO, r["total_amount"] - self.ledger.paid(r["id"])) for r in rows), ZERO
            )),
        )


class FakeLineItemStore:
    def __init__(self, ledger: InMemoryLedger, config: BillingConfig):
        self.ledger = ledger
        self.config = config

    def create_batch(self, invoice_id, items, db):
        totals = validate_items(
            items,
            self.config.amount_tolerance,
            max_quantity=self.config.max_item_quantity,
            max_amount=self.config.max_amount,
        )
        created = []
        for item, total in zip(items, totals):
            item_id = self.ledger.allocate_id()
            self.ledger.write("insert_item", item_id)
            self.ledger.items[item_id] = {
                "id": item_id,
                "invoice_id": invoice_id,
                "service_id": item.service_id,
                "description": item.description.strip(),
                "quantity": item.quantity,
                "unit_price": to_money(item.unit_price),
                "total_price": total,
                "created_at": now_utc(),
            }
            created.append(InvoiceItem.model_validate(self.ledger.items[item_id]))
        return created

    def create(self, invoice_id, item, db):
        return self.create_batch(invoice_id, [item], db)[0]

    def get_by_id(self, item_id, db=None):
        row = self.ledger.items.get(item_id)
        return InvoiceItem.model_validate(row) if row else None

    def list_for_invoice(self, invoice_id, db=None):
        rows = sorted(
            (r for r in self.ledger.items.values() if r["invoice_id"] == invoice_id),
            key=lambda r: r["id"],
        )
        return [InvoiceItem.model_validate(r) for r in rows]

    def list_for_invoices(self, invoice_ids, db=None):
        return {invoice_id: self.list_for_invoice(invoice_id) for invoice_id in invoice_ids}

    def update_by_id(self, item_id, patch, db):
        self.ledger.write("update_item", item_id)
        row = self.ledger.items[item_id]
        row.update(patch.model_dump(exclude_unset=True, exclude_none=True))
        row["unit_price"] = to_money(row["unit_price"])
        row["total_price"] = to_money(row["quantity"] * row["unit_price"])
        return InvoiceItem.model_validate(row)

    def delete_by_id(self, item_id, db):
        self.ledger.write("delete_item", item_id)
        return self.ledger.items.pop(item_id, None) is not None

    def calculate_invoice_total(self, invoice_id, db=None):
        return to_money(sum(
            (r["total_price"] for r in self.ledger.items.values() if r["invoice_id"] == invoice_id),
            ZERO,
        ))


class FakePaymentStore:
    def __init__(self, ledger: InMemoryLedger, config: BillingConfig):
        self.ledger = ledger
        self.config = config

    def create(self, invoice_id, data, recorded_by, db):
        amount = validate_payment(data, self.config)
        if invoice_id not in self.ledger.invoices:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        payment_id = self.ledger.allocate_id()
        self.ledger.write("insert_payment", payment_id)
        now = now_utc()
        self.ledger.payments[payment_id] = {
            "id": payment_id,
            "invoice_id": invoice_id,
            "amount": amount,
            "method": data.method.value,
            "transaction_id": data.transaction_id,
            "status": data.status.value,
            "notes": data.notes,
            "paid_at": data.paid_at or now,
            "recorded_by": recorded_by,
            "created_at": now,
        }
        return Payment.model_validate(self.ledger.payments[payment_id])

    def get_total_by_invoice(self, invoice_id, db=None):
        return self.ledger.paid(invoice_id)

    def get_pending_total(self, invoice_id, db=None):
        return self.ledger.paid(invoice_id, PaymentStatus.PENDING)

    def get_by_id(self, payment_id, db=None):
        row = self.ledger.payments.get(payment_id)
        return Payment.model_validate(row) if row else None

    def list_for_invoice(self, invoice_id, db=None):
        rows = sorted(
            (r for r in self.ledger.payments.values() if r["invoice_id"] == invoice_id),
            key=lambda r: r["id"],
        )
        return [Payment.model_validate(r) for r in rows]

    def search(self, filters, page, limit, sort_by=None, sort_order=None):
        rows = sorted(self.ledger.payments.values(), key=lambda r: r["id"])
        if filters is not None and filters.invoice_id is not None:
            rows = [r for r in rows if r["invoice_id"] == filters.invoice_id]
        window = rows[(page - 1) * limit: page * limit]
        return [Payment.model_validate(r) for r in window], page_info(page, limit, len(rows))

    def stats(self):
        completed = [r for r in self.ledger.payments.values() if r["status"] == "completed"]
        revenue = to_money(sum((r["amount"] for r in completed), ZERO))
        return PaymentStats(
            total_payments=len(self.ledger.payments),
            total_revenue=revenue,
            revenue_by_method={},
            revenue_today=revenue,
            revenue_last_7_days=revenue,
            revenue_this_month=revenue,
            pending_payments=sum(1 for r in self.ledger.payments.values() if r["status"] == "pending"),
            failed_payments=sum(1 for r in self.ledger.payments.values() if r["status"] == "failed"),
        )


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def fake_postgres(ledger):
    return FakePostgres(ledger)


@pytest.fixture
def audit():
    return Mock(spec=AuditLogger)


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def published(event_bus):
    """Every event published on the bus, in order."""
    events = []
    for name in ("InvoiceCreated", "InvoiceStatusChanged", "InvoicePaid", "PaymentRecorded"):
        event_bus.subscribe(name, events.append)
    return events


@pytest.fixture
def billing_config():
    return BillingConfig()


@pytest.fixture
def billing(fake_postgres, audit, event_bus, ledger, billing_config):
    """BillingService over the in-memory ledger."""
    return BillingService(
        fake_postgres,
        audit,
        event_bus,
        invoices=FakeInvoiceStore(ledger),
        line_items=FakeLineItemStore(ledger, billing_config),
        payments=FakePaymentStore(ledger, billing_config),
        sequence=FakeSequence(ledger),
        parties=FakePartyDirectory(ledger),
        appointments=FakeAppointmentDirectory(ledger),
        config=billing_config,
    )


def _make_item(quantity=1, unit_price="50.00", total_price=None, description="Consultation"):
    return InvoiceItemCreate(
        description=description,
        quantity=quantity,
        unit_price=Decimal(unit_price),
        total_price=Decimal(total_price) if total_price is not None else None,
    )


def _make_invoice_data(items=None, **overrides):
    data = {
        "party_id": PATIENT_ID,
        "invoice_type": "opd",
        "payment_method": "cash",
        "items": items if items is not None else [_make_item(2, "50.00", "100.00")],
    }
    data.update(overrides)
    return InvoiceCreate(**data)


@pytest.fixture
def invoice(billing):
    """Scenario A invoice: one item, 2 x 50.00 = 100.00."""
    return billing.create_invoice(_make_invoice_data())


@pytest.fixture
def yesterday(ledger):
    return ledger.today - timedelta(days=1)


@pytest.fixture
def make_item():
    """Factory for InvoiceItemCreate; prices are strings for exact Decimals."""
    return _make_item


@pytest.fixture
def make_invoice_data():
    """Factory for InvoiceCreate billed to the default patient."""
    return _make_invoice_data
