"""
Billing service: the transactional facade over the ledger stores.

Every mutation runs in one unit of work that locks the invoice row, applies
the change, recomputes the total from the stored items, then recomputes the
status from that total and the completed payments. Audit entries go through
the same transaction; events are published only after it commits.
"""

import logging
from typing import Any

from pydantic import ValidationError

from billing.audit import AuditAction, AuditLogger, compute_changes
from billing.config import BillingConfig
from billing.directory import AppointmentDirectory, PartyDirectory
from billing.event_bus import EventBus
from billing.events import (
    BillingEvent, InvoiceCreated, InvoicePaid, InvoiceStatusChanged, PaymentRecorded,
)
from billing.exceptions import ConflictError, InvalidInputError, NotFoundError
from billing.models import (
    Invoice, InvoiceCreate, InvoiceFilters, InvoiceItem, InvoiceItemCreate,
    InvoiceItemUpdate, InvoicePage, InvoicePaymentMethod, InvoiceStats, InvoiceStatus,
    InvoiceUpdate, PageInfo, Payment, PaymentCreate, PaymentFilters, PaymentStats,
    PaymentStatus,
)
from billing.pagination import resolve_page
from billing.sequence import InvoiceSequence
from billing.services.invoice_service import BalanceSnapshot, InvoiceService
from billing.services.line_item_service import (
    LineItemService, validate_item, validate_item_patch, validate_items,
)
from billing.services.payment_service import PaymentService, validate_payment
from billing.status import compute_balance, is_overdue, reconcile_status
from billing.unit_of_work import translate_errors, unit_of_work
from clients.postgres_client import PostgresClient, Transaction
from utils.money import ZERO
from utils.user_context import find_current_user_id

logger = logging.getLogger(__name__)


def _with_balance(
    invoice: Invoice,
    snapshot: BalanceSnapshot,
    items: list[InvoiceItem] | None = None,
    payments: list[Payment] | None = None,
) -> Invoice:
    balance = compute_balance(invoice.total_amount, snapshot.paid_amount)
    update: dict[str, Any] = {
        "paid_amount": balance.paid_amount,
        "remaining_balance": balance.remaining_balance,
        "is_overdue": is_overdue(invoice.due_date, snapshot.today, balance.remaining_balance),
    }
    if items is not None:
        update["items"] = items
    if payments is not None:
        update["payments"] = payments
    return invoice.model_copy(update=update)


class BillingService:
    """
    Orchestrates invoices, items and payments.

    Usage:
        billing = BillingService(postgres, AuditLogger(postgres), EventBus())
        invoice = billing.create_invoice(InvoiceCreate(...))
        billing.record_payment(invoice.id, PaymentCreate(amount=Decimal("60.00"), method="cash"))
    """

    def __init__(
        self,
        postgres: PostgresClient,
        audit: AuditLogger,
        event_bus: EventBus,
        *,
        invoices: InvoiceService | None = None,
        line_items: LineItemService | None = None,
        payments: PaymentService | None = None,
        sequence: InvoiceSequence | None = None,
        parties: PartyDirectory | None = None,
        appointments: AppointmentDirectory | None = None,
        config: BillingConfig | None = None,
    ):
        self.postgres = postgres
        self.audit = audit
        self.event_bus = event_bus
        self.config = config or BillingConfig()
        self.invoices = invoices or InvoiceService(postgres, self.config)
        self.line_items = line_items or LineItemService(postgres, self.config)
        self.payments = payments or PaymentService(postgres, self.config)
        self.sequence = sequence or InvoiceSequence(self.config.invoice_number_prefix)
        self.parties = parties or PartyDirectory(postgres)
        self.appointments = appointments or AppointmentDirectory(postgres)

    # =========================================================================
    # INVOICES
    # =========================================================================

    def create_invoice(self, data: InvoiceCreate, prepared_by: int | None = None) -> Invoice:
        """
        Create an invoice with its items in one unit of work.

        The number is allocated, the header and items inserted, and the total
        recomputed from the stored items before commit. New invoices are
        always PENDING.

        Args:
            data: Party, type, payment method, items and optional appointment/due date
            prepared_by: Staff member preparing the invoice (defaults to the acting user)

        Returns:
            The created invoice with items and balance

        Raises:
            InvalidInputError: Empty or invalid items, wrong party role, appointment
                of another party, insurance credit without a due date
            NotFoundError: Party or appointment does not exist
        """
        totals = validate_items(
            data.items,
            self.config.amount_tolerance,
            max_quantity=self.config.max_item_quantity,
            max_amount=self.config.max_amount,
        )
        if data.payment_method == InvoicePaymentMethod.INSURANCE_CREDIT and data.due_date is None:
            raise InvalidInputError("due_date is required for insurance_credit invoices")

        if prepared_by is None:
            prepared_by = find_current_user_id()

        with unit_of_work(self.postgres, "create_invoice") as tx:
            party = self.parties.find_by_id(data.party_id, db=tx)
            if party is None:
                raise NotFoundError(f"Party {data.party_id} not found")
            if not party.is_patient:
                raise InvalidInputError(f"Party {data.party_id} is not a patient")

            if data.appointment_id is not None:
                appointment = self.appointments.find_by_id(data.appointment_id, db=tx)
                if appointment is None:
                    raise NotFoundError(f"Appointment {data.appointment_id} not found")
                if appointment.party_id != data.party_id:
                    raise InvalidInputError(
                        f"Appointment {data.appointment_id} does not belong to party {data.party_id}"
                    )

            invoice_number = self.sequence.next(tx)
            invoice = self.invoices.insert(invoice_number, data, sum(totals, ZERO), prepared_by, tx)
            items = self.line_items.create_batch(invoice.id, data.items, tx)
            invoice = self._recompute_total(invoice, tx, audit_change=False)

            self.audit.log_change(
                entity_type="invoice",
                entity_id=invoice.id,
                action=AuditAction.CREATE,
                changes={"created": {
                    **invoice.model_dump(mode="json", exclude={"items", "payments", "paid_amount",
                                                               "remaining_balance", "is_overdue"}),
                    "items": [item.model_dump(mode="json") for item in items],
                }},
                db=tx,
            )

            invoice = _with_balance(
                invoice,
                BalanceSnapshot(invoice.id, invoice.status, invoice.total_amount, ZERO,
                                invoice.due_date, self.invoices.current_date(tx)),
                items=items,
                payments=[],
            )

        logger.info(
            "Created invoice %s (id=%s) for party %s, total %s",
            invoice.invoice_number, invoice.id, invoice.party_id, invoice.total_amount,
        )
        self.event_bus.publish(InvoiceCreated.create(invoice=invoice))
        return invoice

    def get_invoice(self, invoice_id: int) -> Invoice:
        """
        Invoice with items, payment history, paid amount, remaining balance
        and overdue flag. Never writes.

        Raises:
            NotFoundError: If the invoice does not exist
        """
        with unit_of_work(self.postgres, "get_invoice") as tx:
            invoice = self.invoices.get_by_id(invoice_id, db=tx)
            if invoice is None:
                raise NotFoundError(f"Invoice {invoice_id} not found")
            return self._load_detail(invoice, tx)

    def list_invoices(
        self,
        filters: InvoiceFilters | None = None,
        page: int = 1,
        limit: int | None = None,
        sort_by: str | None = "created_at",
        sort_order: str | None = "desc",
        reconcile_status: bool = False,
    ) -> InvoicePage:
        """
        Paginated invoice listing enriched with balances in batched queries.

        Args:
            filters: Party, status, type and creation date range
            page: 1-based page number
            limit: Page size (default and maximum from config)
            sort_by: Allow-listed column; anything else sorts by created_at
            sort_order: "asc" or "desc"
            reconcile_status: Also rewrite stale stored statuses on this page

        Returns:
            InvoicePage with invoices and pagination info
        """
        page, limit, _ = resolve_page(page, limit, self.config)
        events: list[BillingEvent] = []

        with unit_of_work(self.postgres, "list_invoices") as tx:
            invoices, info = self.invoices.search(filters, page, limit, sort_by, sort_order, db=tx)
            ids = [invoice.id for invoice in invoices]
            snapshots = self.invoices.get_balances(ids, db=tx)
            items = self.line_items.list_for_invoices(ids, db=tx)

            enriched = []
            for invoice in invoices:
                snapshot = snapshots[invoice.id]
                if reconcile_status:
                    invoice = self._reconcile_listed(invoice, snapshot, tx, events)
                enriched.append(_with_balance(invoice, snapshot, items=items.get(invoice.id, [])))

        self.event_bus.publish_all(events)
        return InvoicePage(invoices=enriched, pagination=info)

    def update_invoice(self, invoice_id: int, patch: InvoiceUpdate | dict) -> Invoice:
        """
        Change the payment method or due date of an unpaid invoice.

        Status can never be set here; it is recomputed after the change.

        Raises:
            InvalidInputError: Status supplied, unknown field, or insurance credit without due date
            NotFoundError: If the invoice does not exist
            ConflictError: If the invoice is paid
        """
        if isinstance(patch, dict):
            if "status" in patch:
                raise InvalidInputError("Invoice status is computed and cannot be set directly")
            try:
                patch = InvoiceUpdate.model_validate(patch)
            except ValidationError as exc:
                raise InvalidInputError(f"Invalid invoice update: {exc.errors()[0]['msg']}") from exc

        fields = patch.model_fields_set
        if "payment_method" in fields and patch.payment_method is None:
            raise InvalidInputError("payment_method cannot be empty")

        events: list[BillingEvent] = []
        with unit_of_work(self.postgres, "update_invoice") as tx:
            current = self._lock_mutable_invoice(invoice_id, tx)

            method = patch.payment_method if "payment_method" in fields else current.payment_method
            due_date = patch.due_date if "due_date" in fields else current.due_date
            if method == InvoicePaymentMethod.INSURANCE_CREDIT and due_date is None:
                raise InvalidInputError("due_date is required for insurance_credit invoices")

            updated = self.invoices.update_by_id(invoice_id, patch, tx)
            changes = compute_changes(
                current.model_dump(mode="json", include={"payment_method", "due_date"}),
                updated.model_dump(mode="json", include={"payment_method", "due_date"}),
            )
            if changes:
                self.audit.log_change(
                    entity_type="invoice",
                    entity_id=invoice_id,
                    action=AuditAction.UPDATE,
                    changes=changes,
                    db=tx,
                )

            updated = self._refresh_status(updated, tx, events)
            result = self._load_detail(updated, tx)

        self.event_bus.publish_all(events)
        return result

    def recompute_status(self, invoice_id: int) -> InvoiceStatus:
        """
        Bring the stored status in line with the computed one.

        Writes only when the value changes, so a second call in a row is a
        no-op.

        Raises:
            NotFoundError: If the invoice does not exist
        """
        events: list[BillingEvent] = []
        with unit_of_work(self.postgres, "recompute_status") as tx:
            invoice = self.invoices.get_by_id(invoice_id, db=tx, lock=True)
            if invoice is None:
                raise NotFoundError(f"Invoice {invoice_id} not found")
            invoice = self._refresh_status(invoice, tx, events)

        self.event_bus.publish_all(events)
        return invoice.status

    def list_overdue(self, limit: int | None = None) -> list[Invoice]:
        """Unpaid invoices past due by the database clock, with balances."""
        _, limit, _ = resolve_page(1, limit, self.config)
        with unit_of_work(self.postgres, "list_overdue") as tx:
            invoices = self.invoices.list_overdue(limit, db=tx)
            snapshots = self.invoices.get_balances([invoice.id for invoice in invoices], db=tx)
            return [_with_balance(invoice, snapshots[invoice.id]) for invoice in invoices]

    def invoice_stats(self, party_id: int | None = None) -> InvoiceStats:
        with translate_errors("invoice_stats"):
            return self.invoices.stats(party_id)

    # =========================================================================
    # ITEMS
    # =========================================================================

    def add_item(self, invoice_id: int, item: InvoiceItemCreate) -> Invoice:
        """
        Add an item to an unpaid invoice, then recompute total and status.

        Raises:
            InvalidInputError: If the item is invalid (before any write)
            NotFoundError: If the invoice does not exist
            ConflictError: If the invoice is paid
        """
        validate_item(
            item,
            self.config.amount_tolerance,
            max_quantity=self.config.max_item_quantity,
            max_amount=self.config.max_amount,
        )

        events: list[BillingEvent] = []
        with unit_of_work(self.postgres, "add_item") as tx:
            invoice = self._lock_mutable_invoice(invoice_id, tx)
            created = self.line_items.create(invoice.id, item, tx)
            self.audit.log_change(
                entity_type="invoice_item",
                entity_id=created.id,
                action=AuditAction.CREATE,
                changes={"created": created.model_dump(mode="json")},
                db=tx,
            )

            invoice = self._recompute_total(invoice, tx)
            invoice = self._refresh_status(invoice, tx, events)
            result = self._load_detail(invoice, tx)

        self.event_bus.publish_all(events)
        return result

    def update_item(self, invoice_id: int, item_id: int, patch: InvoiceItemUpdate) -> Invoice:
        """
        Edit one item of an unpaid invoice; its total is recomputed from the
        patched quantity and unit price.

        Raises:
            InvalidInputError: If the patched values are invalid
            NotFoundError: If the invoice or item does not exist
            ConflictError: If the invoice is paid
        """
        validate_item_patch(
            patch,
            max_quantity=self.config.max_item_quantity,
            max_amount=self.config.max_amount,
        )

        events: list[BillingEvent] = []
        with unit_of_work(self.postgres, "update_item") as tx:
            invoice = self._lock_mutable_invoice(invoice_id, tx)
            current = self.line_items.get_by_id(item_id, db=tx)
            if current is None or current.invoice_id != invoice.id:
                raise NotFoundError(f"Item {item_id} not found on invoice {invoice_id}")

            updated = self.line_items.update_by_id(item_id, patch, tx)
            changes = compute_changes(current.model_dump(mode="json"), updated.model_dump(mode="json"))
            if changes:
                self.audit.log_change(
                    entity_type="invoice_item",
                    entity_id=item_id,
                    action=AuditAction.UPDATE,
                    changes=changes,
                    db=tx,
                )

            invoice = self._recompute_total(invoice, tx)
            invoice = self._refresh_status(invoice, tx, events)
            result = self._load_detail(invoice, tx)

        self.event_bus.publish_all(events)
        return result

    def remove_item(self, invoice_id: int, item_id: int) -> Invoice:
        """
        Remove one item from an unpaid invoice, then recompute total and status.

        Raises:
            NotFoundError: If the invoice or item does not exist
            ConflictError: If the invoice is paid or this is its last item
        """
        events: list[BillingEvent] = []
        with unit_of_work(self.postgres, "remove_item") as tx:
            invoice = self._lock_mutable_invoice(invoice_id, tx)
            items = self.line_items.list_for_invoice(invoice.id, db=tx)

            target = next((item for item in items if item.id == item_id), None)
            if target is None:
                raise NotFoundError(f"Item {item_id} not found on invoice {invoice_id}")
            if len(items) <= 1:
                raise ConflictError(
                    f"Cannot remove the last item of invoice {invoice.invoice_number}",
                    error_code="LAST_ITEM",
                )

            self.line_items.delete_by_id(item_id, tx)
            self.audit.log_change(
                entity_type="invoice_item",
                entity_id=item_id,
                action=AuditAction.DELETE,
                changes={"deleted": target.model_dump(mode="json")},
                db=tx,
            )

            invoice = self._recompute_total(invoice, tx)
            invoice = self._refresh_status(invoice, tx, events)
            result = self._load_detail(invoice, tx)

        self.event_bus.publish_all(events)
        return result

    # =========================================================================
    # PAYMENTS
    # =========================================================================

    def record_payment(self, invoice_id: int, data: PaymentCreate, recorded_by: int | None = None) -> Payment:
        """
        Append a payment and recompute the invoice status.

        A payment may not exceed what is still collectible: the remaining
        balance less any pending payments. Failed payments are recorded for
        history and do not count against that.

        Args:
            invoice_id: Invoice being paid
            data: Amount, method, status, optional reference and notes
            recorded_by: Staff member recording it (defaults to the acting user)

        Raises:
            InvalidInputError: Invalid amount or reference, or over-collection
            NotFoundError: If the invoice does not exist
            ConflictError: If the invoice is already paid
        """
        amount = validate_payment(data, self.config)
        if recorded_by is None:
            recorded_by = find_current_user_id()

        events: list[BillingEvent] = []
        with unit_of_work(self.postgres, "record_payment") as tx:
            invoice = self.invoices.get_by_id(invoice_id, db=tx, lock=True)
            if invoice is None:
                raise NotFoundError(f"Invoice {invoice_id} not found")
            if invoice.is_paid:
                logger.warning("Rejected payment on paid invoice %s", invoice.invoice_number)
                raise ConflictError(
                    f"Invoice {invoice.invoice_number} is already paid",
                    error_code="INVOICE_IMMUTABLE",
                )

            if data.status != PaymentStatus.FAILED:
                balance = compute_balance(
                    invoice.total_amount, self.payments.get_total_by_invoice(invoice.id, db=tx)
                )
                collectible = max(ZERO, balance.remaining_balance - self.payments.get_pending_total(invoice.id, db=tx))
                if amount > collectible:
                    raise InvalidInputError(
                        f"Payment amount {amount} exceeds the collectible balance {collectible}"
                    )

            payment = self.payments.create(invoice.id, data, recorded_by, tx)
            self.audit.log_change(
                entity_type="payment",
                entity_id=payment.id,
                action=AuditAction.CREATE,
                changes={"created": payment.model_dump(mode="json")},
                user_id=recorded_by,
                db=tx,
            )

            status_events: list[BillingEvent] = []
            invoice = self._refresh_status(invoice, tx, status_events)
            events.append(PaymentRecorded.create(payment=payment, invoice=invoice))
            events.extend(status_events)

        self.event_bus.publish_all(events)
        return payment

    def list_payments_for_invoice(self, invoice_id: int) -> list[Payment]:
        """
        Raises:
            NotFoundError: If the invoice does not exist
        """
        with unit_of_work(self.postgres, "list_payments") as tx:
            if self.invoices.get_by_id(invoice_id, db=tx) is None:
                raise NotFoundError(f"Invoice {invoice_id} not found")
            return self.payments.list_for_invoice(invoice_id, db=tx)

    def get_payment(self, payment_id: int) -> Payment:
        with translate_errors("get_payment"):
            payment = self.payments.get_by_id(payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        return payment

    def list_payments(
        self,
        filters: PaymentFilters | None = None,
        page: int = 1,
        limit: int | None = None,
        sort_by: str | None = "paid_at",
        sort_order: str | None = "desc",
    ) -> tuple[list[Payment], PageInfo]:
        page, limit, _ = resolve_page(page, limit, self.config)
        with translate_errors("list_payments"):
            return self.payments.search(filters, page, limit, sort_by, sort_order)

    def payment_stats(self) -> PaymentStats:
        with translate_errors("payment_stats"):
            return self.payments.stats()

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _lock_mutable_invoice(self, invoice_id: int, tx: Transaction) -> Invoice:
        """Lock the invoice row and refuse if it is paid."""
        invoice = self.invoices.get_by_id(invoice_id, db=tx, lock=True)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        if invoice.is_paid:
            logger.warning("Rejected mutation of paid invoice %s", invoice.invoice_number)
            raise ConflictError(
                f"Invoice {invoice.invoice_number} is paid and cannot be modified",
                error_code="INVOICE_IMMUTABLE",
            )
        return invoice

    def _recompute_total(self, invoice: Invoice, tx: Transaction, audit_change: bool = True) -> Invoice:
        """
        Write the sum of stored item totals if it differs from the header.

        Raises:
            InvalidInputError: If the sum exceeds the largest storable amount;
                the caller's unit of work rolls the item change back
        """
        total = self.line_items.calculate_invoice_total(invoice.id, db=tx)
        if total > self.config.max_amount:
            raise InvalidInputError(
                f"Invoice total {total} exceeds the maximum of {self.config.max_amount}"
            )
        if total == invoice.total_amount:
            return invoice

        updated = self.invoices.set_total(invoice.id, total, tx)
        if audit_change:
            self.audit.log_change(
                entity_type="invoice",
                entity_id=invoice.id,
                action=AuditAction.UPDATE,
                changes={"total_amount": {"old": str(invoice.total_amount), "new": str(total)}},
                db=tx,
            )
        return updated

    def _refresh_status(self, invoice: Invoice, tx: Transaction, events: list[BillingEvent]) -> Invoice:
        """
        Recompute status for a locked invoice and write it if it changed.

        Uses the database date so every caller judges overdue the same way.
        """
        paid = self.payments.get_total_by_invoice(invoice.id, db=tx)
        today = self.invoices.current_date(tx)
        new_status = reconcile_status(invoice.status, invoice.total_amount, paid, invoice.due_date, today)
        if new_status is None:
            return invoice

        updated = self.invoices.set_status(invoice.id, new_status, tx)
        self._status_changed(invoice, updated, tx, events)
        return updated

    def _reconcile_listed(
        self,
        invoice: Invoice,
        snapshot: BalanceSnapshot,
        tx: Transaction,
        events: list[BillingEvent],
    ) -> Invoice:
        """
        Fix a stale status found while listing, without taking a row lock.

        The write only lands if the stored status is still the one read;
        otherwise a concurrent mutation already recomputed it.
        """
        new_status = reconcile_status(
            snapshot.status, snapshot.total_amount, snapshot.paid_amount, snapshot.due_date, snapshot.today
        )
        if new_status is None:
            return invoice

        updated = self.invoices.set_status(invoice.id, new_status, tx, expected=snapshot.status)
        if updated is None:
            logger.debug("Status of invoice %s changed concurrently; skipped reconcile", invoice.id)
            return invoice

        self._status_changed(invoice, updated, tx, events)
        return updated

    def _status_changed(self, before: Invoice, after: Invoice, tx: Transaction, events: list[BillingEvent]) -> None:
        self.audit.log_change(
            entity_type="invoice",
            entity_id=after.id,
            action=AuditAction.UPDATE,
            changes={"status": {"old": before.status.value, "new": after.status.value}},
            db=tx,
        )
        logger.info(
            "Invoice %s status %s -> %s",
            after.invoice_number, before.status.value, after.status.value,
        )
        events.append(InvoiceStatusChanged.create(invoice=after, old_status=before.status, new_status=after.status))
        if after.status == InvoiceStatus.PAID:
            events.append(InvoicePaid.create(invoice=after))

    def _load_detail(self, invoice: Invoice, tx: Transaction) -> Invoice:
        items = self.line_items.list_for_invoice(invoice.id, db=tx)
        payments = self.payments.list_for_invoice(invoice.id, db=tx)
        snapshot = self.invoices.get_balances([invoice.id], db=tx)[invoice.id]
        return _with_balance(invoice, snapshot, items=items, payments=payments)
