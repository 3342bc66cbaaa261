"""
Invoice record store.

Owns the invoice header row. Status is written only through set_status,
which the billing service calls with a computed value; nothing here accepts
a status from outside.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Sequence

from billing.config import BillingConfig
from billing.exceptions import ConflictError
from billing.models import (
    Invoice, InvoiceCreate, InvoiceFilters, InvoiceSortField, InvoiceStats,
    InvoiceStatus, InvoiceType, InvoiceUpdate, PageInfo, SortOrder,
)
from billing.pagination import page_info
from clients.postgres_client import PostgresClient, Transaction
from utils.money import ZERO, to_money

logger = logging.getLogger(__name__)

# Sort keys map to fixed column expressions; request input never reaches SQL.
_SORT_COLUMNS = {
    InvoiceSortField.CREATED_AT: "created_at",
    InvoiceSortField.TOTAL_AMOUNT: "total_amount",
    InvoiceSortField.STATUS: "status",
    InvoiceSortField.INVOICE_NUMBER: "invoice_number",
    InvoiceSortField.DUE_DATE: "due_date",
}
_DEFAULT_SORT = InvoiceSortField.CREATED_AT

_UPDATABLE_COLUMNS = {"payment_method", "due_date"}

# Completed payments per invoice, over the whole payments table.
_PAID_BY_INVOICE = """
    SELECT invoice_id, SUM(amount) AS paid
    FROM payments
    WHERE status = 'completed'
    GROUP BY invoice_id
"""

# Same sums, restricted to the invoice ids bound to the placeholder.
_PAID_FOR_INVOICES = """
    SELECT invoice_id, SUM(amount) AS paid
    FROM payments
    WHERE status = 'completed' AND invoice_id = ANY(%s)
    GROUP BY invoice_id
"""


@dataclass(frozen=True)
class BalanceSnapshot:
    """Everything the status engine needs about one invoice, read in one query."""

    invoice_id: int
    status: InvoiceStatus
    total_amount: Decimal
    paid_amount: Decimal
    due_date: date | None
    today: date


def resolve_sort(sort_by: str | None, sort_order: str | None) -> tuple[InvoiceSortField, SortOrder]:
    """Map request sort parameters onto the allow-list, falling back to created_at desc."""
    try:
        field = InvoiceSortField(sort_by)
    except ValueError:
        if sort_by is not None:
            logger.warning("Ignoring unknown invoice sort field %r", sort_by)
        field = _DEFAULT_SORT
    try:
        order = SortOrder(sort_order.lower() if sort_order else SortOrder.DESC)
    except ValueError:
        order = SortOrder.DESC
    return field, order


def _filter_clause(filters: InvoiceFilters | None) -> tuple[str, list]:
    conditions = []
    params: list = []
    if filters is not None:
        if filters.party_id is not None:
            conditions.append("party_id = %s")
            params.append(filters.party_id)
        if filters.status is not None:
            conditions.append("status = %s")
            params.append(filters.status)
        if filters.invoice_type is not None:
            conditions.append("invoice_type = %s")
            params.append(filters.invoice_type)
        if filters.start_date is not None:
            conditions.append("created_at::date >= %s")
            params.append(filters.start_date)
        if filters.end_date is not None:
            conditions.append("created_at::date <= %s")
            params.append(filters.end_date)
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    return where, params


class InvoiceService:
    """Store for invoice headers."""

    def __init__(self, postgres: PostgresClient, config: BillingConfig | None = None):
        self.postgres = postgres
        self.config = config or BillingConfig()

    def insert(
        self,
        invoice_number: str,
        data: InvoiceCreate,
        total_amount: Decimal,
        prepared_by: int | None,
        db: Transaction,
    ) -> Invoice:
        """Insert a header in PENDING status. Callers validate party and items first."""
        row = db.execute_returning(
            """
            INSERT INTO invoices (
                invoice_number, party_id, appointment_id, prepared_by,
                total_amount, payment_method, status, invoice_type, due_date,
                created_at, updated_at
            ) VALUES (
                %s, %s, %s, %s,
                %s, %s, %s, %s, %s,
                now(), now()
            )
            RETURNING *
            """,
            (
                invoice_number, data.party_id, data.appointment_id, prepared_by,
                to_money(total_amount), data.payment_method, InvoiceStatus.PENDING,
                data.invoice_type, data.due_date,
            )
        )[0]
        return Invoice.model_validate(row)

    def get_by_id(self, invoice_id: int, db: Transaction | None = None, lock: bool = False) -> Invoice | None:
        """
        Fetch one header.

        Args:
            invoice_id: Invoice ID
            db: Transaction to read through
            lock: Take a row lock until the transaction ends (requires db)
        """
        query = "SELECT * FROM invoices WHERE id = %s"
        if lock:
            if db is None:
                raise RuntimeError("Row locks require an open transaction")
            query += " FOR UPDATE"

        row = (db or self.postgres).execute_single(query, (invoice_id,))
        return Invoice.model_validate(row) if row else None

    def update_by_id(self, invoice_id: int, patch: InvoiceUpdate, db: Transaction) -> Invoice:
        """
        Change header fields of an unpaid invoice.

        Raises:
            ConflictError: If the invoice is paid
            LookupError: If the invoice does not exist
        """
        current = self.get_by_id(invoice_id, db=db, lock=True)
        if current is None:
            raise LookupError(f"Invoice {invoice_id} not found")
        if current.is_paid:
            logger.warning("Rejected header update on paid invoice %s", invoice_id)
            raise ConflictError(
                f"Invoice {current.invoice_number} is paid and cannot be modified",
                error_code="INVOICE_IMMUTABLE",
            )

        updates = {
            k: v for k, v in patch.model_dump(exclude_unset=True).items()
            if k in _UPDATABLE_COLUMNS
        }
        if not updates:
            return current

        set_parts = [f"{column} = %s" for column in updates]
        set_parts.append("updated_at = now()")
        row = db.execute_returning(
            f"""
            UPDATE invoices
            SET {', '.join(set_parts)}
            WHERE id = %s
            RETURNING *
            """,
            (*updates.values(), invoice_id)
        )[0]
        return Invoice.model_validate(row)

    def set_total(self, invoice_id: int, total_amount: Decimal, db: Transaction) -> Invoice:
        row = db.execute_returning(
            """
            UPDATE invoices
            SET total_amount = %s, updated_at = now()
            WHERE id = %s
            RETURNING *
            """,
            (to_money(total_amount), invoice_id)
        )[0]
        return Invoice.model_validate(row)

    def set_status(
        self,
        invoice_id: int,
        status: InvoiceStatus,
        db: Transaction,
        expected: InvoiceStatus | None = None,
    ) -> Invoice | None:
        """
        Write a computed status.

        With `expected`, the write only happens if the stored status still
        equals it; None is returned when another writer got there first.
        """
        query = "UPDATE invoices SET status = %s, updated_at = now() WHERE id = %s"
        params: tuple = (status, invoice_id)
        if expected is not None:
            query += " AND status = %s"
            params += (expected,)

        rows = db.execute_returning(query + " RETURNING *", params)
        return Invoice.model_validate(rows[0]) if rows else None

    def current_date(self, db: Transaction | None = None) -> date:
        """The database's calendar day; the single clock for overdue checks."""
        return (db or self.postgres).execute_scalar("SELECT CURRENT_DATE")

    def get_balances(self, invoice_ids: Sequence[int], db: Transaction | None = None) -> dict[int, BalanceSnapshot]:
        """
        Balance inputs for many invoices in one aggregate query.

        The query count does not depend on how many ids are passed, and every
        snapshot carries the same `today`.
        """
        if not invoice_ids:
            return {}

        ids = list(invoice_ids)
        rows = (db or self.postgres).execute(
            f"""
            SELECT i.id AS invoice_id, i.status, i.total_amount, i.due_date,
                   COALESCE(p.paid, 0) AS paid_amount,
                   CURRENT_DATE AS today
            FROM invoices i
            LEFT JOIN ({_PAID_FOR_INVOICES}) p ON p.invoice_id = i.id
            WHERE i.id = ANY(%s)
            """,
            (ids, ids)
        )
        return {
            row["invoice_id"]: BalanceSnapshot(
                invoice_id=row["invoice_id"],
                status=InvoiceStatus(row["status"]),
                total_amount=to_money(row["total_amount"]),
                paid_amount=to_money(row["paid_amount"]),
                due_date=row["due_date"],
                today=row["today"],
            )
            for row in rows
        }

    def search(
        self,
        filters: InvoiceFilters | None,
        page: int,
        limit: int,
        sort_by: str | None = None,
        sort_order: str | None = None,
        db: Transaction | None = None,
    ) -> tuple[list[Invoice], PageInfo]:
        """
        Filtered, sorted, paginated header listing.

        page and limit must already be normalized (see billing.pagination).
        """
        field, order = resolve_sort(sort_by, sort_order)
        where, params = _filter_clause(filters)
        target = db or self.postgres

        total = target.execute_scalar(f"SELECT COUNT(*) FROM invoices {where}", tuple(params)) or 0

        direction = "ASC" if order == SortOrder.ASC else "DESC"
        rows = target.execute(
            f"""
            SELECT * FROM invoices
            {where}
            ORDER BY {_SORT_COLUMNS[field]} {direction} NULLS LAST, id {direction}
            LIMIT %s OFFSET %s
            """,
            (*params, limit, (page - 1) * limit)
        )

        return [Invoice.model_validate(row) for row in rows], page_info(page, limit, total)

    def list_overdue(self, limit: int, db: Transaction | None = None) -> list[Invoice]:
        """Unpaid invoices past their due date by the database clock, oldest due first."""
        rows = (db or self.postgres).execute(
            f"""
            SELECT i.*
            FROM invoices i
            LEFT JOIN ({_PAID_BY_INVOICE}) p ON p.invoice_id = i.id
            WHERE i.status <> 'paid'
              AND i.due_date IS NOT NULL
              AND i.due_date < CURRENT_DATE
              AND i.total_amount > COALESCE(p.paid, 0)
            ORDER BY i.due_date ASC, i.id ASC
            LIMIT %s
            """,
            (limit,)
        )
        return [Invoice.model_validate(row) for row in rows]

    def stats(self, party_id: int | None = None) -> InvoiceStats:
        """Counts and amounts for reporting, optionally for one party."""
        where = "WHERE i.party_id = %s" if party_id is not None else ""
        params = (party_id,) if party_id is not None else ()

        totals = self.postgres.execute_single(
            f"""
            SELECT COUNT(*) AS total_invoices,
                   COALESCE(SUM(i.total_amount), 0) AS total_billed,
                   COALESCE(SUM(GREATEST(i.total_amount - COALESCE(p.paid, 0), 0)), 0)
                       AS outstanding_balance
            FROM invoices i
            LEFT JOIN ({_PAID_BY_INVOICE}) p ON p.invoice_id = i.id
            {where}
            """,
            params
        ) or {}

        by_status = {status.value: 0 for status in InvoiceStatus}
        for row in self.postgres.execute(
            f"SELECT status, COUNT(*) AS count FROM invoices i {where} GROUP BY status",
            params
        ):
            by_status[row["status"]] = row["count"]

        by_type = {invoice_type.value: 0 for invoice_type in InvoiceType}
        for row in self.postgres.execute(
            f"SELECT invoice_type, COUNT(*) AS count FROM invoices i {where} GROUP BY invoice_type",
            params
        ):
            by_type[row["invoice_type"]] = row["count"]

        return InvoiceStats(
            total_invoices=totals.get("total_invoices", 0),
            by_status=by_status,
            by_type=by_type,
            total_billed=to_money(totals.get("total_billed", ZERO)),
            outstanding_balance=to_money(totals.get("outstanding_balance", ZERO)),
        )
