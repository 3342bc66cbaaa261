"""
Payment ledger.

Payments are append-only rows against an invoice. Creating one never touches
the invoice's stored status; the billing service recomputes status afterwards
in the same transaction. Only COMPLETED payments count toward the paid total.
"""

import logging
from decimal import Decimal

from billing.config import BillingConfig
from billing.exceptions import InvalidInputError, NotFoundError
from billing.models import (
    Payment, PaymentCreate, PaymentFilters, PaymentMethod, PaymentSortField,
    PaymentStats, PaymentStatus, PageInfo, SortOrder,
)
from billing.pagination import page_info
from clients.postgres_client import PostgresClient, Transaction
from utils.money import ZERO, has_at_most_cents, to_money

logger = logging.getLogger(__name__)

_SORT_COLUMNS = {
    PaymentSortField.PAID_AT: "p.paid_at",
    PaymentSortField.AMOUNT: "p.amount",
    PaymentSortField.METHOD: "p.method",
}

# Methods that always leave an external reference behind
_REFERENCE_REQUIRED = {PaymentMethod.CARD, PaymentMethod.BANK_TRANSFER}


def validate_payment(data: PaymentCreate, config: BillingConfig) -> Decimal:
    """
    Check a payment on its own, before any I/O.

    Returns:
        The amount as a two-place Decimal

    Raises:
        InvalidInputError: On a non-positive, sub-cent or oversized amount,
            or a missing transaction reference for card/bank transfer
    """
    amount = data.amount
    if not amount.is_finite() or amount <= ZERO:
        raise InvalidInputError("Payment amount must be greater than 0")
    if not has_at_most_cents(amount):
        raise InvalidInputError("Payment amount may have at most 2 decimal places")
    if amount > config.max_payment_amount:
        raise InvalidInputError(f"Payment amount may not exceed {config.max_payment_amount}")

    if data.method in _REFERENCE_REQUIRED and not (data.transaction_id and data.transaction_id.strip()):
        raise InvalidInputError(f"transaction_id is required for {data.method.value} payments")

    return to_money(amount)


def _filter_clause(filters: PaymentFilters | None) -> tuple[str, list]:
    conditions = []
    params: list = []
    if filters is not None:
        if filters.invoice_id is not None:
            conditions.append("p.invoice_id = %s")
            params.append(filters.invoice_id)
        if filters.party_id is not None:
            conditions.append("i.party_id = %s")
            params.append(filters.party_id)
        if filters.method is not None:
            conditions.append("p.method = %s")
            params.append(filters.method)
        if filters.status is not None:
            conditions.append("p.status = %s")
            params.append(filters.status)
        if filters.start_date is not None:
            conditions.append("p.paid_at::date >= %s")
            params.append(filters.start_date)
        if filters.end_date is not None:
            conditions.append("p.paid_at::date <= %s")
            params.append(filters.end_date)
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    return where, params


class PaymentService:
    """Append-only store for payments."""

    def __init__(self, postgres: PostgresClient, config: BillingConfig | None = None):
        self.postgres = postgres
        self.config = config or BillingConfig()

    def create(
        self,
        invoice_id: int,
        data: PaymentCreate,
        recorded_by: int | None,
        db: Transaction,
    ) -> Payment:
        """
        Append a payment row.

        Raises:
            InvalidInputError: If the payment fails validation
            NotFoundError: If the invoice does not exist (checked before insert)
        """
        amount = validate_payment(data, self.config)

        exists = db.execute_scalar("SELECT 1 FROM invoices WHERE id = %s", (invoice_id,))
        if exists is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")

        row = db.execute_returning(
            """
            INSERT INTO payments (
                invoice_id, amount, method, transaction_id, status,
                notes, paid_at, recorded_by, created_at
            ) VALUES (
                %s, %s, %s, %s, %s,
                %s, COALESCE(%s, now()), %s, now()
            )
            RETURNING *
            """,
            (
                invoice_id, amount, data.method, data.transaction_id, data.status,
                data.notes, data.paid_at, recorded_by,
            )
        )[0]

        payment = Payment.model_validate(row)
        logger.info(
            "Recorded %s payment %s of %s on invoice %s",
            payment.status.value, payment.id, payment.amount, invoice_id,
        )
        return payment

    def get_total_by_invoice(self, invoice_id: int, db: Transaction | None = None) -> Decimal:
        """Sum of COMPLETED payments. Pending and failed rows never count."""
        total = (db or self.postgres).execute_scalar(
            """
            SELECT COALESCE(SUM(amount), 0) FROM payments
            WHERE invoice_id = %s AND status = %s
            """,
            (invoice_id, PaymentStatus.COMPLETED)
        )
        return to_money(total if total is not None else ZERO)

    def get_pending_total(self, invoice_id: int, db: Transaction | None = None) -> Decimal:
        """Sum of PENDING payments, which may still complete."""
        total = (db or self.postgres).execute_scalar(
            """
            SELECT COALESCE(SUM(amount), 0) FROM payments
            WHERE invoice_id = %s AND status = %s
            """,
            (invoice_id, PaymentStatus.PENDING)
        )
        return to_money(total if total is not None else ZERO)

    def get_by_id(self, payment_id: int, db: Transaction | None = None) -> Payment | None:
        row = (db or self.postgres).execute_single(
            "SELECT * FROM payments WHERE id = %s",
            (payment_id,)
        )
        return Payment.model_validate(row) if row else None

    def list_for_invoice(self, invoice_id: int, db: Transaction | None = None) -> list[Payment]:
        """Payment history of one invoice, oldest first."""
        rows = (db or self.postgres).execute(
            "SELECT * FROM payments WHERE invoice_id = %s ORDER BY paid_at ASC, id ASC",
            (invoice_id,)
        )
        return [Payment.model_validate(row) for row in rows]

    def search(
        self,
        filters: PaymentFilters | None,
        page: int,
        limit: int,
        sort_by: str | None = None,
        sort_order: str | None = None,
    ) -> tuple[list[Payment], PageInfo]:
        """Filtered, sorted, paginated payment listing across invoices."""
        try:
            field = PaymentSortField(sort_by)
        except ValueError:
            field = PaymentSortField.PAID_AT
        direction = "ASC" if (sort_order or "").lower() == SortOrder.ASC.value else "DESC"

        where, params = _filter_clause(filters)
        base = f"FROM payments p JOIN invoices i ON i.id = p.invoice_id {where}"

        total = self.postgres.execute_scalar(f"SELECT COUNT(*) {base}", tuple(params)) or 0
        rows = self.postgres.execute(
            f"""
            SELECT p.* {base}
            ORDER BY {_SORT_COLUMNS[field]} {direction}, p.id {direction}
            LIMIT %s OFFSET %s
            """,
            (*params, limit, (page - 1) * limit)
        )

        return [Payment.model_validate(row) for row in rows], page_info(page, limit, total)

    def stats(self) -> PaymentStats:
        """Revenue summary. Time windows use the database clock."""
        row = self.postgres.execute_single(
            """
            SELECT
                COUNT(*) AS total_payments,
                COALESCE(SUM(amount) FILTER (WHERE status = 'completed'), 0) AS total_revenue,
                COALESCE(SUM(amount) FILTER (
                    WHERE status = 'completed' AND paid_at::date = CURRENT_DATE
                ), 0) AS revenue_today,
                COALESCE(SUM(amount) FILTER (
                    WHERE status = 'completed' AND paid_at::date > CURRENT_DATE - 7
                ), 0) AS revenue_last_7_days,
                COALESCE(SUM(amount) FILTER (
                    WHERE status = 'completed'
                      AND date_trunc('month', paid_at) = date_trunc('month', CURRENT_DATE)
                ), 0) AS revenue_this_month,
                COUNT(*) FILTER (WHERE status = 'pending') AS pending_payments,
                COUNT(*) FILTER (WHERE status = 'failed') AS failed_payments
            FROM payments
            """
        ) or {}

        revenue_by_method = {method.value: ZERO for method in PaymentMethod}
        for method_row in self.postgres.execute(
            """
            SELECT method, SUM(amount) AS revenue
            FROM payments
            WHERE status = 'completed'
            GROUP BY method
            """
        ):
            revenue_by_method[method_row["method"]] = to_money(method_row["revenue"])

        return PaymentStats(
            total_payments=row.get("total_payments", 0),
            total_revenue=to_money(row.get("total_revenue", ZERO)),
            revenue_by_method=revenue_by_method,
            revenue_today=to_money(row.get("revenue_today", ZERO)),
            revenue_last_7_days=to_money(row.get("revenue_last_7_days", ZERO)),
            revenue_this_month=to_money(row.get("revenue_this_month", ZERO)),
            pending_payments=row.get("pending_payments", 0),
            failed_payments=row.get("failed_payments", 0),
        )
