"""
Line item store for invoice items.

Items are validated in full before anything is written, and the stored
total_price is always quantity * unit_price computed here. A caller-supplied
total is only checked against that product, never stored.
"""

import logging
from decimal import Decimal
from typing import Sequence

from billing.config import MAX_AMOUNT, MAX_ITEM_QUANTITY, BillingConfig
from billing.exceptions import InvalidInputError
from billing.models import InvoiceItem, InvoiceItemCreate, InvoiceItemUpdate
from clients.postgres_client import PostgresClient, Transaction
from utils.money import ZERO, has_at_most_cents, to_money

logger = logging.getLogger(__name__)


def _check_quantity(quantity: int, label: str, max_quantity: int) -> None:
    if quantity <= 0:
        raise InvalidInputError(f"{label}: quantity must be greater than 0")
    if quantity > max_quantity:
        raise InvalidInputError(f"{label}: quantity may not exceed {max_quantity}")


def _check_unit_price(unit_price: Decimal, label: str) -> None:
    if not unit_price.is_finite() or unit_price <= ZERO:
        raise InvalidInputError(f"{label}: unit_price must be greater than 0")
    if not has_at_most_cents(unit_price):
        raise InvalidInputError(f"{label}: unit_price may have at most 2 decimal places")


def _line_total(quantity: int, unit_price: Decimal, label: str, max_quantity: int, max_amount: Decimal) -> Decimal:
    """Validated quantity * unit_price, bounded by what the columns can hold."""
    _check_quantity(quantity, label, max_quantity)
    _check_unit_price(unit_price, label)
    total = to_money(quantity * unit_price)
    if total > max_amount:
        raise InvalidInputError(f"{label}: total {total} exceeds the maximum of {max_amount}")
    return total


def validate_item(
    item: InvoiceItemCreate,
    tolerance: Decimal,
    position: int | None = None,
    *,
    max_quantity: int = MAX_ITEM_QUANTITY,
    max_amount: Decimal = MAX_AMOUNT,
) -> Decimal:
    """
    Check one item and return its exact total.

    Args:
        item: Item as supplied by the caller
        tolerance: Largest accepted gap between a supplied total and quantity * unit_price
        position: 1-based index within a batch, used in error messages
        max_quantity: Largest accepted quantity
        max_amount: Largest accepted item total

    Returns:
        quantity * unit_price as a two-place Decimal

    Raises:
        InvalidInputError: On blank description, non-positive or oversized
            quantity, non-positive or sub-cent price, a total above max_amount,
            or a supplied total that does not match
    """
    label = f"Item {position}" if position is not None else "Item"

    if not item.description or not item.description.strip():
        raise InvalidInputError(f"{label}: description is required")

    total = _line_total(item.quantity, item.unit_price, label, max_quantity, max_amount)

    if item.total_price is not None:
        if not item.total_price.is_finite() or abs(item.total_price - total) > tolerance:
            raise InvalidInputError(
                f"{label}: total_price {item.total_price} does not match "
                f"quantity * unit_price ({total})"
            )

    return total


def validate_items(
    items: Sequence[InvoiceItemCreate],
    tolerance: Decimal,
    *,
    max_quantity: int = MAX_ITEM_QUANTITY,
    max_amount: Decimal = MAX_AMOUNT,
) -> list[Decimal]:
    """
    Validate a whole batch. Raises on the first bad item; returns exact totals in order.

    The batch sum is bounded by max_amount as well, since it becomes the
    invoice total.
    """
    if not items:
        raise InvalidInputError("At least one item is required")
    totals = [
        validate_item(item, tolerance, position, max_quantity=max_quantity, max_amount=max_amount)
        for position, item in enumerate(items, start=1)
    ]
    batch_total = sum(totals, ZERO)
    if batch_total > max_amount:
        raise InvalidInputError(f"Invoice total {batch_total} exceeds the maximum of {max_amount}")
    return totals


def validate_item_patch(
    patch: InvoiceItemUpdate,
    *,
    max_quantity: int = MAX_ITEM_QUANTITY,
    max_amount: Decimal = MAX_AMOUNT,
) -> None:
    """
    Check the fields a patch supplies, without the stored row.

    Values the patch leaves out are checked again against the stored item
    by LineItemService.update_by_id.
    """
    if patch.description is not None and not patch.description.strip():
        raise InvalidInputError("Item: description is required")
    if patch.quantity is not None:
        _check_quantity(patch.quantity, "Item", max_quantity)
    if patch.unit_price is not None:
        _check_unit_price(patch.unit_price, "Item")
    if patch.quantity is not None and patch.unit_price is not None:
        _line_total(patch.quantity, patch.unit_price, "Item", max_quantity, max_amount)


class LineItemService:
    """Store for invoice line items."""

    def __init__(self, postgres: PostgresClient, config: BillingConfig | None = None):
        self.postgres = postgres
        self.config = config or BillingConfig()

    def create_batch(
        self,
        invoice_id: int,
        items: Sequence[InvoiceItemCreate],
        db: Transaction,
    ) -> list[InvoiceItem]:
        """
        Insert several items in one statement.

        Every item is validated before the insert is issued, so an invalid
        item k of n leaves no rows behind.

        Args:
            invoice_id: Owning invoice
            items: Items to insert
            db: Open transaction

        Returns:
            Created items in input order

        Raises:
            InvalidInputError: If the list is empty or any item is invalid
        """
        totals = validate_items(
            items,
            self.config.amount_tolerance,
            max_quantity=self.config.max_item_quantity,
            max_amount=self.config.max_amount,
        )

        rows = db.execute_batch_returning(
            """
            INSERT INTO invoice_items (
                invoice_id, service_id, description, quantity, unit_price, total_price, created_at
            ) VALUES %s
            RETURNING *
            """,
            [
                (invoice_id, item.service_id, item.description.strip(), item.quantity,
                 to_money(item.unit_price), total)
                for item, total in zip(items, totals)
            ],
            template="(%s, %s, %s, %s, %s, %s, now())",
        )

        created = [InvoiceItem.model_validate(row) for row in rows]
        logger.info("Added %d item(s) to invoice %s", len(created), invoice_id)
        return created

    def create(self, invoice_id: int, item: InvoiceItemCreate, db: Transaction) -> InvoiceItem:
        """Insert a single item."""
        return self.create_batch(invoice_id, [item], db)[0]

    def get_by_id(self, item_id: int, db: Transaction | None = None) -> InvoiceItem | None:
        row = (db or self.postgres).execute_single(
            "SELECT * FROM invoice_items WHERE id = %s",
            (item_id,)
        )
        return InvoiceItem.model_validate(row) if row else None

    def list_for_invoice(self, invoice_id: int, db: Transaction | None = None) -> list[InvoiceItem]:
        """Items of one invoice in insertion order."""
        rows = (db or self.postgres).execute(
            "SELECT * FROM invoice_items WHERE invoice_id = %s ORDER BY id ASC",
            (invoice_id,)
        )
        return [InvoiceItem.model_validate(row) for row in rows]

    def list_for_invoices(self, invoice_ids: Sequence[int], db: Transaction | None = None) -> dict[int, list[InvoiceItem]]:
        """Items of several invoices in one query, keyed by invoice id."""
        grouped: dict[int, list[InvoiceItem]] = {invoice_id: [] for invoice_id in invoice_ids}
        if not invoice_ids:
            return grouped

        rows = (db or self.postgres).execute(
            "SELECT * FROM invoice_items WHERE invoice_id = ANY(%s) ORDER BY invoice_id, id",
            (list(invoice_ids),)
        )
        for row in rows:
            grouped[row["invoice_id"]].append(InvoiceItem.model_validate(row))
        return grouped

    def update_by_id(self, item_id: int, patch: InvoiceItemUpdate, db: Transaction) -> InvoiceItem:
        """
        Patch one item.

        total_price is recomputed from the post-patch quantity and unit price.

        Raises:
            InvalidInputError: If the patched values are invalid
            LookupError: If the item vanished (callers lock and check first)
        """
        current = self.get_by_id(item_id, db=db)
        if current is None:
            raise LookupError(f"Invoice item {item_id} not found")

        updates = patch.model_dump(exclude_unset=True, exclude_none=True)
        if not updates:
            return current

        description = updates.get("description", current.description)
        if not description.strip():
            raise InvalidInputError("Item: description is required")
        quantity = updates.get("quantity", current.quantity)
        unit_price = updates.get("unit_price", current.unit_price)
        total = _line_total(
            quantity, unit_price, "Item", self.config.max_item_quantity, self.config.max_amount
        )

        values = {
            "description": description.strip(),
            "quantity": quantity,
            "unit_price": to_money(unit_price),
            "total_price": total,
        }
        set_parts = [f"{column} = %s" for column in values]
        row = db.execute_returning(
            f"""
            UPDATE invoice_items
            SET {', '.join(set_parts)}
            WHERE id = %s
            RETURNING *
            """,
            (*values.values(), item_id)
        )[0]

        return InvoiceItem.model_validate(row)

    def delete_by_id(self, item_id: int, db: Transaction) -> bool:
        """Delete one item. Returns False if it did not exist."""
        rows = db.execute_returning(
            "DELETE FROM invoice_items WHERE id = %s RETURNING id",
            (item_id,)
        )
        return bool(rows)

    def calculate_invoice_total(self, invoice_id: int, db: Transaction | None = None) -> Decimal:
        """Authoritative invoice total: the sum of current item totals."""
        total = (db or self.postgres).execute_scalar(
            "SELECT COALESCE(SUM(total_price), 0) FROM invoice_items WHERE invoice_id = %s",
            (invoice_id,)
        )
        return to_money(total if total is not None else ZERO)
