"""
Invoice number allocation.

Format: PREFIX-YYYY-NNNN (e.g. WC-2026-0042). One counter row per year in
invoice_sequences. The upsert takes a row lock, so concurrent creations queue
on it and each receives the next value; the enclosing transaction's rollback
also rolls the counter back, so no number is consumed by a failed creation.
"""

import logging
import re

from clients.postgres_client import Transaction

logger = logging.getLogger(__name__)

_INVOICE_NUMBER_RE = re.compile(r"^(?P<prefix>[A-Z]{1,10})-(?P<year>\d{4})-(?P<sequence>\d{4,})$")


def format_invoice_number(prefix: str, year: int, sequence: int) -> str:
    """Render an invoice number, zero-padding the sequence to four digits."""
    if sequence < 1:
        raise ValueError(f"Invoice sequence must be positive, got {sequence}")
    return f"{prefix}-{year:04d}-{sequence:04d}"


def is_valid_invoice_number(value: str) -> bool:
    return _INVOICE_NUMBER_RE.match(value) is not None


def parse_invoice_number(value: str) -> tuple[str, int, int]:
    """
    Split an invoice number into (prefix, year, sequence).

    Raises:
        ValueError: If the value is not a well-formed invoice number
    """
    match = _INVOICE_NUMBER_RE.match(value)
    if match is None:
        raise ValueError(f"Invalid invoice number format: {value!r}")
    return match["prefix"], int(match["year"]), int(match["sequence"])


class InvoiceSequence:
    """Allocates invoice numbers inside the caller's transaction."""

    def __init__(self, prefix: str = "WC"):
        self.prefix = prefix

    def next(self, tx: Transaction) -> str:
        """
        Allocate the next invoice number for the current database year.

        Args:
            tx: The open transaction that will also insert the invoice header

        Returns:
            A unique invoice number

        Raises:
            RuntimeError: If called outside a transaction
        """
        if not isinstance(tx, Transaction):
            raise RuntimeError("Invoice numbers can only be allocated inside a transaction")

        row = tx.execute_single(
            """
            INSERT INTO invoice_sequences (year, last_sequence, updated_at)
            VALUES (EXTRACT(YEAR FROM CURRENT_DATE)::int, 1, now())
            ON CONFLICT (year) DO UPDATE
            SET last_sequence = invoice_sequences.last_sequence + 1,
                updated_at = now()
            RETURNING year, last_sequence
            """
        )
        if row is None:
            raise RuntimeError("Invoice sequence allocation returned no row")

        invoice_number = format_invoice_number(self.prefix, row["year"], row["last_sequence"])
        logger.debug("Allocated invoice number %s", invoice_number)
        return invoice_number
