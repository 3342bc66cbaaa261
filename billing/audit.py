"""
Append-only audit trail for ledger changes.

Every invoice, item and payment mutation leaves an entry here. Entries are:
- Append-only (never modified or deleted)
- Attributed to the acting staff member when one is known
- Written through the caller's transaction, so a rolled-back mutation
  leaves no audit entry behind
"""

import logging
from enum import Enum
from typing import Any

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient, Transaction
from utils.timezone import now_utc
from utils.user_context import find_current_user_id

logger = logging.getLogger(__name__)


class AuditAction(Enum):
    """Type of change made to a ledger entity."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def compute_changes(
    old: dict[str, Any],
    new: dict[str, Any],
    exclude_fields: set[str] | None = None
) -> dict[str, dict[str, Any]]:
    """
    Diff two entity snapshots.

    Args:
        old: Previous state of entity
        new: New state of entity
        exclude_fields: Fields to ignore (defaults to {"updated_at"})

    Returns:
        {field: {"old": old_val, "new": new_val}} for each changed field.
        Empty dict if nothing changed.
    """
    exclude = exclude_fields or {"updated_at"}
    changes = {}

    for key in sorted(set(old) | set(new)):
        if key in exclude:
            continue
        if old.get(key) != new.get(key):
            changes[key] = {"old": old.get(key), "new": new.get(key)}

    return changes


class AuditLogger:
    """
    Writes and reads audit_log entries.

    Pass model_dump(mode="json") snapshots so Decimals, dates and enums are
    stored as JSON-compatible values.

    Usage:
        with postgres.transaction() as tx:
            ...
            audit.log_change(
                entity_type="invoice",
                entity_id=invoice.id,
                action=AuditAction.CREATE,
                changes={"created": invoice.model_dump(mode="json")},
                db=tx,
            )
    """

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def log_change(
        self,
        entity_type: str,
        entity_id: int,
        action: AuditAction,
        changes: dict[str, Any],
        user_id: int | None = None,
        db: Transaction | None = None,
    ) -> None:
        """
        Record one entity change.

        Args:
            entity_type: "invoice", "invoice_item" or "payment"
            entity_id: ID of the entity
            action: The action performed
            changes: CREATE -> {"created": {...}}, UPDATE -> {field: {"old", "new"}},
                DELETE -> {"deleted": {...}}
            user_id: Acting staff member (defaults to the current context, may be None)
            db: Open transaction to write through (defaults to a one-shot write)
        """
        if user_id is None:
            user_id = find_current_user_id()

        target = db or self.postgres
        target.execute(
            """
            INSERT INTO audit_log (user_id, entity_type, entity_id, action, changes, created_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (
                user_id,
                entity_type,
                entity_id,
                action.value,
                Json(changes),
                now_utc(),
            )
        )
        logger.debug("Audit %s %s %s by user %s", action.value, entity_type, entity_id, user_id)

    def get_entity_history(self, entity_type: str, entity_id: int) -> list[dict[str, Any]]:
        """Full audit history for one entity, newest first."""
        return self.postgres.execute(
            """
            SELECT id, user_id, entity_type, entity_id, action, changes, created_at
            FROM audit_log
            WHERE entity_type = %s AND entity_id = %s
            ORDER BY created_at DESC, id DESC
            """,
            (entity_type, entity_id)
        )
