"""
Transactional boundary for ledger operations.

Domain errors pass through untouched. Driver errors are logged with their
cause and surfaced as PersistenceError, which carries the operation name but
never query text or parameters.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

import psycopg2

from billing.exceptions import BillingError, PersistenceError
from clients.postgres_client import PostgresClient, Transaction

logger = logging.getLogger(__name__)


@contextmanager
def translate_errors(operation: str) -> Iterator[None]:
    """Turn driver failures inside the block into PersistenceError."""
    try:
        yield
    except BillingError:
        raise
    except psycopg2.Error as exc:
        logger.exception("Database failure during %s", operation)
        raise PersistenceError(operation) from exc


@contextmanager
def unit_of_work(postgres: PostgresClient, operation: str) -> Iterator[Transaction]:
    """
    Run a block atomically.

    Usage:
        with unit_of_work(postgres, "record_payment") as tx:
            ...

    Any exception rolls back every statement issued through tx.

    Raises:
        BillingError: Re-raised as-is after rollback
        PersistenceError: On any database failure, after rollback
    """
    with translate_errors(operation):
        with postgres.transaction() as tx:
            yield tx
