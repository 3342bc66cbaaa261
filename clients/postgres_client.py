"""
PostgreSQL client with connection pooling and explicit transactions.

Uses psycopg2 with ThreadedConnectionPool. Every ledger mutation runs inside
transaction(): one pooled connection, commit on clean exit, rollback on any
exception. The one-shot execute* helpers each run in their own short
transaction for reads and standalone writes.
"""

import logging
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, Iterator, List, Sequence, Tuple
from uuid import UUID

import psycopg2
import psycopg2.extras
import psycopg2.pool

logger = logging.getLogger(__name__)


def _convert_params(params: Tuple | Dict | None) -> Tuple | Dict | None:
    """Convert UUID and Enum values to plain strings for the driver."""
    if params is None:
        return None

    def convert(value: Any) -> Any:
        if isinstance(value, UUID):
            return str(value)
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, list):
            return [convert(v) for v in value]
        if isinstance(value, tuple):
            return tuple(convert(v) for v in value)
        if isinstance(value, dict):
            return {k: convert(v) for k, v in value.items()}
        return value

    return convert(params)


class Transaction:
    """
    Statement access bound to one connection inside an open transaction.

    Nothing here commits. The owning PostgresClient.transaction() block
    decides commit or rollback when it exits.
    """

    def __init__(self, conn):
        self._conn = conn

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute query, return list of row dicts. Empty list if no results."""
        with self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(query, _convert_params(params))
            if cur.description:
                return [dict(row) for row in cur.fetchall()]
            return []

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        """Execute query, return first row or None."""
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_scalar(self, query: str, params: Tuple | Dict | None = None) -> Any:
        """Execute query, return first value of first row or None."""
        with self._conn.cursor() as cur:
            cur.execute(query, _convert_params(params))
            result = cur.fetchone()
            return result[0] if result else None

    def execute_returning(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute INSERT/UPDATE/DELETE with RETURNING, return results."""
        return self.execute(query, params)

    def execute_batch_returning(
        self,
        query: str,
        rows: Sequence[Tuple],
        template: str | None = None,
    ) -> List[Dict[str, Any]]:
        """
        Execute a multi-row INSERT ... VALUES %s RETURNING in one statement.

        Args:
            query: Statement with a single VALUES %s placeholder
            rows: Parameter tuples, one per row
            template: Optional per-row template (e.g. "(%s, %s, %s)")

        Returns:
            Returned rows as dicts, in insertion order.
        """
        if not rows:
            return []

        converted = [_convert_params(tuple(row)) for row in rows]
        with self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            returned = psycopg2.extras.execute_values(
                cur,
                query,
                converted,
                template=template,
                page_size=len(converted),
                fetch=True,
            )
            return [dict(row) for row in returned]


class PostgresClient:
    """
    PostgreSQL client with pooled connections and unit-of-work transactions.

    Usage:
        db = PostgresClient(database_url)

        # Atomic multi-statement work
        with db.transaction() as tx:
            tx.execute("UPDATE invoices SET total_amount = %s WHERE id = %s", (total, invoice_id))
            tx.execute("UPDATE invoices SET status = %s WHERE id = %s", ("paid", invoice_id))

        # One-shot read
        row = db.execute_single("SELECT * FROM invoices WHERE id = %s", (invoice_id,))
    """

    # Class-level connection pools shared across instances
    _connection_pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
    _pools_lock = threading.RLock()

    def __init__(self, database_url: str, min_connections: int = 2, max_connections: int = 20):
        self._database_url = database_url
        self._min_connections = min_connections
        self._max_connections = max_connections
        self._ensure_connection_pool()

    def _ensure_connection_pool(self) -> None:
        """Create connection pool if it doesn't exist."""
        with self._pools_lock:
            if self._database_url not in self._connection_pools:
                pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=self._min_connections,
                    maxconn=self._max_connections,
                    dsn=self._database_url,
                    connect_timeout=30,
                )
                self._connection_pools[self._database_url] = pool
                logger.info("Connection pool created")

    @contextmanager
    def get_connection(self):
        """Borrow a pooled connection, returning it afterwards."""
        if self._database_url not in self._connection_pools:
            self._ensure_connection_pool()

        pool = self._connection_pools[self._database_url]
        conn = None

        try:
            conn = pool.getconn()
            if conn is None:
                raise RuntimeError("Could not get connection from pool")
            yield conn

        finally:
            if conn:
                pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """
        Run a block as one atomic unit of work.

        Commits when the block exits normally. Any exception rolls back every
        statement issued through the yielded Transaction and propagates.
        """
        with self.get_connection() as conn:
            tx = Transaction(conn)
            try:
                yield tx
            except BaseException:
                conn.rollback()
                raise
            conn.commit()

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute query, return list of row dicts. Empty list if no results."""
        with self.transaction() as tx:
            return tx.execute(query, params)

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        """Execute query, return first row or None."""
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_scalar(self, query: str, params: Tuple | Dict | None = None) -> Any:
        """Execute query, return first value of first row or None."""
        with self.transaction() as tx:
            return tx.execute_scalar(query, params)

    def execute_returning(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute INSERT/UPDATE with RETURNING, return results."""
        with self.transaction() as tx:
            return tx.execute_returning(query, params)

    def close(self) -> None:
        """Close connection pool."""
        with self._pools_lock:
            if self._database_url in self._connection_pools:
                self._connection_pools[self._database_url].closeall()
                del self._connection_pools[self._database_url]

    @classmethod
    def close_all_pools(cls) -> None:
        """Close all connection pools."""
        with cls._pools_lock:
            for pool in cls._connection_pools.values():
                pool.closeall()
            cls._connection_pools.clear()
