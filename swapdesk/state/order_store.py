"""
SQLite-backed order store with atomic per-row updates.

CRITICAL PROPERTIES:
1. One row per order, current snapshot only (no history)
2. Every write is a single transaction returning the new row
3. Decimal amounts stored as TEXT, never float
4. Optional compare-and-set on status (expected_status)
5. One shared connection serialized by a lock; safe to call from
   worker threads (asyncio.to_thread)

USAGE:
    store = OrderStore(Path("data/orders.db"))

    order = store.create(order_id, "wallet1", "SOL", "USDC", Decimal("10"))
    order = store.update_status(order_id, OrderStatus.ROUTING,
                                expected_status=OrderStatus.PENDING)
    orders = store.list_by_wallet("wallet1", limit=20)
"""

import sqlite3
import threading
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import List, Optional, Union

from swapdesk.errors import InvalidStateError, OrderNotFoundError, OrderStoreError
from swapdesk.logging import get_logger, LogStream
from swapdesk.state.order import Order, OrderStatus
from swapdesk.time import Clock, RealTimeClock, ensure_utc


MEMORY_DB = ":memory:"


class OrderStore:
    """
    SQLite order persistence.

    SCHEMA:
    - orders table, TEXT fields for Decimal and ISO-8601 timestamps
    - index on (wallet, created_at) for newest-first wallet listings
    - WAL mode for file databases
    - Auto-commit disabled (explicit transactions)
    """

    SCHEMA_VERSION = 1

    CREATE_TABLE_SQL = """
        CREATE TABLE IF NOT EXISTS orders (
            order_id TEXT PRIMARY KEY,
            wallet TEXT NOT NULL,
            input_token TEXT NOT NULL,
            output_token TEXT NOT NULL,
            input_amount TEXT NOT NULL,
            status TEXT NOT NULL,
            selected_venue TEXT,
            output_amount TEXT,
            execution_ref TEXT,
            error TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """

    CREATE_INDEX_SQL = """
        CREATE INDEX IF NOT EXISTS idx_orders_wallet_created
        ON orders (wallet, created_at DESC)
    """

    CREATE_VERSION_TABLE_SQL = """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY
        )
    """

    def __init__(self, db_path: Union[Path, str], clock: Optional[Clock] = None):
        """
        Args:
            db_path: SQLite database file, or ":memory:"
            clock: Timestamp source. Defaults to RealTimeClock().
        """
        self.db_path = db_path
        self.clock = clock or RealTimeClock()
        self.logger = get_logger(LogStream.ORDERS)

        self._lock = threading.Lock()
        self._closed = False
        self._conn = self._connect()
        self._initialize_db()

        self.logger.info("OrderStore initialized", extra={
            "db_path": str(self.db_path),
            "schema_version": self.SCHEMA_VERSION
        })

    def _connect(self) -> sqlite3.Connection:
        path = str(self.db_path)
        if path != MEMORY_DB:
            Path(path).parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(path, check_same_thread=False)
        if path != MEMORY_DB:
            conn.execute("PRAGMA journal_mode=WAL")

        # We control transactions
        conn.isolation_level = None
        conn.row_factory = sqlite3.Row
        return conn

    def _initialize_db(self) -> None:
        with self._lock:
            conn = self._conn
            conn.execute(self.CREATE_TABLE_SQL)
            conn.execute(self.CREATE_INDEX_SQL)
            conn.execute(self.CREATE_VERSION_TABLE_SQL)

            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO schema_version (version) VALUES (?)",
                    (self.SCHEMA_VERSION,)
                )

    def _check_open(self) -> None:
        if self._closed:
            raise OrderStoreError("OrderStore is closed")

    # ========================================================================
    # WRITES
    # ========================================================================

    def create(
        self,
        order_id: str,
        wallet: str,
        input_token: str,
        output_token: str,
        input_amount: Decimal,
    ) -> Order:
        """
        Insert a new PENDING order.

        Raises:
            OrderStoreError: If the id already exists or the write fails
        """
        now = self.clock.now().isoformat(timespec="microseconds")

        with self._lock:
            self._check_open()
            conn = self._conn
            try:
                conn.execute("BEGIN IMMEDIATE")
                conn.execute("""
                    INSERT INTO orders (
                        order_id, wallet, input_token, output_token, input_amount,
                        status, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    order_id,
                    wallet,
                    input_token,
                    output_token,
                    str(input_amount),
                    OrderStatus.PENDING.value,
                    now,
                    now,
                ))
                row = self._fetch_row(conn, order_id)
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                conn.rollback()
                self.logger.error(
                    f"Failed to create order: {order_id}",
                    extra={"order_id": order_id, "error": str(e)},
                    exc_info=True
                )
                raise OrderStoreError(f"Failed to create order: {e}") from e

        self.logger.info(f"Order created: {order_id}", extra={
            "order_id": order_id,
            "wallet": wallet,
            "input_token": input_token,
            "output_token": output_token,
            "input_amount": str(input_amount),
        })
        return self._row_to_order(row)

    def update_status(
        self,
        order_id: str,
        status: OrderStatus,
        error: Optional[str] = None,
        expected_status: Optional[OrderStatus] = None,
    ) -> Order:
        """
        Set status (and error text) atomically.

        Error text is kept only for FAILED; any other status clears it.

        Args:
            expected_status: If given, the write only happens when the
                current status equals it (compare-and-set)

        Raises:
            OrderNotFoundError: No such order
            InvalidStateError: Current status differs from expected_status
            OrderStoreError: Write failed
        """
        stored_error = error if status == OrderStatus.FAILED else None
        return self._update(
            order_id,
            expected_status,
            "status = ?, error = ?",
            (status.value, stored_error),
        )

    def update_execution(
        self,
        order_id: str,
        venue: str,
        output_amount: Decimal,
        execution_ref: str,
        status: OrderStatus = OrderStatus.CONFIRMED,
        expected_status: Optional[OrderStatus] = None,
    ) -> Order:
        """
        Record execution details and status in one write.

        Raises:
            OrderNotFoundError: No such order
            InvalidStateError: Current status differs from expected_status
            OrderStoreError: Write failed
        """
        return self._update(
            order_id,
            expected_status,
            "status = ?, selected_venue = ?, output_amount = ?, execution_ref = ?, error = NULL",
            (status.value, venue, str(output_amount), execution_ref),
        )

    def _update(
        self,
        order_id: str,
        expected_status: Optional[OrderStatus],
        assignments: str,
        params: tuple,
    ) -> Order:
        now = self.clock.now().isoformat(timespec="microseconds")

        with self._lock:
            self._check_open()
            conn = self._conn
            try:
                conn.execute("BEGIN IMMEDIATE")

                current = self._fetch_row(conn, order_id)
                if current is None:
                    conn.rollback()
                    raise OrderNotFoundError(order_id)

                current_status = OrderStatus(current["status"])
                if expected_status is not None and current_status != expected_status:
                    conn.rollback()
                    raise InvalidStateError(
                        f"Order {order_id} is {current_status.value}, "
                        f"expected {expected_status.value}",
                        order_id=order_id,
                        status=current_status,
                    )

                conn.execute(
                    f"UPDATE orders SET {assignments}, updated_at = ? WHERE order_id = ?",
                    params + (now, order_id),
                )
                row = self._fetch_row(conn, order_id)
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                conn.rollback()
                self.logger.error(
                    f"Failed to update order: {order_id}",
                    extra={"order_id": order_id, "error": str(e)},
                    exc_info=True
                )
                raise OrderStoreError(f"Failed to update order: {e}") from e

        return self._row_to_order(row)

    # ========================================================================
    # READS
    # ========================================================================

    def find(self, order_id: str) -> Optional[Order]:
        """Order by id, or None."""
        with self._lock:
            self._check_open()
            try:
                row = self._fetch_row(self._conn, order_id)
            except sqlite3.Error as e:
                raise OrderStoreError(f"Failed to read order: {e}") from e

        return self._row_to_order(row) if row is not None else None

    def get(self, order_id: str) -> Order:
        """
        Order by id.

        Raises:
            OrderNotFoundError: No such order
        """
        order = self.find(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    def list_by_wallet(self, wallet: str, limit: int = 50) -> List[Order]:
        """Orders for wallet, newest first."""
        with self._lock:
            self._check_open()
            try:
                rows = self._conn.execute(
                    """
                    SELECT * FROM orders
                    WHERE wallet = ?
                    ORDER BY created_at DESC, order_id DESC
                    LIMIT ?
                    """,
                    (wallet, limit),
                ).fetchall()
            except sqlite3.Error as e:
                raise OrderStoreError(f"Failed to list orders: {e}") from e

        return [self._row_to_order(row) for row in rows]

    @staticmethod
    def _fetch_row(conn: sqlite3.Connection, order_id: str) -> Optional[sqlite3.Row]:
        return conn.execute(
            "SELECT * FROM orders WHERE order_id = ?",
            (order_id,)
        ).fetchone()

    def _row_to_order(self, row: sqlite3.Row) -> Order:
        return Order(
            order_id=row["order_id"],
            wallet=row["wallet"],
            input_token=row["input_token"],
            output_token=row["output_token"],
            input_amount=Decimal(row["input_amount"]),
            status=OrderStatus(row["status"]),
            created_at=ensure_utc(datetime.fromisoformat(row["created_at"])),
            updated_at=ensure_utc(datetime.fromisoformat(row["updated_at"])),
            selected_venue=row["selected_venue"],
            output_amount=Decimal(row["output_amount"]) if row["output_amount"] is not None else None,
            execution_ref=row["execution_ref"],
            error=row["error"],
        )

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def close(self) -> None:
        """Close the connection. Waits for an in-flight write to finish."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._conn.close()

        self.logger.info("OrderStore closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
