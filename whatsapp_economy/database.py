"""SQLite ledger store for whatsapp-economy-bot.

Each public method is async and wraps a synchronous inner function via
asyncio.run_in_executor(None, _sync). A new connection is created per call
(WAL mode, busy timeout, Row factory).

Balance mutations go through ``run_unit_of_work``: the caller's function
receives a ``UnitOfWork`` bound to one connection inside an explicit
``BEGIN IMMEDIATE`` transaction, which commits when the function returns
and rolls back on any exception.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
from datetime import datetime
from enum import Enum
from typing import Any, Callable, TypeVar

from .errors import EconomyError, StorageUnavailable, TargetNotFound, TransactionFailed

T = TypeVar("T")

# Largest value a SQLite INTEGER column holds
MAX_AMOUNT = 2**63 - 1


class TransactionType(str, Enum):
    WORK = "work"
    DAILY = "daily"
    TRANSFER_OUT = "transfer_out"
    TRANSFER_IN = "transfer_in"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    GAMBLE_WIN = "gamble_win"
    GAMBLE_LOSS = "gamble_loss"
    ROB_SUCCESS = "rob_success"
    ROB_FAIL = "rob_fail"
    ROBBED = "robbed"
    ADMIN_ADD = "admin_add"
    ADMIN_REMOVE = "admin_remove"
    ADMIN_SETBALANCE = "admin_setbalance"


# Columns a unit of work may increment
COUNTER_COLUMNS = frozenset({
    "balance",
    "bank",
    "total_earned",
    "total_spent",
    "work_count",
    "rob_count",
    "total_attendances",
})

# Columns a unit of work may overwrite
STAMP_COLUMNS = frozenset({
    "last_daily",
    "last_work_at",
    "last_rob_at",
    "last_gamble_at",
    "streak",
    "longest_streak",
})


class UnitOfWork:
    """One write transaction on one connection.

    Accounts must be locked with ``lock_accounts`` before they are mutated.
    Locks are taken in ascending user-id order regardless of argument order.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._locked: set[str] = set()

    def lock_accounts(self, *user_ids: str) -> dict[str, dict[str, Any]]:
        """Lock and read the given accounts; returns the authoritative pre-state."""
        rows: dict[str, dict[str, Any]] = {}
        for user_id in sorted(set(user_ids)):
            row = self._conn.execute(
                "SELECT * FROM users WHERE user_id = ?", (user_id,)
            ).fetchone()
            if row is None:
                raise TargetNotFound(f"❌ No account found for {user_id.split('@', 1)[0]}.")
            rows[user_id] = dict(row)
            self._locked.add(user_id)
        return rows

    def adjust(self, user_id: str, **deltas: int) -> None:
        """Add signed deltas to counter columns of a locked account."""
        self._require_locked(user_id)
        unknown = set(deltas) - COUNTER_COLUMNS
        if unknown:
            raise ValueError(f"Not a counter column: {sorted(unknown)}")
        deltas = {col: amount for col, amount in deltas.items() if amount}
        if not deltas:
            return
        assignments = ", ".join(f"{col} = {col} + ?" for col in deltas)
        self._conn.execute(
            f"UPDATE users SET {assignments} WHERE user_id = ?",
            (*deltas.values(), user_id),
        )

    def stamp(self, user_id: str, **values: Any) -> None:
        """Overwrite timestamp / streak columns of a locked account."""
        self._require_locked(user_id)
        unknown = set(values) - STAMP_COLUMNS
        if unknown:
            raise ValueError(f"Not a stamp column: {sorted(unknown)}")
        if not values:
            return
        assignments = ", ".join(f"{col} = ?" for col in values)
        self._conn.execute(
            f"UPDATE users SET {assignments} WHERE user_id = ?",
            (*values.values(), user_id),
        )

    def log(
        self,
        user_id: str,
        tx_type: TransactionType,
        amount: int,
        created_at: datetime,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Append a transaction log entry."""
        self._conn.execute(
            "INSERT INTO transactions (user_id, type, amount, details, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                user_id,
                tx_type.value,
                amount,
                json.dumps(details) if details else None,
                created_at.isoformat(),
            ),
        )

    def upsert_account(
        self,
        user_id: str,
        starting_balance: int,
        starting_bank: int,
        now: datetime,
        touch: bool = True,
    ) -> dict[str, Any]:
        """Create the account if missing; on conflict optionally bump usage."""
        ts = now.isoformat()
        if touch:
            self._conn.execute(
                "INSERT INTO users (user_id, balance, bank, first_seen, last_seen, commands_used) "
                "VALUES (?, ?, ?, ?, ?, 1) "
                "ON CONFLICT(user_id) DO UPDATE SET "
                "last_seen = excluded.last_seen, commands_used = commands_used + 1",
                (user_id, starting_balance, starting_bank, ts, ts),
            )
        else:
            self._conn.execute(
                "INSERT INTO users (user_id, balance, bank, first_seen, last_seen, commands_used) "
                "VALUES (?, ?, ?, ?, ?, 0) "
                "ON CONFLICT(user_id) DO NOTHING",
                (user_id, starting_balance, starting_bank, ts, ts),
            )
        row = self._conn.execute(
            "SELECT * FROM users WHERE user_id = ?", (user_id,)
        ).fetchone()
        return dict(row)

    def reset_accounts(self, starting_balance: int, starting_bank: int) -> int:
        """Re-initialise every account. Returns the number of accounts."""
        cursor = self._conn.execute(
            "UPDATE users SET balance = ?, bank = ?, total_earned = 0, total_spent = 0, "
            "work_count = 0, rob_count = 0, streak = 0, longest_streak = 0, "
            "total_attendances = 0, last_daily = NULL, last_work_at = NULL, "
            "last_rob_at = NULL, last_gamble_at = NULL",
            (starting_balance, starting_bank),
        )
        return cursor.rowcount

    def purge_transactions(self) -> int:
        cursor = self._conn.execute("DELETE FROM transactions")
        return cursor.rowcount

    def _require_locked(self, user_id: str) -> None:
        if user_id not in self._locked:
            raise RuntimeError(f"Account {user_id} mutated without lock_accounts()")


class LedgerDatabase:
    """SQLite-backed persistence for accounts, transactions and settings."""

    def __init__(
        self,
        db_path: str,
        logger: logging.Logger,
        busy_timeout: float = 5.0,
        transaction_timeout: float = 10.0,
    ) -> None:
        self._db_path = db_path
        self._logger = logger
        self._busy_timeout = busy_timeout
        self._transaction_timeout = transaction_timeout

    def _get_connection(self, timeout: float | None = None) -> sqlite3.Connection:
        """Create a new SQLite connection with standard settings.

        Autocommit mode: transactions are opened explicitly.
        """
        wait = self._busy_timeout if timeout is None else min(timeout, self._busy_timeout)
        conn = sqlite3.connect(self._db_path, timeout=wait, isolation_level=None)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(f"PRAGMA busy_timeout={int(wait * 1000)}")
        conn.row_factory = sqlite3.Row
        return conn

    # ══════════════════════════════════════════════════════════
    #  Initialization
    # ══════════════════════════════════════════════════════════

    async def initialize(self) -> None:
        """Create all tables and indexes. Idempotent."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._create_tables)

    def _create_tables(self) -> None:
        conn = self._get_connection()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    balance INTEGER NOT NULL DEFAULT 0 CHECK (balance >= 0),
                    bank INTEGER NOT NULL DEFAULT 0 CHECK (bank >= 0),
                    total_earned INTEGER NOT NULL DEFAULT 0,
                    total_spent INTEGER NOT NULL DEFAULT 0,
                    work_count INTEGER NOT NULL DEFAULT 0,
                    rob_count INTEGER NOT NULL DEFAULT 0,
                    streak INTEGER NOT NULL DEFAULT 0,
                    longest_streak INTEGER NOT NULL DEFAULT 0,
                    total_attendances INTEGER NOT NULL DEFAULT 0,
                    last_daily TEXT,
                    last_work_at TEXT,
                    last_rob_at TEXT,
                    last_gamble_at TEXT,
                    commands_used INTEGER NOT NULL DEFAULT 0,
                    first_seen TEXT NOT NULL,
                    last_seen TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    amount INTEGER NOT NULL,
                    details TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    namespace TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (namespace, key)
                )
            """)

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_transactions_user_id "
                "ON transactions(user_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_transactions_created_at "
                "ON transactions(created_at)"
            )
            self._logger.info("Database tables created/verified")
        finally:
            conn.close()

    # ══════════════════════════════════════════════════════════
    #  Unit of Work
    # ══════════════════════════════════════════════════════════

    async def run_unit_of_work(self, work: Callable[[UnitOfWork], T]) -> T:
        """Run ``work`` inside one write transaction in the executor.

        ``EconomyError`` raised by ``work`` rolls back and propagates as is.
        SQLite failures, including the transaction deadline, roll back and
        surface as ``TransactionFailed``.
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._run_unit_of_work_sync, work)

    def _run_unit_of_work_sync(self, work: Callable[[UnitOfWork], T]) -> T:
        deadline = time.monotonic() + self._transaction_timeout
        try:
            conn = self._get_connection(timeout=self._transaction_timeout)
        except sqlite3.Error as e:
            self._logger.error("Cannot open ledger database %s: %s", self._db_path, e)
            raise StorageUnavailable() from e

        # Non-zero return aborts the running statement
        conn.set_progress_handler(lambda: int(time.monotonic() > deadline), 1000)
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                result = work(UnitOfWork(conn))
                if time.monotonic() > deadline:
                    raise TransactionFailed("❌ Transaction timed out. Nothing was changed, please try again.")
                conn.execute("COMMIT")
                return result
            except BaseException:
                conn.set_progress_handler(None, 0)
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
        except EconomyError:
            raise
        except sqlite3.Error as e:
            self._logger.error("Unit of work rolled back: %s", e)
            raise TransactionFailed() from e
        finally:
            conn.close()

    # ══════════════════════════════════════════════════════════
    #  Account Queries
    # ══════════════════════════════════════════════════════════

    async def get_account(self, user_id: str) -> dict[str, Any] | None:
        loop = asyncio.get_running_loop()

        def _sync() -> dict[str, Any] | None:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    "SELECT * FROM users WHERE user_id = ?", (user_id,)
                ).fetchone()
                return dict(row) if row else None
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    async def get_leaderboard(self, limit: int = 10) -> list[dict[str, Any]]:
        """Top accounts by wallet + bank."""
        loop = asyncio.get_running_loop()

        def _sync() -> list[dict[str, Any]]:
            conn = self._get_connection()
            try:
                rows = conn.execute(
                    "SELECT user_id, balance, bank, balance + bank AS wealth FROM users "
                    "ORDER BY wealth DESC, user_id ASC LIMIT ?",
                    (limit,),
                ).fetchall()
                return [dict(r) for r in rows]
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    async def get_wealth_position(self, user_id: str) -> int | None:
        """1-based leaderboard position, or None for unknown users."""
        loop = asyncio.get_running_loop()

        def _sync() -> int | None:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    "SELECT balance + bank AS wealth FROM users WHERE user_id = ?",
                    (user_id,),
                ).fetchone()
                if row is None:
                    return None
                ahead = conn.execute(
                    "SELECT COUNT(*) AS cnt FROM users WHERE balance + bank > ? "
                    "OR (balance + bank = ? AND user_id < ?)",
                    (row["wealth"], row["wealth"], user_id),
                ).fetchone()
                return ahead["cnt"] + 1
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    async def get_economy_stats(self) -> dict[str, int]:
        """Aggregate totals for admin panels and metrics."""
        loop = asyncio.get_running_loop()

        def _sync() -> dict[str, int]:
            conn = self._get_connection()
            try:
                users = conn.execute(
                    "SELECT COUNT(*) AS accounts, COALESCE(SUM(balance), 0) AS wallets, "
                    "COALESCE(SUM(bank), 0) AS banks, COALESCE(SUM(commands_used), 0) AS commands "
                    "FROM users"
                ).fetchone()
                txs = conn.execute("SELECT COUNT(*) AS cnt FROM transactions").fetchone()
                return {
                    "accounts": users["accounts"],
                    "wallet_total": users["wallets"],
                    "bank_total": users["banks"],
                    "circulation": users["wallets"] + users["banks"],
                    "commands_used": users["commands"],
                    "transactions": txs["cnt"],
                }
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    async def get_transactions(self, user_id: str, limit: int = 10) -> list[dict[str, Any]]:
        """Most recent log entries for a user, newest first."""
        loop = asyncio.get_running_loop()

        def _sync() -> list[dict[str, Any]]:
            conn = self._get_connection()
            try:
                rows = conn.execute(
                    "SELECT * FROM transactions WHERE user_id = ? ORDER BY id DESC LIMIT ?",
                    (user_id, limit),
                ).fetchall()
                result = []
                for r in rows:
                    entry = dict(r)
                    entry["details"] = json.loads(entry["details"]) if entry["details"] else {}
                    result.append(entry)
                return result
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    async def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        loop = asyncio.get_running_loop()

        def _sync() -> bool:
            try:
                conn = self._get_connection()
            except sqlite3.Error:
                return False
            try:
                conn.execute("SELECT 1").fetchone()
                return True
            except sqlite3.Error:
                return False
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    # ══════════════════════════════════════════════════════════
    #  Settings
    # ══════════════════════════════════════════════════════════

    async def get_settings(self, namespace: str) -> dict[str, str]:
        loop = asyncio.get_running_loop()

        def _sync() -> dict[str, str]:
            conn = self._get_connection()
            try:
                rows = conn.execute(
                    "SELECT key, value FROM settings WHERE namespace = ?", (namespace,)
                ).fetchall()
                return {r["key"]: r["value"] for r in rows}
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    async def put_setting(self, namespace: str, key: str, value: str) -> None:
        """Insert or replace one setting row."""
        loop = asyncio.get_running_loop()

        def _sync() -> None:
            conn = self._get_connection()
            try:
                conn.execute(
                    "INSERT INTO settings (namespace, key, value, updated_at) "
                    "VALUES (?, ?, ?, CURRENT_TIMESTAMP) "
                    "ON CONFLICT(namespace, key) DO UPDATE SET "
                    "value = excluded.value, updated_at = CURRENT_TIMESTAMP",
                    (namespace, key, value),
                )
            finally:
                conn.close()

        await loop.run_in_executor(None, _sync)
