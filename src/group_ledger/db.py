"""SQLite database operations for GroupLedger."""

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from .models import (
    Expense,
    ExpenseParticipant,
    Group,
    Member,
    Settlement,
    SettlementStatus,
)


class Database:
    """SQLite database manager.

    Safe to share between threads: every operation runs under one
    re-entrant lock, and transaction() holds it for the whole block so
    callers can group several reads and writes atomically.
    """

    def __init__(self, db_path: Path | str):
        """Initialize database connection."""
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._lock = threading.RLock()
        self._depth = 0
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        cursor = self.conn.cursor()

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS groups (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                currency TEXT NOT NULL
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS members (
                group_id TEXT NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
                user_id TEXT NOT NULL,
                role TEXT NOT NULL,
                display_name TEXT,
                position INTEGER NOT NULL,
                PRIMARY KEY (group_id, user_id)
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS expenses (
                id TEXT PRIMARY KEY,
                group_id TEXT NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
                payer_id TEXT NOT NULL,
                amount_cents INTEGER NOT NULL CHECK (amount_cents >= 1),
                currency TEXT NOT NULL,
                split_type TEXT NOT NULL,
                description TEXT NOT NULL,
                created_at TIMESTAMP NOT NULL
            )
        """
        )

        # Participants are owned by their expense
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS expense_participants (
                expense_id TEXT NOT NULL REFERENCES expenses(id) ON DELETE CASCADE,
                position INTEGER NOT NULL,
                user_id TEXT NOT NULL,
                share_cents INTEGER NOT NULL CHECK (share_cents >= 0),
                PRIMARY KEY (expense_id, user_id)
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS settlements (
                id TEXT PRIMARY KEY,
                group_id TEXT NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
                from_user_id TEXT NOT NULL,
                to_user_id TEXT NOT NULL,
                amount_cents INTEGER NOT NULL CHECK (amount_cents >= 1),
                currency TEXT NOT NULL,
                method TEXT NOT NULL,
                external_ref TEXT,
                status TEXT NOT NULL,
                created_at TIMESTAMP NOT NULL,
                confirmed_at TIMESTAMP
            )
        """
        )

        self.conn.commit()

    def close(self):
        """Close database connection."""
        self.conn.close()

    @contextmanager
    def transaction(self) -> Iterator["Database"]:
        """
        Run a block of operations as one atomic unit.

        Nested blocks join the outermost transaction. Any exception rolls
        the whole unit back and propagates.
        """
        with self._lock:
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if self._depth == 0:
                    self.conn.rollback()
                raise
            else:
                self._depth -= 1
                if self._depth == 0:
                    self.conn.commit()

    def _commit(self):
        if self._depth == 0:
            self.conn.commit()

    # ========================================================================
    # Group operations
    # ========================================================================

    def save_group(self, group: Group):
        """Insert or update a group and replace its member list."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                """
                INSERT INTO groups (id, name, currency) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    currency = excluded.currency
                """,
                (group.id, group.name, group.currency),
            )
            cursor.execute("DELETE FROM members WHERE group_id = ?", (group.id,))
            cursor.executemany(
                """
                INSERT INTO members (group_id, user_id, role, display_name, position)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (group.id, m.user_id, m.role.value, m.display_name, position)
                    for position, m in enumerate(group.members)
                ],
            )
            self._commit()

    def get_group(self, group_id: str) -> Group | None:
        """Get a group with its members."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                "SELECT id, name, currency FROM groups WHERE id = ?", (group_id,)
            )
            row = cursor.fetchone()
            if not row:
                return None

            cursor.execute(
                """
                SELECT user_id, role, display_name FROM members
                WHERE group_id = ?
                ORDER BY position
                """,
                (group_id,),
            )
            members = [
                Member(
                    user_id=m["user_id"],
                    role=m["role"],
                    display_name=m["display_name"],
                )
                for m in cursor.fetchall()
            ]

        return Group(
            id=row["id"], name=row["name"], currency=row["currency"], members=members
        )

    def list_groups(self) -> list[Group]:
        """Get all groups."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("SELECT id FROM groups ORDER BY name")
            group_ids = [row["id"] for row in cursor.fetchall()]
            return [group for gid in group_ids if (group := self.get_group(gid))]

    def delete_group(self, group_id: str) -> bool:
        """Delete a group with its members, expenses and settlements.

        Returns False if it did not exist.
        """
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("DELETE FROM groups WHERE id = ?", (group_id,))
            self._commit()
            return cursor.rowcount > 0

    # ========================================================================
    # Expense operations
    # ========================================================================

    def save_expense(self, expense: Expense):
        """Insert or replace an expense together with its participants."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                """
                INSERT INTO expenses (
                    id, group_id, payer_id, amount_cents, currency,
                    split_type, description, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    payer_id = excluded.payer_id,
                    amount_cents = excluded.amount_cents,
                    currency = excluded.currency,
                    split_type = excluded.split_type,
                    description = excluded.description
                """,
                (
                    expense.id,
                    expense.group_id,
                    expense.payer_id,
                    expense.amount_cents,
                    expense.currency,
                    expense.split_type.value,
                    expense.description,
                    expense.created_at.isoformat(),
                ),
            )
            cursor.execute(
                "DELETE FROM expense_participants WHERE expense_id = ?", (expense.id,)
            )
            cursor.executemany(
                """
                INSERT INTO expense_participants (expense_id, position, user_id, share_cents)
                VALUES (?, ?, ?, ?)
                """,
                [
                    (expense.id, position, p.user_id, p.share_cents)
                    for position, p in enumerate(expense.participants)
                ],
            )
            self._commit()

    def _expense_from_row(self, row: sqlite3.Row) -> Expense:
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT user_id, share_cents FROM expense_participants
            WHERE expense_id = ?
            ORDER BY position
            """,
            (row["id"],),
        )
        participants = [
            ExpenseParticipant(user_id=p["user_id"], share_cents=p["share_cents"])
            for p in cursor.fetchall()
        ]
        return Expense(
            id=row["id"],
            group_id=row["group_id"],
            payer_id=row["payer_id"],
            amount_cents=row["amount_cents"],
            currency=row["currency"],
            split_type=row["split_type"],
            participants=participants,
            description=row["description"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def get_expense(self, expense_id: str) -> Expense | None:
        """Get an expense by id."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("SELECT * FROM expenses WHERE id = ?", (expense_id,))
            row = cursor.fetchone()
            return self._expense_from_row(row) if row else None

    def list_expenses(self, group_id: str) -> list[Expense]:
        """Get all expenses of a group, oldest first."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                """
                SELECT * FROM expenses
                WHERE group_id = ?
                ORDER BY created_at, id
                """,
                (group_id,),
            )
            return [self._expense_from_row(row) for row in cursor.fetchall()]

    def delete_expense(self, expense_id: str) -> bool:
        """Delete an expense. Returns False if it did not exist."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("DELETE FROM expenses WHERE id = ?", (expense_id,))
            self._commit()
            return cursor.rowcount > 0

    # ========================================================================
    # Settlement operations
    # ========================================================================

    def save_settlement(self, settlement: Settlement):
        """Insert or update a settlement."""
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO settlements (
                    id, group_id, from_user_id, to_user_id, amount_cents, currency,
                    method, external_ref, status, created_at, confirmed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status = excluded.status,
                    external_ref = excluded.external_ref,
                    confirmed_at = excluded.confirmed_at
                """,
                (
                    settlement.id,
                    settlement.group_id,
                    settlement.from_user_id,
                    settlement.to_user_id,
                    settlement.amount_cents,
                    settlement.currency,
                    settlement.method.value,
                    settlement.external_ref,
                    settlement.status.value,
                    settlement.created_at.isoformat(),
                    settlement.confirmed_at.isoformat()
                    if settlement.confirmed_at
                    else None,
                ),
            )
            self._commit()

    @staticmethod
    def _settlement_from_row(row: sqlite3.Row) -> Settlement:
        return Settlement(
            id=row["id"],
            group_id=row["group_id"],
            from_user_id=row["from_user_id"],
            to_user_id=row["to_user_id"],
            amount_cents=row["amount_cents"],
            currency=row["currency"],
            method=row["method"],
            external_ref=row["external_ref"],
            status=row["status"],
            created_at=datetime.fromisoformat(row["created_at"]),
            confirmed_at=datetime.fromisoformat(row["confirmed_at"])
            if row["confirmed_at"]
            else None,
        )

    def get_settlement(self, settlement_id: str) -> Settlement | None:
        """Get a settlement by id."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("SELECT * FROM settlements WHERE id = ?", (settlement_id,))
            row = cursor.fetchone()
            return self._settlement_from_row(row) if row else None

    def list_settlements(
        self, group_id: str, status: SettlementStatus | None = None
    ) -> list[Settlement]:
        """Get the settlements of a group, oldest first."""
        query = "SELECT * FROM settlements WHERE group_id = ?"
        params: tuple = (group_id,)
        if status is not None:
            query += " AND status = ?"
            params += (status.value,)
        query += " ORDER BY created_at, id"

        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(query, params)
            return [self._settlement_from_row(row) for row in cursor.fetchall()]

    def delete_settlement(self, settlement_id: str) -> bool:
        """Delete a settlement. Returns False if it did not exist."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("DELETE FROM settlements WHERE id = ?", (settlement_id,))
            self._commit()
            return cursor.rowcount > 0
