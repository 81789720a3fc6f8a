"""SQLite storage for extracted tasks, the processed-message ledger, and run history."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterable
from dataclasses import replace
from datetime import UTC, date, datetime

from mail_tasker.core.models import LedgerEntry, LedgerStatus, Priority, TaskRecord
from mail_tasker.storage.database import SQLiteStore

logger = logging.getLogger(__name__)


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_task(row: sqlite3.Row) -> TaskRecord:
    return TaskRecord(
        task_id=row["task_id"],
        user_id=row["user_id"],
        account_id=row["account_id"],
        message_id=row["message_id"],
        title=row["title"],
        description=row["description"],
        status=row["status"],
        priority=Priority(row["priority"]),
        due_date=date.fromisoformat(row["due_date"]) if row["due_date"] else None,
        source=row["source"],
        account_email=row["account_email"],
        account_name=row["account_name"],
        email_sender=row["email_sender"],
        email_recipients=tuple(json.loads(row["email_recipients"] or "[]")),
        email_received_at=_parse_datetime(row["email_received_at"]),
        created_at=_parse_datetime(row["created_at"]),
    )


class TaskStore(SQLiteStore):
    """Tracks extraction state in SQLite.

    Tables:
    - tasks: tasks created by the extraction pipeline
    - processed_messages: ledger of (account, message) pairs already handled
    - extraction_runs: audit log of pipeline runs
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS tasks (
            task_id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            account_id TEXT NOT NULL,
            message_id TEXT NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            status TEXT NOT NULL DEFAULT 'PENDING',
            priority TEXT NOT NULL DEFAULT 'MEDIUM',
            due_date TEXT,
            source TEXT NOT NULL DEFAULT 'gmail',
            account_email TEXT DEFAULT '',
            account_name TEXT DEFAULT '',
            email_sender TEXT DEFAULT '',
            email_recipients TEXT DEFAULT '[]',
            email_received_at TEXT,
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_tasks_user ON tasks(user_id);
        CREATE INDEX IF NOT EXISTS idx_tasks_account ON tasks(account_id);
        CREATE INDEX IF NOT EXISTS idx_tasks_message ON tasks(message_id);

        CREATE TABLE IF NOT EXISTS processed_messages (
            account_id TEXT NOT NULL,
            message_id TEXT NOT NULL,
            tasks_extracted INTEGER NOT NULL DEFAULT 0,
            status TEXT NOT NULL,
            processed_at TEXT NOT NULL,
            PRIMARY KEY (account_id, message_id)
        );

        CREATE INDEX IF NOT EXISTS idx_processed_status ON processed_messages(status);

        CREATE TABLE IF NOT EXISTS extraction_runs (
            run_id INTEGER PRIMARY KEY AUTOINCREMENT,
            account_id TEXT NOT NULL,
            started_at TEXT NOT NULL,
            completed_at TEXT,
            messages_processed INTEGER DEFAULT 0,
            tasks_extracted INTEGER DEFAULT 0,
            tasks_created INTEGER DEFAULT 0,
            error_message TEXT DEFAULT ''
        );
    """

    # ---------- tasks ----------

    def create_task(self, record: TaskRecord) -> TaskRecord:
        """Persist a task and return it with ``task_id`` and ``created_at`` set."""
        now = datetime.now(UTC)
        with self._lock:
            cursor = self.conn.execute(
                """INSERT INTO tasks
                   (user_id, account_id, message_id, title, description, status,
                    priority, due_date, source, account_email, account_name,
                    email_sender, email_recipients, email_received_at, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.user_id,
                    record.account_id,
                    record.message_id,
                    record.title,
                    record.description,
                    record.status,
                    str(record.priority),
                    record.due_date.isoformat() if record.due_date else None,
                    record.source,
                    record.account_email,
                    record.account_name,
                    record.email_sender,
                    json.dumps(list(record.email_recipients)),
                    record.email_received_at.isoformat() if record.email_received_at else None,
                    now.isoformat(),
                ),
            )
            self.conn.commit()
        return replace(record, task_id=cursor.lastrowid, created_at=now)

    def list_tasks(self, user_id: str, account_id: str | None = None) -> list[TaskRecord]:
        """Tasks for a user (optionally one account), newest email first."""
        sql = "SELECT * FROM tasks WHERE user_id = ?"
        params: list[str] = [user_id]
        if account_id is not None:
            sql += " AND account_id = ?"
            params.append(account_id)
        sql += " ORDER BY email_received_at DESC, task_id"
        return [_row_to_task(row) for row in self.conn.execute(sql, params).fetchall()]

    # ---------- processed-message ledger ----------

    def is_processed(self, account_id: str, message_id: str) -> bool:
        """Check if a message already has a ledger entry for the account."""
        row = self.conn.execute(
            "SELECT 1 FROM processed_messages WHERE account_id = ? AND message_id = ?",
            (account_id, message_id),
        ).fetchone()
        return row is not None

    def processed_ids(self, account_id: str, message_ids: Iterable[str]) -> set[str]:
        """Subset of ``message_ids`` that already have a ledger entry."""
        ids = list(message_ids)
        if not ids:
            return set()
        placeholders = ", ".join("?" for _ in ids)
        rows = self.conn.execute(
            f"SELECT message_id FROM processed_messages "
            f"WHERE account_id = ? AND message_id IN ({placeholders})",
            [account_id, *ids],
        ).fetchall()
        return {row["message_id"] for row in rows}

    def mark_processed(
        self,
        account_id: str,
        message_id: str,
        tasks_extracted: int,
        status: LedgerStatus,
    ) -> bool:
        """Insert a ledger entry. Existing entries are never updated.

        Returns True if inserted, False if the pair was already recorded.
        """
        now = datetime.now(UTC).isoformat()
        with self._lock:
            cursor = self.conn.execute(
                """INSERT OR IGNORE INTO processed_messages
                   (account_id, message_id, tasks_extracted, status, processed_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (account_id, message_id, tasks_extracted, str(status), now),
            )
            self.conn.commit()
        inserted = cursor.rowcount > 0
        if not inserted:
            logger.warning(
                "Ledger entry for %s/%s already exists, keeping the original",
                account_id, message_id,
            )
        return inserted

    def get_ledger_entry(self, account_id: str, message_id: str) -> LedgerEntry | None:
        row = self.conn.execute(
            "SELECT * FROM processed_messages WHERE account_id = ? AND message_id = ?",
            (account_id, message_id),
        ).fetchone()
        if row is None:
            return None
        return LedgerEntry(
            account_id=row["account_id"],
            message_id=row["message_id"],
            tasks_extracted=row["tasks_extracted"],
            status=LedgerStatus(row["status"]),
            processed_at=datetime.fromisoformat(row["processed_at"]),
        )

    def clear_processed(self, account_id: str, status: LedgerStatus | None = None) -> int:
        """Delete ledger entries for an account, optionally only one status.

        Returns the number of entries removed.
        """
        sql = "DELETE FROM processed_messages WHERE account_id = ?"
        params: list[str] = [account_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(str(status))
        with self._lock:
            cursor = self.conn.execute(sql, params)
            self.conn.commit()
        return cursor.rowcount

    def count_by_status(self, account_id: str) -> dict[str, int]:
        """Get count of ledger entries grouped by status."""
        rows = self.conn.execute(
            "SELECT status, COUNT(*) as cnt FROM processed_messages "
            "WHERE account_id = ? GROUP BY status",
            (account_id,),
        ).fetchall()
        return {row["status"]: row["cnt"] for row in rows}

    # ---------- run history ----------

    def start_run(self, account_id: str) -> int:
        """Record the start of an extraction run. Returns the run_id."""
        now = datetime.now(UTC).isoformat()
        with self._lock:
            cursor = self.conn.execute(
                "INSERT INTO extraction_runs (account_id, started_at) VALUES (?, ?)",
                (account_id, now),
            )
            self.conn.commit()
        return cursor.lastrowid or 0

    def complete_run(
        self,
        run_id: int,
        messages_processed: int = 0,
        tasks_extracted: int = 0,
        tasks_created: int = 0,
        error_message: str = "",
    ) -> None:
        """Record the completion of an extraction run."""
        now = datetime.now(UTC).isoformat()
        with self._lock:
            self.conn.execute(
                """UPDATE extraction_runs SET
                   completed_at = ?, messages_processed = ?, tasks_extracted = ?,
                   tasks_created = ?, error_message = ?
                   WHERE run_id = ?""",
                (now, messages_processed, tasks_extracted, tasks_created, error_message, run_id),
            )
            self.conn.commit()

    def get_run(self, run_id: int) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM extraction_runs WHERE run_id = ?", (run_id,)
        ).fetchone()
        return dict(row) if row else None
