"""SQLite-backed storage of linked account credentials."""

from __future__ import annotations

import logging
import sqlite3
from datetime import UTC, datetime

from mail_tasker.core.exceptions import AccountNotFound
from mail_tasker.core.models import AccountCredential, TokenRefresh
from mail_tasker.storage.database import SQLiteStore

logger = logging.getLogger(__name__)


def _row_to_credential(row: sqlite3.Row) -> AccountCredential:
    return AccountCredential(
        account_id=row["account_id"],
        user_id=row["user_id"],
        email=row["email"],
        display_name=row["display_name"],
        access_token=row["access_token"],
        refresh_token=row["refresh_token"],
        is_active=bool(row["is_active"]),
    )


class CredentialStore(SQLiteStore):
    """Stores per-account access and refresh tokens."""

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS accounts (
            account_id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            email TEXT NOT NULL,
            display_name TEXT NOT NULL DEFAULT '',
            access_token TEXT NOT NULL,
            refresh_token TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (user_id, email)
        );

        CREATE INDEX IF NOT EXISTS idx_accounts_user ON accounts(user_id);
    """

    def add_account(self, credential: AccountCredential) -> AccountCredential:
        """Insert a linked account, replacing tokens if it is already linked."""
        now = datetime.now(UTC).isoformat()
        with self._lock:
            self.conn.execute(
                """INSERT INTO accounts
                   (account_id, user_id, email, display_name, access_token,
                    refresh_token, is_active, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(account_id) DO UPDATE SET
                       access_token = excluded.access_token,
                       refresh_token = COALESCE(excluded.refresh_token, accounts.refresh_token),
                       display_name = excluded.display_name,
                       is_active = excluded.is_active,
                       updated_at = excluded.updated_at""",
                (
                    credential.account_id,
                    credential.user_id,
                    credential.email,
                    credential.display_name,
                    credential.access_token,
                    credential.refresh_token,
                    int(credential.is_active),
                    now,
                    now,
                ),
            )
            self.conn.commit()
        logger.info("Linked account %s (%s)", credential.account_id, credential.email)
        return self.get(credential.account_id)

    def get(self, account_id: str) -> AccountCredential:
        """Load one account's credential.

        Raises:
            AccountNotFound: If no such account is linked.
        """
        row = self.conn.execute(
            "SELECT * FROM accounts WHERE account_id = ?", (account_id,)
        ).fetchone()
        if row is None:
            raise AccountNotFound(f"Account {account_id} not found")
        return _row_to_credential(row)

    def list_accounts(self, user_id: str | None = None) -> list[AccountCredential]:
        """All linked accounts, optionally only those of ``user_id``."""
        if user_id is None:
            rows = self.conn.execute("SELECT * FROM accounts ORDER BY created_at").fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM accounts WHERE user_id = ? ORDER BY created_at", (user_id,)
            ).fetchall()
        return [_row_to_credential(row) for row in rows]

    def list_active(self, user_id: str) -> list[AccountCredential]:
        return [acct for acct in self.list_accounts(user_id) if acct.is_active]

    def update_tokens(
        self, account_id: str, access_token: str, refresh_token: str | None = None
    ) -> None:
        """Write back refreshed tokens. The refresh token is kept unless a new one is given."""
        now = datetime.now(UTC).isoformat()
        with self._lock:
            cursor = self.conn.execute(
                """UPDATE accounts SET
                   access_token = ?,
                   refresh_token = COALESCE(?, refresh_token),
                   updated_at = ?
                   WHERE account_id = ?""",
                (access_token, refresh_token, now, account_id),
            )
            self.conn.commit()
        if cursor.rowcount == 0:
            raise AccountNotFound(f"Account {account_id} not found")
        logger.info("Updated tokens for account %s", account_id)

    def save_refresh(self, account_id: str, refresh: TokenRefresh) -> None:
        """Token refresh callback for GmailClient."""
        self.update_tokens(account_id, refresh.access_token, refresh.refresh_token)
