"""Dedup ledger: which (account, message) pairs have already been processed."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from mail_tasker.core.models import LedgerStatus, TaggedMessage
from mail_tasker.storage.tracker import TaskStore

logger = logging.getLogger(__name__)


class DedupLedger:
    """Gate in front of batching, backed by the TaskStore's processed_messages table."""

    def __init__(self, store: TaskStore) -> None:
        self._store = store

    def is_processed(self, account_id: str, message_id: str) -> bool:
        return self._store.is_processed(account_id, message_id)

    def filter_unprocessed(
        self, account_id: str, messages: Sequence[TaggedMessage]
    ) -> list[TaggedMessage]:
        """Drop messages that already have a ledger entry, keeping order."""
        done = self._store.processed_ids(account_id, (m.message_id for m in messages))
        for message_id in done:
            logger.debug("Message %s already processed, skipping", message_id)
        return [m for m in messages if m.message_id not in done]

    def mark_processed(
        self,
        account_id: str,
        message_id: str,
        task_count: int,
        status: LedgerStatus | None = None,
    ) -> bool:
        """Record a message as handled.

        ``status`` defaults to EXTRACTED or EMPTY depending on ``task_count``;
        absorbed batch failures pass FAILED explicitly.
        """
        if status is None:
            status = LedgerStatus.EXTRACTED if task_count > 0 else LedgerStatus.EMPTY
        return self._store.mark_processed(account_id, message_id, task_count, status)

    def clear(self, account_id: str) -> int:
        """Make every message of the account eligible again."""
        removed = self._store.clear_processed(account_id)
        logger.info("Cleared %d ledger entries for account %s", removed, account_id)
        return removed

    def clear_failed(self, account_id: str) -> int:
        """Make only the messages whose batch failed eligible again."""
        removed = self._store.clear_processed(account_id, LedgerStatus.FAILED)
        logger.info("Cleared %d failed ledger entries for account %s", removed, account_id)
        return removed

    def summary(self, account_id: str) -> dict[str, int]:
        return self._store.count_by_status(account_id)
