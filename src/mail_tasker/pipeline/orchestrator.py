"""Pipeline orchestrator: fetch → dedup → batch extract → store → report."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from mail_tasker.config.settings import MailTaskerSettings
from mail_tasker.core.auth import GoogleTokenRefresher
from mail_tasker.core.exceptions import (
    AccountInactive,
    BatchProcessingFailure,
    ServiceUnavailable,
)
from mail_tasker.core.extraction import TaskExtractor
from mail_tasker.core.gmail_client import GmailClient
from mail_tasker.core.models import (
    AccountCredential,
    EventKind,
    ExtractionResult,
    FanOutResult,
    LedgerStatus,
    ProgressEvent,
    RunSummary,
    TaggedMessage,
    TaskRecord,
)
from mail_tasker.core.ollama_client import OllamaClient
from mail_tasker.pipeline.fanout import AccountFanOut
from mail_tasker.pipeline.ledger import DedupLedger
from mail_tasker.pipeline.normalize import build_task_record
from mail_tasker.pipeline.progress import ProgressSink
from mail_tasker.storage.credentials import CredentialStore
from mail_tasker.storage.tracker import TaskStore

logger = logging.getLogger(__name__)


class TaskExtractionPipeline:
    """Extracts tasks from a linked account's recent inbox, each message at most once.

    Stage 1 - Gate:     account must be active and the model reachable
    Stage 2 - Fetch:    recent inbox messages via the account fan-out
    Stage 3 - Dedup:    drop messages already in the ledger
    Stage 4 - Extract:  fixed-size batches → model → tasks → store + ledger

    Failures in stages 1-2 abort the run before anything is written. Failures
    inside a batch are absorbed: the batch's unrecorded messages are marked FAILED
    with the number of tasks already stored for them, and the run moves on.
    """

    def __init__(
        self,
        settings: MailTaskerSettings | None = None,
        *,
        credential_store: CredentialStore | None = None,
        task_store: TaskStore | None = None,
        extractor: TaskExtractor | None = None,
        client_factory: Callable[[AccountCredential], GmailClient] | None = None,
    ) -> None:
        self._settings = settings or MailTaskerSettings()
        self._credentials = credential_store
        self._store = task_store
        self._extractor = extractor
        self._client_factory = client_factory

        # Components initialized lazily
        self._ledger: DedupLedger | None = None
        self._fanout: AccountFanOut | None = None

    def _ensure_initialized(
        self,
    ) -> tuple[CredentialStore, TaskStore, TaskExtractor, AccountFanOut, DedupLedger]:
        """Initialize all components if not already done."""
        if self._credentials is None or self._store is None:
            self._settings.ensure_directories()

        if self._credentials is None:
            self._credentials = CredentialStore(self._settings.database_path)
            self._credentials.connect()

        if self._store is None:
            self._store = TaskStore(self._settings.database_path)
            self._store.connect()

        if self._extractor is None:
            ollama = OllamaClient(
                self._settings.ollama_base_url,
                self._settings.ollama_model,
                timeout_seconds=self._settings.ollama_timeout_seconds,
                temperature=self._settings.ollama_temperature,
                top_p=self._settings.ollama_top_p,
            )
            self._extractor = TaskExtractor(
                ollama,
                context_tokens=self._settings.context_tokens,
                max_message_chars=self._settings.max_message_chars,
            )

        if self._fanout is None:
            self._fanout = AccountFanOut(
                self._client_factory or self._build_client,
                max_workers=self._settings.fanout_workers,
            )

        if self._ledger is None:
            self._ledger = DedupLedger(self._store)

        return self._credentials, self._store, self._extractor, self._fanout, self._ledger

    def _build_client(self, credential: AccountCredential) -> GmailClient:
        """Default client factory: a GmailClient that writes refreshed tokens back."""
        credentials, _, _, _, _ = self._ensure_initialized()
        return GmailClient(
            credential,
            token_refresher=GoogleTokenRefresher(
                self._settings.client_id,
                self._settings.client_secret,
                self._settings.token_uri,
            ),
            on_token_refresh=credentials.save_refresh,
            max_rate_limit_retries=self._settings.max_rate_limit_retries,
            default_retry_after_seconds=self._settings.default_retry_after_seconds,
            max_retry_after_seconds=self._settings.max_retry_after_seconds,
            inter_page_delay_seconds=self._settings.inter_page_delay_seconds,
            max_results_per_page=self._settings.max_results_per_page,
        )

    def run(self, account_id: str, on_progress: ProgressSink | None = None) -> RunSummary:
        """Extract tasks from the account's unprocessed recent inbox messages.

        Args:
            account_id: Linked account to process.
            on_progress: Optional sink, called synchronously with each event.

        Returns:
            RunSummary with processed/extracted/created counts.

        Raises:
            AccountNotFound, AccountInactive, ServiceUnavailable, AuthExpired,
            RateLimited, ProviderError: before any message has been processed.
        """
        credentials, store, extractor, fanout, ledger = self._ensure_initialized()

        try:
            account = credentials.get(account_id)
            if not account.is_active:
                raise AccountInactive(f"Account {account_id} is not active")

            if not extractor.is_available():
                raise ServiceUnavailable("Ollama AI service is not available")

            fetched = fanout.list_messages(
                [account], self._settings.fetch_window, self._settings.inbox_query
            )
            if fetched.errors:
                raise fetched.errors[0].error

            logger.info(
                "Fetched %d messages for account %s", len(fetched.messages), account_id
            )
            unprocessed = ledger.filter_unprocessed(account_id, fetched.messages)
        except Exception as e:
            logger.error("Task extraction for account %s failed: %s", account_id, e)
            self._notify(on_progress, ProgressEvent(EventKind.ERROR, error=str(e)))
            raise

        if not unprocessed:
            logger.info("No new messages to process for account %s", account_id)
            return RunSummary()

        return self._extract(account, unprocessed, store, extractor, ledger, on_progress)

    def _extract(
        self,
        account: AccountCredential,
        messages: list[TaggedMessage],
        store: TaskStore,
        extractor: TaskExtractor,
        ledger: DedupLedger,
        on_progress: ProgressSink | None,
    ) -> RunSummary:
        batch_size = max(1, self._settings.batch_size)
        batches = [messages[i:i + batch_size] for i in range(0, len(messages), batch_size)]
        total = len(messages)
        summary = RunSummary()
        current = 0
        error_message = ""

        run_id = store.start_run(account.account_id)
        logger.info(
            "Processing %d messages in %d batches of %d", total, len(batches), batch_size
        )

        try:
            self._notify(
                on_progress,
                ProgressEvent(EventKind.START, message=f"Extracting tasks from {account.email}"),
            )
            self._notify(
                on_progress,
                ProgressEvent(
                    EventKind.PROGRESS,
                    message=f"Processing {total} messages in {len(batches)} batches...",
                    current=0,
                    total=total,
                ),
            )

            for batch_index, batch in enumerate(batches, start=1):
                self._notify(
                    on_progress,
                    ProgressEvent(
                        EventKind.BATCH,
                        message=(
                            f"Processing batch {batch_index}/{len(batches)} "
                            f"({len(batch)} messages)"
                        ),
                        current=current,
                        total=total,
                        batch_index=batch_index,
                        total_batches=len(batches),
                    ),
                )

                marked: set[str] = set()
                persisted: dict[str, int] = {}
                try:
                    current = self._process_batch(
                        account, batch, store, extractor, ledger,
                        summary, current, total, marked, persisted, on_progress,
                    )
                except BatchProcessingFailure as e:
                    logger.error("Batch %d/%d failed: %s", batch_index, len(batches), e)
                    summary.failed_batches += 1
                    current = self._absorb_failed_batch(
                        account, batch, ledger, marked, persisted, summary, current
                    )

            self._notify(
                on_progress,
                ProgressEvent(
                    EventKind.COMPLETE,
                    message=(
                        f"Extracted {summary.extracted} tasks, created {summary.created}, "
                        f"from {summary.processed} messages"
                    ),
                    extracted=summary.extracted,
                    created=summary.created,
                ),
            )
        except Exception as e:
            error_message = str(e)
            self._notify(on_progress, ProgressEvent(EventKind.ERROR, error=error_message))
            raise
        finally:
            store.complete_run(
                run_id,
                messages_processed=summary.processed,
                tasks_extracted=summary.extracted,
                tasks_created=summary.created,
                error_message=error_message,
            )

        logger.info(
            "Task extraction completed: %d tasks extracted, %d created, %d messages processed",
            summary.extracted, summary.created, summary.processed,
        )
        return summary

    def _process_batch(
        self,
        account: AccountCredential,
        batch: Sequence[TaggedMessage],
        store: TaskStore,
        extractor: TaskExtractor,
        ledger: DedupLedger,
        summary: RunSummary,
        current: int,
        total: int,
        marked: set[str],
        persisted: dict[str, int],
        on_progress: ProgressSink | None,
    ) -> int:
        """Extract, store, and record one batch. Returns the updated message position.

        Raises:
            BatchProcessingFailure: On any adapter or store error.
        """
        try:
            results = dict(extractor.extract_batch([m.message for m in batch]))

            for tagged in batch:
                result = results.get(tagged.message_id, ExtractionResult())
                records = [build_task_record(t, tagged, account.user_id) for t in result.tasks]

                first_created = summary.created + 1
                created: list[TaskRecord] = []
                for record in records:
                    created.append(store.create_task(record))
                    summary.created += 1
                    persisted[tagged.message_id] = len(created)

                ledger.mark_processed(account.account_id, tagged.message_id, len(records))
                marked.add(tagged.message_id)

                current += 1
                summary.processed += 1
                summary.extracted += len(records)
                logger.debug(
                    "Message %d/%d (%s): %d tasks", current, total, tagged.message_id, len(records)
                )
                self._notify(
                    on_progress,
                    ProgressEvent(
                        EventKind.MESSAGE,
                        message=f"Processed message {current}/{total}",
                        current=current,
                        total=total,
                        message_id=tagged.message_id,
                        extracted=len(records),
                    ),
                )

                for created_count, task in enumerate(created, start=first_created):
                    self._notify(
                        on_progress,
                        ProgressEvent(
                            EventKind.TASK_CREATED,
                            message=f"Created task: {task.title}",
                            created_count=created_count,
                            task_title=task.title,
                        ),
                    )
        except Exception as e:
            raise BatchProcessingFailure(str(e)) from e

        return current

    def _absorb_failed_batch(
        self,
        account: AccountCredential,
        batch: Sequence[TaggedMessage],
        ledger: DedupLedger,
        marked: set[str],
        persisted: dict[str, int],
        summary: RunSummary,
        current: int,
    ) -> int:
        """Record every not-yet-recorded message of a failed batch as FAILED.

        A message whose tasks were partly stored before the failure keeps the
        count of stored tasks in its ledger entry.
        """
        for tagged in batch:
            if tagged.message_id in marked:
                continue
            stored = persisted.get(tagged.message_id, 0)
            try:
                ledger.mark_processed(
                    account.account_id, tagged.message_id, stored, LedgerStatus.FAILED
                )
            except Exception as e:
                logger.error("Error marking message %s as processed: %s", tagged.message_id, e)
            current += 1
            summary.processed += 1
            summary.extracted += stored
        return current

    def run_all(
        self, user_id: str, on_progress: ProgressSink | None = None
    ) -> dict[str, RunSummary | Exception]:
        """Run extraction for each active account of a user, one after another.

        A fatal error for one account is recorded in the result and does not
        stop the remaining accounts.
        """
        credentials, _, _, _, _ = self._ensure_initialized()
        outcomes: dict[str, RunSummary | Exception] = {}
        for account in credentials.list_active(user_id):
            try:
                outcomes[account.account_id] = self.run(account.account_id, on_progress)
            except Exception as e:
                outcomes[account.account_id] = e
        return outcomes

    def recent_messages(
        self, user_id: str, max_results: int = 10, query: str | None = None
    ) -> FanOutResult:
        """Newest messages across all of a user's active accounts."""
        credentials, _, _, fanout, _ = self._ensure_initialized()
        return fanout.list_messages(credentials.list_active(user_id), max_results, query)

    def count_unprocessed(self, account_id: str) -> int:
        """Number of messages in the fetch window that a run would process."""
        credentials, _, _, fanout, ledger = self._ensure_initialized()
        account = credentials.get(account_id)
        fetched = fanout.list_messages(
            [account], self._settings.fetch_window, self._settings.inbox_query
        )
        if fetched.errors:
            raise fetched.errors[0].error
        return len(ledger.filter_unprocessed(account_id, fetched.messages))

    def reset(self, account_id: str, *, failed_only: bool = False) -> int:
        """Clear the ledger so messages are processed again on the next run."""
        _, _, _, _, ledger = self._ensure_initialized()
        if failed_only:
            return ledger.clear_failed(account_id)
        return ledger.clear(account_id)

    def status(self, account_id: str) -> dict[str, int]:
        """Ledger entry counts by status for an account."""
        _, _, _, _, ledger = self._ensure_initialized()
        return ledger.summary(account_id)

    def close(self) -> None:
        """Clean up resources."""
        if self._store:
            self._store.close()
        if self._credentials:
            self._credentials.close()

    @staticmethod
    def _notify(on_progress: ProgressSink | None, event: ProgressEvent) -> None:
        """Send a progress event to the sink if one is registered."""
        if on_progress:
            on_progress(event)
