"""Fan a message listing out across linked accounts and merge the results."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor

from mail_tasker.core.gmail_client import GmailClient
from mail_tasker.core.models import (
    AccountCredential,
    AccountFetchError,
    FanOutResult,
    TaggedMessage,
)

logger = logging.getLogger(__name__)

ClientFactory = Callable[[AccountCredential], GmailClient]


def _newest_first(message: TaggedMessage) -> tuple[float, str]:
    return (-message.received_at.timestamp(), message.message_id)


class AccountFanOut:
    """Lists messages for several accounts concurrently.

    Output is ordered by receipt time, newest first, with ties broken by
    message ID, and truncated to ``max_results`` after merging. An account
    whose fetch fails contributes an error entry instead of messages.
    """

    def __init__(self, client_factory: ClientFactory, *, max_workers: int = 4) -> None:
        self._client_factory = client_factory
        self._max_workers = max_workers

    def _fetch_account(
        self, account: AccountCredential, max_results: int, query: str | None
    ) -> list[TaggedMessage]:
        client = self._client_factory(account)
        messages = client.list_messages(query, max_results)
        return [
            TaggedMessage(
                message=message,
                account_id=account.account_id,
                account_email=account.email,
                account_name=account.display_name,
            )
            for message in messages
        ]

    def list_messages(
        self,
        accounts: Sequence[AccountCredential],
        max_results: int,
        query: str | None = None,
    ) -> FanOutResult:
        """Fetch up to ``max_results`` messages from each active account and merge them."""
        active = [account for account in accounts if account.is_active]
        if not active:
            return FanOutResult()

        merged: list[TaggedMessage] = []
        errors: list[AccountFetchError] = []

        workers = max(1, min(self._max_workers, len(active)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [
                (account, executor.submit(self._fetch_account, account, max_results, query))
                for account in active
            ]
            for account, future in futures:
                try:
                    tagged = future.result()
                except Exception as e:
                    logger.error(
                        "Error fetching messages for account %s: %s", account.account_id, e
                    )
                    errors.append(
                        AccountFetchError(
                            account_id=account.account_id,
                            account_email=account.email,
                            error=e,
                        )
                    )
                    continue
                logger.debug("Account %s returned %d messages", account.account_id, len(tagged))
                merged.extend(tagged)

        merged.sort(key=_newest_first)
        return FanOutResult(messages=merged[:max_results], errors=errors)
