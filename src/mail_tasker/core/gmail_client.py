"""Gmail API client with token refresh on 401 and bounded backoff on 429."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Generator
from dataclasses import replace
from typing import Any

from googleapiclient.discovery import Resource
from googleapiclient.errors import HttpError

from mail_tasker.core.auth import build_gmail_service
from mail_tasker.core.exceptions import AuthExpired, ProviderError, RateLimited
from mail_tasker.core.models import AccountCredential, RemoteMessage, TokenRefresh
from mail_tasker.core.parser import GmailParser

logger = logging.getLogger(__name__)

ServiceFactory = Callable[[str], Resource]
TokenRefresher = Callable[[AccountCredential], TokenRefresh]
TokenRefreshCallback = Callable[[str, TokenRefresh], None]


def _error_body(exc: HttpError) -> str:
    content = exc.content
    if isinstance(content, bytes):
        return content.decode("utf-8", errors="replace")
    return str(content or "")


class GmailClient:
    """Gmail API wrapper for one linked account.

    Every call goes through ``execute``, which owns the account's credential:
    a 401 triggers one refresh (persisted through ``on_token_refresh``) and one
    retry, a 429 sleeps for the server's Retry-After hint (capped) up to
    ``max_rate_limit_retries`` times.
    """

    def __init__(
        self,
        credential: AccountCredential,
        *,
        token_refresher: TokenRefresher,
        on_token_refresh: TokenRefreshCallback | None = None,
        service_factory: ServiceFactory = build_gmail_service,
        parser: GmailParser | None = None,
        user_id: str = "me",
        max_rate_limit_retries: int = 1,
        default_retry_after_seconds: float = 5.0,
        max_retry_after_seconds: float = 30.0,
        max_results_per_page: int = 100,
        inter_page_delay_seconds: float = 0.2,
    ) -> None:
        self._credential = credential
        self._token_refresher = token_refresher
        self._on_token_refresh = on_token_refresh
        self._service_factory = service_factory
        self._parser = parser or GmailParser()
        self._user_id = user_id
        self._max_rate_limit_retries = max_rate_limit_retries
        self._default_retry_after = default_retry_after_seconds
        self._max_retry_after = max_retry_after_seconds
        self._inter_page_delay = inter_page_delay_seconds
        self._max_results_per_page = max_results_per_page
        self._service: Resource | None = None

    @property
    def credential(self) -> AccountCredential:
        """The current credential, including any token obtained by a refresh."""
        return self._credential

    def _get_service(self) -> Resource:
        if self._service is None:
            self._service = self._service_factory(self._credential.access_token)
        return self._service

    def execute(self, build_request: Callable[[Resource], Any], context: str) -> Any:
        """Build and execute a Gmail API request with auth and rate-limit recovery.

        Args:
            build_request: Called with the service resource; returns an HttpRequest.
                It is called again for each retry so the retry uses fresh tokens.
            context: Description for log and error messages (e.g. "list messages").

        Returns:
            The API response dict.

        Raises:
            AuthExpired: 401 with no refresh token, a rejected refresh, or a
                second 401 after refreshing.
            RateLimited: 429 after the retry budget is spent.
            ProviderError: Any other failure.
        """
        refreshed = False
        rate_limit_retries = 0

        while True:
            request = build_request(self._get_service())
            try:
                return request.execute()
            except HttpError as e:
                status = e.status_code
                if status == 401:
                    if refreshed:
                        raise AuthExpired(
                            f"Still unauthorized after token refresh during {context}"
                        ) from e
                    self._refresh_credential(context)
                    refreshed = True
                    continue

                if status == 429:
                    if rate_limit_retries >= self._max_rate_limit_retries:
                        raise RateLimited(
                            f"Rate limited during {context} after "
                            f"{rate_limit_retries} retries"
                        ) from e
                    delay = self._retry_delay(e)
                    logger.warning(
                        "Rate limited during %s (retry %d/%d), sleeping %.2fs",
                        context, rate_limit_retries + 1, self._max_rate_limit_retries, delay,
                    )
                    time.sleep(delay)
                    rate_limit_retries += 1
                    continue

                raise ProviderError(
                    f"Failed to {context}: HTTP {status}",
                    status=status,
                    body=_error_body(e),
                ) from e
            except Exception as e:
                raise ProviderError(f"Failed to {context}: {e}") from e

    def _refresh_credential(self, context: str) -> None:
        """Swap in a refreshed credential value and persist the new tokens."""
        current = self._credential
        if not current.refresh_token:
            raise AuthExpired(
                f"Access token expired during {context} and account "
                f"{current.account_id} has no refresh token"
            )

        logger.info("Access token expired during %s, refreshing", context)
        refresh = self._token_refresher(current)
        self._credential = replace(
            current,
            access_token=refresh.access_token,
            refresh_token=refresh.refresh_token or current.refresh_token,
        )
        self._service = None

        if self._on_token_refresh is not None:
            try:
                self._on_token_refresh(current.account_id, refresh)
            except Exception as e:
                logger.error(
                    "Failed to persist refreshed tokens for account %s: %s",
                    current.account_id, e,
                )

    def _retry_delay(self, exc: HttpError) -> float:
        """Seconds to wait after a 429, from Retry-After when it is numeric."""
        hint = self._default_retry_after
        raw = exc.resp.get("retry-after") if exc.resp is not None else None
        if raw is not None:
            try:
                hint = max(float(raw), 0.0)
            except (TypeError, ValueError):
                logger.debug("Ignoring non-numeric Retry-After: %r", raw)
        return min(hint, self._max_retry_after)

    def get_profile(self) -> dict[str, Any]:
        """Return the account profile (emailAddress, messagesTotal, ...)."""
        return self.execute(
            lambda service: service.users().getProfile(userId=self._user_id),
            "get profile",
        )

    def discover_message_ids(
        self,
        query: str | None = None,
        max_results: int = 50,
        max_results_per_page: int = 100,
    ) -> Generator[list[str], None, None]:
        """Paginate through message IDs matching ``query``, newest first.

        Stops once ``max_results`` IDs have been yielded in total.

        Yields:
            Lists of message IDs, one list per API page.
        """
        page_token: str | None = None
        remaining = max_results
        first_page = True

        while remaining > 0:
            if not first_page and self._inter_page_delay > 0:
                time.sleep(self._inter_page_delay)
            first_page = False

            kwargs: dict[str, Any] = {
                "userId": self._user_id,
                "maxResults": min(max_results_per_page, remaining),
            }
            if page_token:
                kwargs["pageToken"] = page_token
            if query:
                kwargs["q"] = query

            response = self.execute(
                lambda service, kw=kwargs: service.users().messages().list(**kw),
                "list messages",
            )

            ids = [msg["id"] for msg in response.get("messages", [])][:remaining]
            if not ids:
                return

            logger.debug("Discovered %d message IDs (page)", len(ids))
            remaining -= len(ids)
            yield ids

            page_token = response.get("nextPageToken")
            if not page_token:
                return

    def get_message(self, message_id: str) -> dict[str, Any]:
        """Fetch one full message as a raw Gmail API dict."""
        return self.execute(
            lambda service: service.users().messages().get(
                userId=self._user_id, id=message_id, format="full"
            ),
            f"get message {message_id}",
        )

    def list_messages(self, query: str | None = None, max_results: int = 50) -> list[RemoteMessage]:
        """Discover and fetch up to ``max_results`` messages matching ``query``."""
        messages: list[RemoteMessage] = []
        for page in self.discover_message_ids(query, max_results, self._max_results_per_page):
            for message_id in page:
                messages.append(self._parser.parse(self.get_message(message_id)))
        logger.debug(
            "Fetched %d messages for account %s", len(messages), self._credential.account_id
        )
        return messages
