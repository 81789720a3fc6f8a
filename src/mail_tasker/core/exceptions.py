"""Custom exceptions for Mail Tasker."""

from __future__ import annotations


class MailTaskerError(Exception):
    """Base exception for all Mail Tasker errors."""


class AccountNotFound(MailTaskerError):
    """No linked account exists for the given identifier."""


class AccountInactive(MailTaskerError):
    """The linked account is disabled."""


class ServiceUnavailable(MailTaskerError):
    """The language model service cannot be reached."""


class AuthExpired(MailTaskerError):
    """Access token expired and could not be refreshed."""


class RateLimited(MailTaskerError):
    """Gmail API rate limit retry budget exhausted."""


class ProviderError(MailTaskerError):
    """Gmail API returned a non-success response.

    ``status`` is None when the request never produced an HTTP response.
    """

    def __init__(self, message: str, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class LLMError(MailTaskerError):
    """The language model service failed to produce a completion."""


class ExtractionParseFailure(MailTaskerError):
    """Model output could not be parsed into tasks."""


class BatchProcessingFailure(MailTaskerError):
    """A batch failed during extraction or persistence."""
