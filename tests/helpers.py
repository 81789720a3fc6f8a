"""Builders shared across Mail Tasker tests."""

from __future__ import annotations

import base64
from datetime import UTC, datetime
from unittest.mock import MagicMock

from googleapiclient.errors import HttpError

from mail_tasker.core.models import RemoteMessage, TaggedMessage


def b64url(text: str) -> str:
    """Encode text the way the Gmail API encodes body data."""
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def http_error(status: int, headers: dict[str, str] | None = None, body: bytes = b"") -> HttpError:
    """Build an HttpError with the given status and lower-cased response headers."""
    headers = headers or {}
    resp = MagicMock()
    resp.status = status
    resp.reason = "error"
    resp.get.side_effect = lambda key, default=None: headers.get(key, default)
    return HttpError(resp=resp, content=body or b"error")


def make_message(
    message_id: str,
    ts: int = 0,
    *,
    subject: str = "Subject",
    sender: str = "alice@example.com",
    content: str = "Please review the report.",
) -> RemoteMessage:
    """A RemoteMessage received ``ts`` seconds after 2024-01-01 UTC."""
    base = datetime(2024, 1, 1, tzinfo=UTC).timestamp()
    return RemoteMessage(
        message_id=message_id,
        thread_id=f"t-{message_id}",
        subject=subject,
        sender=sender,
        received_at=datetime.fromtimestamp(base + ts, tz=UTC),
        recipients=("me@example.com",),
        label_ids=("INBOX",),
        content=content,
        snippet=content[:40],
    )


def tag(message: RemoteMessage, account_id: str = "acct-1") -> TaggedMessage:
    return TaggedMessage(
        message=message,
        account_id=account_id,
        account_email=f"{account_id}@example.com",
        account_name=account_id.upper(),
    )
