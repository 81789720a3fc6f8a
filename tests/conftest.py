"""Shared fixtures for Mail Tasker tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from mail_tasker.core.models import AccountCredential
from tests.helpers import b64url


@pytest.fixture
def credential() -> AccountCredential:
    """An active credential with a refresh token."""
    return AccountCredential(
        account_id="acct-1",
        user_id="user-1",
        email="acct-1@example.com",
        access_token="old-access",
        refresh_token="refresh-1",
        display_name="Work",
    )


@pytest.fixture
def raw_multipart_message() -> dict[str, Any]:
    """Raw Gmail API response for a multipart/alternative email."""
    return {
        "id": "msg_001",
        "threadId": "thread_001",
        "labelIds": ["INBOX", "UNREAD"],
        "snippet": "Can you send the Q3 numbers",
        "internalDate": "1705314600000",
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "Subject", "value": "Q3 numbers"},
                {"name": "From", "value": "Bob <bob@example.com>"},
                {"name": "To", "value": "Me <me@example.com>, team@example.com"},
                {"name": "Cc", "value": "carol@example.com"},
                {"name": "Date", "value": "Mon, 15 Jan 2024 10:30:00 +0000"},
            ],
            "parts": [
                {
                    "mimeType": "text/plain",
                    "body": {"data": b64url("Can you send the Q3 numbers by Friday?")},
                },
                {
                    "mimeType": "text/html",
                    "body": {"data": b64url("<p>Can you send the Q3 numbers by Friday?</p>")},
                },
            ],
        },
    }


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> Path:
    """Temporary database path for tests."""
    return tmp_path / "test.db"
