"""Unit tests for GmailParser."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from unittest.mock import patch

import pytest

from mail_tasker.core.exceptions import ProviderError
from mail_tasker.core.parser import EPOCH, GmailParser
from tests.helpers import b64url


@pytest.fixture
def parser() -> GmailParser:
    return GmailParser()


def _single_part(mime_type: str, body: str, **extra: Any) -> dict[str, Any]:
    raw: dict[str, Any] = {
        "id": "msg_single",
        "payload": {
            "mimeType": mime_type,
            "headers": [{"name": "Subject", "value": "Single"}],
            "body": {"data": b64url(body)},
        },
    }
    raw.update(extra)
    return raw


class TestMultipartAlternative:
    """multipart/alternative with text/plain and text/html parts."""

    def test_identifiers(self, parser: GmailParser, raw_multipart_message: dict[str, Any]) -> None:
        msg = parser.parse(raw_multipart_message)
        assert msg.message_id == "msg_001"
        assert msg.thread_id == "thread_001"
        assert msg.label_ids == ("INBOX", "UNREAD")
        assert msg.snippet == "Can you send the Q3 numbers"

    def test_headers(self, parser: GmailParser, raw_multipart_message: dict[str, Any]) -> None:
        msg = parser.parse(raw_multipart_message)
        assert msg.subject == "Q3 numbers"
        assert msg.sender == "Bob <bob@example.com>"

    def test_recipients_merge_to_and_cc(
        self, parser: GmailParser, raw_multipart_message: dict[str, Any]
    ) -> None:
        msg = parser.parse(raw_multipart_message)
        assert msg.recipients == ("me@example.com", "team@example.com", "carol@example.com")

    def test_received_at_from_internal_date(
        self, parser: GmailParser, raw_multipart_message: dict[str, Any]
    ) -> None:
        msg = parser.parse(raw_multipart_message)
        assert msg.received_at == datetime(2024, 1, 15, 10, 30, tzinfo=UTC)

    def test_plain_text_content(
        self, parser: GmailParser, raw_multipart_message: dict[str, Any]
    ) -> None:
        msg = parser.parse(raw_multipart_message)
        assert msg.content == "Can you send the Q3 numbers by Friday?"


class TestMultipartMixedWithAttachment:
    def test_attachment_skipped(self, parser: GmailParser) -> None:
        raw = {
            "id": "msg_att",
            "payload": {
                "mimeType": "multipart/mixed",
                "headers": [],
                "parts": [
                    {
                        "mimeType": "text/plain",
                        "filename": "notes.txt",
                        "body": {"data": b64url("attachment text")},
                    },
                    {
                        "mimeType": "multipart/alternative",
                        "parts": [
                            {"mimeType": "text/plain", "body": {"data": b64url("Real body")}},
                        ],
                    },
                ],
            },
        }

        assert parser.parse(raw).content == "Real body"


class TestSinglePart:
    def test_plain_body(self, parser: GmailParser) -> None:
        msg = parser.parse(_single_part("text/plain", "Hello there"))
        assert msg.content == "Hello there"

    def test_html_body_goes_through_converter(self, parser: GmailParser) -> None:
        with patch("mail_tasker.core.converter.trafilatura") as mock_traf:
            mock_traf.extract.return_value = "Converted"
            msg = parser.parse(_single_part("text/html", "<p>Hello</p>"))

        assert msg.content == "Converted"

    def test_empty_content_falls_back_to_snippet(self, parser: GmailParser) -> None:
        raw = {"id": "m", "snippet": "Preview only", "payload": {"mimeType": "text/plain"}}
        assert parser.parse(raw).content == "Preview only"


class TestBase64UrlDecoding:
    def test_unpadded(self) -> None:
        assert GmailParser._decode_body(b64url("ab")) == "ab"

    def test_url_safe_characters(self) -> None:
        # Standard base64 of this text contains "/" and "+"
        assert GmailParser._decode_body(b64url("???>>>")) == "???>>>"

    def test_unicode(self) -> None:
        assert GmailParser._decode_body(b64url("Grüße 👋")) == "Grüße 👋"


class TestReceivedAt:
    def test_falls_back_to_date_header(self, parser: GmailParser) -> None:
        raw = {
            "id": "m",
            "payload": {
                "headers": [{"name": "Date", "value": "Mon, 15 Jan 2024 12:00:00 +0200"}],
            },
        }
        assert parser.parse(raw).received_at == datetime(2024, 1, 15, 10, 0, tzinfo=UTC)

    def test_invalid_internal_date_uses_header(self, parser: GmailParser) -> None:
        raw = {
            "id": "m",
            "internalDate": "not-a-number",
            "payload": {"headers": [{"name": "date", "value": "Mon, 15 Jan 2024 10:00:00 +0000"}]},
        }
        assert parser.parse(raw).received_at == datetime(2024, 1, 15, 10, 0, tzinfo=UTC)

    def test_garbage_date_returns_epoch(self, parser: GmailParser) -> None:
        raw = {"id": "m", "payload": {"headers": [{"name": "Date", "value": "yesterday-ish"}]}}
        assert parser.parse(raw).received_at == EPOCH

    def test_missing_date_returns_epoch(self, parser: GmailParser) -> None:
        assert parser.parse({"id": "m", "payload": {}}).received_at == EPOCH


class TestMissingHeaders:
    def test_defaults(self, parser: GmailParser) -> None:
        msg = parser.parse({"id": "m", "payload": {}})
        assert msg.subject == "(no subject)"
        assert msg.sender == ""
        assert msg.recipients == ()
        assert msg.thread_id == ""
        assert msg.label_ids == ()

    def test_header_names_case_insensitive(self, parser: GmailParser) -> None:
        raw = {
            "id": "m",
            "payload": {
                "headers": [
                    {"name": "SUBJECT", "value": "Loud"},
                    {"name": "from", "value": "x@y.z"},
                ]
            },
        }
        msg = parser.parse(raw)
        assert msg.subject == "Loud"
        assert msg.sender == "x@y.z"


class TestErrorHandling:
    def test_missing_id_raises_provider_error(self, parser: GmailParser) -> None:
        with pytest.raises(ProviderError, match="Failed to parse message"):
            parser.parse({"payload": {}})
