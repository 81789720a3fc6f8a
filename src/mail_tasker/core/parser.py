"""Gmail message parser: MIME tree walking, base64url decoding, header extraction."""

from __future__ import annotations

import base64
import logging
from datetime import UTC, datetime
from email.utils import getaddresses, parsedate_to_datetime
from typing import Any

from mail_tasker.core.converter import ContentConverter
from mail_tasker.core.exceptions import ProviderError
from mail_tasker.core.models import RemoteMessage

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class GmailParser:
    """Parses raw Gmail API message dicts into RemoteMessage objects."""

    def __init__(self, converter: ContentConverter | None = None) -> None:
        self._converter = converter or ContentConverter()

    def parse(self, raw_message: dict[str, Any]) -> RemoteMessage:
        """Parse a raw Gmail API message dict (format=full) into a RemoteMessage.

        Raises:
            ProviderError: If the message structure is invalid.
        """
        try:
            message_id = raw_message["id"]
            payload = raw_message.get("payload", {})
            headers = self._extract_headers(payload)
            plain_text, html = self._walk_parts(payload)

            if plain_text is None and html is None:
                # Single-part message: the body sits on the payload itself
                body_data = payload.get("body", {}).get("data")
                if body_data:
                    decoded = self._decode_body(body_data)
                    if "html" in payload.get("mimeType", ""):
                        html = decoded
                    else:
                        plain_text = decoded

            snippet = raw_message.get("snippet", "")
            content = self._converter.to_text(plain_text, html) or snippet

            return RemoteMessage(
                message_id=message_id,
                thread_id=raw_message.get("threadId", ""),
                subject=headers.get("subject", "(no subject)"),
                sender=headers.get("from", ""),
                recipients=self._parse_recipients(headers),
                received_at=self._received_at(raw_message, headers.get("date", "")),
                label_ids=tuple(raw_message.get("labelIds", [])),
                content=content,
                snippet=snippet,
            )
        except Exception as e:
            raise ProviderError(
                f"Failed to parse message {raw_message.get('id', '?')}: {e}"
            ) from e

    @staticmethod
    def _extract_headers(payload: dict[str, Any]) -> dict[str, str]:
        headers: dict[str, str] = {}
        for h in payload.get("headers", []):
            name = h.get("name", "").lower()
            if name in ("subject", "from", "to", "cc", "date"):
                headers[name] = h.get("value", "")
        return headers

    @staticmethod
    def _parse_recipients(headers: dict[str, str]) -> tuple[str, ...]:
        """Collect To and Cc addresses, dropping display names."""
        fields = [headers[name] for name in ("to", "cc") if headers.get(name)]
        return tuple(addr for _, addr in getaddresses(fields) if addr)

    def _walk_parts(self, part: dict[str, Any]) -> tuple[str | None, str | None]:
        """Recursively walk MIME parts to find text/plain and text/html.

        Returns:
            Tuple of (plain_text, html), either may be None.
        """
        plain_text: str | None = None
        html: str | None = None
        mime_type = part.get("mimeType", "")

        if mime_type == "text/plain":
            data = part.get("body", {}).get("data")
            if data:
                plain_text = self._decode_body(data)
        elif mime_type == "text/html":
            data = part.get("body", {}).get("data")
            if data:
                html = self._decode_body(data)
        elif mime_type.startswith("multipart/"):
            for sub_part in part.get("parts", []):
                # Skip attachments
                if sub_part.get("filename"):
                    continue

                sub_plain, sub_html = self._walk_parts(sub_part)
                if sub_plain and not plain_text:
                    plain_text = sub_plain
                if sub_html and not html:
                    html = sub_html

        return plain_text, html

    @staticmethod
    def _decode_body(data: str) -> str:
        """Decode Gmail's base64url body data (RFC 4648 §5) to UTF-8 text."""
        padded = data + "=" * (4 - len(data) % 4) if len(data) % 4 else data
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")

    @staticmethod
    def _received_at(raw_message: dict[str, Any], date_header: str) -> datetime:
        """Receipt time from internalDate (epoch millis), else the Date header."""
        internal_date = raw_message.get("internalDate")
        if internal_date:
            try:
                return datetime.fromtimestamp(int(internal_date) / 1000, tz=UTC)
            except (TypeError, ValueError):
                logger.warning("Invalid internalDate: %s", internal_date)

        if not date_header:
            return EPOCH
        try:
            parsed = parsedate_to_datetime(date_header)
        except (TypeError, ValueError):
            logger.warning("Failed to parse date: %s", date_header)
            return EPOCH
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed
