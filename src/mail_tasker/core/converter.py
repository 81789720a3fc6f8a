"""HTML to plain text conversion using trafilatura with plain text fallback."""

from __future__ import annotations

import logging
import re

import trafilatura

logger = logging.getLogger(__name__)

_BLANK_LINES = re.compile(r"\n{3,}")


class ContentConverter:
    """Turn an email body into the plain text that gets sent to the model."""

    def to_text(self, plain_text: str | None, html: str | None) -> str:
        """Return readable text for a message body.

        Strategy:
        1. Prefer the text/plain part when it has content.
        2. Otherwise extract text from HTML via trafilatura (favor_recall=True
           for email layouts).
        3. Return "" when neither yields anything; callers fall back to the snippet.
        """
        if plain_text and plain_text.strip():
            return self._tidy(plain_text)

        if html:
            try:
                result = trafilatura.extract(
                    html,
                    output_format="txt",
                    favor_recall=True,
                    include_links=False,
                    include_tables=True,
                )
            except Exception as e:
                logger.warning("Trafilatura extraction failed: %s", e)
                result = None
            if result:
                return self._tidy(result)

        return ""

    @staticmethod
    def _tidy(text: str) -> str:
        text = text.replace("\r\n", "\n").strip()
        return _BLANK_LINES.sub("\n\n", text)
