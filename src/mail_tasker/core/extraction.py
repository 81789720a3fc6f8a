"""Task extraction through the language model: prompting, truncation, batching."""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Sequence

from mail_tasker.core.exceptions import LLMError
from mail_tasker.core.models import ExtractionResult, RemoteMessage
from mail_tasker.core.ollama_client import OllamaClient
from mail_tasker.core.repair import Unparsed, parse_extraction

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
TRUNCATION_MARKER = "\n[... message truncated ...]"
# Sentence boundaries are searched for in the last 20% before the cut
BOUNDARY_WINDOW = 0.2
_SENTENCE_END = re.compile(r"[.!?](?=\s)|\n")

INSTRUCTIONS = """You are a task extraction AI. Analyze the email content below and extract any actionable tasks that require the user to DO something.

Only extract tasks that require ACTION from the user. Ignore:
- Newsletters, marketing emails, promotional content
- Automated notifications, system messages, social media notifications
- Informational updates, status reports, announcements
- Receipts, confirmations, automated responses
- Calendar invites (unless they require preparation)

Focus on content that contains:
- Direct requests for action ("Please review", "Can you send", "Need you to")
- Deadlines or time-sensitive requests
- Follow-up items ("Let me know when", "Get back to me")
- Action items from meetings or discussions
- Requests for information or documents"""

RESPONSE_FORMAT = """Respond with a JSON object in this exact format:
{
  "tasks": [
    {
      "title": "Task title",
      "description": "Task description (optional)",
      "priority": "one of LOW, MEDIUM, HIGH, URGENT",
      "dueDate": "2025-01-31 (optional, only if a specific date is mentioned)"
    }
  ],
  "confidence": 0.85,
  "reasoning": "Brief explanation of why these tasks were extracted or why none were found"
}

If no actionable tasks are found, return {"tasks": [], "confidence": 0.0, "reasoning": "..."}.
Respond with ONLY valid JSON: no explanatory text, no markdown, no comments, no trailing commas."""


def estimate_tokens(text: str) -> int:
    """Rough token count using ~4 characters per token."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def truncate_content(text: str, max_chars: int) -> str:
    """Shorten ``text`` to at most ``max_chars`` characters.

    Cuts at the last sentence boundary inside the final 20% of the allowed
    length when there is one, otherwise cuts hard. A truncation marker is
    appended and counted against ``max_chars``.
    """
    if len(text) <= max_chars:
        return text

    limit = max(max_chars - len(TRUNCATION_MARKER), 0)
    cut = text[:limit]
    window_start = int(limit * (1 - BOUNDARY_WINDOW))

    boundary = None
    for match in _SENTENCE_END.finditer(cut, window_start):
        boundary = match.end()
    if boundary is not None:
        cut = cut[:boundary]

    return cut.rstrip() + TRUNCATION_MARKER


def format_message(message: RemoteMessage, max_chars: int | None = None) -> str:
    """Render a message as prompt text with its subject and sender."""
    content = message.content or message.snippet
    if max_chars is not None:
        content = truncate_content(content, max_chars)
    return f"Subject: {message.subject}\nFrom: {message.sender}\n\n{content}"


def build_prompt(content: str) -> str:
    return f'{INSTRUCTIONS}\n\nMessage:\n"""\n{content}\n"""\n\n{RESPONSE_FORMAT}'


def build_batch_prompt(sections: Sequence[str]) -> str:
    body = "\n\n".join(
        f"--- Message {i} ---\n{section}" for i, section in enumerate(sections, start=1)
    )
    return (
        f"{INSTRUCTIONS}\n\nThe following {len(sections)} messages are separate emails. "
        f"Extract tasks from all of them and list the tasks in message order.\n\n"
        f"{body}\n\n{RESPONSE_FORMAT}"
    )


def distribute_tasks(result: ExtractionResult, count: int) -> list[ExtractionResult]:
    """Split one combined result into ``count`` per-message results.

    Tasks are assigned in contiguous chunks of ``ceil(len(tasks) / count)`` in
    batch order. The model does not say which message a task came from, so
    this attribution is approximate.
    """
    if count <= 0:
        return []
    chunk = math.ceil(len(result.tasks) / count) if result.tasks else 0
    return [
        ExtractionResult(
            tasks=result.tasks[i * chunk:(i + 1) * chunk],
            confidence=result.confidence,
            reasoning=result.reasoning,
        )
        for i in range(count)
    ]


class TaskExtractor:
    """Extract tasks from email text with an Ollama model.

    Parse failures never raise: they produce an empty result with zero
    confidence. Transport failures raise ``LLMError``.
    """

    def __init__(
        self,
        client: OllamaClient,
        *,
        context_tokens: int = 4096,
        max_message_chars: int = 4000,
    ) -> None:
        self._client = client
        self._context_tokens = context_tokens
        self._max_message_chars = max_message_chars

    def is_available(self) -> bool:
        return self._client.is_available()

    def extract_single(self, text: str) -> ExtractionResult:
        """Extract tasks from one message's text."""
        prompt = build_prompt(text)
        if estimate_tokens(prompt) > self._context_tokens:
            overhead = estimate_tokens(build_prompt(""))
            max_chars = max(self._context_tokens - overhead, 0) * CHARS_PER_TOKEN
            logger.info(
                "Prompt ~%d tokens exceeds budget %d, truncating content to %d chars",
                estimate_tokens(prompt), self._context_tokens, max_chars,
            )
            prompt = build_prompt(truncate_content(text, max_chars))

        return self._complete(prompt)

    def extract_batch(
        self, messages: Sequence[RemoteMessage]
    ) -> list[tuple[str, ExtractionResult]]:
        """Extract tasks for several messages, one result per message in order.

        Uses a single combined prompt when it fits the context budget and the
        reply parses; otherwise falls back to one call per message.
        """
        if not messages:
            return []

        sections = [format_message(m, self._max_message_chars) for m in messages]
        prompt = build_batch_prompt(sections)
        tokens = estimate_tokens(prompt)
        if tokens > self._context_tokens:
            logger.info(
                "Batch prompt ~%d tokens exceeds budget %d, extracting %d messages individually",
                tokens, self._context_tokens, len(messages),
            )
            return self._extract_individually(messages)

        outcome = parse_extraction(self._client.generate(prompt))
        if isinstance(outcome, Unparsed):
            logger.warning(
                "Could not parse batch response (%s), extracting %d messages individually",
                outcome.reason, len(messages),
            )
            return self._extract_individually(messages)

        logger.debug("Batch of %d yielded %d tasks", len(messages), len(outcome.result.tasks))
        results = distribute_tasks(outcome.result, len(messages))
        return [(m.message_id, r) for m, r in zip(messages, results)]

    def _extract_individually(
        self, messages: Sequence[RemoteMessage]
    ) -> list[tuple[str, ExtractionResult]]:
        """One call per message; a failed call yields an empty result for that message.

        Raises:
            LLMError: If every call failed.
        """
        results: list[tuple[str, ExtractionResult]] = []
        last_error: LLMError | None = None
        failures = 0
        for message in messages:
            try:
                result = self.extract_single(format_message(message))
            except LLMError as e:
                logger.warning("Extraction failed for message %s: %s", message.message_id, e)
                last_error = e
                failures += 1
                result = ExtractionResult(reasoning=f"Extraction failed: {e}")
            results.append((message.message_id, result))

        if last_error is not None and failures == len(messages):
            raise last_error
        return results

    def _complete(self, prompt: str) -> ExtractionResult:
        outcome = parse_extraction(self._client.generate(prompt))
        if isinstance(outcome, Unparsed):
            logger.warning("Failed to parse AI response: %s", outcome.reason)
            return ExtractionResult(
                tasks=(),
                confidence=0.0,
                reasoning=f"Failed to parse AI response: {outcome.reason}",
            )
        return outcome.result
