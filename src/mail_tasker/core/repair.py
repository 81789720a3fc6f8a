"""Repair and parse the loosely-formatted JSON that language models return.

Models wrap their JSON in prose or code fences, add ``//`` comments and leave
trailing commas. ``repair_json_text`` turns such a reply into a candidate JSON
string; ``parse_extraction`` never raises and returns either ``Parsed`` or
``Unparsed`` with a reason.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from mail_tasker.core.exceptions import ExtractionParseFailure
from mail_tasker.core.models import ExtractedTask, ExtractionResult

_WHITESPACE = re.compile(r"\s+")
_CLOSERS = {"{": "}", "[": "]"}


@dataclass(frozen=True)
class Parsed:
    result: ExtractionResult


@dataclass(frozen=True)
class Unparsed:
    reason: str


ParseOutcome = Parsed | Unparsed


def _skip_comment(text: str, i: int) -> int:
    """If a comment starts at ``i``, return the index just past it, else ``i``."""
    if text.startswith("//", i):
        end = text.find("\n", i)
        return len(text) if end == -1 else end
    if text.startswith("/*", i):
        end = text.find("*/", i + 2)
        return len(text) if end == -1 else end + 2
    return i


def _balanced_end(text: str, start: int) -> int | None:
    """Index just past the bracket span opened at ``start``, or None if unbalanced."""
    stack: list[str] = []
    in_string = False
    i = start
    n = len(text)

    while i < n:
        ch = text[i]
        if in_string:
            if ch == "\\":
                i += 2
                continue
            if ch == '"':
                in_string = False
        else:
            skipped = _skip_comment(text, i)
            if skipped != i:
                i = skipped
                continue
            if ch == '"':
                in_string = True
            elif ch in _CLOSERS:
                stack.append(_CLOSERS[ch])
            elif ch in "}]":
                if not stack or stack[-1] != ch:
                    return None
                stack.pop()
                if not stack:
                    return i + 1
        i += 1

    return None


def extract_json_span(text: str) -> str | None:
    """Return the first balanced ``{...}`` or ``[...]`` span in ``text``."""
    for start, ch in enumerate(text):
        if ch in _CLOSERS:
            end = _balanced_end(text, start)
            if end is not None:
                return text[start:end]
    return None


def strip_comments_and_trailing_commas(text: str) -> str:
    """Drop ``//`` and ``/* */`` comments and trailing commas outside strings."""
    out: list[str] = []
    in_string = False
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue

        skipped = _skip_comment(text, i)
        if skipped != i:
            i = skipped
            continue

        if ch == ",":
            j = i + 1
            while j < n:
                if text[j].isspace():
                    j += 1
                    continue
                after_comment = _skip_comment(text, j)
                if after_comment == j:
                    break
                j = after_comment
            if j < n and text[j] in "}]":
                i += 1
                continue
        elif ch == '"':
            in_string = True

        out.append(ch)
        i += 1

    return "".join(out)


def repair_json_text(text: str) -> str | None:
    """Turn a model reply into a JSON candidate string, or None if no JSON span exists."""
    span = extract_json_span(text)
    if span is None:
        return None
    cleaned = strip_comments_and_trailing_commas(span)
    # Raw newlines and tabs are invalid inside JSON strings anyway
    return _WHITESPACE.sub(" ", cleaned).strip()


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, list):
        value = "|".join(str(v) for v in value)
    text = str(value).strip()
    return text or None


def _coerce_task(raw: Any) -> ExtractedTask | None:
    if isinstance(raw, str):
        return ExtractedTask(title=raw.strip()) if raw.strip() else None
    if not isinstance(raw, dict):
        return None

    title = _optional_str(raw.get("title")) or "Untitled Task"
    due = raw.get("dueDate", raw.get("due_date"))
    return ExtractedTask(
        title=title,
        description=_optional_str(raw.get("description")),
        priority=_optional_str(raw.get("priority")),
        due_date=_optional_str(due),
    )


def _coerce_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if confidence != confidence:  # NaN
        return 0.0
    return min(max(confidence, 0.0), 1.0)


def _coerce_payload(payload: Any) -> ExtractionResult:
    """Map a decoded JSON payload onto an ExtractionResult.

    Raises:
        ExtractionParseFailure: If the payload has no usable task list.
    """
    if isinstance(payload, list):
        raw_tasks: Any = payload
        confidence: Any = None
        reasoning: Any = None
    elif isinstance(payload, dict):
        raw_tasks = payload.get("tasks", [])
        confidence = payload.get("confidence")
        reasoning = payload.get("reasoning")
    else:
        raise ExtractionParseFailure(f"Unexpected JSON type: {type(payload).__name__}")

    if raw_tasks is None:
        raw_tasks = []
    if not isinstance(raw_tasks, list):
        raise ExtractionParseFailure("'tasks' is not a list")

    tasks = tuple(task for task in (_coerce_task(t) for t in raw_tasks) if task is not None)
    return ExtractionResult(
        tasks=tasks,
        confidence=_coerce_confidence(confidence),
        reasoning=_optional_str(reasoning) or "No reasoning provided",
    )


def parse_extraction(text: str) -> ParseOutcome:
    """Parse a model reply into tasks without ever raising."""
    candidate = repair_json_text(text or "")
    if candidate is None:
        return Unparsed("No JSON found in response")

    try:
        payload = json.loads(candidate)
        return Parsed(_coerce_payload(payload))
    except json.JSONDecodeError as e:
        return Unparsed(f"Invalid JSON: {e.msg} at position {e.pos}")
    except ExtractionParseFailure as e:
        return Unparsed(str(e))
