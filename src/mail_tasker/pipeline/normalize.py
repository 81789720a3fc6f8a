"""Turn raw model tasks into TaskRecords ready for storage."""

from __future__ import annotations

import logging
import re
from datetime import date

from mail_tasker.core.models import ExtractedTask, Priority, TaggedMessage, TaskRecord

logger = logging.getLogger(__name__)

_PRIORITY_SEPARATORS = re.compile(r"[|,/]")
_ISO_DATE_PREFIX = re.compile(r"^(\d{4})-(\d{2})-(\d{2})(?:$|[T ])")


def normalize_priority(value: str | None) -> Priority:
    """Map a model priority string onto Priority.

    Missing or unknown values become MEDIUM. A multi-value string such as
    ``"LOW|MEDIUM|HIGH|URGENT"`` (the prompt template echoed back) resolves to
    its first listed value.
    """
    if not value:
        return Priority.MEDIUM
    first = _PRIORITY_SEPARATORS.split(value, maxsplit=1)[0].strip().upper()
    try:
        return Priority(first)
    except ValueError:
        return Priority.MEDIUM


def parse_due_date(value: str | None) -> date | None:
    """Parse ``YYYY-MM-DD`` (optionally followed by a time) into a date.

    Anything that is not a real calendar date, including placeholders like
    ``"YYYY-MM-DD"`` or ``"2025-02-30"``, yields None.
    """
    if not value:
        return None
    match = _ISO_DATE_PREFIX.match(value.strip())
    if match is None:
        return None
    year, month, day = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def build_task_record(task: ExtractedTask, source: TaggedMessage, user_id: str) -> TaskRecord:
    """Normalize a model task and copy sender metadata from its source message."""
    due_date = parse_due_date(task.due_date)
    if task.due_date and due_date is None:
        logger.warning("Invalid due date for task %r: %s", task.title, task.due_date)

    message = source.message
    return TaskRecord(
        title=task.title,
        description=task.description,
        priority=normalize_priority(task.priority),
        due_date=due_date,
        user_id=user_id,
        account_id=source.account_id,
        message_id=message.message_id,
        account_email=source.account_email,
        account_name=source.account_name,
        email_sender=message.sender,
        email_recipients=message.recipients,
        email_received_at=message.received_at,
    )
