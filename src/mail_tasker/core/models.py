"""Frozen dataclasses for the Mail Tasker domain model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum
from typing import Any


@dataclass(frozen=True)
class AccountCredential:
    """In-memory copy of a linked Gmail account's tokens."""

    account_id: str
    user_id: str
    email: str
    access_token: str
    refresh_token: str | None = None
    display_name: str = ""
    is_active: bool = True


@dataclass(frozen=True)
class TokenRefresh:
    """New token pair produced by exchanging a refresh token."""

    access_token: str
    refresh_token: str | None = None
    expiry: datetime | None = None


@dataclass(frozen=True)
class RemoteMessage:
    """A fetched Gmail message. Never mutated after parsing."""

    message_id: str
    thread_id: str
    subject: str
    sender: str
    received_at: datetime
    recipients: tuple[str, ...] = field(default_factory=tuple)
    label_ids: tuple[str, ...] = field(default_factory=tuple)
    content: str = ""
    snippet: str = ""


@dataclass(frozen=True)
class TaggedMessage:
    """A message annotated with the account it was fetched from."""

    message: RemoteMessage
    account_id: str
    account_email: str
    account_name: str = ""

    @property
    def message_id(self) -> str:
        return self.message.message_id

    @property
    def received_at(self) -> datetime:
        return self.message.received_at


@dataclass(frozen=True)
class AccountFetchError:
    """Fan-out entry for an account whose fetch failed entirely."""

    account_id: str
    account_email: str
    error: Exception


@dataclass(frozen=True)
class FanOutResult:
    """Merged, ordered messages from several accounts plus per-account failures."""

    messages: list[TaggedMessage] = field(default_factory=list)
    errors: list[AccountFetchError] = field(default_factory=list)


class LedgerStatus(StrEnum):
    """Outcome recorded for a processed message."""

    EXTRACTED = "extracted"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass(frozen=True)
class LedgerEntry:
    """Marks (account, message) as already handled."""

    account_id: str
    message_id: str
    tasks_extracted: int
    status: LedgerStatus
    processed_at: datetime


class Priority(StrEnum):
    """Task priority, ordered LOW < MEDIUM < HIGH < URGENT."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"

    @property
    def rank(self) -> int:
        return _PRIORITY_ORDER.index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Priority):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Priority):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Priority):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Priority):
            return NotImplemented
        return self.rank >= other.rank


_PRIORITY_ORDER = (Priority.LOW, Priority.MEDIUM, Priority.HIGH, Priority.URGENT)


@dataclass(frozen=True)
class ExtractedTask:
    """A task as returned by the model, before normalization."""

    title: str
    description: str | None = None
    priority: str | None = None
    due_date: str | None = None


@dataclass(frozen=True)
class ExtractionResult:
    """Tasks found in one prompt, with the model's confidence and reasoning."""

    tasks: tuple[ExtractedTask, ...] = field(default_factory=tuple)
    confidence: float = 0.0
    reasoning: str = ""


@dataclass(frozen=True)
class TaskRecord:
    """A persisted task. ``task_id`` and ``created_at`` are set by the store."""

    title: str
    user_id: str
    account_id: str
    message_id: str
    priority: Priority = Priority.MEDIUM
    description: str | None = None
    due_date: date | None = None
    account_email: str = ""
    account_name: str = ""
    email_sender: str = ""
    email_recipients: tuple[str, ...] = field(default_factory=tuple)
    email_received_at: datetime | None = None
    status: str = "PENDING"
    source: str = "gmail"
    task_id: int | None = None
    created_at: datetime | None = None


class EventKind(StrEnum):
    """Progress event kinds, in the order a run produces them."""

    START = "start"
    PROGRESS = "progress"
    BATCH = "batch"
    MESSAGE = "message"
    TASK_CREATED = "task_created"
    COMPLETE = "complete"
    ERROR = "error"


# Wire names for ProgressEvent fields
_EVENT_FIELD_NAMES = {
    "message": "message",
    "current": "current",
    "total": "total",
    "batch_index": "batchIndex",
    "total_batches": "totalBatches",
    "message_id": "messageId",
    "extracted": "extracted",
    "created_count": "createdCount",
    "task_title": "taskTitle",
    "created": "created",
    "error": "error",
}


@dataclass(frozen=True)
class ProgressEvent:
    """A status update pushed to a progress sink. Unused fields stay None."""

    kind: EventKind
    message: str | None = None
    current: int | None = None
    total: int | None = None
    batch_index: int | None = None
    total_batches: int | None = None
    message_id: str | None = None
    extracted: int | None = None
    created_count: int | None = None
    task_title: str | None = None
    created: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Render as a ``{"type": kind, ...}`` dict with camelCase keys."""
        data: dict[str, Any] = {"type": str(self.kind)}
        for attr, wire_name in _EVENT_FIELD_NAMES.items():
            value = getattr(self, attr)
            if value is not None:
                data[wire_name] = value
        return data


@dataclass
class RunSummary:
    """Mutable aggregate counts for one extraction run."""

    processed: int = 0
    extracted: int = 0
    created: int = 0
    failed_batches: int = 0
