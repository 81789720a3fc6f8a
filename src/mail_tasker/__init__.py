"""Mail Tasker - Extract actionable tasks from linked Gmail accounts with a local LLM."""

from mail_tasker.core.models import (
    AccountCredential,
    EventKind,
    ExtractedTask,
    ExtractionResult,
    LedgerStatus,
    Priority,
    ProgressEvent,
    RemoteMessage,
    RunSummary,
    TaggedMessage,
    TaskRecord,
)
from mail_tasker.pipeline.orchestrator import TaskExtractionPipeline

__all__ = [
    "AccountCredential",
    "EventKind",
    "ExtractedTask",
    "ExtractionResult",
    "LedgerStatus",
    "Priority",
    "ProgressEvent",
    "RemoteMessage",
    "RunSummary",
    "TaggedMessage",
    "TaskExtractionPipeline",
    "TaskRecord",
]
