"""Progress sinks: where a pipeline run pushes its ProgressEvents."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import TextIO

from mail_tasker.core.models import ProgressEvent

ProgressSink = Callable[[ProgressEvent], None]


class JsonLinesSink:
    """Writes each event as one JSON object per line, e.g. to a streaming response."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream

    def __call__(self, event: ProgressEvent) -> None:
        self._stream.write(json.dumps(event.to_dict()) + "\n")
        self._stream.flush()
