"""Progress events delivered to the caller.

The core calls the reporter synchronously at fixed checkpoints. Reporters are
observers: an exception raised by one is logged and otherwise ignored.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from patent_retriever.log_utils import append_jsonl
from patent_retriever.models import Phase, ProgressEvent

logger = logging.getLogger(__name__)


class ProgressReporter(Protocol):
    def __call__(self, event: ProgressEvent) -> None: ...


class ProgressRecorder:
    """Collects every event; handy for tests and batch summaries."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def phases(self) -> list[Phase]:
        seen: list[Phase] = []
        for event in self.events:
            if not seen or seen[-1] is not event.phase:
                seen.append(event.phase)
        return seen

    def for_phase(self, phase: Phase) -> list[ProgressEvent]:
        return [event for event in self.events if event.phase is phase]


class JsonlProgressLog:
    def __init__(self, path: Path, *, request_id: str | None = None) -> None:
        self.path = path
        self.request_id = request_id

    def __call__(self, event: ProgressEvent) -> None:
        record = event.as_dict()
        if self.request_id:
            record["request"] = self.request_id
        append_jsonl(self.path, record)


class ProgressChannel:
    """Tracks the current phase and keeps counts monotonic within it."""

    def __init__(self, reporter: ProgressReporter | None = None) -> None:
        self._reporter = reporter
        self.phase: Phase | None = None
        self.completed = 0
        self.total = 0

    def enter(self, phase: Phase, total: int, detail: str | None = None) -> None:
        self.phase = phase
        self.completed = 0
        self.total = total
        self._emit(ProgressEvent(phase, 0, total, detail))

    def advance(self, detail: str | None = None) -> None:
        if self.phase is None:
            raise RuntimeError("advance() called before enter()")
        self.completed += 1
        self._emit(ProgressEvent(self.phase, self.completed, self.total, detail))

    def note(self, detail: str) -> None:
        """Checkpoint within the current phase; counts are unchanged."""

        if self.phase is None:
            raise RuntimeError("note() called before enter()")
        self._emit(ProgressEvent(self.phase, self.completed, self.total, detail))

    def finish(self, phase: Phase, detail: str | None = None) -> None:
        self.phase = phase
        self.completed = self.total
        self._emit(ProgressEvent(phase, self.total, self.total, detail))

    def _emit(self, event: ProgressEvent) -> None:
        if self._reporter is None:
            return
        try:
            self._reporter(event)
        except Exception:  # noqa: BLE001 - reporters never affect the run
            logger.exception("Progress reporter failed on %s", event.phase.value)


__all__ = [
    "JsonlProgressLog",
    "ProgressChannel",
    "ProgressRecorder",
    "ProgressReporter",
]
