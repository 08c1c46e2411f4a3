"""Invocation events and the in-memory invocation log."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

MAX_ENTRIES = 500
MAX_COMMAND_LENGTH = 300


class InvocationStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class InvocationEvent:
    """Emitted before and after every remote invocation.

    Carries the command text only; out-of-band parameter values never
    appear here.
    """

    invocation_id: int
    command: str
    status: InvocationStatus
    started_at: datetime
    duration_ms: int | None = None
    error: str | None = None
    warnings: tuple[str, ...] = ()

    def finish(
        self,
        status: InvocationStatus,
        duration_ms: int,
        *,
        error: str | None = None,
        warnings: tuple[str, ...] = (),
    ) -> InvocationEvent:
        return replace(self, status=status, duration_ms=duration_ms, error=error, warnings=warnings)


InvocationListener = Callable[[InvocationEvent], None]


@dataclass(slots=True)
class InvocationLogEntry:
    index: int
    command: str
    started_at: datetime
    status: InvocationStatus = InvocationStatus.RUNNING
    ended_at: datetime | None = None
    duration_ms: int | None = None
    error: str | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)


class InvocationLog:
    """Keeps the most recent invocations, newest first, for the console's command log."""

    def __init__(self, max_entries: int = MAX_ENTRIES) -> None:
        self._entries: deque[InvocationLogEntry] = deque(maxlen=max_entries)
        self._pending: dict[int, InvocationLogEntry] = {}
        self._counter = 0
        self._lock = threading.Lock()

    def record(self, event: InvocationEvent) -> None:
        """Listener entry point: open an entry on start, complete it on finish."""

        with self._lock:
            if event.status is InvocationStatus.RUNNING:
                entry = InvocationLogEntry(
                    index=self._counter,
                    command=summarize_command(event.command),
                    started_at=event.started_at,
                )
                self._counter += 1
                self._entries.append(entry)
                self._pending[event.invocation_id] = entry
                return
            entry = self._pending.pop(event.invocation_id, None)
            if entry is None:
                return
            entry.status = event.status
            entry.ended_at = datetime.now(tz=timezone.utc)
            entry.duration_ms = event.duration_ms
            entry.error = event.error
            entry.warnings = event.warnings

    def entries(self) -> list[InvocationLogEntry]:
        with self._lock:
            return sorted(self._entries, key=lambda entry: entry.index, reverse=True)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._pending.clear()
            self._counter = 0


def summarize_command(command: str) -> str:
    """First non-blank line of the command, truncated for display."""

    for line in command.splitlines():
        trimmed = line.strip()
        if trimmed:
            break
    else:
        trimmed = command.strip()
    if len(trimmed) > MAX_COMMAND_LENGTH:
        return trimmed[:MAX_COMMAND_LENGTH] + "…"
    return trimmed


__all__ = [
    "InvocationEvent",
    "InvocationListener",
    "InvocationLog",
    "InvocationLogEntry",
    "InvocationStatus",
    "MAX_ENTRIES",
    "summarize_command",
]
