"""Serialized execution of compiled pipelines on the shared session."""

from __future__ import annotations

import itertools
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Mapping

from .audit import InvocationEvent, InvocationListener, InvocationStatus
from .errors import BridgeError, ConnectionFailed, RemoteExecutionFailed
from .models import Pipeline, render_pipeline
from .session import Session

LOG = logging.getLogger(__name__)


class FairLock:
    """Mutual exclusion lock that grants ownership in acquisition order."""

    def __init__(self) -> None:
        self._condition = threading.Condition()
        self._next_ticket = 0
        self._serving = 0

    def acquire(self) -> None:
        with self._condition:
            ticket = self._next_ticket
            self._next_ticket += 1
            while ticket != self._serving:
                self._condition.wait()

    def release(self) -> None:
        with self._condition:
            self._serving += 1
            self._condition.notify_all()

    def __enter__(self) -> FairLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


class InvocationExecutor:
    """Runs one pipeline at a time on the session's connection.

    Errors reported alongside at least one record are advisory: they are
    logged and forwarded to listeners, and the records are returned. Errors
    with no records raise :class:`RemoteExecutionFailed`.
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self._lock = FairLock()
        self._listeners: set[InvocationListener] = set()
        self._ids = itertools.count(1)

    @property
    def session(self) -> Session:
        return self._session

    def subscribe(self, listener: InvocationListener) -> Callable[[], None]:
        """Subscribe to invocation events; returns an unsubscribe handle."""

        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    def invoke(
        self,
        pipeline: Pipeline,
        extra_parameters: Mapping[str, object] | None = None,
        *,
        command_text: str | None = None,
    ) -> list[object]:
        """Run ``pipeline`` and return the raw remote records."""

        if not pipeline:
            raise RemoteExecutionFailed(("Provide a command to execute.",))
        extras = dict(extra_parameters or {})
        event = InvocationEvent(
            invocation_id=next(self._ids),
            command=command_text or render_pipeline(pipeline),
            status=InvocationStatus.RUNNING,
            started_at=datetime.now(tz=timezone.utc),
        )
        self._emit(event)
        started = time.perf_counter()
        try:
            with self._lock:
                records, warnings = self._run_locked(pipeline, extras)
        except Exception as exc:
            if not isinstance(exc, BridgeError):
                LOG.exception("Unexpected invocation failure", extra={"invocation": event.invocation_id})
            error = str(exc) or type(exc).__name__
            self._emit(event.finish(InvocationStatus.FAILED, _elapsed_ms(started), error=error))
            raise
        self._emit(event.finish(InvocationStatus.COMPLETED, _elapsed_ms(started), warnings=warnings))
        return records

    def _run_locked(
        self,
        pipeline: Pipeline,
        extras: Mapping[str, object],
    ) -> tuple[list[object], tuple[str, ...]]:
        connection = self._session.ensure_open()
        try:
            outcome = connection.run(pipeline, extras)
        except ConnectionFailed:
            LOG.exception("Remote invocation failed", extra={"command": pipeline[0].name})
            self._session.invalidate()
            raise
        records = list(outcome.records)
        if not outcome.errors:
            return records, ()
        if not records:
            LOG.error(
                "Remote invocation failed with no results",
                extra={"command": pipeline[0].name, "errors": outcome.errors},
            )
            raise RemoteExecutionFailed(outcome.errors)
        LOG.warning(
            "Ignoring non-terminating remote errors; results were returned",
            extra={"command": pipeline[0].name, "errors": outcome.errors},
        )
        return records, outcome.errors

    def _emit(self, event: InvocationEvent) -> None:
        for listener in tuple(self._listeners):
            try:
                listener(event)
            except Exception:  # pragma: no cover - listener errors are only logged
                LOG.exception("Invocation listener failed", extra={"invocation": event.invocation_id})


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


__all__ = ["FairLock", "InvocationExecutor"]
