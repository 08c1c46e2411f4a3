"""Tests for serialized pipeline execution."""

from __future__ import annotations

import threading
import time

import pytest

from psbridge.audit import InvocationLog, InvocationStatus
from psbridge.compiler import compile_command
from psbridge.connections import RunOutcome
from psbridge.errors import ConnectionFailed, RemoteExecutionFailed, Unauthenticated
from psbridge.executor import FairLock, InvocationExecutor
from psbridge.models import Credential, Secret
from psbridge.session import Session


class _Connection:
    def __init__(self, outcomes=None, *, delay: float = 0.0) -> None:  # type: ignore[no-untyped-def]
        self.outcomes = list(outcomes or [])
        self.delay = delay
        self.calls: list[tuple[str, dict[str, object]]] = []
        self.active = 0
        self.max_active = 0
        self.closed = False
        self._guard = threading.Lock()

    def run(self, pipeline, extra_parameters):  # type: ignore[no-untyped-def]
        with self._guard:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(self.delay)
            self.calls.append((pipeline[0].name, dict(extra_parameters)))
            if self.outcomes:
                outcome = self.outcomes.pop(0)
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
            return RunOutcome(({"Name": pipeline[0].name},))
        finally:
            with self._guard:
                self.active -= 1

    def close(self) -> None:
        self.closed = True


class _Connector:
    def __init__(self, connection: _Connection) -> None:
        self.connection = connection
        self.opens = 0

    def open(self, target, credential, *, open_timeout, operation_timeout):  # type: ignore[no-untyped-def]
        self.opens += 1
        return self.connection


def _executor(connection: _Connection, *, authenticated: bool = True) -> tuple[InvocationExecutor, _Connector]:
    connector = _Connector(connection)
    session = Session(connector)
    if authenticated:
        session.set_credential(Credential(username="admin", password="pw"))
    return InvocationExecutor(session), connector


def test_invoke_returns_raw_records() -> None:
    executor, connector = _executor(_Connection())

    records = executor.invoke(compile_command("Get-Mailbox -ResultSize 1"))

    assert records == [{"Name": "Get-Mailbox"}]
    assert connector.opens == 1


def test_invoke_without_credential_raises_unauthenticated() -> None:
    executor, connector = _executor(_Connection(), authenticated=False)

    with pytest.raises(Unauthenticated):
        executor.invoke(compile_command("Get-Mailbox"))
    assert connector.opens == 0


def test_errors_with_records_are_advisory() -> None:
    outcome = RunOutcome(({"Name": "A"},), ("Mailbox B was skipped.",))
    executor, _ = _executor(_Connection([outcome]))
    events = []
    executor.subscribe(events.append)

    records = executor.invoke(compile_command("Get-Mailbox"))

    assert records == [{"Name": "A"}]
    assert events[-1].status is InvocationStatus.COMPLETED
    assert events[-1].warnings == ("Mailbox B was skipped.",)


def test_errors_without_records_are_fatal() -> None:
    outcome = RunOutcome((), ("Object 'x' couldn't be found.", "Second error"))
    executor, _ = _executor(_Connection([outcome]))

    with pytest.raises(RemoteExecutionFailed) as excinfo:
        executor.invoke(compile_command("Get-Mailbox -Identity x"))

    assert excinfo.value.messages == ("Object 'x' couldn't be found.", "Second error")
    assert "couldn't be found" in str(excinfo.value)


def test_empty_pipeline_is_rejected() -> None:
    executor, connector = _executor(_Connection())

    with pytest.raises(RemoteExecutionFailed):
        executor.invoke(())
    assert connector.opens == 0


def test_transport_failure_invalidates_session() -> None:
    failure = ConnectionFailed("read timed out", cause=TimeoutError())
    connection = _Connection([failure])
    executor, connector = _executor(connection)

    with pytest.raises(ConnectionFailed):
        executor.invoke(compile_command("Get-Mailbox"))

    assert connection.closed is True
    assert executor.session.is_open is False
    executor.invoke(compile_command("Get-Mailbox"))
    assert connector.opens == 2


def test_extra_parameters_bypass_compiler_and_audit_text() -> None:
    connection = _Connection()
    executor, _ = _executor(connection)
    events = []
    executor.subscribe(events.append)
    secret = Secret("P@ssw0rd")

    executor.invoke(
        compile_command("Import-ExchangeCertificate -Server EX01"),
        {"FileData": b"\x30\x82", "Password": secret},
    )

    assert connection.calls == [("Import-ExchangeCertificate", {"FileData": b"\x30\x82", "Password": secret})]
    assert [event.status for event in events] == [InvocationStatus.RUNNING, InvocationStatus.COMPLETED]
    assert all("P@ssw0rd" not in event.command for event in events)
    assert events[0].command == "Import-ExchangeCertificate -Server 'EX01'"
    assert str(secret) == "***"
    assert "P@ssw0rd" not in repr(secret)


def test_failed_invocation_emits_failed_event() -> None:
    executor, _ = _executor(_Connection([RunOutcome((), ("boom",))]))
    events = []
    unsubscribe = executor.subscribe(events.append)

    with pytest.raises(RemoteExecutionFailed):
        executor.invoke(compile_command("Get-Mailbox"), command_text="Get-Mailbox")

    assert events[-1].status is InvocationStatus.FAILED
    assert events[-1].error == "boom"
    assert events[-1].duration_ms is not None
    unsubscribe()
    executor.invoke(compile_command("Get-Mailbox"))
    assert len(events) == 2


def test_unexpected_exception_still_completes_audit_entry() -> None:
    executor, _ = _executor(_Connection([KeyError("Identity")]))
    log = InvocationLog()
    executor.subscribe(log.record)

    with pytest.raises(KeyError):
        executor.invoke(compile_command("Get-Mailbox"))

    (entry,) = log.entries()
    assert entry.status is InvocationStatus.FAILED
    assert entry.error == "'Identity'"
    assert entry.ended_at is not None
    assert log._pending == {}
    assert executor.invoke(compile_command("Get-Mailbox")) == [{"Name": "Get-Mailbox"}]


def test_concurrent_invocations_never_overlap() -> None:
    connection = _Connection(delay=0.02)
    executor, _ = _executor(connection)

    threads = [
        threading.Thread(target=executor.invoke, args=(compile_command(f"Get-Item{index}"),))
        for index in range(6)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(connection.calls) == 6
    assert connection.max_active == 1


def test_fair_lock_serves_waiters_in_acquisition_order() -> None:
    lock = FairLock()
    order: list[int] = []
    lock.acquire()
    threads = []
    for index in range(5):
        thread = threading.Thread(target=_take, args=(lock, order, index))
        thread.start()
        threads.append(thread)
        # each waiter takes its ticket before the next one starts
        while lock._next_ticket != index + 2:
            time.sleep(0.001)
    lock.release()
    for thread in threads:
        thread.join()

    assert order == [0, 1, 2, 3, 4]


def _take(lock: FairLock, order: list[int], index: int) -> None:
    with lock:
        order.append(index)
