"""Facade used by domain features: command text in, flattened records out."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping

from .audit import InvocationListener, InvocationLog
from .compiler import compile_command
from .config import BridgeConfig
from .connections import DemoConnector, PypsrpConnector, RemoteConnector
from .errors import BridgeError
from .executor import InvocationExecutor
from .models import Credential, ManagementTarget
from .normalize import FlattenedRecord, normalize_records
from .session import Session

LOG = logging.getLogger(__name__)

CONNECTION_TEST_COMMAND = "Get-Mailbox -ResultSize 1"


@dataclass(frozen=True, slots=True)
class ConnectionReport:
    """Outcome of :meth:`RemoteBridge.test_connection`."""

    success: bool
    message: str
    record_count: int = 0


class RemoteBridge:
    """Compiles, runs and normalizes remote commands over the shared session."""

    def __init__(
        self,
        session: Session,
        *,
        executor: InvocationExecutor | None = None,
        audit_log: InvocationLog | None = None,
    ) -> None:
        self._session = session
        self._executor = executor or InvocationExecutor(session)
        self._audit_log = audit_log or InvocationLog()
        self._audit_unsubscribe = self._executor.subscribe(self._audit_log.record)

    @classmethod
    def from_config(cls, config: BridgeConfig, *, connector: RemoteConnector | None = None) -> RemoteBridge:
        """Build a bridge for the configured active target."""

        if connector is None:
            connector = DemoConnector() if config.demo_mode else PypsrpConnector()
        session = Session(
            connector,
            target=config.resolve_target(),
            open_timeout=config.open_timeout,
            operation_timeout=config.operation_timeout,
        )
        return cls(session)

    @property
    def session(self) -> Session:
        return self._session

    @property
    def audit_log(self) -> InvocationLog:
        return self._audit_log

    def set_credential(self, credential: Credential) -> None:
        self._session.set_credential(credential)

    def set_target(self, target: ManagementTarget) -> None:
        self._session.set_target(target)

    def subscribe(self, listener: InvocationListener) -> Callable[[], None]:
        """Register an audit hook receiving pre/post invocation events."""

        return self._executor.subscribe(listener)

    def run(
        self,
        command: str,
        extra_parameters: Mapping[str, object] | None = None,
    ) -> list[FlattenedRecord]:
        """Run ``command`` and return one flattened map per remote record.

        ``extra_parameters`` bind onto the first pipeline stage without
        passing through the compiler; use them for secrets and binary payloads.
        """

        pipeline = compile_command(command)
        records = self._executor.invoke(pipeline, extra_parameters, command_text=command)
        return normalize_records(records)

    async def arun(
        self,
        command: str,
        extra_parameters: Mapping[str, object] | None = None,
    ) -> list[FlattenedRecord]:
        """Async variant of :meth:`run`; the blocking call runs on a worker thread."""

        return await asyncio.to_thread(self.run, command, extra_parameters)

    def run_each(self, commands: Iterable[str]) -> list[FlattenedRecord]:
        """Run several commands in order, concatenating results.

        A failing command is logged and skipped so one unavailable cmdlet does
        not hide the results of the others.
        """

        results: list[FlattenedRecord] = []
        for command in commands:
            try:
                results.extend(self.run(command))
            except BridgeError as exc:
                LOG.warning("Skipping failed command", extra={"command": command, "error": str(exc)})
        return results

    def test_connection(self) -> ConnectionReport:
        """Probe the endpoint with a cheap read; never raises."""

        try:
            records = self.run(CONNECTION_TEST_COMMAND)
        except BridgeError as exc:
            LOG.error("Connection test failed", extra={"error": str(exc)})
            return ConnectionReport(success=False, message=f"Error: {exc}")
        return ConnectionReport(success=True, message="Remote session active", record_count=len(records))

    def close(self) -> None:
        """Close the session and detach the invocation log."""

        self._audit_unsubscribe()
        self._session.close()


__all__ = ["CONNECTION_TEST_COMMAND", "ConnectionReport", "RemoteBridge"]
