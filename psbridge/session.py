"""Lifetime of the single authenticated remote session."""

from __future__ import annotations

import logging
import threading

from .connections import RemoteConnection, RemoteConnector
from .errors import BridgeError, ConnectionFailed, Unauthenticated
from .models import Credential, ManagementTarget

LOG = logging.getLogger(__name__)


class Session:
    """Owns one remote connection, opened lazily and reset on credential/target change.

    The object is mutated in place so every holder of a reference observes
    reconnection. ``connection`` is either fully open or ``None``; it is only
    mutated under the re-initialization lock.
    """

    def __init__(
        self,
        connector: RemoteConnector,
        *,
        target: ManagementTarget | None = None,
        open_timeout: float = 30.0,
        operation_timeout: float = 60.0,
    ) -> None:
        self._connector = connector
        self._target = target or ManagementTarget()
        self._open_timeout = open_timeout
        self._operation_timeout = operation_timeout
        self._credential: Credential | None = None
        self._connection: RemoteConnection | None = None
        self._init_lock = threading.Lock()

    @property
    def target(self) -> ManagementTarget:
        """Management target the session connects to."""

        return self._target

    @property
    def has_credential(self) -> bool:
        return self._credential is not None

    @property
    def is_open(self) -> bool:
        return self._connection is not None

    def set_credential(self, credential: Credential) -> None:
        """Replace the credential; the next invocation reconnects."""

        with self._init_lock:
            self._credential = credential
            self._dispose()

    def set_target(self, target: ManagementTarget) -> None:
        """Switch management target; the next invocation reconnects."""

        with self._init_lock:
            self._dispose()
            self._target = target

    def ensure_open(self) -> RemoteConnection:
        """Return the open connection, performing the handshake if needed."""

        connection = self._connection
        if connection is not None:
            return connection
        with self._init_lock:
            if self._connection is not None:
                return self._connection
            if self._credential is None:
                raise Unauthenticated()
            target = self._target
            LOG.info(
                "Opening remote session",
                extra={"endpoint": target.endpoint, "auth": target.authentication.value},
            )
            try:
                connection = self._connector.open(
                    target,
                    self._credential,
                    open_timeout=self._open_timeout,
                    operation_timeout=self._operation_timeout,
                )
            except BridgeError:
                LOG.exception("Remote session handshake failed", extra={"endpoint": target.endpoint})
                raise
            except Exception as exc:
                LOG.exception("Remote session handshake failed", extra={"endpoint": target.endpoint})
                raise ConnectionFailed(
                    f"Failed to open a session to '{target.endpoint}': {exc}",
                    cause=exc,
                ) from exc
            self._connection = connection
            LOG.info("Remote session open", extra={"endpoint": target.endpoint})
            return connection

    def invalidate(self) -> None:
        """Drop the current connection (e.g. after a transport failure)."""

        with self._init_lock:
            self._dispose()

    def close(self) -> None:
        """Close the session on shutdown; the credential is forgotten."""

        with self._init_lock:
            self._dispose()
            self._credential = None

    def __enter__(self) -> Session:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _dispose(self) -> None:
        connection, self._connection = self._connection, None
        if connection is None:
            return
        try:
            connection.close()
        except Exception:  # pragma: no cover - best effort cleanup
            LOG.warning("Failed to close remote session", exc_info=True)
        else:
            LOG.info("Remote session closed", extra={"endpoint": self._target.endpoint})


__all__ = ["Session"]
