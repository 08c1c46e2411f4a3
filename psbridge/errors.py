"""Error taxonomy surfaced by the remote bridge."""

from __future__ import annotations

from typing import Iterable


class BridgeError(RuntimeError):
    """Base class for every error raised by the bridge."""


class Unauthenticated(BridgeError):
    """Raised when an invocation is attempted before any credential was supplied."""

    def __init__(self, message: str = "No credential has been supplied; sign in before running commands.") -> None:
        super().__init__(message)


class ConnectionFailed(BridgeError):
    """Raised when the remote handshake or transport fails (retryable by callers)."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class RemoteExecutionFailed(BridgeError):
    """Raised when the endpoint reports errors and returns no records."""

    def __init__(self, messages: Iterable[str]) -> None:
        self.messages: tuple[str, ...] = tuple(str(message) for message in messages)
        super().__init__("; ".join(self.messages) or "Remote execution failed.")


__all__ = [
    "BridgeError",
    "ConnectionFailed",
    "RemoteExecutionFailed",
    "Unauthenticated",
]
