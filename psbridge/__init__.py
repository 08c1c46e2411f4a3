"""Remote command execution bridge for mail-server administration."""

from __future__ import annotations

from .bridge import ConnectionReport, RemoteBridge
from .coercion import coerce, quote
from .compiler import compile_command
from .errors import BridgeError, ConnectionFailed, RemoteExecutionFailed, Unauthenticated
from .models import (
    AuthMechanism,
    CommandDescriptor,
    Credential,
    ManagementTarget,
    NamedParameter,
    PositionalList,
    Secret,
)
from .normalize import flatten, flatten_record
from .session import Session

__version__ = "0.1.0"

__all__ = [
    "AuthMechanism",
    "BridgeError",
    "CommandDescriptor",
    "ConnectionFailed",
    "ConnectionReport",
    "Credential",
    "ManagementTarget",
    "NamedParameter",
    "PositionalList",
    "RemoteBridge",
    "RemoteExecutionFailed",
    "Secret",
    "Session",
    "Unauthenticated",
    "__version__",
    "coerce",
    "compile_command",
    "flatten",
    "flatten_record",
    "quote",
]
