"""Shared dataclasses used across the session, compiler and executor modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .coercion import CoercedValue, quote


class AuthMechanism(str, Enum):
    """Authentication mechanisms accepted by the management endpoint."""

    BASIC = "basic"
    KERBEROS = "kerberos"
    NEGOTIATE = "negotiate"
    CREDSSP = "credssp"

    @classmethod
    def parse(cls, value: str | None) -> AuthMechanism:
        """Map a configured name onto a mechanism; unknown names fall back to Basic."""

        lookup = {member.value: member for member in cls}
        return lookup.get((value or "").strip().lower(), cls.BASIC)


@dataclass(frozen=True, slots=True)
class Credential:
    """Credential handed to the session after an out-of-band sign in."""

    username: str
    password: str = field(repr=False)
    domain: str = ""

    @property
    def principal(self) -> str:
        if self.domain:
            return f"{self.domain}\\{self.username}"
        return self.username


@dataclass(frozen=True, slots=True)
class ManagementTarget:
    """Runtime representation of a management endpoint."""

    id: str = "default"
    label: str = ""
    version: str = ""
    server_fqdn: str = "localhost"
    connection_uri: str = ""
    configuration_name: str = "Microsoft.Exchange"
    authentication: AuthMechanism = AuthMechanism.KERBEROS
    use_ssl: bool = False
    cert_validation: bool = False

    @property
    def endpoint(self) -> str:
        """Connection URI, derived from the server FQDN when not configured."""

        if self.connection_uri.strip():
            return self.connection_uri.strip()
        scheme = "https" if self.use_ssl else "http"
        return f"{scheme}://{self.server_fqdn}/PowerShell"


@dataclass(frozen=True, slots=True)
class Secret:
    """Out-of-band parameter value that must never be rendered as text."""

    value: str | bytes = field(repr=False)

    def reveal(self) -> str | bytes:
        return self.value

    def __str__(self) -> str:
        return "***"


@dataclass(frozen=True, slots=True)
class NamedParameter:
    """``-Key value`` binding."""

    key: str
    value: CoercedValue


@dataclass(frozen=True, slots=True)
class PositionalList:
    """Unlabeled value list, e.g. the column list of ``Select-Object``."""

    values: tuple[str, ...]


ParameterBinding = NamedParameter | PositionalList


@dataclass(frozen=True, slots=True)
class CommandDescriptor:
    """One pipeline stage: a command name plus its ordered parameter bindings."""

    name: str
    parameters: tuple[ParameterBinding, ...] = ()

    def render(self) -> str:
        """Render the stage back to display text (audit logs, diagnostics)."""

        parts = [self.name]
        for binding in self.parameters:
            if isinstance(binding, PositionalList):
                parts.append(", ".join(_render_word(value) for value in binding.values))
            elif binding.value is True:
                parts.append(f"-{binding.key}")
            else:
                parts.append(f"-{binding.key} {_render_value(binding.value)}")
        return " ".join(parts)


Pipeline = tuple[CommandDescriptor, ...]


def render_pipeline(pipeline: Pipeline) -> str:
    return " | ".join(stage.render() for stage in pipeline)


def _render_value(value: CoercedValue) -> str:
    if value is None:
        return "$null"
    if isinstance(value, bool):
        return "$true" if value else "$false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, tuple):
        return ", ".join(quote(item) for item in value)
    return quote(value)


def _render_word(value: str) -> str:
    if value and all(char.isalnum() or char in "-_." for char in value):
        return value
    return quote(value)


__all__ = [
    "AuthMechanism",
    "CommandDescriptor",
    "Credential",
    "ManagementTarget",
    "NamedParameter",
    "ParameterBinding",
    "Pipeline",
    "PositionalList",
    "Secret",
    "render_pipeline",
]
