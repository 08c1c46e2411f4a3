"""Compile pipeline command strings into structured remote invocations.

The compiler is the single place where command text is interpreted. It never
evaluates anything: each stage becomes a command name plus ordered parameter
bindings, and every literal goes through :func:`psbridge.coercion.coerce`.

Grammar (one logical line, whitespace includes newlines)::

    pipeline   := stage ("|" stage)*
    stage      := name positional* parameter*
    parameter  := "-" Name [":" value] value*

Single and double quotes suspend whitespace/pipe splitting until the matching
close quote. A backtick outside quotes escapes the next character. Malformed
input degrades to literal strings instead of raising; the remote endpoint
rejects genuinely invalid commands at execution time.
"""

from __future__ import annotations

from typing import Iterator

from .coercion import coerce, split_list
from .models import CommandDescriptor, NamedParameter, ParameterBinding, Pipeline, PositionalList

_QUOTES = ("'", '"')
_ESCAPE = "`"
_PIPE = "|"


def compile_command(command: str) -> Pipeline:
    """Compile ``command`` into an ordered pipeline of command descriptors."""

    return tuple(_bind(tokens) for tokens in _scan(command))


def _scan(command: str) -> list[list[str]]:
    stages: list[list[str]] = [[]]
    token: list[str] = []
    mark: str | None = None
    chars: Iterator[str] = iter(command)
    for char in chars:
        if mark:
            token.append(char)
            if char == mark:
                mark = None
            continue
        if char == _ESCAPE:
            token.append(next(chars, ""))
        elif char in _QUOTES:
            mark = char
            token.append(char)
        elif char.isspace() or char == _PIPE:
            if token:
                stages[-1].append("".join(token))
                token = []
            if char == _PIPE:
                stages.append([])
        else:
            token.append(char)
    # an unmatched quote simply runs to the end of the input
    if token:
        stages[-1].append("".join(token))
    return [stage for stage in stages if stage]


def _bind(tokens: list[str]) -> CommandDescriptor:
    name, rest = tokens[0], tokens[1:]
    parameters: list[ParameterBinding] = []
    index = 0
    while index < len(rest) and not _is_parameter(rest[index]):
        index += 1
    if index:
        values = split_list(" ".join(rest[:index]))
        if values:
            parameters.append(PositionalList(values))

    key: str | None = None
    value_tokens: list[str] = []
    for token in rest[index:]:
        if _is_parameter(token):
            if key is not None:
                parameters.append(_named(key, value_tokens))
            key, _, inline = token[1:].partition(":")
            value_tokens = [inline] if inline else []
        else:
            value_tokens.append(token)
    if key is not None:
        parameters.append(_named(key, value_tokens))
    return CommandDescriptor(name=name, parameters=tuple(parameters))


def _named(key: str, value_tokens: list[str]) -> NamedParameter:
    if not value_tokens:
        return NamedParameter(key, True)
    text = " ".join(value_tokens).rstrip(", ").strip()
    return NamedParameter(key, coerce(text))


def _is_parameter(token: str) -> bool:
    return len(token) > 1 and token[0] == "-" and (token[1].isalpha() or token[1] == "_")


__all__ = ["compile_command"]
