"""Literal value coercion for compiled command parameters."""

from __future__ import annotations

import re

CoercedValue = bool | int | str | tuple[str, ...] | None

_QUOTES = ("'", '"')
_INTEGER = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_BOOLEANS = {"$true": True, "$false": False}
_NULL = "$null"


def coerce(token: str) -> CoercedValue:
    """Convert a literal token into a typed parameter value.

    Never raises: anything that does not match a literal form is returned
    verbatim as a string. Variables such as ``$foo`` are not evaluated.
    """

    text = token.strip()
    lowered = text.lower()
    if lowered in _BOOLEANS:
        return _BOOLEANS[lowered]
    if lowered == _NULL:
        return None
    inner = _quoted_body(text)
    if inner is not None:
        return inner
    if len(_split_top_level(text)) > 1:
        return split_list(text)
    if _INTEGER.fullmatch(text):
        number = int(text)
        if _INT64_MIN <= number <= _INT64_MAX:
            return number
    return text


def split_list(text: str) -> tuple[str, ...]:
    """Split a comma list outside quotes, trimming and unquoting each element."""

    values = (unquote(part.strip()) for part in _split_top_level(text))
    return tuple(value for value in values if value)


def unquote(text: str) -> str:
    """Strip enclosing quotes from a fully quoted literal; other text is unchanged."""

    inner = _quoted_body(text)
    return text if inner is None else inner


def quote(value: object) -> str:
    """Render a caller value as a single-quoted literal safe for the compiler."""

    if value is None:
        return "''"
    return "'" + str(value).replace("'", "''") + "'"


def _quoted_body(text: str) -> str | None:
    if len(text) < 2 or text[0] not in _QUOTES:
        return None
    mark = text[0]
    chars: list[str] = []
    index = 1
    while index < len(text):
        char = text[index]
        if char == mark:
            # a doubled quote inside a literal is an escaped quote
            if index + 1 < len(text) and text[index + 1] == mark:
                chars.append(mark)
                index += 2
                continue
            return "".join(chars) if index == len(text) - 1 else None
        chars.append(char)
        index += 1
    return None


def _split_top_level(text: str, separator: str = ",") -> list[str]:
    parts: list[str] = []
    current: list[str] = []
    mark: str | None = None
    for char in text:
        if mark:
            current.append(char)
            if char == mark:
                mark = None
            continue
        if char in _QUOTES:
            mark = char
            current.append(char)
        elif char == separator:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return parts


__all__ = ["CoercedValue", "coerce", "quote", "split_list", "unquote"]
