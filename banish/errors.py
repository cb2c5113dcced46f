"""
Diagnostics for banish machine definitions

Every failure detected while compiling a machine is raised as a
BanishError subclass carrying a message and, where known, the source
location of the offending token. When the failing source text is
registered through source_context(), the offending line is attached to
the rendered message.
"""

import contextvars
from contextlib import contextmanager
from typing import Iterator, Optional


_CURRENT_SOURCE: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "banish_current_source", default=None
)


def _line_from_source(source: str, line_no: int) -> Optional[str]:
    if line_no <= 0:
        return None
    lines = source.splitlines()
    if line_no > len(lines):
        return None
    return lines[line_no - 1].strip()


def format_diagnostic(message: str, location=None, source: Optional[str] = None) -> str:
    """Render a message with 'Location:' and 'Code:' detail lines."""
    if location is None:
        return message

    source = source if source is not None else _CURRENT_SOURCE.get()
    details = [f"Location: line {location.line}, column {location.column}"]
    if source is not None:
        code = _line_from_source(source, location.line)
        if code:
            details.append(f"Code: {code}")
    return f"{message}\n" + "\n".join(details)


@contextmanager
def source_context(source: str) -> Iterator[None]:
    token = _CURRENT_SOURCE.set(source)
    try:
        yield
    finally:
        _CURRENT_SOURCE.reset(token)


class BanishError(Exception):
    """Base error for every banish diagnostic."""

    def __init__(self, message: str, location=None):
        self.message = message
        self.location = location
        super().__init__(format_diagnostic(message, location))


class BanishSyntaxError(BanishError):
    """Raised when machine source does not follow the grammar."""


class BanishValidationError(BanishError):
    """Raised when a parsed machine violates a structural rule."""


class BanishCompileError(BanishError):
    """Raised when Python rejects the generated machine module."""


class StateOverrunError(BanishError):
    """Raised at run time when execution falls past the last declared state."""
