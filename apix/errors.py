"""apix errors - failure taxonomy shared by the engine and the CLI.

Every error carries the process exit code the CLI uses when it surfaces it.
"""

from __future__ import annotations

from typing import Any

EXIT_GENERIC = 1
EXIT_VALIDATION = 3
EXIT_CONTEXT = 4
EXIT_TRANSPORT = 5
EXIT_CANCELLED = 130


class ApixError(Exception):
    """Base class for every failure the engine reports."""

    exit_code = EXIT_GENERIC


class DefinitionError(ApixError):
    """A request or story file is missing or malformed."""


class ConfigError(ApixError):
    """A config key is missing or the config file cannot be changed."""


class HistoryNotFound(ApixError):
    def __init__(self, request_name: str):
        super().__init__(f"No history for '{request_name}'.")
        self.request_name = request_name


# ── Resolution / rendering / validation ─────────────────────────────────


class Invalid:
    """One declared value that failed its constraint."""

    def __init__(self, parameter, value: Any, reason: str, source: str):
        self.parameter = parameter
        self.value = value
        self.reason = reason
        self.source = source

    def __repr__(self) -> str:
        return f"Invalid({self.parameter.name!r}, source={self.source!r}, reason={self.reason!r})"


class ResolutionError(ApixError):
    """Variables are missing or invalid; recoverable by prompting."""

    exit_code = EXIT_VALIDATION

    def __init__(self, missing=(), invalid=()):
        self.missing = list(missing)
        self.invalid = list(invalid)
        parts = []
        if self.missing:
            parts.append("missing " + ", ".join(p.name for p in self.missing))
        for inv in self.invalid:
            parts.append(f"invalid {inv.parameter.name} ({inv.reason})")
        super().__init__("Unresolved variables: " + "; ".join(parts))

    def needs_input(self) -> list:
        """Parameters to ask for, in declaration order, each paired with a reason."""
        pending = [(p, None) for p in self.missing]
        pending.extend((inv.parameter, inv.reason) for inv in self.invalid)
        return pending


class ValidationError(ApixError):
    exit_code = EXIT_VALIDATION

    def __init__(self, name: str, reason: str):
        super().__init__(f"Invalid value for '{name}': {reason}")
        self.name = name
        self.reason = reason


class RenderError(ApixError):
    """Template could not be rendered. kind is one of
    UndefinedVariable, SyntaxError, TypeMismatch."""

    exit_code = EXIT_VALIDATION

    UNDEFINED = "UndefinedVariable"
    SYNTAX = "SyntaxError"
    TYPE = "TypeMismatch"

    def __init__(
        self,
        kind: str,
        location: str,
        detail: str,
        name: str | None = None,
        position: int | None = None,
    ):
        where = location if position is None else f"{location} at {position}"
        super().__init__(f"{kind} in {where}: {detail}")
        self.kind = kind
        self.location = location
        self.detail = detail
        self.name = name
        self.position = position


# ── Context ─────────────────────────────────────────────────────────────


class ContextError(ApixError):
    exit_code = EXIT_CONTEXT
    kind = "ContextError"


class AlreadyExists(ContextError):
    kind = "AlreadyExists"

    def __init__(self, name: str):
        super().__init__(f"Context '{name}' already exists.")
        self.name = name


class NotFound(ContextError):
    kind = "NotFound"

    def __init__(self, name: str):
        super().__init__(f"Context '{name}' not found.")
        self.name = name


class ActiveContextInUse(ContextError):
    kind = "ActiveContextInUse"

    def __init__(self, name: str):
        super().__init__(
            f"Context '{name}' is active. Switch to another context before deleting it.",
        )
        self.name = name


class InvalidContextName(ContextError):
    kind = "InvalidContextName"

    def __init__(self, name: str):
        super().__init__(
            f"Invalid context name '{name}': use letters, digits, '.', '_' or '-'.",
        )
        self.name = name


class ContextUnavailable(ContextError):
    """State file vanished or is unreadable (e.g. replaced concurrently)."""

    kind = "ContextUnavailable"

    def __init__(self, path, cause: str):
        super().__init__(f"State file {path} unavailable: {cause}")
        self.path = path


# ── Execution ───────────────────────────────────────────────────────────


class TransportError(ApixError):
    exit_code = EXIT_TRANSPORT

    def __init__(self, kind: str, message: str):
        super().__init__(f"{kind}: {message}")
        self.kind = kind
        self.message = message


class UserCancelled(ApixError):
    exit_code = EXIT_CANCELLED

    def __init__(self, message: str = "Cancelled by user."):
        super().__init__(message)
