from __future__ import annotations

from typing import Optional, Sequence, Tuple


class GridLensError(Exception):
    """An error intended for the status line.

    Raised for mistakes in commands, expressions, queries and file access.
    It carries a short error code and an optional hint to guide the user.
    """

    def __init__(self, code: str, message: str, *, hint: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.hint = hint
        # position of the pipeline step that raised, when known
        self.step_index: Optional[int] = None

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.hint:
            return base + f"\nHint: {self.hint}"
        return base

    def status_text(self) -> str:
        """Single-line rendering for the status bar."""
        if self.hint:
            return f"{self.message} ({self.hint.splitlines()[0]})"
        return self.message


class LoadError(GridLensError):
    """A data source could not be opened or parsed."""


class ParseError(GridLensError):
    """Malformed command, expression or pattern text."""


class QueryError(GridLensError):
    """A pipeline step could not be evaluated against its input."""


class ExportError(GridLensError):
    """A view could not be written to its destination."""


class UnknownCommandError(ParseError):
    def __init__(self, verb: str, suggestions: Sequence[str] = ()):
        self.verb = verb
        self.suggestions: Tuple[str, ...] = tuple(suggestions)
        if self.suggestions:
            hint = "Did you mean: " + ", ".join(self.suggestions) + "?"
        else:
            hint = "Type 'help' to list the available commands."
        super().__init__("E_UNKNOWN_COMMAND", f"Unknown command {verb!r}.", hint=hint)
