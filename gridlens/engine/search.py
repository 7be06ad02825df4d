from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from gridlens.errors import ParseError
from gridlens.models.table import Table, cell_text
from gridlens.util import similarity

LITERAL = "literal"
REGEX = "regex"
FUZZY = "fuzzy"
SEARCH_MODES = (LITERAL, REGEX, FUZZY)

Coord = Tuple[int, int]


def compile_pattern(query: str, case_sensitive: bool) -> "re.Pattern[str]":
    try:
        return re.compile(query, 0 if case_sensitive else re.IGNORECASE)
    except re.error as e:
        raise ParseError(
            "E_REGEX",
            f"Invalid regular expression: {e.msg}.",
            hint=f"At position {e.pos}: {query}" if e.pos is not None else query,
        ) from e


def search(
    view: Table,
    query: str,
    mode: str = LITERAL,
    case_sensitive: bool = False,
    *,
    threshold: float = 0.5,
) -> List[Coord]:
    """Coordinates (row, column) of cells matching `query`.

    Literal and regex results come in row-major order; fuzzy results are
    ordered by descending score, then row-major.
    """
    if mode not in SEARCH_MODES:
        raise ParseError(
            "E_COMMAND_ARGS",
            f"Unknown search mode {mode!r}.",
            hint="Modes: " + ", ".join(SEARCH_MODES),
        )
    if not query:
        return []

    if mode == REGEX:
        pattern = compile_pattern(query, case_sensitive)
        return [
            (r, c)
            for r in range(view.num_rows)
            for c, col in enumerate(view.columns)
            if pattern.search(cell_text(col.values[r]))
        ]

    if mode == LITERAL:
        needle = query if case_sensitive else query.lower()
        out: List[Coord] = []
        for r in range(view.num_rows):
            for c, col in enumerate(view.columns):
                text = cell_text(col.values[r])
                if not case_sensitive:
                    text = text.lower()
                if needle in text:
                    out.append((r, c))
        return out

    scored: List[Tuple[float, int, int]] = []
    for r in range(view.num_rows):
        for c, col in enumerate(view.columns):
            text = cell_text(col.values[r])
            if not text:
                continue
            score = similarity(query, text, case_sensitive=case_sensitive)
            if score >= threshold:
                scored.append((-score, r, c))
    scored.sort()
    return [(r, c) for _, r, c in scored]


@dataclass
class SearchState:
    """Global search: query, options and the matches in the active view."""

    query: str = ""
    mode: str = LITERAL
    case_sensitive: bool = False
    matches: List[Coord] = field(default_factory=list)
    index: Optional[int] = None
    threshold: float = 0.5

    def set_query(self, view: Table, query: str, mode: Optional[str] = None,
                  case_sensitive: Optional[bool] = None) -> None:
        """Change the query (and options) and recompute against `view`.

        The previous state is kept if the new pattern does not compile.
        """
        new_mode = self.mode if mode is None else mode
        new_case = self.case_sensitive if case_sensitive is None else case_sensitive
        matches = search(view, query, new_mode, new_case, threshold=self.threshold)
        self.query = query
        self.mode = new_mode
        self.case_sensitive = new_case
        self.matches = matches
        self.index = None

    def recompute(self, view: Table) -> None:
        """Refresh matches after the view changed."""
        if not self.query:
            self.matches = []
            self.index = None
            return
        self.matches = search(view, self.query, self.mode, self.case_sensitive, threshold=self.threshold)
        if self.index is not None and self.index >= len(self.matches):
            self.index = None

    def clear(self) -> None:
        self.query = ""
        self.matches = []
        self.index = None

    @property
    def highlights(self) -> frozenset:
        return frozenset(self.matches)

    def current(self) -> Optional[Coord]:
        if self.index is None or not self.matches:
            return None
        return self.matches[self.index]

    def first_from(self, cursor: Coord) -> Optional[Coord]:
        """Match at or after `cursor`; fuzzy searches start at the best match."""
        if not self.matches:
            return None
        if self.mode == FUZZY:
            self.index = 0
        else:
            self.index = next((i for i, m in enumerate(self.matches) if m >= cursor), 0)
        return self.matches[self.index]

    def next_from(self, cursor: Coord) -> Optional[Coord]:
        """Next match, wrapping from the last to the first."""
        if not self.matches:
            return None
        if self.index is not None:
            self.index = (self.index + 1) % len(self.matches)
        elif self.mode == FUZZY:
            self.index = 0
        else:
            self.index = next((i for i, m in enumerate(self.matches) if m > cursor), 0)
        return self.matches[self.index]

    def prev_from(self, cursor: Coord) -> Optional[Coord]:
        """Previous match, wrapping from the first to the last."""
        if not self.matches:
            return None
        if self.index is not None:
            self.index = (self.index - 1) % len(self.matches)
        elif self.mode == FUZZY:
            self.index = len(self.matches) - 1
        else:
            before = [i for i, m in enumerate(self.matches) if m < cursor]
            self.index = before[-1] if before else len(self.matches) - 1
        return self.matches[self.index]

    def summary(self) -> str:
        if not self.query:
            return ""
        if not self.matches:
            return f"/{self.query}: no matches"
        pos = "-" if self.index is None else str(self.index + 1)
        return f"/{self.query}: {pos}/{len(self.matches)}"
