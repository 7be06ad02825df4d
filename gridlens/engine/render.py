from __future__ import annotations

import unicodedata
from dataclasses import dataclass
from typing import AbstractSet, List, NamedTuple, Optional, Sequence, Tuple

from gridlens.models.table import INTEGER, NUMBER, Table, cell_text

SEPARATOR = " "


class Cursor(NamedTuple):
    row: int = 0
    col: int = 0


class Scroll(NamedTuple):
    top: int = 0
    left: int = 0


class Size(NamedTuple):
    width: int
    height: int


def char_width(ch: str) -> int:
    if unicodedata.combining(ch):
        return 0
    return 2 if unicodedata.east_asian_width(ch) in ("W", "F") else 1


def display_width(text: str) -> int:
    return sum(char_width(ch) for ch in text)


def single_line(text: str) -> str:
    return text.replace("\r\n", " ").replace("\n", " ").replace("\t", " ")


def truncate(text: str, width: int, ellipsis: str = "…") -> str:
    """Cut `text` to `width` display cells, marking the cut with `ellipsis`."""
    if width <= 0:
        return ""
    if display_width(text) <= width:
        return text
    ew = display_width(ellipsis)
    if width <= ew:
        return ellipsis[:width]
    out = []
    used = 0
    for ch in text:
        w = char_width(ch)
        if used + w > width - ew:
            break
        out.append(ch)
        used += w
    return "".join(out) + ellipsis


def pad(text: str, width: int, *, right: bool = False) -> str:
    gap = max(width - display_width(text), 0)
    return (" " * gap + text) if right else (text + " " * gap)


def column_widths(
    view: Table,
    *,
    sample_rows: int = 200,
    min_width: int = 3,
    max_width: int = 40,
) -> Tuple[int, ...]:
    """Width per column from the header and the first `sample_rows` cells."""
    n = min(view.num_rows, sample_rows)
    out = []
    for col in view.columns:
        w = display_width(single_line(col.name))
        for i in range(n):
            w = max(w, display_width(single_line(cell_text(col.values[i]))))
            if w >= max_width:
                break
        out.append(max(min_width, min(w, max_width)))
    return tuple(out)


@dataclass(frozen=True)
class FrameCell:
    text: str
    highlighted: bool = False
    selected: bool = False


@dataclass(frozen=True)
class Frame:
    """Everything needed to draw the grid; no terminal state involved."""

    header: Tuple[str, ...]
    column_indices: Tuple[int, ...]
    widths: Tuple[int, ...]
    offsets: Tuple[int, ...]
    row_indices: Tuple[int, ...]
    cells: Tuple[Tuple[FrameCell, ...], ...]
    cursor: Cursor
    scroll: Scroll
    row_count: int
    column_count: int

    def lines(self) -> List[str]:
        out = [SEPARATOR.join(self.header)]
        for row in self.cells:
            out.append(SEPARATOR.join(c.text for c in row))
        return out


def visible_row_count(height: int) -> int:
    """Data rows that fit below the header row."""
    return max(height - 1, 0)


def clamp_cursor(view: Table, cursor: Cursor) -> Cursor:
    row = min(max(cursor.row, 0), max(view.num_rows - 1, 0))
    col = min(max(cursor.col, 0), max(view.num_columns - 1, 0))
    return Cursor(row, col)


def scroll_rows_into_view(top: int, row: int, visible: int, row_count: int) -> int:
    if visible <= 0:
        return row
    if row < top:
        top = row
    elif row >= top + visible:
        top = row - visible + 1
    return min(max(top, 0), max(row_count - visible, 0))


def fitting_columns(widths: Sequence[int], left: int, width: int) -> List[int]:
    """Contiguous columns from `left` whose widths (plus separators) fit."""
    out: List[int] = []
    used = 0
    for i in range(left, len(widths)):
        need = widths[i] + (len(SEPARATOR) if out else 0)
        if out and used + need > width:
            break
        out.append(i)
        used += need
        if used >= width:
            break
    return out


def scroll_columns_into_view(left: int, col: int, widths: Sequence[int], width: int) -> int:
    if not widths:
        return 0
    left = min(max(left, 0), len(widths) - 1)
    if col < left:
        return col
    while col not in fitting_columns(widths, left, width):
        left += 1
    return left


def layout(
    view: Table,
    cursor: Cursor,
    scroll: Scroll,
    size: Size,
    *,
    widths: Optional[Sequence[int]] = None,
    highlights: AbstractSet[Tuple[int, int]] = frozenset(),
    min_width: int = 3,
    max_width: int = 40,
    sample_rows: int = 200,
    ellipsis: str = "…",
) -> Frame:
    """Compute the visible window of `view` for a grid of `size` cells.

    The returned scroll is adjusted so the cursor cell is visible.
    """
    if widths is None or len(widths) != view.num_columns:
        widths = column_widths(view, sample_rows=sample_rows, min_width=min_width, max_width=max_width)
    cursor = clamp_cursor(view, cursor)

    n_visible = visible_row_count(size.height)
    top = scroll_rows_into_view(scroll.top, cursor.row, n_visible, view.num_rows)
    left = scroll_columns_into_view(scroll.left, cursor.col, widths, size.width)

    cols = fitting_columns(widths, left, size.width) if view.num_columns else []
    shown = []
    offsets = []
    x = 0
    for i in cols:
        w = min(widths[i], max(size.width - x, 0))
        shown.append(w)
        offsets.append(x)
        x += w + len(SEPARATOR)

    rows = list(range(top, min(top + n_visible, view.num_rows)))

    header = tuple(pad(truncate(single_line(view.columns[i].name), w, ellipsis), w) for i, w in zip(cols, shown))
    body = []
    for r in rows:
        line = []
        for i, w in zip(cols, shown):
            col = view.columns[i]
            text = truncate(single_line(cell_text(col.values[r])), w, ellipsis)
            text = pad(text, w, right=col.type in (INTEGER, NUMBER))
            line.append(FrameCell(text, (r, i) in highlights, r == cursor.row and i == cursor.col))
        body.append(tuple(line))

    return Frame(
        header=header,
        column_indices=tuple(cols),
        widths=tuple(shown),
        offsets=tuple(offsets),
        row_indices=tuple(rows),
        cells=tuple(body),
        cursor=cursor,
        scroll=Scroll(top, left),
        row_count=view.num_rows,
        column_count=view.num_columns,
    )


# ---------- whole screen ----------

@dataclass(frozen=True)
class Screen:
    """Tab bar on the first line, the grid, and one bottom line."""

    size: Size
    tab_bar: str
    frame: Optional[Frame]
    bottom: str
    # column of the text cursor on the bottom line when a prompt is open
    prompt_cursor: Optional[int] = None

    def lines(self) -> List[str]:
        width = self.size.width
        out = [pad(truncate(self.tab_bar, width, ""), width)]
        grid = self.frame.lines() if self.frame is not None else []
        for i in range(max(self.size.height - 2, 0)):
            out.append(pad(grid[i] if i < len(grid) else "", width))
        if self.size.height >= 2:
            out.append(pad(truncate(self.bottom, width, ""), width))
        return out[: self.size.height]


def grid_size(size: Size) -> Size:
    return Size(size.width, max(size.height - 2, 0))


def tab_bar(names: Sequence[str], active: int, busy: Sequence[bool]) -> str:
    parts = []
    for i, name in enumerate(names):
        label = f"{i + 1}:{name}" + ("*" if busy[i] else "")
        parts.append(f"[{label}]" if i == active else f" {label} ")
    return "".join(parts)


def status_line(message: str, position: str, width: int) -> str:
    """`message` on the left and `position` flush right, message cut first."""
    room = width - display_width(position) - 1
    if room <= 0:
        return truncate(position, width)
    return pad(truncate(message, room), room) + " " + position
