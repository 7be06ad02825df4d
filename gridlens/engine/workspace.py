from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, List, Optional, Sequence, Tuple

from gridlens.config import ViewerConfig
from gridlens.engine.render import (
    Cursor,
    Scroll,
    Size,
    clamp_cursor,
    column_widths,
    scroll_columns_into_view,
    scroll_rows_into_view,
    visible_row_count,
)
from gridlens.engine.scheduler import EvaluationResult, ExecutionScheduler, LoadResult, Message
from gridlens.engine.search import SearchState
from gridlens.errors import GridLensError, QueryError
from gridlens.models.pipeline import EvaluationRequest, QueryPipeline
from gridlens.models.sources import Source
from gridlens.models.table import STRING, Table, cell_text
from gridlens.models.transforms import Transform

logger = logging.getLogger(__name__)


class InputMode(Enum):
    NAVIGATION = "navigation"
    COMMAND_LINE = "command"
    SEARCH_LINE = "search"


@dataclass
class Tab:
    id: int
    name: str
    pipeline: QueryPipeline
    source: Optional[Source] = None
    cursor: Cursor = Cursor()
    scroll: Scroll = Scroll()
    widths: Tuple[int, ...] = ()
    loading: bool = False
    # steps to apply once a loading source arrives
    queued_steps: Tuple[Transform, ...] = field(default_factory=tuple)

    @property
    def view(self) -> Table:
        return self.pipeline.view

    @property
    def busy(self) -> bool:
        return self.loading or self.pipeline.busy


class Workspace:
    """Tabs, the active-tab pointer, command history and the global search.

    All methods run on the main loop. Work that touches data is handed to the
    scheduler; its results come back through `handle_result`.
    """

    def __init__(self, scheduler: ExecutionScheduler, config: Optional[ViewerConfig] = None):
        self.config = config or ViewerConfig()
        self.scheduler = scheduler
        self.tabs: List[Tab] = []
        self.active = 0
        self.history: Deque[str] = deque(maxlen=self.config.history_size)
        self.search = SearchState(threshold=self.config.fuzzy_threshold)
        self.mode = InputMode.NAVIGATION
        self.status = ""
        self.quit_requested = False
        self.grid_size = Size(80, 22)
        self._next_id = 1

    # ---------- tabs ----------
    @property
    def tab(self) -> Optional[Tab]:
        if not self.tabs:
            return None
        return self.tabs[self.active]

    def require_tab(self) -> Tab:
        tab = self.tab
        if tab is None:
            raise QueryError("E_NO_TAB", "No tab is open.", hint="Open a file with: tabnew <path>")
        return tab

    def tab_by_id(self, tab_id: int) -> Optional[Tab]:
        return next((t for t in self.tabs if t.id == tab_id), None)

    def _new_tab(self, name: str, pipeline: QueryPipeline, source: Optional[Source] = None) -> Tab:
        tab = Tab(self._next_id, name, pipeline, source=source)
        self._next_id += 1
        self.tabs.append(tab)
        self.active = len(self.tabs) - 1
        return tab

    def _new_pipeline(self, base: Table, steps: Sequence[Transform] = ()) -> QueryPipeline:
        return QueryPipeline(
            base,
            steps,
            table_name=self.config.sql_table_name,
            cache_size=self.config.cache_size,
        )

    def open_source(self, source: Source, steps: Sequence[Transform] = ()) -> Tab:
        """Open a tab that shows a placeholder until the source has loaded."""
        tab = self._new_tab(source.name, self._new_pipeline(Table.empty()), source)
        tab.loading = True
        tab.queued_steps = tuple(steps)
        self.scheduler.submit_load(tab.id, source)
        self._view_changed(tab)
        return tab

    def open_table(self, table: Table, name: str = "table", steps: Sequence[Transform] = ()) -> Tab:
        tab = self._new_tab(name, self._new_pipeline(table, steps))
        if steps:
            self._schedule(tab, tab.pipeline.request())
        self._view_changed(tab)
        return tab

    def duplicate_tab(self) -> Tab:
        tab = self.require_tab()
        if tab.loading:
            raise QueryError("E_TAB_LOADING", f"Tab '{tab.name}' is still loading.")
        copy = self._new_tab(tab.name, self._new_pipeline(tab.pipeline.base, tab.pipeline.steps), tab.source)
        copy.cursor = tab.cursor
        copy.scroll = tab.scroll
        self._schedule(copy, copy.pipeline.request())
        self._view_changed(copy)
        return copy

    def open_record(self) -> Tab:
        """Open the row under the cursor as its own tab, one field per line."""
        tab = self.require_tab()
        view = tab.view
        if view.num_rows == 0:
            raise QueryError("E_EMPTY_VIEW", "The view has no rows to show.")
        row = tab.cursor.row
        fields = [(c.name, c.type, cell_text(c.values[row])) for c in view.columns]
        record = Table.from_rows(["field", "type", "value"], fields, types=[STRING] * 3)
        return self.open_table(record, f"{tab.name}[{row + 1}]")

    def close_tab(self) -> None:
        """Close the active tab; closing the last one ends the session."""
        tab = self.require_tab()
        self.tabs.pop(self.active)
        logger.debug("closed tab %s (%s)", tab.id, tab.name)
        if not self.tabs:
            self.quit_requested = True
            self.active = 0
            return
        self.active = min(self.active, len(self.tabs) - 1)
        self._activated()

    def switch_tab(self, delta: int) -> None:
        if not self.tabs:
            return
        self.active = (self.active + delta) % len(self.tabs)
        self._activated()

    def _activated(self) -> None:
        tab = self.tab
        if tab is not None:
            self.search.recompute(tab.view)

    # ---------- pipeline edits ----------
    def _schedule(self, tab: Tab, request: Optional[EvaluationRequest]) -> None:
        if request is None:
            # served from the cache
            self._view_changed(tab)
            return
        self.scheduler.submit_evaluation(tab.id, request)

    def _editable(self) -> Tab:
        tab = self.require_tab()
        if tab.loading:
            raise QueryError(
                "E_TAB_LOADING",
                f"Tab '{tab.name}' is still loading.",
                hint="Wait for the data to appear, then repeat the command.",
            )
        return tab

    def push_step(self, step: Transform) -> None:
        tab = self._editable()
        self._schedule(tab, tab.pipeline.push(step))

    def undo(self) -> None:
        tab = self._editable()
        self._schedule(tab, tab.pipeline.undo())

    def reset(self) -> None:
        tab = self._editable()
        self._schedule(tab, tab.pipeline.reset())

    def replace_steps(self, steps: Sequence[Transform]) -> None:
        tab = self._editable()
        self._schedule(tab, tab.pipeline.replace(steps))

    # ---------- results ----------
    def handle_result(self, msg: Message) -> bool:
        """Apply one scheduler message. Returns True if anything visible changed."""
        tab = self.tab_by_id(msg.tab_id)
        if tab is None:
            logger.debug("dropping result for closed tab %s", msg.tab_id)
            return False
        if isinstance(msg, LoadResult):
            return self._handle_load(tab, msg)
        return self._handle_evaluation(tab, msg)

    def _handle_load(self, tab: Tab, msg: LoadResult) -> bool:
        tab.loading = False
        if msg.error is not None or msg.table is None:
            error = msg.error or QueryError("E_INTERNAL", "Loading produced no table.")
            self.status = error.status_text()
            idx = self.tabs.index(tab)
            self.tabs.pop(idx)
            if not self.tabs:
                self.quit_requested = True
                self.active = 0
            else:
                if idx < self.active:
                    self.active -= 1
                self.active = min(self.active, len(self.tabs) - 1)
                self._activated()
            return True
        logger.info("loaded %s: %d rows, %d columns", msg.source.uri, msg.table.num_rows, msg.table.num_columns)
        tab.pipeline = self._new_pipeline(msg.table)
        steps, tab.queued_steps = tab.queued_steps, ()
        self._view_changed(tab)
        if steps:
            try:
                self._schedule(tab, tab.pipeline.replace(steps))
            except GridLensError as e:
                self.status = e.status_text()
        return True

    def _handle_evaluation(self, tab: Tab, msg: EvaluationResult) -> bool:
        if msg.error is not None or msg.table is None:
            error = msg.error or QueryError("E_INTERNAL", "Evaluation produced no table.")
            if not tab.pipeline.reject(msg.generation, error):
                return False
            self.status = error.status_text()
            if tab.pipeline.dirty:
                # earlier steps lost their result to the failed generation
                self._schedule(tab, tab.pipeline.request())
            return True
        if not tab.pipeline.install(msg.generation, msg.steps, msg.table):
            return False
        self._view_changed(tab)
        return True

    def drain(self) -> bool:
        """Apply every finished message, including ones posted while applying."""
        changed = False
        while True:
            messages = self.scheduler.drain()
            if not messages:
                return changed
            for msg in messages:
                changed = self.handle_result(msg) or changed

    def _view_changed(self, tab: Tab) -> None:
        view = tab.view
        tab.widths = column_widths(
            view,
            sample_rows=self.config.width_sample_rows,
            min_width=self.config.min_column_width,
            max_width=self.config.max_column_width,
        )
        tab.cursor = clamp_cursor(view, tab.cursor)
        self._follow(tab)
        if tab is self.tab:
            self.search.recompute(view)

    # ---------- cursor ----------
    def resize(self, size: Size) -> None:
        self.grid_size = size
        for tab in self.tabs:
            self._follow(tab)

    @property
    def page_rows(self) -> int:
        return max(visible_row_count(self.grid_size.height), 1)

    def _follow(self, tab: Tab) -> None:
        top = scroll_rows_into_view(
            tab.scroll.top, tab.cursor.row, visible_row_count(self.grid_size.height), tab.view.num_rows
        )
        left = scroll_columns_into_view(tab.scroll.left, tab.cursor.col, tab.widths, self.grid_size.width)
        tab.scroll = Scroll(top, left)

    def move_to(self, row: int, col: Optional[int] = None) -> None:
        tab = self.require_tab()
        tab.cursor = clamp_cursor(tab.view, Cursor(row, tab.cursor.col if col is None else col))
        self._follow(tab)

    def move(self, rows: int = 0, cols: int = 0) -> None:
        tab = self.require_tab()
        self.move_to(tab.cursor.row + rows, tab.cursor.col + cols)

    def top(self) -> None:
        self.move_to(0)

    def bottom(self) -> None:
        self.move_to(self.require_tab().view.num_rows - 1)

    def first_col(self) -> None:
        self.move_to(self.require_tab().cursor.row, 0)

    def last_col(self) -> None:
        tab = self.require_tab()
        self.move_to(tab.cursor.row, tab.view.num_columns - 1)

    def page(self, fraction: float) -> None:
        self.move(rows=int(self.page_rows * fraction) or (1 if fraction > 0 else -1))

    # ---------- search ----------
    def find(self, query: str, mode: Optional[str] = None, case_sensitive: Optional[bool] = None) -> bool:
        """Search the active view and jump to the first match at or after the cursor."""
        tab = self.require_tab()
        self.search.set_query(tab.view, query, mode, case_sensitive)
        target = self.search.first_from(tuple(tab.cursor))
        if target is not None:
            self.move_to(*target)
        self.status = self.search.summary()
        return target is not None

    def find_next(self, backwards: bool = False) -> bool:
        tab = self.require_tab()
        if not self.search.query:
            raise QueryError("E_NO_SEARCH", "No active search.", hint="Search with: find <text>")
        cursor = tuple(tab.cursor)
        target = self.search.prev_from(cursor) if backwards else self.search.next_from(cursor)
        if target is not None:
            self.move_to(*target)
        self.status = self.search.summary()
        return target is not None

    # ---------- history ----------
    def record(self, line: str) -> None:
        line = line.strip()
        if line and (not self.history or self.history[-1] != line):
            self.history.append(line)
