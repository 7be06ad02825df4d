from __future__ import annotations

import copy
import logging
from typing import Callable, Dict, Optional, Union

from gridlens.engine import commands
from gridlens.engine.keys import KeyPress, Keymap, LineBuffer, Resize, default_keymaps
from gridlens.engine.render import Scroll, Screen, Size, grid_size, layout, status_line, tab_bar
from gridlens.engine.search import LITERAL, SEARCH_MODES, SearchState
from gridlens.engine.workspace import InputMode, Workspace
from gridlens.errors import GridLensError

logger = logging.getLogger(__name__)

Event = Union[KeyPress, Resize]


class App:
    """The main loop state: one event in, one frame out.

    Terminal-independent; `gridlens.terminal` feeds it real key codes, tests
    feed it KeyPress/Resize values directly.
    """

    def __init__(
        self,
        workspace: Workspace,
        *,
        keymaps: Optional[Dict[InputMode, Keymap]] = None,
        size: Size = Size(80, 24),
    ):
        self.workspace = workspace
        self.keymaps = keymaps or default_keymaps()
        self.line = LineBuffer()
        self.size = size
        self.running = True
        self._saved_search: Optional[SearchState] = None
        self._saved_position = None
        self.workspace.resize(grid_size(size))
        self._actions: Dict[str, Callable[[], None]] = {
            "quit": self._quit,
            "move_down": lambda: self.workspace.move(rows=1),
            "move_up": lambda: self.workspace.move(rows=-1),
            "move_left": lambda: self.workspace.move(cols=-1),
            "move_right": lambda: self.workspace.move(cols=1),
            "top": self.workspace.top,
            "bottom": self.workspace.bottom,
            "half_page_up": lambda: self.workspace.page(-0.5),
            "half_page_down": lambda: self.workspace.page(0.5),
            "page_up": lambda: self.workspace.page(-1),
            "page_down": lambda: self.workspace.page(1),
            "first_col": self.workspace.first_col,
            "last_col": self.workspace.last_col,
            "command_line": lambda: self._open_line(InputMode.COMMAND_LINE),
            "search_line": lambda: self._open_line(InputMode.SEARCH_LINE),
            "find_next": lambda: self._run("find-next"),
            "find_prev": lambda: self._run("find-prev"),
            "prev_tab": lambda: self._run("tabprev"),
            "next_tab": lambda: self._run("tabnext"),
            "undo": lambda: self._run("undo"),
            "close_tab": lambda: self._run("tabclose"),
            "record": lambda: self._run("record"),
            "submit": self._submit,
            "cancel": self._cancel,
            "backspace": self._backspace,
            "cursor_left": self.line.left,
            "cursor_right": self.line.right,
            "line_start": self.line.home,
            "line_end": self.line.end,
            "history_prev": self.line.history_prev,
            "history_next": self.line.history_next,
            "cycle_search_mode": self._cycle_search_mode,
            "toggle_case": self._toggle_case,
        }

    @property
    def mode(self) -> InputMode:
        return self.workspace.mode

    # ---------- events ----------
    def handle_event(self, event: Event) -> bool:
        """Process one event. Returns False once the session should end."""
        if isinstance(event, Resize):
            self.size = Size(event.width, event.height)
            self.workspace.resize(grid_size(self.size))
            return self.running
        action = self.keymaps[self.mode].resolve(event)
        try:
            if action is not None:
                self._dispatch_key(action, event)
            elif self.mode is not InputMode.NAVIGATION and event.printable:
                self.line.insert(event.key)
                self._line_changed()
        except GridLensError as e:
            self.workspace.status = e.status_text()
        return self.running

    def _dispatch_key(self, action: str, event: KeyPress) -> None:
        if action == "goto_prefix":
            self._open_line(InputMode.COMMAND_LINE, "goto " + event.key)
            return
        self._actions[action]()
        if action in ("backspace", "history_prev", "history_next"):
            self._line_changed()

    def drain_results(self) -> bool:
        """Install finished background work; True if the screen should be redrawn."""
        changed = self.workspace.drain()
        if self.workspace.quit_requested:
            self.running = False
        return changed

    # ---------- command / search line ----------
    def _open_line(self, mode: InputMode, text: str = "") -> None:
        ws = self.workspace
        ws.mode = mode
        history = list(ws.history) if mode is InputMode.COMMAND_LINE else ()
        self.line.reset(text, history)
        if mode is InputMode.SEARCH_LINE:
            tab = ws.tab
            self._saved_search = copy.deepcopy(ws.search)
            self._saved_position = (tab.cursor, tab.scroll) if tab is not None else None

    def _close_line(self) -> None:
        self.workspace.mode = InputMode.NAVIGATION
        self._saved_search = None
        self._saved_position = None

    def _line_changed(self) -> None:
        if self.mode is not InputMode.SEARCH_LINE:
            return
        ws = self.workspace
        tab = ws.tab
        if tab is None:
            return
        origin = self._saved_position[0] if self._saved_position else tab.cursor
        if not self.line.text:
            ws.search.clear()
            ws.move_to(*origin)
            return
        ws.search.set_query(tab.view, self.line.text)
        target = ws.search.first_from(tuple(origin))
        ws.move_to(*(target or origin))
        ws.status = ws.search.summary()

    def _submit(self) -> None:
        mode = self.mode
        text = self.line.text
        self._close_line()
        if mode is InputMode.SEARCH_LINE:
            if text:
                self.workspace.record("find " + text)
            self.workspace.status = self.workspace.search.summary()
            return
        if text.strip():
            self._run(text, record=True)

    def _cancel(self) -> None:
        if self.mode is InputMode.SEARCH_LINE and self._saved_search is not None:
            ws = self.workspace
            ws.search = self._saved_search
            tab = ws.tab
            if tab is not None and self._saved_position is not None:
                tab.cursor, tab.scroll = self._saved_position
        self._close_line()

    def _backspace(self) -> None:
        if not self.line.backspace():
            self._cancel()

    def _cycle_search_mode(self) -> None:
        search = self.workspace.search
        search.mode = SEARCH_MODES[(SEARCH_MODES.index(search.mode) + 1) % len(SEARCH_MODES)]
        self._line_changed()

    def _toggle_case(self) -> None:
        self.workspace.search.case_sensitive = not self.workspace.search.case_sensitive
        self._line_changed()

    def _run(self, line: str, *, record: bool = False) -> None:
        result = commands.execute(line, self.workspace, record=record)
        self.workspace.status = result.message
        if result.quit or self.workspace.quit_requested:
            self.running = False

    def _quit(self) -> None:
        self.workspace.quit_requested = True
        self.running = False

    # ---------- drawing ----------
    def screen(self, size: Optional[Size] = None) -> Screen:
        size = size or self.size
        ws = self.workspace
        tab = ws.tab
        cfg = ws.config
        frame = None
        position = ""
        if tab is not None:
            frame = layout(
                tab.view,
                tab.cursor,
                tab.scroll,
                grid_size(size),
                widths=tab.widths,
                highlights=ws.search.highlights,
                min_width=cfg.min_column_width,
                max_width=cfg.max_column_width,
                sample_rows=cfg.width_sample_rows,
                ellipsis=cfg.ellipsis,
            )
            tab.cursor, tab.scroll = frame.cursor, Scroll(*frame.scroll)
            position = self._position(tab, frame)
        bar = tab_bar([t.name for t in ws.tabs], ws.active, [t.busy for t in ws.tabs])
        if self.mode is InputMode.COMMAND_LINE:
            return Screen(size, bar, frame, ":" + self.line.text, 1 + self.line.pos)
        if self.mode is InputMode.SEARCH_LINE:
            prefix = "/" if ws.search.mode == LITERAL else f"/({ws.search.mode}) "
            return Screen(size, bar, frame, prefix + self.line.text, len(prefix) + self.line.pos)
        return Screen(size, bar, frame, status_line(ws.status, position, size.width))

    @staticmethod
    def _position(tab, frame) -> str:
        if tab.loading:
            return "loading…"
        parts = []
        if frame.row_count:
            parts.append(f"{frame.cursor.row + 1}/{frame.row_count}")
        if frame.column_count:
            parts.append(tab.view.header[frame.cursor.col])
        if tab.pipeline.steps:
            parts.append(f"steps:{len(tab.pipeline.steps)}")
        if tab.pipeline.busy:
            parts.append("[busy]")
        return "  ".join(parts)


def run(app: App, terminal, *, poll_interval: float = 0.05) -> None:
    """Drive `app` from `terminal` until the session ends."""
    terminal.draw(app.screen(terminal.size()))
    while app.running:
        event = terminal.read_event(timeout=poll_interval)
        redraw = False
        if event is not None:
            app.handle_event(event)
            redraw = True
        if app.drain_results():
            redraw = True
        if redraw and app.running:
            terminal.draw(app.screen(terminal.size()))
    logger.debug("main loop finished")
