"""curses front end: turns key codes into KeyPress/Resize and draws a Screen."""

from __future__ import annotations

import curses
import logging
from typing import Optional, Union

from gridlens.engine.keys import CTRL, KeyPress, Resize
from gridlens.engine.render import Screen, Size, display_width

logger = logging.getLogger(__name__)

_SPECIAL_KEYS = {
    curses.KEY_UP: "Up",
    curses.KEY_DOWN: "Down",
    curses.KEY_LEFT: "Left",
    curses.KEY_RIGHT: "Right",
    curses.KEY_PPAGE: "PageUp",
    curses.KEY_NPAGE: "PageDown",
    curses.KEY_HOME: "Home",
    curses.KEY_END: "End",
    curses.KEY_ENTER: "Enter",
    curses.KEY_BACKSPACE: "Backspace",
}

_CONTROL_CHARS = {
    "\n": "Enter",
    "\r": "Enter",
    "\t": "Tab",
    "\x1b": "Esc",
    "\x7f": "Backspace",
    "\x08": "Backspace",
}


def translate(key: Union[int, str]) -> Optional[Union[KeyPress, Resize]]:
    """Map one curses `get_wch` result to an event; None for keys we ignore."""
    if isinstance(key, int):
        if key == curses.KEY_RESIZE:
            return None
        name = _SPECIAL_KEYS.get(key)
        return KeyPress(name) if name else None
    if key in _CONTROL_CHARS:
        return KeyPress(_CONTROL_CHARS[key])
    code = ord(key)
    if 1 <= code <= 26:
        return KeyPress(chr(code + 96), frozenset({CTRL}))
    return KeyPress(key)


class CursesTerminal:
    def __init__(self, stdscr):
        self.stdscr = stdscr
        curses.curs_set(0)
        curses.set_escdelay(25)
        stdscr.keypad(True)

    def size(self) -> Size:
        height, width = self.stdscr.getmaxyx()
        return Size(width, height)

    def read_event(self, timeout: float) -> Optional[Union[KeyPress, Resize]]:
        self.stdscr.timeout(int(timeout * 1000))
        try:
            key = self.stdscr.get_wch()
        except curses.error:
            # no input before the timeout
            return None
        if key == curses.KEY_RESIZE:
            curses.update_lines_cols()
            size = self.size()
            return Resize(size.width, size.height)
        return translate(key)

    def _put(self, y: int, x: int, text: str, attr: int = 0) -> None:
        height, width = self.stdscr.getmaxyx()
        if y >= height or x >= width:
            return
        # the bottom-right cell cannot be written without scrolling
        room = width - x - (1 if y == height - 1 else 0)
        if room <= 0:
            return
        try:
            self.stdscr.addnstr(y, x, text, room, attr)
        except curses.error:
            logger.debug("clipped write at %s,%s", y, x)

    def draw(self, screen: Screen) -> None:
        self.stdscr.erase()
        lines = screen.lines()
        for y, line in enumerate(lines):
            attr = curses.A_REVERSE if y == 0 else 0
            self._put(y, 0, line, attr)

        frame = screen.frame
        if frame is not None and len(lines) > 2:
            self._put(1, 0, lines[1], curses.A_BOLD | curses.A_UNDERLINE)
            for r, cells in enumerate(frame.cells):
                y = 2 + r
                if y >= len(lines) - 1:
                    break
                for x, cell in zip(frame.offsets, cells):
                    if cell.selected:
                        self._put(y, x, cell.text, curses.A_REVERSE)
                    elif cell.highlighted:
                        self._put(y, x, cell.text, curses.A_BOLD | curses.A_UNDERLINE)

        if screen.prompt_cursor is not None and lines:
            curses.curs_set(1)
            bottom = lines[-1]
            x = display_width(bottom[: screen.prompt_cursor])
            self.stdscr.move(len(lines) - 1, min(x, screen.size.width - 1))
        else:
            curses.curs_set(0)
        self.stdscr.refresh()
