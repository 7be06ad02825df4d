from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence

from gridlens.engine.workspace import InputMode

CTRL = "ctrl"
ALT = "alt"


@dataclass(frozen=True)
class KeyPress:
    """One key event. Printable keys are the character itself; others are named
    (Up, Down, Left, Right, PageUp, PageDown, Home, End, Enter, Esc, Backspace, Tab)."""

    key: str
    modifiers: FrozenSet[str] = frozenset()

    @property
    def chord(self) -> str:
        if not self.modifiers:
            return self.key
        return "+".join(sorted(self.modifiers)) + "+" + self.key

    @property
    def printable(self) -> bool:
        return len(self.key) == 1 and not self.modifiers and self.key.isprintable()


@dataclass(frozen=True)
class Resize:
    width: int
    height: int


@dataclass
class Keymap:
    name: str
    bindings: Dict[str, str] = field(default_factory=dict)
    parent: Optional["Keymap"] = None

    def resolve(self, event: KeyPress) -> Optional[str]:
        """Action bound to `event` here or in a parent keymap."""
        km: Optional[Keymap] = self
        while km is not None:
            action = km.bindings.get(event.chord)
            if action is not None:
                return action
            km = km.parent
        return None


def _bind(pairs: Mapping[str, Sequence[str]]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for action, chords in pairs.items():
        for chord in chords:
            out[chord] = action
    return out


def default_keymaps() -> Dict[InputMode, Keymap]:
    root = Keymap("global", _bind({"quit": ["ctrl+c"]}))
    navigation = Keymap(
        "navigation",
        _bind(
            {
                "move_down": ["j", "Down"],
                "move_up": ["k", "Up"],
                "move_left": ["h", "Left"],
                "move_right": ["l", "Right"],
                "top": ["g", "Home"],
                "bottom": ["G", "End"],
                "half_page_up": ["ctrl+u"],
                "half_page_down": ["ctrl+d"],
                "page_up": ["PageUp", "ctrl+b"],
                "page_down": ["PageDown", "ctrl+f"],
                "first_col": ["0"],
                "last_col": ["$"],
                "command_line": [":"],
                "search_line": ["/"],
                "find_next": ["n"],
                "find_prev": ["N"],
                "prev_tab": ["H"],
                "next_tab": ["L"],
                "undo": ["u"],
                "close_tab": ["q"],
                "record": ["Enter"],
                "goto_prefix": [str(d) for d in range(1, 10)],
            }
        ),
        parent=root,
    )
    line = Keymap(
        "line",
        _bind(
            {
                "submit": ["Enter"],
                "cancel": ["Esc"],
                "backspace": ["Backspace"],
                "cursor_left": ["Left"],
                "cursor_right": ["Right"],
                "line_start": ["Home", "ctrl+a"],
                "line_end": ["End", "ctrl+e"],
            }
        ),
        parent=root,
    )
    command = Keymap("command", _bind({"history_prev": ["Up"], "history_next": ["Down"]}), parent=line)
    search = Keymap("search", _bind({"cycle_search_mode": ["Tab"], "toggle_case": ["ctrl+t"]}), parent=line)
    return {
        InputMode.NAVIGATION: navigation,
        InputMode.COMMAND_LINE: command,
        InputMode.SEARCH_LINE: search,
    }


class LineBuffer:
    """Single-line editor with an insertion point and history recall."""

    def __init__(self, text: str = ""):
        self.text = text
        self.pos = len(text)
        self._history: List[str] = []
        self._recall: Optional[int] = None
        self._draft = ""

    def reset(self, text: str = "", history: Sequence[str] = ()) -> None:
        self.text = text
        self.pos = len(text)
        self._history = list(history)
        self._recall = None
        self._draft = text

    def insert(self, s: str) -> None:
        self.text = self.text[: self.pos] + s + self.text[self.pos:]
        self.pos += len(s)

    def backspace(self) -> bool:
        """Delete before the cursor; False when the buffer was already empty."""
        if not self.text:
            return False
        if self.pos > 0:
            self.text = self.text[: self.pos - 1] + self.text[self.pos:]
            self.pos -= 1
        return True

    def left(self) -> None:
        self.pos = max(self.pos - 1, 0)

    def right(self) -> None:
        self.pos = min(self.pos + 1, len(self.text))

    def home(self) -> None:
        self.pos = 0

    def end(self) -> None:
        self.pos = len(self.text)

    def history_prev(self) -> None:
        if not self._history:
            return
        if self._recall is None:
            self._draft = self.text
            self._recall = len(self._history)
        self._recall = max(self._recall - 1, 0)
        self._set(self._history[self._recall])

    def history_next(self) -> None:
        if self._recall is None:
            return
        self._recall += 1
        if self._recall >= len(self._history):
            self._recall = None
            self._set(self._draft)
        else:
            self._set(self._history[self._recall])

    def _set(self, text: str) -> None:
        self.text = text
        self.pos = len(text)
