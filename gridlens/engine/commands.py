from __future__ import annotations

import logging
import re
import shlex
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from gridlens.engine.search import FUZZY, LITERAL, REGEX
from gridlens.engine.workspace import Workspace
from gridlens.errors import GridLensError, ParseError, QueryError, UnknownCommandError
from gridlens.models.pipeline import QueryPipeline
from gridlens.models.sinks import Sink
from gridlens.models.sources import Source
from gridlens.models.table import DATETIME, INTEGER, NUMBER, cell_text
from gridlens.models.transforms import Transform
from gridlens.util import closest_matches, suggest_column

logger = logging.getLogger(__name__)

_RANGED_TYPES = (INTEGER, NUMBER, DATETIME)


@dataclass(frozen=True)
class Command:
    verb: str
    args: Tuple[str, ...] = ()
    raw: str = ""


@dataclass(frozen=True)
class ActionResult:
    message: str = ""
    quit: bool = False
    error: Optional[GridLensError] = None


Handler = Callable[[Workspace, Command], ActionResult]


@dataclass(frozen=True)
class CommandSpec:
    name: str
    handler: Handler
    aliases: Tuple[str, ...] = ()
    usage: str = ""
    help: str = ""
    # take the rest of the line verbatim instead of shell words
    expression: bool = False


# ---------------- Command registry ----------------

COMMANDS: Dict[str, CommandSpec] = {}
COMMAND_ALIASES: Dict[str, str] = {}


def register_command(
    name: str,
    *,
    aliases: Sequence[str] = (),
    usage: str = "",
    help: str = "",
    expression: bool = False,
) -> Callable[[Handler], Handler]:
    """Decorator to register a command handler under a verb and its aliases."""

    def deco(fn: Handler) -> Handler:
        COMMANDS[name] = CommandSpec(name, fn, tuple(aliases), usage or name, help, expression)
        for a in aliases:
            COMMAND_ALIASES[a] = name
        return fn

    return deco


def known_verbs() -> List[str]:
    return sorted(list(COMMANDS) + list(COMMAND_ALIASES))


def lookup(verb: str, *, cutoff: float = 0.6, max_suggestions: int = 3) -> CommandSpec:
    name = COMMAND_ALIASES.get(verb, verb)
    spec = COMMANDS.get(name)
    if spec is None:
        raise UnknownCommandError(verb, closest_matches(verb, known_verbs(), n=max_suggestions, cutoff=cutoff))
    return spec


# ---------------- Parsing ----------------

def tokenize(line: str) -> List[str]:
    """Shell-style word splitting: quotes and backslashes keep whitespace inside a word."""
    try:
        return shlex.split(line, posix=True)
    except ValueError as e:
        raise ParseError(
            "E_UNTERMINATED_QUOTE",
            f"Could not split command: {e}.",
            hint="Close the quote, or escape it with a backslash.",
        ) from e


def _unquote(text: str) -> str:
    """Strip one level of quoting when the whole text is a single quoted word."""
    if len(text) >= 2 and text[0] in "'\"" and text[-1] == text[0]:
        words = tokenize(text)
        if len(words) == 1:
            return words[0]
    return text


def parse(line: str, *, cutoff: float = 0.6, max_suggestions: int = 3) -> Command:
    tokens = tokenize(line)
    if not tokens:
        raise ParseError("E_COMMAND_ARGS", "Empty command.", hint="Type 'help' to list the available commands.")
    spec = lookup(tokens[0], cutoff=cutoff, max_suggestions=max_suggestions)
    parts = line.strip().split(None, 1)
    rest = parts[1].strip() if len(parts) > 1 else ""
    if spec.expression:
        rest = _unquote(rest)
    return Command(spec.name, tuple(tokens[1:]), rest)


def dispatch(command: Command, workspace: Workspace) -> ActionResult:
    spec = lookup(command.verb)
    logger.debug("dispatch %s %r", spec.name, command.raw)
    return spec.handler(workspace, command)


def execute(line: str, workspace: Workspace, *, record: bool = True) -> ActionResult:
    """Parse and run one command line, turning failures into a status message."""
    if record:
        workspace.record(line)
    try:
        cfg = workspace.config
        result = dispatch(parse(line, cutoff=cfg.suggestion_cutoff, max_suggestions=cfg.max_suggestions), workspace)
    except GridLensError as e:
        logger.info("command failed: %s: %s", e.code, e.message)
        return ActionResult(message=e.status_text(), error=e)
    return result


def _missing(command: Command, what: str) -> ParseError:
    spec = COMMANDS[command.verb]
    return ParseError("E_COMMAND_ARGS", f"{spec.name} requires {what}.", hint=f"Usage: {spec.usage}")


def _require(command: Command, what: str) -> str:
    if not command.raw:
        raise _missing(command, what)
    return command.raw


def _arity(command: Command, lo: int, hi: int) -> None:
    n = len(command.args)
    if lo <= n <= hi:
        return
    spec = COMMANDS[command.verb]
    raise ParseError(
        "E_COMMAND_ARGS",
        f"{spec.name} takes {lo if lo == hi else f'{lo} to {hi}'} argument(s), got {n}.",
        hint=f"Usage: {spec.usage}",
    )


# ---------- pipeline edits ----------

@register_command("filter", usage="filter <expr>", help="Keep rows where the expression is true.", expression=True)
def _filter(ws: Workspace, command: Command) -> ActionResult:
    where = _require(command, "an expression")
    ws.push_step(Transform("filter", {"where": where}))
    return ActionResult(f"filter {where}")


def split_columns(args: Sequence[str]) -> List[str]:
    return [c.strip() for arg in args for c in arg.split(",") if c.strip()]


@register_command(
    "select",
    aliases=("project",),
    usage="select <col>[,<col>...]",
    help="Keep (and reorder) the named columns.",
)
def _select(ws: Workspace, command: Command) -> ActionResult:
    columns = split_columns(command.args)
    if not columns:
        raise _missing(command, "at least one column")
    ws.push_step(Transform("select", {"columns": columns}))
    return ActionResult("select " + ",".join(columns))


def parse_sort_keys(args: Sequence[str]) -> List[List[str]]:
    """`score:desc,name` (or `score desc name`) -> [[score, desc], [name, asc]]."""
    keys: List[List[str]] = []
    for word in split_columns(args):
        low = word.lower()
        if low in ("asc", "desc") and keys:
            keys[-1][1] = low
            continue
        name, sep, direction = word.rpartition(":")
        if sep and direction.lower() in ("asc", "desc"):
            keys.append([name, direction.lower()])
        else:
            keys.append([word, "asc"])
    return keys


@register_command(
    "order",
    aliases=("order-by", "sort"),
    usage="order <col>[:asc|desc][,...]",
    help="Stable sort by one or more columns; nulls last.",
)
def _order(ws: Workspace, command: Command) -> ActionResult:
    keys = parse_sort_keys(command.args)
    if not keys:
        raise _missing(command, "at least one sort key")
    ws.push_step(Transform("order", {"keys": keys}))
    return ActionResult("order " + ",".join(f"{k}:{d}" for k, d in keys))


@register_command("sql", usage="sql <statement>", help="Run a SELECT against the view (relation df).", expression=True)
def _sql(ws: Workspace, command: Command) -> ActionResult:
    statement = _require(command, "a statement")
    ws.push_step(Transform("sql", {"statement": statement}))
    return ActionResult(f"sql {statement}")


@register_command("undo", help="Remove the last pipeline step.")
def _undo(ws: Workspace, command: Command) -> ActionResult:
    _arity(command, 0, 0)
    ws.undo()
    return ActionResult(f"{len(ws.require_tab().pipeline.steps)} step(s)")


@register_command("reset", help="Remove every pipeline step.")
def _reset(ws: Workspace, command: Command) -> ActionResult:
    _arity(command, 0, 0)
    ws.reset()
    return ActionResult("pipeline reset")


# ---------- search ----------

_FIND_FLAGS = {
    "-l": ("mode", LITERAL),
    "--literal": ("mode", LITERAL),
    "-r": ("mode", REGEX),
    "--regex": ("mode", REGEX),
    "-f": ("mode", FUZZY),
    "--fuzzy": ("mode", FUZZY),
    "-c": ("case", True),
    "--case": ("case", True),
    "-i": ("case", False),
    "--ignore-case": ("case", False),
}


def parse_find(raw: str) -> Tuple[str, Optional[str], Optional[bool]]:
    """Split leading flags off `find` arguments -> (query, mode, case_sensitive).

    Options that are not given come back as None, which keeps the current
    search settings.
    """
    mode: Optional[str] = None
    case: Optional[bool] = None
    rest = raw
    while True:
        m = re.match(r"(-\S*)(?:\s+|$)", rest)
        if not m:
            break
        flag = m.group(1)
        if flag == "--":
            rest = rest[m.end():]
            break
        if flag not in _FIND_FLAGS:
            if flag.startswith("--"):
                raise ParseError(
                    "E_COMMAND_ARGS",
                    f"Unknown find option {flag!r}.",
                    hint="Options: --literal/-l, --regex/-r, --fuzzy/-f, --case/-c, --ignore-case/-i; use -- before a query that starts with '-'.",
                )
            break
        key, value = _FIND_FLAGS[flag]
        if key == "mode":
            mode = value
        else:
            case = value
        rest = rest[m.end():]
    return _unquote(rest.strip()), mode, case


@register_command(
    "find",
    usage="find [--literal|-l] [--regex|-r] [--fuzzy|-f] [--case|-c] [--ignore-case|-i] <text>",
    help="Search every cell of the view and jump to the first match.",
    expression=True,
)
def _find(ws: Workspace, command: Command) -> ActionResult:
    query, mode, case = parse_find(_require(command, "search text"))
    if not query:
        raise _missing(command, "search text")
    ws.find(query, mode, case)
    return ActionResult(ws.status)


@register_command("find-next", help="Jump to the next match (wraps).")
def _find_next(ws: Workspace, command: Command) -> ActionResult:
    ws.find_next()
    return ActionResult(ws.status)


@register_command("find-prev", help="Jump to the previous match (wraps).")
def _find_prev(ws: Workspace, command: Command) -> ActionResult:
    ws.find_next(backwards=True)
    return ActionResult(ws.status)


# ---------- navigation ----------

def _resolve_column(ws: Workspace, token: str) -> int:
    view = ws.require_tab().view
    if view.has_column(token):
        return view.index_of(token)
    if token.isdigit():
        n = int(token)
        if 1 <= n <= view.num_columns:
            return n - 1
        raise QueryError(
            "E_COMMAND_ARGS",
            f"Column number {n} is out of range.",
            hint=f"The view has {view.num_columns} column(s).",
        )
    raise QueryError("E_UNKNOWN_COLUMN", f"Unknown column {token!r}.", hint=suggest_column(token, view.header))


@register_command("goto", usage="goto <row> [col]", help="Move to a 1-based row and, optionally, a column.")
def _goto(ws: Workspace, command: Command) -> ActionResult:
    _arity(command, 1, 2)
    row_text = command.args[0]
    try:
        row = int(row_text)
    except ValueError as e:
        raise ParseError(
            "E_COMMAND_ARGS", f"Row must be a number, got {row_text!r}.", hint="Usage: goto <row> [col]"
        ) from e
    col = _resolve_column(ws, command.args[1]) if len(command.args) > 1 else None
    ws.move_to(row - 1, col)
    tab = ws.require_tab()
    return ActionResult(f"row {tab.cursor.row + 1}/{tab.view.num_rows}")


def _motion(name: str, method: str, text: str) -> None:
    def handler(ws: Workspace, command: Command) -> ActionResult:
        _arity(command, 0, 0)
        getattr(ws, method)()
        return ActionResult()

    register_command(name, help=text)(handler)


_motion("top", "top", "Move to the first row.")
_motion("bottom", "bottom", "Move to the last row.")
_motion("first-col", "first_col", "Move to the first column.")
_motion("last-col", "last_col", "Move to the last column.")


# ---------- tabs ----------

@register_command("tabnext", aliases=("next-tab",), help="Activate the next tab.")
def _tabnext(ws: Workspace, command: Command) -> ActionResult:
    ws.switch_tab(1)
    return ActionResult(ws.tab.name if ws.tab else "")


@register_command("tabprev", aliases=("prev-tab",), help="Activate the previous tab.")
def _tabprev(ws: Workspace, command: Command) -> ActionResult:
    ws.switch_tab(-1)
    return ActionResult(ws.tab.name if ws.tab else "")


@register_command(
    "tabnew",
    aliases=("new-tab", "open"),
    usage="tabnew <path> [format]",
    help="Open a file in a new tab.",
)
def _tabnew(ws: Workspace, command: Command) -> ActionResult:
    _arity(command, 1, 2)
    source = Source(command.args[0], command.args[1] if len(command.args) > 1 else None)
    tab = ws.open_source(source)
    return ActionResult(f"loading {tab.name}")


@register_command("tabclose", aliases=("close-tab",), help="Close the active tab; the last one quits.")
def _tabclose(ws: Workspace, command: Command) -> ActionResult:
    ws.close_tab()
    return ActionResult(quit=ws.quit_requested)


@register_command("tabdup", help="Duplicate the active tab with its pipeline.")
def _tabdup(ws: Workspace, command: Command) -> ActionResult:
    tab = ws.duplicate_tab()
    return ActionResult(f"duplicated {tab.name}")


# ---------- I/O ----------

@register_command(
    "export",
    aliases=("save",),
    usage="export <path> [format]",
    help="Write the current view to a csv, tsv or json file.",
)
def _export(ws: Workspace, command: Command) -> ActionResult:
    _arity(command, 1, 2)
    view = ws.require_tab().view
    sink = Sink(command.args[0], command.args[1] if len(command.args) > 1 else None)
    sink.write(view)
    logger.info("exported %d rows to %s", view.num_rows, sink.uri)
    return ActionResult(f"exported {view.num_rows} row(s) to {sink.uri}")


@register_command("pipe-save", usage="pipe-save <path>", help="Save the pipeline steps as a YAML document.")
def _pipe_save(ws: Workspace, command: Command) -> ActionResult:
    _arity(command, 1, 1)
    tab = ws.require_tab()
    source = tab.source.describe() if tab.source is not None else None
    tab.pipeline.to_yaml(command.args[0], source=source)
    return ActionResult(f"saved {len(tab.pipeline.steps)} step(s) to {command.args[0]}")


@register_command(
    "pipe-load",
    usage="pipe-load <path>",
    help="Replace the pipeline with steps from a YAML document (opens its source when no tab is open).",
)
def _pipe_load(ws: Workspace, command: Command) -> ActionResult:
    _arity(command, 1, 1)
    steps, source = QueryPipeline.steps_from_yaml(command.args[0])
    if ws.tab is None:
        if source is None:
            raise QueryError(
                "E_IR_SOURCE",
                "The pipeline document names no source and no tab is open.",
                hint="Open a file first, then pipe-load the steps onto it.",
            )
        tab = ws.open_source(Source(source["uri"], source.get("type"), source.get("options") or {}), steps)
        return ActionResult(f"loading {tab.name} with {len(steps)} step(s)")
    ws.replace_steps(steps)
    return ActionResult(f"loaded {len(steps)} step(s)")


# ---------- information ----------

@register_command("schema", help="Show column names, types, null counts and value ranges of the view.")
def _schema(ws: Workspace, command: Command) -> ActionResult:
    view = ws.require_tab().view
    nulls = view.null_counts()
    parts = []
    for c in view.columns:
        part = f"{c.name}:{c.type}"
        if nulls[c.name]:
            part += f" ({nulls[c.name]} null)"
        bounds = c.bounds() if c.type in _RANGED_TYPES else None
        if bounds is not None:
            part += f" [{cell_text(bounds[0])}..{cell_text(bounds[1])}]"
        parts.append(part)
    return ActionResult(f"{view.num_rows} rows | " + ", ".join(parts))


@register_command("pipeline", help="List the pipeline steps of the active tab.")
def _pipeline(ws: Workspace, command: Command) -> ActionResult:
    steps = ws.require_tab().pipeline.steps
    if not steps:
        return ActionResult("no steps")
    return ActionResult(" | ".join(f"{i + 1}. {s}" for i, s in enumerate(steps)))


@register_command("history", help="Show the most recent commands.")
def _history(ws: Workspace, command: Command) -> ActionResult:
    # the 'history' line itself is the newest entry
    recent = list(ws.history)[-11:-1]
    return ActionResult(" | ".join(recent) if recent else "history is empty")


@register_command("cell", help="Show the full text of the cell under the cursor.")
def _cell(ws: Workspace, command: Command) -> ActionResult:
    tab = ws.require_tab()
    view = tab.view
    if view.num_rows == 0 or view.num_columns == 0:
        return ActionResult("empty view")
    name = view.header[tab.cursor.col]
    return ActionResult(f"{name}: {cell_text(view.cell(tab.cursor.row, tab.cursor.col))}")


@register_command("record", aliases=("sheet",), help="Open the row under the cursor as a field/value tab.")
def _record(ws: Workspace, command: Command) -> ActionResult:
    _arity(command, 0, 0)
    tab = ws.open_record()
    return ActionResult(f"opened {tab.name}")


# ---------- session ----------

@register_command("quit", aliases=("q",), help="Leave the viewer.")
def _quit(ws: Workspace, command: Command) -> ActionResult:
    ws.quit_requested = True
    return ActionResult(quit=True)


@register_command("help", usage="help [command]", help="List commands, or describe one.")
def _help(ws: Workspace, command: Command) -> ActionResult:
    _arity(command, 0, 1)
    if command.args:
        spec = lookup(command.args[0])
        aliases = f" (aliases: {', '.join(spec.aliases)})" if spec.aliases else ""
        return ActionResult(f"{spec.usage}: {spec.help}{aliases}")
    return ActionResult("commands: " + " ".join(sorted(COMMANDS)))
