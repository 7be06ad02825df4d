import pytest

from gridlens.engine.commands import (
    COMMANDS,
    Command,
    dispatch,
    execute,
    parse,
    parse_find,
    parse_sort_keys,
    tokenize,
)
from gridlens.engine.scheduler import ExecutionScheduler
from gridlens.engine.search import FUZZY, LITERAL, REGEX
from gridlens.engine.workspace import Workspace
from gridlens.errors import ParseError, UnknownCommandError
from gridlens.models.sources import Source
from gridlens.models.table import Table


def _base():
    return Table.from_rows(
        ["id", "name", "score"],
        [
            (1, "Ann", 72.5),
            (2, "Bob", 40.0),
            (3, "Cid", 88.0),
            (4, "Dee", 72.5),
            (5, "Eve", 51.0),
            (6, "Fay", 12.0),
            (7, "Gus", 88.0),
            (8, "Hal", 50.0),
            (9, "Ivy", 95.5),
            (10, "Jon", 60.0),
        ],
    )


def _workspace():
    ws = Workspace(ExecutionScheduler(inline=True))
    ws.open_table(_base(), "people")
    return ws


def _run(ws, line):
    result = execute(line, ws)
    ws.drain()
    return result


# ---------- parsing ----------

def test_tokenize_shell_style():
    assert tokenize("select 'first name',id") == ["select", "first name,id"]
    assert tokenize(r"find a\ b") == ["find", "a b"]


def test_unterminated_quote_is_parse_error():
    with pytest.raises(ParseError) as ex:
        parse('filter "name = ')
    assert getattr(ex.value, "code", None) == "E_UNTERMINATED_QUOTE"


def test_unterminated_quote_leaves_pipeline_unchanged():
    ws = _workspace()
    _run(ws, "filter score > 50")
    result = _run(ws, 'filter "name = ')
    assert result.error is not None
    assert result.error.code == "E_UNTERMINATED_QUOTE"
    assert len(ws.tab.pipeline.steps) == 1
    assert ws.tab.pipeline.steps == ws.tab.pipeline.committed
    assert ws.tab.view.num_rows == 7


def test_unknown_verb_suggests_nearest():
    with pytest.raises(UnknownCommandError) as ex:
        parse("fliter score > 1")
    assert getattr(ex.value, "code", None) == "E_UNKNOWN_COMMAND"
    assert ex.value.suggestions[0] == "filter"
    assert "filter" in ex.value.hint


def test_unknown_verb_without_neighbours():
    with pytest.raises(UnknownCommandError) as ex:
        parse("xyzzy")
    assert ex.value.suggestions == ()


def test_expression_verbs_keep_raw_text():
    cmd = parse("filter name == 'Jon' and score>50")
    assert cmd.verb == "filter"
    assert cmd.raw == "name == 'Jon' and score>50"
    assert parse('filter "score > 50"').raw == "score > 50"


def test_aliases_resolve_to_canonical_verb():
    assert parse("project id").verb == "select"
    assert parse("order-by id").verb == "order"
    assert parse("q").verb == "quit"
    assert parse("next-tab").verb == "tabnext"


def test_parse_sort_keys():
    assert parse_sort_keys(["score:desc,name"]) == [["score", "desc"], ["name", "asc"]]
    assert parse_sort_keys(["score", "DESC", "id"]) == [["score", "desc"], ["id", "asc"]]
    assert parse_sort_keys(["a:b"]) == [["a:b", "asc"]]


def test_parse_find_flags():
    assert parse_find("jo") == ("jo", None, None)
    assert parse_find("-f --case jo") == ("jo", FUZZY, True)
    assert parse_find(r"-r ^\d+$") == (r"^\d+$", REGEX, None)
    assert parse_find("-l -i jo") == ("jo", LITERAL, False)
    assert parse_find("-5") == ("-5", None, None)
    assert parse_find("-- -r") == ("-r", None, None)
    with pytest.raises(ParseError):
        parse_find("--wat x")


# ---------- pipeline verbs ----------

def test_filter_order_select_scenario():
    ws = _workspace()
    _run(ws, "filter score > 50")
    _run(ws, "order score:desc")
    view = ws.tab.view
    assert list(view.column("id").values) == [9, 3, 7, 1, 4, 10, 5]

    _run(ws, "select id,name")
    view = ws.tab.view
    assert view.header == ["id", "name"]
    assert list(view.column("id").values) == [9, 3, 7, 1, 4, 10, 5]


def test_undo_and_reset():
    ws = _workspace()
    before = ws.tab.view
    _run(ws, "filter score > 50")
    assert ws.tab.view.num_rows == 7
    _run(ws, "undo")
    assert ws.tab.view == before
    _run(ws, "order id:desc")
    _run(ws, "reset")
    assert ws.tab.pipeline.steps == ()
    assert ws.tab.view is before


def test_undo_on_empty_pipeline_reports_error():
    result = _run(_workspace(), "undo")
    assert result.error.code == "E_NOTHING_TO_UNDO"


def test_unknown_column_rejected_before_scheduling():
    ws = _workspace()
    result = _run(ws, "select id,nmae")
    assert result.error.code == "E_UNKNOWN_COLUMN"
    assert "Did you mean 'name'?" in result.message
    assert ws.tab.pipeline.steps == ()


def test_failed_evaluation_reverts_steps():
    ws = _workspace()
    _run(ws, "sql SELECT nope FROM df")
    assert ws.tab.pipeline.steps == ()
    assert "nope" in ws.status


def test_sql_verb():
    ws = _workspace()
    _run(ws, "sql SELECT count(*) AS n FROM df WHERE score >= 72.5")
    assert ws.tab.view.row(0) == (5,)


def test_missing_arguments():
    ws = _workspace()
    for line in ("filter", "select", "order", "sql", "goto"):
        assert _run(ws, line).error.code == "E_COMMAND_ARGS"


# ---------- navigation / search ----------

def test_goto_is_one_based_and_accepts_column_names():
    ws = _workspace()
    _run(ws, "goto 5 score")
    assert tuple(ws.tab.cursor) == (4, 2)
    _run(ws, "goto 500 2")
    assert tuple(ws.tab.cursor) == (9, 1)
    assert _run(ws, "goto x").error.code == "E_COMMAND_ARGS"
    assert _run(ws, "goto 1 nmae").error.code == "E_UNKNOWN_COLUMN"


def test_motion_verbs():
    ws = _workspace()
    _run(ws, "bottom")
    _run(ws, "last-col")
    assert tuple(ws.tab.cursor) == (9, 2)
    _run(ws, "top")
    _run(ws, "first-col")
    assert tuple(ws.tab.cursor) == (0, 0)


def test_find_moves_cursor_and_cycles():
    ws = _workspace()
    _run(ws, "find 88")
    assert tuple(ws.tab.cursor) == (2, 2)
    _run(ws, "find-next")
    assert tuple(ws.tab.cursor) == (6, 2)
    _run(ws, "find-next")
    assert tuple(ws.tab.cursor) == (2, 2)
    _run(ws, "find-prev")
    assert tuple(ws.tab.cursor) == (6, 2)


def test_fuzzy_find_scenario():
    ws = Workspace(ExecutionScheduler(inline=True))
    ws.open_table(Table.from_rows(["name"], [("John",), ("Jon",), ("Joanna",)]), "names")
    _run(ws, 'find --fuzzy "jo"')
    assert ws.search.matches == [(1, 0), (0, 0), (2, 0)]
    assert tuple(ws.tab.cursor) == (1, 0)


def test_find_without_flags_keeps_search_options():
    ws = Workspace(ExecutionScheduler(inline=True))
    ws.open_table(Table.from_rows(["name"], [("John",), ("Jon",), ("Joanna",)]), "names")
    _run(ws, "find --fuzzy --case Jo")
    _run(ws, "find Jon")
    assert ws.search.mode == FUZZY
    assert ws.search.case_sensitive is True
    _run(ws, "find --literal --ignore-case jon")
    assert ws.search.mode == LITERAL
    assert ws.search.matches == [(1, 0)]


def test_find_with_invalid_regex_keeps_state():
    ws = _workspace()
    _run(ws, "find Ann")
    result = _run(ws, "find -r (")
    assert result.error.code == "E_REGEX"
    assert ws.search.query == "Ann"


def test_find_next_without_search():
    assert _run(_workspace(), "find-next").error.code == "E_NO_SEARCH"


# ---------- tabs / session ----------

def test_tab_verbs(tmp_path):
    p = tmp_path / "other.csv"
    p.write_text("a,b\n1,x\n2,y\n", encoding="utf-8")
    ws = _workspace()
    _run(ws, f"tabnew {p}")
    assert [t.name for t in ws.tabs] == ["people", "other.csv"]
    assert ws.tab.view.header == ["a", "b"]

    _run(ws, "tabprev")
    assert ws.tab.name == "people"
    _run(ws, "next-tab")
    assert ws.tab.name == "other.csv"

    _run(ws, "close-tab")
    assert [t.name for t in ws.tabs] == ["people"]
    result = _run(ws, "tabclose")
    assert result.quit
    assert ws.quit_requested


def test_tabdup_copies_steps():
    ws = _workspace()
    _run(ws, "filter score > 50")
    _run(ws, "tabdup")
    assert len(ws.tabs) == 2
    assert ws.tab.pipeline.steps == ws.tabs[0].pipeline.steps
    assert ws.tab.pipeline.base is ws.tabs[0].pipeline.base
    assert ws.tab.view.num_rows == 7
    _run(ws, "undo")
    assert ws.tabs[0].view.num_rows == 7


def test_export_and_reload(tmp_path):
    ws = _workspace()
    _run(ws, "filter score > 50")
    out = tmp_path / "view.tsv"
    result = _run(ws, f"save {out}")
    assert result.error is None
    assert "7 row(s)" in result.message
    reloaded = Source(str(out)).load()
    assert reloaded == ws.tab.view


def test_pipe_save_and_load(tmp_path):
    ws = _workspace()
    _run(ws, "filter score > 50")
    _run(ws, "order score:desc")
    path = tmp_path / "p.yaml"
    _run(ws, f"pipe-save {path}")
    _run(ws, "reset")
    _run(ws, f"pipe-load {path}")
    assert [s.op for s in ws.tab.pipeline.steps] == ["filter", "order"]
    assert ws.tab.view.column("id").values[0] == 9


def test_pipe_load_opens_source_without_tab(tmp_path):
    csv = tmp_path / "people.csv"
    csv.write_text("id,score\n1,10\n2,90\n", encoding="utf-8")
    doc = tmp_path / "p.yaml"
    doc.write_text(
        "gridlens: 0\npipeline:\n  source: {uri: people.csv}\n  steps:\n"
        "    - {op: filter, params: {where: score > 50}}\n",
        encoding="utf-8",
    )
    ws = Workspace(ExecutionScheduler(inline=True))
    _run(ws, f"pipe-load {doc}")
    assert ws.tab.name == "people.csv"
    assert ws.tab.view.column("id").values == (2,)


def test_information_verbs():
    ws = _workspace()
    _run(ws, "filter score > 50")
    assert _run(ws, "schema").message.startswith("7 rows | id:integer")
    assert "score:number [51.0..95.5]" in _run(ws, "schema").message
    assert "name:string," in _run(ws, "schema").message
    assert _run(ws, "pipeline").message == "1. filter score > 50"
    assert "filter score > 50" in _run(ws, "history").message
    assert _run(ws, "help order").message.startswith("order <col>")
    assert "filter" in _run(ws, "help").message


def test_schema_counts_nulls_and_skips_empty_ranges():
    ws = Workspace(ExecutionScheduler(inline=True))
    ws.open_table(Table.from_rows(["a", "b"], [(None, "x"), (None, "y")], types=["integer", "string"]), "t")
    assert _run(ws, "schema").message == "2 rows | a:integer (2 null), b:string"


def test_record_opens_the_current_row_as_a_tab():
    ws = _workspace()
    ws.move(rows=2)
    result = _run(ws, "record")
    assert result.message == "opened people[3]"
    record = ws.tab.view
    assert record.header == ["field", "type", "value"]
    assert record.column("field").values == ("id", "name", "score")
    assert record.column("value").values == ("3", "Cid", "88.0")
    assert record.column("type").values == ("integer", "string", "number")
    assert [t.name for t in ws.tabs] == ["people", "people[3]"]


def test_record_on_empty_view():
    ws = _workspace()
    _run(ws, "filter score > 1000")
    assert _run(ws, "sheet").error.code == "E_EMPTY_VIEW"


def test_quit():
    ws = _workspace()
    assert _run(ws, "q").quit


def test_history_is_bounded():
    from gridlens.config import ViewerConfig

    ws = Workspace(ExecutionScheduler(inline=True), ViewerConfig(history_size=2))
    for line in ("help", "top", "bottom"):
        execute(line, ws)
    assert list(ws.history) == ["top", "bottom"]


def test_every_command_has_help():
    assert all(spec.help for spec in COMMANDS.values())


def test_dispatch_accepts_a_parsed_command():
    ws = _workspace()
    result = dispatch(Command("goto", ("3",), "3"), ws)
    assert result.message == "row 3/10"
