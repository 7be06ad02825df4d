import pytest

from gridlens.engine.render import Size
from gridlens.engine.scheduler import EvaluationResult, ExecutionScheduler, LoadResult, run_evaluation
from gridlens.engine.workspace import Workspace
from gridlens.errors import GridLensError
from gridlens.models.pipeline import EvaluationRequest
from gridlens.models.sources import Source
from gridlens.models.table import Table
from gridlens.models.transforms import Transform


FILTER = Transform("filter", {"where": "score > 50"})
ORDER = Transform("order", {"keys": [["score", "desc"]]})


class DeferredScheduler(ExecutionScheduler):
    """Holds jobs until the test releases them, in any order."""

    def __init__(self):
        super().__init__(inline=True)
        self.jobs = []

    def _submit(self, fn, *args):
        self.jobs.append((fn, args))

    def finish(self, index=0):
        fn, args = self.jobs.pop(index)
        self._results.put(fn(*args))


def _base(n=10):
    return Table.from_rows(["id", "score"], [(i + 1, float(i * 10 + 5)) for i in range(n)])


def _csv(tmp_path, name="people.csv"):
    p = tmp_path / name
    p.write_text("id,score\n1,10\n2,90\n3,70\n", encoding="utf-8")
    return p


def test_threaded_scheduler_delivers_results():
    scheduler = ExecutionScheduler(2)
    try:
        ws = Workspace(scheduler)
        ws.open_table(_base(), "t")
        ws.push_step(FILTER)
        scheduler.wait_idle()
        assert ws.drain()
        assert ws.tab.view.num_rows == 5
        assert not ws.tab.busy
        assert scheduler.in_flight == 0
    finally:
        scheduler.shutdown(wait=True)


def test_threaded_scheduler_forgets_finished_jobs():
    scheduler = ExecutionScheduler(2)
    try:
        for i in range(5):
            scheduler._submit(str, i)
        for f in list(scheduler._in_flight):
            f.result()
        scheduler._submit(str, 5)
        assert len(scheduler._in_flight) == 1
        scheduler.wait_idle()
        assert len(scheduler.drain()) == 6
    finally:
        scheduler.shutdown(wait=True)


def test_previous_view_stays_until_result_arrives():
    scheduler = DeferredScheduler()
    ws = Workspace(scheduler)
    base = _base()
    ws.open_table(base, "t")
    ws.push_step(FILTER)
    assert ws.tab.busy
    assert ws.tab.view is base

    scheduler.finish()
    ws.drain()
    assert ws.tab.view.num_rows == 5


def test_out_of_order_results_keep_the_newest():
    scheduler = DeferredScheduler()
    ws = Workspace(scheduler)
    ws.open_table(_base(), "t")
    ws.push_step(FILTER)
    ws.push_step(ORDER)

    scheduler.finish(1)  # newer generation first
    ws.drain()
    newest = ws.tab.view
    assert newest.column("id").values[0] == 10

    scheduler.finish(0)
    assert not ws.drain()
    assert ws.tab.view is newest
    assert ws.tab.pipeline.committed == (FILTER, ORDER)


def test_failed_step_keeps_earlier_step_after_out_of_order_results():
    scheduler = DeferredScheduler()
    ws = Workspace(scheduler)
    base = _base()
    ws.open_table(base, "t")
    kept = Transform("filter", {"where": "score > 20"})
    ws.push_step(kept)
    ws.push_step(Transform("filter", {"where": "id > 'x'"}))

    scheduler.finish(1)  # the failing generation reports first
    assert ws.drain()
    assert ws.tab.pipeline.steps == (kept,)
    assert "Type mismatch" in ws.status
    assert len(scheduler.jobs) == 2

    scheduler.finish(0)  # superseded result for the first edit
    assert not ws.drain()
    assert ws.tab.view is base

    scheduler.finish(0)
    assert ws.drain()
    assert ws.tab.view.num_rows == 8
    assert ws.tab.pipeline.committed == (kept,)
    assert not ws.tab.busy


def test_failed_step_uses_cached_prefix():
    scheduler = DeferredScheduler()
    ws = Workspace(scheduler)
    ws.open_table(_base(), "t")
    ws.push_step(FILTER)
    scheduler.finish()
    ws.drain()
    ws.push_step(Transform("filter", {"where": "id > 'x'"}))
    scheduler.finish()
    ws.drain()
    assert scheduler.jobs == []
    assert ws.tab.pipeline.steps == (FILTER,)
    assert ws.tab.view.num_rows == 5


def test_evaluation_without_table_or_error_is_reported():
    scheduler = DeferredScheduler()
    ws = Workspace(scheduler)
    ws.open_table(_base(), "t")
    ws.push_step(FILTER)
    tab = ws.tab
    msg = EvaluationResult(tab.id, tab.pipeline.generation, (FILTER,))
    assert ws.handle_result(msg)
    assert ws.status == "Evaluation produced no table."
    assert tab.pipeline.steps == ()
    assert not tab.busy


def test_load_without_table_or_error_closes_the_tab(tmp_path):
    scheduler = DeferredScheduler()
    ws = Workspace(scheduler)
    ws.open_table(_base(), "kept")
    tab = ws.open_source(Source(str(_csv(tmp_path))))
    assert ws.handle_result(LoadResult(tab.id, tab.source))
    assert [t.name for t in ws.tabs] == ["kept"]
    assert ws.status == "Loading produced no table."


def test_result_for_closed_tab_is_dropped():
    scheduler = DeferredScheduler()
    ws = Workspace(scheduler)
    ws.open_table(_base(), "a")
    ws.open_table(_base(), "b")
    ws.push_step(FILTER)
    ws.close_tab()
    scheduler.finish()
    assert not ws.drain()
    assert [t.name for t in ws.tabs] == ["a"]


def test_worker_crash_becomes_internal_error(monkeypatch):
    def boom(self):
        raise RuntimeError("kaput")

    monkeypatch.setattr(EvaluationRequest, "evaluate", boom)
    req = EvaluationRequest(1, _base(), (FILTER,), "k")
    msg = run_evaluation(7, req)
    assert isinstance(msg, EvaluationResult)
    assert msg.table is None
    assert msg.error.code == "E_INTERNAL"
    assert "kaput" in msg.error.message


def test_open_source_loads_and_applies_queued_steps(tmp_path):
    ws = Workspace(ExecutionScheduler(inline=True))
    ws.open_source(Source(str(_csv(tmp_path))), steps=[FILTER])
    ws.drain()
    tab = ws.tab
    assert not tab.loading
    assert tab.name == "people.csv"
    assert tab.view.column("id").values == (2, 3)
    assert tab.pipeline.steps == (FILTER,)


def test_commands_wait_for_loading_tab(tmp_path):
    scheduler = DeferredScheduler()
    ws = Workspace(scheduler)
    ws.open_source(Source(str(_csv(tmp_path))))
    assert ws.tab.loading
    with pytest.raises(GridLensError) as ex:
        ws.push_step(FILTER)
    assert getattr(ex.value, "code", None) == "E_TAB_LOADING"

    scheduler.finish()
    ws.drain()
    ws.push_step(FILTER)
    scheduler.finish()
    ws.drain()
    assert ws.tab.view.num_rows == 2


def test_failed_load_removes_tab_and_ends_session(tmp_path):
    ws = Workspace(ExecutionScheduler(inline=True))
    ws.open_source(Source(str(tmp_path / "missing.csv")))
    ws.drain()
    assert ws.tabs == []
    assert ws.quit_requested
    assert "not found" in ws.status.lower()


def test_failed_load_keeps_other_tabs(tmp_path):
    ws = Workspace(ExecutionScheduler(inline=True))
    ws.open_table(_base(), "kept")
    ws.open_source(Source(str(tmp_path / "missing.csv")))
    ws.drain()
    assert [t.name for t in ws.tabs] == ["kept"]
    assert ws.tab.name == "kept"
    assert not ws.quit_requested


def test_cursor_clamped_when_view_shrinks():
    ws = Workspace(ExecutionScheduler(inline=True))
    ws.open_table(_base(), "t")
    ws.bottom()
    ws.last_col()
    ws.push_step(FILTER)
    ws.drain()
    assert tuple(ws.tab.cursor) == (4, 1)


def test_search_follows_view_changes():
    ws = Workspace(ExecutionScheduler(inline=True))
    ws.open_table(_base(), "t")
    ws.find("15")
    assert ws.search.matches == [(1, 1)]
    ws.push_step(Transform("filter", {"where": "score > 20"}))
    ws.drain()
    assert ws.search.matches == []
    ws.undo()
    assert ws.search.matches == [(1, 1)]


def test_paging_uses_grid_height():
    ws = Workspace(ExecutionScheduler(inline=True))
    ws.open_table(_base(100), "t")
    ws.resize(Size(40, 11))
    assert ws.page_rows == 10
    ws.page(0.5)
    assert ws.tab.cursor.row == 5
    ws.page(1)
    assert ws.tab.cursor.row == 15
    assert ws.tab.scroll.top == 6
    ws.page(-1)
    assert ws.tab.cursor.row == 5


def test_switching_tabs_wraps_and_keeps_cursor():
    ws = Workspace(ExecutionScheduler(inline=True))
    ws.open_table(_base(), "a")
    ws.move(rows=3)
    ws.open_table(_base(), "b")
    ws.switch_tab(1)
    assert ws.tab.name == "a"
    assert ws.tab.cursor.row == 3
    ws.switch_tab(-1)
    assert ws.tab.name == "b"


def test_history_skips_repeats():
    ws = Workspace(ExecutionScheduler(inline=True))
    for line in ("top", "top", " bottom ", ""):
        ws.record(line)
    assert list(ws.history) == ["top", "bottom"]
